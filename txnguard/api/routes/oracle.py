"""
TxnGuard — AI Oracle API
GET /api/v1/oracle/status   →  { available, model, credential_configured, last_checked }
"""

from fastapi import APIRouter, Depends

from txnguard.api.deps import get_fraud_service
from txnguard.models.schemas import OracleStatus
from txnguard.services.fraud_service import FraudDetectionService

router = APIRouter()


@router.get(
    "/status",
    response_model=OracleStatus,
    summary="AI Oracle Status",
    description="Sends a 1-token probe when a credential is configured.",
)
async def oracle_status(service: FraudDetectionService = Depends(get_fraud_service)):
    return await service.get_oracle_status()
