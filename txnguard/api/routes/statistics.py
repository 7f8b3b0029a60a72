"""
TxnGuard — Merchant Statistics API
GET /api/v1/statistics/{merchant_id}?start=&end=

Both bounds are optional ISO-8601 timestamps; omitting one leaves that side
of the range open.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from txnguard.api.deps import get_fraud_service
from txnguard.models.schemas import FraudStatistics
from txnguard.services.fraud_service import FraudDetectionService

logger = logging.getLogger("txnguard.api.statistics")
router = APIRouter()


@router.get(
    "/{merchant_id}",
    response_model=FraudStatistics,
    summary="Fraud Statistics for a Merchant",
    description="Replays traditional scoring over the merchant's recorded transactions.",
)
async def merchant_statistics(
    merchant_id: str,
    start: Optional[datetime] = Query(default=None, description="Inclusive lower bound"),
    end: Optional[datetime] = Query(default=None, description="Inclusive upper bound"),
    service: FraudDetectionService = Depends(get_fraud_service),
):
    if start is not None and end is not None and start > end:
        raise HTTPException(status_code=422, detail="start must not be after end")
    return await service.get_statistics(merchant_id, start, end)
