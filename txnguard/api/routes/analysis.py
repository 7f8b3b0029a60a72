"""
TxnGuard — Analysis API

POST /api/v1/analysis/              → rules + anomalies + AI opinion
POST /api/v1/analysis/traditional   → rules + anomalies only
POST /api/v1/analysis/score         → bare RiskScore
POST /api/v1/analysis/batch         → up to 100 transactions, windowed

Nothing is persisted here; use /api/v1/transactions to ingest.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends

from txnguard.api.deps import get_fraud_service
from txnguard.models.schemas import (
    BatchAnalysisItem,
    BatchAnalysisRequest,
    EnhancedResult,
    FraudDetectionResult,
    RiskScore,
    Transaction,
)
from txnguard.services.fraud_service import FraudDetectionService

logger = logging.getLogger("txnguard.api.analysis")
router = APIRouter()


# ===========================================================================
# POST  /api/v1/analysis/
# ===========================================================================
@router.post(
    "/",
    response_model=EnhancedResult,
    summary="Analyse a Transaction (AI-enhanced)",
    description=(
        "Runs the rule pass and the velocity, amount and geographic checks, "
        "then folds in the AI opinion when one is available.  AI failures "
        "only show up as ai_enhanced=false."
    ),
)
async def analyze_transaction(
    transaction: Transaction,
    service: FraudDetectionService = Depends(get_fraud_service),
):
    return await service.analyze(transaction)


# ===========================================================================
# POST  /api/v1/analysis/traditional
# ===========================================================================
@router.post(
    "/traditional",
    response_model=FraudDetectionResult,
    summary="Analyse a Transaction (rules and anomaly checks only)",
)
async def analyze_traditional(
    transaction: Transaction,
    service: FraudDetectionService = Depends(get_fraud_service),
):
    return await service.analyze_traditional_only(transaction)


# ===========================================================================
# POST  /api/v1/analysis/score
# ===========================================================================
@router.post(
    "/score",
    response_model=RiskScore,
    summary="Compute the Traditional Risk Score",
)
async def score_transaction(
    transaction: Transaction,
    service: FraudDetectionService = Depends(get_fraud_service),
):
    return await service.score(transaction)


# ===========================================================================
# POST  /api/v1/analysis/batch
# ===========================================================================
@router.post(
    "/batch",
    response_model=List[BatchAnalysisItem],
    summary="Analyse a Batch of Transactions",
    description="Failed items carry an error message; the rest of the batch is still processed.",
)
async def analyze_batch(
    body: BatchAnalysisRequest,
    service: FraudDetectionService = Depends(get_fraud_service),
):
    items = await service.batch_analyze(body.transactions)
    failed = sum(1 for i in items if i.error)
    logger.info("Batch analysed: size=%d failed=%d", len(items), failed)
    return items
