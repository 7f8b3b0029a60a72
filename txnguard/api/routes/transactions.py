"""
TxnGuard — Transactions API

POST /api/v1/transactions/   → analyse, then record into history

The transaction is scored before it is stored, so it never counts against
its own amount or geographic baseline.
"""

import logging

from fastapi import APIRouter, Depends, status

from txnguard.api.deps import get_fraud_service
from txnguard.models.schemas import Transaction, TransactionRecorded
from txnguard.services.fraud_service import FraudDetectionService

logger = logging.getLogger("txnguard.api.transactions")
router = APIRouter()


@router.post(
    "/",
    status_code=status.HTTP_201_CREATED,
    response_model=TransactionRecorded,
    summary="Submit, Analyse & Record a Transaction",
)
async def create_transaction(
    transaction: Transaction,
    service: FraudDetectionService = Depends(get_fraud_service),
):
    analysis = await service.analyze(transaction)
    record_id = await service.record_transaction(transaction, analysis.risk_score)

    logger.info(
        "Transaction recorded: id=%s merchant=%s action=%s combined=%d",
        record_id, transaction.merchant_id, analysis.action, analysis.combined_risk_score,
    )
    return TransactionRecorded(id=record_id, analysis=analysis)
