"""
TxnGuard — Shared route dependencies
"""

from fastapi import Request

from txnguard.services.fraud_service import FraudDetectionService


def get_fraud_service(request: Request) -> FraudDetectionService:
    """The process-wide service built in the application lifespan."""
    return request.app.state.fraud_service
