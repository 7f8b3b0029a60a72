"""
TxnGuard — ORM Models
Historical transactions and windowed velocity counters.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, Float, Integer, Boolean, DateTime, Text, JSON, Index
)

from txnguard.services.db import Base


def _utcnow():
    return datetime.now(timezone.utc)


def _uuid4():
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# TransactionRecord  (history the anomaly detectors query)
# ---------------------------------------------------------------------------
class TransactionRecord(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_customer_created", "customer_email", "created_at"),
        Index("ix_transactions_merchant_created", "merchant_id", "created_at"),
        Index("ix_transactions_status_created", "status", "created_at"),
        Index("ix_transactions_ip_created", "ip_address", "created_at"),
    )

    id: str = Column(String(36), primary_key=True, default=_uuid4)
    amount: float = Column(Float, nullable=False)
    customer_email: str = Column(String(320), nullable=False)
    merchant_id: str = Column(String(128), nullable=False)
    ip_address: str = Column(String(64), nullable=True)
    status: str = Column(String(16), default="pending")     # pending | success | failed | blocked
    is_new_customer: bool = Column(Boolean, default=False)
    currency: str = Column(String(3), default="NGN")
    payment_method: str = Column(String(32), default="card")  # card | bank_transfer | wallet | other
    description: str = Column(Text, nullable=True)
    risk_score: int = Column(Integer, nullable=True)          # 0 – 100
    risk_level: str = Column(String(16), nullable=True)       # low | medium | high | critical
    fraud_factors: list = Column(JSON, default=list)
    created_at: datetime = Column(DateTime(timezone=True), default=_utcnow)


# ---------------------------------------------------------------------------
# VelocityCounter  (one row per merchant+customer window)
# ---------------------------------------------------------------------------
class VelocityCounter(Base):
    __tablename__ = "velocity_counters"
    __table_args__ = (
        Index("ix_velocity_counters_expires", "expires_at"),
    )

    key: str = Column(String(512), primary_key=True)          # vel:<merchant>:<customer>
    count: int = Column(Integer, nullable=False, default=0)
    expires_at: datetime = Column(DateTime(timezone=True), nullable=False)
    created_at: datetime = Column(DateTime(timezone=True), default=_utcnow)
