"""
TxnGuard — Historical Data Access

HistoricalDataSource
--------------------
Windowed read queries over past transactions, plus ingestion of new ones.

VelocityStore
-------------
Per-key counters with window expiry.  ``observe`` is the only mutation: it
resets an absent/expired counter to 1 or increments a live one, atomically per
key (in-process lock + row lock inside one DB transaction).
"""

import asyncio
import logging
import weakref
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Protocol, Sequence, Tuple

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from txnguard.models.models import TransactionRecord, VelocityCounter
from txnguard.models.schemas import RiskScore, Transaction
from txnguard.services.errors import DatabaseError

logger = logging.getLogger("txnguard.history")


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ===========================================================================
# Capabilities the detectors depend on
# ===========================================================================
class HistoricalDataSource(Protocol):
    async def merchant_amounts(self, merchant_id: str, since: datetime) -> List[float]:
        ...

    async def customer_locations(self, customer_email: str, since: datetime) -> List[Optional[str]]:
        ...

    async def merchant_transactions(
        self,
        merchant_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Transaction]:
        ...


class VelocityStore(Protocol):
    async def observe(self, key: str, now: datetime, window: timedelta) -> Tuple[int, bool]:
        """Return (count after this observation, whether a new window started)."""
        ...


# ===========================================================================
# SQL implementations
# ===========================================================================
class SqlHistoricalDataSource:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    async def merchant_amounts(self, merchant_id: str, since: datetime) -> List[float]:
        """Amounts of successful merchant transactions created at or after *since*."""
        stmt = select(TransactionRecord.amount).where(
            TransactionRecord.merchant_id == merchant_id,
            TransactionRecord.status == "success",
            TransactionRecord.created_at >= as_utc(since),
        )
        return [float(a) for a in await self._scalars(stmt)]

    async def customer_locations(self, customer_email: str, since: datetime) -> List[Optional[str]]:
        """IP addresses of every customer transaction since *since*, any merchant or status."""
        stmt = select(TransactionRecord.ip_address).where(
            TransactionRecord.customer_email == customer_email.strip().lower(),
            TransactionRecord.created_at >= as_utc(since),
        )
        return list(await self._scalars(stmt))

    async def merchant_transactions(
        self,
        merchant_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Transaction]:
        stmt = select(TransactionRecord).where(TransactionRecord.merchant_id == merchant_id)
        if start is not None:
            stmt = stmt.where(TransactionRecord.created_at >= as_utc(start))
        if end is not None:
            stmt = stmt.where(TransactionRecord.created_at <= as_utc(end))
        stmt = stmt.order_by(TransactionRecord.created_at.asc())
        records = await self._scalars(stmt)
        return [_to_transaction(r) for r in records]

    async def record(self, transaction: Transaction, risk: Optional[RiskScore] = None) -> str:
        """Persist *transaction* (and its score, when known); returns the row id."""
        row = TransactionRecord(
            amount=transaction.amount,
            customer_email=transaction.customer_email,
            merchant_id=transaction.merchant_id,
            ip_address=transaction.ip_address,
            status=transaction.status,
            is_new_customer=transaction.is_new_customer,
            currency=transaction.currency,
            payment_method=transaction.payment_method,
            description=transaction.description,
            created_at=as_utc(transaction.created_at),
        )
        if transaction.id:
            row.id = transaction.id
        if risk is not None:
            row.risk_score = risk.score
            row.risk_level = risk.level
            row.fraud_factors = list(risk.factors)

        try:
            async with self._session_factory() as db:
                db.add(row)
                await db.commit()
                return row.id
        except SQLAlchemyError as exc:
            raise DatabaseError(f"Failed to record transaction: {exc}") from exc

    async def _scalars(self, stmt) -> Sequence:
        try:
            async with self._session_factory() as db:
                result = await db.execute(stmt)
                return result.scalars().all()
        except SQLAlchemyError as exc:
            raise DatabaseError(f"History query failed: {exc}") from exc


def _to_transaction(record: TransactionRecord) -> Transaction:
    txn = Transaction.model_validate(record)
    return txn.model_copy(update={"created_at": as_utc(record.created_at)})


class SqlVelocityStore:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def observe(self, key: str, now: datetime, window: timedelta) -> Tuple[int, bool]:
        now = as_utc(now)
        async with self._lock_for(key):
            try:
                async with self._session_factory() as db:
                    async with db.begin():
                        stmt = (
                            select(VelocityCounter)
                            .where(VelocityCounter.key == key)
                            .with_for_update()
                        )
                        counter = (await db.execute(stmt)).scalar_one_or_none()

                        if counter is None:
                            db.add(VelocityCounter(key=key, count=1, expires_at=now + window))
                            return 1, True

                        if as_utc(counter.expires_at) <= now:
                            counter.count = 1
                            counter.expires_at = now + window
                            counter.created_at = now
                            return 1, True

                        counter.count += 1
                        return counter.count, False
            except SQLAlchemyError as exc:
                raise DatabaseError(f"Velocity counter update failed for {key}: {exc}") from exc

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Delete counters whose window has closed; returns rows removed."""
        cutoff = as_utc(now or datetime.now(timezone.utc))
        try:
            async with self._session_factory() as db:
                async with db.begin():
                    result = await db.execute(
                        delete(VelocityCounter).where(VelocityCounter.expires_at <= cutoff)
                    )
            removed = result.rowcount or 0
        except SQLAlchemyError as exc:
            raise DatabaseError(f"Velocity counter purge failed: {exc}") from exc
        logger.info("Purged %d expired velocity counters", removed)
        return removed
