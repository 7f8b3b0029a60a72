"""
TxnGuard — Anomaly Detectors

Velocity
--------
Counts attempts per merchant+customer inside a window.  Every call observes
*and* decides: the first attempt of a window never triggers, later attempts
trigger once the count exceeds VELOCITY_MAX_ATTEMPTS.

Amount
------
Compares the amount against the merchant's successful transactions in the
trailing window: above mean × AMOUNT_ANOMALY_MULTIPLIER or above 1.5 × max.

Geographic
----------
Counts distinct IP addresses (location proxy) the customer used in the
trailing window.  Only history is counted; the current transaction's own IP
is not added before comparing with GEO_ANOMALY_MAX_LOCATIONS.

All detectors fail safe: an error becomes CheckStatus.UNAVAILABLE plus an
error log, never an exception.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from txnguard.config import Settings, settings as default_settings
from txnguard.models.schemas import CheckResult, CheckStatus
from txnguard.services.history import HistoricalDataSource, VelocityStore
from txnguard.services.observability import Metrics

logger = logging.getLogger("txnguard.anomaly")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def velocity_key(merchant_id: str, customer_email: str) -> str:
    return f"vel:{merchant_id}:{customer_email}"


class AnomalyDetectors:
    def __init__(
        self,
        history: HistoricalDataSource,
        velocity_store: VelocityStore,
        settings: Settings = default_settings,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.history = history
        self.velocity_store = velocity_store
        self.settings = settings
        self.clock = clock

    # ======================================================================
    # Velocity
    # ======================================================================
    async def check_velocity(
        self,
        customer_email: str,
        merchant_id: str,
        window_ms: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> CheckResult:
        window_ms = window_ms or self.settings.VELOCITY_WINDOW_MS
        now = now or self.clock()
        key = velocity_key(merchant_id, customer_email)

        try:
            count, new_window = await self.velocity_store.observe(
                key, now, timedelta(milliseconds=window_ms)
            )
        except Exception as exc:
            return self._unavailable("velocity", exc, merchant_id, customer_email)

        breached = not new_window and count > self.settings.VELOCITY_MAX_ATTEMPTS
        if breached:
            logger.warning(
                "VELOCITY BREACH merchant=%s customer=%s count=%d max=%d",
                merchant_id, customer_email, count, self.settings.VELOCITY_MAX_ATTEMPTS,
            )
        return self._result("velocity", breached, {
            "window_ms": window_ms,
            "count_in_window": count,
            "max_attempts": self.settings.VELOCITY_MAX_ATTEMPTS,
            "new_window": new_window,
        })

    # ======================================================================
    # Amount
    # ======================================================================
    async def check_amount(
        self,
        merchant_id: str,
        amount: float,
        window_ms: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> CheckResult:
        window_ms = window_ms or self.settings.AMOUNT_ANOMALY_WINDOW_MS
        since = (now or self.clock()) - timedelta(milliseconds=window_ms)

        try:
            amounts = await self.history.merchant_amounts(merchant_id, since)
        except Exception as exc:
            return self._unavailable("amount", exc, merchant_id, None)

        # No baseline → nothing to compare against
        if not amounts:
            return self._result("amount", False, {
                "sample_size": 0,
                "note": "No merchant history in window",
            })

        mean = sum(amounts) / len(amounts)
        peak = max(amounts)
        multiplier = self.settings.AMOUNT_ANOMALY_MULTIPLIER
        is_anomaly = amount > mean * multiplier or amount > peak * 1.5

        if is_anomaly:
            logger.warning(
                "AMOUNT ANOMALY merchant=%s amount=%.2f mean=%.2f max=%.2f",
                merchant_id, amount, mean, peak,
            )
        return self._result("amount", is_anomaly, {
            "sample_size": len(amounts),
            "mean": round(mean, 2),
            "max": round(peak, 2),
            "multiplier": multiplier,
        })

    # ======================================================================
    # Geographic
    # ======================================================================
    async def check_geographic(
        self,
        customer_email: str,
        location: Optional[str],
        window_ms: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> CheckResult:
        window_ms = window_ms or self.settings.GEO_ANOMALY_WINDOW_MS
        since = (now or self.clock()) - timedelta(milliseconds=window_ms)

        try:
            locations = await self.history.customer_locations(customer_email, since)
        except Exception as exc:
            return self._unavailable("geographic", exc, None, customer_email)

        distinct = {loc for loc in locations if loc}
        is_anomaly = len(distinct) > self.settings.GEO_ANOMALY_MAX_LOCATIONS

        if is_anomaly:
            logger.warning(
                "GEO ANOMALY customer=%s distinct_locations=%d current=%s",
                customer_email, len(distinct), location or "unknown",
            )
        return self._result("geographic", is_anomaly, {
            "distinct_locations": len(distinct),
            "max_locations": self.settings.GEO_ANOMALY_MAX_LOCATIONS,
            "current_location": location or "unknown",
        })

    # ======================================================================
    # Helpers
    # ======================================================================
    @staticmethod
    def _result(check: str, triggered: bool, details: dict) -> CheckResult:
        status = CheckStatus.TRIGGERED if triggered else CheckStatus.CLEAR
        Metrics.anomaly_checks_total.labels(check=check, status=status.value).inc()
        return CheckResult(check=check, status=status, details=details)

    @staticmethod
    def _unavailable(
        check: str,
        exc: Exception,
        merchant_id: Optional[str],
        customer_email: Optional[str],
    ) -> CheckResult:
        logger.error(
            "Anomaly check '%s' failed (treated as not anomalous) merchant=%s customer=%s: %s",
            check, merchant_id, customer_email, exc,
        )
        Metrics.anomaly_checks_total.labels(check=check, status=CheckStatus.UNAVAILABLE.value).inc()
        return CheckResult(
            check=check,
            status=CheckStatus.UNAVAILABLE,
            details={"error": str(exc)},
        )
