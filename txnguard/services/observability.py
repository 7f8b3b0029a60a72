"""
TxnGuard — Observability Layer

Provides:
- Structured JSON logging
- Prometheus metrics
- Request correlation IDs
"""

import logging
import time
from contextvars import ContextVar
from typing import Any, Dict, Optional

from fastapi import Request, Response
from prometheus_client import Counter, Histogram
from pythonjsonlogger import jsonlogger

from txnguard.config import settings

# ===========================================================================
# Context Variables (request correlation)
# ===========================================================================
REQUEST_ID_CTX: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def get_request_id() -> Optional[str]:
    """Get the current request ID from context."""
    return REQUEST_ID_CTX.get()


def set_request_id(request_id: str) -> None:
    """Set the request ID in context."""
    REQUEST_ID_CTX.set(request_id)


# ===========================================================================
# Structured Logging
# ===========================================================================
class StructuredLogFormatter(jsonlogger.JsonFormatter):
    """JSON log formatter with request and service context."""

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        request_id = get_request_id()
        if request_id:
            log_record["request_id"] = request_id

        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["env"] = settings.APP_ENV
        log_record["service"] = settings.APP_NAME
        log_record["version"] = settings.APP_VERSION


def setup_logging() -> None:
    """Configure root logging: JSON or plain text according to settings."""
    root_logger = logging.getLogger()
    root_logger.setLevel(settings.LOG_LEVEL)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    if settings.STRUCTURED_LOGGING_ENABLED and settings.LOG_FORMAT == "json":
        console_handler.setFormatter(StructuredLogFormatter())
    else:
        console_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s — %(message)s")
        )
    root_logger.addHandler(console_handler)

    for logger_name in [
        "txnguard",
        "fastapi",
        "uvicorn",
        "sqlalchemy",
        "httpx",
    ]:
        logging.getLogger(logger_name).setLevel(settings.LOG_LEVEL)


# ===========================================================================
# Prometheus Metrics
# ===========================================================================
class Metrics:
    """Application metrics collector."""

    # Request metrics
    http_requests_total = Counter(
        "txnguard_http_requests_total",
        "Total HTTP requests",
        ["method", "endpoint", "status"],
    )

    http_request_duration_seconds = Histogram(
        "txnguard_http_request_duration_seconds",
        "HTTP request duration in seconds",
        ["method", "endpoint"],
        buckets=(0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0),
    )

    # Decision metrics
    transactions_analyzed_total = Counter(
        "txnguard_transactions_analyzed_total",
        "Transactions analysed, by final action",
        ["action", "ai_enhanced"],
    )

    risk_levels_total = Counter(
        "txnguard_risk_levels_total",
        "Risk level distribution",
        ["level"],  # low, medium, high, critical
    )

    risk_scores_distribution = Histogram(
        "txnguard_risk_scores_distribution",
        "Distribution of traditional risk scores",
        buckets=(10, 20, 30, 40, 50, 60, 70, 80, 90, 100),
    )

    scoring_duration_seconds = Histogram(
        "txnguard_scoring_duration_seconds",
        "Traditional scoring (rules + anomaly checks) time",
        buckets=(0.005, 0.01, 0.05, 0.1, 0.5, 1.0),
    )

    anomaly_checks_total = Counter(
        "txnguard_anomaly_checks_total",
        "Anomaly check outcomes",
        ["check", "status"],  # velocity/amount/geographic × triggered/clear/unavailable
    )

    # Oracle metrics
    oracle_calls_total = Counter(
        "txnguard_oracle_calls_total",
        "AI oracle calls",
        ["outcome"],  # success, error, timeout
    )

    oracle_call_duration_seconds = Histogram(
        "txnguard_oracle_call_duration_seconds",
        "AI oracle round-trip time",
        buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
    )


# ===========================================================================
# Middleware for automatic metric collection
# ===========================================================================
async def metrics_middleware(request: Request, call_next) -> Response:
    """Record HTTP request metrics."""
    start_time = time.perf_counter()
    path = request.url.path.split("?")[0]
    method = request.method
    status_code = 500

    try:
        response = await call_next(request)
        status_code = response.status_code
    finally:
        duration = time.perf_counter() - start_time

        Metrics.http_requests_total.labels(
            method=method,
            endpoint=path,
            status=status_code,
        ).inc()

        Metrics.http_request_duration_seconds.labels(
            method=method,
            endpoint=path,
        ).observe(duration)

    return response


# ===========================================================================
# Logging utilities
# ===========================================================================
def log_transaction_analyzed(
    transaction_id: Optional[str],
    action: str,
    traditional_score: int,
    combined_score: int,
    ai_enhanced: bool,
    duration_ms: float,
) -> None:
    """Log a completed decision and record its metrics."""
    logger = logging.getLogger("txnguard.decision")
    logger.info(
        "Transaction analysed",
        extra={
            "transaction_id": transaction_id,
            "action": action,
            "traditional_score": traditional_score,
            "combined_score": combined_score,
            "ai_enhanced": ai_enhanced,
            "duration_ms": round(duration_ms, 2),
        },
    )
    Metrics.transactions_analyzed_total.labels(
        action=action,
        ai_enhanced=str(ai_enhanced).lower(),
    ).inc()
