"""
TxnGuard — Health-Check API
GET  /api/v1/health/   →  { status, db, oracle, rules_loaded, uptime_seconds, version }

Used by liveness / readiness probes.  The oracle is reported from its
configuration only; probing it here would spend provider quota.
"""

import time
import logging

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from txnguard.config import settings
from txnguard.models.schemas import HealthCheck
from txnguard.services.db import get_db

logger = logging.getLogger("txnguard.api.health")
router = APIRouter()

# Record the time the process started (module-level, set once)
_PROCESS_START = time.perf_counter()


@router.get(
    "/",
    response_model=HealthCheck,
    summary="Health Check",
    description="Liveness / readiness probe.  Verifies DB connectivity.",
)
async def health_check(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    db_status = "healthy"
    overall = "healthy"

    # ── DB ping ────────────────────────────────────────────────────────────
    try:
        result = await db.execute(text("SELECT 1"))
        if result.scalar() != 1:
            raise RuntimeError("unexpected SELECT 1 result")
    except Exception as exc:
        db_status = "unhealthy"
        overall = "unhealthy"
        logger.error("DB health-check failed: %s", exc)

    # ── Oracle (configuration only) ────────────────────────────────────────
    service = getattr(request.app.state, "fraud_service", None)
    cfg = service.settings if service is not None else settings
    if not cfg.AI_FRAUD_ANALYSIS_ENABLED:
        oracle_status = "disabled"
    elif not cfg.GROQ_API_KEY:
        oracle_status = "not_configured"
        overall = "degraded" if overall != "unhealthy" else overall
    else:
        oracle_status = "configured"

    rules_loaded = len(service.rules) if service is not None else 0
    uptime = round(time.perf_counter() - _PROCESS_START, 2)

    body = HealthCheck(
        status=overall,
        db=db_status,
        oracle=oracle_status,
        rules_loaded=rules_loaded,
        uptime_seconds=uptime,
        version=settings.APP_VERSION,
    )

    # 503 only when the service cannot score at all
    status_code = status.HTTP_200_OK if overall != "unhealthy" else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(content=body.model_dump(), status_code=status_code)
