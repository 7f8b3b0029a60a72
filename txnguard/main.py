"""
TxnGuard — Main Application Entry Point
Transaction Fraud Scoring Engine
"""

import time
import uuid
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.openapi.utils import get_openapi
from prometheus_client import make_asgi_app

from txnguard.api.routes import analysis, health, oracle, rules, statistics, transactions
from txnguard.config import settings, validate_settings
from txnguard.services.db import engine, init_db
from txnguard.services.errors import TxnGuardException, exception_to_response
from txnguard.services.fraud_service import build_service
from txnguard.services.observability import (
    metrics_middleware,
    set_request_id,
    setup_logging,
)

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
setup_logging()
logger = logging.getLogger("txnguard")


# ---------------------------------------------------------------------------
# Lifespan (startup / shutdown)
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Bootstrap heavy resources once; tear down on shutdown."""
    logger.info("TxnGuard — initialising …")

    # 1. Refuse to start on an inconsistent threshold configuration
    validate_settings(settings)

    # 2. Create all DB tables (idempotent)
    await init_db()

    # 3. Rules, detectors, scorer, combiner, oracle
    app.state.fraud_service = build_service(settings)

    yield  # ← application runs here

    # --- shutdown ---
    await app.state.fraud_service.aclose()
    await engine.dispose()
    logger.info("TxnGuard — shut down complete.")


# ---------------------------------------------------------------------------
# FastAPI instance
# ---------------------------------------------------------------------------
app = FastAPI(
    title="TxnGuard",
    description=(
        "Transaction fraud scoring: weighted rules, velocity / amount / "
        "geographic anomaly checks and an optional AI opinion, blended into "
        "an allow / flag / review / block decision."
    ),
    version=settings.APP_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if not settings.is_production() else None,
    redoc_url="/redoc" if not settings.is_production() else None,
    openapi_url="/openapi.json" if not settings.is_production() else None,
)

# ---------------------------------------------------------------------------
# Middleware Stack (order matters)
# ---------------------------------------------------------------------------

# 1. GZIP compression
app.add_middleware(GZipMiddleware, minimum_size=1000)

# 2. CORS
if settings.CORS_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        allow_credentials=True,
    )


@app.middleware("http")
async def request_context_middleware(request: Request, call_next) -> Response:
    """
    Attach a unique request-id, set context variables and measure latency.
    """
    request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
    set_request_id(request_id)
    request.state.request_id = request_id
    start_time = time.perf_counter()

    try:
        response: Response = await call_next(request)
    except Exception as exc:
        response, log_level = exception_to_response(exc, request_id=request_id)
        getattr(logger, log_level)("Unhandled exception: %s", exc)

    elapsed_ms = (time.perf_counter() - start_time) * 1_000
    response.headers["X-Request-Id"] = request_id
    response.headers["X-Response-Time-Ms"] = f"{elapsed_ms:.2f}"

    logger.info(
        "HTTP request completed",
        extra={
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": round(elapsed_ms, 2),
        },
    )
    return response


@app.middleware("http")
async def metrics_collection_middleware(request: Request, call_next) -> Response:
    """Record metrics for requests."""
    if settings.METRICS_ENABLED:
        return await metrics_middleware(request, call_next)
    return await call_next(request)


# ---------------------------------------------------------------------------
# Exception Handlers
# ---------------------------------------------------------------------------
@app.exception_handler(TxnGuardException)
async def txnguard_exception_handler(request: Request, exc: TxnGuardException):
    """Handle TxnGuard domain exceptions."""
    request_id = getattr(request.state, "request_id", None)
    resp, log_level = exception_to_response(exc, request_id=request_id)
    getattr(logger, log_level)("TxnGuardException: %s", exc)
    return resp


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
app.include_router(health.router,       prefix="/api/v1/health",       tags=["Health"])
app.include_router(analysis.router,     prefix="/api/v1/analysis",     tags=["Analysis"])
app.include_router(transactions.router, prefix="/api/v1/transactions", tags=["Transactions"])
app.include_router(rules.router,        prefix="/api/v1/rules",        tags=["Rules"])
app.include_router(statistics.router,   prefix="/api/v1/statistics",   tags=["Statistics"])
app.include_router(oracle.router,       prefix="/api/v1/oracle",       tags=["AI Oracle"])


# ---------------------------------------------------------------------------
# Prometheus Metrics Endpoint
# ---------------------------------------------------------------------------
if settings.METRICS_ENABLED:
    metrics_app = make_asgi_app()
    app.mount("/metrics", metrics_app)


# ---------------------------------------------------------------------------
# Custom OpenAPI schema (server list)
# ---------------------------------------------------------------------------
def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema
    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )
    openapi_schema["servers"] = [
        {"url": "/", "description": "Current environment"},
    ]
    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi


# ---------------------------------------------------------------------------
# Root endpoint
# ---------------------------------------------------------------------------
@app.get("/", tags=["Info"])
async def root():
    """API root — points to docs."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.APP_ENV,
        "docs": "/docs" if not settings.is_production() else None,
    }
