"""
TxnGuard — Error Handling & Exception Classes

Domain exceptions plus the mapping onto HTTP responses with safe error
messages (no internals leak to the client).

Recovery policy
---------------
ConfigurationError   fatal at startup
ScoringError         propagated to the caller, never replaced by a made-up score
RuleEvaluationError  caught per rule by the rules engine
OracleError          caught by the decision combiner (traditional-only result)
DatabaseError        propagated (data access is down)
"""

import logging
from typing import Any, Dict, Optional

from fastapi import status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger("txnguard.errors")


# ===========================================================================
# Custom Exceptions (domain-specific)
# ===========================================================================
class TxnGuardException(Exception):
    """Base exception for all TxnGuard errors."""
    pass


class ConfigurationError(TxnGuardException):
    """Invalid threshold ordering or out-of-range settings."""
    pass


class ScoringError(TxnGuardException):
    """Traditional scoring failed; no score can be produced."""
    pass


class RuleEvaluationError(TxnGuardException):
    """A single rule condition could not be evaluated."""

    def __init__(self, rule_id: str, message: str):
        super().__init__(f"rule '{rule_id}': {message}")
        self.rule_id = rule_id


class OracleError(TxnGuardException):
    """AI oracle call failed, timed out or is not configured."""
    pass


class DatabaseError(TxnGuardException):
    """Database operation errors."""
    pass


# ===========================================================================
# HTTP Error Response Factory
# ===========================================================================
class ErrorResponse:
    """Standardised error response format."""

    def __init__(
        self,
        error_code: str,
        message: str,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        details: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
    ):
        self.error_code = error_code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.request_id = request_id

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "request_id": self.request_id,
            },
            **({"details": self.details} if self.details else {}),
        }

    def to_response(self) -> JSONResponse:
        return JSONResponse(status_code=self.status_code, content=self.to_dict())


# ===========================================================================
# Exception to HTTP Response Mapping
# ===========================================================================
def exception_to_response(
    exc: Exception,
    request_id: Optional[str] = None,
) -> tuple[JSONResponse, str]:
    """
    Convert an exception to an HTTP response.

    Returns
    -------
    response : JSONResponse
    log_level : str
        Logging level (error, warning, info)
    """
    if isinstance(exc, RequestValidationError):
        return ErrorResponse(
            error_code="VALIDATION_ERROR",
            message="Input validation failed",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"errors": str(exc)},
            request_id=request_id,
        ).to_response(), "warning"

    if isinstance(exc, ScoringError):
        logger.error("ScoringError: %s", exc)
        return ErrorResponse(
            error_code="SCORING_ERROR",
            message="Risk scoring pipeline failed",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            request_id=request_id,
        ).to_response(), "error"

    if isinstance(exc, DatabaseError):
        logger.error("DatabaseError: %s", exc)
        return ErrorResponse(
            error_code="DATABASE_ERROR",
            message="Database operation failed",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            request_id=request_id,
        ).to_response(), "error"

    # Oracle failures are normally absorbed by the combiner; this only
    # fires for direct oracle endpoints.
    if isinstance(exc, OracleError):
        logger.warning("OracleError: %s", exc)
        return ErrorResponse(
            error_code="ORACLE_UNAVAILABLE",
            message="AI analysis temporarily unavailable",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            request_id=request_id,
        ).to_response(), "warning"

    if isinstance(exc, ConfigurationError):
        logger.critical("ConfigurationError: %s", exc)
        return ErrorResponse(
            error_code="CONFIGURATION_ERROR",
            message="Service is misconfigured",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            request_id=request_id,
        ).to_response(), "critical"

    # Generic error (never expose full traceback to client)
    logger.error("Unhandled exception: %s", exc, exc_info=True)
    return ErrorResponse(
        error_code="INTERNAL_ERROR",
        message="An internal error occurred. Please try again later.",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        request_id=request_id,
    ).to_response(), "error"
