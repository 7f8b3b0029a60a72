"""
TxnGuard — Pydantic Schemas (domain objects and Request / Response DTOs)

Transactions and rules are immutable once built; scoring reads them and
never writes back.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, ConfigDict


RiskLevel = Literal["low", "medium", "high", "critical"]
Action = Literal["allow", "flag", "review", "block"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ===========================================================================
# Transaction
# ===========================================================================
class Transaction(BaseModel):
    """A payment transaction as submitted for analysis."""
    id: Optional[str] = Field(default=None, max_length=64)
    amount: float = Field(..., ge=0, description="Transaction amount (minor currency units not implied)")
    customer_email: str = Field(..., min_length=1, max_length=320)
    merchant_id: str = Field(..., min_length=1, max_length=128)
    ip_address: Optional[str] = Field(
        default=None,
        max_length=64,
        description="Client address or location tag; used as the location proxy",
    )
    created_at: datetime = Field(default_factory=_utcnow)
    status: Literal["pending", "success", "failed", "blocked"] = "pending"
    is_new_customer: bool = False
    currency: str = Field(default="NGN", max_length=3)
    payment_method: Literal["card", "bank_transfer", "wallet", "other"] = "card"
    description: Optional[str] = Field(default=None, max_length=500)

    model_config = ConfigDict(frozen=True, from_attributes=True)

    @field_validator("customer_email")
    @classmethod
    def normalise_email(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("ip_address")
    @classmethod
    def strip_ip_address(cls, v: Optional[str]) -> Optional[str]:
        """Any non-blank string is a location; blank means unknown."""
        if v is None or not v.strip():
            return None
        return v.strip()

    @field_validator("is_new_customer", mode="before")
    @classmethod
    def none_is_not_new(cls, v: Any) -> Any:
        return False if v is None else v


# ===========================================================================
# Fraud Rule
# ===========================================================================
class FraudRule(BaseModel):
    """
    A weighted predicate.  ``condition`` is the JSON tree consumed by
    rules/engine.py.
    """
    id: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1, max_length=128)
    description: str = Field(default="", max_length=500)
    weight: int = Field(..., gt=0, le=100)
    enabled: bool = True
    condition: Dict[str, Any]

    model_config = ConfigDict(frozen=True)


class FraudRuleCreate(BaseModel):
    """Create a new fraud rule; an id is generated when omitted."""
    id: Optional[str] = Field(
        default=None,
        min_length=1,
        max_length=64,
        pattern=r"^[a-zA-Z0-9_\-]+$",
    )
    name: str = Field(..., min_length=1, max_length=128)
    description: str = Field(default="", max_length=500)
    weight: int = Field(..., gt=0, le=100)
    enabled: bool = True
    condition: Dict[str, Any] = Field(..., description="JSON rule condition")


class FraudRuleUpdate(BaseModel):
    """Partial update of an existing fraud rule."""
    name: Optional[str] = Field(default=None, min_length=1, max_length=128)
    description: Optional[str] = Field(default=None, max_length=500)
    weight: Optional[int] = Field(default=None, gt=0, le=100)
    enabled: Optional[bool] = None
    condition: Optional[Dict[str, Any]] = None


class RuleToggle(BaseModel):
    enabled: bool


# ===========================================================================
# Anomaly check outcome
# ===========================================================================
class CheckStatus(str, Enum):
    TRIGGERED = "triggered"
    CLEAR = "clear"
    UNAVAILABLE = "unavailable"   # the check itself failed
    SKIPPED = "skipped"           # the caller asked not to run it


class CheckResult(BaseModel):
    check: str
    status: CheckStatus
    details: Dict[str, Any] = Field(default_factory=dict)

    @property
    def triggered(self) -> bool:
        return self.status is CheckStatus.TRIGGERED


# ===========================================================================
# Risk Score / results
# ===========================================================================
class RiskScore(BaseModel):
    """Rule + anomaly score for one transaction."""
    score: int = Field(..., ge=0, le=100)
    level: RiskLevel
    factors: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    checks: Dict[str, CheckStatus] = Field(default_factory=dict)


class AIFraudAnalysis(BaseModel):
    """Opinion returned by the AI oracle."""
    is_fraudulent: bool
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: str = ""
    risk_factors: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    ai_model: str = ""
    analysis_time_ms: int = Field(default=0, ge=0)


class FraudDetectionResult(BaseModel):
    """Traditional (rules + anomalies only) decision."""
    is_fraudulent: bool
    flagged: bool
    risk_score: RiskScore
    action: Action
    reason: Optional[str] = None


class EnhancedResult(FraudDetectionResult):
    """Decision after folding in the AI opinion, when one was obtained."""
    combined_risk_score: int = Field(..., ge=0, le=100)
    ai_enhanced: bool
    ai_analysis: Optional[AIFraudAnalysis] = None


class BatchAnalysisItem(BaseModel):
    """One slot of a batch run; exactly one of result / error is set."""
    transaction_id: Optional[str] = None
    result: Optional[EnhancedResult] = None
    error: Optional[str] = None


class BatchAnalysisRequest(BaseModel):
    transactions: List[Transaction] = Field(..., min_length=1, max_length=100)


# ===========================================================================
# Statistics
# ===========================================================================
class RiskFactorCount(BaseModel):
    factor: str
    count: int


class FraudStatistics(BaseModel):
    """Merchant-level fraud metrics over a (possibly open) date range."""
    merchant_id: str
    total_transactions: int
    flagged_transactions: int
    blocked_transactions: int
    fraud_rate: float
    average_risk_score: float
    top_risk_factors: List[RiskFactorCount]


# ===========================================================================
# Oracle status / Health
# ===========================================================================
class OracleStatus(BaseModel):
    available: bool
    model: str
    credential_configured: bool
    last_checked: datetime


class TransactionRecorded(BaseModel):
    """Response of the ingest endpoint: stored id plus the decision."""
    id: str
    analysis: EnhancedResult


class HealthCheck(BaseModel):
    """Health check response."""
    status: str  # healthy | degraded | unhealthy
    db: str
    oracle: str
    rules_loaded: int
    uptime_seconds: float
    version: str
