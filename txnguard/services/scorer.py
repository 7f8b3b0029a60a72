"""
TxnGuard — Risk Scorer

Traditional score for one transaction:

    rules (weighted sum of fired rules)
  + 30 if velocity breached
  + 25 if amount anomalous
  + 20 if geographic anomaly
  → clamp to [0, 100] → level → level recommendations

The three anomaly checks run concurrently; their factors are still appended
in the fixed order velocity, amount, geographic.
"""

import asyncio
import logging
import time
from typing import List, Tuple

from txnguard.config import Settings, settings as default_settings
from txnguard.models.schemas import (
    CheckResult, CheckStatus, FraudDetectionResult, RiskLevel, RiskScore, Transaction,
)
from txnguard.rules.registry import RuleSet
from txnguard.services.anomaly import AnomalyDetectors
from txnguard.services.errors import ScoringError
from txnguard.services.observability import Metrics

logger = logging.getLogger("txnguard.scorer")

# (check name, weight, factor text) in factor order
ANOMALY_WEIGHTS: Tuple[Tuple[str, int, str], ...] = (
    ("velocity", 30, "High velocity transactions"),
    ("amount", 25, "Amount anomaly detected"),
    ("geographic", 20, "Geographic anomaly"),
)

RECOMMENDATIONS = {
    "critical": ["Block transaction immediately", "Flag customer for review"],
    "high": ["Review transaction manually", "Request additional verification"],
    "medium": ["Monitor transaction closely", "Consider additional verification"],
    "low": ["Proceed with normal processing"],
}


# ===========================================================================
# Level classifier
# ===========================================================================
def _classify_risk(score: int) -> RiskLevel:
    if score >= 80:
        return "critical"
    if score >= 60:
        return "high"
    if score >= 40:
        return "medium"
    return "low"


def _clamp(value: float, low: float = 0, high: float = 100) -> float:
    return max(low, min(high, value))


class RiskScorer:
    def __init__(
        self,
        rules: RuleSet,
        detectors: AnomalyDetectors,
        settings: Settings = default_settings,
    ):
        self.rules = rules
        self.detectors = detectors
        self.settings = settings

    async def score(self, transaction: Transaction, observe_velocity: bool = True) -> RiskScore:
        """
        Compute the traditional RiskScore.

        ``observe_velocity=False`` reports velocity as skipped and leaves the
        counter store untouched (read-only replays).

        Raises
        ------
        ScoringError
            When anything other than an individual rule or anomaly check fails.
        """
        started = time.perf_counter()
        try:
            rule_score, factors = self.rules.evaluate(transaction)
            checks = await self._run_checks(transaction, observe_velocity)
        except ScoringError:
            raise
        except Exception as exc:
            logger.error(
                "Scoring failed merchant=%s customer=%s: %s",
                transaction.merchant_id, transaction.customer_email, exc,
                exc_info=True,
            )
            raise ScoringError(f"Failed to calculate risk score: {exc}") from exc

        total = rule_score
        factors = list(factors)
        for (_, weight, factor), check in zip(ANOMALY_WEIGHTS, checks):
            if check.triggered:
                total += weight
                factors.append(factor)

        score = int(_clamp(total))
        level = _classify_risk(score)

        Metrics.risk_levels_total.labels(level=level).inc()
        Metrics.risk_scores_distribution.observe(score)
        Metrics.scoring_duration_seconds.observe(time.perf_counter() - started)

        return RiskScore(
            score=score,
            level=level,
            factors=factors,
            recommendations=list(RECOMMENDATIONS[level]),
            checks={c.check: c.status for c in checks},
        )

    async def _run_checks(
        self, transaction: Transaction, observe_velocity: bool
    ) -> List[CheckResult]:
        if observe_velocity:
            velocity = self.detectors.check_velocity(
                transaction.customer_email, transaction.merchant_id
            )
        else:
            velocity = _skipped("velocity")

        results = await asyncio.gather(
            velocity,
            self.detectors.check_amount(transaction.merchant_id, transaction.amount),
            self.detectors.check_geographic(
                transaction.customer_email, transaction.ip_address
            ),
        )
        return list(results)

    # ======================================================================
    # Traditional-only decision
    # ======================================================================
    async def analyze_traditional(self, transaction: Transaction) -> FraudDetectionResult:
        risk = await self.score(transaction)
        s = self.settings

        if risk.score >= s.FRAUD_BLOCK_THRESHOLD:
            action, reason = "block", "High risk score detected"
        elif risk.score >= s.FRAUD_REVIEW_THRESHOLD:
            action, reason = "review", "Suspicious activity detected"
        elif risk.score >= s.FRAUD_FLAG_THRESHOLD:
            action, reason = "flag", "Moderate risk detected"
        else:
            action, reason = "allow", None

        return FraudDetectionResult(
            is_fraudulent=risk.score >= s.FRAUD_BLOCK_THRESHOLD,
            flagged=risk.score >= s.FRAUD_REVIEW_THRESHOLD,
            risk_score=risk,
            action=action,
            reason=reason,
        )


async def _skipped(check: str) -> CheckResult:
    return CheckResult(check=check, status=CheckStatus.SKIPPED)
