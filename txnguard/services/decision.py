"""
TxnGuard — Decision Combiner

Blends the traditional score T with an optional AI opinion (confidence c):

    combined = round(clamp(0.7·T + 0.3·(100·c), 0, 100))      AI opinion present
    combined = T                                               otherwise

Action
------
1. AI says fraud with c ≥ AI_CONFIDENCE_THRESHOLD:
       combined ≥ BLOCK → block, ≥ REVIEW → review, else flag (never allow)
2. Otherwise the plain ladder on combined:
       ≥ BLOCK → block, ≥ REVIEW → review, ≥ FLAG → flag, else allow

The oracle call is issued alongside traditional scoring.  Scoring failures
propagate (and cancel the oracle call); oracle failures only mean
``ai_enhanced=False``.
"""

import asyncio
import logging
import math
import time
from typing import List, Optional, Sequence, Tuple

from txnguard.config import Settings, settings as default_settings
from txnguard.models.schemas import (
    Action, AIFraudAnalysis, BatchAnalysisItem, EnhancedResult, Transaction,
)
from txnguard.services.batching import run_in_windows
from txnguard.services.observability import log_transaction_analyzed
from txnguard.services.oracle import AIOracle
from txnguard.services.scorer import RiskScorer

logger = logging.getLogger("txnguard.decision")

TRADITIONAL_WEIGHT = 0.7
AI_WEIGHT = 0.3


# ===========================================================================
# Pure combination helpers
# ===========================================================================
def combine_risk_scores(traditional: int, ai: Optional[AIFraudAnalysis]) -> int:
    if ai is None:
        return traditional
    raw = traditional * TRADITIONAL_WEIGHT + ai.confidence * 100 * AI_WEIGHT
    # half-up, not banker's rounding
    return int(math.floor(max(0.0, min(100.0, raw)) + 0.5))


def determine_final_action(
    combined: int,
    ai: Optional[AIFraudAnalysis],
    settings: Settings = default_settings,
) -> Tuple[Action, str]:
    if ai is not None and ai.is_fraudulent and ai.confidence >= settings.AI_CONFIDENCE_THRESHOLD:
        if combined >= settings.FRAUD_BLOCK_THRESHOLD:
            return "block", "AI detected high-confidence fraud"
        if combined >= settings.FRAUD_REVIEW_THRESHOLD:
            return "review", "AI detected suspicious activity"
        return "flag", "AI detected potential risk"

    if combined >= settings.FRAUD_BLOCK_THRESHOLD:
        return "block", "High combined risk score"
    if combined >= settings.FRAUD_REVIEW_THRESHOLD:
        return "review", "Elevated risk detected"
    if combined >= settings.FRAUD_FLAG_THRESHOLD:
        return "flag", "Moderate risk detected"
    return "allow", "Low risk transaction"


def _merge_ai_entries(traditional: Sequence[str], ai_entries: Sequence[str]) -> List[str]:
    merged = list(traditional)
    for entry in ai_entries:
        needle = entry.lower()
        if not any(needle in existing.lower() for existing in merged):
            merged.append(f"AI: {entry}")
    return list(dict.fromkeys(merged))


def combine_risk_factors(traditional: Sequence[str], ai_factors: Sequence[str]) -> List[str]:
    return _merge_ai_entries(traditional, ai_factors)


def combine_recommendations(traditional: Sequence[str], ai_recommendations: Sequence[str]) -> List[str]:
    return _merge_ai_entries(traditional, ai_recommendations)


# ===========================================================================
# Combiner
# ===========================================================================
class DecisionCombiner:
    def __init__(
        self,
        scorer: RiskScorer,
        oracle: Optional[AIOracle] = None,
        settings: Settings = default_settings,
    ):
        self.scorer = scorer
        self.oracle = oracle
        self.settings = settings

    @property
    def ai_active(self) -> bool:
        return self.settings.AI_FRAUD_ANALYSIS_ENABLED and self.oracle is not None

    async def _ai_opinion(self, transaction: Transaction) -> Optional[AIFraudAnalysis]:
        try:
            return await asyncio.wait_for(
                self.oracle.analyze(transaction),
                timeout=self.settings.AI_ANALYSIS_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "AI analysis timed out after %.1fs, using traditional analysis only txn=%s",
                self.settings.AI_ANALYSIS_TIMEOUT_SECONDS, transaction.id,
            )
        except Exception as exc:
            logger.warning(
                "AI analysis failed, using traditional analysis only txn=%s: %s",
                transaction.id, exc,
            )
        return None

    async def decide(self, transaction: Transaction) -> EnhancedResult:
        """
        Raises
        ------
        ScoringError
            Traditional scoring failed; no result is fabricated.
        """
        started = time.perf_counter()
        oracle_task: Optional[asyncio.Task] = None
        if self.ai_active:
            oracle_task = asyncio.ensure_future(self._ai_opinion(transaction))

        try:
            risk = await self.scorer.score(transaction)
        except BaseException:
            if oracle_task is not None:
                oracle_task.cancel()
            raise

        ai = await oracle_task if oracle_task is not None else None

        combined = combine_risk_scores(risk.score, ai)
        action, reason = determine_final_action(combined, ai, self.settings)

        if ai is not None:
            risk = risk.model_copy(update={
                "factors": combine_risk_factors(risk.factors, ai.risk_factors),
                "recommendations": combine_recommendations(risk.recommendations, ai.recommendations),
            })

        result = EnhancedResult(
            is_fraudulent=action == "block",
            flagged=action in ("review", "block"),
            risk_score=risk,
            action=action,
            reason=reason,
            combined_risk_score=combined,
            ai_enhanced=ai is not None,
            ai_analysis=ai,
        )

        log_transaction_analyzed(
            transaction_id=transaction.id,
            action=action,
            traditional_score=risk.score,
            combined_score=combined,
            ai_enhanced=result.ai_enhanced,
            duration_ms=(time.perf_counter() - started) * 1000,
        )
        return result

    async def batch_decide(self, transactions: Sequence[Transaction]) -> List[BatchAnalysisItem]:
        outcomes = await run_in_windows(
            transactions,
            self.decide,
            size=self.settings.AI_BATCH_SIZE,
            pause_seconds=self.settings.AI_BATCH_PAUSE_SECONDS if self.ai_active else 0.0,
        )
        items: List[BatchAnalysisItem] = []
        for txn, outcome in zip(transactions, outcomes):
            if isinstance(outcome, BaseException):
                items.append(BatchAnalysisItem(transaction_id=txn.id, error=str(outcome) or type(outcome).__name__))
            else:
                items.append(BatchAnalysisItem(transaction_id=txn.id, result=outcome))
        return items
