"""
TxnGuard — Fraud Detection Service (public operations surface)

One instance per process, built in the application lifespan and shared by
every request.  Owns the RuleSet; everything else is wired in.
"""

import logging
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional, Sequence, Union

from sqlalchemy.orm import sessionmaker

from txnguard.config import Settings, settings as default_settings
from txnguard.models.schemas import (
    AIFraudAnalysis,
    BatchAnalysisItem,
    EnhancedResult,
    FraudDetectionResult,
    FraudRule,
    FraudRuleCreate,
    FraudStatistics,
    OracleStatus,
    RiskScore,
    Transaction,
)
from txnguard.rules.registry import RuleSet
from txnguard.services.anomaly import AnomalyDetectors
from txnguard.services.decision import DecisionCombiner
from txnguard.services.history import SqlHistoricalDataSource, SqlVelocityStore
from txnguard.services.oracle import AIOracle, GroqFraudOracle
from txnguard.services.scorer import RiskScorer
from txnguard.services.statistics import StatisticsAggregator

logger = logging.getLogger("txnguard.service")


class FraudDetectionService:
    def __init__(
        self,
        rules: RuleSet,
        scorer: RiskScorer,
        combiner: DecisionCombiner,
        statistics: StatisticsAggregator,
        history: Optional[SqlHistoricalDataSource] = None,
        oracle: Optional[AIOracle] = None,
        settings: Settings = default_settings,
    ):
        self.rules = rules
        self.scorer = scorer
        self.combiner = combiner
        self.statistics = statistics
        self.history = history
        self.oracle = oracle
        self.settings = settings

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------
    async def analyze(self, transaction: Transaction) -> EnhancedResult:
        return await self.combiner.decide(transaction)

    async def analyze_traditional_only(self, transaction: Transaction) -> FraudDetectionResult:
        return await self.scorer.analyze_traditional(transaction)

    async def score(self, transaction: Transaction) -> RiskScore:
        return await self.scorer.score(transaction)

    async def batch_analyze(self, transactions: Sequence[Transaction]) -> List[BatchAnalysisItem]:
        return await self.combiner.batch_decide(transactions)

    async def batch_ai_analyze(self, transactions: Sequence[Transaction]) -> List[AIFraudAnalysis]:
        if self.oracle is None:
            return []
        return await self.oracle.batch_analyze(transactions)

    async def record_transaction(
        self, transaction: Transaction, risk: Optional[RiskScore] = None
    ) -> str:
        if self.history is None:
            raise RuntimeError("No historical data source configured")
        return await self.history.record(transaction, risk)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------
    async def get_statistics(
        self,
        merchant_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> FraudStatistics:
        return await self.statistics.aggregate(merchant_id, start, end)

    async def get_oracle_status(self) -> OracleStatus:
        if self.oracle is None:
            return OracleStatus(
                available=False,
                model=self.settings.AI_MODEL,
                credential_configured=bool(self.settings.GROQ_API_KEY),
                last_checked=datetime.now(timezone.utc),
            )
        return await self.oracle.status()

    # ------------------------------------------------------------------
    # Rule management
    # ------------------------------------------------------------------
    def add_rule(self, rule: Union[FraudRule, FraudRuleCreate, Mapping[str, Any]]) -> bool:
        return self.rules.add(rule)

    def create_rule(
        self, rule: Union[FraudRule, FraudRuleCreate, Mapping[str, Any]]
    ) -> Optional[FraudRule]:
        return self.rules.create(rule)

    def update_rule(self, rule_id: str, updates: Mapping[str, Any]) -> bool:
        return self.rules.update(rule_id, updates)

    def remove_rule(self, rule_id: str) -> bool:
        return self.rules.remove(rule_id)

    def toggle_rule(self, rule_id: str, enabled: bool) -> bool:
        return self.rules.toggle(rule_id, enabled)

    def list_rules(self) -> List[FraudRule]:
        return self.rules.list_all()

    async def aclose(self) -> None:
        if self.oracle is not None:
            await self.oracle.aclose()


# ===========================================================================
# Wiring
# ===========================================================================
def build_service(
    settings: Settings = default_settings,
    session_factory: Optional[sessionmaker] = None,
    oracle: Optional[AIOracle] = None,
    rules: Optional[RuleSet] = None,
) -> FraudDetectionService:
    """
    Assemble the default object graph over the SQL stores.

    The Groq client is only created when AI analysis is enabled and no
    oracle was injected.
    """
    if session_factory is None:
        from txnguard.services.db import AsyncSessionLocal
        session_factory = AsyncSessionLocal

    if oracle is None and settings.AI_FRAUD_ANALYSIS_ENABLED:
        oracle = GroqFraudOracle(settings)

    history = SqlHistoricalDataSource(session_factory)
    rules = rules if rules is not None else RuleSet()
    detectors = AnomalyDetectors(history, SqlVelocityStore(session_factory), settings)
    scorer = RiskScorer(rules, detectors, settings)

    logger.info(
        "Fraud detection service ready rules=%d ai_enabled=%s model=%s",
        len(rules), settings.AI_FRAUD_ANALYSIS_ENABLED, settings.AI_MODEL,
    )
    return FraudDetectionService(
        rules=rules,
        scorer=scorer,
        combiner=DecisionCombiner(scorer, oracle, settings),
        statistics=StatisticsAggregator(history, scorer, settings),
        history=history,
        oracle=oracle,
        settings=settings,
    )
