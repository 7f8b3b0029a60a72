"""
TxnGuard — Merchant Fraud Statistics

Offline reporting: replays traditional scoring (no AI, velocity not observed)
over a merchant's stored transactions.  O(n) in the number of transactions.
"""

import logging
from collections import Counter
from datetime import datetime
from typing import Optional

from txnguard.config import Settings, settings as default_settings
from txnguard.models.schemas import FraudStatistics, RiskFactorCount
from txnguard.services.history import HistoricalDataSource
from txnguard.services.scorer import RiskScorer

logger = logging.getLogger("txnguard.statistics")

TOP_FACTORS = 10


class StatisticsAggregator:
    def __init__(
        self,
        history: HistoricalDataSource,
        scorer: RiskScorer,
        settings: Settings = default_settings,
    ):
        self.history = history
        self.scorer = scorer
        self.settings = settings

    async def aggregate(
        self,
        merchant_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> FraudStatistics:
        transactions = await self.history.merchant_transactions(merchant_id, start, end)

        flagged = 0
        blocked = 0
        score_sum = 0
        # Counter keeps insertion order, so most_common breaks ties by first sighting
        factor_counts: Counter = Counter()

        for txn in transactions:
            risk = await self.scorer.score(txn, observe_velocity=False)
            score_sum += risk.score
            if risk.score >= self.settings.FRAUD_REVIEW_THRESHOLD:
                flagged += 1
            if risk.score >= self.settings.FRAUD_BLOCK_THRESHOLD:
                blocked += 1
            factor_counts.update(risk.factors)

        total = len(transactions)
        logger.info(
            "Statistics computed merchant=%s total=%d flagged=%d blocked=%d",
            merchant_id, total, flagged, blocked,
        )
        return FraudStatistics(
            merchant_id=merchant_id,
            total_transactions=total,
            flagged_transactions=flagged,
            blocked_transactions=blocked,
            fraud_rate=(flagged / total * 100) if total else 0.0,
            average_risk_score=(score_sum / total) if total else 0.0,
            top_risk_factors=[
                RiskFactorCount(factor=f, count=c)
                for f, c in factor_counts.most_common(TOP_FACTORS)
            ],
        )
