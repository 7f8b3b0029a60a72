"""
TxnGuard — Demo Script
Analyses a handful of sample transactions end-to-end, records them, prints
merchant statistics and shows rule management.

Usage:
    python -m txnguard.demo
    python -m txnguard.demo --database-url sqlite+aiosqlite:///./demo.db --no-ai
"""

import argparse
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import List

from txnguard.config import settings
from txnguard.models.schemas import Transaction
from txnguard.rules.engine import register_condition
from txnguard.services.db import build_engine, build_session_factory, init_db
from txnguard.services.fraud_service import FraudDetectionService, build_service
from txnguard.services.observability import setup_logging

logger = logging.getLogger("txnguard.demo")


def sample_transactions(now: datetime) -> List[Transaction]:
    return [
        Transaction(
            amount=50_000,
            customer_email="john.doe@example.com",
            merchant_id="merchant_001",
            ip_address="192.168.1.100",
            created_at=now,
            description="Regular purchase",
        ),
        Transaction(
            amount=1_500_000,
            customer_email="jane.smith@example.com",
            merchant_id="merchant_001",
            ip_address="192.168.1.101",
            created_at=now,
            is_new_customer=True,
            description="Large purchase",
        ),
        Transaction(
            amount=25_000,
            customer_email="bob.wilson@example.com",
            merchant_id="merchant_002",
            ip_address="192.168.1.102",
            created_at=now - timedelta(hours=2),
            payment_method="bank_transfer",
            description="Late night purchase",
        ),
        Transaction(
            amount=100_000,
            customer_email="alice.brown@example.com",
            merchant_id="merchant_001",
            ip_address="192.168.1.103",
            created_at=now,
            payment_method="wallet",
            description="Normal purchase",
        ),
    ]


def _weekend_high_amount(transaction: Transaction) -> bool:
    return transaction.created_at.weekday() >= 5 and transaction.amount > 200_000


async def run_demo(service: FraudDetectionService) -> None:
    status = await service.get_oracle_status()
    print("\nAI Model Status")
    print(f"   Model: {status.model}")
    print(f"   Available: {'Yes' if status.available else 'No'}")
    print(f"   API Key: {'Configured' if status.credential_configured else 'Missing'}")

    print("\nAnalysing sample transactions\n" + "=" * 80)
    for i, txn in enumerate(sample_transactions(datetime.now(timezone.utc)), start=1):
        print(f"Transaction {i}: ₦{txn.amount:,.0f} {txn.customer_email} @ {txn.merchant_id}")
        result = await service.analyze(txn)
        await service.record_transaction(txn, result.risk_score)

        print(f"   Traditional Score: {result.risk_score.score}/100")
        print(f"   Combined Score:    {result.combined_risk_score}/100")
        print(f"   Risk Level:        {result.risk_score.level.upper()}")
        print(f"   Action:            {result.action.upper()} ({result.reason})")
        print(f"   AI Enhanced:       {'Yes' if result.ai_enhanced else 'No'}")
        if result.risk_score.factors:
            print(f"   Risk Factors:      {', '.join(result.risk_score.factors)}")
        for rec in result.risk_score.recommendations:
            print(f"     • {rec}")
        if result.ai_analysis:
            print(f"   AI Confidence:     {result.ai_analysis.confidence * 100:.1f}%")
            print(f"   AI Reasoning:      {result.ai_analysis.reasoning[:200]}")
        print("-" * 80)

    stats = await service.get_statistics("merchant_001")
    print("\nMerchant Statistics (merchant_001)")
    print(f"   Total Transactions:   {stats.total_transactions}")
    print(f"   Flagged Transactions: {stats.flagged_transactions}")
    print(f"   Blocked Transactions: {stats.blocked_transactions}")
    print(f"   Fraud Rate:           {stats.fraud_rate:.2f}%")
    print(f"   Average Risk Score:   {stats.average_risk_score:.2f}")
    for n, item in enumerate(stats.top_risk_factors, start=1):
        print(f"     {n}. {item.factor} ({item.count} occurrences)")

    rules = service.list_rules()
    print(f"\nFraud Rules ({len(rules)})")
    for n, rule in enumerate(rules, start=1):
        print(f"   {n}. {rule.name} (Weight: {rule.weight}, Enabled: {rule.enabled})")

    register_condition("weekend_high_amount", _weekend_high_amount)
    added = service.add_rule({
        "name": "Weekend High Amount",
        "description": "High amount transactions on weekends",
        "weight": 15,
        "condition": {"callback": "weekend_high_amount"},
    })
    print(f"\nCustom rule added: {'Success' if added else 'Failed'}")


async def main(database_url: str, ai_enabled: bool) -> None:
    setup_logging()
    logger.info("Demo run starting ai_enabled=%s", ai_enabled)
    cfg = settings.model_copy(update={"AI_FRAUD_ANALYSIS_ENABLED": ai_enabled})
    engine = build_engine(database_url)
    await init_db(engine)
    service = build_service(cfg, build_session_factory(engine))
    try:
        await run_demo(service)
    finally:
        await service.aclose()
        await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="TxnGuard demo run")
    parser.add_argument("--database-url", default=settings.DATABASE_URL)
    parser.add_argument("--no-ai", action="store_true", help="skip the AI oracle")
    args = parser.parse_args()
    asyncio.run(main(args.database_url, ai_enabled=not args.no_ai))
