"""
TxnGuard — Built-in Fraud Rules
Seeded into every new RuleSet.  Ids, names and weights are part of the
external contract; do not change them.

Three rules (failed attempts, IP reputation, velocity-as-a-rule) point at
callbacks that always answer False until a real implementation is registered
under the same name.  Real velocity is handled by the dedicated detector.
"""

from txnguard.models.schemas import Transaction
from txnguard.rules.engine import register_condition


def _no_failed_attempt_tracking(transaction: Transaction) -> bool:
    return False


def _no_ip_reputation(transaction: Transaction) -> bool:
    return False


def _no_velocity_flag(transaction: Transaction) -> bool:
    return False


register_condition("failed_attempts", _no_failed_attempt_tracking)
register_condition("ip_reputation", _no_ip_reputation)
register_condition("velocity_flag", _no_velocity_flag)


# Each dict maps directly onto FraudRule fields.
DEFAULT_RULES = [
    # ---------------------------------------------------------------
    # 1. High-value single transaction (1M NGN)
    # ---------------------------------------------------------------
    {
        "id": "high_amount",
        "name": "High Transaction Amount",
        "description": "Transaction amount is unusually high",
        "weight": 20,
        "enabled": True,
        "condition": {
            "field": "amount",
            "operator": "gt",
            "threshold": 1_000_000,
        },
    },
    # ---------------------------------------------------------------
    # 2. Repeated failures from the same source (not tracked yet)
    # ---------------------------------------------------------------
    {
        "id": "multiple_failed_attempts",
        "name": "Multiple Failed Attempts",
        "description": "Multiple failed payment attempts from same source",
        "weight": 25,
        "enabled": True,
        "condition": {"callback": "failed_attempts"},
    },
    # ---------------------------------------------------------------
    # 3. Outside 06:00 – 23:59
    # ---------------------------------------------------------------
    {
        "id": "unusual_time",
        "name": "Unusual Transaction Time",
        "description": "Transaction at unusual hours",
        "weight": 15,
        "enabled": True,
        "condition": {
            "field": "created_at",
            "operator": "hour_outside",
            "start": 6,
            "end": 23,
        },
    },
    # ---------------------------------------------------------------
    # 4. First-time customer spending big
    # ---------------------------------------------------------------
    {
        "id": "new_customer_high_amount",
        "name": "New Customer High Amount",
        "description": "New customer with high transaction amount",
        "weight": 30,
        "enabled": True,
        "condition": {
            "and": [
                {"field": "amount", "operator": "gt", "threshold": 500_000},
                {"field": "is_new_customer", "operator": "is_true"},
            ],
        },
    },
    # ---------------------------------------------------------------
    # 5. IP reputation (no provider wired in)
    # ---------------------------------------------------------------
    {
        "id": "suspicious_ip",
        "name": "Suspicious IP Address",
        "description": "Transaction from suspicious IP address",
        "weight": 20,
        "enabled": True,
        "condition": {"callback": "ip_reputation"},
    },
    # ---------------------------------------------------------------
    # 6. Velocity as a static rule
    # ---------------------------------------------------------------
    {
        "id": "velocity_check",
        "name": "High Velocity Transactions",
        "description": "Too many transactions in short time",
        "weight": 25,
        "enabled": True,
        "condition": {"callback": "velocity_flag"},
    },
]
