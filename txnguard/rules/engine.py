"""
TxnGuard — Fraud Rules Engine
Evaluates the in-memory rule list against an incoming transaction.

Each rule condition is a JSON tree built from a small closed set of node kinds:
leaf comparisons ('field' + 'operator'), 'and' / 'or' combinators, and a
'callback' node naming a Python predicate registered with
``register_condition``.  Adding a new operator only requires registering a
function in OPERATORS.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Sequence, Tuple

from txnguard.models.schemas import FraudRule, Transaction
from txnguard.services.errors import RuleEvaluationError

logger = logging.getLogger("txnguard.rules")


# ===========================================================================
# Operator registry
# Each operator receives (transaction_value, rule_params) and returns bool.
# ===========================================================================

def _op_gt(value: Any, params: Dict) -> bool:
    """Greater-than check."""
    return float(value) > float(params["threshold"])


def _op_gte(value: Any, params: Dict) -> bool:
    return float(value) >= float(params["threshold"])


def _op_lt(value: Any, params: Dict) -> bool:
    return float(value) < float(params["threshold"])


def _op_lte(value: Any, params: Dict) -> bool:
    return float(value) <= float(params["threshold"])


def _op_eq(value: Any, params: Dict) -> bool:
    return str(value) == str(params["target"])


def _op_neq(value: Any, params: Dict) -> bool:
    return str(value) != str(params["target"])


def _op_in(value: Any, params: Dict) -> bool:
    """Check if value is inside an allowed / disallowed list."""
    return str(value) in [str(v) for v in params["list"]]


def _op_not_in(value: Any, params: Dict) -> bool:
    return str(value) not in [str(v) for v in params["list"]]


def _op_contains(value: Any, params: Dict) -> bool:
    """String-contains."""
    return str(params["substring"]).lower() in str(value).lower()


def _op_is_true(value: Any, params: Dict) -> bool:
    return value is True


def _op_hour_outside(value: Any, params: Dict) -> bool:
    """Hour of a datetime strictly before 'start' or strictly after 'end'."""
    if not isinstance(value, datetime):
        raise TypeError(f"expected datetime, got {type(value).__name__}")
    return value.hour < int(params["start"]) or value.hour > int(params["end"])


OPERATORS: Dict[str, Callable[[Any, Dict], bool]] = {
    "gt":           _op_gt,
    "gte":          _op_gte,
    "lt":           _op_lt,
    "lte":          _op_lte,
    "eq":           _op_eq,
    "neq":          _op_neq,
    "in":           _op_in,
    "not_in":       _op_not_in,
    "contains":     _op_contains,
    "is_true":      _op_is_true,
    "hour_outside": _op_hour_outside,
}


# ===========================================================================
# Callback registry — custom predicates referenced by name from conditions
# ===========================================================================
CALLBACKS: Dict[str, Callable[[Transaction], bool]] = {}


def register_condition(name: str, fn: Callable[[Transaction], bool]) -> None:
    """Make *fn* available to rule conditions as ``{"callback": name}``."""
    CALLBACKS[name] = fn
    logger.info("Condition callback registered: %s", name)


# ===========================================================================
# Field extractor
# ===========================================================================

def _extract_field(txn: Transaction, field_path: str) -> Any:
    """
    Supports dot-notation for nested values.
    e.g. 'created_at.hour'  →  txn.created_at.hour
    """
    value: Any = txn
    for part in field_path.split("."):
        if isinstance(value, dict):
            value = value.get(part)
        else:
            value = getattr(value, part, None)
        if value is None:
            return None
    return value


# ===========================================================================
# Single-condition evaluator
# ===========================================================================
# Expected condition shape:
# {
#     "field": "amount",               ← dotted path on Transaction
#     "operator": "gt",                ← key in OPERATORS
#     "threshold": 1000000,            ← extra params fed to operator
# }
# or {"and": [...]}, {"or": [...]}, {"callback": "ip_reputation"}

def _evaluate_single(txn: Transaction, condition: Dict[str, Any], rule_id: str = "?") -> bool:
    """Recursively evaluate one condition node."""
    # --- AND / OR combinators ---------------------------------------------------
    if "and" in condition:
        return all(_evaluate_single(txn, sub, rule_id) for sub in condition["and"])
    if "or" in condition:
        return any(_evaluate_single(txn, sub, rule_id) for sub in condition["or"])

    # --- Registered callback ----------------------------------------------------
    if "callback" in condition:
        fn = CALLBACKS.get(condition["callback"])
        if fn is None:
            raise RuleEvaluationError(rule_id, f"unknown callback '{condition['callback']}'")
        try:
            return bool(fn(txn))
        except Exception as exc:
            raise RuleEvaluationError(rule_id, f"callback '{condition['callback']}' raised {exc!r}") from exc

    # --- Leaf comparison --------------------------------------------------------
    field = condition.get("field")
    operator = condition.get("operator")

    if not field or not operator:
        logger.warning("Malformed rule condition (missing field/operator): %s", condition)
        return False

    op_fn = OPERATORS.get(operator)
    if op_fn is None:
        logger.warning("Unknown operator '%s' — rule '%s' skipped.", operator, rule_id)
        return False

    value = _extract_field(txn, field)
    if value is None:
        logger.debug("Field '%s' is None on transaction — rule not triggered.", field)
        return False

    try:
        return op_fn(value, condition)
    except (TypeError, ValueError, KeyError) as exc:
        raise RuleEvaluationError(rule_id, f"operator '{operator}' on field '{field}': {exc}") from exc


# ===========================================================================
# Public API
# ===========================================================================

def evaluate_rules(
    transaction: Transaction,
    rules: Sequence[FraudRule],
) -> Tuple[int, List[str], Dict[str, Any]]:
    """
    Evaluate every enabled rule against *transaction*, in list order.

    Returns
    -------
    rule_score   : int    – sum of the weights of the rules that fired
    factors      : list   – names of the rules that fired, evaluation order
    explanation  : dict   – { rule_id: { "fired": bool, "weight": int, "name": str } }
    """
    total_weight = 0
    factors: List[str] = []
    explanation: Dict[str, Any] = {}

    for rule in rules:
        if not rule.enabled:
            continue
        try:
            fired = _evaluate_single(transaction, rule.condition, rule.id)
        except Exception as exc:
            # one broken rule must not abort the pass
            if not isinstance(exc, RuleEvaluationError):
                exc = RuleEvaluationError(rule.id, repr(exc))
            logger.warning("RuleEvaluationError (rule skipped): %s", exc)
            explanation[rule.id] = {"fired": False, "weight": rule.weight, "name": rule.name, "error": str(exc)}
            continue

        explanation[rule.id] = {
            "fired": fired,
            "weight": rule.weight,
            "name": rule.name,
        }
        if fired:
            factors.append(rule.name)
            total_weight += rule.weight
            logger.debug(
                "Rule '%s' TRIGGERED for txn=%s (weight=%d)",
                rule.id, transaction.id, rule.weight,
            )

    return total_weight, factors, explanation
