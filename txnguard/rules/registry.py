"""
TxnGuard — Rule Registry
In-memory, ordered collection of fraud rules owned by one service instance.

Writers serialise on a lock and publish a fresh immutable tuple; readers just
take the current tuple, so a scoring call never sees a half-applied update.
"""

import logging
import threading
import uuid
from typing import Any, Iterable, List, Mapping, Optional, Tuple, Union

from pydantic import ValidationError

from txnguard.models.schemas import FraudRule, FraudRuleCreate, Transaction
from txnguard.rules.default_rules import DEFAULT_RULES
from txnguard.rules.engine import evaluate_rules

logger = logging.getLogger("txnguard.rules.registry")


class RuleSet:
    def __init__(self, rules: Optional[Iterable[Union[FraudRule, Mapping[str, Any]]]] = None):
        seed = DEFAULT_RULES if rules is None else rules
        self._rules: Tuple[FraudRule, ...] = tuple(
            r if isinstance(r, FraudRule) else FraudRule.model_validate(r) for r in seed
        )
        self._write_lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._rules)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------
    def evaluate(self, transaction: Transaction) -> Tuple[int, List[str]]:
        """Weighted sum of the enabled rules that fire, plus their names."""
        score, factors, _ = evaluate_rules(transaction, self._rules)
        return score, factors

    # ------------------------------------------------------------------
    # Management
    # ------------------------------------------------------------------
    def list_all(self) -> List[FraudRule]:
        return list(self._rules)

    def get(self, rule_id: str) -> Optional[FraudRule]:
        return next((r for r in self._rules if r.id == rule_id), None)

    def add(self, rule: Union[FraudRule, FraudRuleCreate, Mapping[str, Any]]) -> bool:
        return self.create(rule) is not None

    def create(
        self, rule: Union[FraudRule, FraudRuleCreate, Mapping[str, Any]]
    ) -> Optional[FraudRule]:
        """Validate and append *rule*; the stored rule, or None when rejected."""
        data = rule.model_dump() if hasattr(rule, "model_dump") else dict(rule)
        if not data.get("id"):
            data["id"] = f"rule_{uuid.uuid4().hex[:12]}"
        try:
            new_rule = FraudRule.model_validate(data)
        except ValidationError as exc:
            logger.warning("Fraud rule rejected: %s", exc)
            return None

        with self._write_lock:
            if any(r.id == new_rule.id for r in self._rules):
                logger.warning("Fraud rule id already exists: %s", new_rule.id)
                return None
            self._rules = self._rules + (new_rule,)

        logger.info("Fraud rule added: id=%s name=%s", new_rule.id, new_rule.name)
        return new_rule

    def update(self, rule_id: str, updates: Mapping[str, Any]) -> bool:
        changes = {k: v for k, v in updates.items() if k != "id"}
        with self._write_lock:
            for index, current in enumerate(self._rules):
                if current.id != rule_id:
                    continue
                try:
                    merged = FraudRule.model_validate({**current.model_dump(), **changes})
                except ValidationError as exc:
                    logger.warning("Fraud rule update rejected: id=%s %s", rule_id, exc)
                    return False
                self._rules = self._rules[:index] + (merged,) + self._rules[index + 1:]
                break
            else:
                return False

        logger.info("Fraud rule updated: id=%s fields=%s", rule_id, sorted(changes))
        return True

    def remove(self, rule_id: str) -> bool:
        with self._write_lock:
            remaining = tuple(r for r in self._rules if r.id != rule_id)
            if len(remaining) == len(self._rules):
                return False
            self._rules = remaining

        logger.info("Fraud rule removed: id=%s", rule_id)
        return True

    def toggle(self, rule_id: str, enabled: bool) -> bool:
        return self.update(rule_id, {"enabled": enabled})
