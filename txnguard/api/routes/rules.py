"""
TxnGuard — Fraud Rules API
GET    /api/v1/rules/                  → list rules in evaluation order
POST   /api/v1/rules/                  → add a rule (id generated when omitted)
PATCH  /api/v1/rules/{rule_id}         → partial update
POST   /api/v1/rules/{rule_id}/toggle  → enable / disable
DELETE /api/v1/rules/{rule_id}         → remove

Rules live in the service's in-memory RuleSet; changes apply to the next
scoring call and do not survive a restart.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from txnguard.api.deps import get_fraud_service
from txnguard.models.schemas import FraudRule, FraudRuleCreate, FraudRuleUpdate, RuleToggle
from txnguard.services.fraud_service import FraudDetectionService

logger = logging.getLogger("txnguard.api.rules")
router = APIRouter()


# ===========================================================================
# GET  /api/v1/rules/
# ===========================================================================
@router.get(
    "/",
    response_model=List[FraudRule],
    summary="List All Fraud Rules",
)
async def list_rules(
    enabled_only: bool = False,
    service: FraudDetectionService = Depends(get_fraud_service),
):
    rules = service.list_rules()
    if enabled_only:
        rules = [r for r in rules if r.enabled]
    return rules


# ===========================================================================
# POST  /api/v1/rules/
# ===========================================================================
@router.post(
    "/",
    status_code=status.HTTP_201_CREATED,
    response_model=FraudRule,
    summary="Add a Fraud Rule",
)
async def create_rule(
    body: FraudRuleCreate,
    service: FraudDetectionService = Depends(get_fraud_service),
):
    created = service.create_rule(body)
    if created is None:
        detail = (
            f"Rule id '{body.id}' already exists." if body.id else "Rule could not be added."
        )
        raise HTTPException(status_code=409, detail=detail)

    logger.info("Rule created: id=%s weight=%d", created.id, created.weight)
    return created


# ===========================================================================
# PATCH /api/v1/rules/{rule_id}
# ===========================================================================
@router.patch(
    "/{rule_id}",
    response_model=FraudRule,
    summary="Partial-Update a Fraud Rule",
)
async def patch_rule(
    rule_id: str,
    body: FraudRuleUpdate,
    service: FraudDetectionService = Depends(get_fraud_service),
):
    _require_rule(service, rule_id)
    updates = body.model_dump(exclude_unset=True)
    if not service.update_rule(rule_id, updates):
        raise HTTPException(status_code=422, detail=f"Update rejected for rule {rule_id}.")
    return _require_rule(service, rule_id)


# ===========================================================================
# POST  /api/v1/rules/{rule_id}/toggle
# ===========================================================================
@router.post(
    "/{rule_id}/toggle",
    response_model=FraudRule,
    summary="Enable or Disable a Fraud Rule",
)
async def toggle_rule(
    rule_id: str,
    body: RuleToggle,
    service: FraudDetectionService = Depends(get_fraud_service),
):
    if not service.toggle_rule(rule_id, body.enabled):
        raise HTTPException(status_code=404, detail=f"Rule {rule_id} not found.")
    logger.info("Rule toggled: id=%s enabled=%s", rule_id, body.enabled)
    return _require_rule(service, rule_id)


# ===========================================================================
# DELETE /api/v1/rules/{rule_id}
# ===========================================================================
@router.delete(
    "/{rule_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove a Fraud Rule",
)
async def delete_rule(
    rule_id: str,
    service: FraudDetectionService = Depends(get_fraud_service),
):
    if not service.remove_rule(rule_id):
        raise HTTPException(status_code=404, detail=f"Rule {rule_id} not found.")


# ===========================================================================
# Helper
# ===========================================================================
def _require_rule(service: FraudDetectionService, rule_id: str) -> FraudRule:
    rule = service.rules.get(rule_id)
    if rule is None:
        raise HTTPException(status_code=404, detail=f"Rule {rule_id} not found.")
    return rule
