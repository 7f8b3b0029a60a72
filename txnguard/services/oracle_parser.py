"""
TxnGuard — AI Oracle Prompt & Response Parsing

The model is asked for a JSON object.  Models do not always comply, so parsing
degrades to a keyword scan over the free text.  Nothing in here raises.
"""

import json
import logging
import re
from typing import Any, List

from txnguard.models.schemas import AIFraudAnalysis, Transaction

logger = logging.getLogger("txnguard.oracle.parser")

SYSTEM_PROMPT = (
    "You are an expert fraud detection analyst specializing in payment security "
    "and financial crime prevention. Analyze transactions for potential fraud "
    "patterns and provide detailed risk assessments."
)

_JSON_BLOCK = re.compile(r"\{[\s\S]*\}")
_CONFIDENCE = re.compile(r"(?:confidence|risk):?\s*(\d+(?:\.\d+)?)")

FRAUD_INDICATORS = ("fraud", "suspicious", "high risk", "block", "reject")

RISK_PATTERNS = (
    "unusual amount",
    "high amount",
    "suspicious timing",
    "new customer",
    "geographic anomaly",
    "velocity",
    "payment method",
    "behavioral",
)

RECOMMENDATION_PATTERNS = (
    "manual review",
    "additional verification",
    "monitor",
    "block",
    "flag",
    "investigate",
    "contact customer",
    "enhanced security",
)

MAX_REASONING_CHARS = 500


# ===========================================================================
# Prompt
# ===========================================================================
def build_fraud_analysis_prompt(transaction: Transaction) -> str:
    created = transaction.created_at
    return f"""
Analyze this payment transaction for potential fraud:

TRANSACTION DETAILS:
- Amount: {transaction.amount:,.2f} {transaction.currency or "NGN"}
- Customer Email: {transaction.customer_email}
- Merchant ID: {transaction.merchant_id}
- Payment Method: {transaction.payment_method or "card"}
- Transaction Time: {created.isoformat()} ({created.strftime("%A")}, {created.hour}:00)
- IP Address: {transaction.ip_address or "Unknown"}
- New Customer: {"Yes" if transaction.is_new_customer else "No"}
- Description: {transaction.description or "N/A"}

FRAUD ANALYSIS REQUIREMENTS:
1. Assess the transaction for common fraud patterns
2. Consider amount, timing, customer behavior, and payment method
3. Evaluate risk factors and provide confidence score (0.0-1.0)
4. Identify specific risk factors
5. Provide actionable recommendations

RESPONSE FORMAT (JSON):
{{
  "isFraudulent": boolean,
  "confidence": number (0.0-1.0),
  "reasoning": "detailed explanation",
  "riskFactors": ["factor1", "factor2"],
  "recommendations": ["recommendation1", "recommendation2"]
}}

Consider these fraud patterns:
- Unusual transaction amounts
- Suspicious timing (late night, weekends)
- New customer high-value transactions
- Geographic anomalies
- Payment method inconsistencies
- Velocity patterns
- Merchant-specific patterns
- Behavioral anomalies

Provide a thorough analysis focusing on the most relevant risk factors for this specific transaction.
"""


# ===========================================================================
# Parsing
# ===========================================================================
def _clamp_unit(value: float) -> float:
    return max(0.0, min(1.0, value))


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item is not None]


def parse_ai_response(text: str, model: str = "") -> AIFraudAnalysis:
    """
    Parse the first ``{...}`` block of *text*; fall back to
    :func:`parse_text_response` when there is none or it is not valid JSON.
    """
    match = _JSON_BLOCK.search(text)
    if match:
        try:
            parsed = json.loads(match.group(0))
            if not isinstance(parsed, dict):
                raise ValueError("JSON block is not an object")
            return AIFraudAnalysis(
                is_fraudulent=bool(parsed.get("isFraudulent", False)),
                confidence=_clamp_unit(_to_float(parsed.get("confidence"))),
                reasoning=str(parsed.get("reasoning") or "AI analysis completed"),
                risk_factors=_string_list(parsed.get("riskFactors")),
                recommendations=_string_list(parsed.get("recommendations")),
                ai_model=model,
            )
        except ValueError as exc:
            logger.warning("Failed to parse AI response as JSON: %s", exc)

    return parse_text_response(text, model)


def parse_text_response(text: str, model: str = "") -> AIFraudAnalysis:
    """Keyword scan for responses that carry no usable JSON."""
    lower = text.lower()

    match = _CONFIDENCE.search(lower)
    if match:
        confidence = float(match.group(1))
        # "confidence: 85" means 85 %
        if confidence > 1:
            confidence /= 100
        confidence = _clamp_unit(confidence)
    else:
        confidence = 0.5

    is_fraudulent = any(indicator in lower for indicator in FRAUD_INDICATORS)
    risk_factors = [p for p in RISK_PATTERNS if p in lower]
    recommendations = [p for p in RECOMMENDATION_PATTERNS if p in lower]

    return AIFraudAnalysis(
        is_fraudulent=is_fraudulent,
        confidence=confidence,
        reasoning=text[:MAX_REASONING_CHARS],
        risk_factors=risk_factors or ["AI analysis completed"],
        recommendations=recommendations or ["Review transaction manually"],
        ai_model=model,
    )
