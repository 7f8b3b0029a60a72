"""
TxnGuard — AI Fraud Oracle (Groq / OpenAI-compatible chat completions)

    analyze(txn)          → AIFraudAnalysis, or OracleError
    batch_analyze(txns)   → one AIFraudAnalysis per input (placeholders on failure)
    status()              → OracleStatus  (never raises)

No retries: the decision combiner treats a failed call as "no AI opinion".
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx

from txnguard.config import Settings, settings as default_settings
from txnguard.models.schemas import AIFraudAnalysis, OracleStatus, Transaction
from txnguard.services.batching import run_in_windows
from txnguard.services.errors import OracleError
from txnguard.services.observability import Metrics
from txnguard.services.oracle_parser import (
    SYSTEM_PROMPT, build_fraud_analysis_prompt, parse_ai_response,
)

logger = logging.getLogger("txnguard.oracle")


class AIOracle(Protocol):
    async def analyze(self, transaction: Transaction) -> AIFraudAnalysis:
        ...

    async def batch_analyze(self, transactions: Sequence[Transaction]) -> List[AIFraudAnalysis]:
        ...

    async def status(self) -> OracleStatus:
        ...

    async def aclose(self) -> None:
        ...


def batch_failure_placeholder(model: str) -> AIFraudAnalysis:
    return AIFraudAnalysis(
        is_fraudulent=False,
        confidence=0.0,
        reasoning="Batch analysis failed",
        risk_factors=["Analysis unavailable"],
        recommendations=["Manual review required"],
        ai_model=model,
        analysis_time_ms=0,
    )


class GroqFraudOracle:
    def __init__(
        self,
        settings: Settings = default_settings,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient()

    @property
    def model(self) -> str:
        return self.settings.AI_MODEL

    @property
    def credential_configured(self) -> bool:
        return bool(self.settings.GROQ_API_KEY)

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.settings.GROQ_API_KEY}",
        }

    # ======================================================================
    # Single analysis
    # ======================================================================
    async def analyze(self, transaction: Transaction) -> AIFraudAnalysis:
        """
        Ask the model for a fraud opinion on *transaction*.

        Raises
        ------
        OracleError
            Disabled, no credential, transport/HTTP failure, timeout, or an
            empty completion.
        """
        if not self.settings.AI_FRAUD_ANALYSIS_ENABLED:
            raise OracleError("AI fraud analysis is disabled")
        if not self.credential_configured:
            raise OracleError("Groq API key is not configured")

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_fraud_analysis_prompt(transaction)},
            ],
            "temperature": 0.1,
            "max_tokens": 1000,
            "top_p": 0.9,
        }

        started = time.perf_counter()
        try:
            resp = await self._client.post(
                self.settings.GROQ_API_URL,
                json=payload,
                headers=self._headers(),
                timeout=self.settings.AI_ANALYSIS_TIMEOUT_SECONDS,
            )
            resp.raise_for_status()
            content = _completion_text(resp.json())
        except httpx.TimeoutException as exc:
            Metrics.oracle_calls_total.labels(outcome="timeout").inc()
            raise OracleError(f"AI analysis timed out: {exc}") from exc
        except (httpx.HTTPError, ValueError) as exc:
            Metrics.oracle_calls_total.labels(outcome="error").inc()
            raise OracleError(f"AI analysis request failed: {exc}") from exc
        finally:
            Metrics.oracle_call_duration_seconds.observe(time.perf_counter() - started)

        if not content:
            Metrics.oracle_calls_total.labels(outcome="error").inc()
            raise OracleError("No response from AI model")

        analysis = parse_ai_response(content, self.model)
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        analysis = analysis.model_copy(
            update={"analysis_time_ms": elapsed_ms, "ai_model": self.model}
        )
        Metrics.oracle_calls_total.labels(outcome="success").inc()

        logger.info(
            "AI fraud analysis completed txn=%s confidence=%.2f fraudulent=%s time_ms=%d",
            transaction.id, analysis.confidence, analysis.is_fraudulent, elapsed_ms,
        )
        return analysis

    # ======================================================================
    # Batch analysis
    # ======================================================================
    async def batch_analyze(self, transactions: Sequence[Transaction]) -> List[AIFraudAnalysis]:
        outcomes = await run_in_windows(
            transactions,
            self.analyze,
            size=self.settings.AI_BATCH_SIZE,
            pause_seconds=self.settings.AI_BATCH_PAUSE_SECONDS,
        )
        return [
            batch_failure_placeholder(self.model) if isinstance(o, BaseException) else o
            for o in outcomes
        ]

    # ======================================================================
    # Status probe
    # ======================================================================
    async def status(self) -> OracleStatus:
        if not self.credential_configured:
            return OracleStatus(
                available=False,
                model=self.model,
                credential_configured=False,
                last_checked=datetime.now(timezone.utc),
            )

        try:
            resp = await self._client.post(
                self.settings.GROQ_API_URL,
                json={
                    "model": self.model,
                    "messages": [{"role": "user", "content": "test"}],
                    "max_tokens": 1,
                },
                headers=self._headers(),
                timeout=self.settings.AI_STATUS_TIMEOUT_SECONDS,
            )
            available = resp.status_code == 200
        except httpx.HTTPError as exc:
            logger.error("AI model status check failed: %s", exc)
            available = False

        return OracleStatus(
            available=available,
            model=self.model,
            credential_configured=True,
            last_checked=datetime.now(timezone.utc),
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def _completion_text(body: Any) -> Optional[str]:
    """``choices[0].message.content`` or None when the shape is off."""
    try:
        return body["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        return None
