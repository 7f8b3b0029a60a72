"""
TxnGuard — Integration Test Suite (SQL stores + HTTP API)
SQLite via aiosqlite, one database file per test.
Run:  pytest tests/ -v --tb=short
"""

import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from txnguard import demo
from txnguard.config import Settings, validate_settings
from txnguard.main import app
from txnguard.models.schemas import Transaction
from txnguard.rules.registry import RuleSet
from txnguard.services.db import build_engine, build_session_factory, get_db, init_db
from txnguard.services.fraud_service import build_service
from txnguard.services.history import SqlHistoricalDataSource, SqlVelocityStore
from txnguard.services.observability import StructuredLogFormatter

NOON = datetime(2024, 3, 6, 12, 0, tzinfo=timezone.utc)
TWO_AM = datetime(2024, 3, 6, 2, 0, tzinfo=timezone.utc)


def _settings(**overrides) -> Settings:
    values = dict(AI_FRAUD_ANALYSIS_ENABLED=False, AI_BATCH_PAUSE_SECONDS=0, GROQ_API_KEY="")
    values.update(overrides)
    return validate_settings(Settings(_env_file=None, **values))


def _make_transaction(**kwargs) -> Transaction:
    defaults = dict(
        amount=50_000,
        customer_email="john.doe@example.com",
        merchant_id="merchant_001",
        ip_address="192.168.1.100",
        created_at=NOON,
    )
    defaults.update(kwargs)
    return Transaction(**defaults)


# ===========================================================================
# Fixtures — file-backed SQLite so concurrent sessions are real connections
# ===========================================================================
@pytest_asyncio.fixture()
async def session_factory(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'txnguard_test.db'}")
    await init_db(engine)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest_asyncio.fixture()
async def service(session_factory):
    svc = build_service(_settings(), session_factory, rules=RuleSet())
    yield svc
    await svc.aclose()


@pytest_asyncio.fixture()
async def client(service, session_factory):
    async def _override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    app.state.fraud_service = service
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


def _payload(**kwargs) -> dict:
    body = dict(
        amount=50_000,
        customer_email="john.doe@example.com",
        merchant_id="merchant_001",
        ip_address="192.168.1.100",
        created_at=NOON.isoformat(),
    )
    body.update(kwargs)
    # None means "leave it to the server default"
    return {k: v for k, v in body.items() if v is not None}


# ===========================================================================
# ── Integration: SQL velocity store ─────────────────────────────────────────
# ===========================================================================
@pytest.mark.asyncio
class TestSqlVelocityStore:
    async def test_concurrent_observations_lose_no_updates(self, session_factory):
        store = SqlVelocityStore(session_factory)
        window = timedelta(hours=1)
        results = await asyncio.gather(*(store.observe("vel:m1:a@x.com", NOON, window) for _ in range(10)))
        assert sorted(count for count, _ in results) == list(range(1, 11))
        assert sum(1 for _, new_window in results if new_window) == 1

    async def test_expired_window_resets(self, session_factory):
        store = SqlVelocityStore(session_factory)
        window = timedelta(seconds=30)
        assert await store.observe("k", NOON, window) == (1, True)
        assert await store.observe("k", NOON + timedelta(seconds=10), window) == (2, False)
        assert await store.observe("k", NOON + timedelta(seconds=30), window) == (1, True)

    async def test_purge_expired(self, session_factory):
        store = SqlVelocityStore(session_factory)
        await store.observe("old", NOON, timedelta(seconds=1))
        await store.observe("live", NOON, timedelta(hours=1))
        assert await store.purge_expired(NOON + timedelta(minutes=1)) == 1
        assert await store.observe("live", NOON + timedelta(minutes=2), timedelta(hours=1)) == (2, False)


# ===========================================================================
# ── Integration: SQL historical data source ─────────────────────────────────
# ===========================================================================
@pytest.mark.asyncio
class TestSqlHistoricalDataSource:
    async def test_windowed_queries(self, session_factory):
        history = SqlHistoricalDataSource(session_factory)
        await history.record(_make_transaction(amount=100, status="success"))
        await history.record(_make_transaction(amount=200, status="success", ip_address="10.0.0.2"))
        await history.record(_make_transaction(amount=999, status="failed"))
        await history.record(_make_transaction(amount=300, status="success", created_at=NOON - timedelta(days=2)))
        await history.record(_make_transaction(amount=400, status="success", merchant_id="merchant_002"))

        since = NOON - timedelta(days=1)
        assert sorted(await history.merchant_amounts("merchant_001", since)) == [100.0, 200.0]
        locations = await history.customer_locations("JOHN.DOE@example.com", since)
        assert sorted(set(locations)) == ["10.0.0.2", "192.168.1.100"]

    async def test_merchant_transactions_date_range(self, session_factory):
        history = SqlHistoricalDataSource(session_factory)
        for days in (0, 1, 2):
            await history.record(_make_transaction(created_at=NOON - timedelta(days=days)))

        everything = await history.merchant_transactions("merchant_001")
        assert [t.created_at for t in everything] == [NOON - timedelta(days=d) for d in (2, 1, 0)]
        recent = await history.merchant_transactions("merchant_001", start=NOON - timedelta(days=1))
        assert len(recent) == 2
        bounded = await history.merchant_transactions(
            "merchant_001", start=NOON - timedelta(days=2), end=NOON - timedelta(days=1)
        )
        assert len(bounded) == 2

    async def test_record_keeps_score(self, session_factory, service):
        txn = _make_transaction(amount=1_500_000, is_new_customer=True)
        risk = await service.score(txn)
        record_id = await service.record_transaction(txn, risk)
        (stored,) = await SqlHistoricalDataSource(session_factory).merchant_transactions("merchant_001")
        assert stored.id == record_id
        assert stored.is_new_customer is True


# ===========================================================================
# ── Integration: API Endpoints ──────────────────────────────────────────────
# ===========================================================================
@pytest.mark.asyncio
class TestAnalysisAPI:
    async def test_new_customer_high_amount(self, client):
        resp = await client.post(
            "/api/v1/analysis/", json=_payload(amount=1_500_000, is_new_customer=True)
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["risk_score"]["score"] == 50
        assert body["risk_score"]["level"] == "medium"
        assert body["combined_risk_score"] == 50
        assert body["action"] == "review"
        assert body["ai_enhanced"] is False
        assert body["risk_score"]["checks"] == {
            "velocity": "clear", "amount": "clear", "geographic": "clear",
        }
        assert "X-Request-Id" in resp.headers

    async def test_traditional_two_am(self, client):
        resp = await client.post(
            "/api/v1/analysis/traditional", json=_payload(amount=25_000, created_at=TWO_AM.isoformat())
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["risk_score"]["score"] == 15
        assert body["risk_score"]["factors"] == ["Unusual Transaction Time"]
        assert body["action"] == "allow"

    async def test_score_endpoint(self, client):
        resp = await client.post("/api/v1/analysis/score", json=_payload(amount=2_000_000))
        assert resp.status_code == 200
        assert resp.json()["factors"] == ["High Transaction Amount"]

    async def test_invalid_transaction_rejected(self, client):
        resp = await client.post("/api/v1/analysis/", json=_payload(ip_address="not-an-ip"))
        assert resp.status_code == 422
        resp = await client.post("/api/v1/analysis/", json=_payload(amount=-1))
        assert resp.status_code == 422

    async def test_batch(self, client):
        resp = await client.post("/api/v1/analysis/batch", json={"transactions": [
            _payload(id="t1"), _payload(id="t2", amount=1_500_000, is_new_customer=True),
        ]})
        assert resp.status_code == 200
        items = resp.json()
        assert [i["transaction_id"] for i in items] == ["t1", "t2"]
        assert [i["result"]["action"] for i in items] == ["allow", "review"]
        assert all(i["error"] is None for i in items)

    async def test_velocity_breach_over_http(self, client, service):
        service.settings = service.settings.model_copy(update={"VELOCITY_MAX_ATTEMPTS": 2})
        service.scorer.detectors.settings = service.settings
        actions = []
        for _ in range(3):
            resp = await client.post("/api/v1/analysis/score", json=_payload())
            actions.append(resp.json()["checks"]["velocity"])
        assert actions == ["clear", "clear", "triggered"]


@pytest.mark.asyncio
class TestTransactionsAPI:
    async def test_record_then_statistics(self, client):
        resp = await client.post(
            "/api/v1/transactions/", json=_payload(amount=1_500_000, is_new_customer=True)
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["id"]
        assert body["analysis"]["action"] == "review"

        await client.post("/api/v1/transactions/", json=_payload(
            customer_email="bob.wilson@example.com", amount=25_000, created_at=TWO_AM.isoformat()
        ))

        stats = (await client.get("/api/v1/statistics/merchant_001")).json()
        assert stats["total_transactions"] == 2
        assert stats["flagged_transactions"] == 1
        assert stats["blocked_transactions"] == 0
        assert stats["fraud_rate"] == pytest.approx(50.0)
        assert stats["average_risk_score"] == pytest.approx(32.5)
        # replay runs in created_at order, so the 02:00 factor is sighted first
        assert stats["top_risk_factors"] == [
            {"factor": "Unusual Transaction Time", "count": 1},
            {"factor": "High Transaction Amount", "count": 1},
            {"factor": "New Customer High Amount", "count": 1},
        ]

    async def test_statistics_range(self, client):
        await client.post("/api/v1/transactions/", json=_payload())
        start = (NOON + timedelta(hours=1)).isoformat()
        resp = await client.get("/api/v1/statistics/merchant_001", params={"start": start})
        assert resp.status_code == 200
        assert resp.json()["total_transactions"] == 0

        resp = await client.get(
            "/api/v1/statistics/merchant_001",
            params={"start": start, "end": NOON.isoformat()},
        )
        assert resp.status_code == 422

    async def test_amount_anomaly_from_recorded_history(self, client):
        for n in range(3):
            resp = await client.post("/api/v1/transactions/", json=_payload(
                customer_email=f"buyer{n}@example.com", amount=1_000, status="success",
                created_at=None, ip_address=None,
            ))
            assert resp.status_code == 201

        resp = await client.post("/api/v1/analysis/score", json=_payload(
            customer_email="newbuyer@example.com", amount=10_000, created_at=None,
        ))
        body = resp.json()
        assert body["checks"]["amount"] == "triggered"
        assert "Amount anomaly detected" in body["factors"]


@pytest.mark.asyncio
class TestRulesAPI:
    async def test_list_default_rules(self, client):
        resp = await client.get("/api/v1/rules/")
        assert resp.status_code == 200
        assert len(resp.json()) == 6

    async def test_create_duplicate_patch_toggle_delete(self, client):
        rule = {
            "id": "wallet_high",
            "name": "Wallet High Amount",
            "weight": 10,
            "condition": {"and": [
                {"field": "payment_method", "operator": "eq", "target": "wallet"},
                {"field": "amount", "operator": "gt", "threshold": 100_000},
            ]},
        }
        resp = await client.post("/api/v1/rules/", json=rule)
        assert resp.status_code == 201
        assert resp.json()["id"] == "wallet_high"

        assert (await client.post("/api/v1/rules/", json=rule)).status_code == 409

        scored = await client.post("/api/v1/analysis/score", json=_payload(payment_method="wallet", amount=200_000))
        assert scored.json()["factors"] == ["Wallet High Amount"]

        resp = await client.patch("/api/v1/rules/wallet_high", json={"weight": 45})
        assert resp.status_code == 200
        assert resp.json()["weight"] == 45

        resp = await client.post("/api/v1/rules/wallet_high/toggle", json={"enabled": False})
        assert resp.status_code == 200
        assert resp.json()["enabled"] is False

        assert (await client.delete("/api/v1/rules/wallet_high")).status_code == 204
        assert (await client.delete("/api/v1/rules/wallet_high")).status_code == 404

    async def test_generated_id(self, client):
        resp = await client.post("/api/v1/rules/", json={
            "name": "Any card", "weight": 1,
            "condition": {"field": "payment_method", "operator": "eq", "target": "card"},
        })
        assert resp.status_code == 201
        assert resp.json()["id"].startswith("rule_")

    async def test_concurrent_creates_return_their_own_rule(self, client):
        names = [f"Concurrent {n}" for n in range(5)]
        responses = await asyncio.gather(*(
            client.post("/api/v1/rules/", json={
                "name": name, "weight": 1,
                "condition": {"field": "payment_method", "operator": "eq", "target": "card"},
            })
            for name in names
        ))
        assert [r.status_code for r in responses] == [201] * 5
        assert [r.json()["name"] for r in responses] == names
        assert len({r.json()["id"] for r in responses}) == 5

    async def test_unknown_rule_404(self, client):
        assert (await client.patch("/api/v1/rules/ghost", json={"weight": 5})).status_code == 404
        assert (await client.post("/api/v1/rules/ghost/toggle", json={"enabled": True})).status_code == 404


@pytest.mark.asyncio
class TestOracleAndHealthAPI:
    async def test_oracle_status_without_oracle(self, client):
        resp = await client.get("/api/v1/oracle/status")
        assert resp.status_code == 200
        body = resp.json()
        assert body["available"] is False
        assert body["credential_configured"] is False

    async def test_health_returns_200(self, client):
        resp = await client.get("/api/v1/health/")
        assert resp.status_code == 200
        body = resp.json()
        assert body["db"] == "healthy"
        assert body["oracle"] == "disabled"
        assert body["rules_loaded"] == 6
        assert body["status"] == "healthy"

    async def test_request_id_reaches_structured_logs(self, client, caplog):
        caplog.set_level(logging.INFO, logger="txnguard")
        caplog.handler.setFormatter(StructuredLogFormatter())
        resp = await client.get("/api/v1/rules/", headers={"X-Request-Id": "req-abc-123"})
        assert resp.headers["X-Request-Id"] == "req-abc-123"

        completed = [
            json.loads(line) for line in caplog.text.splitlines()
            if "HTTP request completed" in line
        ]
        assert completed
        assert completed[-1]["request_id"] == "req-abc-123"


# ===========================================================================
# ── Integration: Demo script ────────────────────────────────────────────────
# ===========================================================================
@pytest.mark.asyncio
class TestDemo:
    async def test_demo_runs_with_structured_logging(self, tmp_path, capsys):
        await demo.main(f"sqlite+aiosqlite:///{tmp_path / 'demo.db'}", ai_enabled=False)

        handlers = logging.getLogger().handlers
        assert any(isinstance(h.formatter, StructuredLogFormatter) for h in handlers)
        out = capsys.readouterr().out
        assert out.count("Traditional Score:") == 4
        assert "Merchant Statistics (merchant_001)" in out
        assert "Total Transactions:   3" in out
        assert "Custom rule added: Success" in out
