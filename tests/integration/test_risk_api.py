"""Integration tests for the risk HTTP API."""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from src.domains.risk.orchestrator import RiskEngine, get_engine
from src.main import app
from tests.conftest import FakeClock, override_get_engine, payment_payload, refund_payload

pytestmark = pytest.mark.integration


@pytest.fixture
def api_engine():
    engine = RiskEngine(clock=FakeClock())
    app.dependency_overrides[get_engine] = override_get_engine(engine)
    yield engine
    app.dependency_overrides.pop(get_engine, None)


@pytest_asyncio.fixture
async def client(api_engine):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def _held_payment(client) -> dict:
    response = await client.post(
        "/api/v1/risk/payments",
        json=payment_payload(actor_role="customer_support", customer_id=None, amount=15_000_000),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["decision"] == "pending"
    return body


class TestDecisionEndpoints:
    @pytest.mark.asyncio
    async def test_payment_approved(self, client):
        response = await client.post("/api/v1/risk/payments", json=payment_payload())
        assert response.status_code == 200
        data = response.json()
        assert data["decision"] == "approve"
        assert data["assessment"]["score"] == 0
        assert len(data["audit_entry_ids"]) == 1
        assert data["security"]["tenant_id"] == "store-1"
        assert "X-Request-ID" in response.headers

    @pytest.mark.asyncio
    async def test_refund_validation_error(self, client):
        response = await client.post(
            "/api/v1/risk/refunds", json=refund_payload(subject_id="not-a-payment")
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_refund_forbidden(self, client):
        response = await client.post(
            "/api/v1/risk/refunds", json=refund_payload(customer_id="cust-2")
        )
        assert response.status_code == 403
        data = response.json()
        assert data["error"] == "forbidden"
        assert "request_id" in data

    @pytest.mark.asyncio
    async def test_denied_payment_is_not_an_error(self, client):
        response = await client.post(
            "/api/v1/risk/payments",
            json=payment_payload(amount=15_000_000, user_agent="scraper bot 1.0"),
        )
        assert response.status_code == 200
        assert response.json()["decision"] == "deny"


class TestApprovalEndpoints:
    @pytest.mark.asyncio
    async def test_list_and_approve(self, client):
        held = await _held_payment(client)

        listing = await client.get("/api/v1/risk/approvals", params={"tenant_id": "store-1"})
        assert listing.status_code == 200
        assert listing.json()["total"] == 1

        detail = await client.get(f"/api/v1/risk/approvals/{held['approval_id']}")
        assert detail.json()["status"] == "pending"

        response = await client.post(
            f"/api/v1/risk/approvals/{held['approval_id']}/approve",
            json={"approver_id": "root-1", "approver_role": "super_admin"},
        )
        assert response.status_code == 200
        assert response.json()["approved"] is True

        again = await client.post(
            f"/api/v1/risk/approvals/{held['approval_id']}/approve",
            json={"approver_id": "root-1", "approver_role": "super_admin"},
        )
        assert again.status_code == 409

    @pytest.mark.asyncio
    async def test_approve_insufficient_tier(self, client):
        held = await _held_payment(client)
        response = await client.post(
            f"/api/v1/risk/approvals/{held['approval_id']}/approve",
            json={"approver_id": "adm-1", "approver_role": "admin"},
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_unknown_approval(self, client):
        response = await client.post(
            "/api/v1/risk/approvals/approval_missing/deny",
            json={"approver_id": "adm-1", "approver_role": "admin"},
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_deny(self, client):
        held = await _held_payment(client)
        response = await client.post(
            f"/api/v1/risk/approvals/{held['approval_id']}/deny",
            json={"approver_id": "root-1", "approver_role": "super_admin", "note": "no"},
        )
        assert response.status_code == 200
        assert response.json()["status"] == "denied"


class TestAuditAndInputs:
    @pytest.mark.asyncio
    async def test_audit_query_and_metrics(self, client):
        await client.post("/api/v1/risk/payments", json=payment_payload())
        await _held_payment(client)

        audit = await client.get(
            "/api/v1/risk/audit", params={"tenant_id": "store-1", "event": "approval_requested"}
        )
        assert audit.status_code == 200
        assert audit.json()["total"] == 1

        metrics = await client.get("/api/v1/risk/metrics", params={"tenant_id": "store-1"})
        data = metrics.json()
        assert data["payment_requests"] == 2
        assert data["pending_approvals"] == 1

    @pytest.mark.asyncio
    async def test_chargeback_inputs(self, client):
        response = await client.put(
            "/api/v1/risk/chargeback-risk/pi_order_1001",
            json={"risk_score": 75, "factors": ["disputed_before"]},
        )
        assert response.status_code == 200
        assert response.json()["risk_score"] == 75

        reported = await client.post(
            "/api/v1/risk/chargebacks",
            json={"tenant_id": "store-1", "actor_id": "cust-1", "subject_id": "pi_order_1001"},
        )
        assert reported.status_code == 201
        assert reported.json()["recorded"] is True

    @pytest.mark.asyncio
    async def test_blocklist(self, client, api_engine):
        response = await client.post("/api/v1/risk/blocklist/198.51.100.7")
        assert response.json()["blocked"] is True
        assert "198.51.100.7" in api_engine.blocklist

        response = await client.delete("/api/v1/risk/blocklist/198.51.100.7")
        assert response.json()["blocked"] is False
        assert "198.51.100.7" not in api_engine.blocklist
