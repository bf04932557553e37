"""Unit tests for the audit ledger."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from src.domains.risk.config import RiskConfig
from src.domains.risk.ledger import AuditLedger
from src.domains.risk.models import AuditEvent, AuditFilter
from src.domains.risk.notifications import NotificationPublisher
from src.domains.risk.storage import InMemoryLedgerStore


def _config(max_entries: int = 50_000) -> RiskConfig:
    config = RiskConfig()
    config.ledger.max_entries = max_entries
    return config


@pytest.fixture
def ledger(clock):
    return AuditLedger(config=_config(), clock=clock)


async def _record(ledger: AuditLedger, event=AuditEvent.REFUND_REQUESTED, **kwargs):
    fields = {
        "tenant_id": "store-1",
        "actor_id": "cust-1",
        "success": True,
        "fraud_score": 10,
    }
    fields.update(kwargs)
    return await ledger.record(event, **fields)


class TestRequiresNotification:
    @pytest.mark.parametrize(
        "event,success,score,amount,expected",
        [
            (AuditEvent.REFUND_REQUESTED, True, 10, 1_000, False),
            (AuditEvent.REFUND_REQUESTED, True, 70, 1_000, True),
            (AuditEvent.FRAUD_DETECTED, False, 0, None, True),
            (AuditEvent.APPROVAL_REQUESTED, True, 45, 100_000, False),
            (AuditEvent.APPROVAL_REQUESTED, True, 45, 100_001, True),
            (AuditEvent.REFUND_UNAUTHORIZED, False, 5, None, True),
            (AuditEvent.APPROVAL_DENIED, False, 0, None, False),
        ],
    )
    def test_rules(self, ledger, event, success, score, amount, expected):
        assert ledger.requires_notification(event, success, score, amount) is expected


class TestRecord:
    @pytest.mark.asyncio
    async def test_record_stamps_entry(self, ledger, clock):
        entry = await _record(ledger, subject_id="pi_1", amount=2_000)
        assert entry.id.startswith("audit_")
        assert entry.timestamp == clock.now
        assert entry.subject_id == "pi_1"
        assert await ledger.size() == 1

    @pytest.mark.asyncio
    async def test_store_failure_returns_none(self, clock):
        store = AsyncMock(spec=InMemoryLedgerStore)
        store.append.side_effect = RuntimeError("disk full")
        ledger = AuditLedger(store=store, config=_config(), clock=clock)
        assert await _record(ledger) is None

    @pytest.mark.asyncio
    async def test_invalid_entry_returns_none(self, ledger):
        assert await _record(ledger, fraud_score=250) is None
        assert await ledger.size() == 0

    @pytest.mark.asyncio
    async def test_fifo_eviction(self, clock):
        ledger = AuditLedger(config=_config(max_entries=3), clock=clock)
        for i in range(5):
            await _record(ledger, subject_id=f"pi_{i}")
        entries = await ledger.query()
        assert [e.subject_id for e in entries] == ["pi_2", "pi_3", "pi_4"]

    @pytest.mark.asyncio
    async def test_notification_published(self, clock):
        publisher = AsyncMock(spec=NotificationPublisher)
        ledger = AuditLedger(config=_config(), publisher=publisher, clock=clock)

        await _record(ledger, fraud_score=10)
        publisher.publish.assert_not_awaited()

        entry = await _record(ledger, event=AuditEvent.FRAUD_DETECTED, success=False)
        publisher.publish.assert_awaited_once_with(entry)


class TestQuery:
    @pytest.mark.asyncio
    async def test_filters(self, ledger, clock):
        await _record(ledger, ip_address="10.0.0.1", fraud_score=5)
        clock.advance(minutes=5)
        await _record(ledger, tenant_id="store-2", fraud_score=80)
        clock.advance(minutes=5)
        await _record(ledger, event=AuditEvent.PAYMENT_REQUESTED, customer_id="cust-9")

        assert len(await ledger.query(AuditFilter(tenant_id="store-1"))) == 2
        assert len(await ledger.query(AuditFilter(ip_address="10.0.0.1"))) == 1
        assert len(await ledger.query(AuditFilter(min_score=50))) == 1
        assert len(await ledger.query(AuditFilter(customer_id="cust-9"))) == 1
        assert len(await ledger.query(AuditFilter(event=AuditEvent.PAYMENT_REQUESTED))) == 1
        since = clock.now - timedelta(minutes=6)
        assert len(await ledger.query(AuditFilter(start_time=since))) == 2
        assert await ledger.count(AuditFilter(tenant_id="store-2")) == 1

    @pytest.mark.asyncio
    async def test_limit_returns_most_recent(self, ledger):
        for i in range(4):
            await _record(ledger, subject_id=f"pi_{i}")
        entries = await ledger.query(AuditFilter(limit=2))
        assert [e.subject_id for e in entries] == ["pi_2", "pi_3"]


class TestMetrics:
    @pytest.mark.asyncio
    async def test_trailing_window(self, ledger, clock):
        await _record(ledger, event=AuditEvent.PAYMENT_REQUESTED, fraud_score=90)
        clock.advance(hours=25)
        await _record(ledger, event=AuditEvent.PAYMENT_REQUESTED, fraud_score=20)
        await _record(ledger, event=AuditEvent.REFUND_REQUESTED, fraud_score=80, success=False)
        await _record(ledger, event=AuditEvent.FRAUD_DETECTED, fraud_score=80, success=False)
        await _record(ledger, event=AuditEvent.APPROVAL_GRANTED, fraud_score=0)

        metrics = await ledger.metrics(tenant_id="store-1", pending_approvals=2, blocked_origins=1)

        assert metrics.window_hours == 24
        assert metrics.payment_requests == 1
        assert metrics.refund_requests == 1
        assert metrics.total_requests == 2
        assert metrics.fraud_detections == 1
        assert metrics.approvals_granted == 1
        assert metrics.successful == 2
        assert metrics.failed == 2
        assert metrics.high_risk_count == 2
        assert metrics.average_score == 45.0
        assert metrics.pending_approvals == 2
        assert metrics.blocked_origins == 1

    @pytest.mark.asyncio
    async def test_empty_ledger(self, ledger):
        metrics = await ledger.metrics()
        assert metrics.total_requests == 0
        assert metrics.average_score == 0.0


class TestPurge:
    @pytest.mark.asyncio
    async def test_no_time_purge_by_default(self, ledger, clock):
        await _record(ledger, subject_id="pi_old")
        clock.advance(days=400)

        assert ledger.retention_window() is None
        assert await ledger.purge_expired() == 0
        assert await ledger.size() == 1

    @pytest.mark.asyncio
    async def test_purge_expired(self, clock):
        config = _config()
        config.ledger.retention_days = 45
        ledger = AuditLedger(config=config, clock=clock)
        await _record(ledger, subject_id="pi_old")
        clock.advance(days=45, seconds=1)
        await _record(ledger, subject_id="pi_new")

        removed = await ledger.purge_expired()

        assert removed == 1
        assert [e.subject_id for e in await ledger.query()] == ["pi_new"]

    def test_retention_floors_at_chargeback_history(self, clock):
        config = _config()
        config.ledger.retention_days = 7
        ledger = AuditLedger(config=config, clock=clock)
        assert ledger.retention_window() == timedelta(days=30)


class TestFirstSeen:
    @pytest.mark.asyncio
    async def test_earliest_matching_entry(self, ledger, clock):
        first = clock.now
        await _record(ledger, customer_id="cust-1")
        clock.advance(hours=3)
        await _record(ledger, customer_id="cust-1")
        await _record(ledger, customer_id="cust-2")

        assert await ledger.first_seen(AuditFilter(customer_id="cust-1")) == first
        assert await ledger.first_seen(AuditFilter(customer_id="cust-3")) is None
