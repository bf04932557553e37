"""Append-only audit ledger with FIFO retention, filtered reads and metrics."""

import asyncio
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta

import structlog

from .config import RiskConfig, default_config
from .models import AuditEntry, AuditEvent, AuditFilter, SecurityMetrics
from .notifications import NotificationPublisher
from .storage import InMemoryLedgerStore, LedgerStore
from .velocity import utcnow

logger = structlog.get_logger()


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


class AuditLedger:
    """Single shared append target for every security-relevant event.

    Appends are serialized by one lock. Writes are best effort: a failing
    store is logged and the caller carries on with its decision.
    """

    def __init__(
        self,
        store: LedgerStore | None = None,
        config: RiskConfig | None = None,
        publisher: NotificationPublisher | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._config = config or default_config
        self._store = store or InMemoryLedgerStore(self._config.ledger.max_entries)
        self._publisher = publisher
        self._clock = clock
        self._lock = asyncio.Lock()

    @property
    def store(self) -> LedgerStore:
        return self._store

    def requires_notification(
        self,
        event: AuditEvent,
        success: bool,
        fraud_score: int,
        amount: int | None,
    ) -> bool:
        settings = self._config.ledger
        if fraud_score >= settings.high_risk_score:
            return True
        if event == AuditEvent.FRAUD_DETECTED:
            return True
        if (
            event == AuditEvent.APPROVAL_REQUESTED
            and amount is not None
            and amount > settings.notify_approval_amount
        ):
            return True
        return not success and fraud_score > 0

    def build_entry(
        self,
        event: AuditEvent,
        *,
        tenant_id: str,
        actor_id: str,
        success: bool,
        fraud_score: int,
        amount: int | None = None,
        **fields,
    ) -> AuditEntry:
        return AuditEntry(
            id=new_id("audit"),
            timestamp=self._clock(),
            event=event,
            tenant_id=tenant_id,
            actor_id=actor_id,
            success=success,
            fraud_score=fraud_score,
            amount=amount,
            requires_notification=self.requires_notification(
                event, success, fraud_score, amount
            ),
            **fields,
        )

    async def record(self, event: AuditEvent, **fields) -> AuditEntry | None:
        """Build and append an entry. Returns None if the write failed."""
        try:
            entry = self.build_entry(event, **fields)
        except Exception:
            logger.exception("audit_entry_invalid", audit_event=str(event))
            return None
        return await self.append(entry)

    async def append(self, entry: AuditEntry) -> AuditEntry | None:
        try:
            async with self._lock:
                await self._store.append(entry)
        except Exception:
            logger.exception(
                "audit_append_failed",
                audit_id=entry.id,
                audit_event=entry.event.value,
                tenant_id=entry.tenant_id,
            )
            return None

        log = logger.warning if entry.requires_notification else logger.info
        log(
            "audit_entry_recorded",
            audit_id=entry.id,
            audit_event=entry.event.value,
            tenant_id=entry.tenant_id,
            subject_id=entry.subject_id,
            success=entry.success,
            fraud_score=entry.fraud_score,
            requires_notification=entry.requires_notification,
        )

        if entry.requires_notification and self._publisher is not None:
            await self._publisher.publish(entry)
        return entry

    async def query(self, audit_filter: AuditFilter | None = None) -> list[AuditEntry]:
        return await self._store.query(audit_filter or AuditFilter())

    async def count(self, audit_filter: AuditFilter | None = None) -> int:
        return await self._store.count(audit_filter or AuditFilter())

    async def first_seen(self, audit_filter: AuditFilter) -> datetime | None:
        """Timestamp of the earliest matching entry."""
        return await self._store.first_timestamp(audit_filter)

    async def size(self) -> int:
        return await self._store.size()

    async def metrics(
        self,
        tenant_id: str | None = None,
        pending_approvals: int = 0,
        blocked_origins: int = 0,
    ) -> SecurityMetrics:
        """Aggregate counts over the trailing metrics window (24h by default)."""
        window_hours = self._config.ledger.metrics_window_hours
        since = self._clock() - timedelta(hours=window_hours)
        entries = await self._store.query(AuditFilter(tenant_id=tenant_id, start_time=since))

        def _count(*events: AuditEvent) -> int:
            return sum(1 for e in entries if e.event in events)

        payment_requests = _count(AuditEvent.PAYMENT_REQUESTED)
        refund_requests = _count(AuditEvent.REFUND_REQUESTED)
        successful = sum(1 for e in entries if e.success)
        average = sum(e.fraud_score for e in entries) / len(entries) if entries else 0.0

        return SecurityMetrics(
            window_hours=window_hours,
            total_requests=payment_requests + refund_requests,
            payment_requests=payment_requests,
            refund_requests=refund_requests,
            successful=successful,
            failed=len(entries) - successful,
            approvals_granted=_count(AuditEvent.APPROVAL_GRANTED),
            approvals_denied=_count(AuditEvent.APPROVAL_DENIED),
            fraud_detections=_count(AuditEvent.FRAUD_DETECTED),
            average_score=round(average, 2),
            high_risk_count=sum(
                1 for e in entries if e.fraud_score >= self._config.ledger.high_risk_score
            ),
            pending_approvals=pending_approvals,
            blocked_origins=blocked_origins,
        )

    def retention_window(self) -> timedelta | None:
        """Age beyond which entries may be purged, or None when only the cap applies.

        Never shorter than the longest chargeback history window, so purging
        cannot hide chargebacks the detectors still count.
        """
        days = self._config.ledger.retention_days
        if days is None:
            return None
        history_days = max(
            self._config.payment.chargeback.history_window_days,
            self._config.refund.chargeback.history_window_days,
        )
        return timedelta(days=max(days, history_days))

    async def purge_expired(self) -> int:
        """Drop entries older than the retention window. No-op without one."""
        window = self.retention_window()
        if window is None:
            return 0
        cutoff = self._clock() - window
        async with self._lock:
            removed = await self._store.purge_before(cutoff)
        if removed:
            logger.info("audit_entries_purged", removed=removed, cutoff=cutoff.isoformat())
        return removed
