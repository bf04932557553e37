"""PostgreSQL-backed audit ledger store."""

from datetime import datetime

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.db.models import AuditEntryRecord
from src.domains.risk.errors import InternalError
from src.domains.risk.models import AuditEntry, AuditFilter
from src.domains.risk.storage import LedgerStore

logger = structlog.get_logger()


def _conditions(audit_filter: AuditFilter) -> list:
    conditions = []
    if audit_filter.tenant_id:
        conditions.append(AuditEntryRecord.tenant_id == audit_filter.tenant_id)
    if audit_filter.actor_id:
        conditions.append(AuditEntryRecord.actor_id == audit_filter.actor_id)
    if audit_filter.customer_id:
        conditions.append(AuditEntryRecord.customer_id == audit_filter.customer_id)
    if audit_filter.subject_id:
        conditions.append(AuditEntryRecord.subject_id == audit_filter.subject_id)
    if audit_filter.ip_address:
        conditions.append(AuditEntryRecord.ip_address == audit_filter.ip_address)
    if audit_filter.event:
        conditions.append(AuditEntryRecord.event == audit_filter.event.value)
    if audit_filter.start_time:
        conditions.append(AuditEntryRecord.timestamp >= audit_filter.start_time)
    if audit_filter.end_time:
        conditions.append(AuditEntryRecord.timestamp <= audit_filter.end_time)
    if audit_filter.min_score is not None:
        conditions.append(AuditEntryRecord.fraud_score >= audit_filter.min_score)
    return conditions


def to_record(entry: AuditEntry) -> AuditEntryRecord:
    return AuditEntryRecord(
        entry_id=entry.id,
        timestamp=entry.timestamp,
        event=entry.event.value,
        tenant_id=entry.tenant_id,
        actor_id=entry.actor_id,
        actor_role=entry.actor_role,
        customer_id=entry.customer_id,
        subject_id=entry.subject_id,
        ip_address=entry.ip_address,
        user_agent=entry.user_agent,
        amount=entry.amount,
        currency=entry.currency,
        reason=entry.reason,
        success=entry.success,
        fraud_score=entry.fraud_score,
        error_message=entry.error_message,
        entry_metadata=dict(entry.metadata),
        requires_notification=entry.requires_notification,
    )


def to_entry(record: AuditEntryRecord) -> AuditEntry:
    return AuditEntry(
        id=record.entry_id,
        timestamp=record.timestamp,
        event=record.event,
        tenant_id=record.tenant_id,
        actor_id=record.actor_id,
        actor_role=record.actor_role,
        customer_id=record.customer_id,
        subject_id=record.subject_id,
        ip_address=record.ip_address,
        user_agent=record.user_agent,
        amount=record.amount,
        currency=record.currency,
        reason=record.reason,
        success=record.success,
        fraud_score=record.fraud_score,
        error_message=record.error_message,
        metadata=record.entry_metadata or {},
        requires_notification=record.requires_notification,
    )


class SqlLedgerStore(LedgerStore):
    """Audit entries in the ``risk_audit_entries`` table.

    The FIFO cap is enforced after each append by deleting the oldest rows
    beyond ``max_entries``. Database errors surface as InternalError; the
    ledger above logs them and carries on.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_entries: int = 50_000,
    ) -> None:
        self._session_factory = session_factory
        self._max_entries = max_entries

    async def append(self, entry: AuditEntry) -> None:
        try:
            async with self._session_factory() as session:
                session.add(to_record(entry))
                await session.flush()
                await self._evict_overflow(session)
                await session.commit()
        except SQLAlchemyError as exc:
            raise InternalError(f"Failed to persist audit entry {entry.id}") from exc

    async def _evict_overflow(self, session: AsyncSession) -> None:
        total = (await session.execute(select(func.count(AuditEntryRecord.seq)))).scalar_one()
        overflow = total - self._max_entries
        if overflow <= 0:
            return
        oldest = (
            select(AuditEntryRecord.seq)
            .order_by(AuditEntryRecord.seq.asc())
            .limit(overflow)
            .scalar_subquery()
        )
        await session.execute(delete(AuditEntryRecord).where(AuditEntryRecord.seq.in_(oldest)))
        logger.info("audit_entries_evicted", count=overflow)

    async def query(self, audit_filter: AuditFilter) -> list[AuditEntry]:
        stmt = select(AuditEntryRecord).where(*_conditions(audit_filter))
        if audit_filter.limit is not None:
            # Most recent N, returned oldest first
            stmt = stmt.order_by(AuditEntryRecord.seq.desc()).limit(audit_filter.limit)
        else:
            stmt = stmt.order_by(AuditEntryRecord.seq.asc())
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as exc:
            raise InternalError("Failed to query audit entries") from exc
        entries = [to_entry(r) for r in rows]
        if audit_filter.limit is not None:
            entries.reverse()
        return entries

    async def count(self, audit_filter: AuditFilter) -> int:
        stmt = select(func.count(AuditEntryRecord.seq)).where(*_conditions(audit_filter))
        try:
            async with self._session_factory() as session:
                return (await session.execute(stmt)).scalar_one()
        except SQLAlchemyError as exc:
            raise InternalError("Failed to count audit entries") from exc

    async def first_timestamp(self, audit_filter: AuditFilter) -> datetime | None:
        stmt = select(func.min(AuditEntryRecord.timestamp)).where(*_conditions(audit_filter))
        try:
            async with self._session_factory() as session:
                return (await session.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise InternalError("Failed to read earliest audit entry") from exc

    async def purge_before(self, cutoff: datetime) -> int:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    delete(AuditEntryRecord).where(AuditEntryRecord.timestamp < cutoff)
                )
                await session.commit()
        except SQLAlchemyError as exc:
            raise InternalError("Failed to purge audit entries") from exc
        return result.rowcount or 0

    async def size(self) -> int:
        return await self.count(AuditFilter())
