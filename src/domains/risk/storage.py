"""Storage interfaces for the risk engine's mutable state, with in-memory backends.

Each store is owned by exactly one component: velocity windows by the
VelocityTracker, pending approvals by the ApprovalWorkflow, audit entries by
the AuditLedger. Components never share a store. The SQL ledger backend lives
in ``src.db.ledger_store``.
"""

from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime

from .models import ApprovalStatus, AuditEntry, AuditFilter, PendingApproval, VelocityWindow

# (operation, actor kind, identifier)
VelocityKey = tuple[str, str, str]


class VelocityStore(ABC):
    @abstractmethod
    async def get(self, key: VelocityKey) -> VelocityWindow | None: ...

    @abstractmethod
    async def put(self, key: VelocityKey, window: VelocityWindow) -> None: ...

    @abstractmethod
    async def delete(self, key: VelocityKey) -> None: ...

    @abstractmethod
    async def keys(self) -> list[VelocityKey]: ...


class ApprovalStore(ABC):
    @abstractmethod
    async def get(self, approval_id: str) -> PendingApproval | None: ...

    @abstractmethod
    async def put(self, approval: PendingApproval) -> None: ...

    @abstractmethod
    async def list_approvals(
        self, status: ApprovalStatus | None = None, tenant_id: str | None = None
    ) -> list[PendingApproval]: ...


class LedgerStore(ABC):
    """Append-only entry store that evicts its oldest entries beyond a cap."""

    @abstractmethod
    async def append(self, entry: AuditEntry) -> None: ...

    @abstractmethod
    async def query(self, audit_filter: AuditFilter) -> list[AuditEntry]: ...

    @abstractmethod
    async def count(self, audit_filter: AuditFilter) -> int: ...

    @abstractmethod
    async def first_timestamp(self, audit_filter: AuditFilter) -> datetime | None: ...

    @abstractmethod
    async def purge_before(self, cutoff: datetime) -> int: ...

    @abstractmethod
    async def size(self) -> int: ...


class InMemoryVelocityStore(VelocityStore):
    def __init__(self) -> None:
        self._windows: dict[VelocityKey, VelocityWindow] = {}

    async def get(self, key: VelocityKey) -> VelocityWindow | None:
        window = self._windows.get(key)
        return window.model_copy(deep=True) if window else None

    async def put(self, key: VelocityKey, window: VelocityWindow) -> None:
        self._windows[key] = window.model_copy(deep=True)

    async def delete(self, key: VelocityKey) -> None:
        self._windows.pop(key, None)

    async def keys(self) -> list[VelocityKey]:
        return list(self._windows)


class InMemoryApprovalStore(ApprovalStore):
    def __init__(self) -> None:
        self._approvals: dict[str, PendingApproval] = {}

    async def get(self, approval_id: str) -> PendingApproval | None:
        approval = self._approvals.get(approval_id)
        return approval.model_copy(deep=True) if approval else None

    async def put(self, approval: PendingApproval) -> None:
        self._approvals[approval.id] = approval.model_copy(deep=True)

    async def list_approvals(
        self, status: ApprovalStatus | None = None, tenant_id: str | None = None
    ) -> list[PendingApproval]:
        return [
            a.model_copy(deep=True)
            for a in self._approvals.values()
            if (status is None or a.status == status)
            and (tenant_id is None or a.tenant_id == tenant_id)
        ]


class InMemoryLedgerStore(LedgerStore):
    def __init__(self, max_entries: int = 50_000) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        self._max_entries = max_entries
        self._entries: deque[AuditEntry] = deque(maxlen=max_entries)

    async def append(self, entry: AuditEntry) -> None:
        # deque(maxlen) drops from the left: oldest first
        self._entries.append(entry)

    async def query(self, audit_filter: AuditFilter) -> list[AuditEntry]:
        matches = [e for e in self._entries if audit_filter.matches(e)]
        if audit_filter.limit is not None:
            matches = matches[-audit_filter.limit :] if audit_filter.limit else []
        return matches

    async def count(self, audit_filter: AuditFilter) -> int:
        return sum(1 for e in self._entries if audit_filter.matches(e))

    async def first_timestamp(self, audit_filter: AuditFilter) -> datetime | None:
        return min((e.timestamp for e in self._entries if audit_filter.matches(e)), default=None)

    async def purge_before(self, cutoff: datetime) -> int:
        kept = [e for e in self._entries if e.timestamp >= cutoff]
        removed = len(self._entries) - len(kept)
        self._entries = deque(kept, maxlen=self._max_entries)
        return removed

    async def size(self) -> int:
        return len(self._entries)


@dataclass
class ChargebackRiskData:
    subject_id: str
    risk_score: float
    last_updated: datetime
    factors: list[str] = field(default_factory=list)


class ChargebackRiskCache:
    """Externally supplied chargeback risk per subject. Later writes replace earlier ones."""

    def __init__(self) -> None:
        self._entries: dict[str, ChargebackRiskData] = {}

    def upsert(self, data: ChargebackRiskData) -> None:
        self._entries[data.subject_id] = data

    def get(self, subject_id: str) -> ChargebackRiskData | None:
        return self._entries.get(subject_id)

    def __len__(self) -> int:
        return len(self._entries)


class Blocklist:
    """Blocked network origins, consulted by the pattern detector."""

    def __init__(self) -> None:
        self._blocked: set[str] = set()

    def block(self, origin: str) -> None:
        self._blocked.add(origin)

    def unblock(self, origin: str) -> None:
        self._blocked.discard(origin)

    def __contains__(self, origin: str) -> bool:
        return origin in self._blocked

    def __len__(self) -> int:
        return len(self._blocked)
