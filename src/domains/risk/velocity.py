"""Per-actor rolling velocity counters (hour / day / week)."""

import asyncio
import weakref
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import structlog

from .models import VelocityBucket, VelocityWindow
from .storage import InMemoryVelocityStore, VelocityKey, VelocityStore

logger = structlog.get_logger()

WINDOW_DURATIONS: dict[str, timedelta] = {
    "hour": timedelta(hours=1),
    "day": timedelta(days=1),
    "week": timedelta(days=7),
}


def utcnow() -> datetime:
    return datetime.now(UTC)


def _reset_expired(window: VelocityWindow, now: datetime) -> list[str]:
    """Zero every bucket older than its duration. Returns the reset window names."""
    reset = []
    for name, duration in WINDOW_DURATIONS.items():
        bucket: VelocityBucket = getattr(window, name)
        if now - bucket.last_reset > duration:
            bucket.count = 0
            bucket.amount = 0
            bucket.last_reset = now
            reset.append(name)
    return reset


def _all_expired(window: VelocityWindow, now: datetime) -> bool:
    return all(
        now - getattr(window, name).last_reset > duration
        for name, duration in WINDOW_DURATIONS.items()
    )


class VelocityTracker:
    """Maintains rolling event counts and amounts per (operation, actor kind, actor).

    Updates to one actor's window are serialized by a per-key lock; locks for
    different actors are independent and are dropped once unused.
    """

    def __init__(
        self,
        store: VelocityStore | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store or InMemoryVelocityStore()
        self._clock = clock
        self._locks: weakref.WeakValueDictionary[VelocityKey, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @staticmethod
    def key(operation: str, kind: str, actor_id: str) -> VelocityKey:
        return (str(operation), str(kind), actor_id)

    def _lock_for(self, key: VelocityKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def record(
        self, operation: str, kind: str, actor_id: str, amount: int | None = None
    ) -> VelocityWindow:
        """Count one event for the actor and return the updated window."""
        _, window = await self.record_with_prior(operation, kind, actor_id, amount)
        return window

    async def record_with_prior(
        self, operation: str, kind: str, actor_id: str, amount: int | None = None
    ) -> tuple[VelocityWindow, VelocityWindow]:
        """Count one event and return ``(prior, updated)`` windows.

        ``prior`` is the window as the event found it, after expired buckets
        were reset but before this event was counted. Velocity bands are
        compared against it.
        """
        key = self.key(operation, kind, actor_id)
        lock = self._lock_for(key)
        async with lock:
            now = self._clock()
            window = await self._store.get(key) or VelocityWindow.empty(now)
            reset = _reset_expired(window, now)
            prior = window.model_copy(deep=True)
            for bucket in (window.hour, window.day, window.week):
                bucket.count += 1
                bucket.amount += max(amount or 0, 0)
            await self._store.put(key, window)

        logger.debug(
            "velocity_recorded",
            operation=operation,
            actor_kind=kind,
            hourly_count=window.hour.count,
            daily_count=window.day.count,
            weekly_count=window.week.count,
            windows_reset=reset,
        )
        return prior, window

    async def peek(self, operation: str, kind: str, actor_id: str) -> VelocityWindow:
        """Current window without counting an event. Stored state is untouched."""
        now = self._clock()
        window = await self._store.get(self.key(operation, kind, actor_id))
        if window is None:
            return VelocityWindow.empty(now)
        _reset_expired(window, now)
        return window

    async def sweep(self) -> int:
        """Drop windows whose buckets have all expired. Returns the number removed.

        A stale day bucket alone is not enough: the week bucket may still
        carry live counts.
        """
        removed = 0
        for key in await self._store.keys():
            lock = self._lock_for(key)
            async with lock:
                window = await self._store.get(key)
                if window is None or _all_expired(window, self._clock()):
                    await self._store.delete(key)
                    removed += 1
        if removed:
            logger.info("velocity_windows_swept", removed=removed)
        return removed
