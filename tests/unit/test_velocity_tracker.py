"""Unit tests for rolling velocity counters."""

import asyncio

import pytest

from src.domains.risk.storage import InMemoryVelocityStore
from src.domains.risk.velocity import VelocityTracker
from tests.conftest import FakeClock


@pytest.fixture
def tracker(clock):
    return VelocityTracker(store=InMemoryVelocityStore(), clock=clock)


class TestRecord:
    @pytest.mark.asyncio
    async def test_first_event_counts_itself(self, tracker):
        window = await tracker.record("refund", "customer", "cust-1", 2_000)
        assert window.hour.count == 1
        assert window.day.count == 1
        assert window.week.count == 1
        assert window.hour.amount == 2_000

    @pytest.mark.asyncio
    async def test_counts_accumulate(self, tracker):
        for _ in range(3):
            window = await tracker.record("refund", "customer", "cust-1", 1_000)
        assert window.hour.count == 3
        assert window.week.amount == 3_000

    @pytest.mark.asyncio
    async def test_unknown_amount_counts_event_only(self, tracker):
        window = await tracker.record("refund", "customer", "cust-1", None)
        assert window.hour.count == 1
        assert window.hour.amount == 0

    @pytest.mark.asyncio
    async def test_operations_never_mix(self, tracker):
        await tracker.record("payment", "customer", "cust-1", 1_000)
        window = await tracker.record("refund", "customer", "cust-1", 1_000)
        assert window.hour.count == 1

    @pytest.mark.asyncio
    async def test_hour_bucket_resets_after_expiry(self, tracker, clock):
        await tracker.record("refund", "customer", "cust-1", 1_000)
        await tracker.record("refund", "customer", "cust-1", 1_000)
        clock.advance(hours=1, seconds=1)
        window = await tracker.record("refund", "customer", "cust-1", 500)
        assert window.hour.count == 1
        assert window.hour.amount == 500
        assert window.hour.last_reset == clock.now
        assert window.day.count == 3

    @pytest.mark.asyncio
    async def test_exactly_one_duration_does_not_reset(self, tracker, clock):
        await tracker.record("refund", "customer", "cust-1", 1_000)
        clock.advance(hours=1)
        window = await tracker.record("refund", "customer", "cust-1", 1_000)
        assert window.hour.count == 2

    @pytest.mark.asyncio
    async def test_reset_happens_once(self, tracker, clock):
        await tracker.record("refund", "customer", "cust-1", 1_000)
        clock.advance(hours=2)
        first = await tracker.record("refund", "customer", "cust-1", 1_000)
        second = await tracker.record("refund", "customer", "cust-1", 1_000)
        assert first.hour.count == 1
        assert second.hour.count == 2
        assert second.hour.last_reset == first.hour.last_reset

    @pytest.mark.asyncio
    async def test_concurrent_records_are_not_lost(self, tracker):
        await asyncio.gather(
            *(tracker.record("payment", "session", "sess-1", 100) for _ in range(25))
        )
        window = await tracker.peek("payment", "session", "sess-1")
        assert window.hour.count == 25
        assert window.hour.amount == 2_500


class TestRecordWithPrior:
    @pytest.mark.asyncio
    async def test_first_event_sees_empty_window(self, tracker):
        prior, updated = await tracker.record_with_prior("refund", "customer", "cust-1", 2_000)
        assert prior.hour.count == 0
        assert prior.week.amount == 0
        assert updated.hour.count == 1
        assert updated.hour.amount == 2_000

    @pytest.mark.asyncio
    async def test_prior_excludes_the_current_event(self, tracker):
        for _ in range(3):
            await tracker.record("refund", "customer", "cust-1", 1_000)
        prior, updated = await tracker.record_with_prior("refund", "customer", "cust-1", 1_000)
        assert prior.hour.count == 3
        assert prior.day.amount == 3_000
        assert updated.hour.count == 4

    @pytest.mark.asyncio
    async def test_prior_reflects_expired_buckets(self, tracker, clock):
        await tracker.record("refund", "customer", "cust-1", 1_000)
        clock.advance(hours=1, seconds=1)
        prior, _ = await tracker.record_with_prior("refund", "customer", "cust-1", 1_000)
        assert prior.hour.count == 0
        assert prior.day.count == 1


class TestPeek:
    @pytest.mark.asyncio
    async def test_peek_does_not_count(self, tracker):
        await tracker.record("payment", "customer", "cust-1", 1_000)
        window = await tracker.peek("payment", "customer", "cust-1")
        again = await tracker.peek("payment", "customer", "cust-1")
        assert window.hour.count == 1
        assert again.hour.count == 1

    @pytest.mark.asyncio
    async def test_peek_unknown_actor_is_empty(self, tracker):
        window = await tracker.peek("payment", "customer", "nobody")
        assert window.hour.count == 0
        assert window.week.count == 0

    @pytest.mark.asyncio
    async def test_peek_shows_expired_as_zero_without_mutating(self):
        clock = FakeClock()
        store = InMemoryVelocityStore()
        tracker = VelocityTracker(store=store, clock=clock)
        await tracker.record("payment", "customer", "cust-1", 1_000)
        clock.advance(hours=2)

        window = await tracker.peek("payment", "customer", "cust-1")
        assert window.hour.count == 0
        assert window.day.count == 1

        stored = await store.get(tracker.key("payment", "customer", "cust-1"))
        assert stored.hour.count == 1


class TestSweep:
    @pytest.mark.asyncio
    async def test_sweep_removes_stale_windows(self, tracker, clock):
        await tracker.record("payment", "customer", "old", 1_000)
        clock.advance(days=7, seconds=1)
        await tracker.record("payment", "customer", "fresh", 1_000)

        removed = await tracker.sweep()

        assert removed == 1
        assert (await tracker.peek("payment", "customer", "old")).week.count == 0
        assert (await tracker.peek("payment", "customer", "fresh")).hour.count == 1

    @pytest.mark.asyncio
    async def test_sweep_keeps_active_windows(self, tracker, clock):
        await tracker.record("refund", "ip", "203.0.113.1", None)
        clock.advance(hours=23)
        assert await tracker.sweep() == 0

    @pytest.mark.asyncio
    async def test_sweep_keeps_live_week_counts(self, tracker, clock):
        for _ in range(19):
            await tracker.record("refund", "customer", "cust-1", 1_000)
            clock.advance(hours=2)
        clock.advance(hours=25)

        assert await tracker.sweep() == 0

        prior, _ = await tracker.record_with_prior("refund", "customer", "cust-1", 1_000)
        assert prior.day.count == 0
        assert prior.week.count == 19

    @pytest.mark.asyncio
    async def test_recent_day_bucket_survives_week_expiry(self, tracker, clock):
        await tracker.record("refund", "customer", "cust-1", 1_000)
        clock.advance(days=6, hours=23)
        await tracker.record("refund", "customer", "cust-1", 1_000)
        clock.advance(hours=2)

        assert await tracker.sweep() == 0
        window = await tracker.peek("refund", "customer", "cust-1")
        assert window.day.count == 1
