"""Tests for the last-request-wins claimable-order tracker."""

from __future__ import annotations

import asyncio

import pytest

from privacy_settlement.core.enums import BucketSide, EngineVersion, EventKind, OrderType
from privacy_settlement.core.models import PositionKey
from privacy_settlement.domain.events import DepositEvent
from privacy_settlement.ledger.event_source import LedgerEventSource
from privacy_settlement.reconciliation.reconciler import OrderReconciler
from privacy_settlement.reconciliation.tracker import ClaimableOrdersTracker

ENGINE = "0x3333333333333333333333333333333333333333"
USER = "0x1111111111111111111111111111111111111111"
OTHER = "0x2222222222222222222222222222222222222222"
POOL = "0x" + "ab" * 32


def _make_tracker(log_reader, state_probe) -> ClaimableOrdersTracker:
    return ClaimableOrdersTracker(
        LedgerEventSource(log_reader, lookback_blocks=50_000),
        state_probe,
        engine_address=ENGINE,
        engine_version=EngineVersion.V8,
    )


class _GatedReader:
    """Wraps a reader so block-number reads wait on an event."""

    def __init__(self, inner):
        self._inner = inner
        self.gate = asyncio.Event()

    async def get_block_number(self):
        await self.gate.wait()
        return await self._inner.get_block_number()

    async def get_events(self, *args, **kwargs):
        return await self._inner.get_events(*args, **kwargs)


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_applies_result(self, log_reader, state_probe):
        log_reader.events[EventKind.DEPOSIT] = [
            DepositEvent(pool_id=POOL, block_number=99_000, user=USER, tick=600, side=BucketSide.SELL),
            DepositEvent(pool_id=POOL, block_number=99_001, user=USER, tick=660, side=BucketSide.SELL),
        ]
        state_probe.set_realized(POOL, 600, BucketSide.SELL, 0xABC)
        state_probe.failing.add((POOL, 660, 1))
        tracker = _make_tracker(log_reader, state_probe)

        run = await tracker.refresh(USER)

        assert run is tracker.current
        assert [o.tick for o in run.orders] == [600]
        assert (run.from_block, run.to_block) == (50_000, 100_000)
        assert len(run.probe_failures) == 1
        assert run.probe_failures[0].key.tick == 660
        assert run.trace_id

    @pytest.mark.asyncio
    async def test_default_wiring_labels_unranged_orders_maker(self, log_reader, state_probe):
        log_reader.events[EventKind.DEPOSIT] = [
            DepositEvent(pool_id=POOL, block_number=99_000, user=USER, tick=900, side=BucketSide.BUY),
        ]
        state_probe.set_realized(POOL, 900, BucketSide.BUY, 0x01)

        run = await _make_tracker(log_reader, state_probe).refresh(USER)
        assert [o.order_type for o in run.orders] == [OrderType.MAKER]

    @pytest.mark.asyncio
    async def test_injected_reconciler_applies_placement_geometry(self, log_reader, state_probe):
        log_reader.events[EventKind.DEPOSIT] = [
            DepositEvent(pool_id=POOL, block_number=99_000, user=USER, tick=900, side=BucketSide.BUY),
        ]
        state_probe.set_realized(POOL, 900, BucketSide.BUY, 0x01)
        placement = {PositionKey.of(POOL, 900, BucketSide.BUY): 600}
        tracker = ClaimableOrdersTracker(
            LedgerEventSource(log_reader, lookback_blocks=50_000),
            state_probe,
            engine_address=ENGINE,
            engine_version=EngineVersion.V8,
            reconciler=OrderReconciler(placement_ticks=placement),
        )

        run = await tracker.refresh(USER)
        assert [(o.order_type, o.trigger_block) for o in run.orders] == [(OrderType.TAKER, 99_000)]

    @pytest.mark.asyncio
    async def test_requires_watched_identity(self, log_reader, state_probe):
        with pytest.raises(ValueError):
            await _make_tracker(log_reader, state_probe).refresh()

    @pytest.mark.asyncio
    async def test_older_request_discarded(self, log_reader, state_probe):
        gated = _GatedReader(log_reader)
        tracker = _make_tracker(gated, state_probe)
        tracker.watch(USER)

        first = asyncio.ensure_future(tracker.refresh())
        await asyncio.sleep(0)
        second = asyncio.ensure_future(tracker.refresh())
        await asyncio.sleep(0)
        gated.gate.set()

        first_run, second_run = await asyncio.gather(first, second)
        assert first_run is None
        assert second_run is not None
        assert tracker.current is second_run
        assert tracker.stale_discards == 1

    @pytest.mark.asyncio
    async def test_identity_change_cancels_in_flight(self, log_reader, state_probe):
        gated = _GatedReader(log_reader)
        tracker = _make_tracker(gated, state_probe)

        pending = asyncio.ensure_future(tracker.refresh(USER))
        await asyncio.sleep(0)
        tracker.watch(OTHER)
        gated.gate.set()

        assert await pending is None
        assert tracker.current is None
        assert tracker.user == OTHER

    @pytest.mark.asyncio
    async def test_watch_same_identity_is_noop(self, log_reader, state_probe):
        tracker = _make_tracker(log_reader, state_probe)
        tracker.watch(USER)
        generation = tracker.generation
        tracker.watch(USER.upper().replace("0X", "0x"))
        assert tracker.generation == generation

    @pytest.mark.asyncio
    async def test_refresh_orders_for_orchestrator(self, log_reader, state_probe):
        tracker = _make_tracker(log_reader, state_probe)
        tracker.watch(USER)
        assert await tracker.refresh_orders() == []
