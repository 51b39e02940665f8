"""Event-sourced projection of claimable orders.

Design invariants
-----------------
1.  **Pure projection.**  The result is a function of the event batch and
    (for the newer schema) point reads; it is rebuilt on demand and never
    persisted.
2.  **Idempotent.**  The same set of events yields the same orders in the
    same order regardless of list order.  The "first" deposit of a
    position is the earliest by ``(block_number, log_index)``.
3.  **Retirement.**  A position with any ``Claim`` or ``Withdraw`` in the
    window is never claimable.
4.  **Per-position degradation.**  A failed point read marks that one
    position as not claimable; the batch completes.
5.  Ordering is most recent trigger block first, ties broken by key.

The older schema (``V6Events``) decides claimability from fill
notifications alone.  The newer one (``V8Events``) has no per-bucket fill
event, so each unretired deposit is confirmed with a point read of
``realized_proceeds``.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Awaitable, Callable, Iterable, Mapping

from privacy_settlement.core.enums import EngineVersion, OrderType
from privacy_settlement.core.models import (
    ClaimableOrder,
    PositionKey,
    PositionSnapshot,
    tick_to_price,
)
from privacy_settlement.domain.events import (
    DepositEvent,
    LedgerEvents,
    PositionEvent,
    RangeActivated,
    V6Events,
    V8Events,
)

from .classify import classify_by_geometry, match_ranges

logger = logging.getLogger(__name__)

Probe = Callable[[PositionKey], Awaitable["PositionSnapshot | None"]]

DEFAULT_MAX_CONCURRENT_PROBES = 16


# ---------------------------------------------------------------------------
# Shared core
# ---------------------------------------------------------------------------

def first_deposits(deposits: Iterable[DepositEvent]) -> dict[PositionKey, DepositEvent]:
    """Earliest deposit per position."""
    first: dict[PositionKey, DepositEvent] = {}
    for dep in deposits:
        key = dep.key
        held = first.get(key)
        if held is None or dep.chain_position < held.chain_position:
            first[key] = dep
    return first


def retired_keys(*groups: Iterable[PositionEvent]) -> set[PositionKey]:
    return {ev.key for group in groups for ev in group}


def _order_for(
    deposit: DepositEvent, order_type: OrderType, trigger_block: int
) -> ClaimableOrder:
    return ClaimableOrder(
        pool_id=deposit.key.pool_id,
        tick=deposit.tick,
        side=deposit.side,
        order_type=order_type,
        price=tick_to_price(deposit.tick),
        deposit_block=deposit.block_number,
        trigger_block=trigger_block,
    )


def sort_orders(orders: Iterable[ClaimableOrder]) -> list[ClaimableOrder]:
    return sorted(orders, key=lambda o: (-o.trigger_block, o.key))


# ---------------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------------

class OrderReconciler:
    """Builds the claimable-order list for one identity.

    Parameters
    ----------
    placement_ticks:
        Optional pool tick observed when each position was placed.  When
        present it decides maker / taker by placement geometry for
        positions with no activation range.
    max_concurrent_probes:
        Upper bound on point reads in flight at once.
    """

    def __init__(
        self,
        *,
        placement_ticks: Mapping[PositionKey, int] | None = None,
        max_concurrent_probes: int = DEFAULT_MAX_CONCURRENT_PROBES,
    ) -> None:
        if max_concurrent_probes <= 0:
            raise ValueError("max_concurrent_probes must be positive")
        self._placement_ticks = dict(placement_ticks or {})
        self._max_concurrent_probes = max_concurrent_probes

    async def reconcile(
        self,
        events: LedgerEvents,
        probe: Probe | None = None,
        engine_version: EngineVersion | None = None,
    ) -> list[ClaimableOrder]:
        if engine_version is not None and engine_version is not events.version:
            raise ValueError(
                f"engine version {engine_version.value} does not match "
                f"{events.version.value} event batch"
            )
        if isinstance(events, V6Events):
            orders = self._reconcile_v6(events)
        elif isinstance(events, V8Events):
            if probe is None:
                raise ValueError("v8 reconciliation requires a state probe")
            orders = await self._reconcile_v8(events, probe)
        else:
            raise TypeError(f"unsupported event batch: {type(events).__name__}")

        result = sort_orders(orders)
        logger.info(
            "Reconciled %s batch: %d deposits -> %d claimable",
            events.version.value, len(events.deposits), len(result),
        )
        return result

    # ----------------------------------------------------------- v6

    def _reconcile_v6(self, events: V6Events) -> list[ClaimableOrder]:
        filled_at: dict[PositionKey, int] = {}
        for fill in events.fills:
            key = fill.key
            held = filled_at.get(key)
            if held is None or fill.block_number < held:
                filled_at[key] = fill.block_number

        retired = retired_keys(events.claims, events.withdraws)
        orders = []
        for key, dep in first_deposits(events.deposits).items():
            if key in retired or key not in filled_at:
                continue
            orders.append(_order_for(dep, self._geometric_type(key), filled_at[key]))
        return orders

    # ----------------------------------------------------------- v8

    async def _reconcile_v8(self, events: V8Events, probe: Probe) -> list[ClaimableOrder]:
        retired = retired_keys(events.claims, events.withdraws)
        ranges: dict[str, list[RangeActivated]] = defaultdict(list)
        for rng in events.activations:
            ranges[rng.pool_id.lower()].append(rng)

        candidates = [
            (key, dep)
            for key, dep in first_deposits(events.deposits).items()
            if key not in retired
        ]
        snapshots = await self._probe_all([key for key, _ in candidates], probe)

        orders = []
        for (key, dep), snapshot in zip(candidates, snapshots):
            if snapshot is None or not snapshot.has_claimable_proceeds:
                continue
            range_block = match_ranges(key.tick, ranges.get(key.pool_id, ()))
            if range_block is not None:
                orders.append(_order_for(dep, OrderType.TAKER, range_block))
            else:
                orders.append(_order_for(dep, self._geometric_type(key), dep.block_number))
        return orders

    async def _probe_all(
        self, keys: list[PositionKey], probe: Probe
    ) -> list[PositionSnapshot | None]:
        semaphore = asyncio.Semaphore(self._max_concurrent_probes)

        async def read(key: PositionKey) -> PositionSnapshot | None:
            async with semaphore:
                try:
                    return await probe(key)
                except Exception as exc:
                    logger.warning("Probe failed for %s, treating as not claimable: %s", key, exc)
                    return None

        return list(await asyncio.gather(*(read(key) for key in keys)))

    # ----------------------------------------------------------- helpers

    def _geometric_type(self, key: PositionKey) -> OrderType:
        placed_at = self._placement_ticks.get(key)
        if placed_at is None:
            return OrderType.MAKER
        return classify_by_geometry(key.side, key.tick, placed_at)


async def reconcile(
    events: LedgerEvents,
    probe: Probe | None = None,
    engine_version: EngineVersion | None = None,
    *,
    placement_ticks: Mapping[PositionKey, int] | None = None,
) -> list[ClaimableOrder]:
    """Module-level shortcut for a one-off ``OrderReconciler`` run."""
    reconciler = OrderReconciler(placement_ticks=placement_ticks)
    return await reconciler.reconcile(events, probe, engine_version)
