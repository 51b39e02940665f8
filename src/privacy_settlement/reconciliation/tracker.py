"""Last-request-wins refresh of the claimable-order view.

Each refresh is tagged with a generation id.  A run that completes after
a newer one was started, or after the watched identity changed, is
discarded rather than applied.  Changing the identity also cancels the
run in flight.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from privacy_settlement.core.enums import EngineVersion
from privacy_settlement.core.errors import ProbeUnavailable
from privacy_settlement.core.interfaces import IStateProbe
from privacy_settlement.core.models import ClaimableOrder
from privacy_settlement.ledger.event_source import LedgerEventSource
from privacy_settlement.ledger.probe import SafeStateProbe
from privacy_settlement.observability.logger import new_trace_id

from .reconciler import OrderReconciler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconciliationRun:
    """Outcome of one applied refresh."""

    generation: int
    user: str
    engine_address: str
    from_block: int
    to_block: int
    orders: tuple[ClaimableOrder, ...] = ()
    probe_failures: tuple[ProbeUnavailable, ...] = field(default=())
    trace_id: str = ""


class StaleResult(Exception):
    """A refresh finished after a newer one superseded it."""

    def __init__(self, generation: int, latest: int) -> None:
        self.generation = generation
        self.latest = latest
        super().__init__(f"Generation {generation} superseded by {latest}")


class ClaimableOrdersTracker:
    """Keeps the latest claimable-order list for one watched identity.

    Parameters
    ----------
    source:
        Bounded ledger event source.
    probe:
        Point-read access used for the newer engine schema.
    engine_address:
        Settlement engine whose logs are queried.
    engine_version:
        Event schema emitted by that engine.
    reconciler:
        Optional pre-configured reconciler.
    """

    def __init__(
        self,
        source: LedgerEventSource,
        probe: IStateProbe,
        *,
        engine_address: str,
        engine_version: EngineVersion,
        reconciler: OrderReconciler | None = None,
    ) -> None:
        self._source = source
        self._probe = probe
        self._engine_address = engine_address
        self._engine_version = engine_version
        self._reconciler = reconciler or OrderReconciler()
        self._user: str | None = None
        self._generation = 0
        self._inflight: asyncio.Task[ReconciliationRun] | None = None
        self._current: ReconciliationRun | None = None
        self.stale_discards = 0

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def current(self) -> ReconciliationRun | None:
        return self._current

    @property
    def orders(self) -> list[ClaimableOrder]:
        return list(self._current.orders) if self._current else []

    @property
    def user(self) -> str | None:
        return self._user

    def watch(self, user: str, engine_address: str | None = None) -> None:
        """Switch the watched identity (and optionally the engine)."""
        user = user.lower()
        address = engine_address or self._engine_address
        if user == self._user and address == self._engine_address:
            return
        self._generation += 1
        self._user = user
        self._engine_address = address
        self._current = None
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
        self._inflight = None
        logger.info("Watching %s on %s (generation %d)", user, address, self._generation)

    async def refresh(self, user: str | None = None) -> ReconciliationRun | None:
        """Fetch and reconcile; ``None`` when a newer request superseded this one."""
        if user is not None:
            self.watch(user)
        if self._user is None:
            raise ValueError("no identity is being watched")

        self._generation += 1
        generation = self._generation
        task = asyncio.ensure_future(self._run(generation, self._user, self._engine_address))
        self._inflight = task
        try:
            run = await task
        except asyncio.CancelledError:
            if generation != self._generation:
                self._log_stale(StaleResult(generation, self._generation))
                return None
            raise

        if generation != self._generation:
            self._log_stale(StaleResult(generation, self._generation))
            return None
        self._current = run
        if self._inflight is task:
            self._inflight = None
        return run

    async def refresh_orders(self) -> list[ClaimableOrder]:
        run = await self.refresh()
        return list(run.orders) if run is not None else self.orders

    async def _run(self, generation: int, user: str, engine_address: str) -> ReconciliationRun:
        trace_id = new_trace_id()
        from_block, to_block = await self._source.latest_window()
        events = await self._source.fetch(
            engine_address, user, from_block, to_block, self._engine_version
        )
        probe = SafeStateProbe(self._probe, user)
        orders = await self._reconciler.reconcile(events, probe, self._engine_version)
        return ReconciliationRun(
            generation=generation,
            user=user,
            engine_address=engine_address,
            from_block=from_block,
            to_block=to_block,
            orders=tuple(orders),
            probe_failures=tuple(probe.failures),
            trace_id=trace_id,
        )

    def _log_stale(self, stale: StaleResult) -> None:
        self.stale_discards += 1
        logger.info("Discarding stale reconciliation: %s", stale)
