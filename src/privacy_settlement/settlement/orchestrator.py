"""Sequential claim / withdraw execution.

Write calls are issued one at a time, never concurrently.  A failed
claim is recorded and the run moves on to the next order; once every
order has been attempted a fresh reconciliation is requested so the
caller sees the post-claim view rather than a locally patched list.
A failed refresh is recorded on the summary; it never discards the
claims that already landed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable

from privacy_settlement.core.errors import InvalidOrderError
from privacy_settlement.core.interfaces import ISettlementEngine
from privacy_settlement.core.models import (
    DEFAULT_TICK_SPACING,
    ClaimableOrder,
    PositionKey,
    is_valid_tick,
)
from privacy_settlement.observability.logger import set_trace_id
from privacy_settlement.session.manager import SessionManager

logger = logging.getLogger(__name__)

Refresh = Callable[[], Awaitable[list[ClaimableOrder]]]


@dataclass(frozen=True)
class ClaimFailure:
    key: PositionKey
    error: Exception

    @property
    def reason(self) -> str:
        return str(self.error)


@dataclass
class ClaimSummary:
    """Result of ``claim_all``."""

    claimed: list[PositionKey] = field(default_factory=list)
    tx_hashes: list[str] = field(default_factory=list)
    failures: list[ClaimFailure] = field(default_factory=list)
    refreshed: list[ClaimableOrder] | None = None
    refresh_error: Exception | None = None

    @property
    def attempted(self) -> int:
        return len(self.claimed) + len(self.failures)

    @property
    def all_succeeded(self) -> bool:
        return not self.failures


class ClaimOrchestrator:
    """Drives write calls against the settlement engine.

    Parameters
    ----------
    engine:
        Write access implementing ``ISettlementEngine``.
    session_manager:
        Source of encrypted inputs for withdrawals.
    refresh:
        Called once after ``claim_all`` to rebuild the claimable list.
    tick_spacing:
        Pool tick spacing used to validate withdraw requests.
    """

    def __init__(
        self,
        engine: ISettlementEngine,
        session_manager: SessionManager | None = None,
        *,
        refresh: Refresh | None = None,
        tick_spacing: int = DEFAULT_TICK_SPACING,
    ) -> None:
        self._engine = engine
        self._session_manager = session_manager
        self._refresh = refresh
        self._tick_spacing = tick_spacing

    async def claim(self, order: ClaimableOrder) -> str:
        return await self._engine.claim(order.pool_id, order.tick, order.side)

    async def claim_all(
        self, orders: Iterable[ClaimableOrder], *, trace_id: str | None = None
    ) -> ClaimSummary:
        """Claim every order in sequence, then refresh once.

        ``trace_id`` ties the claim log lines to the reconciliation run
        that produced ``orders``.
        """
        if trace_id:
            set_trace_id(trace_id)
        summary = ClaimSummary()
        pending = list(orders)
        for index, order in enumerate(pending, start=1):
            key = order.key
            try:
                tx_hash = await self.claim(order)
            except Exception as exc:
                logger.warning("Claim %d/%d failed for %s: %s", index, len(pending), key, exc)
                summary.failures.append(ClaimFailure(key, exc))
                continue
            summary.claimed.append(key)
            summary.tx_hashes.append(tx_hash)

        logger.info(
            "Claimed %d of %d orders (%d failed)",
            len(summary.claimed), len(pending), len(summary.failures),
        )
        if self._refresh is not None:
            try:
                summary.refreshed = await self._refresh()
            except Exception as exc:
                logger.warning("Refresh after claims failed: %s", exc)
                summary.refresh_error = exc
        return summary

    async def withdraw(self, key: PositionKey, amount: int) -> str:
        """Withdraw ``amount`` of unfilled liquidity from one position."""
        if not is_valid_tick(key.tick, self._tick_spacing):
            raise InvalidOrderError(
                f"Invalid tick {key.tick}: must be a multiple of {self._tick_spacing} "
                "within the supported range"
            )
        if amount <= 0:
            raise InvalidOrderError(f"Withdraw amount must be positive, got {amount}")
        if self._session_manager is None:
            raise InvalidOrderError("Withdrawals require a session manager")

        handle = await self._session_manager.encrypt_uint128(amount)
        logger.info("Withdrawing from %s", key)
        return await self._engine.withdraw(key.pool_id, key.tick, key.side, handle)
