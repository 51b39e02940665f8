"""Bounded, all-or-nothing fetch of one identity's ledger events.

Design invariants
-----------------
1.  The query window never exceeds ``lookback_blocks``; the full history
    is never scanned.
2.  Deposits, claims, withdraws and fill notifications are fetched
    concurrently.  If any one fails the whole fetch fails with
    ``TransientIO`` and no partial view is returned; callers retry as a
    unit.
3.  The event schema is chosen once from ``EngineVersion`` and the
    result is the matching tagged batch (``V6Events`` / ``V8Events``).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from privacy_settlement.core.enums import EngineVersion, EventKind
from privacy_settlement.core.errors import TransientIO
from privacy_settlement.core.interfaces import ILogReader
from privacy_settlement.domain.events import (
    BucketFilled,
    ClaimEvent,
    DepositEvent,
    LedgerEvents,
    RangeActivated,
    V6Events,
    V8Events,
    WithdrawEvent,
)

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK_BLOCKS = 50_000


def bounded_window(from_block: int, to_block: int, lookback_blocks: int) -> tuple[int, int]:
    """Clamp ``[from_block, to_block]`` to at most ``lookback_blocks`` blocks."""
    if to_block < 0:
        raise ValueError(f"to_block must be >= 0, got {to_block}")
    floor = max(0, to_block - lookback_blocks)
    return max(from_block, floor), to_block


class LedgerEventSource:
    """Fetches deposit/claim/withdraw/fill events for one engine and user.

    Parameters
    ----------
    reader:
        Log access implementing ``ILogReader``.
    lookback_blocks:
        Upper bound on the size of any query window.
    """

    def __init__(
        self,
        reader: ILogReader,
        *,
        lookback_blocks: int = DEFAULT_LOOKBACK_BLOCKS,
    ) -> None:
        if lookback_blocks <= 0:
            raise ValueError("lookback_blocks must be positive")
        self._reader = reader
        self._lookback_blocks = lookback_blocks

    @property
    def lookback_blocks(self) -> int:
        return self._lookback_blocks

    async def latest_window(self) -> tuple[int, int]:
        """``(from_block, head)`` covering the most recent lookback window."""
        try:
            head = await self._reader.get_block_number()
        except Exception as exc:
            raise TransientIO("block_number", exc) from exc
        return bounded_window(0, head, self._lookback_blocks)

    async def fetch_latest(
        self, pool_address: str, user: str, engine_version: EngineVersion
    ) -> LedgerEvents:
        from_block, to_block = await self.latest_window()
        return await self.fetch(pool_address, user, from_block, to_block, engine_version)

    async def fetch(
        self,
        pool_address: str,
        user: str,
        from_block: int,
        to_block: int,
        engine_version: EngineVersion,
    ) -> LedgerEvents:
        from_block, to_block = bounded_window(from_block, to_block, self._lookback_blocks)
        if from_block > to_block:
            logger.debug("Empty window %d..%d", from_block, to_block)
            return V6Events() if engine_version is EngineVersion.V6 else V8Events()

        kinds = (EventKind.DEPOSIT, EventKind.CLAIM, EventKind.WITHDRAW, EventKind.FILL)
        results = await asyncio.gather(
            *(
                self._reader.get_events(
                    kind,
                    engine_version,
                    address=pool_address,
                    from_block=from_block,
                    to_block=to_block,
                    user=None if kind is EventKind.FILL else user,
                )
                for kind in kinds
            ),
            return_exceptions=True,
        )

        for kind, result in zip(kinds, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                logger.warning(
                    "Ledger fetch failed on %s (%d..%d): %s",
                    kind.value, from_block, to_block, result,
                )
                raise TransientIO(kind.value, result) from result

        deposits, claims, withdraws, fills = results
        logger.info(
            "Fetched %s events %d..%d: %d deposits, %d claims, %d withdraws, %d fills",
            engine_version.value, from_block, to_block,
            len(deposits), len(claims), len(withdraws), len(fills),
        )

        if engine_version is EngineVersion.V6:
            return V6Events(
                deposits=_only(deposits, DepositEvent),
                claims=_only(claims, ClaimEvent),
                withdraws=_only(withdraws, WithdrawEvent),
                fills=_only(fills, BucketFilled),
            )
        return V8Events(
            deposits=_only(deposits, DepositEvent),
            claims=_only(claims, ClaimEvent),
            withdraws=_only(withdraws, WithdrawEvent),
            activations=_only(fills, RangeActivated),
        )


def _only(events: Sequence[object], cls: type) -> tuple:
    return tuple(e for e in events if isinstance(e, cls))
