"""Settlement-engine ledger events.

Design invariants
-----------------
1.  Every event is **immutable** (``frozen=True``).
2.  Events are addressed by ``(block_number, log_index)``, which gives the
    chain's total order.  Nothing downstream depends on list order.
3.  No event carries a plaintext amount.  The older schema carries an
    opaque ``amount_commitment``; the newer schema carries nothing.

A fetched batch is a tagged union: ``V6Events`` (fill notifications are
``BucketFilled``) or ``V8Events`` (fill notifications are
``RangeActivated`` ranges).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from privacy_settlement.core.enums import BucketSide, EngineVersion
from privacy_settlement.core.models import PositionKey


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LedgerEvent:
    """Immutable base for every decoded log.

    Shared fields
    ~~~~~~~~~~~~~
    pool_id         bytes32 pool identifier, lower-case 0x hex.
    block_number    Block that emitted the log.
    log_index       Position of the log inside the block.
    tx_hash         Emitting transaction.
    """

    pool_id: str = ""
    block_number: int = 0
    log_index: int = 0
    tx_hash: str = ""

    @property
    def chain_position(self) -> tuple[int, int]:
        return (self.block_number, self.log_index)


@dataclass(frozen=True)
class PositionEvent(LedgerEvent):
    """A user action against one ``(pool_id, tick, side)`` position."""

    user: str = ""
    tick: int = 0
    side: BucketSide = BucketSide.BUY
    amount_commitment: str | None = None  # v6 only

    @property
    def key(self) -> PositionKey:
        return PositionKey.of(self.pool_id, self.tick, self.side)


@dataclass(frozen=True)
class DepositEvent(PositionEvent):
    """``Deposit(poolId, user, tick, side[, amountHash])``."""


@dataclass(frozen=True)
class WithdrawEvent(PositionEvent):
    """``Withdraw(poolId, user, tick, side[, amountHash])``."""


@dataclass(frozen=True)
class ClaimEvent(PositionEvent):
    """``Claim(poolId, user, tick, side[, amountHash])``."""


@dataclass(frozen=True)
class BucketFilled(LedgerEvent):
    """``BucketFilled(poolId, tick, side)``; v6 fill notification."""

    tick: int = 0
    side: BucketSide = BucketSide.BUY

    @property
    def key(self) -> PositionKey:
        return PositionKey.of(self.pool_id, self.tick, self.side)


@dataclass(frozen=True)
class RangeActivated(LedgerEvent):
    """``MomentumActivated(poolId, fromTick, toTick, bucketsActivated)``.

    The range may be reported in either direction.
    """

    from_tick: int = 0
    to_tick: int = 0
    count_activated: int = 0

    @property
    def low(self) -> int:
        return min(self.from_tick, self.to_tick)

    @property
    def high(self) -> int:
        return max(self.from_tick, self.to_tick)

    def covers(self, tick: int) -> bool:
        return self.low <= tick <= self.high


# ---------------------------------------------------------------------------
# Fetched batches
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class V6Events:
    deposits: tuple[DepositEvent, ...] = ()
    claims: tuple[ClaimEvent, ...] = ()
    withdraws: tuple[WithdrawEvent, ...] = ()
    fills: tuple[BucketFilled, ...] = ()

    version = EngineVersion.V6

    @property
    def fill_notifications(self) -> tuple[BucketFilled, ...]:
        return self.fills


@dataclass(frozen=True)
class V8Events:
    deposits: tuple[DepositEvent, ...] = ()
    claims: tuple[ClaimEvent, ...] = ()
    withdraws: tuple[WithdrawEvent, ...] = ()
    activations: tuple[RangeActivated, ...] = ()

    version = EngineVersion.V8

    @property
    def fill_notifications(self) -> tuple[RangeActivated, ...]:
        return self.activations


LedgerEvents = Union[V6Events, V8Events]


def empty_events(version: EngineVersion) -> LedgerEvents:
    return V6Events() if version is EngineVersion.V6 else V8Events()
