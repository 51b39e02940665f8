"""Core domain models for the settlement subsystem.

Ledger entities (``Pool``, ``Bucket``, ``PositionSnapshot``) are owned and
mutated exclusively by the settlement engine; this package only reads
them.  Every encrypted quantity is an opaque integer handle, never a
plaintext amount.

``ClaimableOrder`` and ``FheSession`` are owned here.  ``PositionKey`` is
the single key type for every map and set built from ledger events.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, Field

from .enums import BucketSide, FheType, OrderType

MIN_TICK = -887272
MAX_TICK = 887272
DEFAULT_TICK_SPACING = 60
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------

@dataclass(frozen=True, order=True)
class PositionKey:
    """Bucket / position identity ``(pool_id, tick, side)``.

    Structural equality and ordering, usable directly as a dict or set key.
    The user is implicit: every reconciliation runs for one identity.
    """

    pool_id: str
    tick: int
    side: BucketSide

    @classmethod
    def of(cls, pool_id: str, tick: int, side: int | BucketSide) -> PositionKey:
        return cls(pool_id.lower(), int(tick), BucketSide(int(side)))

    def __str__(self) -> str:
        return f"{self.pool_id}:{self.tick}:{int(self.side)}"


def tick_to_price(tick: int) -> float:
    """Approximate price at a tick (1.0001 ** tick)."""
    return math.pow(1.0001, tick)


def is_valid_tick(tick: int, tick_spacing: int = DEFAULT_TICK_SPACING) -> bool:
    return MIN_TICK <= tick <= MAX_TICK and tick % tick_spacing == 0


# ---------------------------------------------------------------------------
# Ledger entities (read only)
# ---------------------------------------------------------------------------

class Pool(BaseModel):
    """Pool state as reported by ``getPoolState``."""

    pool_id: str
    token0: str
    token1: str
    initialized: bool = False
    protocol_fee: int = 0


class Bucket(BaseModel):
    """Price-indexed bucket. All quantities are encrypted handles."""

    pool_id: str
    tick: int
    side: BucketSide
    total_shares: int = 0
    liquidity: int = 0
    proceeds_per_share: int = 0
    filled_per_share: int = 0
    initialized: bool = False

    @property
    def key(self) -> PositionKey:
        return PositionKey.of(self.pool_id, self.tick, self.side)


class PositionSnapshot(BaseModel):
    """Result of ``position(poolId, user, tick, side)``.

    ``realized_proceeds`` is the handle of the realized-proceeds balance.
    A zero handle means the engine has never written proceeds for the
    position; a nonzero handle is the source of truth for claimability.
    """

    shares: int = 0
    proceeds_snapshot: int = 0
    filled_snapshot: int = 0
    realized_proceeds: int = 0

    @property
    def has_claimable_proceeds(self) -> bool:
        return self.realized_proceeds != 0

    @property
    def is_active(self) -> bool:
        return self.shares != 0 or self.has_claimable_proceeds


# ---------------------------------------------------------------------------
# Derived (owned by this package)
# ---------------------------------------------------------------------------

class ClaimableOrder(BaseModel):
    """A position whose proceeds can be claimed.

    Pure projection of the event log: safe to discard and rebuild.
    """

    model_config = {"frozen": True}

    pool_id: str
    tick: int
    side: BucketSide
    order_type: OrderType = OrderType.MAKER
    price: float = 0.0
    deposit_block: int = 0
    trigger_block: int = 0

    @property
    def key(self) -> PositionKey:
        return PositionKey.of(self.pool_id, self.tick, self.side)

    @property
    def side_label(self) -> str:
        return self.side.label


class EncryptedHandle(BaseModel):
    """Ciphertext handle returned by the encryption service."""

    model_config = {"frozen": True}

    ciphertext: int
    type: FheType = FheType.UINT128
    security_zone: int = 0

    def to_bytes(self) -> bytes:
        """32-byte big-endian encoding used for write-call arguments."""
        return self.ciphertext.to_bytes(32, "big")

    def hex(self) -> str:
        return "0x" + self.to_bytes().hex()


class Permit(BaseModel):
    """Signed authorization binding a session to an issuer and contract."""

    issuer: str = ""
    chain_id: int = 0
    verifying_contract: str = ""
    public_key: str = ""


class FheSession(BaseModel):
    """A live privacy-session credential for one identity."""

    session_id: str
    permit: Permit = Field(default_factory=Permit)
    identity: str
    chain_id: int
    contract_address: str
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at
