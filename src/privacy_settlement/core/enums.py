"""Enumerations used across the settlement subsystem."""

from enum import Enum, IntEnum


class BucketSide(IntEnum):
    """Bucket side. Values must match the settlement engine: BUY=0, SELL=1."""

    BUY = 0
    SELL = 1

    @property
    def label(self) -> str:
        return "Buy" if self is BucketSide.BUY else "Sell"


class OrderType(str, Enum):
    MAKER = "maker"  # Resting on the side of price not yet reached
    TAKER = "taker"  # Momentum / stop order, fills as part of the triggering swap


class EngineVersion(str, Enum):
    """Settlement-engine event schema generation."""

    V6 = "v6"  # Events carry an amount commitment; BucketFilled per bucket
    V8 = "v8"  # Bare events; RangeActivated plus point reads

    @property
    def has_amount_commitment(self) -> bool:
        return self is EngineVersion.V6


class SessionStatus(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    READY = "ready"
    EXPIRED = "expired"
    ERROR = "error"


class FheType(str, Enum):
    """Encrypted value types accepted by the encryption service."""

    BOOL = "bool"
    UINT8 = "uint8"
    UINT16 = "uint16"
    UINT32 = "uint32"
    UINT64 = "uint64"
    UINT128 = "uint128"
    ADDRESS = "address"
    UINT256 = "uint256"

    @property
    def utype(self) -> int:
        """Numeric type code used by the coprocessor contracts."""
        mapping = {
            "bool": 0,
            "uint8": 2,
            "uint16": 3,
            "uint32": 4,
            "uint64": 5,
            "uint128": 6,  # not 7, that is address
            "address": 7,
            "uint256": 8,
        }
        return mapping[self.value]


class LogFormat(str, Enum):
    JSON = "json"
    CONSOLE = "console"


class EventKind(str, Enum):
    """Ledger log categories fetched per reconciliation window."""

    DEPOSIT = "deposit"
    CLAIM = "claim"
    WITHDRAW = "withdraw"
    FILL = "fill"  # BucketFilled (v6) or MomentumActivated (v8)
