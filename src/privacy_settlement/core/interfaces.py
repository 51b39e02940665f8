"""Protocol interfaces for the settlement subsystem.

All module boundaries are defined here as Protocol classes.
Implementations (web3, HTTP, in-memory fakes) can be swapped without
changing callers.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, Sequence, runtime_checkable

from pydantic import BaseModel, Field

from .enums import BucketSide, EngineVersion, EventKind, FheType
from .models import EncryptedHandle, Permit, Pool, PositionSnapshot


class SessionGrant(BaseModel):
    """Response of the encryption service ``initialize`` action."""

    session_id: str
    permit: Permit = Field(default_factory=Permit)
    expires_at: datetime


# ---------------------------------------------------------------------------
# Encryption service
# ---------------------------------------------------------------------------

@runtime_checkable
class IEncryptionClient(Protocol):
    """Opaque encryption / threshold-decryption capability."""

    async def initialize(self, chain_id: int, user_address: str) -> SessionGrant: ...

    async def encrypt(
        self, session_id: str, value: int | bool, fhe_type: FheType
    ) -> EncryptedHandle: ...

    async def unseal(self, session_id: str, handle: EncryptedHandle) -> int: ...

    async def get_session(self, session_id: str) -> datetime | None: ...


# ---------------------------------------------------------------------------
# Wallet collaborators used during authorization
# ---------------------------------------------------------------------------

@runtime_checkable
class IProvider(Protocol):
    async def get_chain_id(self) -> int: ...


@runtime_checkable
class ISigner(Protocol):
    async def get_address(self) -> str: ...


# ---------------------------------------------------------------------------
# Ledger reads
# ---------------------------------------------------------------------------

@runtime_checkable
class ILogReader(Protocol):
    """Append-only log access for one settlement engine."""

    async def get_block_number(self) -> int: ...

    async def get_events(
        self,
        kind: EventKind,
        version: EngineVersion,
        *,
        address: str,
        from_block: int,
        to_block: int,
        user: str | None = None,
    ) -> Sequence[object]: ...


@runtime_checkable
class IStateProbe(Protocol):
    """Direct point read of a position's accumulator snapshot."""

    async def read_position(
        self, pool_id: str, user: str, tick: int, side: BucketSide
    ) -> PositionSnapshot: ...


# ---------------------------------------------------------------------------
# Settlement engine writes
# ---------------------------------------------------------------------------

@runtime_checkable
class ISettlementEngine(Protocol):
    """Write surface of the settlement engine. Returns the tx hash."""

    async def claim(self, pool_id: str, tick: int, side: BucketSide) -> str: ...

    async def withdraw(
        self,
        pool_id: str,
        tick: int,
        side: BucketSide,
        amount: EncryptedHandle,
    ) -> str: ...

    async def get_pool_state(self, pool_id: str) -> Pool: ...
