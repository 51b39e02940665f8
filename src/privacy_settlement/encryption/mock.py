"""In-process encryption service for local and unsupported networks.

No real encryption happens.  Handles are sequential integers mapped to
their plaintext, so encrypt/unseal round-trips in-process.  Unknown
handles unseal to a deterministic placeholder derived from the handle.

``not_ready_for`` simulates threshold-decryption latency: the first
``n`` unseal calls for a handle fail with ``NotYetMaterialized``.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta

from privacy_settlement.core.clock import IClock, WallClock
from privacy_settlement.core.enums import FheType
from privacy_settlement.core.errors import (
    EncryptionServiceError,
    NotYetMaterialized,
    SessionExpired,
)
from privacy_settlement.core.ids import new_id
from privacy_settlement.core.interfaces import SessionGrant
from privacy_settlement.core.models import EncryptedHandle, Permit

logger = logging.getLogger(__name__)

_WEI = 10**18


class MockEncryptionClient:
    """``IEncryptionClient`` stand-in that keeps plaintexts in memory."""

    def __init__(
        self,
        *,
        clock: IClock | None = None,
        session_duration: timedelta = timedelta(hours=24),
        latency: float = 0.0,
    ) -> None:
        self._clock = clock or WallClock()
        self._session_duration = session_duration
        self._latency = latency
        self._sessions: dict[str, datetime] = {}
        self._plaintexts: dict[int, int] = {}
        self._pending: dict[int, int] = {}
        self._next_handle = 1
        self.initialize_calls = 0
        self.unseal_calls = 0

    def not_ready_for(self, handle: EncryptedHandle | int, attempts: int) -> None:
        ct = handle.ciphertext if isinstance(handle, EncryptedHandle) else int(handle)
        self._pending[ct] = attempts

    def expire_all(self) -> None:
        self._sessions.clear()

    async def initialize(self, chain_id: int, user_address: str) -> SessionGrant:
        self.initialize_calls += 1
        await self._sleep()
        session_id = f"{chain_id}-{user_address.lower()}-{new_id()[:8]}"
        expires_at = self._clock.now() + self._session_duration
        self._sessions[session_id] = expires_at
        logger.debug("Mock session %s issued", session_id)
        return SessionGrant(
            session_id=session_id,
            permit=Permit(
                issuer=user_address,
                chain_id=chain_id,
                verifying_contract="",
                public_key="0x" + "00" * 32,
            ),
            expires_at=expires_at,
        )

    async def encrypt(
        self, session_id: str, value: int | bool, fhe_type: FheType
    ) -> EncryptedHandle:
        self._check(session_id)
        await self._sleep()
        plain = int(value)
        if plain < 0:
            raise EncryptionServiceError("encrypt", f"negative value for {fhe_type.value}")
        handle = self._next_handle
        self._next_handle += 1
        self._plaintexts[handle] = plain
        return EncryptedHandle(ciphertext=handle, type=fhe_type)

    async def unseal(self, session_id: str, handle: EncryptedHandle) -> int:
        self._check(session_id)
        self.unseal_calls += 1
        await self._sleep()
        remaining = self._pending.get(handle.ciphertext, 0)
        if remaining > 0:
            self._pending[handle.ciphertext] = remaining - 1
            raise NotYetMaterialized("unseal", "sealoutput not available yet")
        if handle.ciphertext in self._plaintexts:
            return self._plaintexts[handle.ciphertext]
        return (handle.ciphertext % 10 + 1) * _WEI

    async def get_session(self, session_id: str) -> datetime | None:
        expires_at = self._sessions.get(session_id)
        if expires_at is None or self._clock.now() >= expires_at:
            return None
        return expires_at

    def _check(self, session_id: str) -> None:
        expires_at = self._sessions.get(session_id)
        if expires_at is None or self._clock.now() >= expires_at:
            raise SessionExpired(expires_at)

    async def _sleep(self) -> None:
        if self._latency > 0:
            await asyncio.sleep(self._latency)
