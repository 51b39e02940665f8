"""Privacy-session manager.

Owns the lifecycle of one session credential per identity and wraps the
encryption service's encrypt/unseal calls.

Design invariants
-----------------
1.  **Single flight** — while a handshake for an identity is in flight,
    every ``authorize()`` for that identity awaits the same shared task.
    The handshake usually needs an interactive signature, so it is never
    requested twice concurrently.
2.  **One identity at a time** — authorizing a different identity clears
    the held session / in-flight reference first, so a session can never
    be attributed to the wrong account.
3.  **Lazy expiry** — expiry is checked whenever the session is read; an
    expired session is never handed out.
4.  The manager is an ordinary object: construct one per process (or per
    test) and inject it.  No module-level state.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from privacy_settlement.core.clock import IClock, WallClock
from privacy_settlement.core.enums import FheType, SessionStatus
from privacy_settlement.core.errors import (
    AuthorizationFailed,
    NoSession,
    SessionExpired,
    SettlementError,
)
from privacy_settlement.core.interfaces import IEncryptionClient, IProvider, ISigner
from privacy_settlement.core.models import ZERO_ADDRESS, EncryptedHandle, FheSession

from .retry import RetryPolicy, Sleep, retry_decrypt
from .state import Authorizing, Error, Idle, Ready, SessionState, identity_key

logger = logging.getLogger(__name__)

StatusListener = Callable[[SessionStatus, "BaseException | None"], None]

# Sessions need a contract binding even before the engine is deployed.
_PLACEHOLDER_CONTRACT = "0x0000000000000000000000000000000000000001"


@dataclass
class _Revealed:
    value: int
    revealed_at: datetime


class SessionManager:
    """Coordinates authorization, encryption and decryption.

    Parameters
    ----------
    client:
        Encryption service implementing ``IEncryptionClient``.
    clock:
        Time source for expiry and the reveal cache.
    session_duration:
        Local cap on session lifetime.  The service-reported expiry wins
        when it is earlier.
    retry_policy:
        Bounded backoff for ``decrypt``.
    reveal_cache_ttl:
        How long a revealed plaintext is served from cache.
    sleep:
        Awaitable sleep used between decrypt attempts (injected in tests).
    """

    def __init__(
        self,
        client: IEncryptionClient,
        *,
        clock: IClock | None = None,
        session_duration: timedelta = timedelta(hours=24),
        retry_policy: RetryPolicy | None = None,
        reveal_cache_ttl: timedelta = timedelta(minutes=5),
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._client = client
        self._clock = clock or WallClock()
        self._session_duration = session_duration
        self._retry_policy = retry_policy or RetryPolicy()
        self._reveal_cache_ttl = reveal_cache_ttl
        self._sleep = sleep
        self._state: SessionState = Idle()
        self._expired = False
        self._listeners: list[StatusListener] = []
        self._revealed: dict[str, _Revealed] = {}
        self.handshake_count = 0

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def status(self) -> SessionStatus:
        if isinstance(self._state, Ready) and self._check_expired(self._state):
            return SessionStatus.EXPIRED
        return self._state.status

    @property
    def session(self) -> FheSession | None:
        """The live session, or ``None`` (idle, in flight, failed or expired)."""
        state = self._state
        if isinstance(state, Ready) and not self._check_expired(state):
            return state.session
        return None

    def is_ready(self) -> bool:
        return self.session is not None

    @property
    def expires_at(self) -> datetime | None:
        state = self._state
        return state.session.expires_at if isinstance(state, Ready) else None

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Register a status listener. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    async def authorize(
        self,
        provider: IProvider,
        signer: ISigner,
        target_contract: str,
    ) -> FheSession:
        """Return a live session for the signer's identity.

        Reuses a live session, joins an in-flight handshake, or starts a
        new one.  Raises ``AuthorizationFailed`` after publishing ``error``.
        """
        chain_id = await provider.get_chain_id()
        address = await signer.get_address()
        identity = identity_key(chain_id, address)

        # No awaits between inspecting and replacing the state below.
        state = self._state
        if getattr(state, "identity", identity) != identity:
            logger.info("Identity changed (%s -> %s), clearing session", state.identity, identity)
            self.clear()
            state = self._state

        if isinstance(state, Ready) and not self._check_expired(state):
            return state.session

        if isinstance(state, Authorizing):
            logger.debug("Joining in-flight authorization for %s", identity)
            return await asyncio.shield(state.future)

        contract = target_contract
        if not contract or contract.lower() == ZERO_ADDRESS:
            contract = _PLACEHOLDER_CONTRACT

        task = asyncio.ensure_future(
            self._handshake(identity, chain_id, address, contract)
        )
        self._state = Authorizing(identity=identity, future=task)
        self._expired = False
        self._notify(SessionStatus.INITIALIZING)
        return await asyncio.shield(task)

    async def initialize(
        self,
        provider: IProvider,
        signer: ISigner,
        target_contract: str,
    ) -> SessionStatus:
        """Non-raising ``authorize``: failures end in the ``error`` status."""
        try:
            await self.authorize(provider, signer, target_contract)
        except SettlementError as exc:
            logger.warning("Session initialization failed: %s", exc)
        return self.status

    async def _handshake(
        self, identity: str, chain_id: int, address: str, contract: str
    ) -> FheSession:
        self.handshake_count += 1
        logger.info("Authorizing FHE session for %s", identity)
        try:
            grant = await self._client.initialize(chain_id, address)
        except Exception as exc:
            if self._owns(identity):
                self._state = Error(identity=identity, reason=exc)
                self._notify(SessionStatus.ERROR, exc)
            logger.error("FHE session authorization failed for %s: %s", identity, exc)
            raise AuthorizationFailed(f"authorization failed for {identity}: {exc}") from exc

        now = self._clock.now()
        session = FheSession(
            session_id=grant.session_id,
            permit=grant.permit,
            identity=identity,
            chain_id=chain_id,
            contract_address=contract,
            created_at=now,
            expires_at=min(now + self._session_duration, grant.expires_at),
        )

        if not self._owns(identity):
            # clear() or an identity switch ran while we were waiting
            logger.info("Discarding superseded session for %s", identity)
            raise AuthorizationFailed(f"authorization for {identity} was superseded")

        self._state = Ready(session=session)
        self._notify(SessionStatus.READY)
        logger.info("FHE session ready for %s (expires %s)", identity, session.expires_at.isoformat())
        return session

    def _owns(self, identity: str) -> bool:
        state = self._state
        return isinstance(state, Authorizing) and state.identity == identity

    def clear(self) -> None:
        """Drop the session and any in-flight authorization; back to idle.

        Call on every identity change (account or chain switch).
        """
        self._state = Idle()
        self._expired = False
        self._revealed.clear()
        self._notify(SessionStatus.IDLE)

    async def verify(self) -> bool:
        """Ask the service whether it still holds the session."""
        session = self.session
        if session is None:
            return False
        if await self._client.get_session(session.session_id) is None:
            self._mark_expired()
            return False
        return True

    # ------------------------------------------------------------------
    # Encryption
    # ------------------------------------------------------------------

    async def encrypt(self, value: int | bool, fhe_type: FheType = FheType.UINT128) -> EncryptedHandle:
        session = self._require_session()
        try:
            return await self._client.encrypt(session.session_id, value, fhe_type)
        except SessionExpired:
            self._mark_expired()
            raise

    async def encrypt_uint128(self, value: int) -> EncryptedHandle:
        if value < 0 or value >= 2**128:
            raise ValueError(f"value out of uint128 range: {value}")
        return await self.encrypt(value, FheType.UINT128)

    async def encrypt_bool(self, value: bool) -> EncryptedHandle:
        return await self.encrypt(bool(value), FheType.BOOL)

    async def decrypt(self, handle: EncryptedHandle) -> int:
        """Unseal ``handle`` with bounded retry.

        Raises ``NoSession`` / ``SessionExpired`` without retrying and
        ``DecryptionRetriesExhausted`` once the attempts are used up.
        """
        session = self._require_session()

        async def _attempt() -> int:
            return await self._client.unseal(session.session_id, handle)

        try:
            return await retry_decrypt(_attempt, self._retry_policy, sleep=self._sleep)
        except SessionExpired:
            self._mark_expired()
            raise

    async def reveal(self, handle: EncryptedHandle, cache_key: str | None = None) -> int:
        """Decrypt through a short-lived cache of revealed plaintexts."""
        key = cache_key or hex(handle.ciphertext)
        cached = self._revealed.get(key)
        now = self._clock.now()
        if cached is not None and now - cached.revealed_at <= self._reveal_cache_ttl:
            return cached.value
        value = await self.decrypt(handle)
        self._revealed[key] = _Revealed(value=value, revealed_at=self._clock.now())
        return value

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_session(self) -> FheSession:
        state = self._state
        if not isinstance(state, Ready):
            raise NoSession(f"No valid FHE session (status={state.status.value})")
        if self._check_expired(state):
            raise SessionExpired(state.session.expires_at)
        return state.session

    def _check_expired(self, state: Ready) -> bool:
        if self._expired:
            return True
        if state.session.is_expired(self._clock.now()):
            self._mark_expired()
            return True
        return False

    def _mark_expired(self) -> None:
        if self._expired:
            return
        self._expired = True
        self._revealed.clear()
        logger.info("FHE session expired")
        self._notify(SessionStatus.EXPIRED)

    def _notify(self, status: SessionStatus, error: BaseException | None = None) -> None:
        for listener in list(self._listeners):
            try:
                listener(status, error)
            except Exception:
                logger.exception("Session status listener failed")
