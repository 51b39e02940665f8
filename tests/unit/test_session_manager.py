"""Tests for the privacy-session manager.

Single-flight authorization, identity switching, lazy expiry, status
publication, and the encrypt / decrypt / reveal wrappers.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from privacy_settlement.core.enums import FheType, SessionStatus
from privacy_settlement.core.errors import (
    AuthorizationFailed,
    DecryptionRetriesExhausted,
    EncryptionServiceError,
    NoSession,
    SessionExpired,
)
from privacy_settlement.core.models import EncryptedHandle
from privacy_settlement.session.manager import SessionManager
from privacy_settlement.session.state import Authorizing, Error, Idle, Ready

ENGINE = "0x3333333333333333333333333333333333333333"
OTHER = "0x2222222222222222222222222222222222222222"


def _record(manager: SessionManager) -> list[SessionStatus]:
    seen: list[SessionStatus] = []
    manager.subscribe(lambda status, error: seen.append(status))
    return seen


class TestAuthorize:
    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_handshake(self, session_manager, mock_client, provider, signer):
        sessions = await asyncio.gather(
            *(session_manager.authorize(provider, signer, ENGINE) for _ in range(5))
        )
        assert mock_client.initialize_calls == 1
        assert session_manager.handshake_count == 1
        assert all(s is sessions[0] for s in sessions)

    @pytest.mark.asyncio
    async def test_live_session_reused_without_handshake(self, session_manager, mock_client, provider, signer):
        first = await session_manager.authorize(provider, signer, ENGINE)
        second = await session_manager.authorize(provider, signer, ENGINE)
        assert first is second
        assert mock_client.initialize_calls == 1

    @pytest.mark.asyncio
    async def test_status_transitions(self, session_manager, provider, signer):
        seen = _record(session_manager)
        assert session_manager.status is SessionStatus.IDLE
        await session_manager.authorize(provider, signer, ENGINE)
        assert seen == [SessionStatus.INITIALIZING, SessionStatus.READY]
        assert session_manager.is_ready()
        assert isinstance(session_manager.state, Ready)

    @pytest.mark.asyncio
    async def test_state_is_authorizing_while_in_flight(self, session_manager, provider, signer):
        task = asyncio.ensure_future(session_manager.authorize(provider, signer, ENGINE))
        await asyncio.sleep(0)
        assert isinstance(session_manager.state, Authorizing)
        await task
        assert isinstance(session_manager.state, Ready)

    @pytest.mark.asyncio
    async def test_session_fields(self, session_manager, sim_clock, provider, signer):
        session = await session_manager.authorize(provider, signer, ENGINE)
        assert session.identity == f"{provider.chain_id}:{signer.address.lower()}"
        assert session.contract_address == ENGINE
        assert session.created_at == sim_clock.now()
        assert session.expires_at == sim_clock.now() + timedelta(hours=24)

    @pytest.mark.asyncio
    async def test_zero_contract_replaced_with_placeholder(self, session_manager, provider, signer):
        session = await session_manager.authorize(provider, signer, "0x" + "0" * 40)
        assert session.contract_address.endswith("01")

    @pytest.mark.asyncio
    async def test_service_reported_expiry_wins_when_earlier(self, sim_clock, provider, signer):
        from privacy_settlement.encryption.mock import MockEncryptionClient

        client = MockEncryptionClient(clock=sim_clock, session_duration=timedelta(hours=1))
        manager = SessionManager(client, clock=sim_clock, session_duration=timedelta(hours=24))
        session = await manager.authorize(provider, signer, ENGINE)
        assert session.expires_at == sim_clock.now() + timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_identity_switch_clears_previous_session(
        self, session_manager, mock_client, provider, signer, make_signer
    ):
        seen = _record(session_manager)
        first = await session_manager.authorize(provider, signer, ENGINE)
        second = await session_manager.authorize(provider, make_signer(OTHER), ENGINE)
        assert first.identity != second.identity
        assert session_manager.session is second
        assert mock_client.initialize_calls == 2
        assert SessionStatus.IDLE in seen

    @pytest.mark.asyncio
    async def test_chain_switch_is_an_identity_switch(
        self, session_manager, mock_client, provider, signer, make_provider
    ):
        await session_manager.authorize(provider, signer, ENGINE)
        session = await session_manager.authorize(make_provider(1), signer, ENGINE)
        assert session.chain_id == 1
        assert mock_client.initialize_calls == 2

    @pytest.mark.asyncio
    async def test_switch_mid_flight_supersedes_first_handshake(
        self, session_manager, provider, signer, make_signer
    ):
        first = asyncio.ensure_future(session_manager.authorize(provider, signer, ENGINE))
        await asyncio.sleep(0)
        second = await session_manager.authorize(provider, make_signer(OTHER), ENGINE)
        with pytest.raises(AuthorizationFailed, match="superseded"):
            await first
        assert session_manager.session is second

    @pytest.mark.asyncio
    async def test_failed_handshake_publishes_error(self, sim_clock, provider, signer):
        client = AsyncMock()
        client.initialize.side_effect = EncryptionServiceError("initialize", "boom")
        manager = SessionManager(client, clock=sim_clock)
        events: list[tuple] = []
        manager.subscribe(lambda status, error: events.append((status, error)))

        with pytest.raises(AuthorizationFailed):
            await manager.authorize(provider, signer, ENGINE)

        assert isinstance(manager.state, Error)
        assert manager.status is SessionStatus.ERROR
        assert events[-1][0] is SessionStatus.ERROR
        assert isinstance(events[-1][1], EncryptionServiceError)

    @pytest.mark.asyncio
    async def test_error_state_allows_retry(self, sim_clock, mock_client, provider, signer):
        real_initialize = mock_client.initialize
        calls = 0

        async def flaky(chain_id, address):
            nonlocal calls
            calls += 1
            if calls == 1:
                raise EncryptionServiceError("initialize", "service down")
            return await real_initialize(chain_id, address)

        mock_client.initialize = flaky
        manager = SessionManager(mock_client, clock=sim_clock)

        assert await manager.initialize(provider, signer, ENGINE) is SessionStatus.ERROR
        assert await manager.initialize(provider, signer, ENGINE) is SessionStatus.READY

    @pytest.mark.asyncio
    async def test_listener_failure_does_not_break_authorize(self, session_manager, provider, signer):
        def broken(status, error):
            raise RuntimeError("listener bug")

        session_manager.subscribe(broken)
        session = await session_manager.authorize(provider, signer, ENGINE)
        assert session is not None

    @pytest.mark.asyncio
    async def test_unsubscribe(self, session_manager, provider, signer):
        seen: list[SessionStatus] = []
        unsubscribe = session_manager.subscribe(lambda s, e: seen.append(s))
        unsubscribe()
        await session_manager.authorize(provider, signer, ENGINE)
        assert seen == []


class TestExpiryAndClear:
    @pytest.mark.asyncio
    async def test_expired_session_is_not_handed_out(self, session_manager, sim_clock, provider, signer):
        seen = _record(session_manager)
        await session_manager.authorize(provider, signer, ENGINE)
        sim_clock.advance(timedelta(hours=24).total_seconds())
        assert session_manager.status is SessionStatus.EXPIRED
        assert session_manager.session is None
        assert seen.count(SessionStatus.EXPIRED) == 1

    @pytest.mark.asyncio
    async def test_expired_session_triggers_new_handshake(
        self, session_manager, mock_client, sim_clock, provider, signer
    ):
        first = await session_manager.authorize(provider, signer, ENGINE)
        sim_clock.advance(25 * 3600)
        second = await session_manager.authorize(provider, signer, ENGINE)
        assert second is not first
        assert mock_client.initialize_calls == 2
        assert session_manager.status is SessionStatus.READY

    @pytest.mark.asyncio
    async def test_encrypt_after_expiry_raises(self, session_manager, sim_clock, provider, signer):
        await session_manager.authorize(provider, signer, ENGINE)
        sim_clock.advance(24 * 3600 + 1)
        with pytest.raises(SessionExpired):
            await session_manager.encrypt(5)

    @pytest.mark.asyncio
    async def test_clear_returns_to_idle(self, session_manager, provider, signer):
        await session_manager.authorize(provider, signer, ENGINE)
        seen = _record(session_manager)
        session_manager.clear()
        assert isinstance(session_manager.state, Idle)
        assert seen == [SessionStatus.IDLE]
        with pytest.raises(NoSession):
            await session_manager.encrypt(1)

    @pytest.mark.asyncio
    async def test_verify_detects_server_side_expiry(self, session_manager, mock_client, provider, signer):
        await session_manager.authorize(provider, signer, ENGINE)
        assert await session_manager.verify() is True
        mock_client.expire_all()
        assert await session_manager.verify() is False
        assert session_manager.status is SessionStatus.EXPIRED


class TestEncryptDecrypt:
    @pytest.mark.asyncio
    async def test_encrypt_without_session_raises_no_session(self, session_manager):
        with pytest.raises(NoSession):
            await session_manager.encrypt(42)

    @pytest.mark.asyncio
    async def test_decrypt_without_session_raises_no_session(self, session_manager):
        with pytest.raises(NoSession):
            await session_manager.decrypt(EncryptedHandle(ciphertext=1))

    @pytest.mark.asyncio
    async def test_encrypt_then_decrypt(self, session_manager, provider, signer):
        await session_manager.authorize(provider, signer, ENGINE)
        handle = await session_manager.encrypt_uint128(10**18)
        assert handle.type is FheType.UINT128
        assert await session_manager.decrypt(handle) == 10**18

    @pytest.mark.asyncio
    async def test_encrypt_bool(self, session_manager, provider, signer):
        await session_manager.authorize(provider, signer, ENGINE)
        handle = await session_manager.encrypt_bool(True)
        assert handle.type is FheType.BOOL

    @pytest.mark.asyncio
    async def test_encrypt_uint128_range_checked(self, session_manager, provider, signer):
        await session_manager.authorize(provider, signer, ENGINE)
        with pytest.raises(ValueError):
            await session_manager.encrypt_uint128(2**128)
        with pytest.raises(ValueError):
            await session_manager.encrypt_uint128(-1)

    @pytest.mark.asyncio
    async def test_decrypt_retries_until_materialized(
        self, session_manager, mock_client, recording_sleep, provider, signer
    ):
        await session_manager.authorize(provider, signer, ENGINE)
        handle = await session_manager.encrypt(7)
        mock_client.not_ready_for(handle, 2)
        assert await session_manager.decrypt(handle) == 7
        assert mock_client.unseal_calls == 3
        assert recording_sleep.delays == [4.0, 8.0]

    @pytest.mark.asyncio
    async def test_decrypt_gives_up_after_max_attempts(
        self, session_manager, mock_client, recording_sleep, provider, signer
    ):
        await session_manager.authorize(provider, signer, ENGINE)
        handle = await session_manager.encrypt(7)
        mock_client.not_ready_for(handle, 10)
        with pytest.raises(DecryptionRetriesExhausted) as exc_info:
            await session_manager.decrypt(handle)
        assert exc_info.value.attempts == 3
        assert exc_info.value.try_again_shortly
        assert mock_client.unseal_calls == 3
        assert len(recording_sleep.delays) == 2

    @pytest.mark.asyncio
    async def test_reveal_served_from_cache(self, session_manager, mock_client, sim_clock, provider, signer):
        await session_manager.authorize(provider, signer, ENGINE)
        handle = await session_manager.encrypt(99)
        assert await session_manager.reveal(handle) == 99
        assert await session_manager.reveal(handle) == 99
        assert mock_client.unseal_calls == 1

        sim_clock.advance(6 * 60)
        assert await session_manager.reveal(handle) == 99
        assert mock_client.unseal_calls == 2

    @pytest.mark.asyncio
    async def test_clear_drops_reveal_cache(self, session_manager, mock_client, provider, signer):
        await session_manager.authorize(provider, signer, ENGINE)
        handle = await session_manager.encrypt(5)
        await session_manager.reveal(handle, cache_key="balance:token0")
        session_manager.clear()
        await session_manager.authorize(provider, signer, ENGINE)
        assert await session_manager.reveal(handle, cache_key="balance:token0") == 5
        assert mock_client.unseal_calls == 2
