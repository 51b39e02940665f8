"""Shared fixtures for the privacy-settlement test suite."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Sequence

import pytest

from privacy_settlement.core.clock import SimClock
from privacy_settlement.core.enums import BucketSide, EngineVersion, EventKind
from privacy_settlement.core.models import EncryptedHandle, Pool, PositionSnapshot
from privacy_settlement.domain.events import LedgerEvent
from privacy_settlement.encryption.mock import MockEncryptionClient
from privacy_settlement.session.manager import SessionManager
from privacy_settlement.session.retry import RetryPolicy

USER = "0x1111111111111111111111111111111111111111"
OTHER_USER = "0x2222222222222222222222222222222222222222"
ENGINE = "0x3333333333333333333333333333333333333333"
POOL = "0x" + "ab" * 32
OTHER_POOL = "0x" + "cd" * 32
CHAIN_ID = 421614


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeProvider:
    def __init__(self, chain_id: int = CHAIN_ID) -> None:
        self.chain_id = chain_id

    async def get_chain_id(self) -> int:
        return self.chain_id


class FakeSigner:
    def __init__(self, address: str = USER) -> None:
        self.address = address

    async def get_address(self) -> str:
        return self.address


class RecordingSleep:
    """Awaitable sleep stand-in that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeLogReader:
    """``ILogReader`` serving canned events per kind.

    A kind mapped to an exception instance raises it instead.
    """

    def __init__(self, head: int = 100_000) -> None:
        self.head = head
        self.events: dict[EventKind, Sequence[LedgerEvent] | Exception] = {}
        self.calls: list[dict[str, Any]] = []

    async def get_block_number(self) -> int:
        return self.head

    async def get_events(
        self,
        kind: EventKind,
        version: EngineVersion,
        *,
        address: str,
        from_block: int,
        to_block: int,
        user: str | None = None,
    ) -> Sequence[LedgerEvent]:
        self.calls.append(
            dict(kind=kind, version=version, address=address,
                 from_block=from_block, to_block=to_block, user=user)
        )
        result = self.events.get(kind, ())
        if isinstance(result, Exception):
            raise result
        return list(result)


class FakeStateProbe:
    """``IStateProbe`` keyed by ``(pool_id, tick, side)``."""

    def __init__(self) -> None:
        self.snapshots: dict[tuple[str, int, int], PositionSnapshot] = {}
        self.failing: set[tuple[str, int, int]] = set()
        self.reads: list[tuple[str, str, int, int]] = []

    def set_realized(self, pool_id: str, tick: int, side: BucketSide, handle: int) -> None:
        self.snapshots[(pool_id.lower(), tick, int(side))] = PositionSnapshot(
            shares=10, realized_proceeds=handle
        )

    async def read_position(
        self, pool_id: str, user: str, tick: int, side: BucketSide
    ) -> PositionSnapshot:
        key = (pool_id.lower(), tick, int(side))
        self.reads.append((pool_id, user, tick, int(side)))
        if key in self.failing:
            raise ConnectionError("rpc timeout")
        return self.snapshots.get(key, PositionSnapshot())


class FakeEngine:
    """``ISettlementEngine`` recording write calls in order."""

    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.fail_on: dict[tuple[str, int, int], Exception] = {}
        self.in_flight = 0
        self.max_in_flight = 0

    async def claim(self, pool_id: str, tick: int, side: BucketSide) -> str:
        return await self._write("claim", pool_id, tick, side)

    async def withdraw(
        self, pool_id: str, tick: int, side: BucketSide, amount: EncryptedHandle
    ) -> str:
        return await self._write("withdraw", pool_id, tick, side, amount)

    async def get_pool_state(self, pool_id: str) -> Pool:
        return Pool(pool_id=pool_id, token0=USER, token1=OTHER_USER, initialized=True)

    async def _write(self, call: str, pool_id: str, tick: int, side: BucketSide, *extra: Any) -> str:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            self.calls.append((call, pool_id, tick, int(side), *extra))
            error = self.fail_on.get((pool_id.lower(), tick, int(side)))
            if error is not None:
                raise error
            return "0x" + f"{len(self.calls):064x}"
        finally:
            self.in_flight -= 1


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def sim_clock() -> SimClock:
    return SimClock(datetime(2024, 6, 1, tzinfo=timezone.utc))


@pytest.fixture
def mock_client(sim_clock) -> MockEncryptionClient:
    return MockEncryptionClient(clock=sim_clock)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def session_manager(mock_client, sim_clock, recording_sleep) -> SessionManager:
    return SessionManager(
        mock_client,
        clock=sim_clock,
        session_duration=timedelta(hours=24),
        retry_policy=RetryPolicy(max_attempts=3, base_delay=1.0, not_materialized_base_delay=4.0),
        reveal_cache_ttl=timedelta(minutes=5),
        sleep=recording_sleep,
    )


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def signer() -> FakeSigner:
    return FakeSigner()


@pytest.fixture
def log_reader() -> FakeLogReader:
    return FakeLogReader()


@pytest.fixture
def state_probe() -> FakeStateProbe:
    return FakeStateProbe()


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def make_signer():
    return FakeSigner


@pytest.fixture
def make_provider():
    return FakeProvider
