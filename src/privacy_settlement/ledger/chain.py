"""web3 adapters for the settlement engine's logs and point reads.

``Web3LogReader`` implements ``ILogReader`` and ``Web3StateProbe``
implements ``IStateProbe`` on top of ``AsyncWeb3``.  Log decoding is a
pure function of the web3 log mapping so it can be exercised without a
node.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Sequence

from web3 import AsyncHTTPProvider, AsyncWeb3, Web3

from privacy_settlement.core.enums import BucketSide, EngineVersion, EventKind
from privacy_settlement.core.models import PositionSnapshot
from privacy_settlement.domain.events import (
    BucketFilled,
    ClaimEvent,
    DepositEvent,
    LedgerEvent,
    RangeActivated,
    WithdrawEvent,
)

from .abi import engine_abi, event_name

logger = logging.getLogger(__name__)

_POSITION_EVENTS: dict[EventKind, type] = {
    EventKind.DEPOSIT: DepositEvent,
    EventKind.CLAIM: ClaimEvent,
    EventKind.WITHDRAW: WithdrawEvent,
}


def make_web3(rpc_url: str, timeout: float = 30.0) -> AsyncWeb3:
    return AsyncWeb3(AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))


def to_bytes32(pool_id: str) -> bytes:
    raw = Web3.to_bytes(hexstr=pool_id)
    if len(raw) != 32:
        raise ValueError(f"pool id must be 32 bytes, got {len(raw)}: {pool_id}")
    return raw


def _hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value)
    return text if text.startswith("0x") else "0x" + text


def decode_log(
    kind: EventKind, version: EngineVersion, log: Mapping[str, Any]
) -> LedgerEvent | None:
    """Map a decoded web3 log to a ledger event.

    Returns ``None`` when a required argument is missing.
    """
    args = log.get("args") or {}
    pool_id = args.get("poolId")
    if pool_id is None:
        return None

    common = dict(
        pool_id=_hex(pool_id).lower(),
        block_number=int(log.get("blockNumber") or 0),
        log_index=int(log.get("logIndex") or 0),
        tx_hash=_hex(log.get("transactionHash") or b""),
    )

    if kind is EventKind.FILL:
        if version is EngineVersion.V6:
            tick, side = args.get("tick"), args.get("side")
            if tick is None or side is None:
                return None
            return BucketFilled(tick=int(tick), side=BucketSide(int(side)), **common)
        from_tick, to_tick = args.get("fromTick"), args.get("toTick")
        if from_tick is None or to_tick is None:
            return None
        return RangeActivated(
            from_tick=int(from_tick),
            to_tick=int(to_tick),
            count_activated=int(args.get("bucketsActivated") or 0),
            **common,
        )

    user, tick, side = args.get("user"), args.get("tick"), args.get("side")
    if user is None or tick is None or side is None:
        return None
    commitment = args.get("amountHash")
    cls = _POSITION_EVENTS[kind]
    return cls(
        user=str(user).lower(),
        tick=int(tick),
        side=BucketSide(int(side)),
        amount_commitment=_hex(commitment) if commitment is not None else None,
        **common,
    )


class Web3LogReader:
    """``ILogReader`` backed by ``eth_getLogs``."""

    def __init__(self, w3: AsyncWeb3) -> None:
        self._w3 = w3
        self._contracts: dict[tuple[str, EngineVersion], Any] = {}

    def _contract(self, address: str, version: EngineVersion) -> Any:
        key = (address.lower(), version)
        if key not in self._contracts:
            self._contracts[key] = self._w3.eth.contract(
                address=Web3.to_checksum_address(address), abi=engine_abi(version)
            )
        return self._contracts[key]

    async def get_block_number(self) -> int:
        return int(await self._w3.eth.block_number)

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
        contract = self._contract(address, version)
        event = getattr(contract.events, event_name(version, kind))
        filters: dict[str, Any] = {}
        if user is not None and kind is not EventKind.FILL:
            filters["user"] = Web3.to_checksum_address(user)
        logs = await event.get_logs(
            argument_filters=filters or None,
            from_block=from_block,
            to_block=to_block,
        )
        decoded = [decode_log(kind, version, log) for log in logs]
        events = [e for e in decoded if e is not None]
        if len(events) != len(logs):
            logger.debug(
                "Dropped %d undecodable %s logs", len(logs) - len(events), kind.value
            )
        return events


class Web3StateProbe:
    """``IStateProbe`` reading ``positions(poolId, user, tick, side)``."""

    def __init__(self, w3: AsyncWeb3, engine_address: str, version: EngineVersion) -> None:
        self._contract = w3.eth.contract(
            address=Web3.to_checksum_address(engine_address), abi=engine_abi(version)
        )

    async def read_position(
        self, pool_id: str, user: str, tick: int, side: BucketSide
    ) -> PositionSnapshot:
        shares, proceeds, filled, realized = await self._contract.functions.positions(
            to_bytes32(pool_id), Web3.to_checksum_address(user), int(tick), int(side)
        ).call()
        return PositionSnapshot(
            shares=int(shares),
            proceeds_snapshot=int(proceeds),
            filled_snapshot=int(filled),
            realized_proceeds=int(realized),
        )


class Web3Provider:
    """``IProvider`` over ``AsyncWeb3``."""

    def __init__(self, w3: AsyncWeb3) -> None:
        self._w3 = w3

    async def get_chain_id(self) -> int:
        return int(await self._w3.eth.chain_id)


class AccountSigner:
    """``ISigner`` for a fixed address (local account or node account)."""

    def __init__(self, address: str) -> None:
        self._address = Web3.to_checksum_address(address)

    async def get_address(self) -> str:
        return self._address
