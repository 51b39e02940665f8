"""Settlement-engine ABI fragments.

Event shapes differ between engine generations; reads and writes are
shared.  Authoritative shapes:

v6  ``Deposit(bytes32 indexed poolId, address indexed user, int24 indexed tick, uint8 side, bytes32 amountHash)``
    ``Withdraw`` / ``Claim`` likewise, ``BucketFilled(bytes32 indexed poolId, int24 indexed tick, uint8 side)``
v8  ``Deposit(bytes32 indexed poolId, address indexed user, int24 tick, uint8 side)``
    ``Withdraw`` / ``Claim`` likewise, ``MomentumActivated(bytes32 indexed poolId, int24 fromTick, int24 toTick, uint8 bucketsActivated)``
"""

from __future__ import annotations

from typing import Any

from privacy_settlement.core.enums import EngineVersion, EventKind


def _input(name: str, type_: str, indexed: bool = False) -> dict[str, Any]:
    return {"name": name, "type": type_, "indexed": indexed}


def _event(name: str, *inputs: dict[str, Any]) -> dict[str, Any]:
    return {"type": "event", "name": name, "anonymous": False, "inputs": list(inputs)}


def _position_event(name: str, *, indexed_tick: bool, with_commitment: bool) -> dict[str, Any]:
    inputs = [
        _input("poolId", "bytes32", True),
        _input("user", "address", True),
        _input("tick", "int24", indexed_tick),
        _input("side", "uint8"),
    ]
    if with_commitment:
        inputs.append(_input("amountHash", "bytes32"))
    return _event(name, *inputs)


V6_EVENTS: list[dict[str, Any]] = [
    _position_event("Deposit", indexed_tick=True, with_commitment=True),
    _position_event("Withdraw", indexed_tick=True, with_commitment=True),
    _position_event("Claim", indexed_tick=True, with_commitment=True),
    _event(
        "BucketFilled",
        _input("poolId", "bytes32", True),
        _input("tick", "int24", True),
        _input("side", "uint8"),
    ),
]

V8_EVENTS: list[dict[str, Any]] = [
    _position_event("Deposit", indexed_tick=False, with_commitment=False),
    _position_event("Withdraw", indexed_tick=False, with_commitment=False),
    _position_event("Claim", indexed_tick=False, with_commitment=False),
    _event(
        "MomentumActivated",
        _input("poolId", "bytes32", True),
        _input("fromTick", "int24"),
        _input("toTick", "int24"),
        _input("bucketsActivated", "uint8"),
    ),
]

_IN_EUINT128 = {
    "name": "amount",
    "type": "tuple",
    "internalType": "struct InEuint128",
    "components": [
        {"name": "ctHash", "type": "uint256"},
        {"name": "securityZone", "type": "uint8"},
        {"name": "utype", "type": "uint8"},
        {"name": "signature", "type": "bytes"},
    ],
}

FUNCTIONS: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "positions",
        "stateMutability": "view",
        "inputs": [
            {"name": "poolId", "type": "bytes32"},
            {"name": "user", "type": "address"},
            {"name": "tick", "type": "int24"},
            {"name": "side", "type": "uint8"},
        ],
        "outputs": [
            {"name": "shares", "type": "uint256"},
            {"name": "proceedsPerShareSnapshot", "type": "uint256"},
            {"name": "filledPerShareSnapshot", "type": "uint256"},
            {"name": "realizedProceeds", "type": "uint256"},
        ],
    },
    {
        "type": "function",
        "name": "getPoolState",
        "stateMutability": "view",
        "inputs": [{"name": "poolId", "type": "bytes32"}],
        "outputs": [
            {"name": "token0", "type": "address"},
            {"name": "token1", "type": "address"},
            {"name": "initialized", "type": "bool"},
            {"name": "protocolFeeBps", "type": "uint256"},
        ],
    },
    {
        "type": "function",
        "name": "claim",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "poolId", "type": "bytes32"},
            {"name": "tick", "type": "int24"},
            {"name": "side", "type": "uint8"},
        ],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "withdraw",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "poolId", "type": "bytes32"},
            {"name": "tick", "type": "int24"},
            {"name": "side", "type": "uint8"},
            _IN_EUINT128,
        ],
        "outputs": [],
    },
]

_EVENT_NAMES: dict[EngineVersion, dict[EventKind, str]] = {
    EngineVersion.V6: {
        EventKind.DEPOSIT: "Deposit",
        EventKind.CLAIM: "Claim",
        EventKind.WITHDRAW: "Withdraw",
        EventKind.FILL: "BucketFilled",
    },
    EngineVersion.V8: {
        EventKind.DEPOSIT: "Deposit",
        EventKind.CLAIM: "Claim",
        EventKind.WITHDRAW: "Withdraw",
        EventKind.FILL: "MomentumActivated",
    },
}


def event_name(version: EngineVersion, kind: EventKind) -> str:
    return _EVENT_NAMES[version][kind]


def engine_abi(version: EngineVersion) -> list[dict[str, Any]]:
    """Full ABI for one engine generation."""
    events = V6_EVENTS if version is EngineVersion.V6 else V8_EVENTS
    return [*events, *FUNCTIONS]
