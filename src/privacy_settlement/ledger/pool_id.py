"""Pool identifier derivation.

``poolId = keccak256(abi.encode(currency0, currency1, fee, tickSpacing, hooks))``
with the two currencies sorted by address.  The hooks address is the
settlement engine, so the same token pair on two engines has two pools.
"""

from __future__ import annotations

from dataclasses import dataclass

from eth_abi import encode
from web3 import Web3

from privacy_settlement.core.models import DEFAULT_TICK_SPACING

DEFAULT_POOL_FEE = 3000


@dataclass(frozen=True)
class PoolKey:
    currency0: str
    currency1: str
    fee: int
    tick_spacing: int
    hooks: str


def sort_tokens(token_a: str, token_b: str) -> tuple[str, str]:
    a = Web3.to_checksum_address(token_a)
    b = Web3.to_checksum_address(token_b)
    return (a, b) if int(a, 16) < int(b, 16) else (b, a)


def create_pool_key(
    token_a: str,
    token_b: str,
    hooks: str,
    fee: int = DEFAULT_POOL_FEE,
    tick_spacing: int = DEFAULT_TICK_SPACING,
) -> PoolKey:
    currency0, currency1 = sort_tokens(token_a, token_b)
    return PoolKey(
        currency0=currency0,
        currency1=currency1,
        fee=fee,
        tick_spacing=tick_spacing,
        hooks=Web3.to_checksum_address(hooks),
    )


def compute_pool_id(key: PoolKey) -> str:
    """Lower-case ``0x`` hex of the 32-byte pool identifier."""
    encoded = encode(
        ["address", "address", "uint24", "int24", "address"],
        [key.currency0, key.currency1, key.fee, key.tick_spacing, key.hooks],
    )
    return "0x" + Web3.keccak(encoded).hex().removeprefix("0x").lower()


def pool_id_from_tokens(
    token_a: str,
    token_b: str,
    hooks: str,
    fee: int = DEFAULT_POOL_FEE,
    tick_spacing: int = DEFAULT_TICK_SPACING,
) -> str:
    return compute_pool_id(create_pool_key(token_a, token_b, hooks, fee, tick_spacing))
