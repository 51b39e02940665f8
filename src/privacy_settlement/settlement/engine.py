"""web3 adapter for settlement-engine write calls and pool reads.

Write calls are signed locally when an account is configured, otherwise
sent through the node's ``eth_sendTransaction``.  A contract-logic error
or a receipt with status 0 is raised as ``EngineRevert`` and never
retried here.
"""

from __future__ import annotations

import logging
from typing import Any

from eth_account.signers.local import LocalAccount
from web3 import AsyncWeb3, Web3
from web3.exceptions import ContractLogicError

from privacy_settlement.core.enums import BucketSide, EngineVersion
from privacy_settlement.core.errors import EngineRevert
from privacy_settlement.core.models import EncryptedHandle, Pool, PositionKey
from privacy_settlement.ledger.abi import engine_abi
from privacy_settlement.ledger.chain import to_bytes32

logger = logging.getLogger(__name__)

DEFAULT_RECEIPT_TIMEOUT = 120.0


def encrypted_input(handle: EncryptedHandle, signature: bytes = b"") -> tuple[int, int, int, bytes]:
    """``InEuint128`` tuple ``(ctHash, securityZone, utype, signature)``."""
    return (handle.ciphertext, handle.security_zone, handle.type.utype, signature)


class Web3SettlementEngine:
    """``ISettlementEngine`` over ``AsyncWeb3``.

    Parameters
    ----------
    w3:
        Connected async web3 instance.
    engine_address:
        Settlement engine (pool hook) contract.
    version:
        ABI generation of the engine.
    account:
        Local signing account.  When ``None`` the node's default account
        signs.
    chain_id:
        Chain id stamped on locally signed transactions.
    """

    def __init__(
        self,
        w3: AsyncWeb3,
        engine_address: str,
        version: EngineVersion,
        *,
        account: LocalAccount | None = None,
        chain_id: int | None = None,
        receipt_timeout: float = DEFAULT_RECEIPT_TIMEOUT,
    ) -> None:
        self._w3 = w3
        self._contract = w3.eth.contract(
            address=Web3.to_checksum_address(engine_address), abi=engine_abi(version)
        )
        self._account = account
        self._chain_id = chain_id
        self._receipt_timeout = receipt_timeout

    async def claim(self, pool_id: str, tick: int, side: BucketSide) -> str:
        fn = self._contract.functions.claim(to_bytes32(pool_id), int(tick), int(side))
        return await self._send("claim", PositionKey.of(pool_id, tick, side), fn)

    async def withdraw(
        self, pool_id: str, tick: int, side: BucketSide, amount: EncryptedHandle
    ) -> str:
        fn = self._contract.functions.withdraw(
            to_bytes32(pool_id), int(tick), int(side), encrypted_input(amount)
        )
        return await self._send("withdraw", PositionKey.of(pool_id, tick, side), fn)

    async def get_pool_state(self, pool_id: str) -> Pool:
        token0, token1, initialized, fee = await self._contract.functions.getPoolState(
            to_bytes32(pool_id)
        ).call()
        return Pool(
            pool_id=pool_id.lower(),
            token0=str(token0),
            token1=str(token1),
            initialized=bool(initialized),
            protocol_fee=int(fee),
        )

    # ------------------------------------------------------------------

    async def _send(self, call: str, key: PositionKey, fn: Any) -> str:
        try:
            if self._account is not None:
                tx_hash = await self._send_signed(fn)
            else:
                tx_hash = await fn.transact()
        except ContractLogicError as exc:
            raise EngineRevert(call, key, str(exc)) from exc

        receipt = await self._w3.eth.wait_for_transaction_receipt(
            tx_hash, timeout=self._receipt_timeout
        )
        hex_hash = Web3.to_hex(tx_hash)
        if receipt["status"] != 1:
            logger.warning("%s reverted for %s: tx %s", call, key, hex_hash)
            raise EngineRevert(call, key, f"transaction {hex_hash} reverted")
        logger.info("%s confirmed for %s: tx %s", call, key, hex_hash)
        return hex_hash

    async def _send_signed(self, fn: Any) -> Any:
        assert self._account is not None
        sender = self._account.address
        params: dict[str, Any] = {
            "from": sender,
            "nonce": await self._w3.eth.get_transaction_count(sender, "pending"),
        }
        if self._chain_id is not None:
            params["chainId"] = self._chain_id
        tx = await fn.build_transaction(params)
        signed = self._account.sign_transaction(tx)
        return await self._w3.eth.send_raw_transaction(signed.raw_transaction)
