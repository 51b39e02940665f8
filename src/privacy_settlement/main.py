"""Application bootstrap.

Wires the chain adapters, the encryption service, the session manager,
the tracker and the claim orchestrator from ``Settings``, and runs the
two CLI flows (list claimable orders, claim them all).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import AsyncWeb3

from .core.clock import WallClock
from .core.config import Settings, load_settings
from .core.errors import ConfigError
from .core.interfaces import IEncryptionClient
from .encryption.client import HttpEncryptionClient
from .encryption.mock import MockEncryptionClient
from .ledger.chain import AccountSigner, Web3LogReader, Web3Provider, Web3StateProbe, make_web3
from .ledger.event_source import LedgerEventSource
from .observability.logger import get_logger, setup_logging
from .reconciliation.tracker import ClaimableOrdersTracker, ReconciliationRun
from .session.manager import SessionManager
from .session.retry import RetryPolicy
from .settlement.engine import Web3SettlementEngine
from .settlement.orchestrator import ClaimOrchestrator, ClaimSummary

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    w3: AsyncWeb3
    encryption: IEncryptionClient
    session_manager: SessionManager
    tracker: ClaimableOrdersTracker
    engine: Web3SettlementEngine
    orchestrator: ClaimOrchestrator
    account: LocalAccount | None = None

    async def close(self) -> None:
        if isinstance(self.encryption, HttpEncryptionClient):
            await self.encryption.close()
        await self.w3.provider.disconnect()


def retry_policy_from(settings: Settings) -> RetryPolicy:
    cfg = settings.session
    return RetryPolicy(
        max_attempts=cfg.decrypt_max_attempts,
        base_delay=cfg.decrypt_base_delay,
        not_materialized_base_delay=cfg.not_materialized_base_delay,
        max_delay=cfg.max_delay,
    )


def build_encryption_client(settings: Settings) -> IEncryptionClient:
    if settings.mock_encryption:
        logger.info("Using in-process mock encryption service")
        return MockEncryptionClient(
            session_duration=timedelta(seconds=settings.session.session_duration_seconds)
        )
    return HttpEncryptionClient(
        settings.session.service_url, timeout=settings.session.request_timeout
    )


def build_services(settings: Settings, private_key: str | None = None) -> Services:
    """Construct every runtime component from settings."""
    settings.validate_chain()
    chain = settings.chain
    w3 = make_web3(chain.rpc_url, chain.request_timeout)

    key = private_key if private_key is not None else chain.private_key
    account: LocalAccount | None = Account.from_key(key) if key else None

    encryption = build_encryption_client(settings)
    session_manager = SessionManager(
        encryption,
        clock=WallClock(),
        session_duration=timedelta(seconds=settings.session.session_duration_seconds),
        retry_policy=retry_policy_from(settings),
        reveal_cache_ttl=timedelta(seconds=settings.session.reveal_cache_ttl_seconds),
    )
    tracker = ClaimableOrdersTracker(
        LedgerEventSource(Web3LogReader(w3), lookback_blocks=chain.lookback_blocks),
        Web3StateProbe(w3, chain.engine_address, chain.engine_version),
        engine_address=chain.engine_address,
        engine_version=chain.engine_version,
    )
    engine = Web3SettlementEngine(
        w3,
        chain.engine_address,
        chain.engine_version,
        account=account,
        chain_id=chain.chain_id,
    )
    orchestrator = ClaimOrchestrator(
        engine,
        session_manager,
        refresh=tracker.refresh_orders,
        tick_spacing=chain.tick_spacing,
    )
    return Services(
        settings=settings,
        w3=w3,
        encryption=encryption,
        session_manager=session_manager,
        tracker=tracker,
        engine=engine,
        orchestrator=orchestrator,
        account=account,
    )


def _bootstrap(config_path: str | None, overrides: dict[str, Any] | None) -> Settings:
    settings = load_settings(config_path=config_path, overrides=overrides)
    setup_logging(
        settings.observability.log_level, settings.observability.log_format.value
    )
    return settings


async def run_claimable(
    user: str,
    config_path: str | None = None,
    overrides: dict[str, Any] | None = None,
) -> ReconciliationRun | None:
    """Fetch and reconcile the claimable orders of ``user``."""
    settings = _bootstrap(config_path, overrides)
    services = build_services(settings)
    try:
        return await services.tracker.refresh(user)
    finally:
        await services.close()


async def run_claim_all(
    private_key: str,
    config_path: str | None = None,
    overrides: dict[str, Any] | None = None,
) -> ClaimSummary:
    """Reconcile for the signing account, then claim every claimable order."""
    if not private_key:
        raise ConfigError("A signing key is required to claim")
    settings = _bootstrap(config_path, overrides)
    services = build_services(settings, private_key=private_key)
    assert services.account is not None
    try:
        await services.session_manager.authorize(
            Web3Provider(services.w3),
            AccountSigner(services.account.address),
            settings.chain.engine_address,
        )
        run = await services.tracker.refresh(services.account.address)
        orders = list(run.orders) if run is not None else []
        logger.info("Claiming %d orders for %s", len(orders), services.account.address)
        summary = await services.orchestrator.claim_all(
            orders, trace_id=run.trace_id if run is not None else None
        )
        get_logger(__name__).info(
            "claim_all_finished",
            claimed=len(summary.claimed),
            failed=len(summary.failures),
            refreshed=summary.refresh_error is None,
        )
        return summary
    finally:
        await services.close()
