"""Configuration management.

Loads from TOML config files + environment variables.
Uses pydantic-settings for validation and env var overriding.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

from .enums import EngineVersion, LogFormat
from .models import DEFAULT_TICK_SPACING, ZERO_ADDRESS


# ---------------------------------------------------------------------------
# Sub-configs
# ---------------------------------------------------------------------------

class ChainConfig(BaseModel):
    rpc_url: str = "http://127.0.0.1:8545"
    chain_id: int = 421614  # Arbitrum Sepolia
    engine_address: str = ZERO_ADDRESS
    engine_version: EngineVersion = EngineVersion.V8
    lookback_blocks: int = 50_000  # Upstream getLogs range limit
    tick_spacing: int = DEFAULT_TICK_SPACING
    request_timeout: float = 30.0  # seconds
    private_key_env: str = ""  # Name of env var holding the signing key

    @property
    def private_key(self) -> str:
        return os.environ.get(self.private_key_env, "") if self.private_key_env else ""


class SessionConfig(BaseModel):
    service_url: str = "http://127.0.0.1:3000/api/fhe"
    session_duration_seconds: float = 24 * 60 * 60
    decrypt_max_attempts: int = 3
    decrypt_base_delay: float = 1.0  # seconds
    not_materialized_base_delay: float = 4.0  # upstream needs time, not a client fix
    max_delay: float = 30.0
    reveal_cache_ttl_seconds: float = 5 * 60
    request_timeout: float = 30.0


class ObservabilityConfig(BaseModel):
    log_level: str = "INFO"
    log_format: LogFormat = LogFormat.JSON


# ---------------------------------------------------------------------------
# Top-level settings
# ---------------------------------------------------------------------------

class Settings(BaseSettings):
    """Top-level application settings.

    Loaded from TOML config files, overridden by environment variables.
    """

    chain: ChainConfig = Field(default_factory=ChainConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    # In-process encryption stand-in for local / unsupported networks
    mock_encryption: bool = False

    model_config = {"env_prefix": "SETTLEMENT_", "env_nested_delimiter": "__"}

    def validate_chain(self) -> None:
        """Refuse to talk to an engine that is not deployed."""
        from .errors import SafetyGateError

        address = self.chain.engine_address.lower()
        if not address or address == ZERO_ADDRESS:
            raise SafetyGateError(
                "chain.engine_address is not set; the settlement engine "
                f"is not deployed on chain {self.chain.chain_id}."
            )


def load_settings(
    config_path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> Settings:
    """Load settings from TOML file + env vars.

    Args:
        config_path: Path to TOML config file (optional).
        overrides: Dict of overrides to apply on top.
    """
    data: dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        if path.exists():
            import tomli

            with open(path, "rb") as f:
                data = tomli.load(f)

    if overrides:
        for key, value in overrides.items():
            if isinstance(value, dict) and isinstance(data.get(key), dict):
                data[key] = {**data[key], **value}
            else:
                data[key] = value

    return Settings(**data)
