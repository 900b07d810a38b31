"""
TOML-based configuration for the staking vault.

Loads settings from a TOML file and/or environment variables.
Environment variables take precedence over file values.

Usage:
    from stakevault_core.config import load_config
    cfg = load_config("stakevault.toml")
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomllib  # type: ignore[import]
    except ModuleNotFoundError:
        import tomli as tomllib  # type: ignore[import,no-redef]


@dataclass
class VaultConfig:
    """Creation parameters of the vault.

    Defaults give a demo deployment: 50 % APY over a 10-second
    lock, 5 % early-exit penalty, 1 % withdrawal fee.
    """
    apy_percentage: int = 50
    apy_duration: int = 10               # seconds
    exit_penalty_percentage: int = 5
    withdraw_fee_percentage: int = 1
    # Seed for the admin wallet; empty = generate a fresh key each run
    admin_seed: str = ""
    address: str = "0x000000000000000000000000000000000057a4e1"


@dataclass
class TokenConfig:
    """The staked (and reward) token.

    ``balances`` maps address → initial balance in minor units.  The vault
    address may be listed to pre-fund the reward treasury.
    """
    symbol: str = "FAT"
    decimals: int = 18
    transfer_fee_bps: int = 0
    balances: dict[str, int] = field(default_factory=dict)


@dataclass
class APIConfig:
    """REST API settings."""
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 8080
    api_key: str = ""                 # require this key on POST endpoints (empty = no auth)
    admin_key: str = ""               # X-Admin-Key for /admin/* (empty = admin endpoints off)
    rate_limit_rpm: int = 120          # max requests per minute per IP (0 = unlimited)
    cors_origins: list[str] = field(default_factory=list)  # allowed CORS origins (empty = no CORS)
    max_body_bytes: int = 65_536


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    format: str = "human"   # "human" or "json"
    file: str | None = None


@dataclass
class StakeVaultConfig:
    """Top-level configuration container."""
    vault: VaultConfig = field(default_factory=VaultConfig)
    token: TokenConfig = field(default_factory=TokenConfig)
    api: APIConfig = field(default_factory=APIConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Merge a raw dict into a dataclass instance (in-place)."""
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if hasattr(dc, key_under):
            setattr(dc, key_under, value)


def load_config(path: str | None = None) -> StakeVaultConfig:
    """
    Load configuration from a TOML file, then overlay environment variables.

    Env-var mapping:
        STAKEVAULT_APY_PERCENTAGE -> vault.apy_percentage
        STAKEVAULT_APY_DURATION   -> vault.apy_duration
        STAKEVAULT_EXIT_PENALTY   -> vault.exit_penalty_percentage
        STAKEVAULT_WITHDRAW_FEE   -> vault.withdraw_fee_percentage
        STAKEVAULT_ADMIN_SEED     -> vault.admin_seed
        STAKEVAULT_HOST           -> api.host
        STAKEVAULT_PORT           -> api.port
        STAKEVAULT_API_KEY        -> api.api_key
        STAKEVAULT_ADMIN_KEY      -> api.admin_key
        STAKEVAULT_CORS_ORIGINS   -> api.cors_origins  (comma-separated)
        STAKEVAULT_LOG_LEVEL      -> logging.level
        STAKEVAULT_LOG_FMT        -> logging.format
    """
    cfg = StakeVaultConfig()

    # ── TOML file ────────────────────────────────────────────────
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "rb") as f:
                data = tomllib.load(f)
            for section_name, section_dc in [
                ("vault", cfg.vault),
                ("token", cfg.token),
                ("api", cfg.api),
                ("logging", cfg.logging),
            ]:
                if section_name in data:
                    _merge(section_dc, data[section_name])

    # ── Environment variable overrides ───────────────────────────
    if v := os.environ.get("STAKEVAULT_APY_PERCENTAGE"):
        cfg.vault.apy_percentage = int(v)
    if v := os.environ.get("STAKEVAULT_APY_DURATION"):
        cfg.vault.apy_duration = int(v)
    if v := os.environ.get("STAKEVAULT_EXIT_PENALTY"):
        cfg.vault.exit_penalty_percentage = int(v)
    if v := os.environ.get("STAKEVAULT_WITHDRAW_FEE"):
        cfg.vault.withdraw_fee_percentage = int(v)
    if v := os.environ.get("STAKEVAULT_ADMIN_SEED"):
        cfg.vault.admin_seed = v
    if v := os.environ.get("STAKEVAULT_HOST"):
        cfg.api.host = v
    if v := os.environ.get("STAKEVAULT_PORT"):
        cfg.api.port = int(v)
    if v := os.environ.get("STAKEVAULT_API_KEY"):
        cfg.api.api_key = v
    if v := os.environ.get("STAKEVAULT_ADMIN_KEY"):
        cfg.api.admin_key = v
    if v := os.environ.get("STAKEVAULT_CORS_ORIGINS"):
        cfg.api.cors_origins = [o.strip() for o in v.split(",") if o.strip()]
    if v := os.environ.get("STAKEVAULT_LOG_LEVEL"):
        cfg.logging.level = v.upper()
    if v := os.environ.get("STAKEVAULT_LOG_FMT"):
        cfg.logging.format = v

    return cfg
