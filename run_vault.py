#!/usr/bin/env python3
"""
StakeVault runner — starts a staking vault with:
  - An in-memory staking/reward token
  - The vault itself, administered by a local admin wallet
  - The HTTP API (read, signed depositor and admin endpoints)

Usage:
    python run_vault.py --config stakevault.toml \\
                        --fund-address 0xabc… --fund-amount 1000 \\
                        --treasury 50000

Environment variables (alternative to flags): see stakevault_core.config.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import os
import sys

PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from stakevault_core.api import APIServer  # noqa: E402
from stakevault_core.config import StakeVaultConfig, load_config  # noqa: E402
from stakevault_core.logging_config import setup_logging  # noqa: E402
from stakevault_core.precision import format_amount, to_minor_units  # noqa: E402
from stakevault_core.token import InMemoryToken  # noqa: E402
from stakevault_core.vault import StakingVault  # noqa: E402
from stakevault_core.wallet import Wallet  # noqa: E402

logger = logging.getLogger("stakevault")


class VaultNode:
    """Token, vault and API wired together from one configuration."""

    def __init__(self, config: StakeVaultConfig):
        self.config = config
        vc = config.vault
        self.admin_wallet = (
            Wallet.from_seed(vc.admin_seed) if vc.admin_seed else Wallet.create()
        )
        self.token = InMemoryToken(
            symbol=config.token.symbol,
            decimals=config.token.decimals,
            transfer_fee_bps=config.token.transfer_fee_bps,
            balances={a.lower(): int(b) for a, b in config.token.balances.items()},
        )
        self.vault = StakingVault(
            self.token,
            self.admin_wallet.address,
            vc.apy_percentage,
            vc.apy_duration,
            vc.exit_penalty_percentage,
            vc.withdraw_fee_percentage,
            address=vc.address.lower(),
        )
        self._api: APIServer | None = None

    def fund(self, address: str, whole_tokens: str) -> int:
        amount = to_minor_units(whole_tokens, self.token.decimals)
        self.token.mint(address.lower(), amount)
        logger.info(f"Funded {address} with {format_amount(amount, self.token.decimals, self.token.symbol)}")
        return amount

    async def start(self) -> None:
        if self.config.api.enabled:
            self._api = APIServer(
                self.vault,
                host=self.config.api.host,
                port=self.config.api.port,
                api_config=self.config.api,
            )
            await self._api.start()
        if not self.config.api.admin_key:
            logger.warning("No admin_key configured; /admin endpoints are disabled")
        logger.info(
            f"Vault {self.vault.address} started | admin={self.admin_wallet.address} | "
            f"token={self.token.symbol}"
        )

    async def stop(self) -> None:
        if self._api is not None:
            await self._api.stop()


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="StakeVault staking node")
    p.add_argument("--config", default=None, help="Path to stakevault.toml config file")
    p.add_argument("--host", default=None, help="API listen host")
    p.add_argument("--port", type=int, default=None, help="API listen port")
    p.add_argument("--fund-address", default=None,
                   help="Mint tokens to this address at start-up (dev only)")
    p.add_argument("--fund-amount", default="1000",
                   help="Whole tokens minted to --fund-address")
    p.add_argument("--treasury", default=None,
                   help="Whole tokens minted to the vault as reward capacity")
    return p.parse_args()


async def main() -> None:
    args = parse_args()
    cfg = load_config(args.config)
    setup_logging(cfg.logging.level, cfg.logging.format, cfg.logging.file)

    if args.host:
        cfg.api.host = args.host
    if args.port:
        cfg.api.port = args.port

    node = VaultNode(cfg)
    if args.fund_address:
        node.fund(args.fund_address, args.fund_amount)
    if args.treasury:
        node.fund(node.vault.address, args.treasury)

    await node.start()
    try:
        while True:
            await asyncio.sleep(1)
    except (KeyboardInterrupt, asyncio.CancelledError):
        pass
    finally:
        await node.stop()


def main_sync():
    """Synchronous entry point for console_scripts."""
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(main())


if __name__ == "__main__":
    main_sync()
