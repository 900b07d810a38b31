"""
StakeVault - a token-staking ledger with time-proportional yield.

Key features:
- Per-account deposit ledger with order-preserving removal
- APY catalog keyed by lock duration, rates snapshotted per deposit
- Linear, duration-capped integer reward accrual
- Early-exit penalty vs. matured fee-plus-reward settlement
- All-or-nothing payouts checked against the treasury balance
- Admin reward lifecycle (start / stop / parameters / emergency sweep)
- aiohttp API with signed (secp256k1) depositor requests
"""

__version__ = "1.0.0"
__all__ = [
    "account_ledger",
    "api",
    "apy_catalog",
    "clock",
    "config",
    "crypto_utils",
    "errors",
    "events",
    "invariants",
    "logging_config",
    "precision",
    "rewards",
    "token",
    "treasury",
    "vault",
    "wallet",
]
