"""
Error taxonomy for the staking vault.

Every rejected operation raises a ``VaultError`` subclass carrying a short
machine-readable ``code`` (e.g. ``"InvalidDuration"``).  Families:

  - ValidationError    bad amount / duration / index / percentage
  - AuthorizationError caller is not the admin, or the pause gate is closed
  - LifecycleError     reward program in the wrong state for the call
  - SolvencyError      payout exceeds what the treasury actually holds
  - ReentrancyError    guarded operation entered while another is running
  - TransferError      the token collaborator misbehaved

Failures never leave partial effects behind: the vault restores its state
before the exception propagates.
"""

from __future__ import annotations


class VaultError(Exception):
    """Base class for every vault rejection."""

    code: str = "VaultError"

    def __init__(self, message: str = "", *, code: str | None = None):
        if code is not None:
            self.code = code
        super().__init__(message or self.code)


class ValidationError(VaultError, ValueError):
    code = "ValidationError"


class AuthorizationError(VaultError, PermissionError):
    code = "Unauthorized"


class LifecycleError(VaultError):
    code = "LifecycleError"


class SolvencyError(VaultError):
    code = "InsufficientTreasury"

    def __init__(self, requested: int, available: int):
        self.requested = requested
        self.available = available
        super().__init__(
            f"Payout {requested} exceeds treasury balance {available}"
        )


class ReentrancyError(VaultError):
    code = "ReentrantCall"


class TransferError(VaultError):
    code = "TransferFailed"


# HTTP status per error family
ERROR_STATUS: dict[type[VaultError], int] = {
    ValidationError: 400,
    LifecycleError: 400,
    SolvencyError: 400,
    TransferError: 400,
    AuthorizationError: 403,
    ReentrancyError: 409,
}


def http_status_for(exc: VaultError) -> int:
    """Map a vault error onto the HTTP status the API should answer with."""
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return 400
