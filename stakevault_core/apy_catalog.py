"""
APY option catalog for the staking vault.

Maps a lock duration (seconds) to a yield percentage on the 0 … 10 000
scale (100 = 100 %).  Durations are enumerable in the order they were
first offered; updating an existing option keeps its position, deleting
one closes the gap without reordering the rest.

A single insertion-ordered mapping backs both the lookup and the
enumeration, so membership of the two views can never drift apart.
Every duration present has a nonzero percentage.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

from stakevault_core.errors import ValidationError
from stakevault_core.precision import MAX_APY_PERCENTAGE


@dataclass(frozen=True)
class ApyOption:
    """One lock duration and the yield it pays."""
    duration_seconds: int
    percentage: int

    def to_dict(self) -> dict:
        return {
            "duration_seconds": self.duration_seconds,
            "percentage": self.percentage,
        }


def _check_duration(duration: int) -> None:
    if not isinstance(duration, int) or isinstance(duration, bool) or duration < 0:
        raise ValidationError(
            f"duration must be a non-negative integer, got {duration!r}",
            code="InvalidDuration",
        )


class ApyCatalog:
    """Ordered duration → percentage table."""

    def __init__(self) -> None:
        self._options: dict[int, int] = {}

    # ── mutation ────────────────────────────────────────────────────

    def add_or_update(self, percentage: int, duration: int) -> bool:
        """
        Offer *duration* at *percentage*.

        Returns True when the duration is new (appended to the end of the
        enumeration), False when an existing option was re-priced in place.
        Deposits already created keep the rate they were opened with.
        """
        _check_duration(duration)
        if not isinstance(percentage, int) or isinstance(percentage, bool):
            raise ValidationError("percentage must be an integer", code="InvalidPercentage")
        if percentage > MAX_APY_PERCENTAGE:
            raise ValidationError(
                f"APY percentage {percentage} exceeds {MAX_APY_PERCENTAGE}",
                code="InvalidPercentage",
            )
        if percentage <= 0:
            # a zero rate would be indistinguishable from "not offered"
            raise ValidationError(
                "APY percentage must be positive; use delete() to withdraw an option",
                code="InvalidPercentage",
            )
        is_new = duration not in self._options
        self._options[duration] = percentage
        return is_new

    def delete(self, duration: int) -> bool:
        """Withdraw *duration*.  Silently ignores unknown durations."""
        return self._options.pop(duration, None) is not None

    # ── queries ─────────────────────────────────────────────────────

    def get(self, duration: int) -> int:
        """Percentage for *duration*, 0 if it is not offered."""
        return self._options.get(duration, 0)

    def is_offered(self, duration: int) -> bool:
        return self._options.get(duration, 0) > 0

    def durations(self) -> list[int]:
        return list(self._options)

    def options(self) -> list[ApyOption]:
        return [ApyOption(d, p) for d, p in self._options.items()]

    def __len__(self) -> int:
        return len(self._options)

    def __contains__(self, duration: object) -> bool:
        return duration in self._options

    def __iter__(self) -> Iterator[ApyOption]:
        return iter(self.options())

    def __repr__(self) -> str:
        return f"ApyCatalog({self._options!r})"
