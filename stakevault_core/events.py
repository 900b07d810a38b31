"""
Vault notifications.

Each committed operation publishes zero or more events, mirroring the
log entries of an on-chain staking contract:

    Deposit(account, amount, index)
    Withdraw(account, amount)
    EmergencyWithdraw(account, amount)
    StakingReward(account, amount)

Events raised while an operation is running are held back and published
only once the operation commits; a rejected operation publishes nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

logger = logging.getLogger("stakevault_events")


class EventType(Enum):
    DEPOSIT = "Deposit"
    WITHDRAW = "Withdraw"
    EMERGENCY_WITHDRAW = "EmergencyWithdraw"
    STAKING_REWARD = "StakingReward"


@dataclass(frozen=True)
class VaultEvent:
    event_type: EventType
    account: str
    amount: int
    index: int | None = None   # only set for Deposit
    timestamp: int = 0
    sequence: int = 0

    def to_dict(self) -> dict:
        d = {
            "event": self.event_type.value,
            "account": self.account,
            "amount": self.amount,
            "timestamp": self.timestamp,
            "sequence": self.sequence,
        }
        if self.index is not None:
            d["index"] = self.index
        return d


Subscriber = Callable[[VaultEvent], None]


@dataclass
class EventLog:
    """Append-only, sequenced history of published events."""
    events: list[VaultEvent] = field(default_factory=list)
    _subscribers: list[Subscriber] = field(default_factory=list)

    def subscribe(self, callback: Subscriber) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def publish(self, pending: list[VaultEvent]) -> None:
        for ev in pending:
            sequenced = VaultEvent(
                event_type=ev.event_type,
                account=ev.account,
                amount=ev.amount,
                index=ev.index,
                timestamp=ev.timestamp,
                sequence=len(self.events) + 1,
            )
            self.events.append(sequenced)
            for cb in list(self._subscribers):
                try:
                    cb(sequenced)
                except Exception:
                    logger.exception("Event subscriber failed on %s", sequenced.event_type.value)

    def for_account(self, account: str) -> list[VaultEvent]:
        return [e for e in self.events if e.account == account]

    def of_type(self, event_type: EventType) -> list[VaultEvent]:
        return [e for e in self.events if e.event_type is event_type]

    def since(self, sequence: int) -> list[VaultEvent]:
        return [e for e in self.events if e.sequence > sequence]

    def __len__(self) -> int:
        return len(self.events)
