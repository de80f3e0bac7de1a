"""
notifications.py - Vault Notifications

Notifications are just data, subscribers are just functions:
1. Notification types: immutable records carrying the acting account and the
   exact quantities involved
2. NotificationBus: append-only history plus per-type dispatch

The history is the vault's audit trail of completed operations, alongside the
ledger's transaction log.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Type


@dataclass(frozen=True, slots=True)
class Notification:
    """
    Base record. `sequence` is assigned by the bus on emission.

    Attributes:
        actor: Account that triggered the notification
        sequence: Monotonic position in the bus history
    """
    actor: str
    sequence: int = field(default=-1, kw_only=True)

    @property
    def kind(self) -> str:
        return type(self).__name__


@dataclass(frozen=True, slots=True)
class DepositCompleted(Notification):
    receiver: str
    assets: Decimal
    shares: Decimal


@dataclass(frozen=True, slots=True)
class WithdrawalCompleted(Notification):
    receiver: str
    owner: str
    assets: Decimal
    shares: Decimal


@dataclass(frozen=True, slots=True)
class CapacityCeilingChanged(Notification):
    old_ceiling: Decimal
    new_ceiling: Decimal


@dataclass(frozen=True, slots=True)
class LiquidityCrisisDetected(Notification):
    """A withdrawal asked for more than the facility can return right now."""
    requested: Decimal
    available: Decimal


@dataclass(frozen=True, slots=True)
class EmergencyExitPerformed(Notification):
    recovered: Decimal


@dataclass(frozen=True, slots=True)
class EmergencyWithdrawPerformed(Notification):
    recipient: str
    assets: Decimal
    claims: Decimal


@dataclass(frozen=True, slots=True)
class Paused(Notification):
    pass


@dataclass(frozen=True, slots=True)
class Unpaused(Notification):
    pass


@dataclass(frozen=True, slots=True)
class Approval(Notification):
    spender: str
    amount: Decimal


@dataclass(frozen=True, slots=True)
class Transfer(Notification):
    sender: str
    recipient: str
    shares: Decimal


# Subscriber type: notification -> None
Subscriber = Callable[[Notification], None]


class NotificationBus:
    """
    Ordered notification history with subscriber dispatch.

    Subscribers registered for a type receive that type only; subscribers
    registered without a type receive everything. Exceptions raised by a
    subscriber propagate to the emitter.

    The vault emits only after an operation is fully applied: bookkeeping
    committed and the facility call returned. A subscriber error therefore
    reaches the operation's caller even though the operation took effect;
    the record is already in history when it does. Check history() rather
    than the exception to learn whether the operation happened.
    """

    def __init__(self):
        self._history: List[Notification] = []
        self._subscribers: Dict[Optional[Type[Notification]], List[Subscriber]] = {}

    def subscribe(self, handler: Subscriber, kind: Optional[Type[Notification]] = None) -> None:
        """Register handler for one notification type, or for all when kind is None."""
        self._subscribers.setdefault(kind, []).append(handler)

    def emit(self, notification: Notification) -> Notification:
        """Stamp, record and dispatch a notification. Returns the stamped record."""
        stamped = replace(notification, sequence=len(self._history))
        self._history.append(stamped)
        for handler in self._subscribers.get(type(stamped), []):
            handler(stamped)
        for handler in self._subscribers.get(None, []):
            handler(stamped)
        return stamped

    def history(self, kind: Optional[Type[Notification]] = None) -> List[Notification]:
        """All notifications in emission order, optionally filtered by type."""
        if kind is None:
            return list(self._history)
        return [n for n in self._history if isinstance(n, kind)]

    def last(self, kind: Optional[Type[Notification]] = None) -> Optional[Notification]:
        matching = self.history(kind)
        return matching[-1] if matching else None

    def __len__(self) -> int:
        return len(self._history)
