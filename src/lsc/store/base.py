"""Shared store data models and protocol contracts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


class StoreError(RuntimeError):
    """Raised when the shared Redis store cannot be reached or rejects a call."""


@dataclass(frozen=True)
class Notification:
    """One pub/sub message: the channel it arrived on and its payload."""

    channel: str
    payload: str


class Subscription(Protocol):
    """A live pub/sub subscription handle owned by exactly one caller."""

    def wait_subscribed(self, timeout: float) -> bool:
        """Block until the server acknowledged every channel, or ``timeout`` elapses."""

    def get_message(self, timeout: float) -> Notification | None:
        """Return the next published message, or ``None`` after ``timeout`` seconds."""

    def close(self) -> None:
        """Unsubscribe and release the underlying connection."""


class FieldStore(Protocol):
    """The two primitives the confirmation waiter consumes."""

    def hget(self, key: str, field: str) -> str | None:
        """Read one hash field; ``None`` when the field does not exist."""

    def subscribe(self, *channels: str) -> Subscription:
        """Open a subscription on ``channels``."""
