"""Wait for a Redis hash field to reach an expected value.

Scooter services follow one convention: after mutating hash ``<key>`` they
publish the changed field name on channel ``<key>``. A command that changes
state (push ``lock`` onto ``scooter:state``) is confirmed by watching the
corresponding field (``vehicle``/``state``) until it settles.

The waiter subscribes *before* the mutating action runs, so a service that
reacts faster than the CLI cannot publish into the void. Callers pass the
action as a callback; ``action=None`` is kept for callers that already wrote
and only want the best-effort pre-check plus notification wait.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Collection
from dataclasses import dataclass
from enum import Enum

from loguru import logger

from lsc.store.base import FieldStore, StoreError

# Granularity at which a pending wait notices an external cancel event.
_CANCEL_CHECK_SECONDS = 0.05


class WaitOutcome(str, Enum):
    """Terminal state of one wait session."""

    CONFIRMED = "confirmed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


class NotificationRelevance(Enum):
    """Whether a notification warrants re-reading the watched field."""

    RELEVANT = "relevant"
    IRRELEVANT = "irrelevant"


@dataclass(frozen=True)
class WatchedField:
    """A (hash key, field) pair; the hash key doubles as the notification channel."""

    key: str
    field: str

    @property
    def channel(self) -> str:
        return self.key


@dataclass(frozen=True)
class WaitResult:
    """Outcome of a wait plus the last value read for the watched field."""

    outcome: WaitOutcome
    field: WatchedField
    value: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is WaitOutcome.CONFIRMED

    def describe(self, expected: str | Collection[str]) -> str:
        """Human-readable explanation for non-confirmed outcomes."""
        target = _format_expected(_accepted_values(expected))
        where = f"{self.field.key}:{self.field.field}"
        if self.outcome is WaitOutcome.CANCELLED:
            return f"cancelled while waiting for {where} to become {target}"
        if self.outcome is WaitOutcome.TIMEOUT:
            return f"timeout waiting for {where} to become {target}"
        return f"{where} is {self.value!r}"


def classify_notification(payload: str, field: str) -> NotificationRelevance:
    """Classify one notification payload for the watched ``field``.

    An empty payload means "something in this hash changed" and is treated as
    relevant; a non-empty payload must name the field exactly.
    """
    if payload == "" or payload == field:
        return NotificationRelevance.RELEVANT
    return NotificationRelevance.IRRELEVANT


def _accepted_values(expected: str | Collection[str]) -> frozenset[str]:
    if isinstance(expected, str):
        return frozenset((expected,))
    values = frozenset(expected)
    if not values:
        raise ValueError("expected must name at least one value")
    return values


def _format_expected(values: frozenset[str]) -> str:
    return " or ".join(f"'{value}'" for value in sorted(values))


def _read_field(store: FieldStore, watched: WatchedField) -> str | None:
    """Read the watched field; read errors are transient and yield ``None``."""
    try:
        return store.hget(watched.key, watched.field)
    except StoreError as exc:
        logger.debug("transient read error on {}:{}: {}", watched.key, watched.field, exc)
        return None


def wait_for_field_value(
    store: FieldStore,
    key: str,
    field: str,
    expected: str | Collection[str],
    timeout: float,
    *,
    action: Callable[[], object] | None = None,
    cancel: threading.Event | None = None,
) -> WaitResult:
    """Block until ``key``/``field`` equals ``expected`` or ``timeout`` elapses.

    Order of operations:

    1. return ``CANCELLED`` straight away if ``cancel`` is already set;
    2. subscribe to channel ``key`` and wait for the server acknowledgement;
    3. run ``action`` (the mutating command), if given;
    4. read the field once and return ``CONFIRMED`` on a match;
    5. wait for notifications; relevant ones trigger one re-read each.

    Timeout and cancellation are returned, not raised. Read errors are
    swallowed and the wait continues. ``StoreError`` from subscribing and any
    exception raised by ``action`` propagate after the subscription is closed.
    """
    if timeout <= 0:
        raise ValueError("timeout must be positive")
    accepted = _accepted_values(expected)
    watched = WatchedField(key=key, field=field)

    if cancel is not None and cancel.is_set():
        return WaitResult(WaitOutcome.CANCELLED, watched)

    deadline = time.monotonic() + timeout
    subscription = store.subscribe(watched.channel)
    try:
        if not subscription.wait_subscribed(max(0.0, deadline - time.monotonic())):
            logger.debug("subscription to {} not acknowledged before deadline", watched.channel)
            return WaitResult(WaitOutcome.TIMEOUT, watched)

        if action is not None:
            action()

        value = _read_field(store, watched)
        if value in accepted:
            return WaitResult(WaitOutcome.CONFIRMED, watched, value)

        while True:
            if cancel is not None and cancel.is_set():
                return WaitResult(WaitOutcome.CANCELLED, watched, value)
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.debug(
                    "timeout waiting for {}:{} (last value {!r})", key, field, value
                )
                return WaitResult(WaitOutcome.TIMEOUT, watched, value)
            if cancel is not None:
                remaining = min(remaining, _CANCEL_CHECK_SECONDS)
            try:
                message = subscription.get_message(remaining)
            except StoreError as exc:
                logger.debug("transient pub/sub error on {}: {}", watched.channel, exc)
                continue
            if message is None:
                continue
            if classify_notification(message.payload, field) is NotificationRelevance.IRRELEVANT:
                continue
            value = _read_field(store, watched)
            if value in accepted:
                return WaitResult(WaitOutcome.CONFIRMED, watched, value)
    except KeyboardInterrupt:
        return WaitResult(WaitOutcome.CANCELLED, watched)
    finally:
        subscription.close()


def wait_for_state(
    store: FieldStore,
    expected: str | Collection[str],
    timeout: float,
    **kwargs,
) -> WaitResult:
    """Wait for ``vehicle``/``state`` to reach ``expected``."""
    return wait_for_field_value(store, "vehicle", "state", expected, timeout, **kwargs)


def wait_for_alarm_status(
    store: FieldStore,
    expected: str | Collection[str],
    timeout: float,
    **kwargs,
) -> WaitResult:
    """Wait for ``alarm``/``status`` to reach ``expected``."""
    return wait_for_field_value(store, "alarm", "status", expected, timeout, **kwargs)
