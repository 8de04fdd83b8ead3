"""Scooter control: confirmation waiter, write commands and read snapshots."""

from lsc.control.confirm import (
    NotificationRelevance,
    WaitOutcome,
    WaitResult,
    WatchedField,
    classify_notification,
    wait_for_alarm_status,
    wait_for_field_value,
    wait_for_state,
)

__all__ = [
    "NotificationRelevance",
    "WaitOutcome",
    "WaitResult",
    "WatchedField",
    "classify_notification",
    "wait_for_alarm_status",
    "wait_for_field_value",
    "wait_for_state",
]
