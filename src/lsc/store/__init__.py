"""Shared-store access: Redis client, subscriptions and protocol contracts."""

from lsc.store.base import FieldStore, Notification, StoreError, Subscription
from lsc.store.client import RedisSubscription, StoreClient

__all__ = [
    "FieldStore",
    "Notification",
    "RedisSubscription",
    "StoreClient",
    "StoreError",
    "Subscription",
]
