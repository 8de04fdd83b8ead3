"""Redis-backed store client used by every lsc command.

Wraps ``redis-py`` so the rest of the package sees plain ``str`` values,
``StoreError`` instead of driver exceptions, and ``Subscription`` handles
instead of raw ``PubSub`` objects.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Iterator

import redis
from loguru import logger
from redis.exceptions import RedisError

from lsc.store.base import Notification, StoreError

StreamEntry = tuple[str, dict[str, str]]


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    """Translate driver exceptions raised inside the block into ``StoreError``."""
    try:
        yield
    except RedisError as exc:
        raise StoreError(f"{operation} failed: {exc}") from exc


def parse_addr(addr: str) -> tuple[str, int]:
    """Split ``host:port`` into its parts."""
    host, _, port = addr.rpartition(":")
    if not host or not port.isdigit():
        raise ValueError(f"expected host:port, got '{addr}'")
    return host, int(port)


class RedisSubscription:
    """``Subscription`` over a redis-py ``PubSub`` connection."""

    def __init__(self, pubsub: Any, channels: tuple[str, ...]) -> None:
        self._pubsub = pubsub
        self._pending = set(channels)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _read(self, timeout: float) -> dict[str, Any] | None:
        with _store_errors("pub/sub read"):
            return self._pubsub.get_message(
                ignore_subscribe_messages=False, timeout=max(0.0, timeout)
            )

    def wait_subscribed(self, timeout: float) -> bool:
        deadline = time.monotonic() + timeout
        while self._pending:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            message = self._read(remaining)
            if message and message.get("type") == "subscribe":
                self._pending.discard(str(message.get("channel")))
        return True

    def get_message(self, timeout: float) -> Notification | None:
        message = self._read(timeout)
        if not message:
            return None
        kind = message.get("type")
        if kind == "subscribe":
            self._pending.discard(str(message.get("channel")))
            return None
        if kind not in ("message", "pmessage"):
            return None
        data = message.get("data")
        return Notification(
            channel=str(message.get("channel") or ""),
            payload="" if data is None else str(data),
        )

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._pubsub.close()
        except RedisError as exc:
            logger.debug("pub/sub close failed: {}", exc)


class StoreClient:
    """Thin facade over one ``redis.Redis`` connection pool."""

    def __init__(self, addr: str, *, connect_timeout: float = 5.0) -> None:
        host, port = parse_addr(addr)
        self.addr = addr
        self.connect_timeout = connect_timeout
        self._redis = redis.Redis(
            host=host,
            port=port,
            db=0,
            decode_responses=True,
            socket_connect_timeout=connect_timeout,
        )

    def connect(self) -> None:
        """Ping once so connectivity problems surface before any command runs."""
        try:
            self._redis.ping()
        except RedisError as exc:
            raise StoreError(f"failed to connect to Redis at {self.addr}: {exc}") from exc
        logger.debug("connected to redis at {}", self.addr)

    def close(self) -> None:
        self._redis.close()

    def hget(self, key: str, field: str) -> str | None:
        with _store_errors(f"HGET {key} {field}"):
            return self._redis.hget(key, field)

    def hgetall(self, key: str) -> dict[str, str]:
        with _store_errors(f"HGETALL {key}"):
            return dict(self._redis.hgetall(key) or {})

    def hset(self, key: str, field: str, value: str) -> None:
        with _store_errors(f"HSET {key} {field}"):
            self._redis.hset(key, field, value)

    def hdel(self, key: str, *fields: str) -> int:
        with _store_errors(f"HDEL {key}"):
            return int(self._redis.hdel(key, *fields))

    def lpush(self, key: str, value: str) -> None:
        with _store_errors(f"LPUSH {key}"):
            self._redis.lpush(key, value)

    def smembers(self, key: str) -> list[str]:
        with _store_errors(f"SMEMBERS {key}"):
            return sorted(self._redis.smembers(key) or ())

    def publish(self, channel: str, message: str) -> int:
        with _store_errors(f"PUBLISH {channel}"):
            return int(self._redis.publish(channel, message))

    def subscribe(self, *channels: str) -> RedisSubscription:
        pubsub = self._redis.pubsub()
        try:
            pubsub.subscribe(*channels)
        except RedisError as exc:
            pubsub.close()
            raise StoreError(f"SUBSCRIBE {' '.join(channels)} failed: {exc}") from exc
        logger.debug("subscribed to {}", ", ".join(channels))
        return RedisSubscription(pubsub, tuple(channels))

    def xread(
        self,
        stream: str,
        last_id: str,
        *,
        count: int | None = None,
        block_ms: int | None = None,
    ) -> list[StreamEntry]:
        """Read entries after ``last_id`` from one stream."""
        with _store_errors(f"XREAD {stream}"):
            response = self._redis.xread({stream: last_id}, count=count, block=block_ms)
        streams = response.items() if isinstance(response, dict) else (response or [])
        entries: list[StreamEntry] = []
        for _name, messages in streams:
            for entry_id, values in messages:
                entries.append((str(entry_id), dict(values or {})))
        return entries
