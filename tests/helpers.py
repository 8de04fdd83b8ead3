"""Shared test utilities: an in-memory store, config builders and CLI runners."""

from __future__ import annotations

import io
import json
import threading
import time
from collections import deque
from collections.abc import Callable
from contextlib import redirect_stdout
from pathlib import Path
from typing import Any
from unittest import mock

from lsc.config.settings import Config, ConfirmTimeouts
from lsc.store.base import Notification, StoreError


def make_config(**overrides: Any) -> Config:
    """Build a deterministic Config with short confirmation timeouts for tests."""
    timeouts = ConfirmTimeouts(
        lock=0.3,
        unlock=0.3,
        hibernate=0.3,
        seatbox=0.3,
        alarm_arm=0.3,
        alarm_disarm=0.3,
        dashboard=0.3,
    )
    values: dict[str, Any] = {
        "redis_addr": "127.0.0.1:6379",
        "connect_timeout_seconds": 1.0,
        "timeouts": timeouts,
        "color": False,
    }
    values.update(overrides)
    return Config(**values)


def write_test_config(tmp_path: Path, **sections: dict[str, Any]) -> Path:
    """Write a config.toml with the given tables and return its path.

    Usage::

        write_test_config(tmp_path, redis={"addr": "10.0.0.2"})
    """
    lines: list[str] = []
    for section_name, fields in sections.items():
        lines.append(f"[{section_name}]")
        for key, value in fields.items():
            if isinstance(value, bool):
                lines.append(f"{key} = {'true' if value else 'false'}")
            elif isinstance(value, (int, float)):
                lines.append(f"{key} = {value}")
            else:
                lines.append(f'{key} = "{value}"')
        lines.append("")

    config_path = tmp_path / "test_config.toml"
    config_path.write_text("\n".join(lines), encoding="utf-8")
    return config_path


class FakeSubscription:
    """Subscription fed synchronously by ``FakeStore.publish``."""

    def __init__(self, store: "FakeStore", channels: tuple[str, ...]) -> None:
        self.store = store
        self.channels = channels
        self.queue: deque[Notification | BaseException] = deque()
        self.closed = False
        self.get_message_calls = 0

    def wait_subscribed(self, timeout: float) -> bool:
        self.store.log.append(("subscribed", ",".join(self.channels)))
        return self.store.acknowledge_subscriptions

    def get_message(self, timeout: float) -> Notification | None:
        self.get_message_calls += 1
        if self.queue:
            item = self.queue.popleft()
            if isinstance(item, BaseException):
                raise item
            return item
        if self.store.interrupt_when_idle:
            raise KeyboardInterrupt
        time.sleep(min(timeout, 0.01))
        return None

    def close(self) -> None:
        self.closed = True
        self.store.log.append(("closed", ",".join(self.channels)))


def _id_key(entry_id: str) -> tuple[int, int]:
    ms, _, seq = entry_id.partition("-")
    return int(ms), int(seq or 0)


class FakeStore:
    """In-memory stand-in for ``StoreClient`` that records every call.

    ``reactions`` maps a queue name to a callback run after each LPUSH, which
    is how tests play the part of the on-board service answering a command.
    """

    def __init__(
        self,
        hashes: dict[str, dict[str, str]] | None = None,
        sets: dict[str, set[str]] | None = None,
        streams: dict[str, list[tuple[str, dict[str, str]]]] | None = None,
    ) -> None:
        self.hashes = {key: dict(value) for key, value in (hashes or {}).items()}
        self.sets = {key: set(value) for key, value in (sets or {}).items()}
        self.streams = {key: list(value) for key, value in (streams or {}).items()}
        self.live_events: deque[list[tuple[str, dict[str, str]]]] = deque()
        self.lists: dict[str, list[str]] = {}
        self.published: list[tuple[str, str]] = []
        self.subscriptions: list[FakeSubscription] = []
        self.reactions: dict[str, Callable[[str], None]] = {}
        self.log: list[tuple[str, str]] = []
        self.hget_calls = 0
        self.xread_calls: list[dict[str, Any]] = []
        self.failing_keys: set[str] = set()
        self.hget_failures = 0
        self.fail_publish = False
        self.fail_connect = False
        self.acknowledge_subscriptions = True
        self.interrupt_when_idle = False
        self.addr: str | None = None
        self.connected = False
        self.closed = False
        self._lock = threading.Lock()

    def _check(self, key: str) -> None:
        if key in self.failing_keys:
            raise StoreError(f"read of {key} failed")

    # store surface

    def connect(self) -> None:
        if self.fail_connect:
            raise StoreError(f"failed to connect to Redis at {self.addr}: Connection refused")
        self.connected = True

    def close(self) -> None:
        self.closed = True

    def hget(self, key: str, field: str) -> str | None:
        self.hget_calls += 1
        self.log.append(("hget", f"{key}:{field}"))
        if self.hget_failures:
            self.hget_failures -= 1
            raise StoreError("transient read failure")
        self._check(key)
        return self.hashes.get(key, {}).get(field)

    def hgetall(self, key: str) -> dict[str, str]:
        self._check(key)
        return dict(self.hashes.get(key, {}))

    def hset(self, key: str, field: str, value: str) -> None:
        self.log.append(("hset", f"{key}:{field}={value}"))
        self.hashes.setdefault(key, {})[field] = value

    def hdel(self, key: str, *fields: str) -> int:
        self.log.append(("hdel", f"{key}:{','.join(fields)}"))
        current = self.hashes.get(key, {})
        removed = [field for field in fields if current.pop(field, None) is not None]
        return len(removed)

    def lpush(self, key: str, value: str) -> None:
        self.log.append(("lpush", f"{key}={value}"))
        self.lists.setdefault(key, []).insert(0, value)
        reaction = self.reactions.get(key)
        if reaction is not None:
            reaction(value)

    def smembers(self, key: str) -> list[str]:
        self._check(key)
        return sorted(self.sets.get(key, ()))

    def publish(self, channel: str, message: str) -> int:
        if self.fail_publish:
            raise StoreError(f"PUBLISH {channel} failed: connection reset")
        self.published.append((channel, message))
        delivered = 0
        with self._lock:
            for subscription in self.subscriptions:
                if not subscription.closed and channel in subscription.channels:
                    subscription.queue.append(Notification(channel=channel, payload=message))
                    delivered += 1
        return delivered

    def subscribe(self, *channels: str) -> FakeSubscription:
        self.log.append(("subscribe", ",".join(channels)))
        subscription = FakeSubscription(self, tuple(channels))
        with self._lock:
            self.subscriptions.append(subscription)
        return subscription

    def xread(
        self, stream: str, last_id: str, *, count: int | None = None, block_ms: int | None = None
    ) -> list[tuple[str, dict[str, str]]]:
        self.xread_calls.append(
            {"stream": stream, "last_id": last_id, "count": count, "block_ms": block_ms}
        )
        if block_ms is not None:
            if self.live_events:
                return self.live_events.popleft()
            raise KeyboardInterrupt
        entries = self.streams.get(stream, [])
        if last_id not in ("0", "0-0"):
            floor = _id_key(last_id)
            entries = [entry for entry in entries if _id_key(entry[0]) > floor]
        return entries[:count] if count else list(entries)

    # test conveniences

    def set_field(self, key: str, field: str, value: str) -> None:
        """Mimic a service: write a field, then announce it on the hash channel."""
        self.hset(key, field, value)
        self.publish(key, field)

    def react(self, queue: str, key: str, field: str, value: str) -> None:
        """Answer every LPUSH onto ``queue`` by setting ``key``/``field`` to ``value``."""
        self.reactions[queue] = lambda _command: self.set_field(key, field, value)

    @property
    def last_subscription(self) -> FakeSubscription:
        return self.subscriptions[-1]


def run_cli(args: list[str], store: FakeStore | None = None) -> tuple[int, str]:
    """Run CLI command against ``store`` and return ``(exit_code, stdout_text)``."""
    from lsc.app import cli

    fake = store if store is not None else FakeStore()

    def factory(addr: str, **_kwargs: Any) -> FakeStore:
        fake.addr = addr
        return fake

    out = io.StringIO()
    with mock.patch.object(cli, "StoreClient", factory), redirect_stdout(out):
        code = cli.main(args)
    return code, out.getvalue()


def run_cli_json(args: list[str], store: FakeStore | None = None) -> tuple[int, dict]:
    """Run CLI command and parse stdout JSON payload."""
    code, output = run_cli(args, store)
    return code, json.loads(output)
