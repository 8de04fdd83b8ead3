"""State-changing scooter commands.

Every function performs its write through the store, optionally confirms it
with the confirmation waiter, and returns one flat JSON-ready payload with
``command`` and ``status`` keys. ``StoreError`` propagates to the caller;
``ValueError`` signals a usage error (bad alias, bad on/off value).
"""

from __future__ import annotations

import shutil
import subprocess
import tempfile
import threading
import urllib.error
import urllib.request
from collections.abc import Collection
from pathlib import Path
from typing import Any, Protocol

from loguru import logger

from lsc.control import catalog
from lsc.control.confirm import WaitOutcome, WaitResult, wait_for_field_value
from lsc.store.base import FieldStore, StoreError


class CommandStore(FieldStore, Protocol):
    """Store surface used by write commands."""

    def lpush(self, key: str, value: str) -> None: ...

    def hset(self, key: str, field: str, value: str) -> None: ...

    def publish(self, channel: str, message: str) -> int: ...


class PublishFailed(StoreError):
    """HSET succeeded but the change notification could not be published."""


def _require(value: str, allowed: Collection[str], noun: str) -> str:
    if value not in allowed:
        raise ValueError(f"invalid {noun}: {value} (expected one of: {', '.join(allowed)})")
    return value


def announce(store: CommandStore, channel: str, message: str) -> None:
    """Publish a change notification; failures surface as ``PublishFailed``."""
    try:
        store.publish(channel, message)
    except StoreError as exc:
        raise PublishFailed(str(exc)) from exc


def set_fields_and_publish(
    store: CommandStore, key: str, fields: dict[str, str], message: str
) -> None:
    """Write several hash fields, then announce ``message`` once on the hash channel."""
    for field, value in fields.items():
        store.hset(key, field, value)
    announce(store, key, message)


def set_and_publish(store: CommandStore, key: str, field: str, value: str) -> None:
    """Write one hash field, then announce it on the hash channel."""
    set_fields_and_publish(store, key, {field: value}, field)


def _timed_out(command: str, result: WaitResult, expected: str | Collection[str]) -> dict[str, Any]:
    status = "cancelled" if result.outcome is WaitOutcome.CANCELLED else "timeout"
    return {"command": command, "status": status, "error": result.describe(expected)}


def _push_and_confirm(
    store: CommandStore,
    command: str,
    queue: str,
    value: str,
    watched: tuple[str, str],
    expected: str | Collection[str],
    *,
    timeout: float,
    block: bool,
    cancel: threading.Event | None,
) -> tuple[dict[str, Any], WaitResult | None]:
    if not block:
        store.lpush(queue, value)
        return {"command": command, "status": "sent"}, None
    key, field = watched
    result = wait_for_field_value(
        store,
        key,
        field,
        expected,
        timeout,
        action=lambda: store.lpush(queue, value),
        cancel=cancel,
    )
    if not result.ok:
        return _timed_out(command, result, expected), result
    return {"command": command, "status": "success"}, result


# ── vehicle ─────────────────────────────────────────────────────────


def lock(store, *, timeout: float, block: bool = True, cancel=None) -> dict[str, Any]:
    """Lock the scooter and wait for ``stand-by``."""
    payload, result = _push_and_confirm(
        store, "lock", catalog.STATE_QUEUE, "lock",
        (catalog.VEHICLE_HASH, "state"), "stand-by",
        timeout=timeout, block=block, cancel=cancel,
    )
    if result is not None and result.ok:
        payload["state"] = result.value
    return payload


def unlock(store, *, timeout: float, block: bool = True, cancel=None) -> dict[str, Any]:
    """Unlock the scooter and wait for ``parked`` or ``ready-to-drive``."""
    payload, result = _push_and_confirm(
        store, "unlock", catalog.STATE_QUEUE, "unlock",
        (catalog.VEHICLE_HASH, "state"), ("parked", "ready-to-drive"),
        timeout=timeout, block=block, cancel=cancel,
    )
    if result is not None and result.ok:
        payload["state"] = result.value
    return payload


def hibernate(store, *, timeout: float, block: bool = True, cancel=None) -> dict[str, Any]:
    """Lock and request hibernation; confirmed by ``stand-by``."""
    payload, result = _push_and_confirm(
        store, "hibernate", catalog.STATE_QUEUE, "lock-hibernate",
        (catalog.VEHICLE_HASH, "state"), "stand-by",
        timeout=timeout, block=block, cancel=cancel,
    )
    if result is not None and result.ok:
        payload["state"] = result.value
    return payload


def open_seatbox(store, *, timeout: float, block: bool = True, cancel=None) -> dict[str, Any]:
    """Open the seatbox and wait for ``seatbox:lock`` to read ``open``."""
    payload, _ = _push_and_confirm(
        store, "open", catalog.SEATBOX_QUEUE, "open",
        (catalog.VEHICLE_HASH, "seatbox:lock"), "open",
        timeout=timeout, block=block, cancel=cancel,
    )
    return payload


# ── alarm ───────────────────────────────────────────────────────────


def publish_warning(command: str, message: str, exc: PublishFailed) -> dict[str, Any]:
    logger.warning("{}: {}", message, exc)
    return {"command": command, "status": "warning", "message": message, "error": str(exc)}


def arm_alarm(store, *, timeout: float, block: bool = True, cancel=None) -> dict[str, Any]:
    """Enable the alarm; it arms once the vehicle is in stand-by.

    A timeout is not a failure: the setting is stored and the alarm service
    arms later, so the payload reports ``enabled``.
    """

    def enable() -> None:
        set_and_publish(store, catalog.SETTINGS_HASH, "alarm.enabled", "true")

    try:
        if not block:
            enable()
            return {"command": "arm", "status": "enabled"}
        result = wait_for_field_value(
            store, catalog.ALARM_HASH, "status", ("armed", "delay-armed"), timeout,
            action=enable, cancel=cancel,
        )
    except PublishFailed as exc:
        return publish_warning("arm", "Alarm enabled but publish failed", exc)

    if result.ok:
        return {"command": "arm", "status": "success", "alarm_status": result.value}
    if result.outcome is WaitOutcome.CANCELLED:
        return {"command": "arm", "status": "cancelled"}
    return {"command": "arm", "status": "enabled", "message": "Will arm when vehicle enters stand-by"}


def disarm_alarm(store, *, timeout: float, block: bool = True, cancel=None) -> dict[str, Any]:
    """Disable the alarm and wait for ``disarmed``; a timeout still reports ``disabled``."""

    def disable() -> None:
        set_and_publish(store, catalog.SETTINGS_HASH, "alarm.enabled", "false")

    try:
        if not block:
            disable()
            return {"command": "disarm", "status": "disabled"}
        result = wait_for_field_value(
            store, catalog.ALARM_HASH, "status", "disarmed", timeout,
            action=disable, cancel=cancel,
        )
    except PublishFailed as exc:
        return publish_warning("disarm", "Alarm disabled but publish failed", exc)

    if result.ok:
        return {"command": "disarm", "status": "success", "alarm_status": result.value}
    if result.outcome is WaitOutcome.CANCELLED:
        return {"command": "disarm", "status": "cancelled"}
    return {"command": "disarm", "status": "disabled"}


def trigger_alarm(store, seconds: int | None = None) -> dict[str, Any]:
    """Sound the alarm for ``seconds`` (default: ``alarm.duration`` or 10)."""
    if seconds is not None and seconds <= 0:
        raise ValueError("alarm duration must be greater than 0")
    duration = str(seconds) if seconds is not None else ""
    if not duration:
        try:
            duration = store.hget(catalog.SETTINGS_HASH, "alarm.duration") or ""
        except StoreError as exc:
            logger.debug("alarm.duration unavailable: {}", exc)
        duration = duration or "10"
    store.lpush(catalog.ALARM_QUEUE, f"start:{duration}")
    return {"command": "trigger", "status": "success", "duration": duration}


# ── LEDs ────────────────────────────────────────────────────────────


def led_cue(store, cue: str) -> dict[str, Any]:
    index = catalog.parse_cue_index(cue)
    store.lpush(catalog.LED_CUE_QUEUE, str(index))
    return {"command": "led-cue", "status": "success", "index": index}


def led_fade(store, channel: str, fade: str) -> dict[str, Any]:
    channel_index = catalog.parse_channel_index(channel)
    fade_index = catalog.parse_fade_index(fade)
    store.lpush(catalog.LED_FADE_QUEUE, f"{channel_index}:{fade_index}")
    return {"command": "led-fade", "status": "success", "channel": channel_index, "index": fade_index}


# ── settings ────────────────────────────────────────────────────────


def set_setting(store, key: str, value: str) -> dict[str, Any]:
    """HSET one setting and publish the key on the ``settings`` channel."""
    if not key.strip():
        raise ValueError("setting key must not be empty")
    payload: dict[str, Any] = {"command": "settings-set", "key": key, "value": value}
    try:
        set_and_publish(store, catalog.SETTINGS_HASH, key, value)
    except PublishFailed as exc:
        return {**payload, **publish_warning("settings-set", "Setting updated but publish failed", exc)}
    payload["status"] = "success"
    return payload


# ── power / OTA ─────────────────────────────────────────────────────


def power_command(store, command: str) -> dict[str, Any]:
    _require(command, catalog.POWER_COMMANDS, "power command")
    store.lpush(catalog.POWER_QUEUE, command)
    return {"command": command, "status": "success"}


def check_updates(store) -> dict[str, Any]:
    store.lpush(catalog.UPDATE_QUEUE, "check-now")
    return {"command": "ota-check", "status": "success", "message": "Update check triggered"}


def _download(url: str, timeout: float = 300) -> Path:
    """Fetch ``url`` into a temporary ``.mender`` file and return its path."""
    handle = tempfile.NamedTemporaryFile(prefix="mender-update-", suffix=".mender", delete=False)
    path = Path(handle.name)
    try:
        with handle, urllib.request.urlopen(url, timeout=timeout) as resp:
            shutil.copyfileobj(resp, handle)
    except (urllib.error.URLError, OSError):
        path.unlink(missing_ok=True)
        raise
    return path


def install_update(source: str, *, runner=subprocess.run) -> dict[str, Any]:
    """Install a local ``.mender`` file, or download it first when given a URL."""
    payload: dict[str, Any] = {"command": "ota-install"}
    downloaded: Path | None = None
    if source.startswith(("http://", "https://")):
        payload["url"] = source
        logger.info("downloading update from {}", source)
        try:
            downloaded = _download(source)
        except (urllib.error.URLError, OSError) as exc:
            return {**payload, "status": "error", "error": f"download failed: {exc}"}
        path = downloaded
    else:
        path = Path(source)

    try:
        payload["file"] = str(path)
        if not path.is_file():
            return {**payload, "status": "error", "error": f"file not found: {path}"}
        logger.info("installing update from {}", path.name)
        try:
            completed = runner(["mender-update", "install", str(path)], check=False)
        except OSError as exc:
            return {**payload, "status": "error", "error": f"installation failed: {exc}"}
        if completed.returncode != 0:
            return {
                **payload,
                "status": "error",
                "error": f"installation failed: mender-update exited with {completed.returncode}",
            }
        return {**payload, "status": "success", "message": "A reboot may be required to complete the update"}
    finally:
        if downloaded is not None:
            downloaded.unlink(missing_ok=True)


# ── hardware diagnostics ────────────────────────────────────────────


def horn(store, state: str) -> dict[str, Any]:
    _require(state, catalog.ON_OFF, "state")
    store.lpush(catalog.HORN_QUEUE, state)
    return {"command": "horn", "status": "success", "state": state}


def blinkers(store, state: str) -> dict[str, Any]:
    _require(state, catalog.BLINKER_STATES, "state")
    store.lpush(catalog.BLINKER_QUEUE, state)
    return {"command": "blinkers", "status": "success", "state": state}


def _hardware(store, device: str, action: str, allowed: Collection[str]) -> dict[str, Any]:
    _require(action, allowed, "action")
    store.lpush(catalog.HARDWARE_QUEUE, f"{device}:{action}")
    return {"command": device, "status": "success", "action": action}


def handlebar(store, action: str) -> dict[str, Any]:
    return _hardware(store, "handlebar", action, catalog.LOCK_UNLOCK)


def engine_power(store, action: str) -> dict[str, Any]:
    return _hardware(store, "engine", action, catalog.ON_OFF)


def dashboard_power(store, action: str) -> dict[str, Any]:
    return _hardware(store, "dashboard", action, catalog.ON_OFF)


def dashboard_power_wait(store, action: str, *, timeout: float, cancel=None) -> dict[str, Any]:
    """Switch the dashboard and wait for ``dashboard``/``ready`` to follow."""
    _require(action, catalog.ON_OFF, "action")
    command = f"dashboard-{action}-wait"
    expected = "true" if action == "on" else "false"
    result = wait_for_field_value(
        store, catalog.DASHBOARD_HASH, "ready", expected, timeout,
        action=lambda: store.lpush(catalog.HARDWARE_QUEUE, f"dashboard:{action}"),
        cancel=cancel,
    )
    if result.ok:
        return {"command": command, "status": "success", "ready": action == "on"}
    return _timed_out(command, result, expected)
