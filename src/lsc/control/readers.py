"""Read-only snapshots of scooter state assembled from Redis hashes and sets."""

from __future__ import annotations

import re
import threading
import time
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Any, Protocol

from loguru import logger

from lsc.control import catalog
from lsc.control.catalog import FaultEvent
from lsc.store.base import Notification, StoreError, Subscription
from lsc.store.client import StreamEntry


class ReadStore(Protocol):
    """Store surface used by the readers."""

    def hget(self, key: str, field: str) -> str | None: ...

    def hgetall(self, key: str) -> dict[str, str]: ...

    def smembers(self, key: str) -> list[str]: ...

    def subscribe(self, *channels: str) -> Subscription: ...

    def xread(
        self, stream: str, last_id: str, *, count: int | None = None, block_ms: int | None = None
    ) -> list[StreamEntry]: ...


def present_or(value: str | None, default: str = "") -> str:
    """Return ``value`` unless it is empty, ``0`` or ``unknown``."""
    if value in (None, "", "0", "unknown"):
        return default
    return str(value)


def to_int(value: str | None) -> int:
    try:
        return int(value or "")
    except ValueError:
        return 0


def to_float(value: str | None) -> float:
    try:
        return float(value or "")
    except ValueError:
        return 0.0


def _milli(value: str | None) -> float:
    return to_float(value) / 1000.0


def _hgetall_or_empty(store: ReadStore, key: str) -> dict[str, str]:
    try:
        return store.hgetall(key)
    except StoreError as exc:
        logger.debug("optional hash {} unavailable: {}", key, exc)
        return {}


def _smembers_or_empty(store: ReadStore, key: str) -> list[str]:
    try:
        return store.smembers(key)
    except StoreError as exc:
        logger.debug("optional set {} unavailable: {}", key, exc)
        return []


# ── status ──────────────────────────────────────────────────────────


def _battery_summary(data: dict[str, str]) -> dict[str, Any]:
    if data.get("present") != "true":
        return {"present": False}
    return {
        "present": True,
        "state": data.get("state", ""),
        "charge_percent": to_int(data.get("charge")),
        "voltage_v": _milli(data.get("voltage")),
        "current_a": _milli(data.get("current")),
        "temperature_c": to_int(data.get("temperature:0")),
        "temperature_state": data.get("temperature-state", ""),
        "cycles": to_int(data.get("cycle-count")),
        "health_percent": to_int(data.get("state-of-health")),
    }


def read_status(store: ReadStore) -> dict[str, Any]:
    """Vehicle, motor and both main batteries in one payload."""
    vehicle = store.hgetall(catalog.VEHICLE_HASH)
    ecu = store.hgetall(catalog.ENGINE_HASH)
    battery_0 = store.hgetall(catalog.battery_hash("0"))
    # the second slot is frequently empty
    battery_1 = _hgetall_or_empty(store, catalog.battery_hash("1"))
    return {
        "command": "status",
        "status": "success",
        "vehicle": {
            "state": vehicle.get("state", ""),
            "kickstand": vehicle.get("kickstand", ""),
            "brakes": {
                "left": vehicle.get("brake:left", ""),
                "right": vehicle.get("brake:right", ""),
            },
            "blinker": present_or(vehicle.get("blinker:switch"), "off"),
            "seatbox": present_or(vehicle.get("seatbox:lock"), "closed"),
        },
        "motor": {
            "speed_kph": to_float(ecu.get("speed")),
            "rpm": to_int(ecu.get("rpm")),
            "throttle": ecu.get("throttle") == "true",
            "odometer_km": _milli(ecu.get("odometer")),
            "voltage_v": _milli(ecu.get("motor:voltage")),
            "current_a": _milli(ecu.get("motor:current")),
            "temperature_c": to_int(ecu.get("temperature")),
            "kers": ecu.get("kers") == "true",
        },
        "battery_0": _battery_summary(battery_0),
        "battery_1": _battery_summary(battery_1),
    }


# ── diagnostics ─────────────────────────────────────────────────────


def read_battery(store: ReadStore, battery_id: str) -> dict[str, Any]:
    """Detailed view of one main battery, including its active faults."""
    data = store.hgetall(catalog.battery_hash(battery_id))
    if data.get("present") != "true":
        return {"id": battery_id, "present": False}
    return {
        "id": battery_id,
        "present": True,
        "state": data.get("state", ""),
        "charge": {
            "charge_percent": to_int(data.get("charge")),
            "voltage_v": _milli(data.get("voltage")),
            "current_a": _milli(data.get("current")),
        },
        "temperature": {
            **{f"sensor_{n}_c": to_int(data.get(f"temperature:{n}")) for n in range(4)},
            "state": data.get("temperature-state", ""),
        },
        "health": {
            "cycles": to_int(data.get("cycle-count")),
            "health_percent": to_int(data.get("state-of-health")),
        },
        "identity": {
            "serial_number": present_or(data.get("serial-number")),
            "manufacturing_date": present_or(data.get("manufacturing-date")),
            "firmware_version": present_or(data.get("fw-version")),
        },
        "faults": _smembers_or_empty(store, catalog.battery_faults(battery_id)),
    }


def read_batteries(store: ReadStore, battery_ids: Iterable[str] = ()) -> dict[str, Any]:
    ids = list(battery_ids) or list(catalog.BATTERY_IDS)
    return {
        "command": "battery",
        "status": "success",
        "batteries": [read_battery(store, battery_id) for battery_id in ids],
    }


def read_faults(store: ReadStore) -> dict[str, Any]:
    """Active fault sets; an unreadable set counts as empty."""
    vehicle = _smembers_or_empty(store, catalog.VEHICLE_FAULTS)
    battery_0 = _smembers_or_empty(store, catalog.battery_faults("0"))
    battery_1 = _smembers_or_empty(store, catalog.battery_faults("1"))
    return {
        "command": "faults",
        "status": "success",
        "total_faults": len(vehicle) + len(battery_0) + len(battery_1),
        "vehicle": vehicle,
        "battery_0": battery_0,
        "battery_1": battery_1,
    }


def _battery_version(data: dict[str, str]) -> dict[str, Any]:
    if data.get("present") != "true":
        return {"present": False}
    return {
        "present": True,
        "version": present_or(data.get("fw-version")),
        "serial_number": present_or(data.get("serial-number")),
    }


def read_versions(store: ReadStore) -> dict[str, Any]:
    system = store.hgetall(catalog.SYSTEM_HASH)
    ecu = _hgetall_or_empty(store, catalog.ENGINE_HASH)
    ota = _hgetall_or_empty(store, catalog.OTA_HASH)
    return {
        "command": "version",
        "status": "success",
        "system": {
            "mdb": present_or(system.get("mdb-version")),
            "dbc": present_or(system.get("dbc-version")),
            "nrf": present_or(system.get("nrf-fw-version")),
            "environment": present_or(system.get("environment")),
        },
        "components": {"ecu": present_or(ecu.get("fw-version"))},
        "batteries": {
            battery_id: _battery_version(_hgetall_or_empty(store, catalog.battery_hash(battery_id)))
            for battery_id in catalog.BATTERY_IDS
        },
        "ota": {
            "system": present_or(ota.get("system")),
            "status": present_or(ota.get("status")),
            "fresh_update": ota.get("fresh-update") == "true",
        },
    }


def read_power_status(store: ReadStore) -> dict[str, Any]:
    manager = store.hgetall(catalog.POWER_MANAGER_HASH)
    mux = _hgetall_or_empty(store, catalog.POWER_MUX_HASH)
    aux = _hgetall_or_empty(store, catalog.AUX_BATTERY_HASH)
    cb = _hgetall_or_empty(store, catalog.CB_BATTERY_HASH)
    payload: dict[str, Any] = {
        "command": "power-status",
        "status": "success",
        "power_manager": {
            "state": manager.get("state", ""),
            "power_source": mux.get("selected-input", ""),
            "inhibitors": _smembers_or_empty(store, catalog.POWER_INHIBITORS),
        },
    }
    if aux:
        payload["aux_battery"] = {
            "voltage_v": _milli(aux.get("voltage")),
            "charge_percent": to_int(aux.get("charge")),
            "charge_status": aux.get("charge-status", ""),
        }
    if cb.get("present") == "true":
        payload["cb_battery"] = {
            "present": True,
            "charge_percent": to_int(cb.get("charge")),
            "charge_status": cb.get("charge-status", ""),
            "health_percent": to_int(cb.get("state-of-health")),
            "cycles": to_int(cb.get("cycle-count")),
            "temperature_c": to_int(cb.get("temperature")),
        }
    else:
        payload["cb_battery"] = {"present": False}
    return payload


def read_ota_status(store: ReadStore) -> dict[str, Any]:
    """Per-component update state; ``status`` is ``None`` without an update service."""
    raw = store.hgetall(catalog.OTA_HASH)
    components: dict[str, dict[str, str | None]] = {}
    for component in catalog.OTA_COMPONENTS:
        status = raw.get(f"status:{component}")
        if status is None:
            components[component] = {"status": None}
            continue
        entry: dict[str, str | None] = {"status": status}
        for key in catalog.OTA_COMPONENT_KEYS[1:]:
            entry[key] = raw.get(f"{key}:{component}") or None
        components[component] = entry
    return {"command": "ota-status", "status": "success", "raw": raw, "components": components}


def read_dashboard_status(store: ReadStore) -> dict[str, Any]:
    ready = store.hget(catalog.DASHBOARD_HASH, "ready")
    return {"command": "dashboard-status", "status": "success", "ready": ready == "true"}


# ── alarm / settings ────────────────────────────────────────────────


def read_alarm_status(store: ReadStore) -> dict[str, Any]:
    alarm_status = store.hget(catalog.ALARM_HASH, "status") or ""
    settings = _hgetall_or_empty(store, catalog.SETTINGS_HASH)
    return {
        "command": "alarm-status",
        "status": "success",
        "alarm_status": alarm_status,
        "enabled": settings.get("alarm.enabled") == "true",
        "honk": settings.get("alarm.honk") == "true",
        "duration": present_or(settings.get("alarm.duration"), "10"),
    }


def read_settings(store: ReadStore) -> dict[str, Any]:
    """Known settings (``None`` when unset) plus any unknown non-empty keys."""
    current = store.hgetall(catalog.SETTINGS_HASH)
    known = {info.key: current.get(info.key) or None for info in catalog.KNOWN_SETTINGS}
    unknown = {
        key: current[key]
        for key in sorted(current)
        if key not in catalog.KNOWN_SETTING_KEYS and current[key]
    }
    return {"command": "settings-list", "status": "success", "settings": known, "unknown": unknown}


def read_setting(store: ReadStore, key: str) -> dict[str, Any]:
    value = store.hget(catalog.SETTINGS_HASH, key)
    return {"command": "settings-get", "status": "success", "key": key, "value": value}


# ── gps ─────────────────────────────────────────────────────────────

_GPS_POSITION = ("latitude", "longitude", "altitude", "speed", "course")
_GPS_ACCURACY = ("eph", "quality", "hdop", "pdop", "vdop")


def has_position(raw: dict[str, str]) -> bool:
    return raw.get("state", "") in catalog.GPS_POSITION_STATES


def read_gps(store: ReadStore) -> dict[str, Any]:
    """Fix state, and position plus accuracy once the receiver has a fix."""
    raw = store.hgetall(catalog.GPS_HASH)
    if not raw:
        return {"command": "gps-status", "status": "warning", "error": "No GPS data available"}
    payload: dict[str, Any] = {
        "command": "gps-status",
        "status": "success",
        "connected": raw.get("connected") == "1",
        "active": raw.get("active") == "1",
        "state": raw.get("state", ""),
        "fix_type": raw.get("fix", ""),
        "raw": raw,
    }
    if has_position(raw):
        payload["position"] = {name: to_float(raw.get(name)) for name in _GPS_POSITION}
        payload["accuracy"] = {name: to_float(raw.get(name)) for name in _GPS_ACCURACY}
        payload["timestamp"] = raw.get("timestamp", "")
        payload["updated"] = raw.get("updated", "")
    return payload


def gps_record(raw: dict[str, str], *, now: float | None = None) -> dict[str, Any]:
    """One flat line of ``gps watch --json`` output."""
    record: dict[str, Any] = {
        "timestamp": int(time.time() if now is None else now),
        "connected": raw.get("connected") == "1",
        "active": raw.get("active") == "1",
        "state": raw.get("state", ""),
        "fix_type": raw.get("fix", ""),
    }
    record.update({name: to_float(raw.get(name)) for name in _GPS_POSITION + _GPS_ACCURACY})
    record["gps_time"] = raw.get("timestamp", "")
    record["updated"] = raw.get("updated", "")
    return record


def poll_gps(
    store: ReadStore,
    *,
    cancel: threading.Event | None = None,
    interval: float = 1.0,
) -> Iterator[dict[str, str]]:
    """Yield the ``gps`` hash now and then every ``interval`` seconds until cancelled."""
    stop = cancel or threading.Event()
    while True:
        try:
            yield store.hgetall(catalog.GPS_HASH)
        except StoreError as exc:
            logger.debug("gps poll failed: {}", exc)
        if stop.wait(interval):
            return


# ── fault event stream ──────────────────────────────────────────────


@dataclass(frozen=True)
class EventQuery:
    """Filters for a one-shot read of the fault event stream."""

    since_seconds: int | None = None
    until_seconds: int | None = None
    lines: int = 50
    reverse: bool = False
    pattern: re.Pattern[str] | None = None


def _matches(event: FaultEvent, pattern: re.Pattern[str] | None) -> bool:
    return pattern is None or pattern.search(event.searchable_text()) is not None


def read_events(store: ReadStore, query: EventQuery, *, now: float | None = None) -> list[FaultEvent]:
    """Read, filter, order and cap fault events.

    The stream is read from the ``--since`` boundary with headroom for
    filtering (twice the requested count, at least 100 entries).
    """
    if query.lines <= 0:
        raise ValueError("lines must be greater than 0")
    now_ms = int((time.time() if now is None else now) * 1000)
    since_ms = now_ms - query.since_seconds * 1000 if query.since_seconds is not None else None
    until_ms = now_ms - query.until_seconds * 1000 if query.until_seconds is not None else None
    start_id = f"{since_ms}-0" if since_ms is not None else "0"

    entries = store.xread(catalog.FAULT_EVENTS_STREAM, start_id, count=max(query.lines * 2, 100))
    events: list[FaultEvent] = []
    for entry_id, values in entries:
        event = FaultEvent.from_entry(entry_id, values)
        if event.timestamp:
            if since_ms is not None and event.timestamp < since_ms:
                continue
            if until_ms is not None and event.timestamp > until_ms:
                continue
        if _matches(event, query.pattern):
            events.append(event)

    if query.reverse:
        events.reverse()
    return events[: query.lines]


def follow_events(
    store: ReadStore,
    pattern: re.Pattern[str] | None = None,
    *,
    cancel: threading.Event | None = None,
    block_ms: int = 1000,
) -> Iterator[FaultEvent]:
    """Yield new fault events as they arrive, starting after the newest entry."""
    last_id = "$"
    while cancel is None or not cancel.is_set():
        for entry_id, values in store.xread(
            catalog.FAULT_EVENTS_STREAM, last_id, count=10, block_ms=block_ms
        ):
            last_id = entry_id
            event = FaultEvent.from_entry(entry_id, values)
            if _matches(event, pattern):
                yield event


# ── pub/sub ─────────────────────────────────────────────────────────


def iter_notifications(
    store: ReadStore,
    channels: Iterable[str],
    *,
    pattern: re.Pattern[str] | None = None,
    cancel: threading.Event | None = None,
    poll_seconds: float = 0.5,
) -> Iterator[Notification]:
    """Yield messages from ``channels`` until cancelled; filters on ``channel payload``."""
    subscription = store.subscribe(*channels)
    try:
        while cancel is None or not cancel.is_set():
            message = subscription.get_message(poll_seconds)
            if message is None:
                continue
            if pattern is not None and not pattern.search(f"{message.channel} {message.payload}"):
                continue
            yield message
    finally:
        subscription.close()
