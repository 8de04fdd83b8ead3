"""Saved navigation locations kept as flat fields of the ``settings`` hash.

Location ``n`` owns ``dashboard.saved-locations.<n>.{latitude,longitude,label,
created-at,last-used-at}``. Every write announces ``dashboard.saved-locations.<n>``
once on the ``settings`` channel so the dashboard reloads that entry.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any, Protocol

from lsc.control import catalog
from lsc.control.actions import PublishFailed, announce, publish_warning, set_fields_and_publish
from lsc.control.catalog import SavedLocation


class LocationStore(Protocol):
    """Store surface used for saved locations."""

    def hgetall(self, key: str) -> dict[str, str]: ...

    def hget(self, key: str, field: str) -> str | None: ...

    def hset(self, key: str, field: str, value: str) -> None: ...

    def hdel(self, key: str, *fields: str) -> int: ...

    def publish(self, channel: str, message: str) -> int: ...


_FIELD_RE = re.compile(rf"^{re.escape(catalog.LOCATIONS_PREFIX)}\.(\d+)\.([a-z-]+)$")

# accepted spellings for ``edit``
_EDIT_FIELDS = {
    "label": "label",
    "lat": "latitude",
    "latitude": "latitude",
    "lon": "longitude",
    "lng": "longitude",
    "longitude": "longitude",
}


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def _recency(location: SavedLocation) -> tuple[float, int]:
    stamp = location.last_used_at.timestamp() if location.last_used_at else float("-inf")
    return -stamp, location.id


# ── parsing ─────────────────────────────────────────────────────────


def parse_location_id(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"invalid id: {raw}") from None
    if value < 0:
        raise ValueError(f"invalid id: {raw}")
    return value


def parse_coordinate(raw: str, name: str) -> float:
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"invalid {name}: {raw}") from None


def validate_coordinates(latitude: float, longitude: float) -> None:
    if not -90 <= latitude <= 90:
        raise ValueError("latitude must be between -90 and 90")
    if not -180 <= longitude <= 180:
        raise ValueError("longitude must be between -180 and 180")


def parse_edits(pairs: Sequence[str]) -> dict[str, str]:
    """Turn ``field value [field value ...]`` into canonical field updates."""
    if not pairs or len(pairs) % 2:
        raise ValueError("fields and values must be provided in pairs")
    updates: dict[str, str] = {}
    for index in range(0, len(pairs), 2):
        name = pairs[index].lower()
        if name not in _EDIT_FIELDS:
            raise ValueError(f"invalid field: {pairs[index]} (valid: label, lat, lon)")
        updates[_EDIT_FIELDS[name]] = pairs[index + 1]
    return updates


# ── reads ───────────────────────────────────────────────────────────


def load_locations(store: LocationStore) -> list[SavedLocation]:
    """All complete saved locations, most recently used first."""
    grouped: dict[int, dict[str, str]] = {}
    for key, value in store.hgetall(catalog.SETTINGS_HASH).items():
        match = _FIELD_RE.match(key)
        if match is None or not value or match.group(2) not in catalog.LOCATION_FIELDS:
            continue
        grouped.setdefault(int(match.group(1)), {})[match.group(2)] = value

    locations: list[SavedLocation] = []
    for location_id, fields in grouped.items():
        location = SavedLocation.from_fields(location_id, fields)
        if location is not None:
            locations.append(location)
    return sorted(locations, key=_recency)


def load_location(store: LocationStore, location_id: int) -> SavedLocation | None:
    fields: dict[str, str] = {}
    for name in catalog.LOCATION_FIELDS:
        value = store.hget(catalog.SETTINGS_HASH, catalog.location_field(location_id, name))
        if value:
            fields[name] = value
    return SavedLocation.from_fields(location_id, fields)


def next_free_id(locations: Sequence[SavedLocation]) -> int:
    used = {location.id for location in locations}
    candidate = 0
    while candidate in used:
        candidate += 1
    return candidate


def _not_found(command: str, location_id: int) -> dict[str, Any]:
    return {"command": command, "status": "error", "error": f"location not found: {location_id}"}


def list_locations(store: LocationStore) -> dict[str, Any]:
    locations = load_locations(store)
    return {
        "command": "locations-list",
        "status": "success",
        "count": len(locations),
        "locations": [location.to_payload() for location in locations],
    }


def show_location(store: LocationStore, raw_id: str) -> dict[str, Any]:
    location_id = parse_location_id(raw_id)
    location = load_location(store, location_id)
    if location is None:
        return _not_found("locations-show", location_id)
    return {"command": "locations-show", "status": "success", **location.to_payload()}


# ── writes ──────────────────────────────────────────────────────────


def _save(store: LocationStore, command: str, location: SavedLocation, payload: dict[str, Any]) -> dict[str, Any]:
    try:
        set_fields_and_publish(
            store, catalog.SETTINGS_HASH, location.to_fields(), catalog.location_key(location.id)
        )
    except PublishFailed as exc:
        return {**payload, **publish_warning(command, "Location saved but publish failed", exc)}
    return {**payload, "status": "success"}


def add_location(
    store: LocationStore,
    latitude: str,
    longitude: str,
    label: Sequence[str],
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Store a new location under the lowest unused ID."""
    lat = parse_coordinate(latitude, "latitude")
    lon = parse_coordinate(longitude, "longitude")
    validate_coordinates(lat, lon)
    text = " ".join(label).strip()
    if not text:
        raise ValueError("label must not be empty")

    moment = now or _now()
    location = SavedLocation(
        id=next_free_id(load_locations(store)),
        latitude=lat,
        longitude=lon,
        label=text,
        created_at=moment,
        last_used_at=moment,
    )
    payload = {
        "command": "locations-add",
        "id": location.id,
        "latitude": lat,
        "longitude": lon,
        "label": text,
    }
    return _save(store, "locations-add", location, payload)


def edit_location(
    store: LocationStore,
    raw_id: str,
    pairs: Sequence[str],
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Apply ``label``/``lat``/``lon`` updates and refresh the last-used time."""
    location_id = parse_location_id(raw_id)
    updates = parse_edits(pairs)
    changes: dict[str, Any] = {}
    if "label" in updates:
        changes["label"] = updates["label"]
    if "latitude" in updates:
        changes["latitude"] = parse_coordinate(updates["latitude"], "latitude")
    if "longitude" in updates:
        changes["longitude"] = parse_coordinate(updates["longitude"], "longitude")

    location = load_location(store, location_id)
    if location is None:
        return _not_found("locations-edit", location_id)
    updated = location.model_copy(update={**changes, "last_used_at": now or _now()})
    validate_coordinates(updated.latitude, updated.longitude)

    payload = {
        "command": "locations-edit",
        "id": location_id,
        "latitude": updated.latitude,
        "longitude": updated.longitude,
        "label": updated.label,
    }
    return _save(store, "locations-edit", updated, payload)


def touch_location(store: LocationStore, raw_id: str, *, now: datetime | None = None) -> dict[str, Any]:
    """Mark a location as just used; this moves it to the top of ``list``."""
    location_id = parse_location_id(raw_id)
    location = load_location(store, location_id)
    if location is None:
        return _not_found("locations-touch", location_id)
    updated = location.model_copy(update={"last_used_at": now or _now()})
    payload = {
        "command": "locations-touch",
        "id": location_id,
        "label": updated.label,
        "last_used_at": catalog.format_timestamp(updated.last_used_at),
    }
    return _save(store, "locations-touch", updated, payload)


def delete_location(store: LocationStore, raw_id: str) -> dict[str, Any]:
    location_id = parse_location_id(raw_id)
    location = load_location(store, location_id)
    if location is None:
        return _not_found("locations-delete", location_id)

    fields = [catalog.location_field(location_id, name) for name in catalog.LOCATION_FIELDS]
    store.hdel(catalog.SETTINGS_HASH, *fields)
    payload = {"command": "locations-delete", "id": location_id, "label": location.label}
    try:
        announce(store, catalog.SETTINGS_HASH, catalog.location_key(location_id))
    except PublishFailed as exc:
        return {**payload, **publish_warning("locations-delete", "Location deleted but publish failed", exc)}
    return {**payload, "status": "success"}
