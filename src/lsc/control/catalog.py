"""Redis key layout, LED alias tables, known settings, and the stored record models.

Everything here mirrors what the on-board services read and write; the
strings are wire values and must not be reworded.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, Field

# ── command queues (LPUSH targets) ──────────────────────────────────
STATE_QUEUE = "scooter:state"
SEATBOX_QUEUE = "scooter:seatbox"
ALARM_QUEUE = "scooter:alarm"
LED_CUE_QUEUE = "scooter:led:cue"
LED_FADE_QUEUE = "scooter:led:fade"
POWER_QUEUE = "scooter:power"
UPDATE_QUEUE = "scooter:update"
HORN_QUEUE = "scooter:horn"
BLINKER_QUEUE = "scooter:blinker"
HARDWARE_QUEUE = "scooter:hardware"

# ── state hashes (also their notification channels) ─────────────────
VEHICLE_HASH = "vehicle"
ALARM_HASH = "alarm"
SETTINGS_HASH = "settings"
ENGINE_HASH = "engine-ecu"
SYSTEM_HASH = "system"
OTA_HASH = "ota"
DASHBOARD_HASH = "dashboard"
POWER_MANAGER_HASH = "power-manager"
POWER_MUX_HASH = "power-mux"
AUX_BATTERY_HASH = "aux-battery"
CB_BATTERY_HASH = "cb-battery"
GPS_HASH = "gps"

# ── sets and streams ────────────────────────────────────────────────
VEHICLE_FAULTS = "vehicle:fault"
POWER_INHIBITORS = "power-manager:busy-services"
FAULT_EVENTS_STREAM = "events:faults"

BATTERY_IDS = ("0", "1")
OTA_COMPONENTS = ("mdb", "dbc")
OTA_COMPONENT_KEYS = (
    "status",
    "update-version",
    "error",
    "error-message",
    "download-progress",
    "download-bytes",
    "download-total",
    "update-method",
)

POWER_COMMANDS = ("run", "suspend", "hibernate", "hibernate-manual", "hibernate-timer", "reboot")
BLINKER_STATES = ("off", "left", "right", "both")
ON_OFF = ("on", "off")
LOCK_UNLOCK = ("lock", "unlock")
GPS_POSITION_STATES = ("fix-established", "tracking")


def battery_hash(battery_id: str) -> str:
    return f"battery:{battery_id}"


def battery_faults(battery_id: str) -> str:
    return f"battery:{battery_id}:faults"


# ── LED aliases ─────────────────────────────────────────────────────
CUE_ALIASES: dict[str, int] = {
    "all-off": 0,
    "standby-to-parked-brake-off": 1,
    "standby-to-parked-brake-on": 2,
    "parked-to-drive": 3,
    "brake-off-to-brake-on": 4,
    "brake-on-to-brake-off": 5,
    "drive-to-parked": 6,
    "parked-brake-off-to-standby": 7,
    "parked-brake-on-to-standby": 8,
    "blink-none": 9,
    "blink-left": 10,
    "blink-right": 11,
    "blink-both": 12,
}

CHANNEL_ALIASES: dict[str, int] = {
    "headlight": 0,
    "front-ring": 1,
    "brake": 2,
    "brake-light": 2,
    "blinker-front-left": 3,
    "blinker-left-front": 3,
    "blinker-front-right": 4,
    "blinker-right-front": 4,
    "number-plates": 5,
    "plates": 5,
    "blinker-rear-left": 6,
    "blinker-left-rear": 6,
    "blinker-rear-right": 7,
    "blinker-right-rear": 7,
}

FADE_ALIASES: dict[str, int] = {
    "parking-smooth-on": 0,
    "smooth-off": 1,
    "brake-linear-on": 2,
    "brake-linear-off": 3,
    "brake-dim-on": 4,
    "brake-half-to-full": 5,
    "drive-light-on": 6,
    "brake-full-to-half": 7,
    "drive-light-off": 8,
    "brake-dim-off": 9,
    "blink": 10,
}


def _parse_alias(raw: str, aliases: dict[str, int], kind: str) -> int:
    """Resolve an integer index or a case-insensitive alias (``_`` == ``-``)."""
    text = (raw or "").strip()
    try:
        return int(text)
    except ValueError:
        pass
    name = text.replace("_", "-").lower()
    if name in aliases:
        return aliases[name]
    raise ValueError(f"invalid {kind} '{name}'")


def parse_cue_index(raw: str) -> int:
    return _parse_alias(raw, CUE_ALIASES, "cue")


def parse_channel_index(raw: str) -> int:
    return _parse_alias(raw, CHANNEL_ALIASES, "channel")


def parse_fade_index(raw: str) -> int:
    return _parse_alias(raw, FADE_ALIASES, "fade")


# ── settings registry ───────────────────────────────────────────────
class SettingInfo(BaseModel):
    """One documented key of the ``settings`` hash."""

    key: str = Field(description="Hash field name.")
    description: str = Field(description="What the setting controls.")
    default: str = Field(default="", description="Value the owning service assumes when unset.")
    service: str = Field(description="Service that consumes the setting.")


_RELEASES_URL = "https://api.github.com/repos/librescoot/librescoot/releases"
_VISIBILITY = "(always/active-or-error/error/never)"


def _update_settings(component: str) -> list[SettingInfo]:
    upper = component.upper()
    prefix = f"updates.{component}"
    return [
        SettingInfo(key=f"{prefix}.method", description=f"Update method for {upper} (delta or full)", default="full", service="update-service"),
        SettingInfo(key=f"{prefix}.channel", description=f"Release channel for {upper} (stable/testing/nightly)", default="nightly", service="update-service"),
        SettingInfo(key=f"{prefix}.check-interval", description=f"Time between update checks for {upper} (hours, 0=never)", default="6", service="update-service"),
        SettingInfo(key=f"{prefix}.github-releases-url", description=f"GitHub Releases API endpoint for {upper}", default=_RELEASES_URL, service="update-service"),
        SettingInfo(key=f"{prefix}.dry-run", description=f"Enable dry-run mode for {upper} updates (no reboot)", default="false", service="update-service"),
    ]


KNOWN_SETTINGS: list[SettingInfo] = [
    SettingInfo(key="alarm.enabled", description="Enable/disable alarm system", default="false", service="alarm-service"),
    SettingInfo(key="alarm.honk", description="Enable horn during alarm trigger", default="false", service="alarm-service"),
    SettingInfo(key="alarm.duration", description="Duration in seconds for alarm sound", default="60", service="alarm-service"),
    SettingInfo(key="hibernation-timer", description="Hibernation timeout in seconds", default="900", service="pm-service"),
    *_update_settings("mdb"),
    *_update_settings("dbc"),
    SettingInfo(key="cellular.apn", description="Cellular APN string", service="modem-service"),
    SettingInfo(key="dashboard.show-raw-speed", description="Show raw uncorrected speed from ECU", default="false", service="scootui"),
    SettingInfo(key="dashboard.show-gps", description=f"GPS indicator visibility {_VISIBILITY}", default="error", service="scootui"),
    SettingInfo(key="dashboard.show-bluetooth", description=f"Bluetooth indicator visibility {_VISIBILITY}", default="active-or-error", service="scootui"),
    SettingInfo(key="dashboard.show-cloud", description=f"Cloud indicator visibility {_VISIBILITY}", default="error", service="scootui"),
    SettingInfo(key="dashboard.show-internet", description=f"Internet indicator visibility {_VISIBILITY}", default="always", service="scootui"),
    SettingInfo(key="dashboard.map.type", description="Map tile source (online/offline)", default="offline", service="scootui"),
    SettingInfo(key="dashboard.map.render-mode", description="Map rendering mode (vector/raster)", default="raster", service="scootui"),
    SettingInfo(key="dashboard.theme", description="UI theme (light/dark/auto)", default="dark", service="scootui"),
    SettingInfo(key="dashboard.mode", description="Default screen mode (speedometer/navigation)", default="speedometer", service="scootui"),
    SettingInfo(key="dashboard.valhalla-url", description="Valhalla routing service endpoint", default="http://localhost:8002/", service="scootui"),
]

KNOWN_SETTING_KEYS = frozenset(info.key for info in KNOWN_SETTINGS)


# ── fault events ────────────────────────────────────────────────────
class FaultEvent(BaseModel):
    """One entry of the ``events:faults`` stream."""

    id: str = Field(description="Stream entry ID, ``<ms>-<seq>``.")
    timestamp: int = Field(default=0, description="Milliseconds since epoch, taken from the ID.")
    group: str = ""
    code: str = ""
    description: str = ""
    extra: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_entry(cls, entry_id: str, values: dict[str, str]) -> "FaultEvent":
        head = entry_id.split("-", 1)[0]
        extra = {k: v for k, v in values.items() if k not in ("group", "code", "description")}
        return cls(
            id=entry_id,
            timestamp=int(head) if head.isdigit() else 0,
            group=values.get("group", ""),
            code=values.get("code", ""),
            description=values.get("description", ""),
            extra=extra,
        )

    @property
    def severity(self) -> str:
        """``ERROR`` for battery groups or critical/error codes, else ``WARN``."""
        group = self.group.lower()
        code = self.code.lower()
        if "battery" in group or "critical" in code or "error" in code:
            return "ERROR"
        return "WARN"

    def searchable_text(self) -> str:
        return f"{self.group} {self.code} {self.description}"

    def to_payload(self) -> dict[str, object]:
        """Flat JSON object: well-known fields first, extra stream fields merged in."""
        payload: dict[str, object] = dict(self.extra)
        payload.update(
            id=self.id,
            timestamp=self.timestamp,
            group=self.group,
            code=self.code,
            description=self.description,
        )
        return payload


# ── saved locations ─────────────────────────────────────────────────
LOCATIONS_PREFIX = "dashboard.saved-locations"
LOCATION_FIELDS = ("latitude", "longitude", "label", "created-at", "last-used-at")


def location_key(location_id: int) -> str:
    """Message announced on the ``settings`` channel when a location changes."""
    return f"{LOCATIONS_PREFIX}.{location_id}"


def location_field(location_id: int, field: str) -> str:
    """``settings`` field name holding ``field`` of saved location ``location_id``."""
    return f"{LOCATIONS_PREFIX}.{location_id}.{field}"


def format_timestamp(moment: datetime | None) -> str:
    """RFC 3339 in UTC, or an empty string for a missing time."""
    if moment is None:
        return ""
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_timestamp(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        moment = datetime.fromisoformat(raw)
    except ValueError:
        return None
    return moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)


class SavedLocation(BaseModel):
    """A navigation target stored as five flat ``settings`` fields."""

    id: int
    latitude: float
    longitude: float
    label: str = ""
    created_at: datetime | None = None
    last_used_at: datetime | None = None

    @classmethod
    def from_fields(cls, location_id: int, fields: dict[str, str]) -> "SavedLocation | None":
        """Build from the non-empty fields of one ID; ``None`` when incomplete."""
        if len(fields) < 3:
            return None
        try:
            latitude = float(fields.get("latitude", ""))
            longitude = float(fields.get("longitude", ""))
        except ValueError:
            return None
        return cls(
            id=location_id,
            latitude=latitude,
            longitude=longitude,
            label=fields.get("label", ""),
            created_at=parse_timestamp(fields.get("created-at")),
            last_used_at=parse_timestamp(fields.get("last-used-at")),
        )

    def to_fields(self) -> dict[str, str]:
        """Field-name to value mapping, keyed by full ``settings`` field names."""
        values = {
            "latitude": f"{self.latitude:.6f}",
            "longitude": f"{self.longitude:.6f}",
            "label": self.label,
            "created-at": format_timestamp(self.created_at),
            "last-used-at": format_timestamp(self.last_used_at),
        }
        return {location_field(self.id, name): value for name, value in values.items()}

    def to_payload(self) -> dict[str, object]:
        return {
            "id": self.id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "label": self.label,
            "created_at": format_timestamp(self.created_at),
            "last_used_at": format_timestamp(self.last_used_at),
        }


if __name__ == "__main__":
    assert parse_cue_index("blink_both") == 12
    assert parse_channel_index("Plates") == 5
    assert parse_fade_index("7") == 7
    event = FaultEvent.from_entry("1700000000000-0", {"group": "battery:0", "code": "12"})
    assert event.severity == "ERROR"
    print(f"catalog: {len(KNOWN_SETTINGS)} settings, self-test passed")
