"""Unit tests for key names, LED aliases and the stored record models."""

from __future__ import annotations

import pytest

from lsc.control.catalog import (
    KNOWN_SETTING_KEYS,
    KNOWN_SETTINGS,
    FaultEvent,
    battery_faults,
    battery_hash,
    format_timestamp,
    location_field,
    location_key,
    parse_channel_index,
    parse_cue_index,
    parse_fade_index,
    parse_timestamp,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("0", 0), ("all-off", 0), ("ALL_OFF", 0), ("blink-left", 10), ("Blink_Both", 12), ("42", 42)],
)
def test_parse_cue_index(raw, expected):
    assert parse_cue_index(raw) == expected


def test_channel_aliases_share_indices():
    assert parse_channel_index("brake") == parse_channel_index("brake-light") == 2
    assert parse_channel_index("plates") == parse_channel_index("number_plates") == 5
    assert parse_channel_index("blinker-left-rear") == 6


def test_parse_fade_index():
    assert parse_fade_index("parking-smooth-on") == 0
    assert parse_fade_index("blink") == 10


def test_unknown_alias_names_kind_and_normalized_value():
    with pytest.raises(ValueError, match="invalid channel 'tail-light'"):
        parse_channel_index("Tail_Light")


def test_known_settings_registry():
    assert len(KNOWN_SETTINGS) == len(KNOWN_SETTING_KEYS)
    assert {"alarm.enabled", "alarm.duration", "updates.dbc.channel"} <= KNOWN_SETTING_KEYS
    honk = next(info for info in KNOWN_SETTINGS if info.key == "alarm.honk")
    assert honk.service == "alarm-service"
    assert honk.default == "false"


def test_battery_keys():
    assert battery_hash("1") == "battery:1"
    assert battery_faults("0") == "battery:0:faults"


def test_fault_event_from_entry():
    event = FaultEvent.from_entry(
        "1700000000123-4",
        {"group": "vehicle", "code": "3", "description": "Brake sensor", "source": "vehicle-service"},
    )
    assert event.timestamp == 1700000000123
    assert event.extra == {"source": "vehicle-service"}
    assert event.searchable_text() == "vehicle 3 Brake sensor"
    assert event.to_payload()["source"] == "vehicle-service"
    assert event.to_payload()["id"] == "1700000000123-4"


def test_fault_event_bad_id_has_zero_timestamp():
    assert FaultEvent.from_entry("garbage", {}).timestamp == 0


@pytest.mark.parametrize(
    ("group", "code", "severity"),
    [
        ("battery:0", "12", "ERROR"),
        ("ecu", "critical-overheat", "ERROR"),
        ("ecu", "Error-7", "ERROR"),
        ("vehicle", "3", "WARN"),
    ],
)
def test_fault_event_severity(group, code, severity):
    assert FaultEvent(id="1-0", group=group, code=code).severity == severity


def test_location_names():
    assert location_key(3) == "dashboard.saved-locations.3"
    assert location_field(3, "last-used-at") == "dashboard.saved-locations.3.last-used-at"


def test_timestamps_are_utc_rfc3339():
    moment = parse_timestamp("2024-05-01T14:00:00+02:00")
    assert format_timestamp(moment) == "2024-05-01T12:00:00Z"
    assert format_timestamp(None) == ""
    assert parse_timestamp("yesterday") is None
    assert parse_timestamp("2024-05-01T12:00:00").tzinfo is not None
