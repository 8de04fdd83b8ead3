"""Unit tests for read-only snapshots, the event stream and channel watching."""

from __future__ import annotations

import re
import threading

import pytest

from lsc.control import readers
from lsc.control.readers import EventQuery, present_or, to_float, to_int
from lsc.store.base import StoreError
from tests.helpers import FakeStore

NOW = 1_700_000_000.0
NOW_MS = int(NOW * 1000)


def _event_store() -> FakeStore:
    return FakeStore(
        streams={
            "events:faults": [
                (f"{NOW_MS - 3_600_000}-0", {"group": "battery:0", "code": "12", "description": "Cell undervoltage"}),
                (f"{NOW_MS - 1_800_000}-0", {"group": "ecu", "code": "warn-temp", "description": "Motor warm"}),
                (f"{NOW_MS - 600_000}-0", {"group": "vehicle", "code": "critical-brake", "description": "Brake fault", "source": "vehicle-service"}),
                (f"{NOW_MS - 60_000}-1", {"group": "ecu", "code": "7", "description": "Throttle noise"}),
            ]
        }
    )


def test_value_helpers():
    assert present_or("unknown", "N/A") == "N/A"
    assert present_or("0") == ""
    assert present_or("v1") == "v1"
    assert to_int("x") == 0
    assert to_int("42") == 42
    assert to_float(None) == 0.0


# ── snapshots ───────────────────────────────────────────────────────


def test_read_status(scooter):
    payload = readers.read_status(scooter)

    assert payload["command"] == "status"
    assert payload["vehicle"]["state"] == "parked"
    assert payload["vehicle"]["brakes"] == {"left": "off", "right": "on"}
    assert payload["vehicle"]["seatbox"] == "closed"
    assert payload["motor"]["odometer_km"] == pytest.approx(123.456)
    assert payload["motor"]["kers"] is True
    assert payload["battery_0"]["charge_percent"] == 87
    assert payload["battery_0"]["voltage_v"] == pytest.approx(53.2)
    assert payload["battery_1"] == {"present": False}


def test_read_status_tolerates_missing_second_battery(scooter):
    scooter.failing_keys.add("battery:1")
    assert readers.read_status(scooter)["battery_1"] == {"present": False}


def test_read_status_propagates_vehicle_errors(scooter):
    scooter.failing_keys.add("vehicle")
    with pytest.raises(StoreError):
        readers.read_status(scooter)


def test_read_batteries_defaults_to_both(scooter):
    scooter.sets["battery:0:faults"] = {"35", "12"}

    payload = readers.read_batteries(scooter)

    first, second = payload["batteries"]
    assert first["id"] == "0"
    assert first["temperature"]["sensor_3_c"] == 23
    assert first["identity"]["serial_number"] == "BAT0001"
    assert first["faults"] == ["12", "35"]
    assert second == {"id": "1", "present": False}


def test_read_batteries_selected_ids(scooter):
    payload = readers.read_batteries(scooter, ["1"])
    assert [b["id"] for b in payload["batteries"]] == ["1"]


def test_read_faults_counts_all_sets(scooter):
    scooter.sets["vehicle:fault"] = {"brake-sensor"}
    scooter.sets["battery:0:faults"] = {"12", "35"}
    scooter.failing_keys.add("battery:1:faults")

    payload = readers.read_faults(scooter)

    assert payload["total_faults"] == 3
    assert payload["vehicle"] == ["brake-sensor"]
    assert payload["battery_1"] == []


def test_read_versions(scooter):
    scooter.hashes["ota"] = {"system": "librescoot", "status": "idle", "fresh-update": "true"}

    payload = readers.read_versions(scooter)

    assert payload["system"]["mdb"] == "v1.4.0"
    assert payload["components"]["ecu"] == "0445400C"
    assert payload["batteries"]["0"] == {"present": True, "version": "1.2.3", "serial_number": "BAT0001"}
    assert payload["batteries"]["1"] == {"present": False}
    assert payload["ota"]["fresh_update"] is True


def test_read_power_status(store):
    store.hashes.update(
        {
            "power-manager": {"state": "running"},
            "power-mux": {"selected-input": "main"},
            "aux-battery": {"voltage": "12600", "charge": "75", "charge-status": "float-charge"},
            "cb-battery": {"present": "true", "charge": "90", "state-of-health": "99"},
        }
    )
    store.sets["power-manager:busy-services"] = {"modem-service"}

    payload = readers.read_power_status(store)

    assert payload["power_manager"] == {
        "state": "running",
        "power_source": "main",
        "inhibitors": ["modem-service"],
    }
    assert payload["aux_battery"]["voltage_v"] == pytest.approx(12.6)
    assert payload["cb_battery"]["health_percent"] == 99


def test_read_power_status_without_optional_hashes(store):
    store.hashes["power-manager"] = {"state": "suspending"}

    payload = readers.read_power_status(store)

    assert "aux_battery" not in payload
    assert payload["cb_battery"] == {"present": False}


def test_read_ota_status(store):
    store.hashes["ota"] = {"status:mdb": "downloading", "download-progress:mdb": "40"}

    payload = readers.read_ota_status(store)

    mdb = payload["components"]["mdb"]
    assert mdb["status"] == "downloading"
    assert mdb["download-progress"] == "40"
    assert mdb["error"] is None
    assert payload["components"]["dbc"] == {"status": None}


def test_read_alarm_status(scooter):
    payload = readers.read_alarm_status(scooter)

    assert payload == {
        "command": "alarm-status",
        "status": "success",
        "alarm_status": "disarmed",
        "enabled": False,
        "honk": False,
        "duration": "15",
    }


def test_read_settings_splits_known_and_unknown(store):
    store.hashes["settings"] = {"alarm.enabled": "true", "custom.flag": "1", "empty.one": ""}

    payload = readers.read_settings(store)

    assert payload["settings"]["alarm.enabled"] == "true"
    assert payload["settings"]["alarm.honk"] is None
    assert payload["unknown"] == {"custom.flag": "1"}


def test_read_setting(scooter):
    assert readers.read_setting(scooter, "alarm.duration")["value"] == "15"
    assert readers.read_setting(scooter, "missing")["value"] is None


def test_read_dashboard_status(scooter):
    assert readers.read_dashboard_status(scooter)["ready"] is False


# ── gps ─────────────────────────────────────────────────────────────

GPS_FIX = {
    "connected": "1",
    "active": "1",
    "state": "fix-established",
    "fix": "3d",
    "latitude": "52.520008",
    "longitude": "13.404954",
    "altitude": "34.5",
    "speed": "18.25",
    "course": "271.0",
    "eph": "4.2",
    "quality": "0.004",
    "hdop": "0.9",
    "pdop": "1.4",
    "vdop": "1.1",
    "timestamp": "2024-05-01T12:00:00Z",
    "updated": "2024-05-01T12:00:01Z",
}


def test_read_gps_without_data_is_warning(store):
    payload = readers.read_gps(store)
    assert payload == {"command": "gps-status", "status": "warning", "error": "No GPS data available"}


def test_read_gps_with_fix_includes_position(store):
    store.hashes["gps"] = dict(GPS_FIX)

    payload = readers.read_gps(store)

    assert payload["status"] == "success"
    assert payload["connected"] is True
    assert payload["fix_type"] == "3d"
    assert payload["position"] == {
        "latitude": 52.520008,
        "longitude": 13.404954,
        "altitude": 34.5,
        "speed": 18.25,
        "course": 271.0,
    }
    assert payload["accuracy"]["eph"] == 4.2
    assert payload["updated"] == "2024-05-01T12:00:01Z"


def test_read_gps_searching_has_no_position(store):
    store.hashes["gps"] = {"connected": "1", "active": "0", "state": "searching", "fix": "none"}

    payload = readers.read_gps(store)

    assert payload["active"] is False
    assert "position" not in payload
    assert "accuracy" not in payload


def test_gps_record_is_flat():
    record = readers.gps_record(GPS_FIX, now=NOW)
    assert record["timestamp"] == int(NOW)
    assert record["latitude"] == 52.520008
    assert record["vdop"] == 1.1
    assert record["gps_time"] == "2024-05-01T12:00:00Z"
    assert readers.gps_record({}, now=NOW)["speed"] == 0.0


def test_poll_gps_skips_failed_reads(store):
    store.hashes["gps"] = {"state": "tracking"}
    cancel = threading.Event()
    snapshots = []
    for snapshot in readers.poll_gps(store, cancel=cancel, interval=0.01):
        snapshots.append(snapshot)
        if len(snapshots) == 1:
            store.failing_keys.add("gps")
            threading.Timer(0.05, store.failing_keys.clear).start()
        else:
            cancel.set()

    assert snapshots == [{"state": "tracking"}, {"state": "tracking"}]


def test_poll_gps_stops_when_cancelled(store):
    cancel = threading.Event()
    cancel.set()
    assert list(readers.poll_gps(store, cancel=cancel, interval=5)) == [{}]


# ── fault events ────────────────────────────────────────────────────


def test_read_events_default_reads_from_start():
    store = _event_store()

    events = readers.read_events(store, EventQuery(), now=NOW)

    assert len(events) == 4
    assert store.xread_calls[0]["last_id"] == "0"
    assert store.xread_calls[0]["count"] == 100


def test_read_events_since_and_until():
    store = _event_store()

    events = readers.read_events(
        store, EventQuery(since_seconds=2700, until_seconds=300), now=NOW
    )

    assert [e.group for e in events] == ["ecu", "vehicle"]
    assert store.xread_calls[0]["last_id"] == f"{NOW_MS - 2_700_000}-0"


def test_read_events_filter_reverse_and_limit():
    store = _event_store()

    events = readers.read_events(
        store, EventQuery(lines=1, reverse=True, pattern=re.compile("ecu")), now=NOW
    )

    assert [e.description for e in events] == ["Throttle noise"]


def test_read_events_headroom_scales_with_lines():
    store = _event_store()
    readers.read_events(store, EventQuery(lines=80), now=NOW)
    assert store.xread_calls[0]["count"] == 160


def test_read_events_rejects_non_positive_lines():
    with pytest.raises(ValueError):
        readers.read_events(_event_store(), EventQuery(lines=0))


def test_follow_events_starts_after_newest_entry():
    store = FakeStore()
    store.live_events.append([(f"{NOW_MS}-0", {"group": "ecu", "code": "1", "description": "a"})])
    store.live_events.append([(f"{NOW_MS + 5}-0", {"group": "vehicle", "code": "2", "description": "b"})])
    cancel = threading.Event()

    seen = []
    for event in readers.follow_events(store, cancel=cancel, block_ms=10):
        seen.append(event.description)
        if len(seen) == 2:
            cancel.set()

    assert seen == ["a", "b"]
    assert [call["last_id"] for call in store.xread_calls] == ["$", f"{NOW_MS}-0"]


def test_follow_events_applies_filter():
    store = FakeStore()
    store.live_events.append(
        [
            (f"{NOW_MS}-0", {"group": "ecu", "code": "1", "description": "a"}),
            (f"{NOW_MS}-1", {"group": "battery:0", "code": "2", "description": "b"}),
        ]
    )
    cancel = threading.Event()

    events = []
    for event in readers.follow_events(store, re.compile("battery"), cancel=cancel):
        events.append(event)
        cancel.set()

    assert [e.id for e in events] == [f"{NOW_MS}-1"]


# ── watch ───────────────────────────────────────────────────────────


def test_iter_notifications_yields_matching_messages(store):
    cancel = threading.Event()
    iterator = readers.iter_notifications(
        store, ["vehicle", "alarm"], pattern=re.compile("state|status"), cancel=cancel
    )

    def feed() -> None:
        store.publish("vehicle", "kickstand")
        store.publish("alarm", "status")
        store.publish("vehicle", "state")

    threading.Timer(0.05, feed).start()
    received = []
    for message in iterator:
        received.append((message.channel, message.payload))
        if len(received) == 2:
            cancel.set()

    assert received == [("alarm", "status"), ("vehicle", "state")]
    assert store.last_subscription.channels == ("vehicle", "alarm")
    assert store.last_subscription.closed
