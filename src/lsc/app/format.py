"""Colorized text rendering for command payloads.

Payload dicts come from ``lsc.control``; this module only decides how they
look on a terminal. Colors are rich markup, so a console built without a
color system prints the same text without escape codes.
"""

from __future__ import annotations

import json
import time
from datetime import datetime, timezone
from typing import Any

from rich.console import Console
from rich.markup import escape

from lsc.control.catalog import FaultEvent, parse_timestamp
from lsc.control.readers import to_float
from lsc.store.base import Notification

_STATE_STYLES: dict[str, str] = {
    **dict.fromkeys(("ready-to-drive", "on", "ideal", "active", "ok", "true", "enabled", "armed"), "green"),
    **dict.fromkeys(("fix-established", "tracking"), "green"),
    **dict.fromkeys(("stand-by", "parked", "off", "disabled", "disarmed", "false"), "blue"),
    **dict.fromkeys(("shutting-down", "init", "waiting", "delay-armed", "searching", "no-fix"), "yellow"),
    **dict.fromkeys(("error", "fault", "over-temperature", "under-temperature", "critical"), "red"),
}

_STATUS_STYLES = {
    "success": "green",
    "sent": "green",
    "enabled": "green",
    "disabled": "green",
    "warning": "yellow",
    "timeout": "yellow",
    "cancelled": "yellow",
    "error": "red",
}


def make_console(*, color: bool, stderr: bool = False) -> Console:
    """Build a console; ``color=False`` strips every style."""
    return Console(
        stderr=stderr,
        highlight=False,
        emoji=False,
        soft_wrap=True,
        color_system="auto" if color else None,
    )


def styled(text: object, style: str | None) -> str:
    value = escape(str(text))
    return f"[{style}]{value}[/{style}]" if style else value


def dim(text: object) -> str:
    return styled(text, "bright_black")


def colorize_state(value: str | None) -> str:
    text = value or ""
    return styled(text, _STATE_STYLES.get(text))


def on_off(value: bool) -> str:
    return colorize_state("on" if value else "off")


def percentage(value: int) -> str:
    if value >= 80:
        style = "green"
    elif value >= 40:
        style = None
    elif value >= 20:
        style = "yellow"
    else:
        style = "red"
    return styled(f"{value}%", style)


def temperature(celsius: int) -> str:
    if celsius < 0:
        style = "blue"
    elif celsius <= 45:
        style = "green"
    elif celsius <= 55:
        style = "yellow"
    else:
        style = "red"
    return styled(f"{celsius}°C", style)


def volts(value: float) -> str:
    return f"{value:.1f} V"


def pack_voltage(value: float) -> str:
    """Main-pack voltage: green from 50 V, yellow from 45 V, red below."""
    millivolts = int(round(value * 1000))
    if millivolts >= 50000:
        return styled(volts(value), "green")
    if millivolts >= 45000:
        return styled(volts(value), "yellow")
    if millivolts > 0:
        return styled(volts(value), "red")
    return dim(volts(value))


def or_default(value: object, default: str = "N/A") -> str:
    """Escape ``value``, or dim ``default`` when it is empty/zero/unknown."""
    if value in (None, "", "0", "unknown", 0):
        return dim(default)
    return escape(str(value))


def print_section(console: Console, title: str) -> None:
    console.print()
    console.print(styled(f"=== {title} ===", "blue"))


def print_subsection(console: Console, title: str) -> None:
    console.print()
    console.print(escape(title))


def print_kv(console: Console, key: str, value: str) -> None:
    """Print an aligned ``key: value`` line; ``value`` is markup."""
    label = f"{key}:"
    console.print(f"{dim(f'{label:<20}')} {value}")


def print_bullets(console: Console, items: list[str], *, style: str = "red") -> None:
    for item in items:
        console.print(f"  {styled('•', style)} {escape(item)}")


def print_json(console: Console, payload: Any, *, indent: int | None = 2) -> None:
    console.out(json.dumps(payload, indent=indent, ensure_ascii=True), highlight=False)


# ── payload renderers ───────────────────────────────────────────────


def render_result(console: Console, payload: dict[str, Any], message: str) -> None:
    """One-line outcome for write commands."""
    status = str(payload.get("status", ""))
    text = message
    if status in ("timeout", "cancelled", "error", "warning") and payload.get("error"):
        text = f"{message}: {payload['error']}"
    console.print(styled(text, _STATUS_STYLES.get(status)))


def _render_battery_summary(console: Console, title: str, battery: dict[str, Any]) -> None:
    print_section(console, title)
    if not battery.get("present"):
        console.print(dim("  Not Present"))
        return
    print_kv(console, "State", colorize_state(battery["state"]))
    print_kv(console, "Charge", percentage(battery["charge_percent"]))
    print_kv(console, "Voltage", pack_voltage(battery["voltage_v"]))
    print_kv(console, "Current", f"{battery['current_a']:.1f} A")
    print_kv(console, "Temperature", temperature(battery["temperature_c"]))
    print_kv(console, "Temp State", colorize_state(battery["temperature_state"]))
    print_kv(console, "Cycles", str(battery["cycles"]))
    print_kv(console, "Health", f"{battery['health_percent']}%")


def render_status(console: Console, payload: dict[str, Any]) -> None:
    vehicle = payload["vehicle"]
    motor = payload["motor"]
    print_section(console, "Vehicle Status")
    print_kv(console, "State", colorize_state(vehicle["state"]))
    print_kv(console, "Kickstand", colorize_state(vehicle["kickstand"]))
    brakes = vehicle["brakes"]
    print_kv(
        console,
        "Brakes",
        f"L:{colorize_state(brakes['left'])} R:{colorize_state(brakes['right'])}",
    )
    print_kv(console, "Blinker", colorize_state(vehicle["blinker"]))
    print_kv(console, "Seatbox", escape(vehicle["seatbox"]))

    print_section(console, "Motor Status")
    print_kv(console, "Speed", f"{motor['speed_kph']:g} km/h")
    print_kv(console, "RPM", f"{motor['rpm']} RPM")
    print_kv(console, "Throttle", on_off(motor["throttle"]))
    print_kv(console, "Odometer", f"{motor['odometer_km']:.1f} km")
    print_kv(console, "Voltage", volts(motor["voltage_v"]))
    print_kv(console, "Current", f"{motor['current_a']:.1f} A")
    print_kv(console, "Temperature", temperature(motor["temperature_c"]))
    print_kv(console, "KERS", on_off(motor["kers"]))

    _render_battery_summary(console, "Battery 0", payload["battery_0"])
    _render_battery_summary(console, "Battery 1", payload["battery_1"])
    console.print()


def render_battery(console: Console, battery: dict[str, Any]) -> None:
    print_section(console, f"Battery {battery['id']}")
    if not battery.get("present"):
        console.print(dim("  Not Present"))
        return
    charge = battery["charge"]
    temps = battery["temperature"]
    health = battery["health"]
    identity = battery["identity"]
    print_kv(console, "State", colorize_state(battery["state"]))

    print_subsection(console, "Charge")
    print_kv(console, "Level", percentage(charge["charge_percent"]))
    print_kv(console, "Voltage", pack_voltage(charge["voltage_v"]))
    print_kv(console, "Current", f"{charge['current_a']:.1f} A")

    print_subsection(console, "Temperature")
    for n in range(4):
        print_kv(console, f"Sensor {n}", temperature(temps[f"sensor_{n}_c"]))
    print_kv(console, "State", colorize_state(temps["state"]))

    print_subsection(console, "Health")
    print_kv(console, "Cycle Count", str(health["cycles"]))
    soh = health["health_percent"]
    print_kv(console, "State of Health", percentage(soh) if soh > 0 else dim("N/A"))

    print_subsection(console, "Identity")
    print_kv(console, "Serial Number", or_default(identity["serial_number"]))
    print_kv(console, "Mfg Date", or_default(identity["manufacturing_date"]))
    print_kv(console, "Firmware", or_default(identity["firmware_version"]))

    if battery["faults"]:
        print_subsection(console, "Active Faults")
        print_bullets(console, battery["faults"])
    else:
        print_kv(console, "Faults", styled("None", "green"))
    console.print()


def render_faults(console: Console, payload: dict[str, Any]) -> None:
    total = payload["total_faults"]
    if not total:
        console.print(styled("No active faults", "green"))
        return
    print_section(console, f"Active Faults ({total})")
    for key, title in (("vehicle", "Vehicle"), ("battery_0", "Battery 0"), ("battery_1", "Battery 1")):
        if payload[key]:
            console.print()
            console.print(styled(f"{title} Faults:", "yellow"))
            print_bullets(console, payload[key])
    console.print()


def render_versions(console: Console, payload: dict[str, Any]) -> None:
    system = payload["system"]
    print_section(console, "System Versions")
    print_kv(console, "MDB", or_default(system["mdb"]))
    print_kv(console, "DBC", or_default(system["dbc"]))
    print_kv(console, "nRF", or_default(system["nrf"]))
    print_kv(console, "Environment", or_default(system["environment"]))

    print_section(console, "Component Versions")
    print_kv(console, "ECU", or_default(payload["components"]["ecu"]))
    for battery_id, info in payload["batteries"].items():
        label = f"Battery {battery_id}"
        if not info.get("present"):
            print_kv(console, label, dim("Not Present"))
            continue
        version = or_default(info["version"])
        if info["serial_number"]:
            version = f"{version} (S/N: {escape(info['serial_number'])})"
        print_kv(console, label, version)

    ota = payload["ota"]
    print_section(console, "OTA System")
    print_kv(console, "System", or_default(ota["system"]))
    print_kv(console, "Status", or_default(ota["status"]))
    if ota["fresh_update"]:
        print_kv(console, "Fresh Update", styled("Yes", "green"))
    console.print()


_POWER_SOURCES = {
    "aux": "Auxiliary Battery",
    "main": "Main Battery",
    "external": styled("External Power", "green"),
}


def render_power_status(console: Console, payload: dict[str, Any]) -> None:
    manager = payload["power_manager"]
    print_section(console, "Power Manager")
    state = manager["state"]
    print_kv(console, "State", colorize_state(state) if state else styled("Unknown", "yellow"))
    source = manager["power_source"]
    if source:
        print_kv(console, "Power Source", _POWER_SOURCES.get(source, escape(source)))
    if manager["inhibitors"]:
        print_subsection(console, "Active Inhibitors")
        print_bullets(console, manager["inhibitors"], style="yellow")
    else:
        print_kv(console, "Inhibitors", styled("None", "green"))

    aux = payload.get("aux_battery")
    if aux:
        print_section(console, "Auxiliary Battery")
        print_kv(console, "Voltage", volts(aux["voltage_v"]))
        print_kv(console, "Charge", percentage(aux["charge_percent"]))
        if aux["charge_status"]:
            print_kv(console, "Status", colorize_state(aux["charge_status"]))

    cb = payload["cb_battery"]
    if cb.get("present"):
        print_section(console, "Control Board Battery")
        print_kv(console, "Charge", percentage(cb["charge_percent"]))
        if cb["charge_status"]:
            print_kv(console, "Status", colorize_state(cb["charge_status"]))
        print_kv(console, "Health", percentage(cb["health_percent"]))
        print_kv(console, "Cycles", str(cb["cycles"]))
        print_kv(console, "Temperature", temperature(cb["temperature_c"]))
    console.print()


def render_ota_status(console: Console, payload: dict[str, Any]) -> None:
    print_section(console, "OTA Update Status")
    for component, info in payload["components"].items():
        console.print()
        console.print(f"{styled(component, 'blue')}:")
        if info["status"] is None:
            print_kv(console, "  status", dim("(no update service)"))
            continue
        for key, value in info.items():
            print_kv(console, f"  {key}", escape(value) if value is not None else dim("(not set)"))
    console.print()


def render_alarm_status(console: Console, payload: dict[str, Any]) -> None:
    print_section(console, "Alarm Status")
    print_kv(console, "Status", colorize_state(payload["alarm_status"]))
    print_kv(console, "Enabled", colorize_state("true" if payload["enabled"] else "false"))
    print_kv(console, "Honk", "true" if payload["honk"] else "false")
    print_kv(console, "Duration", f"{escape(payload['duration'])} seconds")
    console.print()


def render_settings(console: Console, payload: dict[str, Any]) -> None:
    print_section(console, "Settings")
    for key, value in payload["settings"].items():
        print_kv(console, key, escape(value) if value is not None else dim("(not set)"))
    if payload["unknown"]:
        console.print()
        print_section(console, "Unknown Settings")
        for key, value in payload["unknown"].items():
            print_kv(console, key, escape(value))
    console.print()


def render_event(console: Console, event: FaultEvent) -> None:
    stamp = (
        time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(event.timestamp / 1000))
        if event.timestamp
        else "N/A"
    )
    severity = styled(event.severity, "red" if event.severity == "ERROR" else "yellow")
    console.print(
        f"{dim(stamp)} {severity} "
        f"\\[{styled(event.group, 'yellow')}:{styled(event.code, 'yellow')}] "
        f"{escape(event.description)}"
    )


def watch_json(message: Notification, *, now: float | None = None) -> dict[str, Any]:
    """JSON record for one watched message; JSON payloads are decoded."""
    try:
        payload: Any = json.loads(message.payload)
    except ValueError:
        payload = message.payload
    return {
        "timestamp": int(time.time() if now is None else now),
        "channel": message.channel,
        "payload": payload,
    }


def render_watch(console: Console, message: Notification, fmt: str) -> None:
    if fmt == "json":
        print_json(console, watch_json(message), indent=None)
    elif fmt == "raw":
        console.out(message.payload, highlight=False)
    else:
        now = time.time()
        stamp = time.strftime("%H:%M:%S", time.localtime(now)) + f".{int(now * 1000) % 1000:03d}"
        console.print(f"\\[{dim(stamp)}] \\[{styled(message.channel, 'blue')}] {escape(message.payload)}")


# ── gps ─────────────────────────────────────────────────────────────

_CARDINALS = ("N", "NNE", "NE", "ENE", "E", "ESE", "SE", "SSE", "S", "SSW", "SW", "WSW", "W", "WNW", "NW", "NNW")


def cardinal(degrees: float) -> str:
    """Nearest of the 16 compass points."""
    return _CARDINALS[int((degrees % 360 + 11.25) / 22.5) % 16]


def gps_fix(fix_type: str) -> str:
    if fix_type == "3d":
        return styled("3D Fix", "green")
    if fix_type == "2d":
        return styled("2D Fix", "yellow")
    if fix_type in ("", "none"):
        return styled("No Fix", "red")
    return escape(fix_type)


def gps_accuracy(meters: float) -> str:
    if meters < 10:
        style = "green"
    elif meters < 50:
        style = "yellow"
    else:
        style = "red"
    return styled(f"{meters:.1f} m", style)


def gps_quality(quality: float) -> str:
    """Lower is better."""
    if quality < 0.01:
        style = "green"
    elif quality < 0.1:
        style = "yellow"
    else:
        style = "red"
    return styled(f"{quality:.3f}", style)


def _yes_no(value: bool, off_style: str = "red") -> str:
    return styled("Yes", "green") if value else styled("No", off_style)


def _clock(raw: str, pattern: str) -> str | None:
    moment = parse_timestamp(raw)
    return moment.strftime(pattern) if moment else None


def render_gps_status(console: Console, payload: dict[str, Any]) -> None:
    if payload["status"] == "warning":
        console.print(styled(payload["error"], "yellow"))
        return
    raw = payload["raw"]
    print_section(console, "GPS Status")
    print_kv(console, "Connected", _yes_no(payload["connected"]))
    print_kv(console, "Active", _yes_no(payload["active"], "yellow"))
    print_kv(console, "State", colorize_state(payload["state"]))
    print_kv(console, "Fix Type", gps_fix(payload["fix_type"]))
    if "position" in payload:
        position = payload["position"]
        accuracy = payload["accuracy"]
        print_subsection(console, "Position")
        print_kv(console, "Latitude", f"{escape(raw.get('latitude', ''))}°")
        print_kv(console, "Longitude", f"{escape(raw.get('longitude', ''))}°")
        print_kv(console, "Altitude", f"{escape(raw.get('altitude', ''))} m")
        if "speed" in raw:
            print_kv(console, "Speed", f"{position['speed']:.1f} km/h")
        if "course" in raw:
            print_kv(console, "Course", f"{position['course']:.1f}° ({cardinal(position['course'])})")

        print_subsection(console, "Accuracy")
        if "eph" in raw:
            print_kv(console, "Horizontal Error", gps_accuracy(accuracy["eph"]))
        if "quality" in raw:
            print_kv(console, "Quality", gps_quality(accuracy["quality"]))
        for name in ("hdop", "pdop", "vdop"):
            if name in raw:
                print_kv(console, name.upper(), escape(raw[name]))

        print_subsection(console, "Time")
        for key, label in (("timestamp", "GPS Time"), ("updated", "Last Update")):
            if key in raw:
                shown = _clock(raw[key], "%Y-%m-%d %H:%M:%S UTC")
                print_kv(console, label, escape(shown or raw[key]))
    console.print()


def render_gps_line(console: Console, raw: dict[str, str], *, compact: bool = False) -> None:
    """One ``gps watch`` line for a snapshot of the ``gps`` hash."""
    course = to_float(raw.get("course")) if raw.get("course") else None
    eph = gps_accuracy(to_float(raw["eph"])) if raw.get("eph") else "N/A"
    coords = f"{escape(raw.get('latitude', ''))},{escape(raw.get('longitude', ''))}"
    speed = f"{to_float(raw.get('speed')):.1f}"
    altitude = to_float(raw["altitude"]) if raw.get("altitude") else None

    if compact:
        stamp = _clock(raw.get("updated", ""), "%H:%M:%S") or "N/A"
        heading = f"{course:.0f}° {cardinal(course)}" if course is not None else "---"
        height = f"{altitude:.0f}m" if altitude is not None else "N/A"
        console.print(f"{dim(stamp)} | {coords} | {height} | {speed} km/h | {heading} | {eph}")
        return

    stamp = time.strftime("%H:%M:%S")
    heading = f"{course:.1f}° ({cardinal(course)})" if course is not None else "---"
    height = f"{altitude:.1f} m" if altitude is not None else "N/A"
    gps_time = _clock(raw.get("timestamp", ""), "%H:%M:%S") or "N/A"
    state = raw.get("state", "")
    fix_type = raw.get("fix", "")
    prefix = ""
    if fix_type in ("", "none", "unknown") or state in ("error", "no-fix"):
        prefix = colorize_state(state) + " "
    dop = "/".join(escape(raw.get(name, "")) for name in ("hdop", "pdop", "vdop"))
    console.print(
        f"\\[{dim(stamp)}] {prefix}{gps_fix(fix_type)} | {coords} | ▲ {height} | {speed} km/h | "
        f"{heading} | Acc: {eph} | Q: {escape(raw.get('quality', ''))} | DOP: {dop} | T: {dim(gps_time)}"
    )


# ── saved locations ─────────────────────────────────────────────────


def _ago(count: int, unit: str) -> str:
    return f"{count} {unit} ago" if count == 1 else f"{count} {unit}s ago"


def relative_time(raw: str, *, now: datetime | None = None) -> str:
    """``just now``, ``5 minutes ago`` and so on for a week, then the date."""
    moment = parse_timestamp(raw)
    if moment is None:
        return "never"
    seconds = ((now or datetime.now(timezone.utc)) - moment).total_seconds()
    if seconds < 60:
        return "just now"
    if seconds < 3600:
        return _ago(int(seconds // 60), "minute")
    if seconds < 86400:
        return _ago(int(seconds // 3600), "hour")
    if seconds < 7 * 86400:
        return _ago(int(seconds // 86400), "day")
    return moment.strftime("%Y-%m-%d")



def render_locations(console: Console, payload: dict[str, Any]) -> None:
    if not payload["locations"]:
        console.print(dim("No saved locations"))
        return
    print_section(console, "Saved Locations")
    console.print()
    for location in payload["locations"]:
        coords = f"({location['latitude']:.6f}, {location['longitude']:.6f})"
        console.print(
            f"\\[{styled(location['id'], 'cyan')}] {styled(location['label'], 'green')} {dim(coords)}"
        )
        console.print(f"    Last used: {relative_time(location['last_used_at'])}")
        if location["created_at"]:
            console.print(f"    Created: {location['created_at'][:10]}")
        console.print()


def render_location(console: Console, payload: dict[str, Any]) -> None:
    if payload["status"] == "error":
        console.print(styled(payload["error"], "red"))
        return
    print_section(console, f"Location {payload['id']}")
    console.print()
    print_kv(console, "Label", escape(payload["label"]))
    print_kv(console, "Latitude", f"{payload['latitude']:.6f}")
    print_kv(console, "Longitude", f"{payload['longitude']:.6f}")
    print_kv(console, "Coordinates", f"{payload['latitude']:.6f}, {payload['longitude']:.6f}")
    created = _clock(payload["created_at"], "%Y-%m-%d %H:%M:%S")
    print_kv(console, "Created", escape(created) if created else dim("N/A"))
    print_kv(console, "Last used", relative_time(payload["last_used_at"]))
    console.print()


# ── config ──────────────────────────────────────────────────────────


def render_config(console: Console, payload: dict[str, Any]) -> None:
    print_section(console, "Configuration")
    for key, value in payload["config"].items():
        if isinstance(value, dict):
            print_subsection(console, key)
            for name, item in value.items():
                print_kv(console, f"  {name}", escape(str(item)))
        else:
            print_kv(console, key, escape(str(value)))
    print_subsection(console, "Sources")
    for source in payload["sources"]:
        console.print(f"  {dim(source['source'])} {escape(source['path'])}")
    console.print()
