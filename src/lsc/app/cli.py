"""Command-line interface for LibreScoot control and diagnostics.

Nearly every command talks to the on-board Redis instance. State-changing commands
push onto a service's command queue and, unless ``--no-block`` is given,
wait for the owning service to confirm the change through pub/sub.
"""

from __future__ import annotations

import argparse
import signal
import sys
import threading
from collections.abc import Callable
from typing import Any

from lsc import __version__
from lsc.app import format as fmt
from lsc.app.arg_utils import compile_filter, parse_duration_to_seconds
from lsc.app.context import AppContext
from lsc.config.logging import configure_logging, logger
from lsc.config.settings import get_config, get_config_sources, normalize_redis_addr
from lsc.control import actions, locations, readers
from lsc.store.base import StoreError
from lsc.store.client import StoreClient

_GLOBAL_SWITCHES = ("--json", "--no-color")
_ERROR_STATUSES = {"error"}


def _emit_payload(
    ctx: AppContext,
    payload: dict[str, Any],
    render: Callable[[Any, dict[str, Any]], None],
) -> int:
    """Print ``payload`` as JSON or through ``render`` and return the exit code."""
    if ctx.as_json:
        fmt.print_json(ctx.console, payload)
    else:
        render(ctx.console, payload)
    return 1 if payload.get("status") in _ERROR_STATUSES else 0


def _emit_result(ctx: AppContext, payload: dict[str, Any], messages: dict[str, str]) -> int:
    """Print a write-command payload; text mode picks a message by status."""
    if ctx.as_json:
        fmt.print_json(ctx.console, payload)
    else:
        status = str(payload.get("status", ""))
        message = messages.get(status) or status.capitalize()
        target = ctx.err_console if status in _ERROR_STATUSES | {"warning", "timeout"} else ctx.console
        fmt.render_result(target, payload, message.format_map(payload))
    return 1 if payload.get("status") in _ERROR_STATUSES else 0


def _report_error(ctx: AppContext, command: str, message: str) -> None:
    if ctx.as_json:
        fmt.print_json(ctx.console, {"command": command, "status": "error", "error": message})
        return
    ctx.err_console.print(fmt.styled(message, "red"))


def _progress(ctx: AppContext, message: str) -> None:
    if not ctx.as_json:
        ctx.console.print(message)


def _hoist_global_flags(raw: list[str]) -> list[str]:
    """Allow global flags before or after subcommands by normalizing argv order."""
    hoisted: list[str] = []
    rest: list[str] = []
    items = iter(raw)
    for item in items:
        if item in _GLOBAL_SWITCHES:
            hoisted.append(item)
        elif item == "--redis-addr":
            value = next(items, None)
            if value is None:
                rest.append(item)
            else:
                hoisted.extend([item, value])
        elif item.startswith("--redis-addr="):
            hoisted.append(item)
        else:
            rest.append(item)
    return hoisted + rest


# ── vehicle ─────────────────────────────────────────────────────────

_VEHICLE_COMMANDS: dict[str, tuple[Callable[..., dict[str, Any]], str, str, dict[str, str]]] = {
    "lock": (
        actions.lock,
        "lock",
        "Locking scooter...",
        {
            "success": "Scooter locked successfully",
            "sent": "Lock command sent",
            "timeout": "Lock command sent but state confirmation timed out",
        },
    ),
    "unlock": (
        actions.unlock,
        "unlock",
        "Unlocking scooter...",
        {
            "success": "Scooter unlocked successfully (state: {state})",
            "sent": "Unlock command sent",
            "timeout": "Unlock command sent but state confirmation timed out",
        },
    ),
    "hibernate": (
        actions.hibernate,
        "hibernate",
        "Requesting hibernation...",
        {
            "success": "Hibernation requested successfully",
            "sent": "Hibernate command sent",
            "timeout": "Hibernate command sent but state confirmation timed out",
        },
    ),
    "open": (
        actions.open_seatbox,
        "seatbox",
        "Opening seatbox...",
        {
            "success": "Seatbox opened successfully",
            "sent": "Seatbox open command sent",
            "timeout": "Seatbox command sent but lock confirmation timed out",
        },
    ),
}


def _cmd_vehicle(ctx: AppContext, args: argparse.Namespace) -> int:
    """Handle ``vehicle lock|unlock|hibernate|open`` and their shortcuts."""
    run, timeout_name, progress, messages = _VEHICLE_COMMANDS[args.vehicle_action]
    _progress(ctx, progress)
    payload = run(
        ctx.store,
        timeout=getattr(ctx.config.timeouts, timeout_name),
        block=not args.no_block,
        cancel=ctx.cancel,
    )
    return _emit_result(ctx, payload, {**messages, "cancelled": "Cancelled"})


# ── alarm ───────────────────────────────────────────────────────────


def _cmd_alarm_status(ctx: AppContext, args: argparse.Namespace) -> int:
    return _emit_payload(ctx, readers.read_alarm_status(ctx.store), fmt.render_alarm_status)


def _cmd_alarm_arm(ctx: AppContext, args: argparse.Namespace) -> int:
    _progress(ctx, "Arming alarm...")
    payload = actions.arm_alarm(
        ctx.store, timeout=ctx.config.timeouts.alarm_arm, block=not args.no_block, cancel=ctx.cancel
    )
    messages = {
        "success": "Alarm {alarm_status}",
        "enabled": "Alarm enabled",
        "warning": "Alarm enabled but publish failed",
        "cancelled": "Cancelled while waiting for the alarm to arm",
    }
    if "message" in payload and payload["status"] == "enabled":
        messages["enabled"] = "Alarm enabled (will arm when vehicle enters stand-by)"
    return _emit_result(ctx, payload, messages)


def _cmd_alarm_disarm(ctx: AppContext, args: argparse.Namespace) -> int:
    _progress(ctx, "Disarming alarm...")
    payload = actions.disarm_alarm(
        ctx.store, timeout=ctx.config.timeouts.alarm_disarm, block=not args.no_block, cancel=ctx.cancel
    )
    messages = {
        "success": "Alarm disarmed",
        "disabled": "Alarm disabled",
        "warning": "Alarm disabled but publish failed",
        "cancelled": "Cancelled while waiting for the alarm to disarm",
    }
    return _emit_result(ctx, payload, messages)


def _cmd_alarm_trigger(ctx: AppContext, args: argparse.Namespace) -> int:
    payload = actions.trigger_alarm(ctx.store, args.seconds)
    return _emit_result(ctx, payload, {"success": "Alarm triggered for {duration} seconds"})


# ── led ─────────────────────────────────────────────────────────────


def _cmd_led_cue(ctx: AppContext, args: argparse.Namespace) -> int:
    payload = actions.led_cue(ctx.store, args.cue)
    return _emit_result(ctx, payload, {"success": "✓ LED cue {index} triggered"})


def _cmd_led_fade(ctx: AppContext, args: argparse.Namespace) -> int:
    payload = actions.led_fade(ctx.store, args.channel, args.fade)
    return _emit_result(
        ctx, payload, {"success": "✓ LED fade animation {index} triggered on channel {channel}"}
    )


# ── settings ────────────────────────────────────────────────────────


def _cmd_settings_list(ctx: AppContext, args: argparse.Namespace) -> int:
    return _emit_payload(ctx, readers.read_settings(ctx.store), fmt.render_settings)


def _render_setting_value(console: Any, payload: dict[str, Any]) -> None:
    value = payload["value"]
    if value:
        console.out(value, highlight=False)
    else:
        console.print(fmt.dim("(not set)"))


def _cmd_settings_get(ctx: AppContext, args: argparse.Namespace) -> int:
    return _emit_payload(ctx, readers.read_setting(ctx.store, args.key), _render_setting_value)


def _cmd_settings_set(ctx: AppContext, args: argparse.Namespace) -> int:
    payload = actions.set_setting(ctx.store, args.key, args.value)
    return _emit_result(
        ctx,
        payload,
        {"success": "Setting '{key}' = '{value}'", "warning": "Setting updated but publish failed"},
    )


# ── status / watch ──────────────────────────────────────────────────


def _cmd_status(ctx: AppContext, args: argparse.Namespace) -> int:
    return _emit_payload(ctx, readers.read_status(ctx.store), fmt.render_status)


def _cmd_watch(ctx: AppContext, args: argparse.Namespace) -> int:
    """Stream pub/sub messages until Ctrl+C or SIGTERM."""
    pattern = compile_filter(args.filter)
    output = args.format or ("json" if ctx.as_json else "pretty")
    if output == "pretty":
        ctx.console.print(fmt.styled(f"Watching channels: {', '.join(args.channels)}", "blue"))
        ctx.console.print(fmt.dim("Press Ctrl+C to stop"))
    try:
        for message in readers.iter_notifications(
            ctx.store, args.channels, pattern=pattern, cancel=ctx.cancel
        ):
            fmt.render_watch(ctx.console, message, output)
    except KeyboardInterrupt:
        pass
    if output == "pretty":
        ctx.console.print(fmt.dim("Stopping..."))
    return 0


# ── power ───────────────────────────────────────────────────────────


def _cmd_power_status(ctx: AppContext, args: argparse.Namespace) -> int:
    return _emit_payload(ctx, readers.read_power_status(ctx.store), fmt.render_power_status)


def _cmd_power(ctx: AppContext, args: argparse.Namespace) -> int:
    command = args.power_action
    if command == "hibernate" and args.manual:
        command = "hibernate-manual"
    elif command == "hibernate" and args.timer:
        command = "hibernate-timer"
    payload = actions.power_command(ctx.store, command)
    message = "Reboot command sent" if command == "reboot" else "Power state set to: {command}"
    code = _emit_result(ctx, payload, {"success": message})
    if command.startswith("hibernate") and not ctx.as_json:
        ctx.console.print(fmt.styled("Warning: System will power off", "yellow"))
    return code


# ── ota ─────────────────────────────────────────────────────────────


def _cmd_ota_status(ctx: AppContext, args: argparse.Namespace) -> int:
    return _emit_payload(ctx, readers.read_ota_status(ctx.store), fmt.render_ota_status)


def _cmd_ota_check(ctx: AppContext, args: argparse.Namespace) -> int:
    code = _emit_result(ctx, actions.check_updates(ctx.store), {"success": "Update check triggered"})
    if not ctx.as_json:
        ctx.console.print(fmt.dim("Use 'lsc ota status' to monitor update progress"))
    return code


def _cmd_ota_install(ctx: AppContext, args: argparse.Namespace) -> int:
    _progress(ctx, f"Installing update from {args.source}...")
    payload = actions.install_update(args.source)
    return _emit_result(
        ctx,
        payload,
        {
            "success": "Update installed successfully. A reboot may be required to complete the update",
            "error": "Update failed",
        },
    )


# ── diag ────────────────────────────────────────────────────────────


def _cmd_faults(ctx: AppContext, args: argparse.Namespace) -> int:
    return _emit_payload(ctx, readers.read_faults(ctx.store), fmt.render_faults)


def _cmd_battery(ctx: AppContext, args: argparse.Namespace) -> int:
    payload = readers.read_batteries(ctx.store, args.ids)

    def render(console: Any, data: dict[str, Any]) -> None:
        for battery in data["batteries"]:
            fmt.render_battery(console, battery)

    return _emit_payload(ctx, payload, render)


def _cmd_version(ctx: AppContext, args: argparse.Namespace) -> int:
    return _emit_payload(ctx, readers.read_versions(ctx.store), fmt.render_versions)


def _emit_event(ctx: AppContext, event: Any) -> None:
    if ctx.as_json:
        fmt.print_json(ctx.console, event.to_payload(), indent=None)
    else:
        fmt.render_event(ctx.console, event)


def _cmd_events(ctx: AppContext, args: argparse.Namespace) -> int:
    """Show or follow the fault event stream."""
    pattern = compile_filter(args.filter)
    if args.follow:
        try:
            for event in readers.follow_events(ctx.store, pattern, cancel=ctx.cancel):
                _emit_event(ctx, event)
        except KeyboardInterrupt:
            pass
        return 0

    query = readers.EventQuery(
        since_seconds=parse_duration_to_seconds(args.since) if args.since else None,
        until_seconds=parse_duration_to_seconds(args.until) if args.until else None,
        lines=args.lines,
        reverse=args.reverse,
        pattern=pattern,
    )
    events = readers.read_events(ctx.store, query)
    if ctx.as_json:
        fmt.print_json(
            ctx.console,
            {
                "command": "events",
                "status": "success",
                "count": len(events),
                "events": [event.to_payload() for event in events],
            },
        )
        return 0
    if not events:
        ctx.console.print(fmt.dim("No events found"))
    for event in events:
        fmt.render_event(ctx.console, event)
    return 0


def _cmd_horn(ctx: AppContext, args: argparse.Namespace) -> int:
    return _emit_result(ctx, actions.horn(ctx.store, args.state), {"success": "✓ Horn: {state}"})


def _cmd_blinkers(ctx: AppContext, args: argparse.Namespace) -> int:
    payload = actions.blinkers(ctx.store, args.state)
    return _emit_result(ctx, payload, {"success": "✓ Blinkers set to: {state}"})


def _cmd_handlebar(ctx: AppContext, args: argparse.Namespace) -> int:
    payload = actions.handlebar(ctx.store, args.action)
    return _emit_result(ctx, payload, {"success": "✓ Handlebar {action} command sent"})


def _cmd_engine(ctx: AppContext, args: argparse.Namespace) -> int:
    payload = actions.engine_power(ctx.store, args.action)
    return _emit_result(ctx, payload, {"success": "✓ Engine power: {action}"})


def _render_dashboard_status(console: Any, payload: dict[str, Any]) -> None:
    console.print("Dashboard Status:")
    console.print("─" * 40)
    ready = fmt.styled("yes", "green") if payload["ready"] else fmt.styled("no", "yellow")
    console.print(f"Ready: {ready}")


def _cmd_dashboard(ctx: AppContext, args: argparse.Namespace) -> int:
    """Handle ``dashboard on|off|status|on-wait|off-wait``."""
    action = args.action
    if action == "status":
        return _emit_payload(ctx, readers.read_dashboard_status(ctx.store), _render_dashboard_status)
    if action in ("on-wait", "off-wait"):
        power = action.removesuffix("-wait")
        timeout = args.timeout if args.timeout is not None else ctx.config.timeouts.dashboard
        _progress(ctx, f"Turning {power} dashboard, waiting up to {timeout:g}s...")
        payload = actions.dashboard_power_wait(ctx.store, power, timeout=timeout, cancel=ctx.cancel)
        done = "Dashboard is ready!" if power == "on" else "Dashboard is off!"
        return _emit_result(ctx, payload, {"success": done, "cancelled": "Cancelled"})
    payload = actions.dashboard_power(ctx.store, action)
    return _emit_result(ctx, payload, {"success": "✓ Dashboard power: {action}"})


# ── gps ─────────────────────────────────────────────────────────────


def _cmd_gps_status(ctx: AppContext, args: argparse.Namespace) -> int:
    return _emit_payload(ctx, readers.read_gps(ctx.store), fmt.render_gps_status)


def _cmd_gps_watch(ctx: AppContext, args: argparse.Namespace) -> int:
    """Poll the gps hash until Ctrl+C or SIGTERM."""
    if args.interval <= 0:
        raise ValueError("interval must be greater than 0")
    if not ctx.as_json:
        ctx.console.print(fmt.styled("Watching GPS updates... (Ctrl+C to stop)", "green"))
        ctx.console.print()
    try:
        for raw in readers.poll_gps(ctx.store, cancel=ctx.cancel, interval=args.interval):
            if ctx.as_json:
                fmt.print_json(ctx.console, readers.gps_record(raw), indent=None)
            else:
                fmt.render_gps_line(ctx.console, raw, compact=args.compact)
    except KeyboardInterrupt:
        pass
    if not ctx.as_json:
        ctx.console.print(fmt.dim("Stopping GPS watch..."))
    return 0


# ── locations ───────────────────────────────────────────────────────


def _cmd_locations_list(ctx: AppContext, args: argparse.Namespace) -> int:
    return _emit_payload(ctx, locations.list_locations(ctx.store), fmt.render_locations)


def _cmd_locations_show(ctx: AppContext, args: argparse.Namespace) -> int:
    return _emit_payload(ctx, locations.show_location(ctx.store, args.id), fmt.render_location)


def _location_result(ctx: AppContext, payload: dict[str, Any], success: str) -> int:
    return _emit_result(ctx, payload, {"success": success, "warning": "{message}"})


def _cmd_locations_add(ctx: AppContext, args: argparse.Namespace) -> int:
    payload = locations.add_location(ctx.store, args.latitude, args.longitude, args.label)
    return _location_result(ctx, payload, "✓ Location '{label}' saved with ID {id}")


def _cmd_locations_edit(ctx: AppContext, args: argparse.Namespace) -> int:
    payload = locations.edit_location(ctx.store, args.id, args.changes)
    return _location_result(ctx, payload, "✓ Location {id} updated")


def _cmd_locations_delete(ctx: AppContext, args: argparse.Namespace) -> int:
    payload = locations.delete_location(ctx.store, args.id)
    return _location_result(ctx, payload, "✓ Deleted location {id} ({label})")


def _cmd_locations_touch(ctx: AppContext, args: argparse.Namespace) -> int:
    payload = locations.touch_location(ctx.store, args.id)
    return _location_result(ctx, payload, "✓ Updated last-used timestamp for location {id} ({label})")


# ── config ──────────────────────────────────────────────────────────


def _cmd_config(ctx: AppContext, args: argparse.Namespace) -> int:
    payload = {
        "command": "config",
        "status": "success",
        "config": ctx.config.public_dict(),
        "sources": get_config_sources(),
    }
    return _emit_payload(ctx, payload, fmt.render_config)


# ── parser ──────────────────────────────────────────────────────────


def _add_no_block(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--no-block",
        action="store_true",
        help="Send the command without waiting for the confirming state change.",
    )


def _add_vehicle_command(sub: Any, name: str, help_text: str, formatter: Any) -> None:
    parser = sub.add_parser(name, formatter_class=formatter, help=help_text, description=help_text)
    _add_no_block(parser)
    parser.set_defaults(func=_cmd_vehicle, vehicle_action=name, cmd_name=name)


def _add_events_parser(sub: Any, name: str, formatter: Any) -> None:
    events = sub.add_parser(
        name,
        formatter_class=formatter,
        help="View the fault event stream",
        description=(
            "Display fault events from the events:faults stream.\n\n"
            "Durations accept s, m, h, d and w units (30m, 24h, 7d, 1w).\n\n"
            "Examples:\n"
            "  lsc events --since 1h                 # last hour of events\n"
            "  lsc events --since 24h --until 1h     # between 24h and 1h ago\n"
            "  lsc events -n 10 -r                   # last 10 events, newest first\n"
            "  lsc events -f                         # follow in real time\n"
            "  lsc events --filter battery           # group/code/description regex"
        ),
    )
    events.add_argument("--since", help="Show events since this long ago (e.g. 1h, 7d).")
    events.add_argument("--until", help="Show events until this long ago.")
    events.add_argument(
        "-n", "--lines", type=int, default=50, help="Maximum number of events to show (default: 50)."
    )
    events.add_argument("-r", "--reverse", action="store_true", help="Show newest events first.")
    events.add_argument("-f", "--follow", action="store_true", help="Follow the stream (like tail -f).")
    events.add_argument("--filter", help="Regex matched against 'group code description'.")
    events.set_defaults(func=_cmd_events, cmd_name="events")


def _add_dashboard_parser(sub: Any, name: str, formatter: Any, aliases: list[str] | None = None) -> None:
    dashboard = sub.add_parser(
        name,
        aliases=aliases or [],
        formatter_class=formatter,
        help="Control dashboard power and readiness",
        description=(
            "Switch the dashboard computer (DBC) on or off, or inspect readiness.\n\n"
            "Examples:\n"
            "  lsc diag dashboard on\n"
            "  lsc diag dashboard status\n"
            "  lsc dbc on-wait -t 30      # power on and wait until ready"
        ),
    )
    dashboard.add_argument(
        "action", nargs="?", help="One of: on, off, status, on-wait, off-wait."
    )
    dashboard.add_argument(
        "-t",
        "--timeout",
        type=float,
        default=None,
        help="Seconds to wait for on-wait/off-wait (default: from config, 60).",
    )
    dashboard.set_defaults(func=_cmd_dashboard, cmd_name="dashboard", help_parser=dashboard)


def _add_engine_parser(sub: Any, name: str, formatter: Any) -> None:
    engine = sub.add_parser(name, formatter_class=formatter, help="Switch engine power on or off")
    engine.add_argument("action", help="on or off")
    engine.set_defaults(func=_cmd_engine, cmd_name="engine")


def _add_battery_parser(sub: Any, name: str, formatter: Any) -> None:
    battery = sub.add_parser(
        name, formatter_class=formatter, help="Show detailed battery information"
    )
    battery.add_argument("ids", nargs="*", help="Battery IDs (default: 0 1).")
    battery.set_defaults(func=_cmd_battery, cmd_name="battery")


def _add_version_parser(sub: Any, name: str, formatter: Any) -> None:
    version = sub.add_parser(name, formatter_class=formatter, help="Show firmware versions")
    version.set_defaults(func=_cmd_version, cmd_name="version")


def _add_faults_parser(sub: Any, name: str, formatter: Any) -> None:
    faults = sub.add_parser(name, formatter_class=formatter, help="Show active faults")
    faults.set_defaults(func=_cmd_faults, cmd_name="faults")


def build_parser() -> argparse.ArgumentParser:
    """Construct the canonical lsc command-line parser."""
    _F = argparse.RawDescriptionHelpFormatter  # noqa: N806
    parser = argparse.ArgumentParser(
        prog="lsc",
        formatter_class=_F,
        description="lsc -- LibreScoot control and diagnostics.\n"
        "Sends commands to on-board services through Redis and\n"
        "waits for them to confirm the resulting state change.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--json",
        action="store_true",
        help="Emit structured JSON instead of human-readable text.",
    )
    parser.add_argument(
        "--redis-addr",
        default=None,
        help="Redis address as host[:port] (default: from config, 192.168.7.1:6379).",
    )
    parser.add_argument("--no-color", action="store_true", help="Disable colored output.")
    sub = parser.add_subparsers(dest="command")

    # ── vehicle ──────────────────────────────────────────────────────
    vehicle = sub.add_parser(
        "vehicle",
        formatter_class=_F,
        help="Control vehicle state and seatbox",
        description=(
            "Lock, unlock or hibernate the scooter, or open the seatbox.\n"
            "Each command waits for the vehicle service to confirm unless\n"
            "--no-block is given.\n\n"
            "Examples:\n"
            "  lsc vehicle lock\n"
            "  lsc vehicle unlock --no-block\n"
            "  lsc vehicle open"
        ),
    )
    vehicle.set_defaults(help_parser=vehicle)
    vehicle_sub = vehicle.add_subparsers(dest="vehicle_action")
    _add_vehicle_command(vehicle_sub, "lock", "Lock the scooter and wait for stand-by", _F)
    _add_vehicle_command(vehicle_sub, "unlock", "Unlock the scooter and wait for parked/ready-to-drive", _F)
    _add_vehicle_command(vehicle_sub, "hibernate", "Lock and request hibernation", _F)
    _add_vehicle_command(vehicle_sub, "open", "Open the seatbox", _F)

    # ── shortcuts ────────────────────────────────────────────────────
    for name in ("lock", "unlock", "open"):
        _add_vehicle_command(sub, name, f"Shortcut for 'vehicle {name}'", _F)
    _add_dashboard_parser(sub, "dbc", _F)
    _add_engine_parser(sub, "engine", _F)
    _add_battery_parser(sub, "bat", _F)
    _add_version_parser(sub, "ver", _F)
    _add_faults_parser(sub, "faults", _F)
    _add_events_parser(sub, "events", _F)

    # ── alarm ────────────────────────────────────────────────────────
    alarm = sub.add_parser(
        "alarm",
        formatter_class=_F,
        help="Control the alarm system",
        description=(
            "Inspect, arm, disarm or trigger the motion alarm.\n\n"
            "Examples:\n"
            "  lsc alarm status\n"
            "  lsc alarm arm                 # arms once the vehicle is in stand-by\n"
            "  lsc alarm trigger 5"
        ),
    )
    alarm.set_defaults(help_parser=alarm)
    alarm_sub = alarm.add_subparsers(dest="alarm_action")
    alarm_status = alarm_sub.add_parser("status", formatter_class=_F, help="Show alarm status")
    alarm_status.set_defaults(func=_cmd_alarm_status, cmd_name="alarm-status")
    alarm_arm = alarm_sub.add_parser("arm", formatter_class=_F, help="Enable the alarm")
    _add_no_block(alarm_arm)
    alarm_arm.set_defaults(func=_cmd_alarm_arm, cmd_name="arm")
    alarm_disarm = alarm_sub.add_parser("disarm", formatter_class=_F, help="Disable the alarm")
    _add_no_block(alarm_disarm)
    alarm_disarm.set_defaults(func=_cmd_alarm_disarm, cmd_name="disarm")
    alarm_trigger = alarm_sub.add_parser(
        "trigger", formatter_class=_F, help="Sound the alarm manually"
    )
    alarm_trigger.add_argument(
        "seconds",
        nargs="?",
        type=int,
        default=None,
        help="Duration in seconds (default: settings alarm.duration, or 10).",
    )
    alarm_trigger.set_defaults(func=_cmd_alarm_trigger, cmd_name="trigger")

    # ── led ──────────────────────────────────────────────────────────
    led = sub.add_parser(
        "led",
        formatter_class=_F,
        help="Trigger LED cues and fades",
        description=(
            "Trigger LED cue sequences or per-channel fade animations.\n"
            "Indices or aliases are accepted (case-insensitive, _ or -).\n\n"
            "Examples:\n"
            "  lsc led cue blink-both\n"
            "  lsc led fade headlight parking-smooth-on\n"
            "  lsc led fade 2 2"
        ),
    )
    led.set_defaults(help_parser=led)
    led_sub = led.add_subparsers(dest="led_action")
    led_cue = led_sub.add_parser("cue", formatter_class=_F, help="Trigger an LED cue")
    led_cue.add_argument("cue", help="Cue index or alias (e.g. 0, all-off, blink_left).")
    led_cue.set_defaults(func=_cmd_led_cue, cmd_name="led-cue")
    led_fade = led_sub.add_parser("fade", formatter_class=_F, help="Trigger an LED fade")
    led_fade.add_argument("channel", help="Channel index or alias (e.g. 0, headlight, plates).")
    led_fade.add_argument("fade", help="Fade index or alias (e.g. 1, smooth-off).")
    led_fade.set_defaults(func=_cmd_led_fade, cmd_name="led-fade")

    # ── settings ─────────────────────────────────────────────────────
    settings = sub.add_parser(
        "settings",
        formatter_class=_F,
        help="View and modify scooter settings",
        description=(
            "Read and write the settings hash. 'set' publishes the key so\n"
            "owning services pick up the change.\n\n"
            "Examples:\n"
            "  lsc settings\n"
            "  lsc settings get alarm.duration\n"
            "  lsc settings set alarm.honk true"
        ),
    )
    settings.set_defaults(func=_cmd_settings_list, cmd_name="settings-list")
    settings_sub = settings.add_subparsers(dest="settings_action")
    settings_list = settings_sub.add_parser("list", formatter_class=_F, help="List known settings")
    settings_list.set_defaults(func=_cmd_settings_list, cmd_name="settings-list")
    settings_get = settings_sub.add_parser("get", formatter_class=_F, help="Get one setting")
    settings_get.add_argument("key", help="Setting key (e.g. alarm.enabled).")
    settings_get.set_defaults(func=_cmd_settings_get, cmd_name="settings-get")
    settings_set = settings_sub.add_parser("set", formatter_class=_F, help="Set and publish one setting")
    settings_set.add_argument("key", help="Setting key.")
    settings_set.add_argument("value", help="New value.")
    settings_set.set_defaults(func=_cmd_settings_set, cmd_name="settings-set")

    # ── status ───────────────────────────────────────────────────────
    status = sub.add_parser(
        "status",
        formatter_class=_F,
        help="Show overall scooter status",
        description="Vehicle, motor and main battery overview.",
    )
    status.set_defaults(func=_cmd_status, cmd_name="status")

    # ── watch ────────────────────────────────────────────────────────
    watch = sub.add_parser(
        "watch",
        formatter_class=_F,
        help="Monitor Redis pub/sub channels",
        description=(
            "Print messages from one or more pub/sub channels until Ctrl+C.\n\n"
            "Examples:\n"
            "  lsc watch vehicle\n"
            "  lsc watch vehicle alarm battery:0\n"
            "  lsc watch bmx:sensors --format json\n"
            '  lsc watch vehicle --filter "state|lock"'
        ),
    )
    watch.add_argument("channels", nargs="+", help="Channels to subscribe to.")
    watch.add_argument(
        "--format",
        choices=("pretty", "json", "raw"),
        default=None,
        help="Output format (default: pretty, or json with --json).",
    )
    watch.add_argument("--filter", help="Regex matched against 'channel payload'.")
    watch.set_defaults(func=_cmd_watch, cmd_name="watch")

    # ── power ────────────────────────────────────────────────────────
    power = sub.add_parser(
        "power",
        formatter_class=_F,
        help="Power management",
        description=(
            "Inspect the power manager or request a power state.\n\n"
            "Examples:\n"
            "  lsc power status\n"
            "  lsc power hibernate --manual\n"
            "  lsc power reboot"
        ),
    )
    power.set_defaults(help_parser=power)
    power_sub = power.add_subparsers(dest="power_action")
    power_status = power_sub.add_parser("status", formatter_class=_F, help="Show power status")
    power_status.set_defaults(func=_cmd_power_status, cmd_name="power-status")
    for name, help_text in (
        ("run", "Set power state to run"),
        ("suspend", "Set power state to suspend"),
        ("reboot", "Reboot the system"),
    ):
        power_cmd = power_sub.add_parser(name, formatter_class=_F, help=help_text)
        power_cmd.set_defaults(func=_cmd_power, cmd_name=name)
    power_hibernate = power_sub.add_parser(
        "hibernate", formatter_class=_F, help="Set power state to hibernate"
    )
    mode = power_hibernate.add_mutually_exclusive_group()
    mode.add_argument("--manual", action="store_true", help="Use hibernate-manual mode.")
    mode.add_argument("--timer", action="store_true", help="Use hibernate-timer mode.")
    power_hibernate.set_defaults(func=_cmd_power, cmd_name="hibernate")

    # ── ota ──────────────────────────────────────────────────────────
    ota = sub.add_parser(
        "ota",
        formatter_class=_F,
        help="OTA update management",
        description=(
            "Inspect update state, trigger a check, or install an update.\n\n"
            "Examples:\n"
            "  lsc ota status\n"
            "  lsc ota check\n"
            "  lsc ota install /data/update.mender\n"
            "  lsc ota install https://example.org/update.mender"
        ),
    )
    ota.set_defaults(help_parser=ota)
    ota_sub = ota.add_subparsers(dest="ota_action")
    ota_status = ota_sub.add_parser("status", formatter_class=_F, help="Show OTA update status")
    ota_status.set_defaults(func=_cmd_ota_status, cmd_name="ota-status")
    ota_check = ota_sub.add_parser("check", formatter_class=_F, help="Trigger an update check")
    ota_check.set_defaults(func=_cmd_ota_check, cmd_name="ota-check")
    ota_install = ota_sub.add_parser(
        "install", formatter_class=_F, help="Install a .mender file or URL"
    )
    ota_install.add_argument("source", help="Local .mender path or http(s) URL.")
    ota_install.set_defaults(func=_cmd_ota_install, cmd_name="ota-install", needs_store=False)

    # ── diag ─────────────────────────────────────────────────────────
    diag = sub.add_parser(
        "diag",
        formatter_class=_F,
        help="Diagnostics and hardware control",
        description=(
            "Read faults, events, batteries and versions, or drive hardware\n"
            "outputs directly.\n\n"
            "Examples:\n"
            "  lsc diag faults\n"
            "  lsc diag battery 0\n"
            "  lsc diag blinkers both\n"
            "  lsc diag dashboard on-wait -t 30"
        ),
    )
    diag.set_defaults(help_parser=diag)
    diag_sub = diag.add_subparsers(dest="diag_action")
    _add_faults_parser(diag_sub, "faults", _F)
    _add_events_parser(diag_sub, "events", _F)
    _add_battery_parser(diag_sub, "battery", _F)
    _add_version_parser(diag_sub, "version", _F)
    horn = diag_sub.add_parser("horn", formatter_class=_F, help="Switch the horn on or off")
    horn.add_argument("state", help="on or off")
    horn.set_defaults(func=_cmd_horn, cmd_name="horn")
    blinkers = diag_sub.add_parser("blinkers", formatter_class=_F, help="Set the blinkers")
    blinkers.add_argument("state", help="off, left, right or both")
    blinkers.set_defaults(func=_cmd_blinkers, cmd_name="blinkers")
    handlebar = diag_sub.add_parser(
        "handlebar", formatter_class=_F, help="Lock or unlock the handlebar"
    )
    handlebar.add_argument("action", help="lock or unlock")
    handlebar.set_defaults(func=_cmd_handlebar, cmd_name="handlebar")
    _add_engine_parser(diag_sub, "engine", _F)
    _add_dashboard_parser(diag_sub, "dashboard", _F, aliases=["dash"])

    # ── gps ──────────────────────────────────────────────────────────
    gps = sub.add_parser(
        "gps",
        formatter_class=_F,
        help="GPS status and monitoring",
        description=(
            "Show the receiver's fix, position and accuracy, or poll it.\n\n"
            "Examples:\n"
            "  lsc gps status\n"
            "  lsc gps watch --compact\n"
            "  lsc gps watch --json"
        ),
    )
    gps.set_defaults(help_parser=gps)
    gps_sub = gps.add_subparsers(dest="gps_action")
    gps_status = gps_sub.add_parser("status", formatter_class=_F, help="Show GPS status")
    gps_status.set_defaults(func=_cmd_gps_status, cmd_name="gps-status")
    gps_watch = gps_sub.add_parser("watch", formatter_class=_F, help="Watch GPS updates in real time")
    gps_watch.add_argument("--compact", action="store_true", help="Use the compact one-line format.")
    gps_watch.add_argument(
        "--interval", type=float, default=1.0, help="Seconds between polls (default: 1)."
    )
    gps_watch.set_defaults(func=_cmd_gps_watch, cmd_name="gps-watch")

    # ── locations ────────────────────────────────────────────────────
    loc = sub.add_parser(
        "locations",
        aliases=["loc"],
        formatter_class=_F,
        help="Manage saved navigation locations",
        description=(
            "List and edit the navigation targets the dashboard offers.\n"
            "Every change is published on the settings channel.\n\n"
            "Examples:\n"
            "  lsc locations\n"
            "  lsc loc add 52.520008 13.404954 Brandenburg Gate\n"
            "  lsc loc edit 0 label Home lat 52.5\n"
            "  lsc loc delete 3"
        ),
    )
    loc.set_defaults(func=_cmd_locations_list, cmd_name="locations-list")
    loc_sub = loc.add_subparsers(dest="locations_action")
    loc_list = loc_sub.add_parser("list", formatter_class=_F, help="List saved locations")
    loc_list.set_defaults(func=_cmd_locations_list, cmd_name="locations-list")
    loc_show = loc_sub.add_parser("show", aliases=["get"], formatter_class=_F, help="Show one location")
    loc_show.add_argument("id", help="Location ID.")
    loc_show.set_defaults(func=_cmd_locations_show, cmd_name="locations-show")
    loc_add = loc_sub.add_parser("add", formatter_class=_F, help="Save a new location")
    loc_add.add_argument("latitude", help="Latitude in degrees (-90 to 90).")
    loc_add.add_argument("longitude", help="Longitude in degrees (-180 to 180).")
    loc_add.add_argument("label", nargs="+", help="Label; several words are joined with spaces.")
    loc_add.set_defaults(func=_cmd_locations_add, cmd_name="locations-add")
    loc_edit = loc_sub.add_parser(
        "edit",
        formatter_class=_F,
        help="Change label or coordinates",
        description="Fields: label, lat/latitude, lon/lng/longitude.\n\nExample:\n  lsc loc edit 0 label Home",
    )
    loc_edit.add_argument("id", help="Location ID.")
    loc_edit.add_argument("changes", nargs="+", help="Field and value pairs.")
    loc_edit.set_defaults(func=_cmd_locations_edit, cmd_name="locations-edit")
    loc_delete = loc_sub.add_parser(
        "delete", aliases=["rm", "remove"], formatter_class=_F, help="Delete a location"
    )
    loc_delete.add_argument("id", help="Location ID.")
    loc_delete.set_defaults(func=_cmd_locations_delete, cmd_name="locations-delete")
    loc_touch = loc_sub.add_parser("touch", formatter_class=_F, help="Mark a location as just used")
    loc_touch.add_argument("id", help="Location ID.")
    loc_touch.set_defaults(func=_cmd_locations_touch, cmd_name="locations-touch")

    # ── config ───────────────────────────────────────────────────────
    config = sub.add_parser(
        "config",
        formatter_class=_F,
        help="Show the effective configuration",
        description="Print merged settings and the files they were read from.",
    )
    config.set_defaults(func=_cmd_config, cmd_name="config", needs_store=False)

    return parser


# ── entrypoint ──────────────────────────────────────────────────────


def _connect(args: argparse.Namespace, ctx: AppContext) -> StoreClient:
    addr = normalize_redis_addr(args.redis_addr) if args.redis_addr else ctx.config.redis_addr
    store = StoreClient(addr, connect_timeout=ctx.config.connect_timeout_seconds)
    try:
        store.connect()
    except StoreError:
        store.close()
        raise
    return store


def _install_cancel_signal(cancel: threading.Event) -> Callable[[], None]:
    """Route SIGTERM to ``cancel``; return a callable restoring the old handler."""
    if threading.current_thread() is not threading.main_thread():
        return lambda: None
    previous = signal.signal(signal.SIGTERM, lambda signum, frame: cancel.set())
    return lambda: signal.signal(signal.SIGTERM, previous)


def main(argv: list[str] | None = None) -> int:
    """Entrypoint for CLI invocation with global flags and dispatch."""
    configure_logging()
    parser = build_parser()
    args = parser.parse_args(_hoist_global_flags(list(argv if argv is not None else sys.argv[1:])))

    if not getattr(args, "command", None):
        parser.print_help()
        return 0

    handler = getattr(args, "func", None)
    if handler is None:
        getattr(args, "help_parser", parser).print_help()
        return 0
    if handler is _cmd_dashboard and not args.action:
        args.help_parser.print_help()
        return 0

    config = get_config()
    color = config.color and not args.no_color
    ctx = AppContext(
        store=None,
        config=config,
        as_json=args.json,
        console=fmt.make_console(color=color),
        err_console=fmt.make_console(color=color, stderr=True),
    )
    command = getattr(args, "cmd_name", args.command)

    if getattr(args, "needs_store", True):
        try:
            ctx.store = _connect(args, ctx)
        except ValueError as exc:
            _report_error(ctx, command, str(exc))
            return 2
        except StoreError as exc:
            _report_error(ctx, command, f"Error connecting to Redis: {exc}")
            return 1

    restore_signal = _install_cancel_signal(ctx.cancel)
    try:
        return int(handler(ctx, args))
    except ValueError as exc:
        _report_error(ctx, command, str(exc))
        return 2
    except StoreError as exc:
        logger.debug("{} failed: {}", command, exc)
        _report_error(ctx, command, str(exc))
        return 1
    finally:
        restore_signal()
        ctx.close()


if __name__ == "__main__":
    raise SystemExit(main())
