"""Central config loading from layered TOML files.

Layers (low to high priority):
1. lsc/config/default.toml
2. ~/.lsc/config.toml
3. LSC_CONFIG env path (optional explicit override)
4. LSC_REDIS_ADDR env var for the Redis address only

The ``--redis-addr`` CLI flag wins over all of the above.
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

PACKAGE_DIR = Path(__file__).parent
DEFAULT_CONFIG_PATH = PACKAGE_DIR / "default.toml"
USER_CONFIG_PATH = Path.home() / ".lsc" / "config.toml"

DEFAULT_REDIS_ADDR = "192.168.7.1:6379"

_LAST_CONFIG_SOURCES: list[dict[str, str]] = []


@dataclass(frozen=True)
class ConfirmTimeouts:
    """Seconds each blocking command waits for its confirming state change."""

    lock: float
    unlock: float
    hibernate: float
    seatbox: float
    alarm_arm: float
    alarm_disarm: float
    dashboard: float


def load_toml_file(path: Path | None) -> dict[str, Any]:
    """Load TOML file into a dict; return empty dict on failures."""
    if not path or not path.exists():
        return {}
    try:
        with path.open("rb") as handle:
            payload = tomllib.load(handle)
    except (OSError, tomllib.TOMLDecodeError):
        return {}
    return payload if isinstance(payload, dict) else {}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep-merge dict values with override precedence."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def _to_non_empty_string(value: Any) -> str:
    """Convert value to stripped string, defaulting to empty string."""
    if value is None:
        return ""
    return str(value).strip()


def _to_float(value: Any, default: float, minimum: float, maximum: float) -> float:
    """Convert value to bounded float with fallback default."""
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        parsed = default
    return max(minimum, min(maximum, parsed))


def _section(payload: dict[str, Any], name: str) -> dict[str, Any]:
    """Return a TOML table by name, or an empty dict when absent or malformed."""
    value = payload.get(name, {})
    return value if isinstance(value, dict) else {}


def normalize_redis_addr(raw: str) -> str:
    """Return ``host:port``, appending the default Redis port when missing."""
    value = (raw or "").strip()
    if not value:
        return DEFAULT_REDIS_ADDR
    if value.startswith("redis://"):
        value = value[len("redis://") :]
    host, sep, port = value.rpartition(":")
    if not sep or not host:
        return f"{value}:6379"
    if not port.isdigit() or not 0 < int(port) <= 65535:
        raise ValueError(f"invalid Redis port in address '{raw}'")
    return value


def _load_layers() -> tuple[dict[str, Any], list[dict[str, str]]]:
    """Load and merge all configuration layers in precedence order."""
    merged: dict[str, Any] = {}
    sources: list[dict[str, str]] = []

    layers: list[tuple[str, Path]] = [
        ("package_default", DEFAULT_CONFIG_PATH),
        ("user", USER_CONFIG_PATH),
    ]

    explicit = os.getenv("LSC_CONFIG")
    if explicit:
        layers.append(("explicit", Path(explicit).expanduser()))

    for source_name, path in layers:
        payload = load_toml_file(path)
        if payload:
            merged = _deep_merge(merged, payload)
            sources.append({"source": source_name, "path": str(path)})

    return merged, sources


def get_config_sources() -> list[dict[str, str]]:
    """Return last-computed config source list."""
    return [dict(item) for item in _LAST_CONFIG_SOURCES]


@dataclass(frozen=True)
class Config:
    """Effective runtime configuration from TOML layers and environment."""

    redis_addr: str
    connect_timeout_seconds: float
    timeouts: ConfirmTimeouts
    color: bool

    def public_dict(self) -> dict[str, Any]:
        """Return serialized config for ``lsc config``."""
        return {
            "redis_addr": self.redis_addr,
            "connect_timeout_seconds": self.connect_timeout_seconds,
            "timeouts": {
                "lock": self.timeouts.lock,
                "unlock": self.timeouts.unlock,
                "hibernate": self.timeouts.hibernate,
                "seatbox": self.timeouts.seatbox,
                "alarm_arm": self.timeouts.alarm_arm,
                "alarm_disarm": self.timeouts.alarm_disarm,
                "dashboard": self.timeouts.dashboard,
            },
            "color": self.color,
        }


def _build_timeouts(raw: dict[str, Any]) -> ConfirmTimeouts:
    """Build confirmation timeouts from the ``[confirm]`` table."""

    def seconds(key: str, default: float) -> float:
        return _to_float(raw.get(key), default, minimum=0.1, maximum=3600.0)

    return ConfirmTimeouts(
        lock=seconds("lock_timeout_seconds", 10),
        unlock=seconds("unlock_timeout_seconds", 10),
        hibernate=seconds("hibernate_timeout_seconds", 10),
        seatbox=seconds("seatbox_timeout_seconds", 5),
        alarm_arm=seconds("alarm_arm_timeout_seconds", 10),
        alarm_disarm=seconds("alarm_disarm_timeout_seconds", 5),
        dashboard=seconds("dashboard_timeout_seconds", 60),
    )


@lru_cache(maxsize=1)
def load_config() -> Config:
    """Load effective config from TOML layers plus env overrides."""
    load_dotenv()
    toml_data, sources = _load_layers()

    global _LAST_CONFIG_SOURCES
    _LAST_CONFIG_SOURCES = sources

    redis = _section(toml_data, "redis")
    output = _section(toml_data, "output")

    addr = _to_non_empty_string(os.getenv("LSC_REDIS_ADDR")) or _to_non_empty_string(
        redis.get("addr")
    )
    try:
        redis_addr = normalize_redis_addr(addr)
    except ValueError:
        redis_addr = DEFAULT_REDIS_ADDR

    return Config(
        redis_addr=redis_addr,
        connect_timeout_seconds=_to_float(
            redis.get("connect_timeout_seconds"), 5, minimum=0.5, maximum=60.0
        ),
        timeouts=_build_timeouts(_section(toml_data, "confirm")),
        color=bool(output.get("color", True)) and not os.getenv("NO_COLOR"),
    )


def get_config() -> Config:
    """Return cached effective configuration."""
    return load_config()


def reload_config() -> Config:
    """Clear config cache and return reloaded configuration."""
    load_config.cache_clear()
    return load_config()


if __name__ == "__main__":
    """Run a real-path config smoke test."""
    cfg = load_config()
    assert cfg.redis_addr
    assert cfg.timeouts.lock > 0
    assert "timeouts" in cfg.public_dict()
    print(f"Config loaded: redis={cfg.redis_addr}, sources={get_config_sources()}")
