"""Unit tests for config loading, type conversion, and Redis address handling."""

from __future__ import annotations

import pytest

from lsc.config import settings
from lsc.config.settings import (
    DEFAULT_REDIS_ADDR,
    Config,
    _deep_merge,
    _to_float,
    _to_non_empty_string,
    get_config,
    get_config_sources,
    load_toml_file,
    normalize_redis_addr,
    reload_config,
)
from tests.helpers import make_config, write_test_config


def test_load_default_toml():
    """Default TOML loads without error, produces valid Config."""
    cfg = get_config()
    assert isinstance(cfg, Config)
    assert cfg.redis_addr == DEFAULT_REDIS_ADDR
    assert cfg.timeouts.lock == 10
    assert cfg.timeouts.seatbox == 5
    assert cfg.timeouts.dashboard == 60
    assert [s["source"] for s in get_config_sources()] == ["package_default"]


def test_deep_merge_override():
    """Override config values win over base."""
    base = {"a": 1, "nested": {"x": 10, "y": 20}}
    override = {"a": 2, "nested": {"x": 99}}
    result = _deep_merge(base, override)
    assert result["a"] == 2
    assert result["nested"] == {"x": 99, "y": 20}


def test_type_conversion_float():
    """_to_float with valid/invalid/out-of-bounds values."""
    assert _to_float(0.5, default=0.0, minimum=0.0, maximum=1.0) == 0.5
    assert _to_float("abc", default=0.3, minimum=0.0, maximum=1.0) == 0.3
    assert _to_float(2.0, default=0.5, minimum=0.0, maximum=1.0) == 1.0
    assert _to_float(-0.5, default=0.5, minimum=0.0, maximum=1.0) == 0.0


def test_type_conversion_non_empty_string():
    """_to_non_empty_string trims whitespace, handles None."""
    assert _to_non_empty_string("  hello  ") == "hello"
    assert _to_non_empty_string(None) == ""
    assert _to_non_empty_string(42) == "42"


def test_load_toml_file_missing_and_malformed(tmp_path):
    """Missing or malformed files yield an empty dict."""
    assert load_toml_file(tmp_path / "absent.toml") == {}
    broken = tmp_path / "broken.toml"
    broken.write_text("[redis\naddr = ", encoding="utf-8")
    assert load_toml_file(broken) == {}


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("", DEFAULT_REDIS_ADDR),
        ("10.0.0.2", "10.0.0.2:6379"),
        ("10.0.0.2:6380", "10.0.0.2:6380"),
        ("redis://scooter.local:6379", "scooter.local:6379"),
        ("  localhost  ", "localhost:6379"),
    ],
)
def test_normalize_redis_addr(raw, expected):
    assert normalize_redis_addr(raw) == expected


@pytest.mark.parametrize("raw", ["host:abc", "host:0", "host:70000"])
def test_normalize_redis_addr_rejects_bad_port(raw):
    with pytest.raises(ValueError):
        normalize_redis_addr(raw)


def test_explicit_config_layer(tmp_path, monkeypatch):
    """LSC_CONFIG overrides package defaults."""
    path = write_test_config(
        tmp_path,
        redis={"addr": "10.0.0.2"},
        confirm={"lock_timeout_seconds": 3, "dashboard_timeout_seconds": 9999},
    )
    monkeypatch.setenv("LSC_CONFIG", str(path))

    cfg = reload_config()

    assert cfg.redis_addr == "10.0.0.2:6379"
    assert cfg.timeouts.lock == 3
    assert cfg.timeouts.dashboard == 3600
    assert cfg.timeouts.unlock == 10
    assert get_config_sources()[-1] == {"source": "explicit", "path": str(path)}


def test_user_config_layer(tmp_path, monkeypatch):
    """~/.lsc/config.toml sits between defaults and LSC_CONFIG."""
    user = tmp_path / "user.toml"
    user.write_text('[redis]\naddr = "192.168.7.9"\n', encoding="utf-8")
    monkeypatch.setattr(settings, "USER_CONFIG_PATH", user)

    assert reload_config().redis_addr == "192.168.7.9:6379"


def test_env_redis_addr_wins(tmp_path, monkeypatch):
    """LSC_REDIS_ADDR beats every TOML layer."""
    path = write_test_config(tmp_path, redis={"addr": "10.0.0.2"})
    monkeypatch.setenv("LSC_CONFIG", str(path))
    monkeypatch.setenv("LSC_REDIS_ADDR", "127.0.0.1:7000")

    assert reload_config().redis_addr == "127.0.0.1:7000"


def test_invalid_configured_addr_falls_back(monkeypatch):
    monkeypatch.setenv("LSC_REDIS_ADDR", "host:notaport")
    assert reload_config().redis_addr == DEFAULT_REDIS_ADDR


def test_no_color_env_disables_color(monkeypatch):
    monkeypatch.setenv("NO_COLOR", "1")
    assert reload_config().color is False
    monkeypatch.delenv("NO_COLOR")
    assert reload_config().color is True


def test_public_dict_shape():
    payload = make_config().public_dict()
    assert payload["redis_addr"] == "127.0.0.1:6379"
    assert set(payload["timeouts"]) == {
        "lock",
        "unlock",
        "hibernate",
        "seatbox",
        "alarm_arm",
        "alarm_disarm",
        "dashboard",
    }
