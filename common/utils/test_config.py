"""
Tests for configuration loading and validation.
"""
import json

import pytest

from common.errors import ConfigError
from common.utils.config import PSK_ENV_VAR, ConfigManager, TunnelSettings

PSK = "0123456789abcdef0123456789abcdef"


@pytest.fixture(autouse=True)
def no_env_psk(monkeypatch):
    monkeypatch.delenv(PSK_ENV_VAR, raising=False)


def write_config(path, data):
    path.write_text(json.dumps(data))
    return str(path)


def test_missing_file_creates_default(tmp_path):
    path = tmp_path / "config.json"
    manager = ConfigManager(str(path))

    assert manager.created
    assert path.exists()
    assert manager.get("server.port") == 51820
    assert manager.get("tunnel.reconnect_threshold") is None
    # Default has no PSK, so it cannot start
    assert any("psk" in error for error in manager.validate())


def test_partial_file_falls_back_to_defaults(tmp_path):
    path = write_config(tmp_path / "c.json", {"mode": "server", "security": {"psk": PSK}})
    manager = ConfigManager(path)

    assert not manager.created
    assert manager.get("mode") == "server"
    assert manager.get("interface.mtu") == 1400
    assert manager.validate() == []


def test_invalid_json_raises(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{ not json")
    with pytest.raises(ConfigError):
        ConfigManager(str(path))


def test_non_object_raises(tmp_path):
    path = write_config(tmp_path / "list.json", [1, 2, 3])
    with pytest.raises(ConfigError):
        ConfigManager(path)


def test_get_and_set(tmp_path):
    manager = ConfigManager(str(tmp_path / "c.json"))
    manager.set("status.port", 9090)
    manager.set("extra.nested.value", True)

    assert manager.get("status.port") == 9090
    assert manager.get("extra.nested.value") is True
    assert manager.get("does.not.exist", "fallback") == "fallback"


def test_save_keeps_backup(tmp_path):
    path = tmp_path / "c.json"
    manager = ConfigManager(str(path))
    manager.set("server.port", 6000)

    assert manager.save()
    assert (tmp_path / "c.json.bak").exists()
    assert json.loads(path.read_text())["server"]["port"] == 6000


@pytest.mark.parametrize("key, value, fragment", [
    ("mode", "relay", "mode"),
    ("server.address", "", "server.address"),
    ("server.port", 0, "server.port"),
    ("server.port", 70000, "server.port"),
    ("server.port", "51820", "server.port"),
    ("security.psk", "short", "16, 24 or 32"),
    ("interface.name", " ", "interface.name"),
    ("interface.address", "10.8.0.2", "CIDR"),
    ("interface.address", "10.8.0.300/24", "interface.address"),
    ("interface.mtu", 100, "interface.mtu"),
    ("tunnel.read_timeout", 0, "tunnel.read_timeout"),
    ("tunnel.retry_delay", -1, "tunnel.retry_delay"),
    ("tunnel.max_connect_tries", 0, "max_connect_tries"),
    ("tunnel.max_connect_tries", True, "max_connect_tries"),
    ("tunnel.reconnect_threshold", 0, "reconnect_threshold"),
])
def test_validation_errors(tmp_path, key, value, fragment):
    manager = ConfigManager(str(tmp_path / "c.json"))
    manager.set("security.psk", PSK)
    manager.set(key, value)

    errors = manager.validate()
    assert any(fragment in error for error in errors), errors


@pytest.mark.parametrize("size", [16, 24, 32])
def test_valid_psk_lengths(tmp_path, size):
    manager = ConfigManager(str(tmp_path / "c.json"))
    manager.set("security.psk", "p" * size)
    assert manager.validate() == []


def test_env_psk_overrides_file(tmp_path, monkeypatch):
    manager = ConfigManager(str(tmp_path / "c.json"))
    manager.set("security.psk", "x" * 16)
    monkeypatch.setenv(PSK_ENV_VAR, PSK)

    settings = TunnelSettings.from_config(manager)
    assert settings.key == PSK.encode()


def test_settings_from_config(tmp_path):
    path = write_config(tmp_path / "c.json", {
        "mode": "client",
        "server": {"address": " vpn.example.org ", "port": 4500},
        "security": {"psk": PSK},
        "tunnel": {"reconnect_threshold": 5, "read_timeout": 2},
    })
    settings = TunnelSettings.from_config(ConfigManager(path), mode="server")

    assert settings.mode == "server"
    assert settings.endpoint == ("vpn.example.org", 4500)
    assert settings.reconnect_threshold == 5
    assert settings.read_timeout == 2.0
    assert isinstance(settings.read_timeout, float)
    assert settings.adapter_name == "vpn0"


def test_settings_reject_invalid_config(tmp_path):
    manager = ConfigManager(str(tmp_path / "c.json"))
    manager.set("server.port", -1)

    with pytest.raises(ConfigError) as info:
        TunnelSettings.from_config(manager)
    message = str(info.value)
    assert "server.port" in message
    assert "security.psk" in message


def test_settings_are_frozen_and_hide_psk(make_settings, psk):
    settings = make_settings()
    assert psk not in repr(settings)
    with pytest.raises(AttributeError):
        settings.server_port = 1
