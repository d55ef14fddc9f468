# tests/test_config.py

from __future__ import annotations

import pytest
import yaml

from core.config import RELEASE_OTHER, ConfigError, ConfigManager


def test_env_overrides_yaml_and_defaults(tmp_path, monkeypatch) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({"agent": {"tick_interval": 2}, "app": {"release": "cloud"}}))
    monkeypatch.setenv("EDGE_AGENT__TICK_INTERVAL", "3")
    monkeypatch.setenv("EDGE_SERVER__ENABLED", "false")

    config = ConfigManager().load(str(path))

    assert config.get("agent.tick_interval") == 3
    assert config.get("server.enabled") is False
    assert config.release == "cloud"
    assert config.get("agent.not_ready_interval") == 60


def test_missing_yaml_writes_defaults(tmp_path) -> None:
    path = tmp_path / "nested" / "config.yaml"

    config = ConfigManager().load(str(path))

    assert path.is_file()
    assert yaml.safe_load(path.read_text())["server"]["port"] == config.get("server.port")


def test_unknown_release_maps_to_other() -> None:
    config = ConfigManager()
    config.set("app.release", "staging")
    assert config.release == RELEASE_OTHER


def test_ready_file_defaults_to_ws_dir() -> None:
    config = ConfigManager()
    config.set("paths.ws_dir", "/srv/ws")
    assert config.ready_file == "/srv/ws/.ready"

    config.set("agent.ready_file", "/run/edge.ready")
    assert config.ready_file == "/run/edge.ready"


def test_frozen_config_rejects_changes() -> None:
    config = ConfigManager()
    config.freeze()

    with pytest.raises(RuntimeError):
        config.set("agent.tick_interval", 5)


def test_invalid_engine_values_fail_validation(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("EDGE_AGENT__TICK_INTERVAL", "0")

    with pytest.raises(ConfigError):
        ConfigManager().load(str(tmp_path / "config.yaml"))


def test_env_scalars_follow_yaml_rules(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("EDGE_APP__DEBUG", "yes")
    monkeypatch.setenv("EDGE_AGENT__READY_FILE", "/run/edge.ready")
    monkeypatch.setenv("EDGE_BACKUP__FRESHNESS_SECONDS", "7200")

    config = ConfigManager().load(str(tmp_path / "config.yaml"))

    assert config.get("app.debug") is True
    assert config.ready_file == "/run/edge.ready"
    assert config.get("backup.freshness_seconds") == 7200
