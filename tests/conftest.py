# tests/conftest.py

from __future__ import annotations

import os
from pathlib import Path

import pytest

from core.config import ConfigManager
from services.database import Database
from services.option_store import Options, OptionStore
from services.task_queue import TaskQueue

from fakes import FakeRunner


@pytest.fixture()
def config(tmp_path: Path) -> ConfigManager:
    """
    ConfigManager with builtin defaults and every filesystem path under tmp_path.

    load() is not called: no YAML file is written and the environment is ignored.
    """
    cfg = ConfigManager()
    paths = {
        "database.path": tmp_path / "edgebox.sqlite",
        "paths.apps_dir": tmp_path / "apps",
        "paths.ws_dir": tmp_path / "ws",
        "paths.dashboard_dir": tmp_path / "api",
        "paths.updater_dir": tmp_path / "updater",
        "paths.cloud_env_file": tmp_path / "edgeboxctl" / "cloud.env",
        "paths.backup_password_file": tmp_path / "backups" / "pw.txt",
        "tunnel.credentials_dir": tmp_path / "cloudflared",
        "tunnel.config_path": tmp_path / "etc" / "cloudflared" / "config.yml",
    }
    for key, value in paths.items():
        cfg.set(key, str(value))
    cfg.set("paths.backup_paths", [str(tmp_path / "apps")])
    cfg.set("tunnel.poll_interval", 0.01)
    cfg.set("tunnel.login_timeout", 0.2)
    for directory in ("apps", "ws", "updater"):
        os.makedirs(tmp_path / directory, exist_ok=True)
    return cfg


@pytest.fixture()
def database(config: ConfigManager) -> Database:
    return Database(config.get("database.path"))


@pytest.fixture()
def store(database: Database) -> OptionStore:
    return OptionStore(database)


@pytest.fixture()
def options(store: OptionStore) -> Options:
    return Options(store)


@pytest.fixture()
def queue(database: Database) -> TaskQueue:
    return TaskQueue(database)


@pytest.fixture()
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture()
def components(config: ConfigManager, database: Database, runner: FakeRunner) -> dict:
    """Full engine wiring with the fake command runner."""
    from main import build_engine

    return build_engine(config, database, runner)
