# tests/test_option_store.py

from __future__ import annotations

from models.option import (
    BackupSettings,
    BackupState,
    OptionName,
    TunnelState,
    TunnelStatus,
)
from services.option_store import Options, OptionStore


def test_set_replaces_previous_value(store: OptionStore) -> None:
    store.set(OptionName.IP_ADDRESS, "10.0.0.2")
    store.set(OptionName.IP_ADDRESS, "10.0.0.3")

    assert store.get(OptionName.IP_ADDRESS) == "10.0.0.3"
    assert [o.name for o in store.list_all()] == ["IP_ADDRESS"]


def test_missing_option_reads_as_none(store: OptionStore) -> None:
    assert store.get("NOPE") is None
    assert store.get_option("NOPE") is None
    assert store.get_json("NOPE", default=[]) == []


def test_invalid_json_falls_back_to_default(store: OptionStore) -> None:
    store.set(OptionName.EDGEAPPS_LIST, "{not json")

    assert store.get_json(OptionName.EDGEAPPS_LIST, default=[]) == []


def test_tunnel_status_round_trips_through_json(options: Options) -> None:
    options.set_tunnel_status(TunnelStatus(status=TunnelState.WAITING, login_link="https://x"))

    status = options.tunnel_status()
    assert status.status == TunnelState.WAITING
    assert status.login_link == "https://x"


def test_backup_last_run_parsing(options: Options, store: OptionStore) -> None:
    assert options.backup_last_run() is None

    options.set_backup_last_run(1700000000)
    assert options.backup_last_run() == 1700000000

    store.set(OptionName.BACKUP_LAST_RUN, "yesterday")
    assert options.backup_last_run() is None


def test_backup_settings_require_service_and_repository(options: Options) -> None:
    assert options.backup_settings() is None

    options.set_backup_settings(BackupSettings(service="b2", repository="box", access_key_id="k"))
    settings = options.backup_settings()
    assert settings.service == "b2"
    assert settings.access_key_id == "k"
    assert settings.secret_access_key == ""


def test_clear_backup_removes_every_backup_option(options: Options, store: OptionStore) -> None:
    options.set_backup_status(BackupState.WORKING)
    options.set_backup_last_run(1)
    options.set_backup_settings(BackupSettings(service="s3", repository="r"))
    options.set_uptime(12)

    options.clear_backup()

    assert options.backup_status() == BackupState.NONE.value
    assert [o.name for o in store.list_all()] == ["SYSTEM_UPTIME"]
