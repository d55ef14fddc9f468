# tests/test_scheduler.py

from __future__ import annotations

import pytest

from core.config import RELEASE_CLOUD
from models.option import BackupState, OptionName
from services.database import StorageError
from services.option_store import Options
from services.scheduler import Scheduler

from fakes import FrozenClock


class FakeDispatcher:
    def __init__(self) -> None:
        self.triggered: list[str] = []

    async def trigger(self, kind, args=None):
        self.triggered.append(kind)
        return "started"


class StubSystem:
    def __init__(self, fail_uptime: bool = False) -> None:
        self.fail_uptime = fail_uptime
        self.calls: list[str] = []

    def publish_uptime(self):
        self.calls.append("uptime")
        if self.fail_uptime:
            raise RuntimeError("psutil exploded")

    def publish_ip_address(self):
        self.calls.append("ip")

    def publish_identity(self):
        self.calls.append("identity")

    def hostname(self):
        return "edgebox"

    async def setup_cloud_options(self):
        self.calls.append("cloud")

    async def check_updates(self):
        self.calls.append("updates")

    async def refresh_browserdev_status(self):
        self.calls.append("browserdev")


class StubStorage:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.published = 0

    async def publish(self):
        if self.error is not None:
            raise self.error
        self.published += 1


class StubEdgeApps:
    def __init__(self, fail_publish: bool = False) -> None:
        self.fail_publish = fail_publish
        self.rebuilds = 0
        self.publishes = 0

    async def rebuild_runtime(self):
        self.rebuilds += 1

    async def publish_list(self, hostname=""):
        self.publishes += 1
        if self.fail_publish:
            raise RuntimeError("docker daemon unreachable")


class StubBackups:
    def __init__(self) -> None:
        self.stats = 0

    async def refresh_stats(self):
        self.stats += 1


def _scheduler(config, options, clock=None, system=None, storage=None, dispatcher=None, edgeapps=None):
    return Scheduler(
        config,
        options,
        system or StubSystem(),
        storage or StubStorage(),
        edgeapps or StubEdgeApps(),
        StubBackups(),
        dispatcher or FakeDispatcher(),
        clock=clock or FrozenClock(),
    )


@pytest.mark.parametrize(
    "tick, expected",
    [
        (1, ["startup"]),
        (2, []),
        (5, ["every_5"]),
        (15, ["every_5", "every_15"]),
        (30, ["every_5", "every_15", "every_30"]),
        (60, ["every_5", "every_15", "every_30", "every_60"]),
        (3600, ["every_5", "every_15", "every_30", "every_60", "every_3600"]),
        (86400, ["every_5", "every_15", "every_30", "every_60", "every_3600", "every_86400"]),
    ],
)
def test_fired_rules_are_a_function_of_tick(config, options, tick, expected) -> None:
    scheduler = _scheduler(config, options)
    assert scheduler.rules_for(tick) == expected
    assert scheduler.rules_for(tick) == expected


@pytest.mark.asyncio
async def test_run_schedules_reports_fired_rules(config, options) -> None:
    system = StubSystem()
    scheduler = _scheduler(config, options, system=system)

    fired = await scheduler.run_schedules(60)

    assert fired == scheduler.rules_for(60)
    assert system.calls == ["uptime", "browserdev", "ip"]


@pytest.mark.asyncio
async def test_failed_rule_does_not_stop_later_rules(config, options) -> None:
    system = StubSystem(fail_uptime=True)
    storage = StubStorage()
    scheduler = _scheduler(config, options, system=system, storage=storage)

    await scheduler.run_schedules(15)

    assert system.calls == ["uptime", "browserdev"]


@pytest.mark.asyncio
async def test_storage_error_aborts_the_tick(config, options) -> None:
    system = StubSystem()
    scheduler = _scheduler(config, options, system=system, storage=StubStorage(StorageError("locked")))

    with pytest.raises(StorageError):
        await scheduler.run_schedules(15)
    assert "browserdev" not in system.calls


@pytest.mark.asyncio
async def test_startup_imports_cloud_options_only_for_cloud_release(config, options) -> None:
    system = StubSystem()
    await _scheduler(config, options, system=system).run_schedules(1)
    assert "cloud" not in system.calls

    config.set("app.release", RELEASE_CLOUD)
    system = StubSystem()
    await _scheduler(config, options, system=system).run_schedules(1)
    assert system.calls[0] == "cloud"
    assert "identity" in system.calls and "updates" in system.calls


@pytest.mark.asyncio
async def test_startup_steps_continue_after_a_failed_step(config, options) -> None:
    system = StubSystem()
    edgeapps = StubEdgeApps()
    scheduler = _scheduler(
        config, options, system=system, edgeapps=edgeapps,
        storage=StubStorage(RuntimeError("lsblk missing")),
    )

    await scheduler.run_schedules(1)

    assert edgeapps.rebuilds == 1
    assert edgeapps.publishes == 1
    assert "updates" in system.calls


# ── auto-backup ──


@pytest.mark.asyncio
async def test_auto_backup_triggers_when_stale_and_working(config, options: Options) -> None:
    clock = FrozenClock()
    dispatcher = FakeDispatcher()
    options.set_backup_status(BackupState.WORKING)
    options.set_backup_last_run(int(clock.now) - 7200)

    await _scheduler(config, options, clock=clock, dispatcher=dispatcher).run_schedules(30)

    assert dispatcher.triggered == ["start_backup"]


@pytest.mark.asyncio
async def test_auto_backup_skips_fresh_backup(config, options: Options) -> None:
    clock = FrozenClock()
    dispatcher = FakeDispatcher()
    options.set_backup_status(BackupState.WORKING)
    options.set_backup_last_run(int(clock.now) - 1800)

    await _scheduler(config, options, clock=clock, dispatcher=dispatcher).run_schedules(30)

    assert dispatcher.triggered == []


@pytest.mark.asyncio
async def test_auto_backup_requires_working_repository(config, options: Options, store) -> None:
    clock = FrozenClock()
    dispatcher = FakeDispatcher()
    options.set_backup_last_run(int(clock.now) - 10 ** 6)
    scheduler = _scheduler(config, options, clock=clock, dispatcher=dispatcher)

    await scheduler.check_auto_backup()
    store.set(OptionName.BACKUP_STATUS, "error")
    await scheduler.check_auto_backup()

    assert dispatcher.triggered == []


@pytest.mark.asyncio
async def test_auto_backup_without_last_run_is_skipped(config, options: Options) -> None:
    dispatcher = FakeDispatcher()
    options.set_backup_status(BackupState.WORKING)
    scheduler = _scheduler(config, options, dispatcher=dispatcher)

    for _ in range(3):
        await scheduler.check_auto_backup()

    assert dispatcher.triggered == []


@pytest.mark.asyncio
async def test_auto_backup_is_not_evaluated_off_cadence(config, options: Options) -> None:
    clock = FrozenClock()
    dispatcher = FakeDispatcher()
    options.set_backup_status(BackupState.WORKING)
    options.set_backup_last_run(int(clock.now) - 7200)

    await _scheduler(config, options, clock=clock, dispatcher=dispatcher).run_schedules(25)

    assert dispatcher.triggered == []


@pytest.mark.asyncio
async def test_auto_backup_is_evaluated_when_list_refresh_fails(config, options: Options) -> None:
    clock = FrozenClock()
    dispatcher = FakeDispatcher()
    options.set_backup_status(BackupState.WORKING)
    options.set_backup_last_run(int(clock.now) - 7200)
    scheduler = _scheduler(
        config, options, clock=clock, dispatcher=dispatcher, edgeapps=StubEdgeApps(fail_publish=True),
    )

    await scheduler.run_schedules(30)

    assert dispatcher.triggered == ["start_backup"]
