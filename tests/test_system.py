# tests/test_system.py

from __future__ import annotations

import json
import os

import pytest

from models.option import OptionName
from models.task import TaskStatus
from services.system import SystemService, parse_update_targets


def test_parse_update_targets() -> None:
    assert parse_update_targets({"API_VERSION": "1.2.0", "WS_VERSION": "0.9.1", "": "x"}) == [
        {"target": "API", "version": "1.2.0"},
        {"target": "WS", "version": "0.9.1"},
    ]


@pytest.mark.asyncio
async def test_cloud_options_are_imported_once(config, runner, options, store) -> None:
    env_file = config.get("paths.cloud_env_file")
    os.makedirs(os.path.dirname(env_file))
    with open(env_file, "w", encoding="utf-8") as f:
        f.write("NAME=Ada\nEMAIL=ada@example.com\nCLUSTER=\nUNRELATED=1\n")
    system = SystemService(config, runner, options)

    assert await system.setup_cloud_options() == 2

    assert store.get(OptionName.NAME) == "Ada"
    assert store.get(OptionName.EMAIL) == "ada@example.com"
    assert store.get(OptionName.CLUSTER) is None
    assert not os.path.exists(env_file)
    assert await system.setup_cloud_options() == 0


@pytest.mark.asyncio
async def test_check_updates_publishes_targets(config, runner, options) -> None:
    updater_dir = config.get("paths.updater_dir")
    with open(os.path.join(updater_dir, "targets.env"), "w", encoding="utf-8") as f:
        f.write("API_VERSION=2.0.0\n")
    system = SystemService(config, runner, options)

    targets = await system.check_updates()

    assert targets == [{"target": "API", "version": "2.0.0"}]
    assert options.system_updates() == targets
    call = runner.calls_to("sh", "run.sh", "--check")[0]
    assert call.cwd == updater_dir


@pytest.mark.asyncio
async def test_apply_updates_toggles_flag(runner, components) -> None:
    seen = []
    store = components["option_store"]
    runner.responder = lambda call: seen.append(store.get(OptionName.UPDATING_SYSTEM)) or None

    queue = components["task_queue"]
    task_id = queue.enqueue("apply_updates")
    await components["dispatcher"].execute(queue.dequeue_oldest_pending())

    assert queue.get(task_id).status == TaskStatus.FINISHED
    assert seen == ["true"]
    assert store.get(OptionName.UPDATING_SYSTEM) == "false"


@pytest.mark.asyncio
async def test_check_updates_task_returns_targets_json(components) -> None:
    queue = components["task_queue"]
    task_id = queue.enqueue("check_updates")
    await components["dispatcher"].execute(queue.dequeue_oldest_pending())

    task = queue.get(task_id)
    assert task.status == TaskStatus.FINISHED
    assert json.loads(task.result) == []


@pytest.mark.asyncio
async def test_browserdev_status(config, runner, options, store) -> None:
    runner.outputs[("systemctl", "is-active", "code-server@system")] = "active"

    assert await SystemService(config, runner, options).refresh_browserdev_status() == "running"
    assert store.get(OptionName.BROWSERDEV_STATUS) == "running"
