# tests/test_dispatcher.py

from __future__ import annotations

from typing import Optional

import pytest
from pydantic import BaseModel

from models.task import RESULT_ERROR, RESULT_INVALID_TASK, EdgeAppArgs, TaskStatus
from services.dispatcher import HandlerRegistry, TaskDispatcher
from services.task_queue import TaskQueue


class Recorder:
    def __init__(self, result: Optional[str] = "done") -> None:
        self.result = result
        self.seen: list[Optional[BaseModel]] = []

    async def __call__(self, args):
        self.seen.append(args)
        return self.result


def _dispatcher(queue: TaskQueue, dev_mode: bool = False, **handlers) -> TaskDispatcher:
    registry = HandlerRegistry()
    for kind, (func, model) in handlers.items():
        registry.add(kind, func, model)
    return TaskDispatcher(queue, registry, dev_mode=dev_mode)


@pytest.mark.asyncio
async def test_successful_handler_finishes_task_with_result(queue: TaskQueue) -> None:
    handler = Recorder('{"id": "a"}')
    dispatcher = _dispatcher(queue, start_edgeapp=(handler, EdgeAppArgs))
    task_id = queue.enqueue("start_edgeapp", {"id": "a"})

    status = await dispatcher.execute(queue.dequeue_oldest_pending())

    assert status == TaskStatus.FINISHED
    task = queue.get(task_id)
    assert task.status == TaskStatus.FINISHED
    assert task.result == '{"id": "a"}'
    assert handler.seen[0].id == "a"


@pytest.mark.asyncio
async def test_unknown_kind_ends_in_error(queue: TaskQueue) -> None:
    dispatcher = _dispatcher(queue)
    task_id = queue.enqueue("launch_rockets")

    await dispatcher.execute(queue.dequeue_oldest_pending())

    task = queue.get(task_id)
    assert task.status == TaskStatus.ERROR
    assert task.result == RESULT_INVALID_TASK


@pytest.mark.asyncio
async def test_malformed_args_never_reach_handler(queue: TaskQueue) -> None:
    handler = Recorder()
    dispatcher = _dispatcher(queue, start_edgeapp=(handler, EdgeAppArgs))
    bad_json = queue.enqueue("start_edgeapp", "{not json")
    missing_field = queue.enqueue("start_edgeapp", {"name": "x"})

    await dispatcher.execute(queue.dequeue_oldest_pending())
    await dispatcher.execute(queue.dequeue_oldest_pending())

    assert handler.seen == []
    for task_id in (bad_json, missing_field):
        task = queue.get(task_id)
        assert task.status == TaskStatus.ERROR
        assert task.result == RESULT_INVALID_TASK


@pytest.mark.asyncio
async def test_handler_returning_none_ends_in_error(queue: TaskQueue) -> None:
    dispatcher = _dispatcher(queue, check_updates=(Recorder(None), None))
    task_id = queue.enqueue("check_updates")

    status = await dispatcher.execute(queue.dequeue_oldest_pending())

    assert status == TaskStatus.ERROR
    assert queue.get(task_id).result == RESULT_ERROR


@pytest.mark.asyncio
async def test_handler_exception_ends_in_error(queue: TaskQueue) -> None:
    async def boom(_args):
        raise RuntimeError("docker is gone")

    dispatcher = _dispatcher(queue, check_updates=(boom, None))
    task_id = queue.enqueue("check_updates")

    await dispatcher.execute(queue.dequeue_oldest_pending())

    task = queue.get(task_id)
    assert task.status == TaskStatus.ERROR
    assert task.result == RESULT_ERROR


@pytest.mark.asyncio
async def test_dev_mode_claims_but_never_runs_handlers(queue: TaskQueue) -> None:
    handler = Recorder()
    dispatcher = _dispatcher(queue, dev_mode=True, check_updates=(handler, None))
    task_id = queue.enqueue("check_updates")

    await dispatcher.execute(queue.dequeue_oldest_pending())

    assert handler.seen == []
    task = queue.get(task_id)
    assert task.status == TaskStatus.ERROR
    assert task.result == RESULT_INVALID_TASK
    assert await dispatcher.trigger("check_updates") is None


@pytest.mark.asyncio
async def test_recovery_reruns_only_the_most_recent_stuck_task(queue: TaskQueue) -> None:
    handler = Recorder("recovered")
    dispatcher = _dispatcher(queue, start_edgeapp=(handler, EdgeAppArgs))
    ids = [
        queue.enqueue("start_edgeapp", {"id": str(n)}, created=f"2024-01-01 00:00:0{n}")
        for n in (1, 2, 3)
    ]
    for task_id in ids:
        queue.mark_executing(task_id)

    recovered = await dispatcher.recover()

    assert recovered.id == ids[2]
    assert len(handler.seen) == 1
    assert queue.get(ids[2]).status == TaskStatus.FINISHED
    assert [t.id for t in queue.list_executing()] == ids[:2]


@pytest.mark.asyncio
async def test_recovery_with_nothing_stuck_is_a_noop(queue: TaskQueue) -> None:
    dispatcher = _dispatcher(queue)
    assert await dispatcher.recover() is None


def test_registry_rejects_duplicate_kinds() -> None:
    registry = HandlerRegistry()

    @registry.register("stop_shell")
    async def stop_shell(_args):
        return "OK"

    with pytest.raises(ValueError):
        registry.add("stop_shell", stop_shell)
    assert "stop_shell" in registry
    assert registry.kinds() == ["stop_shell"]


def test_full_registry_covers_every_task_kind(components: dict) -> None:
    assert components["registry"].kinds() == sorted([
        "install_edgeapp", "remove_edgeapp", "start_edgeapp", "stop_edgeapp",
        "enable_online", "disable_online", "bulk_install_edgeapps",
        "enable_public_dashboard", "disable_public_dashboard",
        "check_updates", "apply_updates",
        "setup_backups", "disable_backups", "start_backup", "restore_backup",
        "setup_tunnel", "start_tunnel", "stop_tunnel", "disable_tunnel",
        "start_shell", "stop_shell",
    ])
