# tests/test_task_queue.py

from __future__ import annotations

import sqlite3

import pytest

from models.task import TaskStatus
from services.database import Database, StorageError
from services.task_queue import TaskQueue


def test_dequeue_returns_oldest_created_task_first(queue: TaskQueue) -> None:
    t3 = queue.enqueue("start_edgeapp", {"id": "c"}, created="2024-01-01 00:00:03")
    t1 = queue.enqueue("start_edgeapp", {"id": "a"}, created="2024-01-01 00:00:01")
    t2 = queue.enqueue("start_edgeapp", {"id": "b"}, created="2024-01-01 00:00:02")

    first = queue.dequeue_oldest_pending()
    assert first is not None and first.id == t1

    queue.mark_executing(t1)
    second = queue.dequeue_oldest_pending()
    assert second is not None and second.id == t2

    queue.mark_executing(t2)
    queue.mark_executing(t3)
    assert queue.dequeue_oldest_pending() is None


def test_dequeue_breaks_timestamp_ties_by_id(queue: TaskQueue) -> None:
    ts = "2024-01-01 00:00:00"
    a = queue.enqueue("stop_edgeapp", created=ts)
    queue.enqueue("stop_edgeapp", created=ts)

    assert queue.dequeue_oldest_pending().id == a


def test_dequeue_does_not_claim(queue: TaskQueue) -> None:
    task_id = queue.enqueue("check_updates")

    queue.dequeue_oldest_pending()
    queue.dequeue_oldest_pending()

    assert queue.get(task_id).status == TaskStatus.CREATED


def test_enqueue_encodes_dict_args_as_json(queue: TaskQueue) -> None:
    task_id = queue.enqueue("install_edgeapp", {"id": "nextcloud"})

    task = queue.get(task_id)
    assert task.args == '{"id": "nextcloud"}'
    assert task.created == task.updated


def test_enqueue_rejects_blank_kind(queue: TaskQueue) -> None:
    with pytest.raises(ValueError):
        queue.enqueue("  ")


def test_status_only_moves_forward(queue: TaskQueue) -> None:
    task_id = queue.enqueue("start_edgeapp")

    # created → finished is not a legal transition
    queue.mark_finished(task_id, "skipped")
    assert queue.get(task_id).status == TaskStatus.CREATED

    queue.mark_executing(task_id)
    queue.mark_finished(task_id, '{"ok": true}')
    task = queue.get(task_id)
    assert task.status == TaskStatus.FINISHED
    assert task.result == '{"ok": true}'

    # terminal states are never rewritten
    queue.mark_error(task_id, "Error")
    queue.mark_executing(task_id)
    task = queue.get(task_id)
    assert task.status == TaskStatus.FINISHED
    assert task.result == '{"ok": true}'


def test_finished_task_is_never_dequeued_again(queue: TaskQueue) -> None:
    task_id = queue.enqueue("start_edgeapp")
    queue.mark_executing(task_id)
    queue.mark_error(task_id, "Error")

    assert queue.dequeue_oldest_pending() is None
    assert TaskStatus.ERROR.is_terminal


def test_list_executing_and_counts(queue: TaskQueue) -> None:
    ids = [queue.enqueue("start_edgeapp") for _ in range(3)]
    queue.mark_executing(ids[0])
    queue.mark_executing(ids[2])

    assert [t.id for t in queue.list_executing()] == [ids[0], ids[2]]
    assert queue.count() == 3
    assert queue.count(TaskStatus.CREATED) == 1


def test_list_recent_is_newest_first(queue: TaskQueue) -> None:
    queue.enqueue("a", created="2024-01-01 00:00:01")
    queue.enqueue("b", created="2024-01-01 00:00:02")

    assert [t.kind for t in queue.list_recent(limit=1)] == ["b"]


def test_storage_failure_raises_storage_error(tmp_path) -> None:
    database = Database(str(tmp_path / "q.sqlite"))
    queue = TaskQueue(database)
    with sqlite3.connect(database.path) as conn:
        conn.execute("DROP TABLE tasks")

    with pytest.raises(StorageError):
        queue.dequeue_oldest_pending()
