"""
任务队列

持久化的 FIFO 队列（按 created 排序，同一时间按 id）。

出队（dequeue_oldest_pending）只读取，不修改状态；
认领（mark_executing）由 Dispatcher 单独完成，两步分开便于审计。
"""

import json
from typing import Any, Optional

from core.logger import get_logger
from models.task import Task, TaskStatus
from services.database import Database, now_str

_logger = get_logger("services.task_queue")


class TaskQueue:
    """任务队列服务"""

    def __init__(self, database: Database):
        self._db = database

    @staticmethod
    def _row_to_task(row) -> Task:
        return Task(
            id=int(row["id"]),
            kind=str(row["kind"] or ""),
            args=row["args"],
            status=TaskStatus(row["status"]),
            result=row["result"],
            created=str(row["created"]),
            updated=str(row["updated"]),
        )

    # ──────────────────────────────────────────
    # 生产者
    # ──────────────────────────────────────────

    def enqueue(self, kind: str, args: Optional[Any] = None, created: Optional[str] = None) -> int:
        """
        插入一个 created 状态的任务。

        Args:
            kind: 任务类型
            args: 参数（dict 会被 JSON 编码；str 原样存储）
            created: 创建时间，默认当前时间

        Returns:
            新任务 ID
        """
        if not kind or not kind.strip():
            raise ValueError("kind 不能为空")

        if args is not None and not isinstance(args, str):
            args = json.dumps(args, ensure_ascii=False)

        timestamp = created or now_str()
        cursor = self._db.execute(
            "INSERT INTO tasks (kind, args, status, result, created, updated) "
            "VALUES (?, ?, ?, NULL, ?, ?)",
            (kind.strip(), args, TaskStatus.CREATED.value, timestamp, timestamp),
        )
        task_id = int(cursor.lastrowid)
        _logger.info(f"任务入队: #{task_id} {kind}")
        return task_id

    # ──────────────────────────────────────────
    # 引擎使用的操作
    # ──────────────────────────────────────────

    def dequeue_oldest_pending(self) -> Optional[Task]:
        """返回最早创建的 created 任务，没有则返回 None（不修改状态）"""
        row = self._db.query_one(
            "SELECT * FROM tasks WHERE status = ? ORDER BY created ASC, id ASC LIMIT 1",
            (TaskStatus.CREATED.value,),
        )
        return self._row_to_task(row) if row is not None else None

    def mark_executing(self, task_id: int):
        self._transition(task_id, TaskStatus.EXECUTING, (TaskStatus.CREATED,))

    def mark_finished(self, task_id: int, result: str):
        self._transition(task_id, TaskStatus.FINISHED, (TaskStatus.EXECUTING,), result=result)

    def mark_error(self, task_id: int, result: str):
        self._transition(task_id, TaskStatus.ERROR, (TaskStatus.EXECUTING,), result=result)

    def list_executing(self) -> list[Task]:
        rows = self._db.query(
            "SELECT * FROM tasks WHERE status = ? ORDER BY created ASC, id ASC",
            (TaskStatus.EXECUTING.value,),
        )
        return [self._row_to_task(r) for r in rows]

    def _transition(
        self,
        task_id: int,
        new_status: TaskStatus,
        expected: tuple[TaskStatus, ...],
        result: Optional[str] = None,
    ):
        """
        状态迁移。只有当前状态在 expected 中时才会更新，
        终态任务不会被改写。
        """
        placeholders = ",".join("?" for _ in expected)
        if result is None:
            sql = f"UPDATE tasks SET status = ?, updated = ? WHERE id = ? AND status IN ({placeholders})"
            params = (new_status.value, now_str(), int(task_id), *[s.value for s in expected])
        else:
            sql = (
                f"UPDATE tasks SET status = ?, result = ?, updated = ? "
                f"WHERE id = ? AND status IN ({placeholders})"
            )
            params = (new_status.value, result, now_str(), int(task_id), *[s.value for s in expected])

        cursor = self._db.execute(sql, params)
        if cursor.rowcount != 1:
            _logger.warning(f"任务 #{task_id} 状态迁移被拒绝 → {new_status.value}")
        else:
            _logger.debug(f"任务 #{task_id} → {new_status.value}")

    # ──────────────────────────────────────────
    # 查询
    # ──────────────────────────────────────────

    def get(self, task_id: int) -> Optional[Task]:
        row = self._db.query_one("SELECT * FROM tasks WHERE id = ?", (int(task_id),))
        return self._row_to_task(row) if row is not None else None

    def list_recent(self, limit: int = 50) -> list[Task]:
        rows = self._db.query(
            "SELECT * FROM tasks ORDER BY created DESC, id DESC LIMIT ?",
            (int(limit),),
        )
        return [self._row_to_task(r) for r in rows]

    def count(self, status: Optional[TaskStatus] = None) -> int:
        if status is None:
            return int(self._db.scalar("SELECT COUNT(*) FROM tasks") or 0)
        return int(self._db.scalar("SELECT COUNT(*) FROM tasks WHERE status = ?", (status.value,)) or 0)
