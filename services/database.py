"""
SQLite 存储

任务队列（tasks 表）与 Option 表（options 表）是代理仅有的持久状态。

- 每次操作打开独立连接，不跨表、不跨行开启事务
- 所有 sqlite3 错误统一包装为 StorageError，由引擎视为本次 tick 的致命错误
"""

import contextlib
import os
import sqlite3
from datetime import datetime
from typing import Any, Iterator, Optional

from core.logger import get_logger

_logger = get_logger("services.database")

# 与前端（API 项目）共用的时间格式
DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS tasks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        kind TEXT NOT NULL,
        args TEXT,
        status TEXT NOT NULL DEFAULT 'created',
        result TEXT,
        created TEXT NOT NULL,
        updated TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_tasks_status_created ON tasks(status, created, id)",
    """
    CREATE TABLE IF NOT EXISTS options (
        name TEXT PRIMARY KEY,
        value TEXT,
        created TEXT NOT NULL,
        updated TEXT NOT NULL
    )
    """,
)


class StorageError(RuntimeError):
    """队列 / Option 存储不可用"""


def now_str() -> str:
    return datetime.now().strftime(DATETIME_FORMAT)


class Database:
    """
    SQLite 数据库访问。

    线程安全：每个方法使用自己的连接（续作在工作线程中也可以安全写入）。
    """

    def __init__(self, db_path: str):
        self._db_path = os.path.abspath(db_path)
        os.makedirs(os.path.dirname(self._db_path), exist_ok=True)
        self._ensure_schema()
        _logger.info(f"SQLite 数据库就绪: {self._db_path}")

    @property
    def path(self) -> str:
        return self._db_path

    @contextlib.contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self._db_path, timeout=30.0)
        except sqlite3.Error as e:
            raise StorageError(f"无法打开数据库 {self._db_path}: {e}") from e

        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(str(e)) from e
        finally:
            conn.close()

    def _ensure_schema(self):
        with self._connect() as conn:
            with contextlib.suppress(sqlite3.Error):
                conn.execute("PRAGMA journal_mode=WAL")
            for statement in _SCHEMA:
                conn.execute(statement)

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        """执行写语句，返回游标（用于 lastrowid / rowcount）"""
        with self._connect() as conn:
            return conn.execute(sql, params)

    def query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._connect() as conn:
            return conn.execute(sql, params).fetchall()

    def query_one(self, sql: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        with self._connect() as conn:
            return conn.execute(sql, params).fetchone()

    def scalar(self, sql: str, params: tuple = ()) -> Any:
        row = self.query_one(sql, params)
        return row[0] if row is not None else None
