"""
任务执行引擎

单个 asyncio 后台循环，每次迭代一个 tick：

1. 运行时未就绪（ready 标记文件不存在）→ 等待 not_ready_interval，tick 不前进
2. tick 1：崩溃恢复（重新执行最近一个 executing 任务）
3. 调度器按节奏规则执行维护工作
4. 从队列取出至多一个 created 任务并执行到终态

StorageError 终止当前 tick，下一个 tick 自然重试。
"""

import asyncio
import os
import time
from typing import Optional

from core.logger import get_logger, set_tick
from models.task import TaskStatus
from services.continuations import ContinuationRegistry
from services.database import StorageError
from services.dispatcher import TaskDispatcher
from services.scheduler import Scheduler
from services.task_queue import TaskQueue

_logger = get_logger("services.engine")


class AgentEngine:
    """tick 循环"""

    def __init__(
        self,
        config,
        queue: TaskQueue,
        dispatcher: TaskDispatcher,
        scheduler: Scheduler,
        continuations: ContinuationRegistry,
    ):
        self._queue = queue
        self._dispatcher = dispatcher
        self._scheduler = scheduler
        self._continuations = continuations
        self._ready_file = config.ready_file
        self._tick_interval = float(config.get("agent.tick_interval", 1))
        self._not_ready_interval = float(config.get("agent.not_ready_interval", 60))

        self._tick = 0
        self._running = False
        self._loop_task: Optional[asyncio.Task] = None
        self._started_at: Optional[float] = None
        self._last_tick_error: Optional[str] = None

    @property
    def tick(self) -> int:
        return self._tick

    @property
    def running(self) -> bool:
        return self._running

    def is_system_ready(self) -> bool:
        return os.path.exists(self._ready_file)

    async def iterate(self, tick: int) -> bool:
        """
        执行一个 tick。

        Returns:
            tick 是否完整执行（StorageError 时为 False）
        """
        set_tick(tick)
        _logger.debug(f"Tick {tick}")
        try:
            if tick == 1:
                await self._dispatcher.recover()

            await self._scheduler.run_schedules(tick)

            task = self._queue.dequeue_oldest_pending()
            if task is not None:
                await self._dispatcher.execute(task)
        except StorageError as e:
            self._last_tick_error = str(e)
            _logger.error(f"存储错误，放弃本次 tick: {e}")
            return False

        self._last_tick_error = None
        return True

    async def _run(self):
        _logger.info("任务执行引擎已启动")
        while self._running:
            try:
                if not self.is_system_ready():
                    _logger.info(f"运行时尚未就绪（{self._ready_file}），{self._not_ready_interval:.0f}s 后重试")
                    await asyncio.sleep(self._not_ready_interval)
                    continue

                self._tick += 1
                await self.iterate(self._tick)
                await asyncio.sleep(self._tick_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                _logger.exception(f"Tick {self._tick} 异常: {e}")
                await asyncio.sleep(self._tick_interval)
        _logger.info("任务执行引擎已停止")

    async def start(self):
        if self._running:
            return
        self._running = True
        self._started_at = time.time()
        self._loop_task = asyncio.create_task(self._run(), name="agent-engine")

    async def stop(self):
        """停止循环并取消仍在运行的续作（进程关闭）"""
        self._running = False
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        await self._continuations.cancel_all()

    def snapshot(self) -> dict:
        return {
            "running": self._running,
            "tick": self._tick,
            "ready": self.is_system_ready(),
            "started_at": self._started_at,
            "last_tick_error": self._last_tick_error,
            "pending_tasks": self._queue.count(TaskStatus.CREATED),
            "continuations": self._continuations.active(),
        }
