"""
后台续作（continuation）注册表

Handler 在完成同步前缀后把剩余工作交给续作，自己立即返回。
引擎不等待、不取消续作；续作的真实结果只通过 Option 表中的
状态字段体现（如 TUNNEL_STATUS、BACKUP_STATUS）。

注册表负责：
- 保存 asyncio.Task 句柄（避免任务被垃圾回收、便于观察）
- 用统一的边界捕获续作中的异常，记录日志并调用 on_error 上报
"""

import asyncio
import os
import time
from typing import Awaitable, Callable, Optional

from core.logger import get_logger

_logger = get_logger("services.continuations")

ErrorReporter = Callable[[BaseException], None]


class ContinuationRegistry:
    """续作句柄注册表"""

    def __init__(self):
        self._tasks: dict[str, asyncio.Task] = {}
        self._started_at: dict[str, float] = {}

    def spawn(
        self,
        name: str,
        body: Callable[[], Awaitable[None]],
        on_error: Optional[ErrorReporter] = None,
    ) -> Optional[asyncio.Task]:
        """
        派生一个续作。

        同名续作仍在运行时不会重复派生，返回 None。

        Args:
            name: 续作名称（如 "tunnel"、"backup"）
            body: 无参协程函数
            on_error: 续作抛出异常时的上报回调（写状态 Option）
        """
        self._prune()
        if self.is_active(name):
            _logger.warning(f"续作 {name} 仍在运行，忽略本次派生")
            return None

        async def _guarded():
            try:
                await body()
                _logger.info(f"续作完成: {name}")
            except asyncio.CancelledError:
                _logger.warning(f"续作被取消: {name}")
                raise
            except Exception as e:
                _logger.exception(f"续作异常: {name}: {e}")
                if on_error is not None:
                    try:
                        on_error(e)
                    except Exception:
                        _logger.exception(f"续作错误上报失败: {name}")

        task = asyncio.create_task(_guarded(), name=f"continuation:{name}")
        self._tasks[name] = task
        self._started_at[name] = time.time()
        _logger.info(f"续作已派生: {name}")
        return task

    def _prune(self):
        for name in [n for n, t in self._tasks.items() if t.done()]:
            self._tasks.pop(name, None)
            self._started_at.pop(name, None)

    def is_active(self, name: str) -> bool:
        task = self._tasks.get(name)
        return task is not None and not task.done()

    def active(self) -> list[dict]:
        self._prune()
        return [
            {"name": name, "started_at": self._started_at.get(name)}
            for name in sorted(self._tasks)
        ]

    async def join(self, timeout: Optional[float] = None):
        """等待当前所有续作结束（测试与关闭时使用）"""
        tasks = [t for t in self._tasks.values() if not t.done()]
        if tasks:
            await asyncio.wait(tasks, timeout=timeout)
        self._prune()

    async def cancel_all(self):
        """进程关闭时取消仍在运行的续作"""
        tasks = [t for t in self._tasks.values() if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._prune()


async def wait_for_path(path: str, interval: float, timeout: Optional[float]) -> bool:
    """
    按固定间隔轮询，直到 path 存在。

    Returns:
        文件出现返回 True；超时返回 False
    """
    deadline = None if timeout is None else time.monotonic() + timeout
    while not os.path.exists(path):
        if deadline is not None and time.monotonic() >= deadline:
            return False
        await asyncio.sleep(interval)
    return True
