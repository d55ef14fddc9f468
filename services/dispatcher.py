"""
任务分发器

状态机：created → executing → finished / error

1. 认领：先持久化 executing，再运行任何 Handler 代码（崩溃后可被 tick 1 恢复发现）
2. 查找 Handler、解码参数；任一失败 → error（固定诊断 "Invalid Task"），Handler 不会被调用
3. 同步等待 Handler；返回 str 视为成功，返回 None 或抛出异常视为失败
4. 无条件进入终态；Handler 派生的续作即使仍在运行，任务也已结束
5. dev 发布模式：认领后直接 error，不运行 Handler
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel, ValidationError

from core.logger import get_logger, task_context
from models.task import RESULT_ERROR, RESULT_INVALID_TASK, Task, TaskStatus
from services.task_queue import TaskQueue

_logger = get_logger("services.dispatcher")

HandlerFunc = Callable[[Optional[BaseModel]], Awaitable[Optional[str]]]


class ArgsDecodeError(ValueError):
    """任务参数无法解码为 Handler 需要的模型"""


@dataclass
class TaskHandler:
    """一个任务类型的处理器：参数模型 + 执行函数"""
    kind: str
    func: HandlerFunc
    args_model: Optional[type[BaseModel]] = None

    def decode(self, raw: Any) -> Optional[BaseModel]:
        if self.args_model is None:
            return None
        try:
            if raw is None or (isinstance(raw, str) and not raw.strip()):
                return self.args_model.model_validate({})
            if isinstance(raw, str):
                return self.args_model.model_validate_json(raw)
            return self.args_model.model_validate(raw)
        except ValidationError as e:
            raise ArgsDecodeError(f"{self.kind}: {e.error_count()} 个参数错误") from e


class HandlerRegistry:
    """
    任务类型 → Handler 的注册表。

    启动时由各 Handler 组调用 register() 构建一次；
    新增任务类型只需注册，不需要修改分发逻辑。
    """

    def __init__(self):
        self._handlers: dict[str, TaskHandler] = {}

    def add(self, kind: str, func: HandlerFunc, args_model: Optional[type[BaseModel]] = None):
        if kind in self._handlers:
            raise ValueError(f"任务类型重复注册: {kind}")
        self._handlers[kind] = TaskHandler(kind=kind, func=func, args_model=args_model)

    def register(self, kind: str, args_model: Optional[type[BaseModel]] = None):
        """装饰器形式的 add()"""
        def decorator(func: HandlerFunc) -> HandlerFunc:
            self.add(kind, func, args_model)
            return func
        return decorator

    def get(self, kind: str) -> Optional[TaskHandler]:
        return self._handlers.get(kind)

    def kinds(self) -> list[str]:
        return sorted(self._handlers)

    def __contains__(self, kind: str) -> bool:
        return kind in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)


class TaskDispatcher:
    """任务分发器"""

    def __init__(self, queue: TaskQueue, registry: HandlerRegistry, dev_mode: bool = False):
        self._queue = queue
        self._registry = registry
        self._dev_mode = dev_mode

    @property
    def registry(self) -> HandlerRegistry:
        return self._registry

    async def execute(self, task: Task, claim: bool = True) -> TaskStatus:
        """
        执行一个任务直到终态。

        Args:
            task: 待执行任务
            claim: 是否先标记为 executing（崩溃恢复时任务已处于 executing）

        Returns:
            任务的终态
        """
        with task_context(task.id, task.kind):
            return await self._execute(task, claim)

    async def _execute(self, task: Task, claim: bool) -> TaskStatus:
        if claim:
            self._queue.mark_executing(task.id)

        _logger.info(f"执行任务 #{task.id} {task.kind} / 参数: {task.args or '无'}")

        if self._dev_mode:
            _logger.info("dev 模式，不执行任务")
            self._queue.mark_error(task.id, RESULT_INVALID_TASK)
            return TaskStatus.ERROR

        handler = self._registry.get(task.kind)
        if handler is None:
            _logger.warning(f"未知任务类型: {task.kind}")
            self._queue.mark_error(task.id, RESULT_INVALID_TASK)
            return TaskStatus.ERROR

        try:
            args = handler.decode(task.args)
        except ArgsDecodeError as e:
            _logger.warning(f"任务 #{task.id} 参数解码失败: {e}")
            self._queue.mark_error(task.id, RESULT_INVALID_TASK)
            return TaskStatus.ERROR

        result = await self._invoke(handler, args)

        if result is None:
            self._queue.mark_error(task.id, RESULT_ERROR)
            _logger.warning(f"任务 #{task.id} {task.kind} → error")
            return TaskStatus.ERROR

        self._queue.mark_finished(task.id, result)
        _logger.info(f"任务 #{task.id} {task.kind} → finished")
        return TaskStatus.FINISHED

    async def _invoke(self, handler: TaskHandler, args: Optional[BaseModel]) -> Optional[str]:
        try:
            return await handler.func(args)
        except Exception as e:
            _logger.exception(f"Handler 异常 [{handler.kind}]: {e}")
            return None

    async def trigger(self, kind: str, args: Any = None) -> Optional[str]:
        """
        绕过队列直接运行一个 Handler（供调度规则使用，例如自动备份）。
        """
        handler = self._registry.get(kind)
        if handler is None:
            _logger.error(f"调度触发了未注册的任务类型: {kind}")
            return None
        if self._dev_mode:
            _logger.info(f"dev 模式，跳过调度触发: {kind}")
            return None
        try:
            decoded = handler.decode(args)
        except ArgsDecodeError as e:
            _logger.error(f"调度触发参数错误: {e}")
            return None
        return await self._invoke(handler, decoded)

    async def recover(self) -> Optional[Task]:
        """
        崩溃恢复：重新执行最近一个停留在 executing 的任务。

        其余停留在 executing 的任务保持原状（至多重试一个）。

        Returns:
            被重新执行的任务；没有则返回 None
        """
        stuck = self._queue.list_executing()
        if not stuck:
            return None

        latest = max(stuck, key=lambda t: (t.created, t.id))
        abandoned = [t.id for t in stuck if t.id != latest.id]
        _logger.warning(f"发现 {len(stuck)} 个未完成任务，重新执行 #{latest.id} {latest.kind}")
        if abandoned:
            _logger.warning(f"放弃恢复的任务: {abandoned}")

        await self.execute(latest, claim=False)
        return latest
