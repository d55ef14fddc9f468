"""
日志模块

基于标准 logging：
- 引导阶段只输出到 stderr，配置加载后按 logging 段重建 Handler
- agent.log 记录全部级别，error.log 只保留 ERROR 以上，均按大小轮转
- 每条日志带上引擎 tick 与正在执行的任务（contextvars，后台续作继承派生时的值）
"""

import contextvars
import logging
import os
import sys
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from typing import Iterator, Optional


ROOT_LOGGER_NAME = "agent"

DEFAULT_FORMAT = (
    "%(asctime)s | %(levelname)-8s | tick=%(tick)s %(task)s| "
    "%(name)s:%(funcName)s:%(lineno)d | %(message)s"
)
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_BOOT_FORMAT = "%(asctime)s | %(levelname)-8s | [BOOT] %(message)s"

_RESET = "\033[0m"
_LEVEL_COLORS = {
    logging.DEBUG: "\033[96m",
    logging.INFO: "\033[92m",
    logging.WARNING: "\033[93m",
    logging.ERROR: "\033[91m",
    logging.CRITICAL: "\033[41m\033[97m\033[1m",
}


# ──────────────────────────────────────────────
# 引擎上下文
# ──────────────────────────────────────────────

_tick_var: contextvars.ContextVar[int] = contextvars.ContextVar("agent_tick", default=0)
_task_var: contextvars.ContextVar[str] = contextvars.ContextVar("agent_task", default="")


def set_tick(tick: int):
    """由引擎在每次迭代开始时调用"""
    _tick_var.set(tick)


@contextmanager
def task_context(task_id: int, kind: str) -> Iterator[None]:
    """在 with 块内的日志中标注任务，例如 task=#12/install_edgeapp"""
    token = _task_var.set(f"task=#{task_id}/{kind} ")
    try:
        yield
    finally:
        _task_var.reset(token)


class EngineContextFilter(logging.Filter):
    """把 tick 与任务标注注入 LogRecord，供 %(tick)s / %(task)s 使用"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.tick = _tick_var.get()
        record.task = _task_var.get()
        return True


class ConsoleFormatter(logging.Formatter):
    """控制台 Formatter：按级别给级别名和消息着色，不改动 record 本身"""

    def __init__(self, fmt: str, colorize: bool = True):
        super().__init__(fmt=fmt, datefmt=DATE_FORMAT)
        self._colorize = colorize

    def format(self, record: logging.LogRecord) -> str:
        if not self._colorize:
            return super().format(record)
        color = _LEVEL_COLORS.get(record.levelno, "")
        colored = logging.makeLogRecord(record.__dict__)
        colored.levelname = f"{color}{record.levelname:<8}{_RESET}"
        colored.msg = f"{color}{record.getMessage()}{_RESET}"
        colored.args = None
        return super().format(colored)


# ──────────────────────────────────────────────
# Handler 管理
# ──────────────────────────────────────────────

_context_filter = EngineContextFilter()
_installed: list[logging.Handler] = []


def _root() -> logging.Logger:
    return logging.getLogger(ROOT_LOGGER_NAME)


def _install(handler: logging.Handler, level: int, formatter: logging.Formatter):
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(_context_filter)
    _root().addHandler(handler)
    _installed.append(handler)


def _remove_installed():
    root = _root()
    for handler in _installed:
        root.removeHandler(handler)
        handler.close()
    _installed.clear()


def _log_directory(directory: str) -> str:
    # 相对路径基于项目根目录（core/ 的上级）
    if os.path.isabs(directory):
        return directory
    project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    return os.path.join(project_root, directory)


def create_temporary_logger() -> logging.Logger:
    """引导阶段 Logger：stderr、DEBUG"""
    _remove_installed()
    root = _root()
    root.setLevel(logging.DEBUG)
    _install(logging.StreamHandler(sys.stderr), logging.DEBUG, ConsoleFormatter(_BOOT_FORMAT))
    return root


def reconfigure_logger(config: dict) -> logging.Logger:
    """
    按 Config 的 logging 段重建 Handler，替换引导阶段的 stderr 输出。

    Args:
        config: logging 配置段，结构见 core.config 的内置默认值
    """
    _remove_installed()
    root = _root()
    level = getattr(logging, str(config.get("level", "INFO")).upper(), logging.INFO)
    root.setLevel(level)
    log_format = config.get("format") or DEFAULT_FORMAT

    console = config.get("console", {})
    if console.get("enabled", True):
        _install(
            logging.StreamHandler(sys.stdout),
            level,
            ConsoleFormatter(log_format, colorize=console.get("colorize", True)),
        )

    files = config.get("file", {})
    if files.get("enabled", True):
        directory = _log_directory(files.get("directory", "logs"))
        os.makedirs(directory, exist_ok=True)
        plain = logging.Formatter(fmt=log_format, datefmt=DATE_FORMAT)
        for filename, file_level in (
            (files.get("app_log", "agent.log"), level),
            (files.get("error_log", "error.log"), logging.ERROR),
        ):
            handler = RotatingFileHandler(
                os.path.join(directory, filename),
                maxBytes=int(files.get("max_size_mb", 10)) * 1024 * 1024,
                backupCount=int(files.get("backup_count", 5)),
                encoding="utf-8",
            )
            _install(handler, file_level, plain)

    return root


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    获取 agent 根 Logger 下的子 Logger。

    Args:
        name: 如 "services.engine" → agent.services.engine
    """
    if name is None:
        return _root()
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
