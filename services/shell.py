"""
共享终端（sshx）

启动共享程序并读取会话链接；同一时间只保留一个会话进程。
"""

import re
from typing import Optional

from core.logger import get_logger
from services.executor import CommandRunner, RunningCommand

_logger = get_logger("services.shell")

SESSION_URL_PATTERN = re.compile(r"https://\S+")
SESSION_URL_TIMEOUT = 60


class ShellService:
    """共享终端会话"""

    def __init__(self, config, runner: CommandRunner):
        self._runner = runner
        self._program = config.get("shell.program", "sshx")
        self._default_timeout = int(config.get("shell.session_timeout", 3600))
        self._process: Optional[RunningCommand] = None

    @property
    def default_timeout(self) -> int:
        return self._default_timeout

    @property
    def process(self) -> Optional[RunningCommand]:
        return self._process

    async def open(self) -> tuple[Optional[RunningCommand], str]:
        """
        启动共享程序。

        Returns:
            (会话进程, 会话链接)；失败时为 (None, "")
        """
        self.close()
        process = await self._runner.spawn(None, self._program, ["-q"])
        if process is None:
            return None, ""

        url = await process.scan(SESSION_URL_PATTERN, timeout=SESSION_URL_TIMEOUT)
        if not url:
            _logger.warning("未能读取共享终端链接")
            process.kill()
            return None, ""

        self._process = process
        _logger.info(f"共享终端已启动: {url}")
        return process, url

    async def wait(self, process: RunningCommand, timeout: int) -> bool:
        """
        等待会话进程退出；超时则终止进程。

        Returns:
            进程自行退出返回 True，超时被终止返回 False
        """
        code = await process.wait(timeout=timeout)
        if code is None:
            _logger.info(f"共享终端超过 {timeout}s，正在关闭")
            process.kill()
            await process.wait(timeout=10)
            exited = False
        else:
            exited = True
        if self._process is process:
            self._process = None
        return exited

    def close(self):
        if self._process is not None:
            self._process.kill()
            self._process = None
