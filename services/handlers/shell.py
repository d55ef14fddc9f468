"""
共享终端任务处理器

start_shell 读取到会话链接后返回；"shell" 续作等待进程退出
（最长 timeout 秒，超时终止），然后发布 not_running。
"""

from typing import Optional

from core.logger import get_logger
from models.option import ShellState, ShellStatus
from models.task import StartShellArgs
from services.continuations import ContinuationRegistry
from services.dispatcher import HandlerRegistry
from services.executor import RunningCommand
from services.option_store import Options
from services.shell import ShellService

_logger = get_logger("services.handlers.shell")

CONTINUATION_NAME = "shell"


class ShellHandlers:

    def __init__(self, shell: ShellService, options: Options, continuations: ContinuationRegistry):
        self._shell = shell
        self._options = options
        self._continuations = continuations

    def register(self, registry: HandlerRegistry):
        registry.add("start_shell", self.start, StartShellArgs)
        registry.add("stop_shell", self.stop)

    def _report_error(self, error: BaseException):
        self._options.set_shell_status(ShellStatus(status=ShellState.ERROR))

    async def start(self, args: StartShellArgs) -> Optional[str]:
        if self._continuations.is_active(CONTINUATION_NAME):
            current = self._options.shell_status()
            if current is not None and current.url:
                return current.url
            return None

        process, url = await self._shell.open()
        if process is None:
            self._options.set_shell_status(ShellStatus(status=ShellState.ERROR))
            return None

        self._options.set_shell_status(ShellStatus(status=ShellState.RUNNING, url=url))
        timeout = args.timeout or self._shell.default_timeout

        async def _watch():
            await self._watch(process, timeout)

        self._continuations.spawn(CONTINUATION_NAME, _watch, on_error=self._report_error)
        return url

    async def _watch(self, process: RunningCommand, timeout: int):
        await self._shell.wait(process, timeout)
        self._options.set_shell_status(ShellStatus(status=ShellState.NOT_RUNNING))

    async def stop(self, _args=None) -> Optional[str]:
        self._shell.close()
        self._options.set_shell_status(ShellStatus(status=ShellState.NOT_RUNNING))
        return "OK"
