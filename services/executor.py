"""
命令执行器

执行外部程序并捕获输出：
- run：捕获 stdout，返回去除首尾空白后的文本
- run_streaming：边执行边把每一行写入日志，同时返回完整输出
- spawn：启动长时间运行的进程，逐行扫描输出（隧道登录、共享终端）

约定：非零退出码、程序不存在、超时都不会抛出异常，
只记录日志并把已捕获的输出返回给调用方，由调用方根据输出内容
（如 "Fatal:"）判断成败。

使用 subprocess + asyncio.to_thread 实现异步执行，不阻塞事件循环。
"""

import asyncio
import os
import re
import subprocess
import threading
from typing import Optional

from core.logger import get_logger

_logger = get_logger("services.executor")


def _decode(data: bytes) -> str:
    """尝试多种编码解码输出"""
    if not data:
        return ""
    for encoding in ("utf-8", "latin-1"):
        try:
            return data.decode(encoding)
        except (UnicodeDecodeError, LookupError):
            continue
    return data.decode("utf-8", errors="replace")


def _merge_env(env: Optional[dict[str, str]]) -> Optional[dict[str, str]]:
    """子进程环境 = 当前环境 + 本次调用的附加变量（不修改本进程的 os.environ）"""
    if not env:
        return None
    merged = dict(os.environ)
    merged.update(env)
    return merged


class RunningCommand:
    """
    一个正在运行的外部进程。

    stdout 与 stderr 合并后按行读取；读取发生在工作线程中。
    """

    def __init__(self, proc: subprocess.Popen, description: str):
        self._proc = proc
        self._description = description
        self._lines: list[str] = []
        self._lock = threading.Lock()

    @property
    def pid(self) -> int:
        return self._proc.pid

    @property
    def output(self) -> str:
        with self._lock:
            return "\n".join(self._lines)

    def _read_until(self, pattern: re.Pattern) -> Optional[str]:
        if self._proc.stdout is None:
            return None
        for raw in iter(self._proc.stdout.readline, b""):
            line = _decode(raw).rstrip()
            with self._lock:
                self._lines.append(line)
            _logger.debug(f"[{self._description}] {line}")
            match = pattern.search(line)
            if match:
                return match.group(0)
        return None

    async def scan(self, pattern: re.Pattern, timeout: Optional[float] = None) -> Optional[str]:
        """
        逐行读取输出，直到某一行匹配 pattern。

        Returns:
            第一个匹配的文本；进程结束或超时仍未匹配则返回 None
        """
        try:
            return await asyncio.wait_for(asyncio.to_thread(self._read_until, pattern), timeout)
        except asyncio.TimeoutError:
            _logger.warning(f"等待输出超时({timeout}s): {self._description}")
            return None

    async def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        """
        等待进程退出并排空剩余输出。

        Returns:
            退出码；超时返回 None（进程仍在运行）
        """
        def _drain_and_wait() -> int:
            if self._proc.stdout is not None:
                for raw in iter(self._proc.stdout.readline, b""):
                    with self._lock:
                        self._lines.append(_decode(raw).rstrip())
            return self._proc.wait()

        try:
            return await asyncio.wait_for(asyncio.to_thread(_drain_and_wait), timeout)
        except asyncio.TimeoutError:
            return None

    def kill(self):
        if self._proc.poll() is None:
            _logger.info(f"终止进程: {self._description} (pid={self._proc.pid})")
            self._proc.kill()


class CommandRunner:
    """外部命令执行器"""

    def __init__(self, timeout: int = 3600):
        self._timeout = timeout

    async def run(
        self,
        cwd: Optional[str],
        program: str,
        args: Optional[list[str]] = None,
        env: Optional[dict[str, str]] = None,
    ) -> str:
        """
        执行命令，返回 stdout（去除首尾空白）。

        Args:
            cwd: 工作目录（None 表示继承）
            program: 程序名或路径
            args: 参数列表
            env: 附加的环境变量（仅对本次子进程生效）
        """
        return await asyncio.to_thread(self._run_sync, cwd, program, list(args or []), env)

    async def run_lines(self, cwd: Optional[str], program: str, args: Optional[list[str]] = None) -> list[str]:
        output = await self.run(cwd, program, args)
        return [line for line in output.splitlines() if line.strip()]

    async def run_streaming(
        self,
        cwd: Optional[str],
        program: str,
        args: Optional[list[str]] = None,
        env: Optional[dict[str, str]] = None,
    ) -> str:
        """执行长时间命令，逐行转发到日志，返回完整输出（stdout + stderr）"""
        return await asyncio.to_thread(self._stream_sync, cwd, program, list(args or []), env)

    async def spawn(
        self,
        cwd: Optional[str],
        program: str,
        args: Optional[list[str]] = None,
        env: Optional[dict[str, str]] = None,
    ) -> Optional[RunningCommand]:
        """启动进程但不等待结束；程序无法启动时返回 None"""
        description = " ".join([program, *(args or [])])
        _logger.info(f"启动进程: {description}")
        try:
            proc = subprocess.Popen(
                [program, *(args or [])],
                cwd=cwd,
                env=_merge_env(env),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
            )
        except OSError as e:
            _logger.error(f"进程启动失败: {description}: {e}")
            return None
        return RunningCommand(proc, description)

    def _run_sync(self, cwd, program, args, env) -> str:
        description = " ".join([program, *args])
        _logger.debug(f"执行命令: {description}")
        try:
            proc = subprocess.run(
                [program, *args],
                cwd=cwd,
                env=_merge_env(env),
                capture_output=True,
                timeout=self._timeout,
            )
        except subprocess.TimeoutExpired as e:
            _logger.warning(f"命令执行超时({self._timeout}s): {description}")
            return _decode(e.stdout or b"").strip(" \n")
        except OSError as e:
            _logger.error(f"命令执行失败: {description}: {e}")
            return ""

        if proc.returncode != 0:
            _logger.debug(f"命令退出码 {proc.returncode}: {description}: {_decode(proc.stderr).strip()}")

        return _decode(proc.stdout).strip(" \n")

    def _stream_sync(self, cwd, program, args, env) -> str:
        description = " ".join([program, *args])
        _logger.info(f"执行命令（流式）: {description}")
        lines: list[str] = []
        try:
            with subprocess.Popen(
                [program, *args],
                cwd=cwd,
                env=_merge_env(env),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
            ) as proc:
                for raw in iter(proc.stdout.readline, b""):
                    line = _decode(raw).rstrip()
                    lines.append(line)
                    _logger.info(f"[{program}] {line}")
                returncode = proc.wait()
        except OSError as e:
            _logger.error(f"命令执行失败: {description}: {e}")
            return "\n".join(lines)

        if returncode != 0:
            _logger.warning(f"命令退出码 {returncode}: {description}")
        return "\n".join(lines)
