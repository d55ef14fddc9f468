"""
备份服务（restic）

仓库地址与凭据由 BACKUP_* 选项决定：
- s3      → s3:s3.amazonaws.com/<repo>   AWS_ACCESS_KEY_ID / AWS_SECRET_ACCESS_KEY
- b2      → b2:<repo>                    B2_ACCOUNT_ID / B2_ACCOUNT_KEY
- wasabi  → s3:s3.wasabisys.com/<repo>   AWS_ACCESS_KEY_ID / AWS_SECRET_ACCESS_KEY

凭据只通过子进程环境传给 restic，不写入本进程的 os.environ。
restic 的成败通过输出中的 "Fatal:" 判断（执行器不抛异常）。
"""

import json
import os
import time
from typing import Optional

from core.logger import get_logger
from models.option import BackupSettings, BackupState
from services.executor import CommandRunner
from services.option_store import Options

_logger = get_logger("services.backups")

FATAL_MARKER = "Fatal:"

_REPOSITORY_PREFIXES = {
    "s3": "s3:s3.amazonaws.com/",
    "b2": "b2:",
    "wasabi": "s3:s3.wasabisys.com/",
}

_CREDENTIAL_VARIABLES = {
    "s3": ("AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY"),
    "b2": ("B2_ACCOUNT_ID", "B2_ACCOUNT_KEY"),
    "wasabi": ("AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY"),
}

SUPPORTED_SERVICES = tuple(_REPOSITORY_PREFIXES)


class BackupError(RuntimeError):
    """restic 输出中出现 Fatal:"""


def has_failed(output: str) -> bool:
    return FATAL_MARKER in (output or "")


def repository_url(settings: BackupSettings) -> str:
    prefix = _REPOSITORY_PREFIXES.get(settings.service)
    if prefix is None:
        raise ValueError(f"不支持的备份服务: {settings.service}")
    return prefix + settings.repository


def restic_env(settings: BackupSettings, password_file: str) -> dict[str, str]:
    """构造一次 restic 调用所需的环境变量"""
    key_var, secret_var = _CREDENTIAL_VARIABLES[settings.service]
    return {
        "RESTIC_REPOSITORY": repository_url(settings),
        "RESTIC_PASSWORD_FILE": password_file,
        key_var: settings.access_key_id,
        secret_var: settings.secret_access_key,
    }


def _fatal_line(output: str) -> str:
    for line in output.splitlines():
        if FATAL_MARKER in line:
            return line.strip()
    return output.strip()


class BackupService:
    """restic 仓库初始化、备份、恢复与统计"""

    def __init__(self, config, runner: CommandRunner, options: Options):
        self._runner = runner
        self._options = options
        self._program = config.get("backup.program", "restic")
        self._password_file = config.get("paths.backup_password_file")
        self._backup_paths = list(config.get("paths.backup_paths") or [])
        self._restore_target = config.get("backup.restore_target", "/")

    @property
    def password_file(self) -> str:
        return self._password_file

    # ── 密码文件 ──

    def write_password_file(self, password: str):
        directory = os.path.dirname(self._password_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self._password_file, "w", encoding="utf-8") as f:
            f.write(password)
        os.chmod(self._password_file, 0o600)

    def remove_password_file(self):
        if os.path.isfile(self._password_file):
            os.remove(self._password_file)

    # ── restic 调用 ──

    def _settings(self) -> BackupSettings:
        settings = self._options.backup_settings()
        if settings is None:
            raise BackupError("备份尚未配置")
        return settings

    async def _restic(self, settings: BackupSettings, args: list[str], streaming: bool = False) -> str:
        env = restic_env(settings, self._password_file)
        if streaming:
            return await self._runner.run_streaming(None, self._program, args, env=env)
        return await self._runner.run(None, self._program, args, env=env)

    async def init_repository(self, settings: BackupSettings, password: str) -> str:
        """
        保存设置、写入密码文件并初始化仓库。

        Raises:
            BackupError: restic 报告 Fatal:（BACKUP_STATUS 已置为 error）
        """
        self._options.set_backup_status(BackupState.INITIATING)
        self._options.set_backup_settings(settings)
        self.write_password_file(password)

        _logger.info(f"正在初始化备份仓库: {repository_url(settings)}")
        output = await self._restic(settings, ["init"])

        # 已存在的仓库同样可用
        if has_failed(output) and "already" not in output:
            message = _fatal_line(output)
            self._options.set_backup_status(BackupState.ERROR)
            self._options.set_backup_error(message)
            raise BackupError(message)

        self._options.set_backup_status(BackupState.WORKING)
        self._options.set_backup_error("")
        _logger.info("备份仓库可用")
        return output

    async def run_backup(self) -> str:
        settings = self._settings()
        self._options.set_backup_running(True)
        try:
            output = await self._restic(settings, ["backup", *self._backup_paths], streaming=True)
        finally:
            self._options.set_backup_running(False)

        if has_failed(output):
            message = _fatal_line(output)
            self._options.set_backup_status(BackupState.ERROR)
            self._options.set_backup_error(message)
            raise BackupError(message)

        self._options.set_backup_last_run(int(time.time()))
        self._options.set_backup_error("")
        _logger.info("备份完成")
        await self.refresh_stats()
        return output

    async def restore(self) -> str:
        settings = self._settings()
        _logger.info(f"正在从最新快照恢复到 {self._restore_target}")
        output = await self._restic(
            settings, ["restore", "latest", "--target", self._restore_target], streaming=True,
        )
        if has_failed(output):
            message = _fatal_line(output)
            self._options.set_backup_error(message)
            raise BackupError(message)
        return output

    async def refresh_stats(self) -> Optional[dict]:
        """读取仓库统计与快照列表，发布 BACKUP_STATS；未配置时跳过"""
        settings = self._options.backup_settings()
        if settings is None or self._options.backup_status() != BackupState.WORKING.value:
            return None

        stats_output = await self._restic(settings, ["stats", "--json"])
        snapshots_output = await self._restic(settings, ["snapshots", "--json"])

        if not stats_output.strip() or not snapshots_output.strip():
            _logger.warning("restic 没有返回统计数据，保留上一次的 BACKUP_STATS")
            return None

        try:
            stats = json.loads(stats_output)
            snapshots = json.loads(snapshots_output)
        except ValueError:
            _logger.warning("restic 统计输出不是合法 JSON")
            return None

        summary = {
            "total_size": stats.get("total_size", 0),
            "total_file_count": stats.get("total_file_count", 0),
            "snapshot_count": len(snapshots),
            "snapshots": [
                {"id": s.get("short_id") or s.get("id", ""), "time": s.get("time", "")}
                for s in snapshots
            ],
        }
        self._options.set_backup_stats(summary)
        return summary

    def disable(self):
        self.remove_password_file()
        self._options.clear_backup()
        _logger.info("备份已停用")
