"""
备份任务处理器

setup_backups / disable_backups 同步完成；
start_backup / restore_backup 立即确认，实际工作交给续作，
结果体现在 BACKUP_STATUS / BACKUP_IS_RUNNING / BACKUP_LAST_RUN / BACKUP_ERROR_MESSAGE。
"""

import json
from typing import Optional

from core.logger import get_logger
from models.option import BackupSettings, BackupState
from models.task import SetupBackupsArgs
from services.backups import BackupError, BackupService
from services.continuations import ContinuationRegistry
from services.dispatcher import HandlerRegistry
from services.edgeapps import EdgeAppManager
from services.option_store import Options
from services.system import SystemService

_logger = get_logger("services.handlers.backups")

BACKUP_CONTINUATION = "backup"
RESTORE_CONTINUATION = "restore"


class BackupHandlers:
    """备份设置、执行与恢复"""

    def __init__(
        self,
        backups: BackupService,
        edgeapps: EdgeAppManager,
        system: SystemService,
        options: Options,
        continuations: ContinuationRegistry,
    ):
        self._backups = backups
        self._edgeapps = edgeapps
        self._system = system
        self._options = options
        self._continuations = continuations

    def register(self, registry: HandlerRegistry):
        registry.add("setup_backups", self.setup, SetupBackupsArgs)
        registry.add("disable_backups", self.disable)
        registry.add("start_backup", self.start_backup)
        registry.add("restore_backup", self.restore)

    def _report_error(self, error: BaseException):
        self._options.set_backup_running(False)
        self._options.set_backup_status(BackupState.ERROR)
        self._options.set_backup_error(str(error))

    def _report_restore_error(self, error: BaseException):
        # 恢复失败不代表仓库不可用，BACKUP_STATUS 保持原值
        self._options.set_backup_error(str(error))

    async def setup(self, args: SetupBackupsArgs) -> Optional[str]:
        settings = BackupSettings(
            service=args.service,
            repository=args.repository_name,
            access_key_id=args.access_key_id,
            secret_access_key=args.secret_access_key,
        )
        try:
            await self._backups.init_repository(settings, args.repository_password)
        except BackupError as e:
            _logger.error(f"备份仓库初始化失败: {e}")
            return None
        await self._backups.refresh_stats()
        return json.dumps({"status": BackupState.WORKING.value, "service": settings.service})

    async def disable(self, _args=None) -> Optional[str]:
        self._backups.disable()
        return "OK"

    async def start_backup(self, _args=None) -> Optional[str]:
        if self._options.backup_settings() is None:
            _logger.warning("备份尚未配置，无法开始备份")
            return None

        task = self._continuations.spawn(
            BACKUP_CONTINUATION, self._backups.run_backup, on_error=self._report_error,
        )
        if task is None:
            return json.dumps({"backup": "already running"})
        return json.dumps({"backup": "started"})

    async def restore(self, _args=None) -> Optional[str]:
        if self._options.backup_settings() is None:
            _logger.warning("备份尚未配置，无法恢复")
            return None

        async def _restore():
            await self._backups.restore()
            await self._edgeapps.rebuild_runtime()
            await self._edgeapps.publish_list(self._system.hostname())

        task = self._continuations.spawn(
            RESTORE_CONTINUATION, _restore, on_error=self._report_restore_error,
        )
        if task is None:
            return json.dumps({"restore": "already running"})
        return json.dumps({"restore": "started"})
