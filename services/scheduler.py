"""
调度器

每个 tick 按顺序评估固定的节奏规则表（谓词只依赖 tick），
命中的规则依次执行。规则及规则内的单个步骤失败只记录日志，
不影响后续步骤与规则；
StorageError 例外：直接向上抛出，终止本次 tick。
"""

import inspect
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from core.config import RELEASE_CLOUD
from core.logger import get_logger
from models.option import BackupState
from services.backups import BackupService
from services.database import StorageError
from services.dispatcher import TaskDispatcher
from services.edgeapps import EdgeAppManager
from services.option_store import Options
from services.storage_devices import StorageDeviceService
from services.system import SystemService

_logger = get_logger("services.scheduler")

AUTO_BACKUP_KIND = "start_backup"


@dataclass(frozen=True)
class CadenceRule:
    name: str
    predicate: Callable[[int], bool]
    action: Callable[[], Awaitable[None]]


def every(period: int) -> Callable[[int], bool]:
    return lambda tick: tick % period == 0


def at_startup(tick: int) -> bool:
    return tick == 1


class Scheduler:
    """节奏规则表"""

    def __init__(
        self,
        config,
        options: Options,
        system: SystemService,
        storage: StorageDeviceService,
        edgeapps: EdgeAppManager,
        backups: BackupService,
        dispatcher: TaskDispatcher,
        clock: Callable[[], float] = time.time,
    ):
        self._config = config
        self._options = options
        self._system = system
        self._storage = storage
        self._edgeapps = edgeapps
        self._backups = backups
        self._dispatcher = dispatcher
        self._clock = clock
        self._freshness = int(config.get("backup.freshness_seconds", 3600))

        self._rules: list[CadenceRule] = [
            CadenceRule("startup", at_startup, self._on_startup),
            CadenceRule("every_5", every(5), self._every_5),
            CadenceRule("every_15", every(15), self._every_15),
            CadenceRule("every_30", every(30), self._every_30),
            CadenceRule("every_60", every(60), self._every_60),
            CadenceRule("every_3600", every(3600), self._every_3600),
            CadenceRule("every_86400", every(86400), self._every_86400),
        ]

    @property
    def rules(self) -> list[CadenceRule]:
        return list(self._rules)

    def rules_for(self, tick: int) -> list[str]:
        """给定 tick 会执行的规则名称（按表顺序）"""
        return [rule.name for rule in self._rules if rule.predicate(tick)]

    async def run_schedules(self, tick: int) -> list[str]:
        fired = []
        for rule in self._rules:
            if not rule.predicate(tick):
                continue
            fired.append(rule.name)
            try:
                await rule.action()
            except StorageError:
                raise
            except Exception as e:
                _logger.exception(f"调度规则 {rule.name} 执行失败: {e}")
        return fired

    # ──────────────────────────────────────────
    # 规则
    # ──────────────────────────────────────────

    async def _run_steps(self, rule: str, steps: list[tuple[str, Callable[[], Any]]]):
        """
        规则内的各步骤相互独立：一步失败只记录日志，后续步骤照常执行。
        StorageError 仍然向上抛出。
        """
        for label, step in steps:
            try:
                result = step()
                if inspect.isawaitable(result):
                    await result
            except StorageError:
                raise
            except Exception as e:
                _logger.exception(f"调度规则 {rule} 的步骤 {label} 失败: {e}")

    async def _setup_cloud_options(self):
        if self._config.release == RELEASE_CLOUD:
            await self._system.setup_cloud_options()

    async def _publish_edgeapps(self):
        await self._edgeapps.publish_list(self._system.hostname())

    async def _on_startup(self):
        _logger.info("执行启动任务")
        await self._run_steps("startup", [
            ("cloud_options", self._setup_cloud_options),
            ("identity", self._system.publish_identity),
            ("storage_devices", self._storage.publish),
            ("rebuild_runtime", self._edgeapps.rebuild_runtime),
            ("edgeapps_list", self._publish_edgeapps),
            ("check_updates", self._system.check_updates),
        ])

    async def _every_5(self):
        await self._run_steps("every_5", [
            ("uptime", self._system.publish_uptime),
            ("storage_devices", self._storage.publish),
        ])

    async def _every_15(self):
        await self._system.refresh_browserdev_status()

    async def _every_30(self):
        await self._run_steps("every_30", [
            ("edgeapps_list", self._publish_edgeapps),
            ("auto_backup", self.check_auto_backup),
        ])

    async def _every_60(self):
        self._system.publish_ip_address()

    async def _every_3600(self):
        await self._run_steps("every_3600", [
            ("backup_stats", self._backups.refresh_stats),
            ("check_updates", self._system.check_updates),
        ])

    async def _every_86400(self):
        await self._edgeapps.rebuild_runtime()

    # ──────────────────────────────────────────
    # 自动备份
    # ──────────────────────────────────────────

    def should_auto_backup(self) -> bool:
        """
        上次备份距今超过 backup.freshness_seconds，且仓库状态为 working。

        没有上次备份记录时不触发（首次备份由用户发起）。
        """
        last_run = self._options.backup_last_run()
        if last_run is None:
            return False
        elapsed = self._clock() - last_run
        if elapsed <= self._freshness:
            return False
        return self._options.backup_status() == BackupState.WORKING.value

    async def check_auto_backup(self) -> Optional[str]:
        if not self.should_auto_backup():
            return None
        _logger.info("上次备份已过期，触发自动备份")
        return await self._dispatcher.trigger(AUTO_BACKUP_KIND)
