"""
EdgeApp 任务处理器

同步、幂等：执行操作 → 重新计算状态并发布列表 → 返回该应用的快照（JSON）。
批量安装只在最后重建一次运行时、发布一次列表。
"""

import json
from typing import Optional

from core.logger import get_logger
from models.task import (
    BulkEdgeAppArgs,
    EdgeAppArgs,
    EnableOnlineArgs,
    PublicDashboardArgs,
)
from services.dispatcher import HandlerRegistry
from services.edgeapps import EdgeAppManager
from services.option_store import Options
from services.system import SystemService

_logger = get_logger("services.handlers.edgeapps")


class EdgeAppHandlers:
    """EdgeApp 生命周期与在线访问"""

    def __init__(self, edgeapps: EdgeAppManager, system: SystemService, options: Options):
        self._edgeapps = edgeapps
        self._system = system
        self._options = options

    def register(self, registry: HandlerRegistry):
        registry.add("install_edgeapp", self.install, EdgeAppArgs)
        registry.add("remove_edgeapp", self.remove, EdgeAppArgs)
        registry.add("start_edgeapp", self.start, EdgeAppArgs)
        registry.add("stop_edgeapp", self.stop, EdgeAppArgs)
        registry.add("enable_online", self.enable_online, EnableOnlineArgs)
        registry.add("disable_online", self.disable_online, EdgeAppArgs)
        registry.add("bulk_install_edgeapps", self.bulk_install, BulkEdgeAppArgs)
        registry.add("enable_public_dashboard", self.enable_public_dashboard, PublicDashboardArgs)
        registry.add("disable_public_dashboard", self.disable_public_dashboard)

    async def _publish(self):
        return await self._edgeapps.publish_list(self._system.hostname())

    async def _snapshot(self, app_id: str) -> Optional[str]:
        """发布列表，并返回其中该应用的快照"""
        apps = await self._publish()
        for app in apps:
            if app.id == app_id:
                return app.model_dump_json()
        return None

    def _check(self, app_id: str) -> bool:
        if not self._edgeapps.exists(app_id):
            _logger.warning(f"EdgeApp 不存在: {app_id}")
            return False
        return True

    # ── 单个应用 ──

    async def install(self, args: EdgeAppArgs) -> Optional[str]:
        if not self._check(args.id):
            return None
        self._edgeapps.mark_installed(args.id)
        await self._edgeapps.rebuild_runtime()
        return await self._snapshot(args.id)

    async def remove(self, args: EdgeAppArgs) -> Optional[str]:
        if not self._check(args.id):
            return None
        await self._edgeapps.remove(args.id)
        await self._edgeapps.rebuild_runtime()
        return await self._snapshot(args.id)

    async def start(self, args: EdgeAppArgs) -> Optional[str]:
        if not self._check(args.id):
            return None
        await self._edgeapps.start(args.id)
        return await self._snapshot(args.id)

    async def stop(self, args: EdgeAppArgs) -> Optional[str]:
        if not self._check(args.id):
            return None
        await self._edgeapps.stop(args.id)
        return await self._snapshot(args.id)

    async def enable_online(self, args: EnableOnlineArgs) -> Optional[str]:
        if not self._check(args.id):
            return None
        self._edgeapps.set_online(args.id, args.internet_url)
        await self._edgeapps.rebuild_runtime()
        return await self._snapshot(args.id)

    async def disable_online(self, args: EdgeAppArgs) -> Optional[str]:
        if not self._check(args.id):
            return None
        self._edgeapps.set_offline(args.id)
        await self._edgeapps.rebuild_runtime()
        return await self._snapshot(args.id)

    # ── 批量 ──

    async def bulk_install(self, args: BulkEdgeAppArgs) -> Optional[str]:
        installed = []
        for app_id in args.ids:
            if not self._check(app_id):
                continue
            self._edgeapps.mark_installed(app_id)
            installed.append(app_id)

        if not installed:
            return None

        await self._edgeapps.rebuild_runtime()
        apps = await self._publish()
        wanted = set(installed)
        return json.dumps(
            [app.model_dump(mode="json") for app in apps if app.id in wanted],
            ensure_ascii=False,
        )

    # ── 控制面板 ──

    async def enable_public_dashboard(self, args: PublicDashboardArgs) -> Optional[str]:
        self._edgeapps.set_dashboard_online(args.internet_url)
        await self._edgeapps.rebuild_runtime()
        self._options.set_public_dashboard(args.internet_url)
        return json.dumps({"public_dashboard": args.internet_url})

    async def disable_public_dashboard(self, _args=None) -> Optional[str]:
        self._edgeapps.set_dashboard_offline()
        await self._edgeapps.rebuild_runtime()
        self._options.set_public_dashboard("")
        return json.dumps({"public_dashboard": ""})
