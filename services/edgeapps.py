"""
EdgeApp 管理

目录约定（paths.apps_dir/<id>/）：
- edgebox-compose.yml   应用清单（services 段列出容器服务）
- .run                  安装标记（存在即已安装）
- .stop                 停止标记（运行时重建后保持关闭）
- myedgeapp.env         在线访问配置（INTERNET_URL=...）

状态为派生状态：compute_status 只读取实际运行情况，
publish_list 才把快照写入 Option 表，两步分开。
"""

import os
from typing import Optional

import yaml
from dotenv import dotenv_values

from core.logger import get_logger
from models.edgeapp import EdgeApp, EdgeAppService, EdgeAppStatus, EdgeAppStatusCode
from services.executor import CommandRunner
from services.option_store import Options

_logger = get_logger("services.edgeapps")

MANIFEST_FILENAME = "edgebox-compose.yml"
INSTALL_MARKER = ".run"
STOP_MARKER = ".stop"
ONLINE_ENV_FILENAME = "myedgeapp.env"


def classify_edgeapp_status(installed: bool, running: int, total: int) -> EdgeAppStatusCode:
    """
    EdgeApp 状态分类：

    - 未安装：没有安装标记（不看服务状态）
    - off：没有服务在运行
    - on：全部服务在运行
    - error：部分服务在运行（单独上报，不归为 off）
    """
    if not installed:
        return EdgeAppStatusCode.NOT_INSTALLED
    if running <= 0:
        return EdgeAppStatusCode.OFF
    if running >= total:
        return EdgeAppStatusCode.ON
    return EdgeAppStatusCode.ERROR


class EdgeAppManager:
    """EdgeApp 发现、状态计算与生命周期操作"""

    def __init__(self, config, runner: CommandRunner, options: Options):
        self._apps_dir = config.get("paths.apps_dir")
        self._ws_dir = config.get("paths.ws_dir")
        self._dashboard_dir = config.get("paths.dashboard_dir")
        self._runner = runner
        self._options = options

    # ──────────────────────────────────────────
    # 路径与清单
    # ──────────────────────────────────────────

    def _app_path(self, app_id: str, *parts: str) -> str:
        return os.path.join(self._apps_dir, app_id, *parts)

    def exists(self, app_id: str) -> bool:
        if not app_id or os.sep in app_id or app_id.startswith("."):
            return False
        return os.path.isfile(self._app_path(app_id, MANIFEST_FILENAME))

    def is_installed(self, app_id: str) -> bool:
        return os.path.isfile(self._app_path(app_id, INSTALL_MARKER))

    def list_ids(self) -> list[str]:
        if not os.path.isdir(self._apps_dir):
            _logger.warning(f"EdgeApp 目录不存在: {self._apps_dir}")
            return []
        return sorted(name for name in os.listdir(self._apps_dir) if self.exists(name))

    def _load_manifest(self, app_id: str) -> dict:
        try:
            with open(self._app_path(app_id, MANIFEST_FILENAME), "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            _logger.error(f"读取 EdgeApp 清单失败 [{app_id}]: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def declared_services(self, app_id: str) -> list[str]:
        services = self._load_manifest(app_id).get("services") or {}
        return list(services.keys()) if isinstance(services, dict) else []

    def container_name(self, app_id: str, service: str) -> str:
        return f"{app_id}-{service}"

    def _internet_url(self, app_id: str) -> str:
        env_path = self._app_path(app_id, ONLINE_ENV_FILENAME)
        if not os.path.isfile(env_path):
            return ""
        return dotenv_values(env_path).get("INTERNET_URL") or ""

    # ──────────────────────────────────────────
    # 状态聚合
    # ──────────────────────────────────────────

    async def _service_states(self, app_id: str) -> list[EdgeAppService]:
        states = []
        for service in self.declared_services(app_id):
            output = await self._runner.run(
                None, "docker",
                ["inspect", "-f", "{{.State.Running}}", self.container_name(app_id, service)],
            )
            states.append(EdgeAppService(id=service, is_running=output.strip() == "true"))
        return states

    async def compute_status(self, app_id: str) -> EdgeAppStatus:
        if not self.is_installed(app_id):
            return EdgeAppStatus.of(EdgeAppStatusCode.NOT_INSTALLED)
        services = await self._service_states(app_id)
        running = sum(1 for s in services if s.is_running)
        return EdgeAppStatus.of(classify_edgeapp_status(True, running, len(services)))

    async def get_edgeapp(self, app_id: str, hostname: str = "") -> Optional[EdgeApp]:
        if not self.exists(app_id):
            return None

        manifest = self._load_manifest(app_id)
        installed = self.is_installed(app_id)
        services = await self._service_states(app_id) if installed else [
            EdgeAppService(id=s) for s in self.declared_services(app_id)
        ]
        running = sum(1 for s in services if s.is_running)
        internet_url = self._internet_url(app_id)

        return EdgeApp(
            id=app_id,
            name=str(manifest.get("name") or app_id),
            status=EdgeAppStatus.of(classify_edgeapp_status(installed, running, len(services))),
            services=services,
            internet_accessible=bool(internet_url),
            network_url=f"{app_id}.{hostname}.local" if hostname else "",
            internet_url=internet_url,
        )

    async def list_edgeapps(self, hostname: str = "") -> list[EdgeApp]:
        apps = []
        for app_id in self.list_ids():
            app = await self.get_edgeapp(app_id, hostname)
            if app is not None:
                apps.append(app)
        return apps

    async def publish_list(self, hostname: str = "") -> list[EdgeApp]:
        """重新计算全部 EdgeApp 并写入 EDGEAPPS_LIST 快照"""
        apps = await self.list_edgeapps(hostname)
        self._options.set_edgeapps(apps)
        _logger.debug(f"EdgeApp 列表已发布: {len(apps)} 个")
        return apps

    # ──────────────────────────────────────────
    # 生命周期
    # ──────────────────────────────────────────

    async def rebuild_runtime(self) -> str:
        """重建运行时（ws --build）"""
        _logger.info("正在重建 EdgeApp 运行时")
        return await self._runner.run_streaming(self._ws_dir, "./ws", ["-b"])

    def mark_installed(self, app_id: str):
        with open(self._app_path(app_id, INSTALL_MARKER), "w", encoding="utf-8"):
            pass

    def _remove_file(self, app_id: str, filename: str):
        path = self._app_path(app_id, filename)
        if os.path.isfile(path):
            os.remove(path)

    async def start(self, app_id: str):
        self._remove_file(app_id, STOP_MARKER)
        containers = [self.container_name(app_id, s) for s in self.declared_services(app_id)]
        if containers:
            await self._runner.run(self._ws_dir, "docker", ["start", *containers])

    async def stop(self, app_id: str):
        with open(self._app_path(app_id, STOP_MARKER), "w", encoding="utf-8"):
            pass
        containers = [self.container_name(app_id, s) for s in self.declared_services(app_id)]
        if containers:
            await self._runner.run(self._ws_dir, "docker", ["stop", *containers])

    async def remove(self, app_id: str):
        containers = [self.container_name(app_id, s) for s in self.declared_services(app_id)]
        if containers:
            await self._runner.run(self._ws_dir, "docker", ["rm", "-f", *containers])
        for filename in (INSTALL_MARKER, STOP_MARKER, ONLINE_ENV_FILENAME):
            self._remove_file(app_id, filename)

    def set_online(self, app_id: str, internet_url: str):
        with open(self._app_path(app_id, ONLINE_ENV_FILENAME), "w", encoding="utf-8") as f:
            f.write(f"INTERNET_URL={internet_url}\n")

    def set_offline(self, app_id: str):
        self._remove_file(app_id, ONLINE_ENV_FILENAME)

    # ──────────────────────────────────────────
    # 控制面板公网访问
    # ──────────────────────────────────────────

    def set_dashboard_online(self, internet_url: str):
        os.makedirs(self._dashboard_dir, exist_ok=True)
        with open(os.path.join(self._dashboard_dir, ONLINE_ENV_FILENAME), "w", encoding="utf-8") as f:
            f.write(f"INTERNET_URL={internet_url}\n")

    def set_dashboard_offline(self):
        path = os.path.join(self._dashboard_dir, ONLINE_ENV_FILENAME)
        if os.path.isfile(path):
            os.remove(path)
