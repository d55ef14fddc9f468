"""
系统服务

设备身份与遥测发布（IP、主机名、发布类型、运行时长）、
云版本首次启动的选项导入、系统更新检查与应用、browser-dev 状态。
"""

import os

from dotenv import dotenv_values

from core.logger import get_logger
from models.option import CLOUD_OPTION_NAMES
from services import collector
from services.executor import CommandRunner
from services.option_store import Options

_logger = get_logger("services.system")

BROWSERDEV_SERVICE = "code-server@system"
UPDATE_TARGETS_FILENAME = "targets.env"


def parse_update_targets(env: dict) -> list[dict]:
    """
    targets.env 中每行形如 API_VERSION=1.2.3，
    转换为 [{"target": "API", "version": "1.2.3"}]。
    """
    targets = []
    for key, value in env.items():
        if not key or value is None:
            continue
        targets.append({"target": key.replace("_VERSION", ""), "version": value})
    return targets


class SystemService:
    """系统级状态发布与维护操作"""

    def __init__(self, config, runner: CommandRunner, options: Options):
        self._config = config
        self._runner = runner
        self._options = options
        self._updater_dir = config.get("paths.updater_dir")

    # ── 遥测 ──

    def publish_uptime(self) -> int:
        uptime = collector.get_uptime_seconds()
        self._options.set_uptime(uptime)
        _logger.debug(f"运行时长: {collector.format_uptime(uptime)}")
        return uptime

    def publish_ip_address(self) -> str:
        ip = collector.get_ip_address()
        self._options.set_ip_address(ip)
        return ip

    def publish_identity(self):
        """发布 IP、主机名、发布类型（启动时）"""
        ip = self.publish_ip_address()
        hostname = collector.get_hostname()
        self._options.set_hostname(hostname)
        self._options.set_release_version(self._config.release)
        _logger.info(f"设备身份: {hostname} / {ip or '无 IP'} / {self._config.release}")

    def hostname(self) -> str:
        return collector.get_hostname()

    # ── 云版本 ──

    async def setup_cloud_options(self) -> int:
        """
        读取 cloud.env，把非空值写入 Option 表，然后删除该文件
        （只在首次启动时生效，避免覆盖之后的修改）。

        Returns:
            写入的选项个数
        """
        path = self._config.get("paths.cloud_env_file")
        if not path or not os.path.isfile(path):
            _logger.debug("没有 cloud.env，跳过云选项导入")
            return 0

        values = dotenv_values(path)
        written = 0
        for name in CLOUD_OPTION_NAMES:
            value = values.get(name.value)
            if value:
                self._options.set_cloud_option(name, value)
                written += 1

        os.remove(path)
        _logger.info(f"已导入 {written} 个云选项")
        return written

    # ── 系统更新 ──

    async def check_updates(self) -> list[dict]:
        """运行更新检查脚本，发布 SYSTEM_UPDATES；出错时发布空列表"""
        _logger.info("正在检查系统更新")
        await self._runner.run_streaming(self._updater_dir, "sh", ["run.sh", "--check"])

        targets_path = os.path.join(self._updater_dir, UPDATE_TARGETS_FILENAME)
        if not os.path.isfile(targets_path):
            _logger.info("没有 targets.env，无可用更新")
            self._options.set_system_updates([])
            return []

        targets = parse_update_targets(dotenv_values(targets_path))
        self._options.set_system_updates(targets)
        return targets

    async def apply_updates(self) -> str:
        _logger.info("正在应用系统更新")
        self._options.set_updating_system(True)
        try:
            output = await self._runner.run_streaming(self._updater_dir, "sh", ["run.sh", "--update"])
        finally:
            # 若系统已重启，这一步不会执行；重启后由更新脚本负责清理
            self._options.set_updating_system(False)
        return output

    # ── browser-dev ──

    async def refresh_browserdev_status(self) -> str:
        output = await self._runner.run(None, "systemctl", ["is-active", BROWSERDEV_SERVICE])
        status = "running" if output.strip() == "active" else "not_running"
        self._options.set_browserdev_status(status)
        return status
