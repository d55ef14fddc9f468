"""
隧道服务（cloudflared）

设置流程分两段：
1. 同步前缀：启动 `cloudflared tunnel login`，扫描输出直到出现登录链接
2. 续作：等待 cert.pem 出现（用户在浏览器中完成授权），然后删除旧隧道、
   创建隧道、写入 config.yml、注册 DNS 路由、安装系统服务

本模块只负责步骤本身；状态发布与续作派生由隧道 Handler 负责。
"""

import json
import os
import re
import shutil
from typing import Optional

import yaml

from core.logger import get_logger
from services.continuations import wait_for_path
from services.executor import CommandRunner, RunningCommand

_logger = get_logger("services.tunnel")

LOGIN_URL_PATTERN = re.compile(r"https://\S+")
CERTIFICATE_FILENAME = "cert.pem"
SERVICE_NAME = "cloudflared"
LOGIN_LINK_TIMEOUT = 60


class TunnelError(RuntimeError):
    """隧道步骤失败"""


class TunnelService:
    """cloudflared 隧道的各个步骤"""

    def __init__(self, config, runner: CommandRunner):
        self._runner = runner
        self._program = config.get("tunnel.program", "cloudflared")
        self._name = config.get("tunnel.name", "edgebox")
        self._credentials_dir = config.get("tunnel.credentials_dir")
        self._config_path = config.get("tunnel.config_path")
        self._local_url = config.get("tunnel.local_url", "http://localhost:80")
        self._poll_interval = float(config.get("tunnel.poll_interval", 5))
        self._login_timeout = config.get("tunnel.login_timeout", 900)

    @property
    def certificate_path(self) -> str:
        return os.path.join(self._credentials_dir, CERTIFICATE_FILENAME)

    @property
    def config_path(self) -> str:
        return self._config_path

    # ── 登录 ──

    async def begin_login(self) -> tuple[Optional[RunningCommand], str]:
        """
        启动登录进程并读取登录链接。

        Returns:
            (登录进程, 登录链接)；无法启动或未读到链接时链接为空字符串
        """
        process = await self._runner.spawn(None, self._program, ["tunnel", "login"])
        if process is None:
            return None, ""

        url = await process.scan(LOGIN_URL_PATTERN, timeout=LOGIN_LINK_TIMEOUT)
        if not url:
            _logger.warning("未能从 cloudflared 输出中读取登录链接")
            process.kill()
            return None, ""
        _logger.info(f"隧道登录链接: {url}")
        return process, url

    async def wait_for_certificate(self) -> bool:
        """轮询等待 cert.pem，超过 tunnel.login_timeout 返回 False"""
        timeout = float(self._login_timeout) if self._login_timeout else None
        _logger.info(f"等待隧道授权证书: {self.certificate_path}")
        return await wait_for_path(self.certificate_path, self._poll_interval, timeout)

    # ── 创建 ──

    def _find_credentials_file(self) -> str:
        if not os.path.isdir(self._credentials_dir):
            raise TunnelError(f"凭据目录不存在: {self._credentials_dir}")
        candidates = sorted(
            (os.path.join(self._credentials_dir, name) for name in os.listdir(self._credentials_dir)
             if name.endswith(".json")),
            key=os.path.getmtime,
        )
        if not candidates:
            raise TunnelError("没有找到隧道凭据 JSON 文件")
        return candidates[-1]

    def write_config(self) -> str:
        """根据凭据文件写入 config.yml，返回隧道 ID"""
        credentials_file = self._find_credentials_file()
        try:
            with open(credentials_file, "r", encoding="utf-8") as f:
                tunnel_id = json.load(f).get("TunnelID", "")
        except (OSError, ValueError) as e:
            raise TunnelError(f"读取隧道凭据失败: {e}") from e
        if not tunnel_id:
            raise TunnelError("隧道凭据中没有 TunnelID")

        directory = os.path.dirname(self._config_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self._config_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(
                {"url": self._local_url, "tunnel": tunnel_id, "credentials-file": credentials_file},
                f,
                default_flow_style=False,
                sort_keys=False,
            )
        _logger.info(f"隧道配置已写入: {self._config_path} (tunnel={tunnel_id})")
        return tunnel_id

    async def provision(self, domain: str) -> str:
        """
        删除旧隧道 → 创建隧道 → 写配置 → 注册 DNS → 安装服务。

        Returns:
            隧道 ID

        Raises:
            TunnelError: 任一步骤失败
        """
        await self._runner.run_streaming(None, self._program, ["tunnel", "delete", "-f", self._name])

        output = await self._runner.run_streaming(None, self._program, ["tunnel", "create", self._name])
        if "error" in output.lower() and "Created tunnel" not in output:
            raise TunnelError(f"创建隧道失败: {output.strip()}")

        tunnel_id = self.write_config()

        output = await self._runner.run_streaming(
            None, self._program, ["tunnel", "route", "dns", "-f", self._name, domain],
        )
        if "error" in output.lower():
            raise TunnelError(f"注册 DNS 路由失败: {output.strip()}")

        await self._runner.run_streaming(
            None, self._program, ["--config", self._config_path, "service", "install"],
        )
        return tunnel_id

    # ── 服务控制 ──

    async def start(self):
        await self._runner.run(None, "systemctl", ["start", SERVICE_NAME])

    async def stop(self):
        await self._runner.run(None, "systemctl", ["stop", SERVICE_NAME])

    async def uninstall(self):
        """卸载系统服务并删除凭据与配置"""
        await self._runner.run(None, self._program, ["service", "uninstall"])
        if os.path.isdir(self._credentials_dir):
            shutil.rmtree(self._credentials_dir, ignore_errors=True)
        if os.path.isfile(self._config_path):
            os.remove(self._config_path)
        _logger.info("隧道已卸载")
