"""
隧道任务处理器

setup_tunnel 是异步处理器：读取到登录链接后立即返回，
剩余步骤由 "tunnel" 续作完成，真实进度只体现在 TUNNEL_STATUS：
waiting → starting → connected，任一步失败为 error。
"""

from typing import Optional

from core.logger import get_logger
from models.option import TunnelState, TunnelStatus
from models.task import SetupTunnelArgs
from services.continuations import ContinuationRegistry
from services.dispatcher import HandlerRegistry
from services.executor import RunningCommand
from services.option_store import Options
from services.tunnel import TunnelService

_logger = get_logger("services.handlers.tunnel")

CONTINUATION_NAME = "tunnel"


class TunnelHandlers:
    """公网隧道"""

    def __init__(self, tunnel: TunnelService, options: Options, continuations: ContinuationRegistry):
        self._tunnel = tunnel
        self._options = options
        self._continuations = continuations

    def register(self, registry: HandlerRegistry):
        registry.add("setup_tunnel", self.setup, SetupTunnelArgs)
        registry.add("start_tunnel", self.start)
        registry.add("stop_tunnel", self.stop)
        registry.add("disable_tunnel", self.disable)

    def _publish(self, state: TunnelState, **fields) -> TunnelStatus:
        current = self._options.tunnel_status()
        data = current.model_dump() if current else {}
        data.update(fields)
        data["status"] = state
        status = TunnelStatus.model_validate(data)
        self._options.set_tunnel_status(status)
        return status

    def _report_error(self, error: BaseException):
        self._publish(TunnelState.ERROR, message=str(error))

    # ── setup ──

    async def setup(self, args: SetupTunnelArgs) -> Optional[str]:
        if self._continuations.is_active(CONTINUATION_NAME):
            _logger.warning("隧道设置仍在进行中")
            return None

        self._options.set_domain_name(args.domain_name)
        process, login_link = await self._tunnel.begin_login()
        if process is None:
            self._publish(TunnelState.ERROR, message="无法获取隧道登录链接")
            return None

        self._publish(TunnelState.WAITING, login_link=login_link, domain=args.domain_name, message="")

        async def _complete():
            await self._finish_setup(args.domain_name, process)

        self._continuations.spawn(CONTINUATION_NAME, _complete, on_error=self._report_error)
        return login_link

    async def _finish_setup(self, domain: str, login_process: RunningCommand):
        authorized = await self._tunnel.wait_for_certificate()
        login_process.kill()
        if not authorized:
            self._publish(TunnelState.ERROR, message="等待隧道授权超时")
            return

        self._publish(TunnelState.STARTING)
        await self._tunnel.provision(domain)
        await self._tunnel.start()
        self._publish(TunnelState.CONNECTED, domain=domain, login_link="")
        _logger.info(f"隧道已连接: {domain}")

    # ── 服务控制 ──

    async def start(self, _args=None) -> Optional[str]:
        await self._tunnel.start()
        return self._publish(TunnelState.CONNECTED, domain=self._options.domain_name()).model_dump_json()

    async def stop(self, _args=None) -> Optional[str]:
        await self._tunnel.stop()
        return self._publish(TunnelState.STOPPED).model_dump_json()

    async def disable(self, _args=None) -> Optional[str]:
        await self._tunnel.stop()
        await self._tunnel.uninstall()
        self._options.clear_tunnel()
        return "OK"
