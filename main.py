"""
EdgeAgent 设备代理入口

使用 bootstrap 初始化 Config + Logger，装配任务执行引擎，
然后启动 FastAPI 服务；引擎循环随应用生命周期启动与停止。
"""

import argparse
import asyncio
import os
import sys
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI

from core import bootstrap
from core.config import RELEASE_DEV, ConfigError, ConfigManager
from core.logger import get_logger
from api.v1.router import router as v1_router
from services.backups import BackupService
from services.continuations import ContinuationRegistry
from services.database import Database
from services.dispatcher import HandlerRegistry, TaskDispatcher
from services.edgeapps import EdgeAppManager
from services.engine import AgentEngine
from services.executor import CommandRunner
from services.handlers.backups import BackupHandlers
from services.handlers.edgeapps import EdgeAppHandlers
from services.handlers.shell import ShellHandlers
from services.handlers.system import SystemHandlers
from services.handlers.tunnel import TunnelHandlers
from services.option_store import Options, OptionStore
from services.scheduler import Scheduler
from services.shell import ShellService
from services.storage_devices import StorageDeviceService
from services.system import SystemService
from services.task_queue import TaskQueue
from services.tunnel import TunnelService


def build_engine(config: ConfigManager, database: Database, runner: Optional[CommandRunner] = None) -> dict:
    """
    装配引擎及其依赖。

    Returns:
        名称 → 实例，供 app.state 挂载与测试使用
    """
    runner = runner or CommandRunner()
    option_store = OptionStore(database)
    options = Options(option_store)
    queue = TaskQueue(database)
    continuations = ContinuationRegistry()

    system = SystemService(config, runner, options)
    storage = StorageDeviceService(config, runner, options)
    edgeapps = EdgeAppManager(config, runner, options)
    backups = BackupService(config, runner, options)
    tunnel = TunnelService(config, runner)
    shell = ShellService(config, runner)

    # Handler 注册表：启动时构建一次
    registry = HandlerRegistry()
    EdgeAppHandlers(edgeapps, system, options).register(registry)
    SystemHandlers(system).register(registry)
    BackupHandlers(backups, edgeapps, system, options, continuations).register(registry)
    TunnelHandlers(tunnel, options, continuations).register(registry)
    ShellHandlers(shell, options, continuations).register(registry)

    dispatcher = TaskDispatcher(queue, registry, dev_mode=config.release == RELEASE_DEV)
    scheduler = Scheduler(config, options, system, storage, edgeapps, backups, dispatcher)
    engine = AgentEngine(config, queue, dispatcher, scheduler, continuations)

    return {
        "option_store": option_store,
        "options": options,
        "task_queue": queue,
        "continuations": continuations,
        "registry": registry,
        "dispatcher": dispatcher,
        "scheduler": scheduler,
        "engine": engine,
    }


def create_app(config: Optional[ConfigManager] = None, start_engine: bool = True) -> FastAPI:
    """创建并配置 FastAPI 应用"""

    # ── Phase 1: 引导加载 ──
    if config is None:
        config, _ = bootstrap.init()
    app_logger = get_logger("main")

    # ── Phase 2: 存储 + 引擎 ──
    database = Database(config.get("database.path"))
    components = build_engine(config, database)
    engine: AgentEngine = components["engine"]
    app_logger.info(f"已注册 {len(components['registry'])} 种任务类型")

    # ── 生命周期管理 ──
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """应用启动/关闭生命周期"""
        if start_engine:
            app_logger.info("正在启动任务执行引擎...")
            await engine.start()
        app_logger.info(f"{config.get('app.name')} 就绪 [{config.release}]")

        yield

        app_logger.info("正在停止任务执行引擎...")
        await engine.stop()

    # ── 创建 FastAPI 实例 ──
    app = FastAPI(
        title=config.get("app.name"),
        version=config.get("app.version"),
        docs_url="/api/docs" if config.get("app.debug") else None,
        redoc_url=None,
        lifespan=lifespan,
    )

    # 全局状态挂载
    app.state.config = config
    app.state.database = database
    for name, component in components.items():
        setattr(app.state, name, component)

    # ── 注册 API 路由 ──
    app.include_router(v1_router)

    app_logger.info(
        f"FastAPI 应用创建完成: {config.get('app.name')} v{config.get('app.version')} "
        f"[{config.release}]"
    )
    return app


async def _run_headless(config: ConfigManager):
    """不启动 HTTP 服务，只运行引擎循环（Ctrl+C 退出）"""
    components = build_engine(config, Database(config.get("database.path")))
    engine: AgentEngine = components["engine"]
    await engine.start()
    try:
        while engine.running:
            await asyncio.sleep(1)
    finally:
        await engine.stop()


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="EdgeAgent 设备代理")
    parser.add_argument("--config", "-c", type=str, default=None, help="配置文件路径")
    parser.add_argument("--version", action="store_true", help="打印版本与发布类型后退出")
    parser.add_argument("--database", action="store_true", help="打印数据库位置后退出")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = _parse_args(argv)
    try:
        config, _ = bootstrap.init(args.config)
    except ConfigError as e:
        print(f"配置错误: {e}", file=sys.stderr)
        return 2

    if args.version:
        print(f"{config.get('app.name')} v{config.get('app.version')} ({config.release})")
        return 0
    if args.database:
        print(os.path.abspath(config.get("database.path")))
        return 0

    if not config.get("server.enabled", True):
        asyncio.run(_run_headless(config))
        return 0

    app = create_app(config)
    uvicorn.run(
        app,
        host=config.get("server.host"),
        port=config.get("server.port"),
        log_level="info",
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
