"""
API 依赖注入模块

路由通过 Depends 获取挂在 app.state 上的服务实例（由 main.py 在启动时挂载）。
"""

from fastapi import Request

from core.config import ConfigManager
from services.engine import AgentEngine
from services.option_store import OptionStore
from services.task_queue import TaskQueue


def get_config(request: Request) -> ConfigManager:
    return request.app.state.config


def get_task_queue(request: Request) -> TaskQueue:
    return request.app.state.task_queue


def get_option_store(request: Request) -> OptionStore:
    return request.app.state.option_store


def get_engine(request: Request) -> AgentEngine:
    return request.app.state.engine
