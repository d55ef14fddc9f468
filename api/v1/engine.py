"""
引擎状态 API
"""

from fastapi import APIRouter, Depends

from api.deps import get_engine
from services.engine import AgentEngine

router = APIRouter(prefix="/engine", tags=["engine"])


@router.get("")
async def get_engine_status(engine: AgentEngine = Depends(get_engine)):
    """当前 tick、就绪状态与仍在运行的续作"""
    return engine.snapshot()
