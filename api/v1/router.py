"""
API v1 路由汇总
"""

from fastapi import APIRouter

from api.v1.system import router as system_router
from api.v1.options import router as options_router
from api.v1.tasks import router as tasks_router
from api.v1.engine import router as engine_router

router = APIRouter(prefix="/api/v1")

# 注册子路由
router.include_router(system_router)
router.include_router(options_router)
router.include_router(tasks_router)
router.include_router(engine_router)
