"""
系统信息 API

提供本机系统信息查询接口。
"""

from fastapi import APIRouter, Depends

from api.deps import get_config
from services.collector import collect_system_info

router = APIRouter(prefix="/system", tags=["system"])


@router.get("/branding")
async def get_branding(config=Depends(get_config)):
    """应用名称、版本与发布类型"""
    return {
        "name": config.get("app.name", "EdgeAgent"),
        "version": config.get("app.version", "0.1.0"),
        "release": config.release,
    }


@router.get("/info")
async def get_system_info():
    """本机系统信息（运行时长/网络/磁盘）"""
    return collect_system_info()
