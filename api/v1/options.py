"""
Option 查询 API

只读：Option 由引擎写入，前端轮询读取。
"""

from fastapi import APIRouter, Depends, HTTPException

from api.deps import get_option_store
from services.option_store import OptionStore

router = APIRouter(prefix="/options", tags=["options"])


@router.get("")
async def list_options(store: OptionStore = Depends(get_option_store)):
    options = store.list_all()
    return {"options": [o.model_dump() for o in options], "total": len(options)}


@router.get("/{name}")
async def get_option(name: str, store: OptionStore = Depends(get_option_store)):
    option = store.get_option(name)
    if option is None:
        raise HTTPException(status_code=404, detail=f"Option 不存在: {name}")
    return option.model_dump()
