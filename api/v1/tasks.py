"""
任务 API

提供：
- 入队（外部生产者之一）
- 最近任务列表与单个任务查询
"""

from fastapi import APIRouter, Depends, HTTPException, Query

from api.deps import get_task_queue
from core.logger import get_logger
from models.task import TaskCreateRequest
from services.task_queue import TaskQueue

router = APIRouter(prefix="/tasks", tags=["tasks"])
_logger = get_logger("api.tasks")


@router.post("", status_code=201)
async def create_task(body: TaskCreateRequest, queue: TaskQueue = Depends(get_task_queue)):
    """创建一个任务（状态 created，由引擎在之后的 tick 中执行）"""
    task_id = queue.enqueue(body.kind, body.args)
    _logger.info(f"API 入队任务 #{task_id} {body.kind}")
    return queue.get(task_id).model_dump()


@router.get("")
async def list_tasks(
    limit: int = Query(50, ge=1, le=500),
    queue: TaskQueue = Depends(get_task_queue),
):
    """列出最近的任务"""
    tasks = queue.list_recent(limit=limit)
    return {"tasks": [t.model_dump() for t in tasks], "total": len(tasks)}


@router.get("/{task_id}")
async def get_task(task_id: int, queue: TaskQueue = Depends(get_task_queue)):
    """获取单个任务详情"""
    task = queue.get(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail="任务不存在")
    return task.model_dump()
