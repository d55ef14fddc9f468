"""
任务数据模型

任务生命周期：created → executing → finished / error
finished、error 为终态，任务不会被自动重新排队。
"""

from enum import Enum
from typing import Annotated, Literal, Optional

from pydantic import BaseModel, Field, StringConstraints


class TaskStatus(str, Enum):
    """任务状态"""
    CREATED = "created"
    EXECUTING = "executing"
    FINISHED = "finished"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.FINISHED, TaskStatus.ERROR)


# 固定的诊断结果
RESULT_INVALID_TASK = "Invalid Task"
RESULT_ERROR = "Error"


class Task(BaseModel):
    """
    队列中的一个任务（对应 tasks 表中的一行）
    """
    id: int = Field(..., description="任务 ID（自增，同一时间戳下用于排序）")
    kind: str = Field(..., description="任务类型，决定由哪个 Handler 处理")
    args: Optional[str] = Field(None, description="JSON 编码的参数，可为空")
    status: TaskStatus = Field(TaskStatus.CREATED)
    result: Optional[str] = None
    created: str = Field(..., description="创建时间（决定出队顺序）")
    updated: str = Field(..., description="最后一次状态变更时间")


class TaskCreateRequest(BaseModel):
    """外部生产者的入队请求"""
    kind: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
    args: Optional[dict] = None


# ──────────────────────────────────────────────
# 各任务类型的参数
# ──────────────────────────────────────────────

class EdgeAppArgs(BaseModel):
    id: str = Field(..., min_length=1)


class BulkEdgeAppArgs(BaseModel):
    ids: list[str] = Field(..., min_length=1)


class EnableOnlineArgs(BaseModel):
    id: str = Field(..., min_length=1)
    internet_url: str = Field(..., min_length=1)


class PublicDashboardArgs(BaseModel):
    internet_url: str = Field(..., min_length=1)


class SetupTunnelArgs(BaseModel):
    domain_name: str = Field(..., min_length=1)


class SetupBackupsArgs(BaseModel):
    service: Literal["s3", "b2", "wasabi"]
    access_key_id: str
    secret_access_key: str
    repository_name: str
    repository_password: str


class StartShellArgs(BaseModel):
    timeout: Optional[int] = Field(None, gt=0, description="会话最长秒数")
