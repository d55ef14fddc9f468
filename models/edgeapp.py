"""
EdgeApp 数据模型

EdgeApp 的状态是派生状态：每次都根据实际运行的容器重新计算，
只有序列化后的快照会写入 Option 表（EDGEAPPS_LIST）。
"""

from enum import IntEnum

from pydantic import BaseModel, Field


class EdgeAppStatusCode(IntEnum):
    """EdgeApp 状态码"""
    NOT_INSTALLED = -1
    OFF = 0
    ON = 1
    ERROR = 2  # 部分服务在运行，需要重启


_DESCRIPTIONS = {
    EdgeAppStatusCode.NOT_INSTALLED: "not-installed",
    EdgeAppStatusCode.OFF: "off",
    EdgeAppStatusCode.ON: "on",
    EdgeAppStatusCode.ERROR: "error",
}


class EdgeAppStatus(BaseModel):
    id: EdgeAppStatusCode
    description: str

    @classmethod
    def of(cls, code: EdgeAppStatusCode) -> "EdgeAppStatus":
        return cls(id=code, description=_DESCRIPTIONS[code])


class EdgeAppService(BaseModel):
    """EdgeApp 中的单个容器服务"""
    id: str
    is_running: bool = False


class EdgeApp(BaseModel):
    id: str
    name: str
    status: EdgeAppStatus
    services: list[EdgeAppService] = Field(default_factory=list)
    internet_accessible: bool = False
    network_url: str = ""
    internet_url: str = ""
