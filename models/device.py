"""
存储设备数据模型
"""

from pydantic import BaseModel, Field


class UsageSplit(BaseModel):
    """已用空间按类别拆分（字节）"""
    os: int = 0
    edgeapps: int = 0
    other: int = 0


class UsageStat(BaseModel):
    total: int = 0
    used: int = 0
    free: int = 0
    percent: float = 0.0
    split: UsageSplit = Field(default_factory=UsageSplit)


class Partition(BaseModel):
    """分区 / 文件系统（mountpoint 为空表示未挂载）"""
    id: str
    size: str = ""
    maj: str = ""
    min: str = ""
    rm: str = ""
    ro: str = ""
    filesystem: str = ""
    mountpoint: str = ""
    usage_stat: UsageStat = Field(default_factory=UsageStat)


class DeviceStatus(BaseModel):
    id: int
    description: str


DEVICE_HEALTHY = DeviceStatus(id=1, description="healthy")
DEVICE_NOT_CONFIGURED = DeviceStatus(id=0, description="not configured")


class Device(BaseModel):
    id: str
    name: str
    size: str = ""
    in_use: bool = False
    main_device: bool = False
    maj: str = ""
    min: str = ""
    rm: str = ""
    ro: str = ""
    partitions: list[Partition] = Field(default_factory=list)
    status: DeviceStatus = Field(default_factory=lambda: DEVICE_HEALTHY.model_copy())
    usage_stat: UsageStat = Field(default_factory=UsageStat)
