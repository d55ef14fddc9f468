"""
Option 数据模型

Option 表既是配置，也是跨任务的状态公告板（前端轮询读取）。
所有名称集中在 OptionName 中，避免键名在各处漂移。
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class OptionName(str, Enum):
    EDGEAPPS_LIST = "EDGEAPPS_LIST"
    STORAGE_DEVICES_LIST = "STORAGE_DEVICES_LIST"
    SYSTEM_UPTIME = "SYSTEM_UPTIME"
    IP_ADDRESS = "IP_ADDRESS"
    HOSTNAME = "HOSTNAME"
    RELEASE_VERSION = "RELEASE_VERSION"
    SYSTEM_UPDATES = "SYSTEM_UPDATES"
    UPDATING_SYSTEM = "UPDATING_SYSTEM"

    TUNNEL_STATUS = "TUNNEL_STATUS"
    DOMAIN_NAME = "DOMAIN_NAME"
    PUBLIC_DASHBOARD = "PUBLIC_DASHBOARD"

    BACKUP_STATUS = "BACKUP_STATUS"
    BACKUP_IS_RUNNING = "BACKUP_IS_RUNNING"
    BACKUP_LAST_RUN = "BACKUP_LAST_RUN"
    BACKUP_ERROR_MESSAGE = "BACKUP_ERROR_MESSAGE"
    BACKUP_SERVICE = "BACKUP_SERVICE"
    BACKUP_REPOSITORY = "BACKUP_REPOSITORY"
    BACKUP_ACCESS_KEY_ID = "BACKUP_ACCESS_KEY_ID"
    BACKUP_SECRET_ACCESS_KEY = "BACKUP_SECRET_ACCESS_KEY"
    BACKUP_STATS = "BACKUP_STATS"

    BROWSERDEV_STATUS = "BROWSERDEV_STATUS"
    SHELL_STATUS = "SHELL_STATUS"

    # 云版本首次启动时从 cloud.env 导入
    NAME = "NAME"
    EMAIL = "EMAIL"
    USERNAME = "USERNAME"
    CLUSTER = "CLUSTER"
    CLUSTER_IP = "CLUSTER_IP"
    CLUSTER_SSH_PORT = "CLUSTER_SSH_PORT"
    EDGEBOXIO_API_TOKEN = "EDGEBOXIO_API_TOKEN"


CLOUD_OPTION_NAMES = (
    OptionName.NAME,
    OptionName.EMAIL,
    OptionName.USERNAME,
    OptionName.CLUSTER,
    OptionName.CLUSTER_IP,
    OptionName.CLUSTER_SSH_PORT,
    OptionName.EDGEBOXIO_API_TOKEN,
)


class Option(BaseModel):
    name: str
    value: Optional[str] = None
    created: str
    updated: str


class TunnelState(str, Enum):
    WAITING = "waiting"
    STARTING = "starting"
    CONNECTED = "connected"
    STOPPED = "stopped"
    ERROR = "error"


class TunnelStatus(BaseModel):
    """TUNNEL_STATUS 的 JSON 结构"""
    status: TunnelState
    login_link: str = ""
    domain: str = ""
    message: str = ""


class BackupState(str, Enum):
    """BACKUP_STATUS：仓库成功初始化后为 working"""
    NONE = ""
    INITIATING = "initiating"
    WORKING = "working"
    ERROR = "error"


class ShellState(str, Enum):
    RUNNING = "running"
    NOT_RUNNING = "not_running"
    ERROR = "error"


class ShellStatus(BaseModel):
    status: ShellState
    url: str = ""


class BackupSettings(BaseModel):
    """备份服务商与仓库（setup_backups 成功后持久化）"""
    service: str
    repository: str
    access_key_id: str = ""
    secret_access_key: str = ""
