"""
Option 存储

OptionStore：按名称 upsert 的键值表（一次读写一行）。
Options：在 OptionStore 之上为每个逻辑选项提供类型化的读写方法，
Handler 只依赖 Options，不直接使用字符串键。
"""

import json
from typing import Any, Optional, Union

from pydantic import BaseModel

from core.logger import get_logger
from models.option import (
    BackupSettings,
    BackupState,
    Option,
    OptionName,
    ShellStatus,
    TunnelStatus,
)
from services.database import Database, now_str

_logger = get_logger("services.options")

OptionKey = Union[OptionName, str]


def _key(name: OptionKey) -> str:
    return name.value if isinstance(name, OptionName) else str(name)


class OptionStore:
    """options 表的原始访问"""

    def __init__(self, database: Database):
        self._db = database

    def get(self, name: OptionKey) -> Optional[str]:
        return self._db.scalar("SELECT value FROM options WHERE name = ?", (_key(name),))

    def set(self, name: OptionKey, value: Optional[str]):
        """写入（覆盖旧值与时间戳）"""
        timestamp = now_str()
        self._db.execute(
            "REPLACE INTO options (name, value, created, updated) VALUES (?, ?, ?, ?)",
            (_key(name), value, timestamp, timestamp),
        )
        _logger.debug(f"Option 写入: {_key(name)}")

    def delete(self, name: OptionKey):
        self._db.execute("DELETE FROM options WHERE name = ?", (_key(name),))

    def get_option(self, name: OptionKey) -> Optional[Option]:
        row = self._db.query_one("SELECT * FROM options WHERE name = ?", (_key(name),))
        if row is None:
            return None
        return Option(name=row["name"], value=row["value"], created=row["created"], updated=row["updated"])

    def list_all(self) -> list[Option]:
        rows = self._db.query("SELECT * FROM options ORDER BY name ASC")
        return [
            Option(name=r["name"], value=r["value"], created=r["created"], updated=r["updated"])
            for r in rows
        ]

    def get_json(self, name: OptionKey, default: Any = None) -> Any:
        raw = self.get(name)
        if not raw:
            return default
        try:
            return json.loads(raw)
        except ValueError:
            _logger.warning(f"Option {_key(name)} 不是合法 JSON")
            return default

    def set_json(self, name: OptionKey, value: Any):
        if isinstance(value, BaseModel):
            raw = value.model_dump_json()
        elif isinstance(value, list) and value and isinstance(value[0], BaseModel):
            raw = json.dumps([v.model_dump(mode="json") for v in value], ensure_ascii=False)
        else:
            raw = json.dumps(value, ensure_ascii=False)
        self.set(name, raw)


class Options:
    """
    类型化的 Option 访问。

    每个逻辑选项一对读写方法；新增选项时在这里加方法，
    而不是在 Handler 中拼写字符串键。
    """

    def __init__(self, store: OptionStore):
        self._store = store

    @property
    def store(self) -> OptionStore:
        return self._store

    # ── 系统信息 ──

    def set_uptime(self, seconds: int):
        self._store.set(OptionName.SYSTEM_UPTIME, str(int(seconds)))

    def set_ip_address(self, ip: str):
        self._store.set(OptionName.IP_ADDRESS, ip)

    def set_hostname(self, hostname: str):
        self._store.set(OptionName.HOSTNAME, hostname)

    def set_release_version(self, release: str):
        self._store.set(OptionName.RELEASE_VERSION, release)

    def set_system_updates(self, targets: list[dict]):
        self._store.set_json(OptionName.SYSTEM_UPDATES, targets)

    def system_updates(self) -> list[dict]:
        return self._store.get_json(OptionName.SYSTEM_UPDATES, [])

    def set_updating_system(self, updating: bool):
        self._store.set(OptionName.UPDATING_SYSTEM, "true" if updating else "false")

    def set_cloud_option(self, name: OptionName, value: str):
        self._store.set(name, value)

    # ── 状态快照 ──

    def set_edgeapps(self, apps: list):
        self._store.set_json(OptionName.EDGEAPPS_LIST, apps)

    def edgeapps(self) -> list[dict]:
        return self._store.get_json(OptionName.EDGEAPPS_LIST, [])

    def set_storage_devices(self, devices: list):
        self._store.set_json(OptionName.STORAGE_DEVICES_LIST, devices)

    def set_browserdev_status(self, status: str):
        self._store.set(OptionName.BROWSERDEV_STATUS, status)

    # ── 隧道 ──

    def tunnel_status(self) -> Optional[TunnelStatus]:
        data = self._store.get_json(OptionName.TUNNEL_STATUS)
        if not isinstance(data, dict):
            return None
        return TunnelStatus.model_validate(data)

    def set_tunnel_status(self, status: TunnelStatus):
        self._store.set_json(OptionName.TUNNEL_STATUS, status)

    def domain_name(self) -> str:
        return self._store.get(OptionName.DOMAIN_NAME) or ""

    def set_domain_name(self, domain: str):
        self._store.set(OptionName.DOMAIN_NAME, domain)

    def set_public_dashboard(self, internet_url: str):
        self._store.set(OptionName.PUBLIC_DASHBOARD, internet_url)

    def clear_tunnel(self):
        self._store.delete(OptionName.TUNNEL_STATUS)
        self._store.delete(OptionName.DOMAIN_NAME)

    # ── 备份 ──

    def backup_status(self) -> str:
        return self._store.get(OptionName.BACKUP_STATUS) or BackupState.NONE.value

    def set_backup_status(self, state: BackupState):
        self._store.set(OptionName.BACKUP_STATUS, state.value)

    def backup_last_run(self) -> Optional[int]:
        """上次备份完成的 Unix 时间戳；不存在或无法解析时为 None"""
        raw = self._store.get(OptionName.BACKUP_LAST_RUN)
        if not raw:
            return None
        try:
            return int(float(raw))
        except ValueError:
            _logger.warning(f"BACKUP_LAST_RUN 格式错误: {raw!r}")
            return None

    def set_backup_last_run(self, timestamp: int):
        self._store.set(OptionName.BACKUP_LAST_RUN, str(int(timestamp)))

    def set_backup_running(self, running: bool):
        self._store.set(OptionName.BACKUP_IS_RUNNING, "true" if running else "false")

    def backup_running(self) -> bool:
        return self._store.get(OptionName.BACKUP_IS_RUNNING) == "true"

    def set_backup_error(self, message: str):
        self._store.set(OptionName.BACKUP_ERROR_MESSAGE, message)

    def set_backup_settings(self, settings: BackupSettings):
        self._store.set(OptionName.BACKUP_SERVICE, settings.service)
        self._store.set(OptionName.BACKUP_REPOSITORY, settings.repository)
        self._store.set(OptionName.BACKUP_ACCESS_KEY_ID, settings.access_key_id)
        self._store.set(OptionName.BACKUP_SECRET_ACCESS_KEY, settings.secret_access_key)

    def backup_settings(self) -> Optional[BackupSettings]:
        service = self._store.get(OptionName.BACKUP_SERVICE)
        repository = self._store.get(OptionName.BACKUP_REPOSITORY)
        if not service or not repository:
            return None
        return BackupSettings(
            service=service,
            repository=repository,
            access_key_id=self._store.get(OptionName.BACKUP_ACCESS_KEY_ID) or "",
            secret_access_key=self._store.get(OptionName.BACKUP_SECRET_ACCESS_KEY) or "",
        )

    def set_backup_stats(self, stats: Any):
        self._store.set_json(OptionName.BACKUP_STATS, stats)

    def clear_backup(self):
        for name in (
            OptionName.BACKUP_STATUS,
            OptionName.BACKUP_IS_RUNNING,
            OptionName.BACKUP_LAST_RUN,
            OptionName.BACKUP_ERROR_MESSAGE,
            OptionName.BACKUP_SERVICE,
            OptionName.BACKUP_REPOSITORY,
            OptionName.BACKUP_ACCESS_KEY_ID,
            OptionName.BACKUP_SECRET_ACCESS_KEY,
            OptionName.BACKUP_STATS,
        ):
            self._store.delete(name)

    # ── 共享终端 ──

    def set_shell_status(self, status: ShellStatus):
        self._store.set_json(OptionName.SHELL_STATUS, status)

    def shell_status(self) -> Optional[ShellStatus]:
        data = self._store.get_json(OptionName.SHELL_STATUS)
        if not isinstance(data, dict):
            return None
        return ShellStatus.model_validate(data)
