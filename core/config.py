"""
配置管理

加载顺序（后者覆盖前者）：内置默认值 → YAML 文件 → EDGE_ 环境变量。
YAML 路径依次取 load() 参数、命令行 --config/-c、项目根目录 config.yaml；
文件不存在时写出一份默认配置。环境变量用 __ 表示层级，值按 YAML 标量解析
（EDGE_AGENT__TICK_INTERVAL=2 → agent.tick_interval = 2）。

引擎依赖的数值（tick 间隔、端口等）在加载后用 pydantic 校验，不合法时启动失败。
"""

import argparse
import copy
import logging
import os
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError


ENV_PREFIX = "EDGE_"
_ENV_LEVEL = "__"

# 发布类型：dev 不执行任务；cloud 首次启动导入 cloud.env
RELEASE_DEV = "dev"
RELEASE_PROD = "prod"
RELEASE_CLOUD = "cloud"
RELEASE_OTHER = "other"
_KNOWN_RELEASES = (RELEASE_DEV, RELEASE_PROD, RELEASE_CLOUD)


# ──────────────────────────────────────────────
# 内置默认配置（同时是缺失 config.yaml 时写出的内容）
# ──────────────────────────────────────────────

_BUILTIN_DEFAULTS: dict[str, Any] = {
    "app": {
        "name": "EdgeAgent",
        "version": "0.1.0",
        "release": RELEASE_PROD,
        "debug": False,
    },
    "server": {
        "enabled": True,
        "host": "127.0.0.1",
        "port": 8310,
    },
    "database": {
        "path": "/home/system/components/api/edgebox.sqlite",
    },
    "agent": {
        "tick_interval": 1,
        "not_ready_interval": 60,
        "ready_file": "",
    },
    "paths": {
        "apps_dir": "/home/system/components/apps",
        "ws_dir": "/home/system/components/ws",
        "dashboard_dir": "/home/system/components/api",
        "updater_dir": "/home/system/components/updater",
        "cloud_env_file": "/home/system/components/edgeboxctl/cloud.env",
        "backup_password_file": "/home/system/components/backups/pw.txt",
        "backup_paths": [
            "/home/system/components/apps",
            "/home/system/components/api",
        ],
    },
    "tunnel": {
        "name": "edgebox",
        "program": "cloudflared",
        "credentials_dir": "/home/system/.cloudflared",
        "config_path": "/etc/cloudflared/config.yml",
        "local_url": "http://localhost:80",
        "poll_interval": 5,
        "login_timeout": 900,
    },
    "backup": {
        "program": "restic",
        "freshness_seconds": 3600,
        "restore_target": "/",
    },
    "shell": {
        "program": "sshx",
        "session_timeout": 3600,
    },
    "logging": {
        "level": "INFO",
        "console": {
            "enabled": True,
            "colorize": True,
        },
        "file": {
            "enabled": True,
            "directory": "logs",
            "max_size_mb": 10,
            "backup_count": 5,
            "app_log": "agent.log",
            "error_log": "error.log",
        },
        "format": "%(asctime)s | %(levelname)-8s | tick=%(tick)s %(task)s| %(name)s:%(funcName)s:%(lineno)d | %(message)s",
    },
}


class ConfigError(ValueError):
    """合并后的配置不满足引擎运行要求"""


class _ServerSection(BaseModel):
    enabled: bool
    host: str = Field(..., min_length=1)
    port: int = Field(..., ge=1, le=65535)


class _AgentSection(BaseModel):
    tick_interval: float = Field(..., gt=0)
    not_ready_interval: float = Field(..., gt=0)


class _TunnelSection(BaseModel):
    poll_interval: float = Field(..., gt=0)
    login_timeout: float = Field(..., gt=0)


class _BackupSection(BaseModel):
    freshness_seconds: int = Field(..., ge=0)


class _ShellSection(BaseModel):
    session_timeout: int = Field(..., gt=0)


_VALIDATED_SECTIONS: dict[str, type[BaseModel]] = {
    "server": _ServerSection,
    "agent": _AgentSection,
    "tunnel": _TunnelSection,
    "backup": _BackupSection,
    "shell": _ShellSection,
}


def _merge_into(target: dict, override: dict):
    """把 override 递归合并进 target（原地修改）"""
    for key, value in override.items():
        current = target.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            _merge_into(current, value)
        else:
            target[key] = copy.deepcopy(value)


def _env_overrides(environ) -> dict:
    """EDGE_A__B=v → {"a": {"b": 解析后的 v}}"""
    overrides: dict = {}
    for name in sorted(environ):
        if not name.startswith(ENV_PREFIX):
            continue
        *parents, leaf = name[len(ENV_PREFIX):].lower().split(_ENV_LEVEL)
        node = overrides
        for part in parents:
            node = node.setdefault(part, {})
        raw = environ[name]
        try:
            node[leaf] = yaml.safe_load(raw) if raw else None
        except yaml.YAMLError:
            node[leaf] = raw
    return overrides


class ConfigManager:
    """
    配置管理器。

    使用方式：
        config = ConfigManager(logger=temp_logger).load()
        interval = config.get("agent.tick_interval")
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self._data: dict[str, Any] = copy.deepcopy(_BUILTIN_DEFAULTS)
        self._frozen = False
        self._logger = logger or logging.getLogger(__name__)
        self._config_file_path: Optional[str] = None
        self._project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

    def load(self, config_path: Optional[str] = None) -> "ConfigManager":
        """
        重新加载全部配置层。

        Raises:
            ConfigError: 校验失败
        """
        path = config_path or self._path_from_argv() or os.path.join(self._project_root, "config.yaml")
        self._config_file_path = os.path.abspath(path)

        self._data = copy.deepcopy(_BUILTIN_DEFAULTS)
        _merge_into(self._data, self._read_yaml(self._config_file_path))

        overrides = _env_overrides(os.environ)
        if overrides:
            _merge_into(self._data, overrides)
            self._logger.info(f"已应用环境变量覆盖: {', '.join(sorted(overrides))}")

        self.validate()
        self._logger.info(
            f"配置已加载: {self._config_file_path} / release={self.release} / "
            f"db={self.get('database.path')} / tick={self.get('agent.tick_interval')}s"
        )
        return self

    def _path_from_argv(self) -> Optional[str]:
        parser = argparse.ArgumentParser(add_help=False)
        parser.add_argument("--config", "-c", default=None)
        known, _ = parser.parse_known_args()
        return known.config

    def _read_yaml(self, path: str) -> dict:
        """读取 YAML 配置；文件不存在时写出默认配置并返回空层"""
        if not os.path.isfile(path):
            self._write_defaults(path)
            return {}

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            self._logger.error(f"读取配置文件失败，使用内置默认配置: {e}")
            return {}

        if data is None:
            return {}
        if not isinstance(data, dict):
            self._logger.error(f"配置文件顶层必须是字典，得到 {type(data).__name__}")
            return {}
        return data

    def _write_defaults(self, path: str):
        self._logger.info(f"配置文件不存在，写出默认配置: {path}")
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                yaml.safe_dump(_BUILTIN_DEFAULTS, f, allow_unicode=True, sort_keys=False)
        except OSError as e:
            self._logger.warning(f"无法写出默认配置: {e}")

    def validate(self):
        """校验引擎依赖的配置段"""
        for section, model in _VALIDATED_SECTIONS.items():
            try:
                model.model_validate(self._data.get(section) or {})
            except ValidationError as e:
                raise ConfigError(f"配置段 {section} 不合法: {e}") from e

    # ── 访问 ──

    def get(self, key: str, default: Any = None) -> Any:
        """点号路径读取，例如 config.get("paths.apps_dir")"""
        node: Any = self._data
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def set(self, key: str, value: Any):
        """
        点号路径写入，中间层不存在时创建。

        Raises:
            RuntimeError: 配置已冻结
        """
        if self._frozen:
            raise RuntimeError(f"配置已冻结，无法修改: {key}")
        *parents, leaf = key.split(".")
        node = self._data
        for part in parents:
            if not isinstance(node.get(part), dict):
                node[part] = {}
            node = node[part]
        node[leaf] = value

    def freeze(self):
        self._frozen = True

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    @property
    def release(self) -> str:
        """dev / prod / cloud，其余取值归为 other"""
        value = str(self.get("app.release") or "").lower()
        return value if value in _KNOWN_RELEASES else RELEASE_OTHER

    @property
    def ready_file(self) -> str:
        """运行时就绪标记（ws --build 成功后由外部创建），默认位于 ws 目录下"""
        return self.get("agent.ready_file") or os.path.join(self.get("paths.ws_dir", ""), ".ready")

    @property
    def config_file_path(self) -> Optional[str]:
        return self._config_file_path

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self._data)

    def __repr__(self) -> str:
        return f"<ConfigManager({'frozen' if self._frozen else 'mutable'}, release={self.release})>"
