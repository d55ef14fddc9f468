"""
系统信息采集

使用 psutil 采集设备遥测：运行时长、网络地址、主机名、磁盘。
这些值由调度器定期写入 Option 表，前端只读 Option。
"""

import platform
import socket
import time
from typing import Any, Optional

import psutil

from core.logger import get_logger

_logger = get_logger("services.collector")

# 优先使用有线网卡，其次无线（直连地址，不是隧道地址）
_PREFERRED_INTERFACES = ("eth0", "end0", "wlan0")


def get_uptime_seconds() -> int:
    """系统运行时长（秒）"""
    return int(time.time() - psutil.boot_time())


def format_uptime(seconds: int) -> str:
    """可读的运行时长，用于日志"""
    days, rest = divmod(int(seconds), 86400)
    hours, rest = divmod(rest, 3600)
    minutes = rest // 60
    return f"{days} days, {hours} hours, {minutes} minutes"


def get_ip_address(interfaces: tuple[str, ...] = _PREFERRED_INTERFACES) -> str:
    """
    返回设备的 IPv4 地址。

    按 interfaces 顺序查找；都没有时退回到第一个非回环 IPv4 地址。
    找不到返回空字符串。
    """
    try:
        addrs = psutil.net_if_addrs()
    except OSError as e:
        _logger.error(f"读取网卡信息失败: {e}")
        return ""

    def _ipv4(name: str) -> Optional[str]:
        for addr in addrs.get(name, []):
            if addr.family == socket.AF_INET and addr.address:
                return addr.address
        return None

    for name in interfaces:
        ip = _ipv4(name)
        if ip:
            return ip

    for name in sorted(addrs):
        if name == "lo":
            continue
        ip = _ipv4(name)
        if ip and not ip.startswith("127."):
            return ip

    return ""


def get_hostname() -> str:
    return socket.gethostname()


def collect_system_info() -> dict[str, Any]:
    """
    采集本机系统信息快照（供 /api/v1/system/info 使用）。
    """
    try:
        mem = psutil.virtual_memory()
        uptime = get_uptime_seconds()
        uname = platform.uname()
        return {
            "timestamp": time.time(),
            "system": {
                "hostname": get_hostname(),
                "os": uname.system,
                "os_version": uname.release,
                "architecture": uname.machine,
            },
            "cpu": {
                "count_logical": psutil.cpu_count(logical=True) or 0,
                "percent": psutil.cpu_percent(interval=None),
            },
            "memory": {
                "total_mb": round(mem.total / 1024 / 1024, 1),
                "used_mb": round(mem.used / 1024 / 1024, 1),
                "percent": mem.percent,
            },
            "network": {"ip_address": get_ip_address()},
            "uptime": uptime,
            "uptime_human": format_uptime(uptime),
        }
    except (OSError, psutil.Error) as e:
        _logger.error(f"系统信息采集失败: {e}")
        return {"timestamp": time.time(), "error": str(e)}
