"""
存储设备

- parse_lsblk：解析 `lsblk --raw --noheadings` 输出为 Device 列表
- compute_device_usage：为每个已挂载分区读取用量，按挂载点拆分为
  OS / EdgeApps / 其他，并在设备级别求和；设备百分比由汇总值计算，
  不对分区百分比取平均（避免小分区权重过大）
"""

import asyncio
import os
from typing import Callable, Optional

import psutil

from core.logger import get_logger
from models.device import (
    DEVICE_NOT_CONFIGURED,
    Device,
    Partition,
    UsageSplit,
    UsageStat,
)
from services.executor import CommandRunner
from services.option_store import Options

_logger = get_logger("services.storage_devices")

MAIN_DEVICE_IDS = ("mmcblk0", "sda", "vda")
ROOT_MOUNTPOINT = "/"


def parse_lsblk(output: str) -> list[Device]:
    """
    解析 lsblk 原始输出。

    每行形如 "mmcblk0 179:0 0 29.7G 0 disk"；分区行的第 6 列为 part，
    第 7 列（可选）为挂载点。分区归属于其前面最近的设备行。
    """
    devices: list[Device] = []
    current: Optional[Device] = None

    for line in output.splitlines():
        fields = line.split()
        if len(fields) < 6:
            continue

        name, maj_min, rm, size, ro, kind = fields[:6]
        maj, _, minor = maj_min.partition(":")

        if kind != "part":
            current = Device(
                id=name, name=name, size=size,
                maj=maj, min=minor, rm=rm, ro=ro,
            )
            devices.append(current)
            continue

        if current is None:
            _logger.warning(f"分区没有所属设备，已忽略: {line}")
            continue

        mountpoint = fields[6] if len(fields) >= 7 else ""
        current.partitions.append(Partition(
            id=name, size=size, maj=maj, min=minor, rm=rm, ro=ro,
            mountpoint=mountpoint,
        ))
        if mountpoint:
            current.in_use = True

    main_found = False
    for device in devices:
        if not device.in_use:
            device.status = DEVICE_NOT_CONFIGURED.model_copy()
        if not main_found and device.id in MAIN_DEVICE_IDS:
            device.main_device = True
            main_found = True

    return devices


def directory_size(path: str) -> int:
    """目录占用字节数（不跟随符号链接）"""
    total = 0
    for root, _dirs, files in os.walk(path):
        for filename in files:
            try:
                total += os.lstat(os.path.join(root, filename)).st_size
            except OSError:
                continue
    return total


def split_usage(mountpoint: str, used: int, edgeapps_bytes: int) -> UsageSplit:
    """
    按挂载点把已用空间归类：
    - 根分区：EdgeApps 目录大小归 edgeapps，其余归 OS
    - 其他挂载点：全部归 other
    """
    if mountpoint == ROOT_MOUNTPOINT:
        apps = max(0, min(edgeapps_bytes, used))
        return UsageSplit(os=used - apps, edgeapps=apps, other=0)
    return UsageSplit(os=0, edgeapps=0, other=used)


def compute_device_usage(
    devices: list[Device],
    usage_fn: Callable = psutil.disk_usage,
    edgeapps_bytes: int = 0,
) -> list[Device]:
    """
    为设备列表填充用量（原地修改并返回）。

    Args:
        devices: parse_lsblk 的结果
        usage_fn: 读取挂载点用量的函数，返回带 total/used/free 的对象
        edgeapps_bytes: EdgeApps 目录占用字节数
    """
    for device in devices:
        if not device.in_use:
            continue

        total = used = free = 0
        split = UsageSplit()

        for partition in device.partitions:
            if not partition.mountpoint:
                continue
            try:
                usage = usage_fn(partition.mountpoint)
            except OSError as e:
                _logger.warning(f"读取分区用量失败 [{partition.mountpoint}]: {e}")
                continue
            if not usage.total:
                continue

            part_split = split_usage(partition.mountpoint, usage.used, edgeapps_bytes)
            partition.usage_stat = UsageStat(
                total=usage.total,
                used=usage.used,
                free=usage.free,
                percent=round(usage.used / usage.total * 100, 2),
                split=part_split,
            )

            total += usage.total
            used += usage.used
            free += usage.free
            split.os += part_split.os
            split.edgeapps += part_split.edgeapps
            split.other += part_split.other

        device.usage_stat = UsageStat(
            total=total,
            used=used,
            free=free,
            percent=round(used / total * 100, 2) if total else 0.0,
            split=split,
        )

    return devices


class StorageDeviceService:
    """采集存储设备并发布 STORAGE_DEVICES_LIST 快照"""

    def __init__(self, config, runner: CommandRunner, options: Options):
        self._apps_dir = config.get("paths.apps_dir")
        self._runner = runner
        self._options = options

    async def get_devices(self) -> list[Device]:
        output = await self._runner.run(None, "lsblk", ["--raw", "--noheadings"])
        devices = parse_lsblk(output)
        # 目录遍历与 statvfs 都是阻塞调用，放到工作线程执行
        edgeapps_bytes = await asyncio.to_thread(self._edgeapps_bytes)
        return await asyncio.to_thread(compute_device_usage, devices, edgeapps_bytes=edgeapps_bytes)

    def _edgeapps_bytes(self) -> int:
        if not os.path.isdir(self._apps_dir):
            return 0
        return directory_size(self._apps_dir)

    async def publish(self) -> list[Device]:
        devices = await self.get_devices()
        self._options.set_storage_devices(devices)
        return devices
