"""挂载对齐

职责：
- 先卸载全部配置中的挂载点（`fusermount3 -u`，尽力而为，失败只记 DEBUG）；
- 再逐条创建挂载点目录（权限 777）并通过 RC API `mount/mount` 挂载；
- 单条失败不影响其他条目，但汇总结果决定初始化是否失败。

对同一列表重复执行结果相同：始终是“全部卸载，再全部挂载”。
"""

from __future__ import annotations

import os
import shlex
import subprocess
from dataclasses import dataclass, field
from typing import Iterable, List, Tuple

from rcsync.core.config import DEFAULT_UNMOUNT_CMD
from rcsync.core.errors import MountError
from rcsync.core.store import MountSpec
from rcsync.utils.logging import debug, err, log


@dataclass
class ReconcileResult:
    mounted: List[MountSpec] = field(default_factory=list)
    failed: List[Tuple[MountSpec, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


def unmount(mount_point: str, unmount_cmd: str = DEFAULT_UNMOUNT_CMD) -> bool:
    """卸载单个挂载点，成功返回 True；任何失败都不抛出。"""
    cmd = shlex.split(unmount_cmd) + [mount_point]
    try:
        proc = subprocess.run(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL, check=False)
    except OSError as e:
        debug(f"Unmount failed or not mounted: {mount_point} ({e}). Continuing...")
        return False
    if proc.returncode != 0:
        debug(f"Unmount failed or not mounted: {mount_point}. Continuing...")
        return False
    return True


def unmount_all(mounts: Iterable[MountSpec], unmount_cmd: str = DEFAULT_UNMOUNT_CMD) -> int:
    """卸载全部挂载点，返回成功卸载的数量。顺序无关。"""
    mounts = [m for m in mounts if m.mount_point]
    if not mounts:
        log("No valid entries found in mounts file. Skipping unmount.")
        return 0
    log("Unmounting all mount points...")
    count = 0
    for m in mounts:
        debug(f"Attempting to unmount {m.mount_point}...")
        if unmount(m.mount_point, unmount_cmd):
            count += 1
    return count


def ensure_mount_point(path: str) -> None:
    """确保挂载点目录存在；新建时设置 777。

    Raises:
        MountError: 创建目录或设置权限失败
    """
    debug(f"Checking if mount point {path} exists.")
    if os.path.isdir(path):
        debug(f"Mount point {path} already exists.")
        return
    log(f"Creating mount point: {path}")
    try:
        os.makedirs(path, exist_ok=True)
    except OSError as e:
        raise MountError(f"Failed to create directory {path}: {e}") from e
    try:
        os.chmod(path, 0o777)
    except OSError as e:
        raise MountError(f"Failed to set permissions on {path}: {e}") from e


def mount_one(client, spec: MountSpec) -> None:
    if not spec.fs or not spec.mount_point:
        raise MountError(f"Invalid payload: {spec.to_dict()}")
    ensure_mount_point(spec.mount_point)
    debug(f"Mounting {spec.fs} to {spec.mount_point}...")
    client.create_mount(spec)
    log(f"Mount successful {spec.fs} to {spec.mount_point}.")


def reconcile(client, mounts: List[MountSpec], unmount_cmd: str = DEFAULT_UNMOUNT_CMD) -> ReconcileResult:
    """全部卸载后重新挂载全部条目。

    - client: RcClient（或具备 create_mount 的同类对象）
    - 返回 ReconcileResult；`ok` 为 False 表示至少一个条目失败。
    """
    result = ReconcileResult()
    unmount_all(mounts, unmount_cmd)

    if not mounts:
        log("No payloads to mount. Skipping mount process.")
        return result

    for spec in mounts:
        debug(f"Processing payload: {spec.to_dict()}")
        try:
            mount_one(client, spec)
        except MountError as e:
            err(str(e))
            result.failed.append((spec, str(e)))
            continue
        result.mounted.append(spec)

    if result.failed:
        err(f"{len(result.failed)}/{len(mounts)} mounts failed.")
    return result
