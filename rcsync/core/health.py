"""健康检查

配置中的每个挂载都必须出现在 `mount/listmounts` 的结果里：
`Fs` 完全相同，`MountPoint` 等于配置路径或配置路径 + `/`（rclone 有时带尾部分隔符回显）。
挂载列表为空时直接视为健康。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from rcsync.core.errors import ConfigError, RcError
from rcsync.core.store import MountSpec, load_mounts
from rcsync.utils.logging import debug, err


@dataclass
class HealthReport:
    healthy: bool
    missing: List[MountSpec] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "healthy": self.healthy,
            "missing": [m.to_dict() for m in self.missing],
            "error": self.error,
        }


def normalize_mount_point(path: str) -> str:
    stripped = path.rstrip("/")
    return stripped or ("/" if path.startswith("/") else path)


def matches(spec: MountSpec, fs: str, mount_point: str) -> bool:
    if fs != spec.fs:
        return False
    mp = normalize_mount_point(spec.mount_point)
    return mount_point == mp or mount_point == mp + "/"


def check_mounts(client, mounts: List[MountSpec]) -> HealthReport:
    if not mounts:
        debug("Mount list is empty. No mounts to validate. Considering healthy.")
        return HealthReport(healthy=True)

    try:
        active = client.list_active_mounts()
    except RcError as e:
        err(str(e))
        return HealthReport(healthy=False, error=str(e))
    debug(f"Active mounts: {[(a.fs, a.mount_point) for a in active]}")

    missing = []
    for spec in mounts:
        debug(f"Checking mount: fs={spec.fs}, mount_point={spec.mount_point}")
        if any(matches(spec, a.fs, a.mount_point) for a in active):
            debug(f"Mount {spec.fs} at {spec.mount_point} is active.")
            continue
        err(f"Mount {spec.fs} at {spec.mount_point} is not active.")
        missing.append(spec)

    if missing:
        err("Some mounts are not active.")
        return HealthReport(healthy=False, missing=missing)
    debug("All mounts are active.")
    return HealthReport(healthy=True)


def is_healthy(client, mounts_file: str) -> HealthReport:
    """读取挂载列表（不存在时不创建）并检查。"""
    try:
        mounts = load_mounts(mounts_file, create=False)
    except ConfigError as e:
        err(str(e))
        return HealthReport(healthy=False, error=str(e))
    return check_mounts(client, mounts)
