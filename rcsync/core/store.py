"""挂载列表与任务列表

职责：
- 读取 `mounts.json` / `tasks.json`（JSON 数组），文件不存在时创建空数组 `[]`；
- 解析为 MountSpec / TaskSpec；JSON 非法或结构不是对象数组时抛出 ConfigError；
- 两个列表都只由运维人员整体替换，运行时不修改。
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

from rcsync.core.errors import ConfigError, TaskValidationError
from rcsync.utils.logging import debug, log


@dataclass
class MountSpec:
    """一个期望存在的挂载：`fs` 挂到 `mount_point`。"""
    fs: str
    mount_point: str
    mount_opt: Dict[str, Any] = field(default_factory=dict)
    vfs_opt: Dict[str, Any] = field(default_factory=dict)

    @property
    def identity(self) -> Tuple[str, str]:
        return (self.fs, self.mount_point)

    def to_dict(self) -> dict:
        return {
            "fs": self.fs,
            "mountPoint": self.mount_point,
            "mountOpt": self.mount_opt,
            "vfsOpt": self.vfs_opt,
        }

    @classmethod
    def from_dict(cls, data: dict) -> MountSpec:
        mount_opt = data.get("mountOpt") or {}
        vfs_opt = data.get("vfsOpt") or {}
        if not isinstance(mount_opt, dict) or not isinstance(vfs_opt, dict):
            raise ConfigError(f"mountOpt/vfsOpt must be objects: {data}")
        return cls(
            fs=_text(data.get("fs")),
            mount_point=_text(data.get("mountPoint")),
            mount_opt=mount_opt,
            vfs_opt=vfs_opt,
        )


@dataclass
class TaskSpec:
    """一个周期任务：按 `cron` 触发 rclone 的 `sync/<command>`。"""
    cron: str
    command: str
    opts: Dict[str, Any] = field(default_factory=dict)

    @property
    def src_fs(self) -> str:
        return _text(self.opts.get("srcFs"))

    @property
    def dst_fs(self) -> str:
        return _text(self.opts.get("dstFs"))

    @property
    def task_key(self) -> str:
        """去重键，同时也是 run log 每行 job id 之前的部分。"""
        return f"{self.command} {self.src_fs} -> {self.dst_fs}"

    def describe(self) -> str:
        return f"{self.command} {self.src_fs} {self.dst_fs}"

    def validate(self, require_cron: bool = False) -> None:
        missing = [name for name, value in (
            ("command", self.command),
            ("srcFs", self.src_fs),
            ("dstFs", self.dst_fs),
        ) if not value]
        if require_cron and not self.cron:
            missing.insert(0, "cron")
        if missing:
            raise TaskValidationError(f"missing {', '.join(missing)}")

    def to_dict(self) -> dict:
        return {"cron": self.cron, "command": self.command, "opts": self.opts}

    def to_payload(self) -> str:
        """序列化为 cron 记录中的参数；键排序保证重复发布结果一致。"""
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: dict) -> TaskSpec:
        opts = data.get("opts") or {}
        if not isinstance(opts, dict):
            raise TaskValidationError(f"opts must be an object: {data}")
        return cls(cron=_text(data.get("cron")), command=_text(data.get("command")), opts=opts)


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def ensure_list_file(path: str) -> None:
    """确保文件存在；不存在时写入空数组。"""
    if not path:
        raise ConfigError("no file path provided")
    debug(f"Ensuring {path} exists.")
    if os.path.exists(path):
        return
    log(f"Creating {path} with an empty array.")
    try:
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write("[]\n")
    except OSError as e:
        raise ConfigError(f"cannot create {path}: {e}") from e


def read_json_list(path: str, create: bool = True) -> List[dict]:
    """读取 JSON 对象数组。

    - create=True：文件缺失时创建 `[]`；
    - create=False：文件缺失视为 ConfigError（健康检查不应改动配置）；
    - 空文件按空数组处理。
    """
    if create:
        ensure_list_file(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
    except FileNotFoundError as e:
        raise ConfigError(f"{path} not found") from e
    except OSError as e:
        raise ConfigError(f"cannot read {path}: {e}") from e

    if not text.strip():
        debug(f"{path} is empty.")
        return []
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigError(f"The file {path} contains invalid JSON: {e}") from e
    if not isinstance(data, list):
        raise ConfigError(f"The file {path} must contain a JSON array")
    for i, item in enumerate(data):
        if not isinstance(item, dict):
            raise ConfigError(f"{path}[{i}] is not an object")
    return data


def load_mounts(path: str, create: bool = True) -> List[MountSpec]:
    return [MountSpec.from_dict(item) for item in read_json_list(path, create=create)]


def load_task_entries(path: str, create: bool = True) -> List[dict]:
    """任务列表原始条目；逐条解析/校验留给调用方，以便跳过非法条目。"""
    return read_json_list(path, create=create)
