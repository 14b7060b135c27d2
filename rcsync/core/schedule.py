"""计划任务发布

把 `tasks.json` 翻译成 crontab：每个合法任务一行

    <cron> <python> -m rcsync execute_task '<payload>' >> /proc/1/fd/1 2>> /proc/1/fd/2

发布时先截断 run log 与 crontab，再整体写入；同一任务列表重复发布得到完全相同的文件。
非法条目记录日志后跳过，不影响其余条目。
"""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Tuple

from rcsync.core.errors import ConfigError, TaskValidationError
from rcsync.core.jobs import RunLog
from rcsync.core.store import TaskSpec
from rcsync.utils.logging import debug, err, log


@dataclass
class PublishResult:
    entries: List[str] = field(default_factory=list)
    skipped: List[Tuple[Dict[str, Any], str]] = field(default_factory=list)


def render_entry(spec: TaskSpec, executor_cmd: str, task_output: str = "") -> str:
    # dcron/busybox crond 原样交给 /bin/sh，% 不转义
    payload = shlex.quote(spec.to_payload())
    line = f"{spec.cron} {executor_cmd} {payload}"
    if task_output:
        line = f"{line} {task_output}"
    return line


def build_entries(entries: Iterable[Dict[str, Any]], executor_cmd: str,
                  task_output: str = "") -> PublishResult:
    """校验并渲染 crontab 行（不写文件）。"""
    result = PublishResult()
    for item in entries:
        try:
            spec = TaskSpec.from_dict(item)
            spec.validate(require_cron=True)
        except TaskValidationError as e:
            err(f"Invalid task entry: {item} ({e}). Skipping...")
            result.skipped.append((item, str(e)))
            continue
        result.entries.append(render_entry(spec, executor_cmd, task_output))
        log(f"Scheduled task: {spec.describe()} every {spec.cron}")
    return result


def write_crontab(path: str, lines: List[str]) -> None:
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        for line in lines:
            f.write(line + "\n")
    os.chmod(path, 0o600)


def publish(entries: List[Dict[str, Any]], crontab_file: str, run_log: RunLog,
            executor_cmd: str, task_output: str = "") -> PublishResult:
    """截断 run log 与 crontab，然后写入全部合法任务。

    Raises:
        ConfigError: crontab 或 run log 无法写入
    """
    debug("Setting cron tasks ...")
    try:
        with run_log.locked():
            run_log.truncate()
        log("Clearing existing crontab entries...")
        write_crontab(crontab_file, [])
    except OSError as e:
        raise ConfigError(f"Failed to reset schedule state: {e}") from e

    if not entries:
        log("Task list is empty. Skipping task setup.")
        return PublishResult()

    debug("Processing task list to generate cron jobs.")
    result = build_entries(entries, executor_cmd, task_output)
    try:
        write_crontab(crontab_file, result.entries)
    except OSError as e:
        raise ConfigError(f"Failed to write {crontab_file}: {e}") from e
    debug("Cron jobs have been set up successfully.")
    return result


def read_crontab(path: str) -> List[str]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return [line.rstrip("\n") for line in f if line.strip()]
    except FileNotFoundError:
        return []
