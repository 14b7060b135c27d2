"""任务执行与去重

cron 每次触发都会以独立进程调用 `execute_task`，进程之间唯一共享的状态是
run log（`TASK_RUNNING_FILE`）：

    <command> <srcFs> -> <dstFs> <jobId>

每提交一次任务追加一行；同一个键以最后一行为准。执行流程：

1) 校验 command/srcFs/dstFs；
2) 在 run log 中查找该键最近的 job id；
3) 若存在且守护进程报告 `finished == false`，跳过本次；找不到或已结束则继续；
4) 提交新任务（`_async: true`），成功后追加一行。

2)~4) 在 run log 的排他锁（`<run log>.lock` 上的 flock）内执行，同一键的
并发触发最多只会提交一次。
"""

from __future__ import annotations

import fcntl
import json
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional

from rcsync.core.errors import InvalidPayload, SubmissionError, TaskValidationError
from rcsync.core.store import TaskSpec
from rcsync.utils.logging import debug, err, log


@dataclass
class JobRecord:
    task_key: str
    job_id: str

    def to_line(self) -> str:
        return f"{self.task_key} {self.job_id}"

    @classmethod
    def from_line(cls, line: str) -> Optional[JobRecord]:
        line = line.rstrip("\n")
        if " " not in line:
            return None
        key, job_id = line.rsplit(" ", 1)
        if not key or not job_id:
            return None
        return cls(task_key=key, job_id=job_id)


class RunLog:
    """追加式 run log（只在发布计划任务时截断）。"""

    _thread_lock = threading.Lock()

    def __init__(self, path: str):
        self.path = path
        self.lock_path = path + ".lock"

    def _ensure_dir(self) -> None:
        parent = os.path.dirname(self.path)
        if parent:
            os.makedirs(parent, exist_ok=True)

    def truncate(self) -> None:
        self._ensure_dir()
        with open(self.path, "w", encoding="utf-8"):
            pass

    def records(self) -> List[JobRecord]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                lines = f.readlines()
        except FileNotFoundError:
            return []
        out = []
        for line in lines:
            if not line.strip():
                continue
            rec = JobRecord.from_line(line)
            if rec is None:
                debug(f"Ignoring malformed run log line: {line.rstrip()}")
                continue
            out.append(rec)
        return out

    def latest(self) -> Dict[str, str]:
        """每个键只保留最后一次提交的 job id。"""
        current: Dict[str, str] = {}
        for rec in self.records():
            current[rec.task_key] = rec.job_id
        return current

    def lookup(self, task_key: str) -> Optional[str]:
        return self.latest().get(task_key)

    def append(self, record: JobRecord) -> None:
        self._ensure_dir()
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(record.to_line() + "\n")
            f.flush()

    @contextmanager
    def locked(self) -> Iterator[None]:
        """跨进程（flock）+ 进程内（threading.Lock）的排他区。"""
        self._ensure_dir()
        with self._thread_lock:
            with open(self.lock_path, "a", encoding="utf-8") as fh:
                fcntl.flock(fh.fileno(), fcntl.LOCK_EX)
                try:
                    yield
                finally:
                    fcntl.flock(fh.fileno(), fcntl.LOCK_UN)


@dataclass
class ExecuteResult:
    submitted: bool
    job_id: Optional[str] = None
    skipped_for: Optional[str] = None  # 正在运行、导致本次跳过的 job id


def execute_task(client, spec: TaskSpec, run_log: RunLog) -> ExecuteResult:
    """按去重规则执行一次任务。

    Raises:
        InvalidPayload: 缺少 command/srcFs/dstFs
        SubmissionError: 守护进程未返回 job id（不写 run log）
    """
    try:
        spec.validate()
    except TaskValidationError as e:
        raise InvalidPayload(f"Invalid payload: {spec.to_dict()} ({e})") from e

    key = spec.task_key
    with run_log.locked():
        prior = run_log.lookup(key)
        if prior is not None:
            status = client.job_status(prior)
            if status is None:
                debug(f"Job ID {prior} not found or failed to fetch status. Proceeding to re-execute task.")
            elif not status.finished:
                log(f"Task {spec.describe()} is already running (Job ID: {prior}). Skipping execution.")
                return ExecuteResult(submitted=False, skipped_for=prior)

        debug(f"Starting task: {spec.describe()}")
        job_id = client.submit_job(spec.command, spec.opts)
        run_log.append(JobRecord(task_key=key, job_id=job_id))

    log(f"Task started successfully: {spec.describe()} (Job ID: {job_id})")
    return ExecuteResult(submitted=True, job_id=job_id)


def parse_payload(payload: str) -> TaskSpec:
    """解析 cron 记录里的 JSON 参数。"""
    try:
        data = json.loads(payload)
    except (json.JSONDecodeError, TypeError) as e:
        raise InvalidPayload(f"Invalid payload: {payload}") from e
    if not isinstance(data, dict):
        raise InvalidPayload(f"Invalid payload: {payload}")
    try:
        return TaskSpec.from_dict(data)
    except TaskValidationError as e:
        raise InvalidPayload(str(e)) from e


def execute_payload(client, payload: str, run_log: RunLog) -> int:
    """命令行入口：返回进程退出码。"""
    try:
        spec = parse_payload(payload)
        execute_task(client, spec, run_log)
    except InvalidPayload as e:
        err(str(e))
        return 1
    except SubmissionError as e:
        err(f"Failed to start task: {payload}. {e}")
        return 1
    return 0
