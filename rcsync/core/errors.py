"""错误分类

- ConfigError：挂载/任务列表文件缺失或 JSON 非法（致命）；
- MountError：单个挂载条目失败（目录创建、权限、守护进程拒绝）；
- TaskValidationError / InvalidPayload：任务字段缺失（跳过该条目）；
- SubmissionError：守护进程未返回 job id（本次触发失败，下次 cron 自然重试）；
- RcError：RC 接口传输失败或返回了意外内容。
"""

from __future__ import annotations

from typing import Optional


class RcsyncError(Exception):
    """所有 rcsync 异常的基类。"""


class ConfigError(RcsyncError):
    pass


class MountError(RcsyncError):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class TaskValidationError(RcsyncError):
    pass


class InvalidPayload(TaskValidationError):
    """cron 传入的任务负载无法解析或缺少必需字段。"""


class SubmissionError(RcsyncError):
    pass


class RcError(RcsyncError):
    pass
