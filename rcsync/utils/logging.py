"""简单日志工具：统一输出格式（时间戳 + 级别），并对敏感信息进行掩码。

级别：
- DEBUG：仅当环境变量 `DEBUG=1` 时输出；
- NOTICE：常规运行信息；
- ERROR：错误。

全部写入 stderr，与 cron 触发的 `execute_task` 输出保持同一格式。
"""

import os
import sys
from datetime import datetime


def _now():
    return datetime.now().strftime("%Y/%m/%d %H:%M:%S")


def debug_enabled() -> bool:
    return os.environ.get("DEBUG", "0").strip() == "1"


def _write(level: str, msg: str) -> None:
    sys.stderr.write(f"{_now()} {level}: {msg}\n")
    sys.stderr.flush()


def debug(msg: str):
    """调试日志（DEBUG=1 时才输出）。"""
    if debug_enabled():
        _write("DEBUG", msg)


def log(msg: str):
    """常规日志（NOTICE）。"""
    _write("NOTICE", msg)


def err(msg: str):
    """错误日志（ERROR）。"""
    _write("ERROR", msg)


def mask_secret(s: str, secret: str, placeholder: str = "XXXX") -> str:
    """在日志中掩码口令。

    rclone 以 `--rc-pass <password>` 启动，其输出（以及命令行回显）中可能
    出现明文口令；转发前统一替换为 `XXXX`。
    """
    if not s or not secret:
        return s
    return s.replace(secret, placeholder)
