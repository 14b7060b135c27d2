"""配置

职责：
- 读取环境变量（RCLONE_PORT/RCLONE_USERNAME/RCLONE_PASSWORD/MOUNTS_FILE/TASKS_FILE/...）；
- 提供派生值：RC 基础 URL、rclone 守护进程命令行、cron 守护进程命令行。

所有路径与间隔都可通过环境变量覆盖；默认值与容器镜像中的布局一致
（/config 挂载配置，/cache 作为 rclone 缓存目录）。
"""

import os
import shlex
import sys
from dataclasses import dataclass
from typing import List, Optional, Mapping


DEFAULT_PORT = 5572
DEFAULT_USERNAME = "rclone"
DEFAULT_PASSWORD = "rclone"
DEFAULT_RCLONE_OPTS = "--check-first --update --tpslimit 5"
DEFAULT_RCLONE_CONFIG = "/config/rclone.conf"
DEFAULT_MOUNTS_FILE = "/config/mounts.json"
DEFAULT_TASKS_FILE = "/config/tasks.json"
DEFAULT_CACHE_DIR = "/cache"
DEFAULT_CRONTAB_FILE = "/var/spool/cron/crontabs/root"
DEFAULT_CROND_CMD = "crond -f -L /proc/1/fd/1"
DEFAULT_UNMOUNT_CMD = "fusermount3 -u"
DEFAULT_TASK_OUTPUT = ">> /proc/1/fd/1 2>> /proc/1/fd/2"

# rclone rcd 固定参数：启用 Web GUI（不自动打开浏览器）
RCD_FLAGS = [
    "--rc-web-gui",
    "--rc-web-gui-update",
    "--rc-web-gui-force-update",
    "--rc-web-gui-no-open-browser",
]


@dataclass
class Settings:
    rclone_port: int
    rclone_username: str
    rclone_password: str
    rclone_opts: str
    rclone_config: str
    retry_interval: float  # 就绪探测 / 启动等待间隔（秒）
    monitor_interval: float  # 子进程存活轮询间隔（秒）
    stop_timeout: float  # 关闭时等待子进程退出的时间（秒）
    mounts_file: str
    tasks_file: str
    cache_dir: str
    task_running_file: str  # run log：每次提交任务追加一行
    crontab_file: str
    crond_cmd: str
    unmount_cmd: str
    task_output: str  # 追加到每条 cron 记录末尾的输出重定向
    api_port: int  # 管理 API 端口，0 表示不启动
    debug: bool

    @property
    def rc_url(self) -> str:
        return f"http://127.0.0.1:{self.rclone_port}"

    def rcd_command(self) -> List[str]:
        """rclone 守护进程命令行。DEBUG 时追加 `-vv`。"""
        cmd = ["rclone", "rcd", *RCD_FLAGS,
               "--rc-addr", f":{self.rclone_port}",
               "--rc-user", self.rclone_username,
               "--rc-pass", self.rclone_password,
               "--cache-dir", self.cache_dir]
        cmd += shlex.split(self.rclone_opts)
        if self.debug:
            cmd.append("-vv")
        return cmd

    def scheduler_command(self) -> List[str]:
        return shlex.split(self.crond_cmd)

    def executor_command(self) -> str:
        """cron 记录中调用执行器的命令前缀。"""
        return f"{shlex.quote(sys.executable)} -m rcsync execute_task"


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    try:
        return int(env.get(key, str(default)))
    except ValueError:
        return default


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    try:
        return float(env.get(key, str(default)))
    except ValueError:
        return default


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """加载运行时配置（仅环境变量）。

    返回 Settings 数据类实例；非法的数字取值回退到默认值。
    """
    env = os.environ if env is None else env
    cache_dir = env.get("CACHE_DIR", DEFAULT_CACHE_DIR)

    return Settings(
        rclone_port=_int(env, "RCLONE_PORT", DEFAULT_PORT),
        rclone_username=env.get("RCLONE_USERNAME", DEFAULT_USERNAME),
        rclone_password=env.get("RCLONE_PASSWORD", DEFAULT_PASSWORD),
        rclone_opts=env.get("RCLONE_OPTS", DEFAULT_RCLONE_OPTS),
        rclone_config=env.get("RCLONE_CONFIG", DEFAULT_RCLONE_CONFIG),
        retry_interval=_float(env, "RETRY_INTERVAL", 2),
        monitor_interval=_float(env, "MONITOR_INTERVAL", 5),
        stop_timeout=_float(env, "STOP_TIMEOUT", 10),
        mounts_file=env.get("MOUNTS_FILE", DEFAULT_MOUNTS_FILE),
        tasks_file=env.get("TASKS_FILE", DEFAULT_TASKS_FILE),
        cache_dir=cache_dir,
        task_running_file=env.get("TASK_RUNNING_FILE", os.path.join(cache_dir, "tasks_running")),
        crontab_file=env.get("CRONTAB_FILE", DEFAULT_CRONTAB_FILE),
        crond_cmd=env.get("CROND_CMD", DEFAULT_CROND_CMD),
        unmount_cmd=env.get("UNMOUNT_CMD", DEFAULT_UNMOUNT_CMD),
        task_output=env.get("TASK_OUTPUT", DEFAULT_TASK_OUTPUT),
        api_port=_int(env, "MANAGER_API_PORT", 0),
        debug=env.get("DEBUG", "0").strip() == "1",
    )
