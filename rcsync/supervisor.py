"""Supervisor
----------------
单进程监管 rclone 守护进程与 cron 守护进程，覆盖从启动、初始化挂载与计划任务，
到存活监控、有序关闭的全流程。

工作步骤（按启动顺序）：
1) STARTING：校验 rclone.conf（权限 600），拉起 `rclone rcd`；
2) WAITING_READY：按 RETRY_INTERVAL 轮询 `rc/noopauth`，无限等待（由外部编排负责超时）；
3) INITIALIZING：挂载对齐 → 发布 crontab；任一失败直接关闭，退出码 1；
4) RUNNING：拉起 cron 守护进程，按 MONITOR_INTERVAL 检查两个子进程是否存活；
5) SHUTTING_DOWN：先卸载全部挂载点，再终止仍存活的子进程；
6) STOPPED。

SIGTERM/SIGINT 只设置停止事件，所有等待都会立即返回并进入关闭流程（退出码 0）；
正在进行的 HTTP 调用不会被中断。
"""

from __future__ import annotations

import enum
import os
import signal
import subprocess
import sys
import threading
from typing import Callable, Dict, Optional

from rcsync.core import mounts as mount_ops
from rcsync.core.config import Settings, load_settings
from rcsync.core.errors import ConfigError
from rcsync.core.jobs import RunLog
from rcsync.core.rc_api import RcClient
from rcsync.core.schedule import publish
from rcsync.core.store import load_mounts, load_task_entries
from rcsync.utils.logging import debug, err, log, mask_secret


class SupervisorState(enum.Enum):
    STARTING = "starting"
    WAITING_READY = "waiting_ready"
    INITIALIZING = "initializing"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class Supervisor:
    """监管进程。

    - settings: 运行时配置，默认从环境变量加载。
    - client: RC 客户端，默认按 settings 构造。
    - spawn: 子进程工厂（签名同 subprocess.Popen），测试时可替换。
    - _stop: 停止事件；信号处理函数只设置它。
    - children: name -> Popen，关闭时按插入顺序逐个终止。
    """

    def __init__(self, settings: Optional[Settings] = None, client: Optional[RcClient] = None,
                 spawn: Callable[..., subprocess.Popen] = subprocess.Popen) -> None:
        self.st = settings or load_settings()
        self.client = client or RcClient.from_settings(self.st)
        self.run_log = RunLog(self.st.task_running_file)
        self._spawn = spawn
        self._stop = threading.Event()
        self._shutdown_lock = threading.Lock()
        self.state = SupervisorState.STARTING
        self.exit_code = 0
        self.children: Dict[str, subprocess.Popen] = {}
        self._relay: Optional[threading.Thread] = None

    # -------- 信号 --------
    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGTERM, self._on_signal)
        signal.signal(signal.SIGINT, self._on_signal)

    def _on_signal(self, signum, frame) -> None:
        log(f"Received signal {signal.Signals(signum).name}.")
        self.request_stop()

    def request_stop(self) -> None:
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    # -------- 子进程 --------
    def prepare_config(self) -> bool:
        """rclone.conf 必须存在，并收紧为 600。"""
        path = self.st.rclone_config
        if not os.path.isfile(path):
            err(f"Rclone configuration file {path} not found. Exiting...")
            return False
        log(f"Setting correct permissions for {path}...")
        try:
            os.chmod(path, 0o600)
        except OSError as e:
            err(f"Failed to set permissions for {path}: {e}. Exiting...")
            return False
        return True

    def _relay_output(self, proc: subprocess.Popen) -> None:
        """转发守护进程输出，隐去 RC 口令。"""
        # 写失败也要继续读，否则管道写满后 rclone 会阻塞
        for line in proc.stdout:
            try:
                sys.stdout.write(mask_secret(line, self.st.rclone_password))
                sys.stdout.flush()
            except (OSError, ValueError) as e:
                debug(f"Failed to relay rclone output: {e}")

    def start_daemon(self) -> bool:
        log("Starting rclone daemon...")
        cmd = self.st.rcd_command()
        debug(f"Command: {mask_secret(' '.join(cmd), self.st.rclone_password)}")
        try:
            proc = self._spawn(cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT,
                               text=True, encoding="utf-8", errors="replace")
        except OSError as e:
            err(f"Failed to start rclone daemon: {e}")
            return False
        self.children["rclone"] = proc
        if proc.stdout is not None:
            self._relay = threading.Thread(target=self._relay_output, args=(proc,), daemon=True)
            self._relay.start()
        return True

    def start_scheduler(self) -> bool:
        log("Starting cron daemon...")
        try:
            proc = self._spawn(self.st.scheduler_command(),
                               stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except OSError as e:
            err(f"Failed to start cron daemon: {e}")
            return False
        self.children["cron"] = proc
        return True

    def dead_child(self) -> Optional[str]:
        for name, proc in self.children.items():
            if proc.poll() is not None:
                return name
        return None

    # -------- 初始化 --------
    def wait_ready(self) -> bool:
        """阻塞直到 rclone 就绪；收到停止信号时返回 False。"""
        log("Waiting for rclone service to be available...")
        while not self.stopping:
            if self.client.probe_ready():
                log("Rclone is ready.")
                return True
            log(f"Rclone not ready, waiting {self.st.retry_interval:g} seconds...")
            self._stop.wait(self.st.retry_interval)
        return False

    def initialize(self) -> bool:
        """挂载对齐，然后发布计划任务。"""
        try:
            mounts = load_mounts(self.st.mounts_file)
        except ConfigError as e:
            err(str(e))
            return False
        result = mount_ops.reconcile(self.client, mounts, self.st.unmount_cmd)
        if not result.ok:
            err("Failed to mount payloads.")
            return False

        try:
            entries = load_task_entries(self.st.tasks_file)
            publish(entries, self.st.crontab_file, self.run_log,
                    self.st.executor_command(), self.st.task_output)
        except ConfigError as e:
            err(str(e))
            err("Failed to set up cron to run tasks.")
            return False

        log("Rclone initialization complete.")
        return True

    # -------- 监控与关闭 --------
    def monitor(self) -> int:
        """轮询子进程存活；任一退出返回 1，收到停止信号返回 0。"""
        log("Monitoring rclone and cron daemons...")
        while not self.stopping:
            name = self.dead_child()
            if name is not None:
                err(f"{name} daemon has stopped. Exiting...")
                return 1
            self._stop.wait(self.st.monitor_interval)
        return 0

    def unmount_all(self) -> None:
        try:
            mounts = load_mounts(self.st.mounts_file, create=False)
        except ConfigError as e:
            log(f"Skipping unmount: {e}")
            return
        mount_ops.unmount_all(mounts, self.st.unmount_cmd)

    def stop_children(self) -> None:
        alive = {name: p for name, p in self.children.items() if p.poll() is None}
        for name, proc in alive.items():
            log(f"Stopping {name} daemon...")
            try:
                proc.terminate()
            except OSError as e:
                debug(f"Failed to signal {name}: {e}")
        for name, proc in alive.items():
            try:
                proc.wait(timeout=self.st.stop_timeout)
            except subprocess.TimeoutExpired:
                err(f"{name} did not exit within {self.st.stop_timeout:g}s, killing.")
                proc.kill()
                proc.wait()

    def shutdown(self, exit_code: int = 0) -> int:
        """有序关闭：卸载 → 终止子进程。重复调用只执行一次。"""
        with self._shutdown_lock:
            if self.state in (SupervisorState.SHUTTING_DOWN, SupervisorState.STOPPED):
                return self.exit_code
            self.state = SupervisorState.SHUTTING_DOWN
            self.exit_code = exit_code
            self._stop.set()
            log("Performing graceful shutdown...")
            try:
                self.unmount_all()
            finally:
                self.stop_children()
                self.client.close()
                self.state = SupervisorState.STOPPED
            log(f"Shutdown complete. Exiting with code {exit_code}.")
            return exit_code

    # -------- 主流程 --------
    def run(self) -> int:
        """主运行函数：按状态机推进，返回进程退出码。"""
        log("Starting rcsync supervisor...")
        self.state = SupervisorState.STARTING
        if not self.prepare_config() or not self.start_daemon():
            return self.shutdown(1)
        self._stop.wait(self.st.retry_interval)

        self.state = SupervisorState.WAITING_READY
        if not self.wait_ready():
            return self.shutdown(0)

        if self.stopping:
            return self.shutdown(0)
        self.state = SupervisorState.INITIALIZING
        if not self.initialize():
            err("Initialization failed. Terminating rclone...")
            return self.shutdown(1)
        if self.stopping:
            return self.shutdown(0)

        self.state = SupervisorState.RUNNING
        if not self.start_scheduler():
            return self.shutdown(1)
        self._stop.wait(self.st.retry_interval)
        return self.shutdown(self.monitor())


def run_supervisor() -> int:
    """入口函数：创建 Supervisor，注册信号并运行。"""
    sup = Supervisor()
    sup.install_signal_handlers()
    if sup.st.api_port > 0:
        from rcsync.server import serve_in_background
        serve_in_background(sup, sup.st.api_port)
    return sup.run()
