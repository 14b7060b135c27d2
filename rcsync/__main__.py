"""命令行入口：`python -m rcsync [command]`。"""

from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from rcsync.core.config import load_settings
from rcsync.core.errors import ConfigError
from rcsync.core.health import is_healthy
from rcsync.core.jobs import RunLog, execute_payload
from rcsync.core.rc_api import RcClient
from rcsync.core.schedule import publish
from rcsync.core.store import load_task_entries
from rcsync.utils.logging import err


def cmd_execute_task(payload: str) -> int:
    st = load_settings()
    with RcClient.from_settings(st) as client:
        return execute_payload(client, payload, RunLog(st.task_running_file))


def cmd_healthcheck() -> int:
    st = load_settings()
    with RcClient.from_settings(st) as client:
        return 0 if is_healthy(client, st.mounts_file).healthy else 1


def cmd_publish() -> int:
    st = load_settings()
    try:
        publish(load_task_entries(st.tasks_file), st.crontab_file, RunLog(st.task_running_file),
                st.executor_command(), st.task_output)
    except ConfigError as e:
        err(str(e))
        return 1
    return 0


def cmd_serve(port: Optional[int]) -> int:
    from rcsync.server import serve

    st = load_settings()
    return serve(port or st.api_port or 5573)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="rcsync", description="rclone supervisor / sidecar")
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("supervise", help="run rclone rcd + crond (default)")
    p = sub.add_parser("execute_task", help="submit a task unless the same one is still running")
    p.add_argument("payload", help="task JSON as written to the crontab")
    sub.add_parser("healthcheck", help="exit 0 when every configured mount is active")
    sub.add_parser("publish", help="regenerate the crontab from the task list")
    p = sub.add_parser("serve", help="run the management API only")
    p.add_argument("--port", type=int, default=None)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.command == "execute_task":
        return cmd_execute_task(args.payload)
    if args.command == "healthcheck":
        return cmd_healthcheck()
    if args.command == "publish":
        return cmd_publish()
    if args.command == "serve":
        return cmd_serve(args.port)
    from rcsync.supervisor import run_supervisor
    return run_supervisor()


if __name__ == "__main__":
    sys.exit(main())
