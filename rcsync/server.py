from __future__ import annotations

"""最小管理 API（可选）

职责：
- 状态查询 `/rcsync/api/status`（监管状态、挂载/任务数量、健康结论）；
- 健康检查 `/rcsync/api/health`（健康 200，否则 503）；
- 只读查看：`/rcsync/api/mounts`、`/rcsync/api/tasks`、`/rcsync/api/jobs`；
- 一次性操作：`/rcsync/api/remount`、`/rcsync/api/publish`。

注意：
- 所有路由以 `/rcsync/api` 为前缀；
- 本模块不强制依赖监管进程；若传入 supervisor 句柄，状态中会包含其状态机阶段，
  并复用其 RC 客户端与配置。
"""

import threading
from typing import Dict

from rcsync.core import mounts as mount_ops
from rcsync.core.config import load_settings
from rcsync.core.errors import ConfigError
from rcsync.core.health import check_mounts
from rcsync.core.jobs import RunLog
from rcsync.core.rc_api import RcClient
from rcsync.core.schedule import publish
from rcsync.core.store import load_mounts, load_task_entries
from rcsync.utils.logging import err, log


def create_app(supervisor=None, settings=None, client=None):
    """创建 FastAPI 应用实例。

    参数：
    - supervisor: 可选的 Supervisor 实例；
    - settings/client: 未传入 supervisor 时使用（默认从环境构造）。
    """
    # Lazy import to avoid hard dependency when not serving
    from fastapi import FastAPI
    from fastapi.responses import JSONResponse

    if supervisor is not None:
        settings = supervisor.st
        client = supervisor.client
    st = settings or load_settings()
    rc = client or RcClient.from_settings(st)
    run_log = RunLog(st.task_running_file)

    app = FastAPI(title="rcsync manager", version="0.1.0")

    def _health() -> Dict:
        try:
            mounts = load_mounts(st.mounts_file, create=False)
        except ConfigError as e:
            return {"healthy": False, "missing": [], "error": str(e)}
        return check_mounts(rc, mounts).to_dict()

    @app.get("/rcsync/api/status")
    def api_status() -> Dict:
        """返回运行时状态（JSON）。"""
        try:
            mount_count = len(load_mounts(st.mounts_file, create=False))
        except ConfigError:
            mount_count = 0
        try:
            task_count = len(load_task_entries(st.tasks_file, create=False))
        except ConfigError:
            task_count = 0
        return {
            "state": supervisor.state.value if supervisor is not None else None,
            "rc_url": st.rc_url,
            "mounts": mount_count,
            "tasks": task_count,
            "health": _health(),
        }

    @app.get("/rcsync/api/health")
    def api_health():
        report = _health()
        return JSONResponse(report, status_code=200 if report["healthy"] else 503)

    @app.get("/rcsync/api/mounts")
    def api_mounts():
        try:
            return {"mounts": [m.to_dict() for m in load_mounts(st.mounts_file, create=False)]}
        except ConfigError as e:
            return JSONResponse({"ok": False, "error": str(e)}, status_code=500)

    @app.get("/rcsync/api/tasks")
    def api_tasks():
        try:
            return {"tasks": load_task_entries(st.tasks_file, create=False)}
        except ConfigError as e:
            return JSONResponse({"ok": False, "error": str(e)}, status_code=500)

    @app.get("/rcsync/api/jobs")
    def api_jobs():
        """每个任务键最近一次提交的 job id。"""
        return {"jobs": run_log.latest()}

    @app.post("/rcsync/api/remount")
    def api_remount():
        """立即重新执行一次挂载对齐。"""
        try:
            result = mount_ops.reconcile(rc, load_mounts(st.mounts_file), st.unmount_cmd)
        except ConfigError as e:
            err(str(e))
            return JSONResponse({"ok": False, "error": str(e)}, status_code=500)
        body = {
            "ok": result.ok,
            "mounted": [m.to_dict() for m in result.mounted],
            "failed": [{"mount": m.to_dict(), "error": reason} for m, reason in result.failed],
        }
        return JSONResponse(body, status_code=200 if result.ok else 500)

    @app.post("/rcsync/api/publish")
    def api_publish():
        """按当前 tasks.json 重新生成 crontab（同时截断 run log）。"""
        try:
            result = publish(load_task_entries(st.tasks_file), st.crontab_file, run_log,
                             st.executor_command(), st.task_output)
        except ConfigError as e:
            err(str(e))
            return JSONResponse({"ok": False, "error": str(e)}, status_code=500)
        return {"ok": True, "entries": result.entries, "skipped": len(result.skipped)}

    return app


def serve(port: int, supervisor=None) -> int:
    """启动 Uvicorn 服务，监听 0.0.0.0:<port>。"""
    import uvicorn

    app = create_app(supervisor=supervisor)
    uvicorn.run(app, host="0.0.0.0", port=port)
    return 0


def serve_in_background(supervisor, port: int) -> threading.Thread:
    """在守护线程中运行管理 API（信号仍由主线程的 Supervisor 处理）。"""
    import uvicorn

    config = uvicorn.Config(create_app(supervisor=supervisor), host="0.0.0.0", port=port, log_level="warning")
    server = uvicorn.Server(config)
    t = threading.Thread(target=server.run, daemon=True)
    t.start()
    log(f"Management API listening on :{port}")
    return t
