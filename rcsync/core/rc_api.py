"""rclone RC API 封装

职责：
- 就绪探测（OPTIONS rc/noopauth）
- 提交异步任务（POST sync/<command>，附加 `_async: true`）
- 查询任务状态（POST job/status?jobid=<id>）
- 列出活动挂载（POST mount/listmounts）
- 创建挂载（POST mount/mount）

所有请求使用 Basic Auth，且不设置客户端超时：rclone 的部分接口会长时间阻塞，
由外部（容器编排）负责整体超时。
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from rcsync.core.errors import MountError, RcError, SubmissionError
from rcsync.core.store import MountSpec
from rcsync.utils.logging import debug


@dataclass
class JobStatus:
    """守护进程侧的任务状态（只读观察）。"""
    job_id: str
    finished: bool
    command: str = ""
    src_fs: str = ""
    dst_fs: str = ""
    success: Optional[bool] = None
    error: str = ""

    @classmethod
    def from_dict(cls, job_id: str, data: dict) -> JobStatus:
        group = data.get("group")
        if not isinstance(group, dict):
            group = {}
        return cls(
            job_id=str(job_id),
            # 只有明确的 finished=false 才算仍在运行
            finished=data.get("finished") is not False,
            command=str(data.get("command") or ""),
            src_fs=str(group.get("srcFs") or data.get("srcFs") or ""),
            dst_fs=str(group.get("dstFs") or data.get("dstFs") or ""),
            success=data.get("success"),
            error=str(data.get("error") or ""),
        )


@dataclass
class ActiveMount:
    fs: str
    mount_point: str


class RcClient:
    """rclone RC API 客户端"""

    def __init__(self, base_url: str, username: str, password: str,
                 transport: Optional[httpx.BaseTransport] = None):
        """初始化 API 客户端

        Args:
            base_url: 例如 http://127.0.0.1:5572
            username/password: `--rc-user` / `--rc-pass`
            transport: 可选的 httpx transport（测试时注入 MockTransport）
        """
        self.base_url = base_url.rstrip("/")
        self._client = httpx.Client(
            base_url=self.base_url,
            auth=(username, password),
            timeout=httpx.Timeout(None),
            transport=transport,
        )

    @classmethod
    def from_settings(cls, st) -> RcClient:
        return cls(st.rc_url, st.rclone_username, st.rclone_password)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> RcClient:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _request(self, method: str, endpoint: str, payload: Optional[Dict[str, Any]] = None,
                 params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        """发送请求；body 为空时不带 Content-Type。"""
        kwargs: Dict[str, Any] = {}
        if payload is not None:
            kwargs["json"] = payload
        if params:
            kwargs["params"] = params
        return self._client.request(method, f"/{endpoint.lstrip('/')}", **kwargs)

    @staticmethod
    def _json(resp: httpx.Response) -> Dict[str, Any]:
        try:
            data = resp.json()
        except (json.JSONDecodeError, ValueError):
            return {}
        return data if isinstance(data, dict) else {}

    def probe_ready(self) -> bool:
        """守护进程可用时返回 True（noopauth 返回 200）。"""
        try:
            resp = self._request("OPTIONS", "rc/noopauth")
        except httpx.RequestError as e:
            debug(f"Readiness probe failed: {e}")
            return False
        return resp.status_code == 200

    def submit_job(self, command: str, opts: Dict[str, Any]) -> str:
        """提交异步任务，返回 job id。

        Raises:
            SubmissionError: 请求失败或响应中没有 jobid
        """
        body = dict(opts)
        body["_async"] = True
        try:
            resp = self._request("POST", f"sync/{command}", body)
        except httpx.RequestError as e:
            raise SubmissionError(f"request failed: {e}") from e
        job_id = self._json(resp).get("jobid")
        if job_id is None or job_id == "":
            raise SubmissionError(f"HTTP {resp.status_code}, response: {resp.text.strip()}")
        return str(job_id)

    def job_status(self, job_id: str) -> Optional[JobStatus]:
        """查询任务状态；守护进程找不到该任务时返回 None。"""
        try:
            resp = self._request("POST", "job/status", params={"jobid": job_id})
        except httpx.RequestError as e:
            debug(f"Failed to fetch status of job {job_id}: {e}")
            return None
        if resp.status_code != 200:
            debug(f"Job {job_id} status returned HTTP {resp.status_code}")
            return None
        data = self._json(resp)
        if not data:
            return None
        return JobStatus.from_dict(job_id, data)

    def list_active_mounts(self) -> List[ActiveMount]:
        """列出守护进程当前的活动挂载。

        Raises:
            RcError: 请求失败、非 200 或响应结构异常
        """
        try:
            resp = self._request("POST", "mount/listmounts")
        except httpx.RequestError as e:
            raise RcError(f"Failed to fetch active mounts: {e}") from e
        if resp.status_code != 200:
            raise RcError(f"Failed to fetch active mounts: HTTP {resp.status_code}")
        data = self._json(resp)
        points = data.get("mountPoints")
        if points is None:
            points = []
        if not isinstance(points, list):
            raise RcError(f"Unexpected listmounts response: {resp.text.strip()}")
        return [
            ActiveMount(fs=str(p.get("Fs", "")), mount_point=str(p.get("MountPoint", "")))
            for p in points if isinstance(p, dict)
        ]

    def create_mount(self, spec: MountSpec) -> int:
        """创建挂载，成功返回 200。

        Raises:
            MountError: 请求失败或非 200（status 记录 HTTP 状态码）
        """
        try:
            resp = self._request("POST", "mount/mount", spec.to_dict())
        except httpx.RequestError as e:
            raise MountError(f"Failed to mount {spec.fs}: {e}") from e
        if resp.status_code != 200:
            raise MountError(f"Failed to mount {spec.fs}: HTTP status {resp.status_code}.",
                             status=resp.status_code)
        return resp.status_code
