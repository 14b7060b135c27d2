import itertools
import threading

import pytest

from rcsync.core.config import load_settings
from rcsync.core.errors import MountError, SubmissionError
from rcsync.core.rc_api import ActiveMount, JobStatus


class FakeRcClient:
    """In-memory stand-in for RcClient that behaves like a small rclone rcd."""

    def __init__(self, ready=True):
        self.ready = ready
        self.active = []
        self.jobs = {}
        self.submissions = []
        self.mount_calls = []
        self.reject_fs = set()
        self.fail_submit = False
        self.list_calls = 0
        self.closed = False
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def probe_ready(self):
        return self.ready

    def submit_job(self, command, opts):
        with self._lock:
            if self.fail_submit:
                raise SubmissionError("no jobid in response")
            job_id = str(next(self._ids))
            self.submissions.append((command, dict(opts, _async=True)))
            self.jobs[job_id] = JobStatus(job_id=job_id, finished=False, command=command,
                                          src_fs=opts.get("srcFs", ""), dst_fs=opts.get("dstFs", ""))
            return job_id

    def finish(self, job_id):
        self.jobs[job_id].finished = True

    def job_status(self, job_id):
        return self.jobs.get(job_id)

    def list_active_mounts(self):
        self.list_calls += 1
        return list(self.active)

    def create_mount(self, spec):
        self.mount_calls.append(spec)
        if spec.fs in self.reject_fs:
            raise MountError(f"Failed to mount {spec.fs}: HTTP status 500.", status=500)
        self.active = [a for a in self.active if a.mount_point.rstrip("/") != spec.mount_point.rstrip("/")]
        self.active.append(ActiveMount(fs=spec.fs, mount_point=spec.mount_point))
        return 200

    def close(self):
        self.closed = True


@pytest.fixture
def fake_client():
    return FakeRcClient()


@pytest.fixture
def settings(tmp_path):
    conf = tmp_path / "config"
    conf.mkdir()
    (conf / "rclone.conf").write_text("[remote]\ntype = local\n")
    env = {
        "RCLONE_CONFIG": str(conf / "rclone.conf"),
        "MOUNTS_FILE": str(conf / "mounts.json"),
        "TASKS_FILE": str(conf / "tasks.json"),
        "CACHE_DIR": str(tmp_path / "cache"),
        "CRONTAB_FILE": str(tmp_path / "crontabs" / "root"),
        "UNMOUNT_CMD": "true",
        "CROND_CMD": "crond -f",
        "RETRY_INTERVAL": "0",
        "MONITOR_INTERVAL": "0.01",
        "STOP_TIMEOUT": "1",
    }
    return load_settings(env)
