import json
import os
import shlex
import stat
import subprocess
import threading

import pytest

from rcsync.core.jobs import JobRecord, RunLog
from rcsync.core.schedule import publish, read_crontab

EXECUTOR = "/usr/bin/python3 -m rcsync execute_task"

TASKS = [
    {"cron": "*/5 * * * *", "command": "copy", "opts": {"srcFs": "a:", "dstFs": "b:"}},
    {"cron": "*/5 * * * *", "command": "sync", "opts": {"srcFs": "c:", "dstFs": "d:"}},
]


@pytest.fixture
def paths(tmp_path):
    return str(tmp_path / "crontabs" / "root"), RunLog(str(tmp_path / "cache" / "tasks_running"))


def test_two_tasks_same_cron_give_two_entries(paths):
    crontab, run_log = paths
    result = publish(TASKS, crontab, run_log, EXECUTOR)

    lines = read_crontab(crontab)
    assert lines == result.entries
    assert len(lines) == 2
    for line, task in zip(lines, TASKS):
        assert line.startswith("*/5 * * * * " + EXECUTOR + " ")
        payload = shlex.split(line)[-1]
        assert f'"command":"{task["command"]}"' in payload
    assert stat.S_IMODE(os.stat(crontab).st_mode) == 0o600


def test_republish_is_idempotent(paths):
    crontab, run_log = paths
    publish(TASKS, crontab, run_log, EXECUTOR)
    first = read_crontab(crontab)
    publish(TASKS, crontab, run_log, EXECUTOR)
    assert read_crontab(crontab) == first


def test_invalid_entries_are_skipped(paths):
    crontab, run_log = paths
    entries = TASKS[:1] + [
        {"command": "copy", "opts": {"srcFs": "a:", "dstFs": "b:"}},
        {"cron": "0 * * * *", "command": "copy", "opts": {"srcFs": "a:"}},
        {"cron": "0 * * * *", "command": "copy", "opts": "oops"},
    ]
    result = publish(entries, crontab, run_log, EXECUTOR)
    assert len(result.entries) == 1
    assert len(result.skipped) == 3
    assert len(read_crontab(crontab)) == 1


def test_publish_truncates_run_log_and_schedule(paths):
    crontab, run_log = paths
    publish(TASKS, crontab, run_log, EXECUTOR)
    run_log.append(JobRecord("copy a: -> b:", "3"))

    result = publish([], crontab, run_log, EXECUTOR)

    assert result.entries == []
    assert read_crontab(crontab) == []
    assert run_log.latest() == {}


def test_output_redirect_and_quoting(paths):
    crontab, run_log = paths
    task = {"cron": "0 3 * * *", "command": "copy", "opts": {"srcFs": "it's:", "dstFs": "b:"}}
    [line] = publish([task], crontab, run_log, EXECUTOR, ">> /proc/1/fd/1 2>> /proc/1/fd/2").entries
    assert line.endswith(" >> /proc/1/fd/1 2>> /proc/1/fd/2")
    assert "it's:" in shlex.split(line)[9]


def test_percent_reaches_executor_unchanged_through_shell(paths):
    crontab, run_log = paths
    task = {"cron": "0 3 * * *", "command": "copy",
            "opts": {"srcFs": "a:", "dstFs": "b:", "filter": ["+ *50%*"]}}
    [line] = publish([task], crontab, run_log, "printf '%s\\n'").entries

    command = line.split(" ", 5)[5]
    out = subprocess.run(["/bin/sh", "-c", command], capture_output=True, text=True, check=True).stdout
    assert json.loads(out)["opts"]["filter"] == ["+ *50%*"]


def test_publish_waits_for_run_log_lock(paths):
    crontab, run_log = paths
    run_log.append(JobRecord("copy a: -> b:", "3"))
    done = threading.Event()

    def republish():
        publish([], crontab, run_log, EXECUTOR)
        done.set()

    worker = threading.Thread(target=republish)
    with run_log.locked():
        worker.start()
        assert not done.wait(0.3)
        assert run_log.latest() == {"copy a: -> b:": "3"}
    worker.join(timeout=5)

    assert done.is_set()
    assert run_log.latest() == {}
