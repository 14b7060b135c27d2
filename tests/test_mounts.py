import os
import stat

from rcsync.core import mounts as mount_ops
from rcsync.core.health import check_mounts
from rcsync.core.store import MountSpec


def test_reconcile_creates_mount_points_and_mounts(tmp_path, fake_client):
    mp = tmp_path / "mnt" / "a"
    specs = [MountSpec(fs="a:", mount_point=str(mp))]

    result = mount_ops.reconcile(fake_client, specs, unmount_cmd="true")

    assert result.ok
    assert result.mounted == specs
    assert mp.is_dir()
    assert stat.S_IMODE(os.stat(mp).st_mode) == 0o777
    assert fake_client.mount_calls == specs


def test_unmount_happens_before_mount(tmp_path, fake_client, monkeypatch):
    events = []
    monkeypatch.setattr(mount_ops, "unmount", lambda mp, cmd: events.append(("unmount", mp)) or True)
    original = fake_client.create_mount

    def create_mount(spec):
        events.append(("mount", spec.mount_point))
        return original(spec)

    fake_client.create_mount = create_mount
    a, b = str(tmp_path / "a"), str(tmp_path / "b")
    mount_ops.reconcile(fake_client, [MountSpec("a:", a), MountSpec("b:", b)])

    assert events == [("unmount", a), ("unmount", b), ("mount", a), ("mount", b)]


def test_unmount_failures_are_ignored(tmp_path):
    specs = [MountSpec("a:", str(tmp_path / "a")), MountSpec("b:", str(tmp_path / "b"))]
    assert mount_ops.unmount_all(specs, unmount_cmd="false") == 0
    assert mount_ops.unmount_all(specs, unmount_cmd="/nonexistent/fusermount3 -u") == 0
    assert mount_ops.unmount_all(specs, unmount_cmd="true") == 2


def test_partial_failure_is_isolated(tmp_path, fake_client):
    fake_client.reject_fs.add("bad:")
    specs = [
        MountSpec("bad:", str(tmp_path / "bad")),
        MountSpec("", str(tmp_path / "nofs")),
        MountSpec("good:", str(tmp_path / "good")),
    ]

    result = mount_ops.reconcile(fake_client, specs, unmount_cmd="true")

    assert not result.ok
    assert [s.fs for s in result.mounted] == ["good:"]
    assert [s.fs for s, _ in result.failed] == ["bad:", ""]
    assert [s.fs for s in fake_client.mount_calls] == ["bad:", "good:"]


def test_mount_point_creation_failure_marks_entry_failed(tmp_path, fake_client):
    blocker = tmp_path / "file"
    blocker.write_text("x")
    specs = [MountSpec("a:", str(blocker / "sub")), MountSpec("b:", str(tmp_path / "b"))]

    result = mount_ops.reconcile(fake_client, specs, unmount_cmd="true")

    assert [s.fs for s, _ in result.failed] == ["a:"]
    assert [s.fs for s in fake_client.mount_calls] == ["b:"]


def test_empty_list_skips_mount_phase(fake_client):
    result = mount_ops.reconcile(fake_client, [], unmount_cmd="true")
    assert result.ok
    assert fake_client.mount_calls == []


def test_reconcile_twice_stays_healthy(tmp_path, fake_client):
    specs = [MountSpec("a:", str(tmp_path / "a")), MountSpec("b:", str(tmp_path / "b"))]

    assert mount_ops.reconcile(fake_client, specs, unmount_cmd="true").ok
    assert check_mounts(fake_client, specs).healthy
    assert mount_ops.reconcile(fake_client, specs, unmount_cmd="true").ok
    assert check_mounts(fake_client, specs).healthy
    assert len(fake_client.active) == 2
