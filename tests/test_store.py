import json

import pytest

from rcsync.core.errors import ConfigError, TaskValidationError
from rcsync.core.store import MountSpec, TaskSpec, load_mounts, load_task_entries


def test_missing_file_is_created_as_empty_array(tmp_path):
    path = tmp_path / "nested" / "mounts.json"
    assert load_mounts(str(path)) == []
    assert json.loads(path.read_text()) == []


def test_missing_file_without_create_is_config_error(tmp_path):
    with pytest.raises(ConfigError):
        load_mounts(str(tmp_path / "mounts.json"), create=False)


@pytest.mark.parametrize("content", ["{not json", '{"fs": "a:"}', '["a:"]'])
def test_malformed_lists_raise_config_error(tmp_path, content):
    path = tmp_path / "tasks.json"
    path.write_text(content)
    with pytest.raises(ConfigError):
        load_task_entries(str(path))


def test_empty_file_reads_as_empty_list(tmp_path):
    path = tmp_path / "mounts.json"
    path.write_text("")
    assert load_mounts(str(path)) == []


def test_mount_spec_defaults_and_identity(tmp_path):
    path = tmp_path / "mounts.json"
    path.write_text(json.dumps([{"fs": "gdrive:", "mountPoint": "/data/gdrive", "vfsOpt": {"CacheMode": 3}}]))
    [spec] = load_mounts(str(path))
    assert spec.identity == ("gdrive:", "/data/gdrive")
    assert spec.mount_opt == {}
    assert spec.to_dict()["vfsOpt"] == {"CacheMode": 3}


def test_mount_spec_rejects_non_object_options():
    with pytest.raises(ConfigError):
        MountSpec.from_dict({"fs": "a:", "mountPoint": "/m", "mountOpt": "AllowOther"})


def test_task_key_and_validation():
    spec = TaskSpec.from_dict({"cron": "*/5 * * * *", "command": "copy",
                               "opts": {"srcFs": "a:/x", "dstFs": "b:/y"}})
    assert spec.task_key == "copy a:/x -> b:/y"
    spec.validate(require_cron=True)

    with pytest.raises(TaskValidationError, match="dstFs"):
        TaskSpec.from_dict({"command": "copy", "opts": {"srcFs": "a:"}}).validate()
    with pytest.raises(TaskValidationError, match="cron"):
        TaskSpec.from_dict({"command": "copy", "opts": {"srcFs": "a:", "dstFs": "b:"}}).validate(require_cron=True)


def test_payload_is_stable_regardless_of_key_order():
    a = TaskSpec(cron="0 * * * *", command="sync", opts={"srcFs": "a:", "dstFs": "b:"})
    b = TaskSpec(cron="0 * * * *", command="sync", opts={"dstFs": "b:", "srcFs": "a:"})
    assert a.to_payload() == b.to_payload()
