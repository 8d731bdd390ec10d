import os
import subprocess
from pathlib import Path
from unittest import mock

import pytest

from git_sticky_mirror.constants import keys
from git_sticky_mirror.state import MemoryStateStore
from git_sticky_mirror.types import Lease

ENV_KEYS = [value for name, value in vars(keys).items() if name.startswith("ENV_") and name != "ENV_BASE_NAME"]


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    for key in list(os.environ):
        if key.startswith("STATE_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def mocked_run_command():
    with mock.patch("git_sticky_mirror.utils.git.run_command") as mocked:
        mocked.return_value = subprocess.CompletedProcess([], 0, stdout=None, stderr=None)
        yield mocked


@pytest.fixture
def mount_base(tmp_path) -> Path:
    return tmp_path / "mnt"


@pytest.fixture
def lease(mount_base) -> Lease:
    return Lease(
        expose_id="expose-1",
        sticky_disk_key="foo-bar",
        device="/dev/vdb",
        mount_point=str(mount_base / "foo" / "bar"),
        mirror_path=str(mount_base / "foo" / "bar" / "v1" / "foo-bar.git"),
    )


@pytest.fixture
def state_store() -> MemoryStateStore:
    return MemoryStateStore()
