import itertools
import subprocess
from pathlib import Path
from typing import List, Optional
from unittest import mock

import pytest

from git_sticky_mirror import lifecycle
from git_sticky_mirror.cache_key import CacheKey
from git_sticky_mirror.config import MirrorCacheConfig
from git_sticky_mirror.errors import (
    BrokerConnectionError,
    BrokerError,
    FilesystemError,
    MirrorOperationError,
)
from git_sticky_mirror.job_outcome import StaticJobOutcomeObserver
from git_sticky_mirror.metrics import METRIC_CLEANUP, METRIC_SETUP
from git_sticky_mirror.mount import DeviceMounter
from git_sticky_mirror.state import (
    CacheState,
    JsonFileStateStore,
    MemoryStateStore,
    load_cache_state,
    save_cache_state,
)
from git_sticky_mirror.types import (
    HydrationState,
    JobFailureReport,
    LifecycleState,
    OperationResult,
)
from tests.fixtures import isolated_env, lease, mount_base, state_store  # noqa: F401
from tests.t_utils import FakeBroker

REPO_URL = "https://github.com/foo/bar.git"
OK = OperationResult.ok()
FAILED = OperationResult(success=False, error="git exited with code 1")
TIMED_OUT = OperationResult(success=False, timed_out=True, error="git fetch timed out")

# region fakes


class RaisingObserver:
    def check_failures(self) -> JobFailureReport:
        raise RuntimeError("api down")


@pytest.fixture
def config(mount_base):
    return MirrorCacheConfig(vm_id="vm-1", mount_base=mount_base, retry_attempts=1)


@pytest.fixture
def broker(mount_base):
    return FakeBroker(mount_base)


@pytest.fixture
def mounter():
    m = mock.Mock()
    m.unmount.return_value = True
    return m


@pytest.fixture
def reporter():
    return mock.Mock()


@pytest.fixture
def calls():
    return []


@pytest.fixture
def mirror_ops(calls):
    """Patches the mirror store as seen by the orchestrator."""

    def record(name, result):
        def op(*args, **kwargs):
            calls.append(name)
            return result

        return op

    with mock.patch.object(lifecycle, "ensure_mirror", return_value=True) as ensure, mock.patch.object(
        lifecycle, "refresh_mirror", side_effect=record("refresh", OK)
    ) as refresh, mock.patch.object(
        lifecycle, "run_gc", side_effect=record("gc", OK)
    ) as gc, mock.patch.object(
        lifecycle, "run_integrity_check", side_effect=record("fsck", OK)
    ) as fsck:
        yield mock.Mock(ensure=ensure, refresh=refresh, gc=gc, fsck=fsck)


def _setup(config, broker, mounter, reporter, state_store, workspace_path=None, owner="foo", repo="bar"):
    return lifecycle.setup_cache(
        config,
        owner,
        repo,
        REPO_URL,
        "gh-token",
        state_store,
        workspace_path=workspace_path,
        broker=broker,
        mounter=mounter,
        reporter=reporter,
    )


def _cleanup(config, broker, mounter, reporter, state_store, observer=None):
    return lifecycle.cleanup_cache(
        config,
        state_store,
        "gh-token",
        observer or StaticJobOutcomeObserver(),
        broker=broker,
        mounter=mounter,
        reporter=reporter,
    )


# endregion fakes

# region decide_commit


@pytest.mark.parametrize(
    ("job", "refresh", "gc", "fsck", "hydrated", "expected"),
    [
        (JobFailureReport(False), OK, OK, OK, False, (True, False)),
        (JobFailureReport(False), OK, OK, OK, True, (True, True)),
        (JobFailureReport(True, 1, ["test"]), OK, OK, OK, True, (False, False)),
        (JobFailureReport.unavailable("no api"), OK, OK, OK, True, (False, False)),
        (JobFailureReport(False), FAILED, OK, OK, True, (False, False)),
        (JobFailureReport(False), TIMED_OUT, OK, OK, False, (False, False)),
        (JobFailureReport(False), OK, FAILED, OK, False, (False, False)),
        (JobFailureReport(False), OK, TIMED_OUT, OK, True, (False, False)),
        (JobFailureReport(False), OK, OK, FAILED, True, (False, False)),
        (JobFailureReport(False), OK, OK, TIMED_OUT, False, (False, False)),
    ],
)
def test_decide_commit(job, refresh, gc, fsck, hydrated, expected):
    decision = lifecycle.decide_commit(job, refresh, gc, fsck, hydrated)
    assert (decision.should_commit, decision.vm_hydrated_git_mirror) == expected
    assert bool(decision.reasons) != decision.should_commit


@pytest.mark.parametrize(
    ("job_failed", "refresh_failed", "gc_failed", "fsck_failed", "hydrated"),
    list(itertools.product([False, True], repeat=5)),
)
def test_decide_commit_truth_table(job_failed, refresh_failed, gc_failed, fsck_failed, hydrated):
    job = JobFailureReport(True, 1, ["test"]) if job_failed else JobFailureReport(False)
    decision = lifecycle.decide_commit(
        job,
        FAILED if refresh_failed else OK,
        FAILED if gc_failed else OK,
        FAILED if fsck_failed else OK,
        hydrated,
    )
    expected = not any((job_failed, refresh_failed, gc_failed, fsck_failed))
    assert decision.should_commit == expected
    assert decision.vm_hydrated_git_mirror == (expected and hydrated)


def test_decide_commit_reasons():
    decision = lifecycle.decide_commit(
        JobFailureReport(True, 2, ["build", "test"]), TIMED_OUT, OK, OK, False
    )
    assert any("build, test" in reason for reason in decision.reasons)
    assert any(reason.startswith("refresh timed out") for reason in decision.reasons)


# endregion decide_commit

# region setup


def test_setup_bypassed_without_vm_id(mount_base, broker, mounter, reporter, state_store):
    config = MirrorCacheConfig(vm_id="", mount_base=mount_base)
    result = _setup(config, broker, mounter, reporter, state_store)
    assert result.state == HydrationState.FAILED
    assert not result.usable
    assert broker.acquire_count == 0


def test_setup_invalid_repository(config, broker, mounter, reporter, state_store):
    result = _setup(config, broker, mounter, reporter, state_store, owner="a/b")
    assert result.state == HydrationState.FAILED
    assert broker.acquire_count == 0


def test_setup_hydrates_new_mirror(config, broker, mounter, reporter, state_store, mirror_ops, lease):
    result = _setup(config, broker, mounter, reporter, state_store)

    assert result.state == HydrationState.ACQUIRED
    assert result.usable
    assert result.performed_hydration
    assert result.lease.mirror_path == lease.mirror_path
    mounter.ensure_formatted.assert_called_once_with("/dev/vdb")
    mounter.mount.assert_called_once_with("/dev/vdb", Path(lease.mount_point))
    mirror_ops.ensure.assert_called_once()
    assert mirror_ops.ensure.call_args[0][:3] == (Path(lease.mirror_path), REPO_URL, "gh-token")

    saved = load_cache_state(state_store)
    assert saved.expose_id == result.lease.expose_id
    assert saved.performed_hydration is True
    assert saved.repo_url == REPO_URL
    assert "gh-token" not in state_store.get("gitStickyMirror")
    assert broker.commits == []
    assert reporter.report.call_args[0][0] == METRIC_SETUP


def test_setup_existing_mirror(config, broker, mounter, reporter, state_store, mirror_ops):
    mirror_ops.ensure.return_value = False
    result = _setup(config, broker, mounter, reporter, state_store)
    assert result.usable
    assert not result.performed_hydration
    assert load_cache_state(state_store).performed_hydration is False


def test_setup_links_workspace(config, broker, mounter, reporter, state_store, mirror_ops, tmp_path, lease):
    workspace = tmp_path / "ws"
    (workspace / ".git" / "objects").mkdir(parents=True)
    _setup(config, broker, mounter, reporter, state_store, workspace_path=workspace)
    alternates = workspace / ".git" / "objects" / "info" / "alternates"
    assert alternates.read_text() == f"{Path(lease.mirror_path) / 'objects'}\n"


def test_setup_hydration_in_progress(config, broker, mounter, reporter, state_store, mirror_ops):
    broker.hydrating["foo-bar"] = "someone-else"
    result = _setup(config, broker, mounter, reporter, state_store)

    assert result.state == HydrationState.IN_PROGRESS
    assert result.reason == "Initial mirror clone is running"
    assert not result.usable
    mounter.mount.assert_not_called()
    mirror_ops.ensure.assert_not_called()
    assert load_cache_state(state_store) is None
    assert broker.commits == []


@pytest.mark.parametrize(
    "error",
    [BrokerConnectionError("refused"), BrokerError("boom", code="internal")],
)
def test_setup_broker_failure(config, mounter, reporter, state_store, mirror_ops, error):
    broker = mock.Mock()
    broker.acquire.side_effect = error
    result = _setup(config, broker, mounter, reporter, state_store)
    assert result.state == HydrationState.FAILED
    mounter.mount.assert_not_called()
    broker.commit.assert_not_called()


def test_setup_mount_failure_discards(config, broker, mounter, reporter, state_store, mirror_ops):
    mounter.mount.side_effect = FilesystemError("mount exited with code 32")
    result = _setup(config, broker, mounter, reporter, state_store)

    assert result.state == HydrationState.FAILED
    mounter.unmount.assert_not_called()
    assert broker.commits == [("expose-1", "foo-bar", False, False)]
    assert broker.hydrating == {}
    assert load_cache_state(state_store) is None


def test_setup_chown_failure_unmounts(config, broker, reporter, state_store, mirror_ops):
    programs = []

    def run_command(cmd, **kwargs):
        programs.append(cmd[0])
        returncode = 1 if cmd[0] == "chown" else 0
        return subprocess.CompletedProcess(cmd, returncode, stdout=b'TYPE="ext4"', stderr=b"")

    with mock.patch("git_sticky_mirror.mount.run_command", side_effect=run_command):
        result = _setup(config, broker, DeviceMounter(use_sudo=False), reporter, state_store)

    assert result.state == HydrationState.FAILED
    assert programs[-3:] == ["chown", "sync", "umount"]
    assert broker.commits == [("expose-1", "foo-bar", False, False)]
    mirror_ops.ensure.assert_not_called()


def test_setup_clone_failure_discards(config, broker, mounter, reporter, state_store, mirror_ops, lease):
    mirror_ops.ensure.side_effect = MirrorOperationError("clone")
    result = _setup(config, broker, mounter, reporter, state_store)

    assert result.state == HydrationState.FAILED
    mounter.unmount.assert_called_once_with(Path(lease.mount_point))
    assert broker.commits == [("expose-1", "foo-bar", False, False)]
    assert load_cache_state(state_store) is None


def test_setup_survives_failing_discard(config, mounter, reporter, state_store, mirror_ops, lease):
    broker = mock.Mock()
    broker.acquire.return_value = lease
    broker.commit.side_effect = BrokerConnectionError("gone")
    mirror_ops.ensure.side_effect = MirrorOperationError("clone")
    result = _setup(config, broker, mounter, reporter, state_store)
    assert result.state == HydrationState.FAILED


def test_setup_reporter_failure_is_ignored(config, broker, mounter, state_store, mirror_ops):
    reporter = mock.Mock()
    reporter.report.side_effect = RuntimeError("metrics down")
    assert _setup(config, broker, mounter, reporter, state_store).usable


# endregion setup

# region cleanup


@pytest.fixture
def saved_state(state_store, lease):
    save_cache_state(state_store, CacheState.from_lease(lease, REPO_URL, True, False))
    return state_store


def test_cleanup_without_state(config, broker, mounter, reporter, state_store, mirror_ops):
    assert _cleanup(config, broker, mounter, reporter, state_store) is None
    assert broker.commits == []
    mounter.unmount.assert_not_called()


def test_cleanup_unreadable_state_file(config, broker, mounter, reporter, mirror_ops, tmp_path):
    assert _cleanup(config, broker, mounter, reporter, JsonFileStateStore(tmp_path)) is None
    assert broker.commits == []
    mounter.unmount.assert_not_called()


def test_cleanup_failing_state_store(config, broker, mounter, reporter, mirror_ops):
    store = mock.Mock()
    store.get.side_effect = PermissionError("denied")
    assert _cleanup(config, broker, mounter, reporter, store) is None
    assert broker.commits == []


def test_cleanup_cache_client_creation_failure(config, saved_state, mirror_ops):
    with mock.patch.object(
        lifecycle.StickyDiskClient, "from_config", side_effect=RuntimeError("h2 unavailable")
    ):
        result = lifecycle.cleanup_cache(config, saved_state, "gh-token", StaticJobOutcomeObserver())
    assert result is None


def test_cleanup_order(config, mounter, reporter, saved_state, mirror_ops, calls, lease):
    broker = mock.Mock()
    broker.commit.side_effect = lambda *args: calls.append("commit")
    mounter.unmount.side_effect = lambda *args: calls.append("unmount")
    observer = mock.Mock()
    observer.check_failures.side_effect = lambda: calls.append("observe") or JobFailureReport(False)

    decision = _cleanup(config, broker, mounter, reporter, saved_state, observer)

    assert calls == ["refresh", "gc", "fsck", "unmount", "observe", "commit"]
    assert decision.should_commit
    assert decision.vm_hydrated_git_mirror
    broker.commit.assert_called_once_with(lease.expose_id, lease.sticky_disk_key, True, True)


def test_cleanup_passes_timeouts(config, broker, mounter, reporter, saved_state, mirror_ops, lease):
    _cleanup(config, broker, mounter, reporter, saved_state)
    mirror_path = Path(lease.mirror_path)
    assert mirror_ops.refresh.call_args[0][:4] == (mirror_path, REPO_URL, "gh-token", config.refresh_timeout)
    mirror_ops.gc.assert_called_once_with(mirror_path, config.gc_timeout)
    mirror_ops.fsck.assert_called_once_with(mirror_path, config.fsck_timeout)


def test_cleanup_clears_state(config, broker, mounter, reporter, saved_state, mirror_ops):
    _cleanup(config, broker, mounter, reporter, saved_state)
    assert load_cache_state(saved_state) is None
    # a second cleanup has nothing to release
    assert _cleanup(config, broker, mounter, reporter, saved_state) is None
    assert len(broker.commits) == 1


def test_cleanup_refresh_timeout_discards(config, broker, mounter, reporter, saved_state, mirror_ops):
    mirror_ops.refresh.side_effect = None
    mirror_ops.refresh.return_value = TIMED_OUT
    decision = _cleanup(config, broker, mounter, reporter, saved_state)
    assert not decision.should_commit
    assert not decision.vm_hydrated_git_mirror
    assert broker.commits[-1][2:] == (False, False)
    mounter.unmount.assert_called_once()


def test_cleanup_fsck_failure_discards(config, broker, mounter, reporter, saved_state, mirror_ops):
    mirror_ops.fsck.side_effect = None
    mirror_ops.fsck.return_value = FAILED
    assert not _cleanup(config, broker, mounter, reporter, saved_state).should_commit


def test_cleanup_unexpected_error_discards(config, broker, mounter, reporter, saved_state, mirror_ops):
    mirror_ops.gc.side_effect = RuntimeError("surprise")
    decision = _cleanup(config, broker, mounter, reporter, saved_state)
    assert not decision.should_commit
    assert len(broker.commits) == 1


def test_cleanup_failed_job_discards(config, broker, mounter, reporter, saved_state, mirror_ops):
    observer = StaticJobOutcomeObserver(failed_steps=["test"])
    decision = _cleanup(config, broker, mounter, reporter, saved_state, observer)
    assert not decision.should_commit
    assert broker.commits[-1][2:] == (False, False)


def test_cleanup_observer_error_fails_closed(config, broker, mounter, reporter, saved_state, mirror_ops):
    decision = _cleanup(config, broker, mounter, reporter, saved_state, RaisingObserver())
    assert not decision.should_commit
    assert any("api down" in reason for reason in decision.reasons)


def test_cleanup_commit_error_is_swallowed(config, mounter, reporter, saved_state, mirror_ops):
    broker = mock.Mock()
    broker.commit.side_effect = BrokerConnectionError("gone")
    decision = _cleanup(config, broker, mounter, reporter, saved_state)
    assert decision.should_commit
    assert load_cache_state(saved_state) is None


def test_cleanup_unmount_error_is_swallowed(config, broker, mounter, reporter, saved_state, mirror_ops):
    mounter.unmount.side_effect = OSError("busy")
    decision = _cleanup(config, broker, mounter, reporter, saved_state)
    assert decision.should_commit
    assert len(broker.commits) == 1


def test_cleanup_reports_metric(config, broker, mounter, reporter, saved_state, mirror_ops):
    _cleanup(config, broker, mounter, reporter, saved_state)
    metric_type, value, attributes = reporter.report.call_args[0]
    assert metric_type == METRIC_CLEANUP
    assert value == 1
    assert attributes["should_commit"] == "true"


# endregion cleanup

# region lifecycle states


def test_lifecycle_states(config, broker, mounter, reporter, state_store, mirror_ops):
    cache = lifecycle.CacheLifecycle(config, broker, mounter, reporter)
    assert cache.state == LifecycleState.IDLE
    cache.setup(CacheKey("foo", "bar"), REPO_URL, None, state_store)
    assert cache.state == LifecycleState.JOB_RUNNING
    cache.cleanup(state_store, None, StaticJobOutcomeObserver())
    assert cache.state == LifecycleState.COMMITTED


def test_lifecycle_discarded(config, broker, mounter, reporter, state_store, mirror_ops):
    cache = lifecycle.CacheLifecycle(config, broker, mounter, reporter)
    cache.setup(CacheKey("foo", "bar"), REPO_URL, None, state_store)
    cache.cleanup(state_store, None, StaticJobOutcomeObserver(error="unknown"))
    assert cache.state == LifecycleState.DISCARDED


# endregion lifecycle states

# region scenarios


def _job(config, broker, mounter, reporter, state_store, failed_steps: Optional[List[str]] = None):
    setup = _setup(config, broker, mounter, reporter, state_store)
    if not setup.usable:
        return setup, None
    observer = StaticJobOutcomeObserver(failed_steps=failed_steps)
    return setup, _cleanup(config, broker, mounter, reporter, state_store, observer)


def test_concurrent_first_use(config, broker, mounter, reporter, mirror_ops):
    first_store, second_store = MemoryStateStore(), MemoryStateStore()
    first = _setup(config, broker, mounter, reporter, first_store)
    # second job starts while the first is still hydrating
    second = _setup(config, broker, mounter, reporter, second_store)

    assert first.state == HydrationState.ACQUIRED
    assert first.performed_hydration
    assert second.state == HydrationState.IN_PROGRESS
    assert mirror_ops.ensure.call_count == 1

    decision = _cleanup(config, broker, mounter, reporter, first_store)
    assert (decision.should_commit, decision.vm_hydrated_git_mirror) == (True, True)
    assert _cleanup(config, broker, mounter, reporter, second_store) is None

    # later jobs reuse the committed mirror
    mirror_ops.ensure.return_value = False
    third, third_decision = _job(config, broker, mounter, reporter, MemoryStateStore())
    assert third.usable
    assert not third.performed_hydration
    assert (third_decision.should_commit, third_decision.vm_hydrated_git_mirror) == (True, False)


def test_failed_hydrating_job_allows_rehydration(config, broker, mounter, reporter, mirror_ops):
    first, first_decision = _job(
        config, broker, mounter, reporter, MemoryStateStore(), failed_steps=["test"]
    )
    assert first.performed_hydration
    assert (first_decision.should_commit, first_decision.vm_hydrated_git_mirror) == (False, False)
    assert "foo-bar" not in broker.committed_keys

    # the lock was released, so the next job hydrates again
    second, second_decision = _job(config, broker, mounter, reporter, MemoryStateStore())
    assert second.state == HydrationState.ACQUIRED
    assert mirror_ops.ensure.call_count == 2
    assert second_decision.should_commit
    assert "foo-bar" in broker.committed_keys


# endregion scenarios
