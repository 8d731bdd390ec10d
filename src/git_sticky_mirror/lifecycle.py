"""Cache lifecycle orchestration across the two job phases.

setup (pre-job):   acquire → format/mount → ensure mirror → link workspace → save state
cleanup (post-job): load state → refresh → gc → fsck → sync/unmount → decide → commit

Neither phase raises for cache problems. Setup reports "use the uncached path";
cleanup downgrades to a discard instead of failing the job.
"""

import logging
import time
from pathlib import Path
from typing import Callable, Dict, Optional, Protocol

from git_sticky_mirror.alternates import link_workspace_to_mirror
from git_sticky_mirror.broker import StickyDiskClient
from git_sticky_mirror.cache_key import CacheKey
from git_sticky_mirror.config import MirrorCacheConfig
from git_sticky_mirror.errors import StickyMirrorError
from git_sticky_mirror.job_outcome import JobOutcomeObserver
from git_sticky_mirror.metrics import (
    METRIC_CLEANUP,
    METRIC_HYDRATION,
    METRIC_SETUP,
    MetricsReporter,
    NoopReporter,
)
from git_sticky_mirror.mirror import (
    ensure_mirror,
    get_mirror_status,
    refresh_mirror,
    run_gc,
    run_integrity_check,
)
from git_sticky_mirror.mount import DeviceMounter
from git_sticky_mirror.retry import RetryHelper
from git_sticky_mirror.state import (
    CacheState,
    StateStore,
    clear_cache_state,
    load_cache_state,
    save_cache_state,
)
from git_sticky_mirror.types import (
    AcquireResult,
    CacheSetupResult,
    CommitDecision,
    HydrationInProgress,
    HydrationState,
    JobFailureReport,
    LifecycleState,
    Lease,
    MirrorStatus,
    OperationResult,
)
from git_sticky_mirror.utils.logging import get_logger, log_section

logger = get_logger(__name__)


class Broker(Protocol):
    def acquire(self, cache_key: CacheKey, mount_base: Path) -> AcquireResult: ...

    def commit(
        self,
        expose_id: str,
        sticky_disk_key: str,
        should_commit: bool,
        vm_hydrated_git_mirror: bool,
    ) -> None: ...


class Mounter(Protocol):
    def ensure_formatted(self, device: str) -> None: ...

    def mount(self, device: str, mount_point: Path) -> None: ...

    def unmount(self, mount_point: Path) -> bool: ...


def decide_commit(
    job_report: JobFailureReport,
    refresh: OperationResult,
    gc: OperationResult,
    integrity: OperationResult,
    performed_hydration: bool,
) -> CommitDecision:
    """Decides whether the mirror state gets persisted.

    Any failed or cancelled job step, an unavailable job report, or a refresh,
    gc or integrity check that failed or timed out forces a discard. A
    hydration is only reported when it is also committed.
    """
    reasons = []
    if job_report.error:
        reasons.append(f"job status unavailable: {job_report.error}")
    if job_report.has_failures:
        steps = ", ".join(job_report.failed_steps) or "unknown"
        reasons.append(f"{job_report.failed_count} failed or cancelled step(s): {steps}")
    for name, result in (("refresh", refresh), ("gc", gc), ("integrity check", integrity)):
        if not result.success:
            reasons.append(f"{name} {result.describe()}")

    should_commit = not reasons
    return CommitDecision(
        should_commit=should_commit,
        vm_hydrated_git_mirror=should_commit and performed_hydration,
        reasons=reasons,
    )


class CacheLifecycle:
    def __init__(
        self,
        config: MirrorCacheConfig,
        broker: Broker,
        mounter: Optional[Mounter] = None,
        reporter: Optional[MetricsReporter] = None,
    ) -> None:
        self.config = config
        self.broker = broker
        self.mounter = mounter if mounter is not None else DeviceMounter()
        self.reporter = reporter if reporter is not None else NoopReporter()
        self.state = LifecycleState.IDLE

    def _transition(self, new_state: LifecycleState) -> None:
        logger.debug("lifecycle: %s -> %s", self.state.value, new_state.value)
        self.state = new_state

    def _report(self, metric_type: str, value: float, attributes: Dict[str, str]) -> None:
        try:
            self.reporter.report(metric_type, value, attributes)
        except Exception as ex:  # noqa: BLE001
            logger.debug("[metrics] reporter raised: %s", ex)

    def _retry_helper(self) -> RetryHelper:
        return RetryHelper(max_attempts=max(1, self.config.retry_attempts))

    # region setup

    def setup(
        self,
        cache_key: CacheKey,
        repo_url: str,
        auth_token: Optional[str],
        state_store: StateStore,
        workspace_path: Optional[Path] = None,
    ) -> CacheSetupResult:
        """Acquires, mounts and hydrates the mirror for `cache_key`.

        Returns:
            ACQUIRED with the lease when the mirror is ready, IN_PROGRESS when
            another job is hydrating (fall back, do not wait), FAILED when the
            cache is unavailable for any other reason (fall back).
        """
        started = time.monotonic()
        result = self._setup(cache_key, repo_url, auth_token, state_store, workspace_path)
        self._report(
            METRIC_SETUP,
            (time.monotonic() - started) * 1000,
            {
                "result": result.state.value,
                "hydrated": str(result.performed_hydration).lower(),
            },
        )
        return result

    def _setup(
        self,
        cache_key: CacheKey,
        repo_url: str,
        auth_token: Optional[str],
        state_store: StateStore,
        workspace_path: Optional[Path],
    ) -> CacheSetupResult:
        if not self.config.is_sticky_disk_environment():
            logger.debug("no VM id, sticky disk cache bypassed")
            return CacheSetupResult(HydrationState.FAILED, reason="not a sticky disk environment")

        self._transition(LifecycleState.ACQUIRING)
        try:
            acquired = self.broker.acquire(cache_key, self.config.mount_base)
        except StickyMirrorError as ex:
            logger.warning("[git-mirror] Cache unavailable: %s", ex)
            self._transition(LifecycleState.IDLE)
            return CacheSetupResult(HydrationState.FAILED, reason=str(ex))

        if isinstance(acquired, HydrationInProgress):
            logger.warning(
                "[git-mirror] Falling back to standard checkout."
                " Cache will be available once hydration completes."
            )
            self._transition(LifecycleState.IDLE)
            return CacheSetupResult(HydrationState.IN_PROGRESS, reason=acquired.reason)

        lease = acquired
        mounted = False
        try:
            self.mounter.ensure_formatted(lease.device)
            self.mounter.mount(lease.device, Path(lease.mount_point))
            mounted = True
            self._transition(LifecycleState.MOUNTED)

            performed_hydration = self._ensure_mirror(lease, repo_url, auth_token)

            if workspace_path is not None:
                link_workspace_to_mirror(workspace_path, Path(lease.mirror_path))

            save_cache_state(
                state_store,
                CacheState.from_lease(lease, repo_url, performed_hydration, self.config.verbose),
            )
        except Exception as ex:  # noqa: BLE001
            # release the lease; the job falls back to a plain checkout
            logger.warning("[git-mirror] Cache setup failed, falling back: %s", ex)
            self._discard(lease, mounted)
            return CacheSetupResult(HydrationState.FAILED, reason=str(ex))

        self._transition(LifecycleState.JOB_RUNNING)
        return CacheSetupResult(
            HydrationState.ACQUIRED, lease=lease, performed_hydration=performed_hydration
        )

    def _ensure_mirror(self, lease: Lease, repo_url: str, auth_token: Optional[str]) -> bool:
        mirror_path = Path(lease.mirror_path)
        if get_mirror_status(mirror_path) == MirrorStatus.PRESENT:
            self._transition(LifecycleState.REFRESH_DEFERRED)
        else:
            self._transition(LifecycleState.HYDRATING)

        started = time.monotonic()
        performed = ensure_mirror(
            mirror_path, repo_url, auth_token, self._retry_helper(), self.config.verbose
        )
        if performed:
            self._report(
                METRIC_HYDRATION,
                (time.monotonic() - started) * 1000,
                {"sticky_disk_key": lease.sticky_disk_key},
            )
        return performed

    def _discard(self, lease: Lease, mounted: bool) -> None:
        if mounted:
            self.mounter.unmount(Path(lease.mount_point))
        self._commit(lease, CommitDecision(should_commit=False, vm_hydrated_git_mirror=False))

    # endregion setup

    # region cleanup

    def cleanup(
        self,
        state_store: StateStore,
        auth_token: Optional[str],
        observer: JobOutcomeObserver,
    ) -> Optional[CommitDecision]:
        """Refreshes, verifies and releases the lease saved by setup.

        Never raises.

        Returns:
            The commit decision, or None if there was no lease to release.
        """
        try:
            saved = load_cache_state(state_store)
        except Exception as ex:  # noqa: BLE001
            logger.warning("[git-mirror] Failed to load saved cache state: %s", ex)
            return None
        if saved is None:
            logger.debug("no sticky disk lease to release")
            return None

        lease = saved.to_lease()
        mirror_path = Path(saved.mirror_path)
        self._transition(LifecycleState.CLEANING)
        logger.info(
            "[git-mirror] Starting cleanup: exposeId=%s, stickyDiskKey=%s",
            lease.expose_id,
            lease.sticky_disk_key,
        )

        with log_section("[git-mirror] Maintaining mirror", logging.INFO):
            refresh = _guarded(
                "refresh",
                lambda: refresh_mirror(
                    mirror_path,
                    saved.repo_url,
                    auth_token,
                    self.config.refresh_timeout,
                    self._retry_helper(),
                    saved.verbose,
                ),
            )
            gc = _guarded("gc", lambda: run_gc(mirror_path, self.config.gc_timeout))
            integrity = _guarded(
                "integrity check",
                lambda: run_integrity_check(mirror_path, self.config.fsck_timeout),
            )

        try:
            self.mounter.unmount(Path(lease.mount_point))
        except Exception as ex:  # noqa: BLE001
            logger.warning("[git-mirror] Failed to unmount %s: %s", lease.mount_point, ex)

        job_report = _check_job(observer)
        decision = decide_commit(job_report, refresh, gc, integrity, saved.performed_hydration)
        for reason in decision.reasons:
            logger.warning("[git-mirror] Not committing mirror: %s", reason)

        self._commit(lease, decision)

        try:
            clear_cache_state(state_store)
        except Exception as ex:  # noqa: BLE001
            logger.warning("failed to clear saved cache state: %s", ex)

        self._report(
            METRIC_CLEANUP,
            1 if decision.should_commit else 0,
            {
                "should_commit": str(decision.should_commit).lower(),
                "vm_hydrated_git_mirror": str(decision.vm_hydrated_git_mirror).lower(),
            },
        )
        return decision

    def _commit(self, lease: Lease, decision: CommitDecision) -> None:
        try:
            self.broker.commit(
                lease.expose_id,
                lease.sticky_disk_key,
                decision.should_commit,
                decision.vm_hydrated_git_mirror,
            )
        except Exception as ex:  # noqa: BLE001
            logger.warning("[git-mirror] Failed to commit sticky disk: %s", ex)
        self._transition(
            LifecycleState.COMMITTED if decision.should_commit else LifecycleState.DISCARDED
        )

    # endregion cleanup


def _guarded(name: str, operation: Callable[[], OperationResult]) -> OperationResult:
    try:
        return operation()
    except Exception as ex:  # noqa: BLE001
        logger.warning("[git-mirror] %s raised: %s", name, ex)
        return OperationResult(success=False, error=str(ex))


def _check_job(observer: JobOutcomeObserver) -> JobFailureReport:
    try:
        return observer.check_failures()
    except Exception as ex:  # noqa: BLE001
        return JobFailureReport.unavailable(f"observer raised: {ex}")


# region entry points


def setup_cache(
    config: MirrorCacheConfig,
    owner: str,
    repository: str,
    repo_url: str,
    auth_token: Optional[str],
    state_store: StateStore,
    workspace_path: Optional[Path] = None,
    broker: Optional[Broker] = None,
    mounter: Optional[Mounter] = None,
    reporter: Optional[MetricsReporter] = None,
) -> CacheSetupResult:
    """Pre-job phase. Callers fall back to an uncached checkout unless the result is usable."""
    try:
        cache_key = CacheKey(owner, repository)
    except ValueError as ex:
        logger.warning("[git-mirror] Cache unavailable: %s", ex)
        return CacheSetupResult(HydrationState.FAILED, reason=str(ex))

    if broker is not None:
        return CacheLifecycle(config, broker, mounter, reporter).setup(
            cache_key, repo_url, auth_token, state_store, workspace_path
        )

    with StickyDiskClient.from_config(config) as client:
        return CacheLifecycle(config, client, mounter, reporter).setup(
            cache_key, repo_url, auth_token, state_store, workspace_path
        )


def cleanup_cache(
    config: MirrorCacheConfig,
    state_store: StateStore,
    auth_token: Optional[str],
    observer: JobOutcomeObserver,
    broker: Optional[Broker] = None,
    mounter: Optional[Mounter] = None,
    reporter: Optional[MetricsReporter] = None,
) -> Optional[CommitDecision]:
    """Post-job phase. Never raises."""
    if broker is not None:
        return CacheLifecycle(config, broker, mounter, reporter).cleanup(
            state_store, auth_token, observer
        )

    try:
        client = StickyDiskClient.from_config(config)
    except Exception as ex:  # noqa: BLE001
        logger.warning(
            "[git-mirror] Could not create sticky disk client, skipping cleanup: %s", ex
        )
        return None

    with client:
        return CacheLifecycle(config, client, mounter, reporter).cleanup(
            state_store, auth_token, observer
        )


# endregion entry points
