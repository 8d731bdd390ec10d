import enum
from dataclasses import dataclass, field
from typing import List, Optional, Union

from git_sticky_mirror.errors import CacheErrorType, StickyMirrorError


class HydrationState(enum.Enum):
    ACQUIRED = "acquired"
    IN_PROGRESS = "in_progress"
    FAILED = "failed"


class MirrorStatus(enum.Enum):
    ABSENT = "absent"
    PRESENT = "present"


class LifecycleState(enum.Enum):
    IDLE = "idle"
    ACQUIRING = "acquiring"
    MOUNTED = "mounted"
    HYDRATING = "hydrating"
    REFRESH_DEFERRED = "refresh_deferred"
    JOB_RUNNING = "job_running"
    CLEANING = "cleaning"
    COMMITTED = "committed"
    DISCARDED = "discarded"


@dataclass(frozen=True)
class Lease:
    expose_id: str
    sticky_disk_key: str
    device: str
    mount_point: str
    mirror_path: str


@dataclass(frozen=True)
class HydrationInProgress:
    """Another execution holds the hydration lock for this key."""

    reason: str


AcquireResult = Union[Lease, HydrationInProgress]


@dataclass(frozen=True)
class OperationResult:
    success: bool
    timed_out: bool = False
    error: Optional[str] = None
    error_type: Optional[CacheErrorType] = None

    @classmethod
    def ok(cls) -> "OperationResult":
        return cls(success=True)

    @classmethod
    def from_error(cls, ex: StickyMirrorError) -> "OperationResult":
        return cls(
            success=False,
            timed_out=ex.error_type == CacheErrorType.GIT_COMMAND_TIMED_OUT,
            error=str(ex),
            error_type=ex.error_type,
        )

    def describe(self) -> str:
        if self.success:
            return "ok"
        if self.timed_out:
            return f"timed out ({self.error})"
        return f"failed ({self.error})"


@dataclass(frozen=True)
class JobFailureReport:
    has_failures: bool
    failed_count: int = 0
    failed_steps: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @classmethod
    def unavailable(cls, error: str) -> "JobFailureReport":
        return cls(has_failures=False, error=error)


@dataclass(frozen=True)
class CommitDecision:
    should_commit: bool
    vm_hydrated_git_mirror: bool
    reasons: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class CacheSetupResult:
    state: HydrationState
    lease: Optional[Lease] = None
    performed_hydration: bool = False
    reason: Optional[str] = None

    @property
    def usable(self) -> bool:
        return self.state == HydrationState.ACQUIRED and self.lease is not None
