import enum
from typing import Optional


class CacheErrorType(enum.Enum):
    INVALID_ARGUMENT = enum.auto()
    BROKER_UNREACHABLE = enum.auto()
    BROKER_FAILED = enum.auto()
    DEVICE_MISSING = enum.auto()
    FILESYSTEM_FAILED = enum.auto()
    GIT_COMMAND_FAILED = enum.auto()
    GIT_COMMAND_TIMED_OUT = enum.auto()


class StickyMirrorError(Exception):
    error_type: CacheErrorType = CacheErrorType.INVALID_ARGUMENT

    def __init__(self, *args) -> None:  # noqa: ANN002
        super().__init__(*args)


class BrokerError(StickyMirrorError):
    """The volume broker answered with a status we do not handle."""

    error_type = CacheErrorType.BROKER_FAILED

    def __init__(self, msg: str, code: Optional[str] = None, detail: str = "") -> None:
        super().__init__(msg)
        self.code = code
        self.detail = detail


class BrokerConnectionError(BrokerError):
    """The volume broker could not be reached at all."""

    error_type = CacheErrorType.BROKER_UNREACHABLE

    def __init__(self, msg: str) -> None:
        super().__init__(f"broker connection failed: {msg}", code="unavailable")


class DeviceError(StickyMirrorError):
    error_type = CacheErrorType.DEVICE_MISSING

    @classmethod
    def missing_field(cls, field: str) -> "DeviceError":
        return cls(f"no {field} found in sticky disk response")


class FilesystemError(StickyMirrorError):
    error_type = CacheErrorType.FILESYSTEM_FAILED


class MirrorOperationError(StickyMirrorError):
    error_type = CacheErrorType.GIT_COMMAND_FAILED

    def __init__(self, operation: str, msg: Optional[str] = None) -> None:
        super().__init__(msg or f"git {operation} failed")
        self.operation = operation

    @classmethod
    def exit_code(cls, operation: str, returncode: int) -> "MirrorOperationError":
        return cls(operation, f"git {operation} exited with code {returncode}")


class MirrorOperationTimeoutError(MirrorOperationError):
    error_type = CacheErrorType.GIT_COMMAND_TIMED_OUT

    def __init__(self, operation: str, timeout: Optional[float] = None) -> None:
        msg = f"git {operation} timed out"
        if timeout is not None:
            msg += f" after {timeout:g}s"
        super().__init__(operation, msg)
        self.timeout = timeout
