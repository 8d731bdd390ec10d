import logging
import os
import sys
import threading
from functools import wraps
from typing import Optional, Set

from git_sticky_mirror.constants import keys

TRACE = logging.DEBUG - 5

# Thread-local indent tracking
_log_indent_state = threading.local()
_log_indent_state.level = 0

_secrets: Set[str] = set()
_secrets_lock = threading.Lock()

REDACTED = "***"


class _TraceLogger(logging.getLoggerClass()):  # type: ignore
    def trace(self, message, *args, **kwargs):  # noqa: ANN001 ANN002 ANN003 ANN201
        if self.isEnabledFor(TRACE):
            self._log(TRACE, message, args, **kwargs)


def _ensure_trace_level() -> None:
    if logging.getLevelName(TRACE) != "TRACE":
        logging.addLevelName(TRACE, "TRACE")


def get_logger(name: str) -> "_TraceLogger":
    """Returns a logger that also understands `logger.trace(...)`"""
    _ensure_trace_level()
    original_class = logging.getLoggerClass()
    logging.setLoggerClass(_TraceLogger)
    try:
        logger = logging.getLogger(name)
    finally:
        logging.setLoggerClass(original_class)
    if not isinstance(logger, _TraceLogger):
        # created before us, e.g. by a test harness
        logger.__class__ = _TraceLogger
    return logger  # type: ignore


def get_indent() -> int:
    return getattr(_log_indent_state, "level", 0)


def increase_indent() -> None:
    _log_indent_state.level = get_indent() + 1


def decrease_indent() -> None:
    _log_indent_state.level = max(0, get_indent() - 1)


class log_section:  # noqa: N801
    def __init__(self, title: str, level: int = logging.DEBUG) -> None:
        self.title = title
        self.level = level
        self.logger = logging.getLogger(__name__)

    def __enter__(self) -> None:
        self.logger.log(self.level, self.title)
        increase_indent()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        decrease_indent()

    def __call__(self, func):  # noqa: ANN001 ANN204
        @wraps(func)
        def wrapper(*args, **kwargs):  # noqa: ANN002 ANN003 ANN202
            with self:
                return func(*args, **kwargs)

        return wrapper


def compute_log_level(verbose_count: int, quiet_count: int) -> int:
    level_index = 3 + verbose_count - quiet_count
    levels = [
        logging.CRITICAL,  # 0
        logging.ERROR,  # 1
        logging.WARNING,  # 2
        logging.INFO,  # 3 (default)
        logging.DEBUG,  # 4
        TRACE,  # 5
    ]
    # Clamp to valid range
    level_index = max(0, min(level_index, len(levels) - 1))
    return levels[level_index]


def running_in_github_actions() -> bool:
    return os.environ.get(keys.ENV_GITHUB_ACTIONS, "").lower() == "true"


def register_secret(value: str) -> None:
    """Marks a value as secret so it never shows up in log output.

    On GitHub Actions the value is also masked in the runner's own log.
    """
    if not value:
        return
    with _secrets_lock:
        if value in _secrets:
            return
        _secrets.add(value)
    if running_in_github_actions():
        sys.stdout.write(f"::add-mask::{value}\n")
        sys.stdout.flush()


def redact(text: str) -> str:
    with _secrets_lock:
        secrets = sorted(_secrets, key=len, reverse=True)
    for secret in secrets:
        text = text.replace(secret, REDACTED)
    return text


class SecretRedactingFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if _secrets:
            record.msg = redact(record.getMessage())
            record.args = None
        return True


class InfoStrippingAndIndentedFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        indent = "  " * get_indent()
        if record.levelno == logging.INFO:
            orig = f"{record.getMessage()}"
        else:
            orig = super().format(record)

        return f"{indent}{orig}"


class ActionsFormatter(logging.Formatter):
    """Renders records as GitHub workflow commands where one exists."""

    def format(self, record: logging.LogRecord) -> str:
        indent = "  " * get_indent()
        message = f"{indent}{record.getMessage()}"
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)
        if record.levelno >= logging.ERROR:
            return f"::error::{message}"
        if record.levelno >= logging.WARNING:
            return f"::warning::{message}"
        if record.levelno >= logging.INFO:
            return message
        return f"::debug::{message}"


def configure_logger(level: int, github_actions: Optional[bool] = None) -> None:
    if github_actions is None:
        github_actions = running_in_github_actions()

    handler = logging.StreamHandler(sys.stdout if github_actions else sys.stderr)
    if github_actions:
        handler.setFormatter(ActionsFormatter())
    else:
        handler.setFormatter(InfoStrippingAndIndentedFormatter(fmt="%(levelname)s: %(message)s"))
    handler.addFilter(SecretRedactingFilter())

    _ensure_trace_level()
    package_logger = logging.getLogger(__name__.split(".")[0])
    package_logger.handlers.clear()
    package_logger.addHandler(handler)
    package_logger.setLevel(level)
    package_logger.propagate = False
