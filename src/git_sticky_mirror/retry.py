"""Bounded retry with exponential backoff for network-facing git operations.

Usage:
    from git_sticky_mirror.retry import RetryHelper

    RetryHelper(max_attempts=3).execute(lambda: clone_once(...))
"""

import random
import time
from typing import Callable, Optional, TypeVar

from git_sticky_mirror.constants import defaults
from git_sticky_mirror.errors import MirrorOperationError, MirrorOperationTimeoutError
from git_sticky_mirror.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class RetryHelper:
    def __init__(
        self,
        max_attempts: int = defaults.RETRY_ATTEMPTS,
        base_delay: float = defaults.RETRY_BASE_DELAY,
        max_delay: float = defaults.RETRY_MAX_DELAY,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay

    def execute(
        self,
        operation: Callable[[], T],
        on_failed_attempt: Optional[Callable[[MirrorOperationError], None]] = None,
    ) -> T:
        """Runs `operation` until it succeeds or attempts run out.

        Only MirrorOperationError is retried. A MirrorOperationTimeoutError is
        raised immediately: the attempt already used its whole time budget.

        Args:
            operation: called with no arguments once per attempt
            on_failed_attempt: called after every failed attempt, before any sleep

        Raises:
            MirrorOperationError: the last error once attempts are exhausted
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                return operation()
            except MirrorOperationTimeoutError as ex:
                if on_failed_attempt:
                    on_failed_attempt(ex)
                raise
            except MirrorOperationError as ex:
                if on_failed_attempt:
                    on_failed_attempt(ex)

                if attempt == self.max_attempts:
                    logger.warning("giving up after %d attempts: %s", attempt, ex)
                    raise

                delay = self.get_delay(attempt)
                logger.warning(
                    "%s (attempt %d/%d), retrying in %.1fs",
                    ex,
                    attempt,
                    self.max_attempts,
                    delay,
                )
                time.sleep(delay)

        raise RuntimeError("unreachable")  # pragma: no cover

    def get_delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        # 50% ~ 150% jitter so waiting jobs do not retry in lockstep
        return delay * (0.5 + random.random())  # noqa: S311
