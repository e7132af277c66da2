"""
Bounded retry with fixed backoff.

Filesystem operations on the output (backup, rename, restore) can fail
transiently on networked storage or while another process still holds a
handle. They are retried a fixed number of times with a fixed delay
before the failure is treated as fatal.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Tuple, Type, TypeVar

from .errors import RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ATTEMPTS = 3
DEFAULT_DELAY_SECONDS = 0.5


@dataclass(frozen=True)
class RetryPolicy:
    """
    Fixed attempt count, fixed delay between attempts.

    Usage:
        policy = RetryPolicy(attempts=3, delay=0.5)
        policy.run("rename temp output", os.replace, src, dst)
    """

    attempts: int = DEFAULT_ATTEMPTS
    delay: float = DEFAULT_DELAY_SECONDS
    retry_on: Tuple[Type[BaseException], ...] = (OSError,)
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False, compare=False)

    def __post_init__(self):
        if self.attempts < 1:
            raise ValueError(f"attempts must be >= 1, got {self.attempts}")
        if self.delay < 0:
            raise ValueError(f"delay must be >= 0, got {self.delay}")

    def run(self, operation: str, func: Callable[..., T], *args, **kwargs) -> T:
        """
        Call func until it succeeds or attempts run out.

        Only exceptions listed in retry_on are retried; anything else
        propagates immediately.

        Raises:
            RetryExhaustedError: If every attempt raised a retryable error
        """
        last_error: BaseException = RuntimeError("no attempts made")
        for attempt in range(1, self.attempts + 1):
            try:
                return func(*args, **kwargs)
            except self.retry_on as e:
                last_error = e
                if attempt < self.attempts:
                    logger.warning(
                        f"[Retry] {operation} failed (attempt {attempt}/{self.attempts}): {e}"
                    )
                    self.sleep(self.delay)
        raise RetryExhaustedError(operation, self.attempts, last_error)


NO_RETRY = RetryPolicy(attempts=1, delay=0.0)
