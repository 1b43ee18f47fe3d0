"""Bounded, fixed-delay retry for cluster calls that must eventually succeed."""
import logging
import time
from typing import Any, Callable, Optional, Tuple, Type, TypeVar

from .models import RetryPolicy

logger = logging.getLogger("retry")

T = TypeVar('T')


class RetryError(Exception):
    """Raised when an operation failed on every allowed attempt."""

    def __init__(self, description: str, attempts: int, last_exception: Optional[BaseException]):
        self.description = description
        self.attempts = attempts
        self.last_exception = last_exception
        super().__init__(
            f"{description} failed after {attempts} attempts. Last error: {last_exception}"
        )


class RetryExecutor:
    """Invoke an operation up to ``policy.max_attempts`` times.

    A fixed ``policy.delay`` is slept between failed attempts. There is no
    backoff and no jitter; the policy is the same for every call site.
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
        exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    ):
        self.policy = policy or RetryPolicy()
        self.sleep = sleep
        self.exceptions = exceptions

    def call(self, operation: Callable[..., T], *args: Any, description: str = None, **kwargs: Any) -> T:
        """Run ``operation(*args, **kwargs)``, retrying on failure.

        Raises:
            RetryError: If every attempt raised one of ``self.exceptions``.
        """
        description = description or getattr(operation, '__name__', repr(operation))
        last_exception = None

        for attempt in range(1, self.policy.max_attempts + 1):
            try:
                return operation(*args, **kwargs)
            except self.exceptions as e:
                last_exception = e
                if attempt < self.policy.max_attempts:
                    logger.warning(
                        f"{description}: attempt {attempt}/{self.policy.max_attempts} failed: {e}. "
                        f"Retrying in {self.policy.delay:g}s..."
                    )
                    self.sleep(self.policy.delay)

        logger.error(f"❌ {description}: giving up after {self.policy.max_attempts} attempts")
        raise RetryError(description, self.policy.max_attempts, last_exception) from last_exception
