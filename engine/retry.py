"""Bounded exponential-backoff retry for transient failures."""

from typing import Callable, Optional, TypeVar

from common.exceptions import TransientError
from common.logging_config import get_logger
from engine.cancellation import CancellationToken

logger = get_logger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """
    Retries TransientError with delay backoff * 2**attempt.

    Any other exception propagates immediately. After max_retries retries
    the last TransientError propagates to the caller.
    """

    def __init__(self, max_retries: int = 3, backoff: float = 0.5, cancel_token: Optional[CancellationToken] = None):
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.max_retries = max_retries
        self.backoff = backoff
        self.cancel_token = cancel_token or CancellationToken()

    def delay(self, attempt: int) -> float:
        return self.backoff * (2 ** attempt)

    def call(self, func: Callable[..., T], *args, description: str = "", **kwargs) -> T:
        """
        Call func, retrying transient failures.

        Args:
            func: Callable to invoke
            description: Label used in log messages
        """
        label = description or getattr(func, "__name__", "call")
        attempt = 0
        while True:
            self.cancel_token.raise_if_cancelled()
            try:
                return func(*args, **kwargs)
            except TransientError as e:
                if attempt >= self.max_retries:
                    logger.error(
                        f"Transient failure (max retries exceeded): {label} error={e}"
                    )
                    raise
                delay = self.delay(attempt)
                logger.warning(
                    f"Transient failure (attempt {attempt + 1}/{self.max_retries + 1}): "
                    f"{label} error={e}, retrying in {delay}s"
                )
                self.cancel_token.wait(delay)
                attempt += 1
