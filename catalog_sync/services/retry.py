"""Bounded retry policy for Shopify API calls."""

import time
from typing import Any, Callable, Optional, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..utils.exceptions import RemotePlatformError
from ..utils.logger import get_api_logger

T = TypeVar("T")


def is_transient(error: BaseException) -> bool:
    """Only rate-limited and unavailable remote failures are retried."""
    return isinstance(error, RemotePlatformError) and error.retryable


class RetryPolicy:
    """
    Exponential backoff around remote calls.

    Local store failures never pass through here; a rate-limit answer's
    ``Retry-After`` raises the wait to at least that many seconds.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        exponential: bool = True,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential = exponential
        self.sleep = sleep or time.sleep
        self.logger = get_api_logger()
        self._backoff = wait_exponential(multiplier=base_delay, max=max_delay)

    @classmethod
    def from_config(cls, api_config, sleep: Optional[Callable[[float], None]] = None) -> "RetryPolicy":
        return cls(
            max_attempts=api_config.max_retries,
            base_delay=api_config.retry_delay,
            max_delay=api_config.max_retry_delay,
            exponential=api_config.exponential_backoff,
            sleep=sleep,
        )

    def _wait(self, retry_state: RetryCallState) -> float:
        delay = self._backoff(retry_state) if self.exponential else self.base_delay
        error = retry_state.outcome.exception() if retry_state.outcome else None
        retry_after = getattr(error, "retry_after", None)
        if retry_after:
            delay = max(delay, min(float(retry_after), self.max_delay))
        return delay

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception()
        self.logger.warning(
            f"Remote call failed ({error.kind}: {error.message}); "
            f"attempt {retry_state.attempt_number}/{self.max_attempts}, "
            f"retrying in {retry_state.next_action.sleep:.1f}s"
        )

    def call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """
        Run ``fn`` until it succeeds, fails permanently or attempts run out.

        Raises:
            RemotePlatformError: The last failure when retries are exhausted,
                or the first non-retryable one
        """
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait,
            retry=retry_if_exception(is_transient),
            before_sleep=self._log_retry,
            sleep=self.sleep,
            reraise=True,
        )
        return retrying(fn, *args, **kwargs)
