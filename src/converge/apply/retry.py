"""Capped exponential backoff for retryable provider errors."""

import time
from typing import Callable, Optional, TypeVar
from pydantic import BaseModel, Field
from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from ..utils.errors import FatalProviderError, RetryableProviderError
from ..utils.logging import get_logger

logger = get_logger("apply.retry")

T = TypeVar("T")


class RetryPolicy(BaseModel):
    """Bounded attempts with delays of base * 2^(n-1), capped at max_delay."""
    max_attempts: int = Field(default=5, ge=1, description="Total attempts, including the first")
    base_delay: float = Field(default=1.0, ge=0, description="Delay before the first retry, in seconds")
    max_delay: float = Field(default=30.0, ge=0, description="Upper bound on any single delay")

    @classmethod
    def from_settings(cls, retry_settings) -> "RetryPolicy":
        return cls(
            max_attempts=retry_settings.max_attempts,
            base_delay=retry_settings.base_delay_seconds,
            max_delay=retry_settings.max_delay_seconds,
        )

    def retrying(self, sleep: Callable[[float], None] = time.sleep, description: str = "operation") -> Retrying:
        """tenacity controller retrying only RetryableProviderError."""
        def log_retry(retry_state: RetryCallState) -> None:
            logger.warning(
                f"Attempt {retry_state.attempt_number}/{self.max_attempts} for {description} failed: "
                f"{retry_state.outcome.exception()}. Retrying in {retry_state.next_action.sleep:.1f}s"
            )

        return Retrying(
            retry=retry_if_exception_type(RetryableProviderError),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay, max=self.max_delay),
            sleep=sleep,
            before_sleep=log_retry,
        )


def call_with_retry(
    operation: Callable[[], T],
    policy: RetryPolicy,
    description: str,
    address: Optional[str] = None,
    action: Optional[str] = None,
    sleep: Callable[[float], None] = time.sleep
) -> T:
    """
    Run operation, retrying RetryableProviderError per policy.

    Other exceptions propagate untouched.

    Raises:
        FatalProviderError: When retries are exhausted
    """
    try:
        return policy.retrying(sleep, description)(operation)
    except RetryError as e:
        attempts = e.last_attempt.attempt_number
        cause = e.last_attempt.exception()
        logger.error(f"All {attempts} attempts failed for {description}: {cause}")
        raise FatalProviderError(
            f"retries exhausted after {attempts} attempts: {cause}",
            address=address,
            operation=action,
        ) from cause
