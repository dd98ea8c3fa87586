"""Centralized retry policy.

One ``RetryPolicy`` instance is built from settings and injected into every
step; call sites never sleep or loop on their own.
"""

from __future__ import annotations

import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from schemasense.core.config import Settings, get_settings
from schemasense.core.errors import (
    RetryExhaustedError,
    RunCancelledError,
    classify_error,
    is_retryable,
)
from schemasense.core.logging import get_logger, record_retry

if TYPE_CHECKING:
    from schemasense.pipeline.base import CancellationToken

logger = get_logger(__name__)


@dataclass
class RetryPolicy:
    """Exponential backoff with bounded jitter and same-error escalation.

    Attributes:
        max_attempts: Total attempts including the first one
        initial_delay: Delay before the first retry (seconds)
        max_delay: Upper bound for the nominal delay (seconds)
        multiplier: Backoff growth factor
        jitter: Fraction of the nominal delay added or removed at random
        max_same_error: Consecutive failures of one error type before escalating
    """

    max_attempts: int = 5
    initial_delay: float = 0.1
    max_delay: float = 5.0
    multiplier: float = 2.0
    jitter: float = 0.1
    max_same_error: int = 5
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)
    rng: random.Random = field(default_factory=random.Random, repr=False)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> RetryPolicy:
        settings = settings or get_settings()
        return cls(
            max_attempts=settings.retry_max_attempts,
            initial_delay=settings.retry_initial_delay,
            max_delay=settings.retry_max_delay,
            multiplier=settings.retry_multiplier,
            jitter=settings.retry_jitter,
            max_same_error=settings.retry_max_same_error,
        )

    def nominal_delay(self, retry_number: int) -> float:
        """Delay before retry ``retry_number`` (1-based), without jitter."""
        delay = self.initial_delay * (self.multiplier ** (retry_number - 1))
        return min(delay, self.max_delay)

    def delay_for(self, retry_number: int) -> float:
        """Nominal delay plus a random offset within ±jitter of it."""
        delay = self.nominal_delay(retry_number)
        if self.jitter > 0:
            delay += delay * self.jitter * self.rng.uniform(-1.0, 1.0)
        return max(delay, 0.0)

    def delay_bounds(self, retry_number: int) -> tuple[float, float]:
        """Inclusive bounds any jittered delay for ``retry_number`` falls into."""
        delay = self.nominal_delay(retry_number)
        return delay * (1 - self.jitter), delay * (1 + self.jitter)

    def call[T](
        self,
        fn: Callable[[], T],
        operation: str = "operation",
        cancel_token: CancellationToken | None = None,
        on_retry: Callable[[int, BaseException, float], None] | None = None,
    ) -> T:
        """Run ``fn`` until it succeeds, fails fatally, or retries run out.

        Non-retryable errors propagate immediately and unchanged.

        Raises:
            RetryExhaustedError: attempts exhausted or same error type repeated
            RunCancelledError: cancellation requested while waiting
        """
        last_type: str | None = None
        same_type_count = 0

        for attempt in range(1, self.max_attempts + 1):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            try:
                return fn()
            except (RunCancelledError, RetryExhaustedError):
                raise
            except Exception as e:
                if not is_retryable(e):
                    raise

                error_type = classify_error(e)
                if error_type == last_type:
                    same_type_count += 1
                else:
                    last_type = error_type
                    same_type_count = 1

                if same_type_count >= self.max_same_error:
                    raise RetryExhaustedError(
                        f"repeated error ({same_type_count} times, type={error_type}): {e}",
                        error_type=error_type,
                        attempts=attempt,
                        last_error=e,
                    ) from e

                if attempt >= self.max_attempts:
                    raise RetryExhaustedError(
                        f"{operation} failed after {attempt} attempts: {e}",
                        error_type=error_type,
                        attempts=attempt,
                        last_error=e,
                    ) from e

                delay = self.delay_for(attempt)
                record_retry()
                logger.warning(
                    "retry_scheduled",
                    operation=operation,
                    attempt=attempt,
                    error_type=error_type,
                    delay_seconds=round(delay, 3),
                    error=str(e),
                )
                if on_retry is not None:
                    on_retry(attempt, e, delay)

                self.sleep(delay)
                if cancel_token is not None and cancel_token.is_cancelled:
                    raise RunCancelledError(f"{operation} cancelled during retry backoff") from e

        # max_attempts < 1
        raise ValueError("RetryPolicy.max_attempts must be at least 1")
