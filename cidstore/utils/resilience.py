"""Retry logic shared by the storage and gateway layers.

``RetryExecutor`` runs an async operation up to ``max_attempts`` times,
strictly sequentially, suspending the calling task between attempts with
exponential backoff plus jitter.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, TypeVar

from cidstore.models import RetryConfig
from cidstore.utils.backoff import ExponentialBackoff
from cidstore.utils.exceptions import OperationError
from cidstore.utils.time import Clock

T = TypeVar("T")

logger = logging.getLogger(__name__)


class RetryExecutor:
    """Executes fallible async operations with retries."""

    def __init__(
        self,
        policy: RetryConfig | None = None,
        clock: Clock | None = None,
        backoff: ExponentialBackoff | None = None,
    ):
        """Initialize retry executor.

        Args:
            policy: Retry policy, defaults to ``RetryConfig()``
            clock: Clock used for suspending between attempts
            backoff: Delay calculator, built from ``policy`` when omitted

        """
        self.policy = policy or RetryConfig()
        self.clock = clock or Clock()
        self.backoff = backoff or ExponentialBackoff(
            base_delay=self.policy.initial_delay,
            multiplier=self.policy.backoff_factor,
            max_delay=self.policy.max_delay,
            jitter=self.policy.jitter_ratio,
        )

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        description: str = "operation",
        max_attempts: int | None = None,
    ) -> T:
        """Run ``operation`` until it succeeds or attempts run out.

        Args:
            operation: Zero-argument callable returning an awaitable
            description: Human readable name used in logs and errors
            max_attempts: Override of the policy's attempt count

        Returns:
            The operation's result

        Raises:
            OperationError: Every attempt failed; ``cause`` is the last failure

        """
        attempts = max_attempts if max_attempts is not None else self.policy.max_attempts
        attempts = max(1, attempts)
        delay = self.backoff.base_delay
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                return await operation()
            except Exception as e:
                last_error = e
                logger.warning(
                    "%s failed (attempt %d/%d): %s",
                    description,
                    attempt,
                    attempts,
                    e,
                )
                if attempt == attempts:
                    break
                delay = self.backoff.next_delay(delay)
                logger.info("Retrying %s in %.2fs", description, delay)
                await self.clock.sleep(delay)

        msg = f"{description} failed after {attempts} attempts"
        raise OperationError(
            msg,
            attempts=attempts,
            details={"last_error": str(last_error)},
            cause=last_error,
        ) from last_error

    async def run_once(
        self,
        operation: Callable[[], Awaitable[T]],
        description: str = "operation",
    ) -> T:
        """Run ``operation`` a single time, wrapping failure in ``OperationError``."""
        return await self.run(operation, description, max_attempts=1)
