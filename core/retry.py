"""Bounded retry with deterministic exponential backoff.

Operations signal three things:

* return ``True`` (or :attr:`OperationStatus.SUCCESS`) -- done;
* return ``False`` (or :attr:`OperationStatus.DECLINED`) -- a business
  rule refused the action (insufficient balance, nothing to claim).
  This is *not* retried;
* raise -- a transient failure.  Retried up to ``max_retries`` times,
  waiting ``2**k * base_delay_ms`` after failed attempt ``k``.

No jitter is applied to the backoff schedule.
"""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from core.config import RetryPolicy

logger = logging.getLogger(__name__)

Operation = Callable[[], Any]
SleepFn = Callable[[float], Awaitable[Any]]


class OperationStatus(Enum):
    """Explicit outcome of one operation invocation.

    Members:
        SUCCESS: The operation completed.
        DECLINED: Deterministic refusal; never retried.
        FAILED: Retries exhausted (set by the sequencer, never
            returned by callbacks).
    """

    SUCCESS = "success"
    DECLINED = "declined"
    FAILED = "failed"

    @classmethod
    def from_value(cls, value: Any) -> "OperationStatus":
        """Normalise a callback's return value.

        ``OperationStatus`` members pass through; ``None`` and falsy
        values become ``DECLINED``; everything else is ``SUCCESS``.
        """
        if isinstance(value, cls):
            return value
        return cls.SUCCESS if value else cls.DECLINED


class RetryExecutor:
    """Run a single fallible operation under a :class:`RetryPolicy`."""

    def __init__(
        self,
        policy: RetryPolicy,
        sleep: Optional[SleepFn] = None,
    ) -> None:
        """
        Args:
            policy: Retry count and backoff base.
            sleep: Awaitable wait primitive taking seconds (defaults to
                :func:`asyncio.sleep`; tests inject a mock).
        """
        self.policy = policy
        self._sleep = sleep or asyncio.sleep

    async def execute(self, operation_name: str, op: Operation) -> Any:
        """Invoke *op* with retries.

        Args:
            operation_name: Label used in log lines.
            op: No-argument callable, sync or async.

        Returns:
            Whatever *op* returned on the first attempt that did not
            raise, ``False`` included.

        Raises:
            Exception: The last error, once ``max_retries + 1`` attempts
                have all raised.
        """
        max_retries = self.policy.max_retries
        attempt = 0
        while True:
            attempt += 1
            try:
                result = op()
                if inspect.isawaitable(result):
                    result = await result
                return result
            except Exception as e:
                if attempt > max_retries:
                    logger.error(
                        "%s failed after %d retries: %s",
                        operation_name, max_retries, e,
                    )
                    raise
                delay = self.policy.backoff_seconds(attempt)
                logger.warning(
                    "%s attempt %d failed: %s. Retrying in %.1fs...",
                    operation_name, attempt, e, delay,
                )
                await self._sleep(delay)
