"""
Retry and fan-out combinators.

Every idempotent network step (relay publish, relay fetch, git push) goes
through ``retry_with_backoff``; every multi-target step goes through
``gather_isolated`` so one failing target never aborts the others.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, List, Optional, Sequence, Tuple, Type, TypeVar
import asyncio
import logging

from .security import sanitize_error

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass
class RetryOutcome(Generic[T]):
    """Result of a retried operation."""
    value: Optional[T] = None
    error: Optional[BaseException] = None
    attempts: int = 0
    succeeded: bool = False

    @property
    def error_message(self) -> Optional[str]:
        if self.error is None:
            return None
        return sanitize_error(self.error)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    attempts: int = 3,
    base_delay: float = 1.0,
    is_success: Optional[Callable[[T], bool]] = None,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    description: str = "operation",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> RetryOutcome[T]:
    """
    Run ``operation`` up to ``attempts`` times, sleeping ``base_delay * 2**n``
    between attempts.

    An attempt fails if it raises one of ``retry_on`` or if ``is_success``
    rejects its value. Exceptions outside ``retry_on`` propagate at once.
    Never raises for retryable failures: the outcome carries the last value
    and error instead.

    Args:
        operation: Zero-argument factory returning a fresh awaitable per attempt
        attempts: Maximum number of attempts (at least 1)
        base_delay: First delay in seconds; doubles after each failure
        is_success: Predicate over a returned value (default: always true)
        retry_on: Exception types that count as a failed attempt
        description: Label used in log lines
        sleep: Awaitable sleep, injectable for tests
    """
    attempts = max(1, attempts)
    outcome: RetryOutcome[T] = RetryOutcome()

    for attempt in range(attempts):
        outcome.attempts = attempt + 1
        try:
            value = await operation()
        except retry_on as e:
            outcome.error = e
            outcome.value = None
            logger.debug(f"{description}: attempt {attempt + 1}/{attempts} raised {sanitize_error(e)}")
        else:
            outcome.value = value
            if is_success is None or is_success(value):
                outcome.error = None
                outcome.succeeded = True
                return outcome
            logger.debug(f"{description}: attempt {attempt + 1}/{attempts} was rejected")

        if attempt < attempts - 1:
            await sleep(base_delay * (2 ** attempt))

    logger.warning(f"{description}: failed after {outcome.attempts} attempt(s)")
    return outcome


async def gather_isolated(
    items: Sequence[Any],
    worker: Callable[[Any], Awaitable[T]],
) -> List[Tuple[Any, Optional[T], Optional[BaseException]]]:
    """
    Run ``worker`` on every item concurrently and wait for all of them.

    Returns (item, value, error) triples in input order. A failing item
    never cancels the others.
    """
    results = await asyncio.gather(*(worker(item) for item in items), return_exceptions=True)

    collected = []
    for item, result in zip(items, results):
        if isinstance(result, BaseException):
            if isinstance(result, (KeyboardInterrupt, SystemExit, asyncio.CancelledError)):
                raise result
            collected.append((item, None, result))
        else:
            collected.append((item, result, None))
    return collected
