"""
Bounded polling and retry helpers.

``Waiter`` is the single polling primitive behind every wait in both
workflows. Elapsed time is measured with a monotonic clock from loop entry,
so slow predicates eat into the budget instead of stretching it.
"""
import asyncio
import logging
import random
import time
from functools import wraps
from typing import Any, Awaitable, Callable, Coroutine, Optional, TypeVar

from pvecycle.errors import WaitTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")

Predicate = Callable[[], Awaitable[bool]]


class Waiter:
    """
    Polls async predicates with a fixed interval and an absolute timeout.

    Args:
        clock: Monotonic clock returning seconds.
        sleep: Coroutine function used for every delay.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.clock = clock
        self._sleep = sleep

    async def until(
        self,
        predicate: Predicate,
        *,
        interval: float,
        timeout: Optional[float],
        description: str,
        max_attempts: Optional[int] = None,
    ) -> int:
        """
        Evaluate ``predicate`` until it returns True.

        After every false evaluation a progress line is logged and the loop
        sleeps ``interval`` seconds; the timeout is checked after the sleep.
        ``timeout=None`` polls forever.

        Returns:
            The number of attempts it took.

        Raises:
            WaitTimeout: When the timeout or the attempt budget is exhausted.
        """
        started = self.clock()
        attempts = 0
        while True:
            attempts += 1
            if await predicate():
                if attempts > 1:
                    logger.info("%s after %d attempts", description, attempts)
                return attempts

            elapsed = self.clock() - started
            if timeout is None:
                logger.info("Waiting for %s; retry in %ss", description, _fmt(interval))
            else:
                logger.info(
                    "Waiting for %s; retry in %ss (%s/%ss)",
                    description, _fmt(interval), _fmt(elapsed), _fmt(timeout),
                )
            await self._sleep(interval)

            elapsed = self.clock() - started
            if timeout is not None and elapsed >= timeout:
                raise WaitTimeout(description, elapsed, attempts)
            if max_attempts is not None and attempts >= max_attempts:
                raise WaitTimeout(description, elapsed, attempts)

    async def pause(self, seconds: float, reason: Optional[str] = None) -> None:
        """Fixed settling delay."""
        if seconds <= 0:
            return
        if reason:
            logger.info("Delaying %ss %s", _fmt(seconds), reason)
        await self._sleep(seconds)


def _fmt(seconds: float) -> str:
    return f"{seconds:.0f}" if float(seconds).is_integer() else f"{seconds:.1f}"


def async_retry(
    retries: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    max_delay: float = 10.0,
    jitter: float = 0.1,
    catch_exceptions: type[Exception] | tuple[type[Exception], ...] = Exception,
) -> Callable[[Callable[..., Coroutine[Any, Any, T]]], Callable[..., Coroutine[Any, Any, T]]]:
    """
    A decorator for retrying an async function with exponential backoff.

    Args:
        retries: The maximum number of retries.
        delay: The initial delay between retries in seconds.
        backoff: The multiplier for the delay for each subsequent retry.
        max_delay: The maximum delay between retries.
        jitter: A factor to add random jitter to the delay.
        catch_exceptions: The exception or tuple of exceptions to catch and retry on.
    """

    def decorator(func: Callable[..., Coroutine[Any, Any, T]]) -> Callable[..., Coroutine[Any, Any, T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            current_delay = delay
            for attempt in range(retries + 1):
                try:
                    return await func(*args, **kwargs)
                except catch_exceptions as e:
                    if attempt == retries:
                        logger.error(
                            f"Function '{func.__name__}' failed after {retries + 1} attempts. "
                            f"Last error: {e}"
                        )
                        raise

                    logger.warning(
                        f"Attempt {attempt + 1}/{retries + 1} for '{func.__name__}' failed. "
                        f"Retrying in {current_delay:.2f}s. Error: {e}"
                    )

                    jitter_amount = current_delay * jitter * random.uniform(-1, 1)
                    await asyncio.sleep(max(0.0, current_delay + jitter_amount))

                    current_delay = min(current_delay * backoff, max_delay)

            raise RuntimeError("Retry loop exited unexpectedly")

        return wrapper

    return decorator
