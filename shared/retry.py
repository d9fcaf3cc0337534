"""
Retry with backoff for flaky remote fetches.
"""

import asyncio
import functools
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from shared.logging import get_logger


@dataclass(frozen=True)
class RetryConfig:
    """How often and how patiently to retry.

    ``backoff_strategy`` is ``"exponential"``, ``"linear"`` or anything else
    for a constant ``base_delay``. Jitter spreads each delay by up to 10%.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True
    backoff_strategy: str = "exponential"

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        if self.backoff_strategy == "exponential":
            delay = self.base_delay * self.exponential_base ** (attempt - 1)
        elif self.backoff_strategy == "linear":
            delay = self.base_delay * attempt
        else:
            delay = self.base_delay

        delay = min(delay, self.max_delay)
        if self.jitter:
            delay += random.uniform(-0.1 * delay, 0.1 * delay)
        return max(0.0, delay)


class RetryError(Exception):
    """Every attempt failed; ``last_exception`` is the final failure."""

    def __init__(self, message: str, last_exception: Exception, attempts: int):
        super().__init__(message)
        self.last_exception = last_exception
        self.attempts = attempts


def retry_on_exception(
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    config: Optional[RetryConfig] = None,
) -> Callable[[Callable[..., Awaitable[Any]]], Callable[..., Awaitable[Any]]]:
    """Retry an async callable while it raises one of ``exceptions``.

    Other exceptions propagate immediately. When the attempts run out a
    :class:`RetryError` chained to the last failure is raised.
    """
    config = config or RetryConfig()

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        name = getattr(func, "__name__", "call")
        logger = get_logger(f"retry.{name}")

        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            attempt = 1
            while True:
                try:
                    result = await func(*args, **kwargs)
                except exceptions as exc:
                    if attempt >= config.max_attempts:
                        logger.warning("Giving up", attempts=attempt, error=str(exc))
                        raise RetryError(
                            f"{name} failed after {attempt} attempts",
                            last_exception=exc,
                            attempts=attempt,
                        ) from exc

                    delay = config.delay_for(attempt)
                    logger.debug("Attempt failed, retrying", attempt=attempt, delay=delay, error=str(exc))
                    await asyncio.sleep(delay)
                    attempt += 1
                    continue

                if attempt > 1:
                    logger.info("Succeeded after retry", attempts=attempt)
                return result

        return wrapper

    return decorator
