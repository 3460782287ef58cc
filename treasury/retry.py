"""Bounded retry with exponential backoff for ledger commits."""

from __future__ import annotations

import random
import time
from dataclasses import dataclass
from functools import wraps
from typing import Any, Callable, TypeVar

from .exceptions import ConflictError, StorageError
from .logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    base_delay: float = 0.05  # seconds
    max_delay: float = 1.0  # seconds
    exponential_base: float = 2.0
    jitter: bool = True

    # Only transient faults are retried; everything else propagates at once
    retry_on: tuple[type[Exception], ...] = (ConflictError, StorageError)


def calculate_backoff(
    attempt: int,
    base_delay: float = 0.05,
    max_delay: float = 1.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
) -> float:
    """Calculate backoff delay for a given attempt.

    Args:
        attempt: Current attempt number (0-indexed)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap
        exponential_base: Base for exponential growth
        jitter: Whether to add up to 25% random jitter

    Returns:
        Delay in seconds, never negative
    """
    delay = min(base_delay * (exponential_base ** attempt), max_delay)
    if jitter:
        jitter_range = delay * 0.25
        delay = delay + random.uniform(-jitter_range, jitter_range)
    return max(0.0, delay)


def retry_sync(
    func: Callable[..., T] | None = None,
    *,
    config: RetryConfig | None = None,
) -> Callable[..., T]:
    """Decorator retrying ``config.retry_on`` faults with exponential backoff.

    Example:
        @retry_sync(config=RetryConfig(max_attempts=5))
        def settle():
            return storage.commit(batch)
    """
    cfg = config or RetryConfig()

    def decorator(fn: Callable[..., T]) -> Callable[..., T]:
        @wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            last_exception: Exception | None = None

            for attempt in range(cfg.max_attempts):
                try:
                    return fn(*args, **kwargs)
                except cfg.retry_on as e:
                    last_exception = e
                    if attempt < cfg.max_attempts - 1:
                        delay = calculate_backoff(
                            attempt,
                            cfg.base_delay,
                            cfg.max_delay,
                            cfg.exponential_base,
                            cfg.jitter,
                        )
                        logger.warning(
                            "retrying",
                            function=fn.__name__,
                            attempt=attempt + 1,
                            max_attempts=cfg.max_attempts,
                            delay=round(delay, 3),
                            error=type(e).__name__,
                        )
                        time.sleep(delay)

            logger.error("retries_exhausted", function=fn.__name__, attempts=cfg.max_attempts)
            raise last_exception  # type: ignore[misc]

        return wrapper

    if func is not None:
        return decorator(func)
    return decorator


__all__ = ["RetryConfig", "calculate_backoff", "retry_sync"]
