"""Bounded retry for transient persistence failures."""

from __future__ import annotations

import logging
import sqlite3
import time
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_MARKERS = ("locked", "busy", "timeout", "timed out", "disk i/o")


@dataclass(frozen=True)
class RetryConfig:
    """Retry settings for the persistence boundary.

    Attributes:
        max_retries: Extra attempts after the first one.
        base_delay: Delay before the first retry, in seconds.
        max_delay: Upper bound for a single delay.
        backoff: 'exponential' or 'linear'.
    """

    max_retries: int = 2
    base_delay: float = 0.05
    max_delay: float = 1.0
    backoff: str = "exponential"

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.backoff not in ("exponential", "linear"):
            raise ValueError(f"Unknown backoff: {self.backoff}")


def is_transient(exc: BaseException) -> bool:
    """True for failures worth retrying (lock contention, timeouts).

    Constraint violations and programming errors are permanent.
    """
    if isinstance(exc, sqlite3.OperationalError):
        message = str(exc).lower()
        return any(marker in message for marker in TRANSIENT_MARKERS)
    return isinstance(exc, TimeoutError)


def compute_delay(attempt: int, config: RetryConfig) -> float:
    if config.backoff == "linear":
        delay = config.base_delay * (attempt + 1)
    else:
        delay = config.base_delay * (2**attempt)
    return min(delay, config.max_delay)


def with_retry(
    fn: Callable[..., T],
    *args: Any,
    config: RetryConfig | None = None,
    label: str = "",
    sleep: Callable[[float], None] = time.sleep,
    **kwargs: Any,
) -> T:
    """Call `fn`, retrying transient errors with backoff.

    Raises:
        The original exception immediately if it is permanent, or the
        last exception once retries are exhausted.
    """
    if config is None:
        config = RetryConfig()
    label = label or getattr(fn, "__qualname__", str(fn))

    for attempt in range(1 + config.max_retries):
        try:
            return fn(*args, **kwargs)
        except Exception as exc:
            if not is_transient(exc) or attempt >= config.max_retries:
                raise
            delay = compute_delay(attempt, config)
            logger.warning(
                f"[{label}] transient error (attempt {attempt + 1}/{config.max_retries + 1}), "
                f"retrying in {delay:.2f}s: {exc}"
            )
            sleep(delay)

    raise AssertionError("unreachable")
