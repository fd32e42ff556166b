from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from nitrod.exceptions import CompletionTimeoutError


logger = logging.getLogger(__name__)

T = TypeVar("T")


def wait_until(
    predicate: Callable[[], bool],
    *,
    timeout: float,
    initial_delay: float = 0.05,
    max_delay: float = 2.0,
    description: str = "condition",
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> None:
    """Block until ``predicate()`` is true, backing off exponentially.

    Raises CompletionTimeoutError once ``timeout`` seconds have elapsed.
    Exceptions raised by the predicate propagate unchanged.
    """
    deadline = clock() + timeout
    delay = initial_delay
    attempts = 0

    while True:
        attempts += 1
        if predicate():
            if attempts > 1:
                logger.debug("%s satisfied after %d checks", description, attempts)
            return

        remaining = deadline - clock()
        if remaining <= 0:
            raise CompletionTimeoutError(
                f"timed out after {timeout:.1f}s waiting for {description} ({attempts} checks)"
            )

        sleep(min(delay, remaining))
        delay = min(delay * 2, max_delay)


def run_with_retry(
    operation: Callable[[], T],
    *,
    attempts: int,
    retry_on: tuple[type[BaseException], ...],
    description: str = "operation",
) -> T:
    """Run ``operation`` up to ``attempts`` times while it raises ``retry_on``."""
    last_exc: BaseException | None = None
    for attempt in range(attempts):
        try:
            return operation()
        except retry_on as exc:
            last_exc = exc
            logger.warning(
                "%s failed (attempt %d/%d): %s",
                description,
                attempt + 1,
                attempts,
                exc,
            )
    if last_exc:
        raise last_exc
    raise RuntimeError(f"{description} failed without raising exception")
