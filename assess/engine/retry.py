"""Capped exponential backoff for transient failures."""
import logging
import time
from typing import Callable, TypeVar

from assess.engine.errors import TransientNetworkError

log = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retry number ``attempt`` (1-based): base * 2^(attempt-1), capped."""
    if base_delay <= 0:
        return 0.0
    return min(max_delay, base_delay * (2 ** (attempt - 1)))


def call_with_retry(
    fn: Callable[[], T],
    *,
    attempts: int,
    base_delay: float,
    max_delay: float,
    retry_on: tuple[type[BaseException], ...] = (TransientNetworkError,),
    sleep: Callable[[float], None] = time.sleep,
    label: str = "call",
) -> T:
    """
    Call ``fn`` until it succeeds or ``attempts`` are used up.

    Only exceptions listed in ``retry_on`` are retried; the last one is
    re-raised once the attempts run out.
    """
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except retry_on as exc:
            if attempt >= attempts:
                log.warning("%s failed after %d attempts: %s", label, attempt, exc)
                raise
            delay = backoff_delay(attempt, base_delay, max_delay)
            log.info(
                "%s attempt %d/%d failed (%s); retrying in %.2fs",
                label,
                attempt,
                attempts,
                exc,
                delay,
            )
            if delay:
                sleep(delay)
    raise AssertionError("unreachable")
