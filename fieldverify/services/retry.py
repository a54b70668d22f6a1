"""Bounded retry with exponential backoff for remote calls."""

from __future__ import annotations

import logging
import time
from typing import Callable, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delays(attempts: int, base_delay: float) -> list:
    """Delays slept between attempts: base, 2*base, 4*base, ..."""
    return [base_delay * (2 ** i) for i in range(max(attempts - 1, 0))]


def retry_call(
    fn: Callable[[], T],
    *,
    attempts: int = 3,
    base_delay: float = 1.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
    label: str = "remote call",
) -> T:
    """
    Call *fn* up to *attempts* times.

    Only exceptions in *retry_on* are retried; the last one is re-raised once
    the attempts are exhausted.
    """
    delays = backoff_delays(attempts, base_delay)
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except retry_on as exc:
            if attempt >= attempts:
                logger.warning("%s failed after %d attempts: %s", label, attempts, exc)
                raise
            delay = delays[attempt - 1]
            logger.warning(
                "%s attempt %d/%d failed (%s); retrying in %.1fs",
                label, attempt, attempts, exc, delay,
            )
            sleep(delay)
    raise RuntimeError("unreachable")  # pragma: no cover
