"""Batch slicing and retry helpers shared by the analysis and mutation loops."""
from __future__ import annotations

import logging
from typing import Callable, Iterator, List, Sequence, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def chunked(items: Sequence[T], size: int) -> Iterator[Tuple[int, List[T]]]:
    """Yield ``(start_offset, batch)`` pairs of at most ``size`` items."""
    if size <= 0:
        raise ValueError("batch size must be positive")
    for start in range(0, len(items), size):
        yield start, list(items[start:start + size])


def batch_count(total: int, size: int) -> int:
    return (total + size - 1) // size


def call_with_linear_backoff(
    fn: Callable[[], R],
    max_attempts: int,
    unit_s: float,
    sleep: Callable[[float], None],
    label: str = "call",
    giveup: Tuple[Type[BaseException], ...] = (),
) -> R:
    """
    Call ``fn`` up to ``max_attempts`` times, waiting ``attempt * unit_s``
    between attempts. The last error is re-raised; ``giveup`` errors are
    re-raised on first sight.
    """
    attempt = 0
    while True:
        try:
            return fn()
        except giveup:
            raise
        except Exception as e:
            attempt += 1
            if attempt >= max_attempts:
                raise
            delay = unit_s * attempt
            logger.warning(f"[retry] {label} failed ({e}); retrying in {delay:.1f}s ({attempt}/{max_attempts})")
            sleep(delay)
