"""Chunking and retry backoff for batch operations."""

import random
from collections.abc import Iterator, Sequence


def chunked[T](items: Sequence[T], size: int) -> Iterator[list[T]]:
    """Split `items` into consecutive chunks of at most `size` elements."""
    if size < 1:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def backoff_delay(attempt: int, base_delay: float, max_delay: float = 2.0) -> float:
    """
    Delay before retry round `attempt` (1-based): exponential with full jitter.

    Returns 0 when `base_delay` is 0, which tests use to retry immediately.
    """
    if base_delay <= 0:
        return 0.0
    return random.uniform(0, min(max_delay, base_delay * (2 ** (attempt - 1))))
