"""
Clock helpers: audit timestamps and stage timing.
"""
from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager

_ISO_UTC = "%Y-%m-%dT%H:%M:%SZ"
SLOW_STAGE_SECONDS = 5.0


def now() -> float:
    return time.time()


def format_timestamp(ts: float | None = None) -> str:
    """UTC ISO 8601 with second precision, as stored in `created_at` / `superseded_at` columns."""
    return time.strftime(_ISO_UTC, time.gmtime(now() if ts is None else ts))


@contextmanager
def timer(label: str, logger: logging.Logger, *, slow_after: float = SLOW_STAGE_SECONDS) -> Iterator[None]:
    """
    Time a block and log how long it took.

    Blocks slower than `slow_after` seconds are logged at WARNING so a
    large bulk preview or execution stands out in the request log.

        with timer("bulk preview", logger):
            preview = await diff.compute(intent)
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        level = logging.WARNING if elapsed >= slow_after else logging.DEBUG
        logger.log(level, "%s took %.3fs", label, elapsed)
