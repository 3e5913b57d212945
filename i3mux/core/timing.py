"""Operation timing for debug logs."""

import logging
import time
from contextlib import contextmanager
from typing import Iterator


@contextmanager
def log_timing(operation: str, logger: logging.Logger) -> Iterator[None]:
    """Log how long an operation took, at DEBUG level.

    Examples:
        >>> with log_timing("Match ws8-001", logger):
        ...     await matcher.finish(handle)
        DEBUG: Match ws8-001 completed in 152.04ms
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.debug(f"{operation} completed in {elapsed_ms:.2f}ms")
