"""Logging helpers for Momentum Rider.

The CLI configures the root logger once from the `logging.level` setting.
Library modules only call `get_logger(__name__)` and log key=value context
through `log_with_context` and `log_duration`.
"""

import logging
import sys
import time
from contextlib import contextmanager
from typing import Any, Iterator

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(
    level: str = "INFO",
    log_format: str | None = None,
) -> None:
    """Point the root logger at stdout with the given level.

    Replaces any earlier configuration, so calling it again (for example from
    a second CLI invocation in the same process) takes effect. Unknown level
    names fall back to INFO.

    Args:
        level: Level name such as "DEBUG" or "warning"
        log_format: Format string; defaults to time, logger, level and message

    Example:
        >>> from momentum_rider.utils.config import load_settings
        >>> settings = load_settings("config/default.yaml")
        >>> setup_logging(level=settings.get("logging.level", "INFO"))
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=log_format or DEFAULT_FORMAT,
        stream=sys.stdout,
        force=True,
    )


def get_logger(name: str) -> logging.Logger:
    """Module logger, e.g. `get_logger(__name__)` in `momentum_rider.portfolio.solver`."""
    return logging.getLogger(name)


def log_with_context(
    logger: logging.Logger,
    level: str,
    message: str,
    **context: Any,
) -> None:
    """Log `message` followed by ` | key=value ...` for each context field.

    Args:
        logger: Target logger
        level: Method name on the logger, e.g. "info" or "warning"
        message: Log message
        **context: Fields appended in insertion order

    Example:
        >>> logger = get_logger(__name__)
        >>> log_with_context(
        ...     logger, "info", "Solver finished",
        ...     status="optimal", elapsed_ms=12.5
        ... )
        # Logs: "Solver finished | status=optimal elapsed_ms=12.5"
    """
    if context:
        message = f"{message} | " + " ".join(f"{k}={v}" for k, v in context.items())
    getattr(logger, level.lower())(message)


@contextmanager
def log_duration(
    logger: logging.Logger,
    operation: str,
    level: str = "debug",
    **context: Any,
) -> Iterator[dict[str, float]]:
    """Time a block and log its duration with context on exit.

    The yielded dict is filled with ``elapsed_ms`` once the block finishes,
    so callers can copy the measured time into their own results.

    Example:
        >>> with log_duration(logger, "solve", tickers=4) as timing:
        ...     run_solver()
        >>> timing["elapsed_ms"]
        12.7
    """
    timing: dict[str, float] = {"elapsed_ms": 0.0}
    start = time.perf_counter()
    try:
        yield timing
    finally:
        timing["elapsed_ms"] = round((time.perf_counter() - start) * 1000, 3)
        log_with_context(
            logger, level, f"{operation} finished",
            elapsed_ms=timing["elapsed_ms"], **context
        )
