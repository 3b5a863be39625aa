"""
Utility helpers for the learning progression engine.

Provides:
- Structured logging configuration with timestamps.
- Retry with exponential back-off for generator calls.
- Wall-clock timing of engine operations.
- Session id minting.
"""

import contextlib
import logging
import time
import uuid
from typing import Any, Callable, Generator, Optional, Tuple, Type, TypeVar

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def setup_logging(
    level: int = logging.INFO,
    fmt: str = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt: str = "%Y-%m-%dT%H:%M:%S%z",
) -> None:
    """Configure the root logger with timestamped structured output."""
    logging.basicConfig(level=level, format=fmt, datefmt=datefmt, force=True)


# ---------------------------------------------------------------------------
# Retry with exponential back-off
# ---------------------------------------------------------------------------


def retry_with_backoff(
    fn: Callable[..., T],
    *args: Any,
    max_retries: int = 3,
    base_delay: float = 0.5,
    give_up_on: Tuple[Type[BaseException], ...] = (),
    logger: Optional[logging.Logger] = None,
    **kwargs: Any,
) -> T:
    """Call *fn*, retrying failures with exponential back-off.

    Exceptions in *give_up_on* are raised at once without retrying. The
    last exception is re-raised once *max_retries* attempts are spent.
    No delay follows the final attempt.
    """
    if logger is None:
        logger = logging.getLogger(__name__)

    attempts = max(1, max_retries)
    for attempt in range(1, attempts + 1):
        try:
            return fn(*args, **kwargs)
        except give_up_on:
            raise
        except Exception as exc:
            if attempt == attempts:
                raise
            delay = base_delay * (2 ** (attempt - 1))
            logger.warning(
                "Attempt %d/%d failed for %s: %s, retrying in %.1fs",
                attempt,
                attempts,
                getattr(fn, "__name__", repr(fn)),
                exc,
                delay,
            )
            time.sleep(delay)

    raise RuntimeError("unreachable")


# ---------------------------------------------------------------------------
# Timing
# ---------------------------------------------------------------------------


@contextlib.contextmanager
def timed(label: str, logger: Optional[logging.Logger] = None) -> Generator[None, None, None]:
    """Context manager that logs elapsed wall-clock time for *label*,
    whether the block succeeds or raises."""
    log = logger or logging.getLogger(__name__)
    t0 = time.monotonic()
    try:
        yield
    finally:
        log.debug("%s finished in %.3fs.", label, time.monotonic() - t0)


# ---------------------------------------------------------------------------
# Ids
# ---------------------------------------------------------------------------


def new_session_id() -> str:
    return uuid.uuid4().hex
