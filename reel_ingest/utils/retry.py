import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, Type, TypeVar, Tuple

T = TypeVar("T")

logger = logging.getLogger(__name__)


def with_retry(
    fn: Callable[[], T],
    *,
    retries: int = 3,
    backoff_seconds: float = 0.5,
    retry_on: Optional[Tuple[Type[BaseException], ...]] = (Exception,),
) -> T:
    """Run fn() with retries and exponential backoff. If retry_on is None, defaults to (Exception,).
    Why available: Used by blocking helpers (object storage bucket checks) to ride out transient failures."""
    exc_types: Tuple[Type[BaseException], ...] = retry_on or (Exception,)

    last_err: Optional[BaseException] = None

    for attempt in range(retries + 1):
        try:
            return fn()
        except exc_types as e:
            last_err = e
            if attempt >= retries:
                raise
            sleep_s = backoff_seconds * (2 ** attempt)
            time.sleep(sleep_s)

    # Should be unreachable, but keeps type-checkers happy.
    assert last_err is not None
    raise last_err


async def with_retry_async(
    fn: Callable[[], Awaitable[T]],
    *,
    retries: int = 3,
    backoff_seconds: float = 0.5,
    retry_on: Optional[Tuple[Type[BaseException], ...]] = (Exception,),
    should_retry: Optional[Callable[[BaseException], bool]] = None,
) -> T:
    """Await fn() with retries and exponential backoff (0.5s, 1s, 2s with the defaults). should_retry narrows which caught errors are retried; others propagate immediately.
    Why available: Used by the fetch adapter so transient extractor/network faults are retried while content faults (private, removed) fail fast."""
    exc_types: Tuple[Type[BaseException], ...] = retry_on or (Exception,)

    last_err: Optional[BaseException] = None

    for attempt in range(retries + 1):
        try:
            return await fn()
        except exc_types as e:
            last_err = e
            if attempt >= retries or (should_retry is not None and not should_retry(e)):
                raise
            sleep_s = backoff_seconds * (2 ** attempt)
            logger.info("retrying", extra={"attempt": attempt + 1, "sleep_s": sleep_s, "error": str(e)})
            await asyncio.sleep(sleep_s)

    assert last_err is not None
    raise last_err
