import asyncio
import functools
import logging

from .errors import QueryFailureReason, SourceUnavailable
from .logs import configure_logging

configure_logging()
logger = logging.getLogger(__name__)


def timeboxed(func):
    """
    Decorator to bound a remote call by the instance's `timeout` (seconds, None for no bound).
    Running out of time is reported as a SourceUnavailable so it counts against the budget.
    """

    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs):
        timeout = getattr(self, "timeout", None)

        try:
            return await asyncio.wait_for(func(self, *args, **kwargs), timeout)
        except asyncio.TimeoutError as err:
            logger.warning(
                "Remote call timed out", {"method": func.__name__, "timeout": timeout}
            )
            raise SourceUnavailable(
                f"{func.__name__} did not complete within {timeout} seconds",
                QueryFailureReason.TIMEOUT,
            ) from err

    return wrapper


def retried(attempts: int, delay: float = 0.2):
    """
    Decorator to retry an idempotent remote call on SourceUnavailable, `attempts` times in
    total, sleeping `delay` seconds in between. The last failure is re-raised.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(1, attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except SourceUnavailable as err:
                    if attempt == attempts:
                        raise
                    logger.debug(
                        "Retrying remote call",
                        {"method": func.__name__, "attempt": attempt, "error": str(err)},
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
