"""Bounded exponential backoff around remote calls."""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, TypeVar

from portal_sync.exceptions import RemoteFetchError
from portal_sync.services.clienttether_service import ApiResponse

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


def backoff_schedule(max_attempts: int, base_delay: float = 1.0) -> List[float]:
    """
    Delays (seconds) waited between attempts.

    delay[i] is waited after attempt i fails, before attempt i + 1:
    1s, 2s, 4s, then doubling for larger budgets.
    """
    return [base_delay * (2 ** i) for i in range(max(max_attempts - 1, 0))]


async def fetch_with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    sleep: Sleep = asyncio.sleep,
    description: str = "remote call",
) -> T:
    """
    Run ``operation`` up to ``max_attempts`` times.

    Returns the first successful result. After the last failed attempt the
    last exception is re-raised unchanged. No jitter. Cancellation during a
    backoff sleep propagates immediately.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    delays = backoff_schedule(max_attempts, base_delay)

    for attempt in range(max_attempts):
        try:
            return await operation()
        except Exception as e:
            if attempt == max_attempts - 1:
                logger.error(f"{description} failed after {max_attempts} attempt(s): {e}")
                raise
            delay = delays[attempt]
            logger.warning(
                f"{description} failed (attempt {attempt + 1}/{max_attempts}): {e} "
                f"- retrying in {delay:g}s"
            )
            await sleep(delay)


async def fetch_endpoint(
    call: Callable[[], Awaitable[ApiResponse]],
    endpoint: str,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    sleep: Sleep = asyncio.sleep,
) -> Optional[object]:
    """
    Fetch one ClientTether endpoint, treating any error envelope as retryable.

    Returns the response payload (possibly None or empty when the API answered
    without data). Raises RemoteFetchError when every attempt came back with
    an error envelope.
    """

    async def attempt():
        response = await call()
        if not response.ok:
            raise RemoteFetchError(endpoint, response.error)
        return response.data

    return await fetch_with_retry(
        attempt,
        max_attempts=max_attempts,
        base_delay=base_delay,
        sleep=sleep,
        description=f"GET {endpoint}",
    )
