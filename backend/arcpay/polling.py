"""
Suspend-until-predicate helper for remote completions.

Used for custodial transaction challenges and bridge attestations. The caller
owns the timeout; `None` means poll until cancelled (the maintenance sweep's
stuck-job timeout is then the ceiling).
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, TypeVar

from .errors import TransientStepError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PollTimeoutError(TransientStepError):
    """The predicate did not hold before the caller's timeout."""

    pass


async def wait_until(
    fetch: Callable[[], Awaitable[T]],
    predicate: Callable[[T], bool],
    timeout: Optional[float],
    interval: float = 2.0,
    description: str = "remote operation",
) -> T:
    """
    Call `fetch` every `interval` seconds until `predicate(result)` is true.

    Exceptions raised by `fetch` propagate; terminal failure states should be
    raised from there.

    Raises:
        PollTimeoutError: If `timeout` seconds pass without the predicate holding
    """
    started = time.monotonic()
    attempt = 0
    while True:
        attempt += 1
        result = await fetch()
        if predicate(result):
            return result
        if timeout is not None and time.monotonic() - started >= timeout:
            raise PollTimeoutError(f"Timed out after {timeout}s waiting for {description}")
        logger.debug(f"Waiting for {description} (attempt {attempt}), polling again in {interval}s")
        await asyncio.sleep(interval)
