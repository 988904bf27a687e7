"""Bounded retry and poll primitives with a fixed inter-attempt delay.

Callers must pass operations that are safe to repeat: an attempt that
failed on our side may still have taken effect on the remote side.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from guestbox.errors import PollTimeout, RetriesExhausted

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


def is_ready_status(status: int) -> bool:
    """Whether an HTTP status means the server is up.

    4xx counts: the server answers, it just has not authorized us yet.
    """
    return 200 <= status < 500


async def with_retries(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int,
    delay: float,
    label: str,
    sleep: Sleep = asyncio.sleep,
    log: Optional[logging.Logger] = None,
) -> T:
    """Call ``operation`` until it succeeds, at most ``max_attempts`` times.

    Sleeps ``delay`` seconds between attempts, never after the last one.
    Raises RetriesExhausted(label) chained from the last failure.
    """
    log = log or logger
    last_error: Optional[Exception] = None

    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except Exception as e:
            last_error = e
            log.warning(f"Attempt to {label} ({attempt}/{max_attempts}) failed: {e}")
            if attempt < max_attempts:
                await sleep(delay)

    raise RetriesExhausted(label, max_attempts) from last_error


async def poll_until_ready(
    probe: Callable[[], Awaitable[Optional[T]]],
    max_attempts: int,
    delay: float,
    label: str,
    sleep: Sleep = asyncio.sleep,
    log: Optional[logging.Logger] = None,
) -> T:
    """Call ``probe`` until it reports readiness and return what it reported.

    ``probe`` returns a falsy value for "not yet" or a truthy value, either
    ``True`` or a classification such as the port that answered. A probe
    that raises counts as "not yet". Raises PollTimeout(label) when the
    budget runs out.
    """
    log = log or logger

    for attempt in range(1, max_attempts + 1):
        try:
            result = await probe()
        except Exception as e:
            log.info(f"{label} not responding ({attempt}/{max_attempts}): {e}")
        else:
            if result:
                return result
            log.info(f"{label} not ready ({attempt}/{max_attempts})")
        if attempt < max_attempts:
            await sleep(delay)

    raise PollTimeout(label, max_attempts)
