"""Retry helper for transient network failures."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from constants import Constants
from common.errors import NetworkError
from common.logging_utils import extra_context, is_debug_enabled

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry(
    func: Callable[[], Awaitable[T]],
    *,
    attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    retry_on: Tuple[Type[BaseException], ...] = (NetworkError,),
) -> T:
    """Await ``func()`` until it succeeds, backing off exponentially.

    Only exceptions listed in ``retry_on`` are retried; anything else
    propagates on the first failure. The last error is re-raised once
    ``attempts`` is exhausted.
    """
    max_attempts = max(1, attempts if attempts is not None else Constants.HTTP_RETRY_MAX)
    delay = base_delay if base_delay is not None else Constants.HTTP_RETRY_BASE_DELAY_SEC

    for attempt in range(1, max_attempts + 1):
        try:
            return await func()
        except retry_on as exc:
            if attempt >= max_attempts:
                raise
            if is_debug_enabled(logger):
                logger.debug(
                    "Retrying after failure: %s",
                    exc,
                    extra=extra_context(
                        event="retry",
                        component="retry",
                        attempt=attempt,
                        outcome="will_retry",
                    ),
                )
            await asyncio.sleep(delay * (2 ** (attempt - 1)))
    raise AssertionError("unreachable")
