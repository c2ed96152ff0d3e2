"""Polling helpers for long-running provider operations."""

import asyncio
from typing import Awaitable, Callable, Optional, Protocol

from ..core_utils import RequestContext
from ..exceptions import ProviderError


class Operation(Protocol):
    """A provider operation that can be asked whether it has finished.

    ``poll`` returns True once the operation completed successfully and raises
    when it finished with an error.
    """

    description: str

    async def poll(self) -> bool: ...


class PollingOperation:
    """Operation whose completion is observed through an async status check."""

    def __init__(self, description: str, check: Callable[[], Awaitable[bool]]):
        self.description = description
        self._check = check

    async def poll(self) -> bool:
        return await self._check()


async def wait_for_completion(
    ctx: RequestContext, operation: Operation, interval: Optional[float] = None
) -> int:
    """Poll ``operation`` until it completes and return the number of polls.

    Raises ProviderError when the caller's deadline passes first. A request
    without a deadline polls until the operation finishes.
    """
    if interval is None:
        interval = ctx.config.poll_interval_seconds

    polls = 0
    while True:
        polls += 1
        if await operation.poll():
            ctx.logger.log_debug(
                "wait_for_completion", f"{operation.description} done", polls=polls
            )
            return polls

        remaining = ctx.time_remaining()
        if remaining is not None and remaining <= 0:
            raise ProviderError(
                f"{operation.description}: deadline exceeded after {polls} polls"
            )

        delay = interval if remaining is None else min(interval, remaining)
        await asyncio.sleep(delay)
