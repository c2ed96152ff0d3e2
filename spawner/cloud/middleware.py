"""Logging and instrumenting middleware wrapped around every dispatched call."""

import asyncio
import time
from typing import Awaitable, Callable

from ..core_utils import RequestContext
from ..messages import Message

Handler = Callable[[RequestContext, Message], Awaitable[Message]]


def logging_middleware(operation_name: str, handler: Handler) -> Handler:
    """Log one start line and one end line per call.

    Only the request's identifying fields are logged, never credentials.
    """

    async def wrapper(ctx: RequestContext, request: Message) -> Message:
        fields = request.log_fields()
        if ctx.trace_id:
            fields["trace_id"] = ctx.trace_id

        ctx.logger.log_info(operation_name, "started", **fields)
        started = time.monotonic()
        try:
            response = await handler(ctx, request)
        except asyncio.CancelledError:
            took = f"{time.monotonic() - started:.3f}s"
            ctx.logger.log_warning(
                operation_name, "cancelled", outcome="CancelledError", took=took, **fields
            )
            raise
        except Exception as e:
            took = f"{time.monotonic() - started:.3f}s"
            ctx.logger.log_error(
                operation_name, e, outcome=type(e).__name__, took=took, **fields
            )
            raise

        took = f"{time.monotonic() - started:.3f}s"
        ctx.logger.log_info(operation_name, "finished", outcome="ok", took=took, **fields)
        return response

    return wrapper


def instrumenting_middleware(operation_name: str, handler: Handler) -> Handler:
    """Count every call, successful or not, in the process-wide counter."""

    async def wrapper(ctx: RequestContext, request: Message) -> Message:
        try:
            return await handler(ctx, request)
        finally:
            count = ctx.service.counter.increment()
            ctx.logger.log_debug(operation_name, "counted", operations=count)

    return wrapper


def apply_middleware(operation_name: str, handler: Handler) -> Handler:
    """Logging around instrumenting around ``handler``."""
    return logging_middleware(
        operation_name, instrumenting_middleware(operation_name, handler)
    )
