"""gRPC surface of the spawner service.

Messages travel as JSON encodings of the pydantic models in
``spawner.messages``; the service registers a generic handler, so no
generated stubs are needed on either side.
"""

from typing import Optional

import grpc
from grpc import StatusCode
from pydantic import ValidationError

from .cloud.cloud_provider_manager import OPERATIONS, CloudProviderManager, OperationSpec
from .core_utils import RequestContext, ServiceContext
from .exceptions import (
    CredentialError,
    InvalidInputError,
    NotFoundError,
    ProviderError,
    SpawnerError,
    TransientEmptyResultError,
)
from .messages import Message

SERVICE_NAME = "spawner.SpawnerService"
TRACE_ID_METADATA = "trace-id"

# Checked in order, so subclasses must precede their bases.
STATUS_CODES = (
    (InvalidInputError, StatusCode.INVALID_ARGUMENT),
    (CredentialError, StatusCode.UNAUTHENTICATED),
    (NotFoundError, StatusCode.NOT_FOUND),
    (TransientEmptyResultError, StatusCode.UNAVAILABLE),
    (ProviderError, StatusCode.INTERNAL),
)

ERROR_KINDS = {code: kind for kind, code in STATUS_CODES}


def status_code_for(error: Exception) -> StatusCode:
    for kind, code in STATUS_CODES:
        if isinstance(error, kind):
            return code
    return StatusCode.INTERNAL


def error_for_status(code: StatusCode, details: Optional[str]) -> SpawnerError:
    """Rebuild the error kind a status code stands for."""
    kind = ERROR_KINDS.get(code, ProviderError)
    return kind(details or code.name)


def method_path(name: str) -> str:
    return f"/{SERVICE_NAME}/{name}"


class SpawnerServicer:
    """Serves every operation of the dispatch facade as a unary gRPC method."""

    def __init__(self, service: ServiceContext, manager: CloudProviderManager):
        self.service = service
        self.manager = manager

    def _request_context(self, context: grpc.aio.ServicerContext) -> RequestContext:
        metadata = dict(context.invocation_metadata() or ())
        return RequestContext.with_timeout(
            self.service,
            context.time_remaining(),
            trace_id=metadata.get(TRACE_ID_METADATA),
        )

    def _unary(self, spec: OperationSpec):
        async def handler(payload: bytes, context: grpc.aio.ServicerContext) -> bytes:
            try:
                request = spec.request_type.model_validate_json(payload or b"{}")
            except ValidationError as e:
                await context.abort(StatusCode.INVALID_ARGUMENT, str(e))

            ctx = self._request_context(context)
            try:
                response = await self.manager.dispatch(ctx, spec.name, request)
            except SpawnerError as e:
                await context.abort(status_code_for(e), e.message)
            except Exception as e:
                await context.abort(StatusCode.INTERNAL, str(e))
            return response.model_dump_json().encode()

        return grpc.unary_unary_rpc_method_handler(handler)

    def generic_handler(self) -> grpc.GenericRpcHandler:
        handlers = {name: self._unary(spec) for name, spec in OPERATIONS.items()}
        return grpc.method_handlers_generic_handler(SERVICE_NAME, handlers)


class SpawnerClient:
    """Calls spawner operations over an established channel."""

    def __init__(self, channel: grpc.aio.Channel):
        self.channel = channel

    async def call(
        self,
        method: str,
        request: Message,
        timeout: Optional[float] = None,
        trace_id: Optional[str] = None,
    ) -> Message:
        spec = OPERATIONS.get(method)
        if spec is None:
            raise InvalidInputError(f"unknown operation '{method}'")

        metadata = ((TRACE_ID_METADATA, trace_id),) if trace_id else None
        stub = self.channel.unary_unary(method_path(method))
        try:
            payload = await stub(
                request.model_dump_json().encode(), timeout=timeout, metadata=metadata
            )
        except grpc.aio.AioRpcError as e:
            raise error_for_status(e.code(), e.details()) from e
        return spec.response_type.model_validate_json(payload)
