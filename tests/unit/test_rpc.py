"""Unit tests for the gRPC servicer and client."""

from unittest.mock import AsyncMock, Mock

import grpc
from grpc import StatusCode
import pytest

from spawner.cloud.cloud_provider_manager import (
    OPERATIONS,
    CloudProviderManager,
    ProviderRegistry,
)
from spawner.core_utils import CloudProvider
from spawner.exceptions import (
    CredentialError,
    InvalidInputError,
    NotFoundError,
    ProviderError,
    TransientEmptyResultError,
    UnsupportedOperationError,
)
from spawner.handlers import ServiceHandlers
from spawner.messages import (
    ClusterStatusRequest,
    ClusterStatusResponse,
    EchoRequest,
    EchoResponse,
)
from spawner.rpc import (
    SpawnerClient,
    SpawnerServicer,
    error_for_status,
    method_path,
    status_code_for,
)


class Aborted(Exception):
    """Raised by the fake servicer context's abort."""


def servicer_context(metadata=(), time_remaining=None):
    context = Mock()
    context.invocation_metadata.return_value = metadata
    context.time_remaining.return_value = time_remaining
    context.abort = AsyncMock(side_effect=Aborted)
    return context


def rpc_error(code, details):
    return grpc.aio.AioRpcError(
        code, grpc.aio.Metadata(), grpc.aio.Metadata(), details=details
    )


@pytest.mark.unit
@pytest.mark.fast
class TestStatusMapping:
    """Test error kind to status code mapping in both directions."""

    @pytest.mark.parametrize(
        "error,code",
        [
            (InvalidInputError("x"), StatusCode.INVALID_ARGUMENT),
            (CredentialError("x"), StatusCode.UNAUTHENTICATED),
            (NotFoundError("x"), StatusCode.NOT_FOUND),
            (TransientEmptyResultError("x"), StatusCode.UNAVAILABLE),
            (ProviderError("x"), StatusCode.INTERNAL),
            (UnsupportedOperationError("x"), StatusCode.INTERNAL),
            (RuntimeError("x"), StatusCode.INTERNAL),
        ],
    )
    def test_status_code_for(self, error, code):
        assert status_code_for(error) == code

    @pytest.mark.parametrize(
        "code,kind",
        [
            (StatusCode.INVALID_ARGUMENT, InvalidInputError),
            (StatusCode.UNAUTHENTICATED, CredentialError),
            (StatusCode.NOT_FOUND, NotFoundError),
            (StatusCode.UNAVAILABLE, TransientEmptyResultError),
            (StatusCode.INTERNAL, ProviderError),
            (StatusCode.DEADLINE_EXCEEDED, ProviderError),
        ],
    )
    def test_error_for_status(self, code, kind):
        error = error_for_status(code, "details")
        assert type(error) is kind
        assert error.message == "details"

    def test_error_without_details_uses_code_name(self):
        assert error_for_status(StatusCode.NOT_FOUND, None).message == "NOT_FOUND"

    def test_method_path(self):
        assert method_path("ClusterStatus") == "/spawner.SpawnerService/ClusterStatus"


@pytest.mark.unit
class TestSpawnerServicer:
    """Test the generic method handlers."""

    @pytest.fixture
    def manager(self):
        manager = Mock()
        manager.dispatch = AsyncMock()
        return manager

    @pytest.fixture
    def servicer(self, service, manager):
        return SpawnerServicer(service, manager)

    @pytest.mark.asyncio
    async def test_echo_through_real_dispatch(self, service):
        manager = CloudProviderManager(ProviderRegistry(), ServiceHandlers(Mock()))
        handler = SpawnerServicer(service, manager)._unary(OPERATIONS["Echo"])

        payload = await handler.unary_unary(b'{"msg": "hello spawner"}', servicer_context())

        assert EchoResponse.model_validate_json(payload).msg == "hello spawner"
        assert service.counter.value == 1

    @pytest.mark.asyncio
    async def test_request_context_from_metadata(self, servicer, manager):
        manager.dispatch.return_value = ClusterStatusResponse(status="Active")
        handler = servicer._unary(OPERATIONS["ClusterStatus"])
        context = servicer_context(metadata=(("trace-id", "t-1"),), time_remaining=30.0)

        payload = await handler.unary_unary(
            b'{"provider": "aws", "region": "us-west-2", "cluster_name": "c1"}', context
        )

        assert ClusterStatusResponse.model_validate_json(payload).status == "Active"
        ctx, name, request = manager.dispatch.call_args.args
        assert name == "ClusterStatus"
        assert ctx.trace_id == "t-1"
        assert ctx.deadline is not None
        assert isinstance(request, ClusterStatusRequest)
        assert request.cluster_name == "c1"

    @pytest.mark.asyncio
    async def test_malformed_payload_is_invalid_argument(self, servicer, manager):
        handler = servicer._unary(OPERATIONS["ClusterStatus"])
        context = servicer_context()

        with pytest.raises(Aborted):
            await handler.unary_unary(b"not json", context)

        assert context.abort.call_args.args[0] == StatusCode.INVALID_ARGUMENT
        manager.dispatch.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error,code",
        [
            (NotFoundError("DeleteCluster: cluster 'c1' not found"), StatusCode.NOT_FOUND),
            (InvalidInputError("unknown provider 'oracle'"), StatusCode.INVALID_ARGUMENT),
            (TransientEmptyResultError("no instances"), StatusCode.UNAVAILABLE),
            (UnsupportedOperationError("not supported"), StatusCode.INTERNAL),
        ],
    )
    async def test_errors_abort_with_status(self, servicer, manager, error, code):
        manager.dispatch.side_effect = error
        handler = servicer._unary(OPERATIONS["DeleteCluster"])
        context = servicer_context()

        with pytest.raises(Aborted):
            await handler.unary_unary(b'{"cluster_name": "c1"}', context)

        context.abort.assert_awaited_once_with(code, error.message)

    @pytest.mark.asyncio
    async def test_unexpected_error_is_internal(self, servicer, manager):
        manager.dispatch.side_effect = RuntimeError("boom")
        handler = servicer._unary(OPERATIONS["HealthCheck"])
        context = servicer_context()

        with pytest.raises(Aborted):
            await handler.unary_unary(b"", context)

        context.abort.assert_awaited_once_with(StatusCode.INTERNAL, "boom")

    def test_generic_handler_serves_service(self, servicer):
        handler = servicer.generic_handler()
        details = Mock()
        details.method = "/spawner.SpawnerService/HealthCheck"
        assert handler.service(details) is not None


@pytest.mark.unit
class TestSpawnerClient:
    """Test the client side of the JSON-over-gRPC calls."""

    @pytest.fixture
    def stub(self):
        return AsyncMock(return_value=b'{"msg": "hi"}')

    @pytest.fixture
    def channel(self, stub):
        channel = Mock()
        channel.unary_unary.return_value = stub
        return channel

    @pytest.mark.asyncio
    async def test_call(self, channel, stub):
        response = await SpawnerClient(channel).call(
            "Echo", EchoRequest(msg="hi"), timeout=5.0, trace_id="t-1"
        )

        assert response == EchoResponse(msg="hi")
        channel.unary_unary.assert_called_once_with("/spawner.SpawnerService/Echo")
        stub.assert_awaited_once_with(
            b'{"msg":"hi"}', timeout=5.0, metadata=(("trace-id", "t-1"),)
        )

    @pytest.mark.asyncio
    async def test_call_without_trace_id(self, channel, stub):
        await SpawnerClient(channel).call("Echo", EchoRequest(msg="hi"))
        assert stub.call_args.kwargs["metadata"] is None

    @pytest.mark.asyncio
    async def test_unknown_method(self, channel):
        with pytest.raises(InvalidInputError, match="unknown operation 'Reboot'"):
            await SpawnerClient(channel).call("Reboot", EchoRequest())
        channel.unary_unary.assert_not_called()

    @pytest.mark.asyncio
    async def test_status_becomes_error_kind(self, channel, stub):
        stub.side_effect = rpc_error(StatusCode.NOT_FOUND, "DeleteCluster: gone")

        with pytest.raises(NotFoundError, match="DeleteCluster: gone"):
            await SpawnerClient(channel).call("Echo", EchoRequest())


@pytest.mark.unit
class TestLoopback:
    """Serve and call over a real local channel."""

    @pytest.mark.asyncio
    async def test_round_trip(self, service):
        adapter = Mock()
        adapter.cluster_status = AsyncMock(side_effect=NotFoundError("cluster 'c1' not found"))
        registry = ProviderRegistry()
        registry.register(CloudProvider.AWS, adapter)
        manager = CloudProviderManager(registry, ServiceHandlers(Mock()))

        server = grpc.aio.server()
        server.add_generic_rpc_handlers((SpawnerServicer(service, manager).generic_handler(),))
        port = server.add_insecure_port("127.0.0.1:0")
        await server.start()
        try:
            async with grpc.aio.insecure_channel(f"127.0.0.1:{port}") as channel:
                client = SpawnerClient(channel)

                health = await client.call("HealthCheck", OPERATIONS["HealthCheck"].request_type())
                assert health.status == "SERVING"

                with pytest.raises(NotFoundError, match="cluster 'c1' not found"):
                    await client.call(
                        "ClusterStatus",
                        ClusterStatusRequest(provider="aws", cluster_name="c1"),
                        timeout=5.0,
                    )
        finally:
            await server.stop(None)

        assert service.counter.value == 2
