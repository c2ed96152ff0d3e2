"""Unit tests for the command line test client."""

from unittest.mock import AsyncMock, Mock

import pytest

from spawner.cloud.cloud_provider_manager import OPERATIONS
from spawner.exceptions import NotFoundError, ProviderError
from spawner.messages import ClusterSpec, GetClustersResponse
from spawner.testclient import (
    canned_requests,
    delete_all_clusters_in_region,
    normalize_address,
    parse_args,
    run,
)


def listing(*names):
    return GetClustersResponse(clusters=[ClusterSpec(name=name) for name in names])


@pytest.mark.unit
class TestDeleteAllClustersInRegion:
    """Test the sequential bulk delete."""

    @pytest.fixture
    def client(self):
        client = Mock()
        client.call = AsyncMock()
        return client

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_the_loop(self, client):
        failure = ProviderError("DeleteCluster: node group ended in status DEGRADED")
        client.call.side_effect = [listing("a", "b", "c"), None, failure, None]

        results = await delete_all_clusters_in_region(client, "aws", "us-west-2", "acct")

        assert results == {"a": None, "b": failure, "c": None}
        deleted = [
            call.args[1].cluster_name
            for call in client.call.call_args_list
            if call.args[0] == "DeleteCluster"
        ]
        assert deleted == ["a", "b", "c"]
        assert all(
            call.args[1].force_delete
            for call in client.call.call_args_list
            if call.args[0] == "DeleteCluster"
        )

    @pytest.mark.asyncio
    async def test_already_deleted_cluster_is_not_an_error(self, client):
        client.call.side_effect = [listing("a"), NotFoundError("DeleteCluster: gone")]

        results = await delete_all_clusters_in_region(client, "aws", "us-west-2", "acct")

        assert results == {"a": None}

    @pytest.mark.asyncio
    async def test_empty_region(self, client):
        client.call.return_value = listing()

        assert await delete_all_clusters_in_region(client, "aws", "us-west-2", "acct") == {}
        client.call.assert_awaited_once()


@pytest.mark.unit
@pytest.mark.fast
class TestHarness:
    """Test argument handling and the canned requests."""

    def test_canned_requests_match_operations(self):
        requests = canned_requests()
        for method, (operation_name, request) in requests.items():
            spec = OPERATIONS[operation_name]
            assert isinstance(request, spec.request_type), method

    def test_every_operation_has_a_canned_request(self):
        covered = {operation_name for operation_name, _ in canned_requests().values()}
        assert covered == set(OPERATIONS)

    def test_harness_aliases(self):
        requests = canned_requests()
        assert requests["AddTag"][0] == "TagNodeInstance"
        assert requests["PresignS3"][0] == "PresignS3Url"
        assert requests["ReadCredentialGitPAT"][1].type == "git-pat"

    def test_normalize_address(self):
        assert normalize_address(":8083") == "localhost:8083"
        assert normalize_address("spawner:9000") == "spawner:9000"

    def test_parse_args(self):
        args = parse_args([])
        assert args.grpc_addr == ":8083"
        assert args.method == "HealthCheck"

        args = parse_args(["-grpc-addr", "localhost:9000", "-method", "Echo"])
        assert args.grpc_addr == "localhost:9000"
        assert args.method == "Echo"

    @pytest.mark.asyncio
    async def test_unknown_method_exits_nonzero(self):
        assert await run(":1", "Bogus") == 1
