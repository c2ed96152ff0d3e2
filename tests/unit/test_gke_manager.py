"""Unit tests for GKEManager functionality."""

from unittest.mock import Mock

from google.api_core.exceptions import NotFound, PermissionDenied
from google.cloud import container_v1
import pytest

from spawner.cloud.gke_manager import GKEManager
from spawner.exceptions import (
    InvalidInputError,
    NotFoundError,
    ProviderError,
    TransientEmptyResultError,
)
from spawner.messages import (
    ClusterDeleteRequest,
    ClusterStatusRequest,
    CreateVolumeRequest,
    GetVolumeRequest,
    MigProfile,
    NodeSpawnRequest,
    NodeSpec,
    TagNodeInstanceRequest,
)
from tests.helpers import make_context, session_factory

TARGET = dict(provider="gcp", region="us-central1", account_name="netbook-gcp")


def finished_operation():
    op = Mock()
    op.name = "operation-1"
    return op


@pytest.mark.unit
@pytest.mark.gcp
class TestGKEManager:
    """Test GKEManager operations against mocked Google clients."""

    @pytest.fixture
    def cluster_manager(self):
        client = Mock()
        client.get_operation.return_value = Mock(
            status=container_v1.Operation.Status.DONE, error=None
        )
        return client

    @pytest.fixture
    def session(self, cluster_manager):
        session = Mock()
        session.project_id = "proj-1"
        session.region = "us-central1"
        session.cluster_manager.return_value = cluster_manager
        return session

    @pytest.fixture
    def gke_manager(self, session):
        return GKEManager(session_factory(session))

    @pytest.fixture
    def ctx(self):
        return make_context()

    def test_translate_error(self, gke_manager):
        assert isinstance(gke_manager.translate_error(NotFound("gone")), NotFoundError)
        assert isinstance(gke_manager.translate_error(PermissionDenied("no")), ProviderError)
        assert gke_manager.translate_error(KeyError("x")) is None

    def test_zone_defaults_to_first_zone_of_region(self, gke_manager):
        assert gke_manager._zone("", "us-central1") == "us-central1-a"
        assert gke_manager._zone("us-central1", "us-central1") == "us-central1-a"
        assert gke_manager._zone("us-central1-b", "us-central1") == "us-central1-b"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,expected",
        [
            (container_v1.Cluster.Status.RUNNING, "Active"),
            (container_v1.Cluster.Status.PROVISIONING, "Inactive"),
            (container_v1.Cluster.Status.RECONCILING, "Inactive"),
        ],
    )
    async def test_cluster_status(self, gke_manager, cluster_manager, ctx, status, expected):
        cluster_manager.get_cluster.return_value = Mock(status=status)

        response = await gke_manager.cluster_status(
            ctx, ClusterStatusRequest(cluster_name="c1", **TARGET)
        )

        assert response.status == expected
        cluster_manager.get_cluster.assert_called_once_with(
            name="projects/proj-1/locations/us-central1/clusters/c1"
        )

    @pytest.mark.asyncio
    async def test_missing_cluster_is_not_found(self, gke_manager, cluster_manager, ctx):
        cluster_manager.get_cluster.side_effect = NotFound("cluster c1 not found")

        with pytest.raises(NotFoundError, match="ClusterStatus"):
            await gke_manager.cluster_status(
                ctx, ClusterStatusRequest(cluster_name="c1", **TARGET)
            )

    @pytest.mark.asyncio
    async def test_delete_cluster_with_pools_without_force(
        self, gke_manager, cluster_manager, ctx
    ):
        pool = Mock()
        pool.name = "default-node"
        cluster_manager.get_cluster.return_value = Mock(node_pools=[pool])
        cluster_manager.delete_cluster.return_value = finished_operation()

        await gke_manager.delete_cluster(
            ctx, ClusterDeleteRequest(cluster_name="c1", **TARGET)
        )

        cluster_manager.delete_cluster.assert_called_once_with(
            name="projects/proj-1/locations/us-central1/clusters/c1"
        )
        cluster_manager.delete_node_pool.assert_not_called()

    @pytest.mark.asyncio
    async def test_delete_missing_cluster(self, gke_manager, cluster_manager, ctx):
        cluster_manager.get_cluster.side_effect = NotFound("cluster c1 not found")

        with pytest.raises(NotFoundError, match="DeleteCluster"):
            await gke_manager.delete_cluster(
                ctx, ClusterDeleteRequest(cluster_name="c1", **TARGET)
            )
        cluster_manager.delete_cluster.assert_not_called()

    @pytest.mark.asyncio
    async def test_force_delete_cluster(self, gke_manager, cluster_manager, ctx):
        cluster_manager.get_cluster.return_value = Mock(node_pools=[Mock()])
        cluster_manager.delete_cluster.return_value = finished_operation()

        await gke_manager.delete_cluster(
            ctx, ClusterDeleteRequest(cluster_name="c1", force_delete=True, **TARGET)
        )

        cluster_manager.delete_cluster.assert_called_once_with(
            name="projects/proj-1/locations/us-central1/clusters/c1"
        )
        cluster_manager.get_operation.assert_called_once_with(
            name="projects/proj-1/locations/us-central1/operations/operation-1"
        )

    @pytest.mark.asyncio
    async def test_add_gpu_node_pool(self, gke_manager, cluster_manager, ctx):
        cluster_manager.create_node_pool.return_value = finished_operation()
        request = NodeSpawnRequest(
            cluster_name="c1",
            node_spec=NodeSpec(
                name="gpu-pool", machine_type="gpu-m", count=2, mig_profile=MigProfile.MIG1G
            ),
            **TARGET,
        )

        await gke_manager.add_node(ctx, request)

        kwargs = cluster_manager.create_node_pool.call_args.kwargs
        assert kwargs["parent"] == "projects/proj-1/locations/us-central1/clusters/c1"
        node_pool = kwargs["node_pool"]
        assert node_pool["initial_node_count"] == 2
        assert node_pool["locations"] == ["us-central1-a"]
        config = node_pool["config"]
        assert config["machine_type"] == "a2-highgpu-1g"
        assert config["accelerators"][0]["gpu_partition_size"] == "1g.5gb"
        assert config["labels"]["node-name"] == "gpu-pool"

    @pytest.mark.asyncio
    async def test_small_gpu_node_pool(self, gke_manager, cluster_manager, ctx):
        cluster_manager.create_node_pool.return_value = finished_operation()
        request = NodeSpawnRequest(
            cluster_name="c1", node_spec=NodeSpec(name="l4", machine_type="gpu-s"), **TARGET
        )

        await gke_manager.add_node(ctx, request)

        config = cluster_manager.create_node_pool.call_args.kwargs["node_pool"]["config"]
        assert config["machine_type"] == "g2-standard-4"
        assert "accelerators" not in config

    @pytest.mark.asyncio
    async def test_partition_profile_needs_a100_machine(self, gke_manager, cluster_manager, ctx):
        request = NodeSpawnRequest(
            cluster_name="c1",
            node_spec=NodeSpec(name="l4", machine_type="gpu-s", mig_profile=MigProfile.MIG1G),
            **TARGET,
        )

        with pytest.raises(InvalidInputError, match="g2-standard-4"):
            await gke_manager.add_node(ctx, request)
        cluster_manager.create_node_pool.assert_not_called()

    @pytest.mark.asyncio
    async def test_add_node_without_instance(self, session, ctx):
        factory = session_factory(session)
        request = NodeSpawnRequest(cluster_name="c1", node_spec=NodeSpec(name="n"), **TARGET)

        with pytest.raises(InvalidInputError, match="AddNode"):
            await GKEManager(factory).add_node(ctx, request)
        factory.new_session.assert_not_called()

    @pytest.mark.asyncio
    async def test_failed_operation_raises(self, gke_manager, cluster_manager, ctx):
        cluster_manager.create_node_pool.return_value = finished_operation()
        cluster_manager.get_operation.return_value = Mock(
            status=container_v1.Operation.Status.DONE,
            error=Mock(message="quota exceeded"),
        )
        request = NodeSpawnRequest(
            cluster_name="c1", node_spec=NodeSpec(name="n", machine_type="s"), **TARGET
        )

        with pytest.raises(ProviderError, match="quota exceeded"):
            await gke_manager.add_node(ctx, request)

    @pytest.mark.asyncio
    async def test_tag_before_instances_exist(self, gke_manager, cluster_manager, ctx):
        cluster_manager.get_cluster.return_value = Mock(node_pools=[])

        with pytest.raises(TransientEmptyResultError):
            await gke_manager.tag_node_instance(
                ctx, TagNodeInstanceRequest(cluster_name="c1", **TARGET)
            )

    @pytest.mark.asyncio
    async def test_create_volume(self, gke_manager, session, ctx):
        op = Mock()
        op.done.return_value = True
        op.error_code = 0
        disks = session.disks.return_value
        disks.insert.return_value = op
        disks.get.return_value = Mock(size_gb=50)

        response = await gke_manager.create_volume(
            ctx, CreateVolumeRequest(size=50, **TARGET)
        )

        kwargs = disks.insert.call_args.kwargs
        assert kwargs["project"] == "proj-1"
        assert kwargs["zone"] == "us-central1-a"
        assert kwargs["disk_resource"].size_gb == 50
        assert response.volume_id.startswith("vol-50-")
        assert response.size == 50
        assert response.volume_type == "pd-standard"
        assert response.region == "us-central1"
        assert response.availability_zone == "us-central1-a"

    @pytest.mark.asyncio
    async def test_get_missing_volume(self, gke_manager, session, ctx):
        session.disks.return_value.aggregated_list.return_value = []

        with pytest.raises(NotFoundError, match="GetVolume: volume 'vol-1' not found"):
            await gke_manager.get_volume(ctx, GetVolumeRequest(volume_id="vol-1", **TARGET))
