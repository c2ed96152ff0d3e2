"""Google Kubernetes Engine (GKE) adapter and Compute Engine persistent disks."""

import asyncio
from typing import Any, Optional

from google.api_core.exceptions import GoogleAPICallError, NotFound
from google.auth.exceptions import GoogleAuthError
from google.cloud import compute_v1, container_v1

from ..core_utils import CloudProvider, ClusterStatus, RequestContext
from ..exceptions import (
    CredentialError,
    InvalidInputError,
    NotFoundError,
    ProviderError,
    SpawnerError,
    TransientEmptyResultError,
)
from ..instances import mig_partition_size, resolve_instance, wants_gpu_partition
from ..labels import build_tags, merge, node_labels
from ..messages import (
    AddTokenRequest,
    AddTokenResponse,
    CapacityType,
    ClusterDeleteRequest,
    ClusterDeleteResponse,
    ClusterRequest,
    ClusterResponse,
    ClusterSpec,
    ClusterStatusRequest,
    ClusterStatusResponse,
    CreateSnapshotAndDeleteRequest,
    CreateSnapshotAndDeleteResponse,
    CreateSnapshotRequest,
    CreateSnapshotResponse,
    CreateVolumeRequest,
    CreateVolumeResponse,
    DeleteSnapshotRequest,
    DeleteSnapshotResponse,
    DeleteVolumeRequest,
    DeleteVolumeResponse,
    GetClusterRequest,
    GetClustersRequest,
    GetClustersResponse,
    GetTokenRequest,
    GetTokenResponse,
    GetVolumeRequest,
    GetVolumeResponse,
    NodeDeleteRequest,
    NodeDeleteResponse,
    NodeSpawnRequest,
    NodeSpawnResponse,
    NodeSpec,
    TagNodeInstanceRequest,
    TagNodeInstanceResponse,
    Volume,
)
from .kube import bearer_api_client, create_admin_token
from .operations import wait_for_completion
from .provider_adapter import ProviderAdapter, generate_volume_name, operation
from .sessions import GcpSession


def _last_segment(url: str) -> str:
    return url.rstrip("/").rsplit("/", 1)[-1]


def _zone_of(url: str) -> str:
    parts = url.split("/")
    return parts[parts.index("zones") + 1]


def _region_of_zone(zone: str) -> str:
    return zone.rsplit("-", 1)[0]


def _is_zone(location: str) -> bool:
    # us-central1 is a region, us-central1-a a zone
    return location.count("-") >= 2


class GKEOperation:
    """A container API operation polled through ``get_operation``."""

    def __init__(self, client, project_id: str, location: str, op, description: str):
        self.description = description
        self._client = client
        self._name = f"projects/{project_id}/locations/{location}/operations/{op.name}"

    async def poll(self) -> bool:
        op = await asyncio.to_thread(self._client.get_operation, name=self._name)
        if op.status != container_v1.Operation.Status.DONE:
            return False
        message = op.error.message if op.error else ""
        if message:
            raise ProviderError(f"{self.description}: {message}")
        return True


class ComputeOperation:
    """A Compute Engine extended operation."""

    def __init__(self, extended_operation, description: str):
        self.description = description
        self._operation = extended_operation

    async def poll(self) -> bool:
        done = await asyncio.to_thread(self._operation.done)
        if done and self._operation.error_code:
            raise ProviderError(f"{self.description}: {self._operation.error_message}")
        return done


class GKEManager(ProviderAdapter):
    """GCP adapter: GKE clusters and node pools, persistent disks and snapshots."""

    provider = CloudProvider.GCP

    DEFAULT_DISK_TYPE = "pd-standard"
    DEFAULT_IMAGE_TYPE = "COS_CONTAINERD"
    GPU_ACCELERATOR_TYPE = "nvidia-tesla-a100"
    PARTITIONABLE_MACHINE_PREFIX = "a2-"

    def translate_error(self, error: Exception) -> Optional[SpawnerError]:
        if isinstance(error, NotFound):
            return NotFoundError(error.message)
        if isinstance(error, GoogleAPICallError):
            return ProviderError(error.message)
        if isinstance(error, GoogleAuthError):
            return CredentialError(str(error))
        return super().translate_error(error)

    # =================================================================
    # Clusters
    # =================================================================

    @operation("CreateCluster")
    async def create_cluster(
        self, ctx: RequestContext, request: ClusterRequest
    ) -> ClusterResponse:
        """Create a GKE cluster with one node pool and wait for the operation."""
        if not request.cluster_name:
            raise InvalidInputError("cluster_name is required")
        instance = resolve_instance(self.provider, request.node)

        session: GcpSession = await self.new_session(
            ctx, request.region, request.account_name
        )
        client = session.cluster_manager()
        cluster_config = {
            "name": request.cluster_name,
            "description": "Cluster created by spawner-service",
            "resource_labels": build_tags(request.labels, ctx.config.env),
            "node_pools": [
                self._build_node_pool(ctx, request.node, instance, request.region)
            ],
        }

        op = await asyncio.to_thread(
            client.create_cluster,
            parent=self._parent(session, request.region),
            cluster=cluster_config,
        )
        ctx.logger.log_info(
            "CreateCluster",
            "cluster creation started",
            cluster_name=request.cluster_name,
            operation=op.name,
        )
        await wait_for_completion(
            ctx,
            GKEOperation(
                client, session.project_id, request.region, op,
                f"cluster {request.cluster_name}",
            ),
        )

        cluster = await self._get_cluster(session, client, request.cluster_name)
        return ClusterResponse(cluster_name=request.cluster_name, cluster_id=cluster.id)

    @operation("GetCluster")
    async def get_cluster(self, ctx: RequestContext, request: GetClusterRequest) -> ClusterSpec:
        session = await self.new_session(ctx, request.region, request.account_name)
        cluster = await self._get_cluster(
            session, session.cluster_manager(), request.cluster_name
        )
        return self._cluster_spec(cluster, request.region)

    @operation("GetClusters")
    async def get_clusters(
        self, ctx: RequestContext, request: GetClustersRequest
    ) -> GetClustersResponse:
        session = await self.new_session(ctx, request.region, request.account_name)
        response = await asyncio.to_thread(
            session.cluster_manager().list_clusters,
            parent=self._parent(session, request.region),
        )
        return GetClustersResponse(
            clusters=[self._cluster_spec(c, request.region) for c in response.clusters]
        )

    @operation("ClusterStatus")
    async def cluster_status(
        self, ctx: RequestContext, request: ClusterStatusRequest
    ) -> ClusterStatusResponse:
        session = await self.new_session(ctx, request.region, request.account_name)
        cluster = await self._get_cluster(
            session, session.cluster_manager(), request.cluster_name
        )
        running = cluster.status == container_v1.Cluster.Status.RUNNING
        status = ClusterStatus.ACTIVE if running else ClusterStatus.INACTIVE
        return ClusterStatusResponse(status=status.value)

    @operation("DeleteCluster")
    async def delete_cluster(
        self, ctx: RequestContext, request: ClusterDeleteRequest
    ) -> ClusterDeleteResponse:
        """Delete a cluster; GKE removes its node pools with it, so
        ``force_delete`` has nothing to add here.
        """
        session = await self.new_session(ctx, request.region, request.account_name)
        client = session.cluster_manager()
        await self._get_cluster(session, client, request.cluster_name)

        op = await asyncio.to_thread(
            client.delete_cluster,
            name=self._cluster_path(session, request.region, request.cluster_name),
        )
        await wait_for_completion(
            ctx,
            GKEOperation(
                client, session.project_id, request.region, op,
                f"cluster {request.cluster_name} deletion",
            ),
        )
        return ClusterDeleteResponse()

    @operation("GetToken")
    async def get_token(self, ctx: RequestContext, request: GetTokenRequest) -> GetTokenResponse:
        session: GcpSession = await self.new_session(
            ctx, request.region, request.account_name
        )
        cluster = await self._get_cluster(
            session, session.cluster_manager(), request.cluster_name
        )
        token = await asyncio.to_thread(session.access_token)
        return GetTokenResponse(
            token=token,
            endpoint=f"https://{cluster.endpoint}",
            ca_data=cluster.master_auth.cluster_ca_certificate,
        )

    @operation("AddToken")
    async def add_token(self, ctx: RequestContext, request: AddTokenRequest) -> AddTokenResponse:
        access = await self.get_token(ctx, GetTokenRequest(**request.model_dump()))
        with bearer_api_client(access.endpoint, access.ca_data, access.token) as api_client:
            token = await create_admin_token(ctx, api_client)
        return AddTokenResponse(
            token=token, endpoint=access.endpoint, ca_data=access.ca_data
        )

    # =================================================================
    # Node pools
    # =================================================================

    @operation("AddNode")
    async def add_node(self, ctx: RequestContext, request: NodeSpawnRequest) -> NodeSpawnResponse:
        instance = resolve_instance(self.provider, request.node_spec)
        if not request.node_spec.name:
            raise InvalidInputError("node_spec.name is required")

        session = await self.new_session(ctx, request.region, request.account_name)
        client = session.cluster_manager()
        op = await asyncio.to_thread(
            client.create_node_pool,
            parent=self._cluster_path(session, request.region, request.cluster_name),
            node_pool=self._build_node_pool(
                ctx, request.node_spec, instance, request.region
            ),
        )
        await wait_for_completion(
            ctx,
            GKEOperation(
                client, session.project_id, request.region, op,
                f"node pool {request.node_spec.name}",
            ),
        )
        return NodeSpawnResponse()

    @operation("DeleteNode")
    async def delete_node(
        self, ctx: RequestContext, request: NodeDeleteRequest
    ) -> NodeDeleteResponse:
        session = await self.new_session(ctx, request.region, request.account_name)
        client = session.cluster_manager()
        pool_path = (
            f"{self._cluster_path(session, request.region, request.cluster_name)}"
            f"/nodePools/{request.node_group_name}"
        )
        op = await asyncio.to_thread(client.delete_node_pool, name=pool_path)
        await wait_for_completion(
            ctx,
            GKEOperation(
                client, session.project_id, request.region, op,
                f"node pool {request.node_group_name} deletion",
            ),
        )
        return NodeDeleteResponse()

    @operation("TagNodeInstance")
    async def tag_node_instance(
        self, ctx: RequestContext, request: TagNodeInstanceRequest
    ) -> TagNodeInstanceResponse:
        """Merge labels onto the VMs behind the cluster's node pool instance groups."""
        session: GcpSession = await self.new_session(
            ctx, request.region, request.account_name
        )
        cluster = await self._get_cluster(
            session, session.cluster_manager(), request.cluster_name
        )
        pools = [
            pool for pool in cluster.node_pools
            if not request.node_group or pool.name == request.node_group
        ]
        group_urls = [url for pool in pools for url in pool.instance_group_urls]

        managers = session.instance_group_managers()
        targets = []
        for url in group_urls:
            zone = _zone_of(url)
            managed = await asyncio.to_thread(
                lambda: list(
                    managers.list_managed_instances(
                        project=session.project_id,
                        zone=zone,
                        instance_group_manager=_last_segment(url),
                    )
                )
            )
            targets.extend((zone, _last_segment(m.instance)) for m in managed)

        if not targets:
            raise TransientEmptyResultError(
                f"no instances in cluster '{request.cluster_name}' to tag"
            )

        tags = build_tags(request.labels, ctx.config.env)
        instances = session.instances()
        for zone, name in targets:
            instance = await asyncio.to_thread(
                instances.get, project=session.project_id, zone=zone, instance=name
            )
            op = await asyncio.to_thread(
                instances.set_labels,
                project=session.project_id,
                zone=zone,
                instance=name,
                instances_set_labels_request_resource=compute_v1.InstancesSetLabelsRequest(
                    label_fingerprint=instance.label_fingerprint,
                    labels=merge(dict(instance.labels), tags),
                ),
            )
            await wait_for_completion(ctx, ComputeOperation(op, f"labels of {name}"))

        return TagNodeInstanceResponse(instance_ids=[name for _, name in targets])

    # =================================================================
    # Persistent disks and snapshots
    # =================================================================

    @operation("CreateVolume")
    async def create_volume(
        self, ctx: RequestContext, request: CreateVolumeRequest
    ) -> CreateVolumeResponse:
        if request.size <= 0 and not request.snapshot_id:
            raise InvalidInputError("size must be positive unless restoring a snapshot")

        session: GcpSession = await self.new_session(
            ctx, request.region, request.account_name
        )
        zone = self._zone(request.availability_zone, request.region)
        volume_type = request.volume_type or self.DEFAULT_DISK_TYPE
        name = generate_volume_name(request.size)

        disk = compute_v1.Disk(
            name=name,
            type_=f"zones/{zone}/diskTypes/{volume_type}",
            labels=build_tags(request.labels, ctx.config.env),
        )
        if request.size > 0:
            disk.size_gb = request.size
        if request.snapshot_id:
            disk.source_snapshot = f"global/snapshots/{request.snapshot_id}"

        disks = session.disks()
        op = await asyncio.to_thread(
            disks.insert, project=session.project_id, zone=zone, disk_resource=disk
        )
        await wait_for_completion(ctx, ComputeOperation(op, f"disk {name}"))

        if request.delete_snapshot and request.snapshot_id:
            await self._delete_snapshot(ctx, session, request.snapshot_id)

        created = await asyncio.to_thread(
            disks.get, project=session.project_id, zone=zone, disk=name
        )
        return CreateVolumeResponse(
            volume_id=name,
            size=created.size_gb,
            volume_type=volume_type,
            region=_region_of_zone(zone),
            availability_zone=zone,
        )

    @operation("GetVolume")
    async def get_volume(self, ctx: RequestContext, request: GetVolumeRequest) -> GetVolumeResponse:
        session = await self.new_session(ctx, request.region, request.account_name)
        zone, disk = await self._find_disk(session, request.volume_id)
        return GetVolumeResponse(
            volume=Volume(
                volume_id=disk.name,
                size=disk.size_gb,
                volume_type=_last_segment(disk.type_),
                region=_region_of_zone(zone),
                availability_zone=zone,
                snapshot_id=_last_segment(disk.source_snapshot) if disk.source_snapshot else "",
                state=disk.status,
            )
        )

    @operation("DeleteVolume")
    async def delete_volume(
        self, ctx: RequestContext, request: DeleteVolumeRequest
    ) -> DeleteVolumeResponse:
        session = await self.new_session(ctx, request.region, request.account_name)
        zone, _ = await self._find_disk(session, request.volume_id)
        op = await asyncio.to_thread(
            session.disks().delete,
            project=session.project_id,
            zone=zone,
            disk=request.volume_id,
        )
        await wait_for_completion(
            ctx, ComputeOperation(op, f"disk {request.volume_id} deletion")
        )
        return DeleteVolumeResponse(deleted=True)

    @operation("CreateSnapshot")
    async def create_snapshot(
        self, ctx: RequestContext, request: CreateSnapshotRequest
    ) -> CreateSnapshotResponse:
        session = await self.new_session(ctx, request.region, request.account_name)
        zone, _ = await self._find_disk(session, request.volume_id)
        snapshot_id = f"{request.volume_id}-snapshot"
        op = await asyncio.to_thread(
            session.disks().create_snapshot,
            project=session.project_id,
            zone=zone,
            disk=request.volume_id,
            snapshot_resource=compute_v1.Snapshot(
                name=snapshot_id, labels=build_tags(request.labels, ctx.config.env)
            ),
        )
        await wait_for_completion(ctx, ComputeOperation(op, f"snapshot {snapshot_id}"))
        return CreateSnapshotResponse(snapshot_id=snapshot_id)

    @operation("DeleteSnapshot")
    async def delete_snapshot(
        self, ctx: RequestContext, request: DeleteSnapshotRequest
    ) -> DeleteSnapshotResponse:
        session = await self.new_session(ctx, request.region, request.account_name)
        await self._delete_snapshot(ctx, session, request.snapshot_id)
        return DeleteSnapshotResponse()

    @operation("CreateSnapshotAndDelete")
    async def create_snapshot_and_delete(
        self, ctx: RequestContext, request: CreateSnapshotAndDeleteRequest
    ) -> CreateSnapshotAndDeleteResponse:
        snapshot = await self.create_snapshot(
            ctx, CreateSnapshotRequest(**request.model_dump())
        )
        await self.delete_volume(ctx, DeleteVolumeRequest(**request.model_dump()))
        return CreateSnapshotAndDeleteResponse(
            snapshot_id=snapshot.snapshot_id, volume_deleted=True
        )

    # =================================================================
    # INTERNAL HELPERS
    # =================================================================

    def _parent(self, session: GcpSession, location: str) -> str:
        return f"projects/{session.project_id}/locations/{location}"

    def _cluster_path(self, session: GcpSession, location: str, cluster_name: str) -> str:
        if not cluster_name:
            raise InvalidInputError("cluster_name is required")
        return f"{self._parent(session, location)}/clusters/{cluster_name}"

    async def _get_cluster(self, session: GcpSession, client, cluster_name: str):
        return await asyncio.to_thread(
            client.get_cluster,
            name=self._cluster_path(session, session.region, cluster_name),
        )

    def _zone(self, availability_zone: str, region: str) -> str:
        if availability_zone and _is_zone(availability_zone):
            return availability_zone
        return region if _is_zone(region) else f"{region}-a"

    def _build_node_pool(
        self, ctx: RequestContext, node_spec: NodeSpec, instance: str, location: str
    ) -> dict[str, Any]:
        count = node_spec.node_count
        node_config: dict[str, Any] = {
            "machine_type": instance,
            "disk_type": self.DEFAULT_DISK_TYPE,
            "image_type": self.DEFAULT_IMAGE_TYPE,
            "labels": node_labels(node_spec, ctx.config.env, instance),
            "spot": node_spec.capacity_type == CapacityType.SPOT,
        }
        if node_spec.disk_size:
            node_config["disk_size_gb"] = node_spec.disk_size
        if wants_gpu_partition(node_spec):
            if not instance.startswith(self.PARTITIONABLE_MACHINE_PREFIX):
                raise InvalidInputError(
                    f"GPU partition profiles need an A100 machine type, got {instance}"
                )
            node_config["accelerators"] = [
                {
                    "accelerator_count": 1,
                    "accelerator_type": self.GPU_ACCELERATOR_TYPE,
                    "gpu_partition_size": mig_partition_size(node_spec.mig_profile),
                }
            ]

        node_pool: dict[str, Any] = {
            "name": node_spec.name,
            "initial_node_count": count,
            "config": node_config,
            "autoscaling": {
                "enabled": True,
                "min_node_count": count,
                "max_node_count": count,
            },
            "management": {"auto_repair": False, "auto_upgrade": False},
        }
        # A regional pool would get ``count`` nodes in every zone.
        if not _is_zone(location):
            node_pool["locations"] = [f"{location}-a"]
        return node_pool

    def _cluster_spec(self, cluster, region: str) -> ClusterSpec:
        return ClusterSpec(
            name=cluster.name,
            cluster_id=cluster.id,
            provider=self.provider.value,
            region=region,
            labels=dict(cluster.resource_labels),
            node_spec=[
                NodeSpec(
                    name=pool.name,
                    instance=pool.config.machine_type,
                    count=pool.initial_node_count,
                    disk_size=pool.config.disk_size_gb,
                    capacity_type=(
                        CapacityType.SPOT if pool.config.spot else CapacityType.ON_DEMAND
                    ),
                    labels=dict(pool.config.labels),
                )
                for pool in cluster.node_pools
            ],
        )

    async def _find_disk(self, session: GcpSession, volume_id: str):
        """Locate a disk by name across all zones of the project."""
        if not volume_id:
            raise InvalidInputError("volume_id is required")

        request = compute_v1.AggregatedListDisksRequest(
            project=session.project_id, filter=f'name = "{volume_id}"'
        )
        pages = await asyncio.to_thread(
            lambda: list(session.disks().aggregated_list(request=request))
        )
        for scope, scoped_list in pages:
            for disk in scoped_list.disks:
                if disk.name == volume_id:
                    return _last_segment(scope), disk
        raise NotFoundError(f"volume '{volume_id}' not found")

    async def _delete_snapshot(
        self, ctx: RequestContext, session: GcpSession, snapshot_id: str
    ) -> None:
        op = await asyncio.to_thread(
            session.snapshots().delete, project=session.project_id, snapshot=snapshot_id
        )
        await wait_for_completion(
            ctx, ComputeOperation(op, f"snapshot {snapshot_id} deletion")
        )
