"""Azure Kubernetes Service (AKS) adapter, managed disks and Cost Management."""

import asyncio
from datetime import datetime
from typing import Any, Optional

from azure.core.exceptions import (
    AzureError,
    ClientAuthenticationError,
    HttpResponseError,
    ResourceNotFoundError,
)
from azure.mgmt.compute.models import (
    CreationData,
    Disk,
    DiskSku,
    Snapshot,
    VirtualMachineScaleSetUpdate,
)
from azure.mgmt.containerservice.models import (
    AgentPool,
    ManagedCluster,
    ManagedClusterAgentPoolProfile,
    ManagedClusterIdentity,
)
from azure.mgmt.costmanagement.models import (
    QueryAggregation,
    QueryComparisonExpression,
    QueryDataset,
    QueryDefinition,
    QueryFilter,
    QueryGrouping,
    QueryTimePeriod,
)
import yaml

from ..core_utils import CloudProvider, ClusterStatus, RequestContext
from ..exceptions import (
    CredentialError,
    InvalidInputError,
    NotFoundError,
    ProviderError,
    SpawnerError,
    TransientEmptyResultError,
)
from ..instances import resolve_instance, wants_gpu_partition
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
    CopySnapshotRequest,
    CopySnapshotResponse,
    CostRequest,
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
    GetApplicationsCostRequest,
    GetApplicationsCostResponse,
    GetClusterRequest,
    GetClustersRequest,
    GetClustersResponse,
    GetCostByTimeRequest,
    GetCostByTimeResponse,
    GetTokenRequest,
    GetTokenResponse,
    GetVolumeRequest,
    GetVolumeResponse,
    GetWorkspacesCostRequest,
    GetWorkspacesCostResponse,
    NodeDeleteRequest,
    NodeDeleteResponse,
    NodeSpawnRequest,
    NodeSpawnResponse,
    NodeSpec,
    TagNodeInstanceRequest,
    TagNodeInstanceResponse,
    Volume,
)
from .kube import create_admin_token, kubeconfig_api_client
from .operations import wait_for_completion
from .provider_adapter import ProviderAdapter, generate_volume_name, operation
from .sessions import AzureSession

POOL_NAME_TAG = "aks-managed-poolName"
COST_COLUMNS = ("totalCost", "Cost", "PreTaxCost", "CostUSD")


class AzurePollerOperation:
    """An Azure long-running operation poller."""

    def __init__(self, poller, description: str):
        self.description = description
        self.result: Any = None
        self._poller = poller

    async def poll(self) -> bool:
        if not self._poller.done():
            return False
        # result() re-raises the failure of a finished operation
        self.result = await asyncio.to_thread(self._poller.result)
        return True


def _usage_date(value: Any) -> str:
    # UsageDate comes back as a yyyymmdd number
    text = str(value)
    if len(text) == 8 and text.isdigit():
        return f"{text[:4]}-{text[4:6]}-{text[6:]}"
    return text


def _parse_date(value: str, field_name: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError as e:
        raise InvalidInputError(f"{field_name} must be an ISO date, got '{value}'") from e


class AKSManager(ProviderAdapter):
    """Azure adapter: AKS clusters and agent pools, managed disks and snapshots,
    and Cost Management queries."""

    provider = CloudProvider.AZURE

    DEFAULT_DISK_SKU = "StandardSSD_LRS"

    def translate_error(self, error: Exception) -> Optional[SpawnerError]:
        if isinstance(error, ResourceNotFoundError):
            return NotFoundError(error.message)
        if isinstance(error, ClientAuthenticationError):
            return CredentialError(error.message)
        if isinstance(error, HttpResponseError):
            return ProviderError(error.message)
        if isinstance(error, AzureError):
            return ProviderError(str(error))
        return super().translate_error(error)

    # =================================================================
    # Clusters
    # =================================================================

    @operation("CreateCluster")
    async def create_cluster(
        self, ctx: RequestContext, request: ClusterRequest
    ) -> ClusterResponse:
        """Create an AKS cluster whose system pool is built from the node spec."""
        if not request.cluster_name:
            raise InvalidInputError("cluster_name is required")
        instance = resolve_instance(self.provider, request.node)

        session: AzureSession = await self.new_session(
            ctx, request.region, request.account_name
        )
        node = request.node
        profile = ManagedClusterAgentPoolProfile(
            name=node.name,
            count=node.node_count,
            vm_size=instance,
            os_disk_size_gb=node.disk_size or None,
            mode="System",
            type="VirtualMachineScaleSets",
            node_labels=node_labels(node, ctx.config.env, instance),
            tags=build_tags(None, ctx.config.env),
        )
        cluster = ManagedCluster(
            location=request.region,
            dns_prefix=request.cluster_name,
            agent_pool_profiles=[profile],
            identity=ManagedClusterIdentity(type="SystemAssigned"),
            tags=build_tags(request.labels, ctx.config.env),
        )

        poller = await asyncio.to_thread(
            session.container_service().managed_clusters.begin_create_or_update,
            session.resource_group,
            request.cluster_name,
            cluster,
        )
        ctx.logger.log_info(
            "CreateCluster", "cluster creation started", cluster_name=request.cluster_name
        )
        creation = AzurePollerOperation(poller, f"cluster {request.cluster_name}")
        await wait_for_completion(ctx, creation)
        return ClusterResponse(
            cluster_name=request.cluster_name, cluster_id=creation.result.id
        )

    @operation("GetCluster")
    async def get_cluster(self, ctx: RequestContext, request: GetClusterRequest) -> ClusterSpec:
        session = await self.new_session(ctx, request.region, request.account_name)
        cluster = await self._get_cluster(session, request.cluster_name)
        return self._cluster_spec(cluster, request.region)

    @operation("GetClusters")
    async def get_clusters(
        self, ctx: RequestContext, request: GetClustersRequest
    ) -> GetClustersResponse:
        session: AzureSession = await self.new_session(
            ctx, request.region, request.account_name
        )
        managed_clusters = session.container_service().managed_clusters
        clusters = await asyncio.to_thread(
            lambda: list(managed_clusters.list_by_resource_group(session.resource_group))
        )
        return GetClustersResponse(
            clusters=[self._cluster_spec(c, request.region) for c in clusters]
        )

    @operation("ClusterStatus")
    async def cluster_status(
        self, ctx: RequestContext, request: ClusterStatusRequest
    ) -> ClusterStatusResponse:
        session = await self.new_session(ctx, request.region, request.account_name)
        cluster = await self._get_cluster(session, request.cluster_name)
        power_state = cluster.power_state.code if cluster.power_state else None
        running = cluster.provisioning_state == "Succeeded" and power_state == "Running"
        status = ClusterStatus.ACTIVE if running else ClusterStatus.INACTIVE
        return ClusterStatusResponse(status=status.value)

    @operation("DeleteCluster")
    async def delete_cluster(
        self, ctx: RequestContext, request: ClusterDeleteRequest
    ) -> ClusterDeleteResponse:
        session: AzureSession = await self.new_session(
            ctx, request.region, request.account_name
        )
        client = session.container_service()
        # Deleting a missing cluster succeeds silently, so look it up first.
        cluster = await self._get_cluster(session, request.cluster_name)
        user_pools = [
            p.name for p in cluster.agent_pool_profiles or [] if p.mode == "User"
        ]
        if user_pools and not request.force_delete:
            raise ProviderError(
                f"cluster '{request.cluster_name}' still has node pools {', '.join(user_pools)}"
            )
        for pool in user_pools:
            await self._delete_agent_pool(ctx, session, request.cluster_name, pool)

        poller = await asyncio.to_thread(
            client.managed_clusters.begin_delete,
            session.resource_group,
            request.cluster_name,
        )
        await wait_for_completion(
            ctx, AzurePollerOperation(poller, f"cluster {request.cluster_name} deletion")
        )
        return ClusterDeleteResponse()

    @operation("GetToken")
    async def get_token(self, ctx: RequestContext, request: GetTokenRequest) -> GetTokenResponse:
        """Return the cluster user kubeconfig."""
        session: AzureSession = await self.new_session(
            ctx, request.region, request.account_name
        )
        cluster = await self._get_cluster(session, request.cluster_name)
        credentials = await asyncio.to_thread(
            session.container_service().managed_clusters.list_cluster_user_credentials,
            session.resource_group,
            request.cluster_name,
        )
        kube_config = self._first_kubeconfig(credentials, request.cluster_name)
        return GetTokenResponse(
            endpoint=f"https://{cluster.fqdn}",
            ca_data=self._ca_data(kube_config),
            kube_config=kube_config,
        )

    @operation("AddToken")
    async def add_token(self, ctx: RequestContext, request: AddTokenRequest) -> AddTokenResponse:
        session: AzureSession = await self.new_session(
            ctx, request.region, request.account_name
        )
        cluster = await self._get_cluster(session, request.cluster_name)
        credentials = await asyncio.to_thread(
            session.container_service().managed_clusters.list_cluster_admin_credentials,
            session.resource_group,
            request.cluster_name,
        )
        kube_config = self._first_kubeconfig(credentials, request.cluster_name)
        with kubeconfig_api_client(kube_config) as api_client:
            token = await create_admin_token(ctx, api_client)
        return AddTokenResponse(
            token=token,
            endpoint=f"https://{cluster.fqdn}",
            ca_data=self._ca_data(kube_config),
        )

    # =================================================================
    # Agent pools
    # =================================================================

    @operation("AddNode")
    async def add_node(self, ctx: RequestContext, request: NodeSpawnRequest) -> NodeSpawnResponse:
        instance = resolve_instance(self.provider, request.node_spec)
        node = request.node_spec
        if not node.name:
            raise InvalidInputError("node_spec.name is required")

        session: AzureSession = await self.new_session(
            ctx, request.region, request.account_name
        )
        await self._get_cluster(session, request.cluster_name)

        pool = AgentPool(
            count=node.node_count,
            vm_size=instance,
            os_disk_size_gb=node.disk_size or None,
            mode="User",
            type_properties_type="VirtualMachineScaleSets",
            node_labels=node_labels(node, ctx.config.env, instance),
            tags=build_tags(None, ctx.config.env),
        )
        if node.capacity_type == CapacityType.SPOT:
            pool.scale_set_priority = "Spot"
            pool.scale_set_eviction_policy = "Delete"
            pool.spot_max_price = -1
        if wants_gpu_partition(node):
            pool.gpu_instance_profile = node.mig_profile.value

        poller = await asyncio.to_thread(
            session.container_service().agent_pools.begin_create_or_update,
            session.resource_group,
            request.cluster_name,
            node.name,
            pool,
        )
        await wait_for_completion(ctx, AzurePollerOperation(poller, f"agent pool {node.name}"))
        return NodeSpawnResponse()

    @operation("DeleteNode")
    async def delete_node(
        self, ctx: RequestContext, request: NodeDeleteRequest
    ) -> NodeDeleteResponse:
        session = await self.new_session(ctx, request.region, request.account_name)
        await self._delete_agent_pool(
            ctx, session, request.cluster_name, request.node_group_name
        )
        return NodeDeleteResponse()

    @operation("TagNodeInstance")
    async def tag_node_instance(
        self, ctx: RequestContext, request: TagNodeInstanceRequest
    ) -> TagNodeInstanceResponse:
        """Merge tags onto the scale sets backing the cluster's agent pools."""
        session: AzureSession = await self.new_session(
            ctx, request.region, request.account_name
        )
        cluster = await self._get_cluster(session, request.cluster_name)
        node_group = cluster.node_resource_group
        compute = session.compute()

        scale_sets = await asyncio.to_thread(
            lambda: list(compute.virtual_machine_scale_sets.list(node_group))
        )
        if request.node_group:
            scale_sets = [
                s for s in scale_sets
                if (s.tags or {}).get(POOL_NAME_TAG) == request.node_group
            ]

        instance_ids = []
        for scale_set in scale_sets:
            vms = await asyncio.to_thread(
                lambda: list(
                    compute.virtual_machine_scale_set_vms.list(node_group, scale_set.name)
                )
            )
            instance_ids.extend(vm.name for vm in vms)
        if not instance_ids:
            raise TransientEmptyResultError(
                f"no instances in cluster '{request.cluster_name}' to tag"
            )

        tags = build_tags(request.labels, ctx.config.env)
        for scale_set in scale_sets:
            poller = await asyncio.to_thread(
                compute.virtual_machine_scale_sets.begin_update,
                node_group,
                scale_set.name,
                VirtualMachineScaleSetUpdate(tags=merge(scale_set.tags, tags)),
            )
            await wait_for_completion(
                ctx, AzurePollerOperation(poller, f"scale set {scale_set.name} tags")
            )
        return TagNodeInstanceResponse(instance_ids=instance_ids)

    # =================================================================
    # Managed disks and snapshots
    # =================================================================

    @operation("CreateVolume")
    async def create_volume(
        self, ctx: RequestContext, request: CreateVolumeRequest
    ) -> CreateVolumeResponse:
        """Create a managed disk, empty or copied from a snapshot."""
        if request.size <= 0 and not (request.snapshot_id or request.snapshot_uri):
            raise InvalidInputError("size must be positive unless restoring a snapshot")

        session: AzureSession = await self.new_session(
            ctx, request.region, request.account_name
        )
        if request.snapshot_uri:
            creation_data = CreationData(
                create_option="Copy", source_resource_id=request.snapshot_uri
            )
        elif request.snapshot_id:
            creation_data = CreationData(
                create_option="Copy",
                source_resource_id=self._snapshot_resource_id(session, request.snapshot_id),
            )
        else:
            creation_data = CreationData(create_option="Empty")

        name = generate_volume_name(request.size)
        disk = Disk(
            location=request.region,
            sku=DiskSku(name=request.volume_type or self.DEFAULT_DISK_SKU),
            disk_size_gb=request.size or None,
            creation_data=creation_data,
            tags=build_tags(request.labels, ctx.config.env),
        )
        if request.availability_zone.isdigit():
            disk.zones = [request.availability_zone]

        compute = session.compute()
        poller = await asyncio.to_thread(
            compute.disks.begin_create_or_update, session.resource_group, name, disk
        )
        creation = AzurePollerOperation(poller, f"disk {name}")
        await wait_for_completion(ctx, creation)
        created = creation.result

        if request.delete_snapshot and request.snapshot_id:
            await self._delete_snapshot(ctx, session, request.snapshot_id)

        return CreateVolumeResponse(
            volume_id=name,
            size=created.disk_size_gb,
            volume_type=created.sku.name,
            region=created.location,
            availability_zone=(created.zones or [""])[0],
        )

    @operation("GetVolume")
    async def get_volume(self, ctx: RequestContext, request: GetVolumeRequest) -> GetVolumeResponse:
        session = await self.new_session(ctx, request.region, request.account_name)
        disk = await self._get_disk(session, request.volume_id)
        source = disk.creation_data.source_resource_id if disk.creation_data else None
        return GetVolumeResponse(
            volume=Volume(
                volume_id=disk.name,
                size=disk.disk_size_gb,
                volume_type=disk.sku.name,
                region=disk.location,
                availability_zone=(disk.zones or [""])[0],
                snapshot_id=source.rsplit("/", 1)[-1] if source else "",
                state=disk.disk_state or "",
            )
        )

    @operation("DeleteVolume")
    async def delete_volume(
        self, ctx: RequestContext, request: DeleteVolumeRequest
    ) -> DeleteVolumeResponse:
        session: AzureSession = await self.new_session(
            ctx, request.region, request.account_name
        )
        await self._get_disk(session, request.volume_id)
        poller = await asyncio.to_thread(
            session.compute().disks.begin_delete, session.resource_group, request.volume_id
        )
        await wait_for_completion(
            ctx, AzurePollerOperation(poller, f"disk {request.volume_id} deletion")
        )
        return DeleteVolumeResponse(deleted=True)

    @operation("CreateSnapshot")
    async def create_snapshot(
        self, ctx: RequestContext, request: CreateSnapshotRequest
    ) -> CreateSnapshotResponse:
        session: AzureSession = await self.new_session(
            ctx, request.region, request.account_name
        )
        disk = await self._get_disk(session, request.volume_id)
        snapshot_id = f"{request.volume_id}-snapshot"
        snapshot = Snapshot(
            location=disk.location,
            creation_data=CreationData(create_option="Copy", source_resource_id=disk.id),
            incremental=True,
            tags=build_tags(request.labels, ctx.config.env),
        )
        poller = await asyncio.to_thread(
            session.compute().snapshots.begin_create_or_update,
            session.resource_group,
            snapshot_id,
            snapshot,
        )
        await wait_for_completion(ctx, AzurePollerOperation(poller, f"snapshot {snapshot_id}"))
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

    @operation("CopySnapshot")
    async def copy_snapshot(
        self, ctx: RequestContext, request: CopySnapshotRequest
    ) -> CopySnapshotResponse:
        """Copy a snapshot into the request region."""
        session: AzureSession = await self.new_session(
            ctx, request.region, request.account_name
        )
        snapshots = session.compute().snapshots
        source = await asyncio.to_thread(
            snapshots.get, session.resource_group, request.snapshot_id
        )
        same_region = source.location == request.region
        snapshot_id = f"{request.snapshot_id}-{request.region}"
        snapshot = Snapshot(
            location=request.region,
            creation_data=CreationData(
                create_option="Copy" if same_region else "CopyStart",
                source_resource_id=source.id,
            ),
            incremental=True,
            tags=merge(source.tags, build_tags(None, ctx.config.env)),
        )
        poller = await asyncio.to_thread(
            snapshots.begin_create_or_update, session.resource_group, snapshot_id, snapshot
        )
        await wait_for_completion(ctx, AzurePollerOperation(poller, f"snapshot {snapshot_id}"))
        return CopySnapshotResponse(snapshot_id=snapshot_id)

    # =================================================================
    # Cost Management
    # =================================================================

    @operation("GetWorkspacesCost")
    async def get_workspaces_cost(
        self, ctx: RequestContext, request: GetWorkspacesCostRequest
    ) -> GetWorkspacesCostResponse:
        total, by_id = await self._cost_totals(ctx, request, request.workspace_ids)
        return GetWorkspacesCostResponse(total_cost=total, group_by=by_id)

    @operation("GetApplicationsCost")
    async def get_applications_cost(
        self, ctx: RequestContext, request: GetApplicationsCostRequest
    ) -> GetApplicationsCostResponse:
        total, by_id = await self._cost_totals(ctx, request, request.application_ids)
        return GetApplicationsCostResponse(total_cost=total, group_by=by_id)

    @operation("GetCostByTime")
    async def get_cost_by_time(
        self, ctx: RequestContext, request: GetCostByTimeRequest
    ) -> GetCostByTimeResponse:
        rows = await self._query_costs(ctx, request, request.ids, daily=True)
        by_time: dict[str, dict[str, float]] = {}
        for group_id, cost, usage_date in rows:
            day = by_time.setdefault(group_id, {})
            day[usage_date] = day.get(usage_date, 0.0) + cost
        return GetCostByTimeResponse(group_by=by_time)

    # =================================================================
    # INTERNAL HELPERS
    # =================================================================

    async def _get_cluster(self, session: AzureSession, cluster_name: str):
        if not cluster_name:
            raise InvalidInputError("cluster_name is required")
        return await asyncio.to_thread(
            session.container_service().managed_clusters.get,
            session.resource_group,
            cluster_name,
        )

    async def _get_disk(self, session: AzureSession, volume_id: str):
        if not volume_id:
            raise InvalidInputError("volume_id is required")
        return await asyncio.to_thread(
            session.compute().disks.get, session.resource_group, volume_id
        )

    async def _delete_agent_pool(
        self, ctx: RequestContext, session: AzureSession, cluster_name: str, name: str
    ) -> None:
        agent_pools = session.container_service().agent_pools
        await asyncio.to_thread(agent_pools.get, session.resource_group, cluster_name, name)
        poller = await asyncio.to_thread(
            agent_pools.begin_delete, session.resource_group, cluster_name, name
        )
        await wait_for_completion(
            ctx, AzurePollerOperation(poller, f"agent pool {name} deletion")
        )

    async def _delete_snapshot(
        self, ctx: RequestContext, session: AzureSession, snapshot_id: str
    ) -> None:
        snapshots = session.compute().snapshots
        await asyncio.to_thread(snapshots.get, session.resource_group, snapshot_id)
        poller = await asyncio.to_thread(
            snapshots.begin_delete, session.resource_group, snapshot_id
        )
        await wait_for_completion(
            ctx, AzurePollerOperation(poller, f"snapshot {snapshot_id} deletion")
        )

    def _snapshot_resource_id(self, session: AzureSession, snapshot_id: str) -> str:
        return (
            f"{session.scope}/resourceGroups/{session.resource_group}"
            f"/providers/Microsoft.Compute/snapshots/{snapshot_id}"
        )

    def _cluster_spec(self, cluster, region: str) -> ClusterSpec:
        return ClusterSpec(
            name=cluster.name,
            cluster_id=cluster.id or "",
            provider=self.provider.value,
            region=cluster.location or region,
            labels=cluster.tags or {},
            node_spec=[
                NodeSpec(
                    name=pool.name,
                    instance=pool.vm_size or "",
                    count=pool.count or 0,
                    disk_size=pool.os_disk_size_gb or 0,
                    capacity_type=(
                        CapacityType.SPOT
                        if pool.scale_set_priority == "Spot"
                        else CapacityType.ON_DEMAND
                    ),
                    labels=pool.node_labels or {},
                )
                for pool in cluster.agent_pool_profiles or []
            ],
        )

    def _first_kubeconfig(self, credentials, cluster_name: str) -> str:
        kubeconfigs = credentials.kubeconfigs or []
        if not kubeconfigs:
            raise ProviderError(f"no kubeconfig returned for cluster '{cluster_name}'")
        return kubeconfigs[0].value.decode("utf-8")

    def _ca_data(self, kube_config: str) -> str:
        document = yaml.safe_load(kube_config) or {}
        clusters = document.get("clusters") or [{}]
        return clusters[0].get("cluster", {}).get("certificate-authority-data", "")

    async def _query_costs(
        self, ctx: RequestContext, request: CostRequest, ids: list[str], daily: bool
    ) -> list[tuple[str, float, str]]:
        """Run a Cost Management query grouped by the request's tag key.

        Returns ``(id, cost, usage_date)`` rows; ``usage_date`` is empty unless
        ``daily`` is set.
        """
        if not ids:
            raise InvalidInputError("at least one id is required")
        key = request.group_by.key
        if not key:
            raise InvalidInputError("group_by.key is required")
        start = _parse_date(request.start_date, "start_date")
        end = _parse_date(request.end_date, "end_date")

        session: AzureSession = await self.new_session(
            ctx, request.region, request.account_name
        )
        cost_type = "AmortizedCost" if request.cost_type.startswith("Amortized") else "ActualCost"
        definition = QueryDefinition(
            type=cost_type,
            timeframe="Custom",
            time_period=QueryTimePeriod(from_property=start, to=end),
            dataset=QueryDataset(
                granularity="Daily" if daily else None,
                aggregation={"totalCost": QueryAggregation(name="Cost", function="Sum")},
                grouping=[QueryGrouping(type="TagKey", name=key)],
                filter=QueryFilter(
                    tags=QueryComparisonExpression(name=key, operator="In", values=ids)
                ),
            ),
        )
        result = await asyncio.to_thread(
            session.cost_management().query.usage, session.scope, definition
        )

        columns = [column.name for column in result.columns or []]
        cost_index = next(
            (columns.index(name) for name in COST_COLUMNS if name in columns), None
        )
        if cost_index is None or "TagValue" not in columns:
            raise ProviderError(f"unexpected cost query columns: {', '.join(columns)}")
        value_index = columns.index("TagValue")
        date_index = columns.index("UsageDate") if "UsageDate" in columns else None

        rows = []
        for row in result.rows or []:
            group_id = row[value_index]
            if not group_id:
                continue
            usage_date = _usage_date(row[date_index]) if date_index is not None else ""
            rows.append((group_id, float(row[cost_index]), usage_date))
        return rows

    async def _cost_totals(
        self, ctx: RequestContext, request: CostRequest, ids: list[str]
    ) -> tuple[float, dict[str, float]]:
        by_id: dict[str, float] = {}
        for group_id, cost, _ in await self._query_costs(ctx, request, ids, daily=False):
            by_id[group_id] = by_id.get(group_id, 0.0) + cost
        return sum(by_id.values()), by_id
