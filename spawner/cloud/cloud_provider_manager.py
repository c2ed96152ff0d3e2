"""Dispatch facade routing neutral requests to provider adapters."""

from dataclasses import dataclass
from typing import Optional, Type, Union

from ..core_utils import CloudProvider, RequestContext
from ..credentials import CredentialResolver
from ..exceptions import InvalidInputError
from ..handlers import ServiceHandlers
from ..messages import (
    AddRoute53RecordRequest,
    AddRoute53RecordResponse,
    AddTokenRequest,
    AddTokenResponse,
    ClusterDeleteRequest,
    ClusterDeleteResponse,
    ClusterRequest,
    ClusterResponse,
    ClusterSpec,
    ClusterStatusRequest,
    ClusterStatusResponse,
    CopySnapshotRequest,
    CopySnapshotResponse,
    CreateContainerRegistryRepoRequest,
    CreateContainerRegistryRepoResponse,
    CreateRoute53RecordsRequest,
    CreateRoute53RecordsResponse,
    CreateSnapshotAndDeleteRequest,
    CreateSnapshotAndDeleteResponse,
    CreateSnapshotRequest,
    CreateSnapshotResponse,
    CreateVolumeRequest,
    CreateVolumeResponse,
    DeleteRoute53RecordsRequest,
    DeleteRoute53RecordsResponse,
    DeleteSnapshotRequest,
    DeleteSnapshotResponse,
    DeleteVolumeRequest,
    DeleteVolumeResponse,
    EchoRequest,
    EchoResponse,
    Empty,
    GetApplicationsCostRequest,
    GetApplicationsCostResponse,
    GetClusterRequest,
    GetClustersRequest,
    GetClustersResponse,
    GetContainerRegistryAuthRequest,
    GetContainerRegistryAuthResponse,
    GetCostByTimeRequest,
    GetCostByTimeResponse,
    GetRoute53TXTRecordsRequest,
    GetRoute53TXTRecordsResponse,
    GetTokenRequest,
    GetTokenResponse,
    GetVolumeRequest,
    GetVolumeResponse,
    GetWorkspacesCostRequest,
    GetWorkspacesCostResponse,
    HealthCheckResponse,
    Message,
    NodeDeleteRequest,
    NodeDeleteResponse,
    NodeSpawnRequest,
    NodeSpawnResponse,
    PresignS3UrlRequest,
    PresignS3UrlResponse,
    RancherRegistrationRequest,
    RancherRegistrationResponse,
    ReadCredentialRequest,
    ReadCredentialResponse,
    RegisterClusterOIDCRequest,
    RegisterClusterOIDCResponse,
    TagNodeInstanceRequest,
    TagNodeInstanceResponse,
    WriteCredentialRequest,
    WriteCredentialResponse,
)
from .aks_manager import AKSManager
from .eks_manager import EKSManager
from .gke_manager import GKEManager
from .middleware import apply_middleware
from .provider_adapter import ProviderAdapter
from .sessions import AwsSessionFactory, AzureSessionFactory, GcpSessionFactory


@dataclass(frozen=True)
class OperationSpec:
    """One RPC operation: its message types and the method that serves it."""

    name: str
    request_type: Type[Message]
    response_type: Type[Message]
    method: str
    routed: bool = True


OPERATIONS: dict[str, OperationSpec] = {
    spec.name: spec
    for spec in (
        # Service operations
        OperationSpec("HealthCheck", Empty, HealthCheckResponse, "health_check", routed=False),
        OperationSpec("Echo", EchoRequest, EchoResponse, "echo", routed=False),
        OperationSpec(
            "ReadCredential", ReadCredentialRequest, ReadCredentialResponse,
            "read_credential", routed=False,
        ),
        OperationSpec(
            "WriteCredential", WriteCredentialRequest, WriteCredentialResponse,
            "write_credential", routed=False,
        ),
        OperationSpec(
            "RegisterWithRancher", RancherRegistrationRequest, RancherRegistrationResponse,
            "register_with_rancher", routed=False,
        ),
        # Clusters
        OperationSpec("CreateCluster", ClusterRequest, ClusterResponse, "create_cluster"),
        OperationSpec("GetCluster", GetClusterRequest, ClusterSpec, "get_cluster"),
        OperationSpec("GetClusters", GetClustersRequest, GetClustersResponse, "get_clusters"),
        OperationSpec(
            "ClusterStatus", ClusterStatusRequest, ClusterStatusResponse, "cluster_status"
        ),
        OperationSpec(
            "DeleteCluster", ClusterDeleteRequest, ClusterDeleteResponse, "delete_cluster"
        ),
        OperationSpec("AddToken", AddTokenRequest, AddTokenResponse, "add_token"),
        OperationSpec("GetToken", GetTokenRequest, GetTokenResponse, "get_token"),
        OperationSpec(
            "RegisterClusterOIDC", RegisterClusterOIDCRequest, RegisterClusterOIDCResponse,
            "register_cluster_oidc",
        ),
        # Nodes
        OperationSpec("AddNode", NodeSpawnRequest, NodeSpawnResponse, "add_node"),
        OperationSpec("DeleteNode", NodeDeleteRequest, NodeDeleteResponse, "delete_node"),
        OperationSpec(
            "TagNodeInstance", TagNodeInstanceRequest, TagNodeInstanceResponse,
            "tag_node_instance",
        ),
        # Volumes and snapshots
        OperationSpec("CreateVolume", CreateVolumeRequest, CreateVolumeResponse, "create_volume"),
        OperationSpec("GetVolume", GetVolumeRequest, GetVolumeResponse, "get_volume"),
        OperationSpec("DeleteVolume", DeleteVolumeRequest, DeleteVolumeResponse, "delete_volume"),
        OperationSpec(
            "CreateSnapshot", CreateSnapshotRequest, CreateSnapshotResponse, "create_snapshot"
        ),
        OperationSpec(
            "DeleteSnapshot", DeleteSnapshotRequest, DeleteSnapshotResponse, "delete_snapshot"
        ),
        OperationSpec(
            "CreateSnapshotAndDelete", CreateSnapshotAndDeleteRequest,
            CreateSnapshotAndDeleteResponse, "create_snapshot_and_delete",
        ),
        OperationSpec("CopySnapshot", CopySnapshotRequest, CopySnapshotResponse, "copy_snapshot"),
        # DNS
        OperationSpec(
            "AddRoute53Record", AddRoute53RecordRequest, AddRoute53RecordResponse,
            "add_route53_record",
        ),
        OperationSpec(
            "CreateRoute53Records", CreateRoute53RecordsRequest, CreateRoute53RecordsResponse,
            "create_route53_records",
        ),
        OperationSpec(
            "GetRoute53TXTRecords", GetRoute53TXTRecordsRequest, GetRoute53TXTRecordsResponse,
            "get_route53_txt_records",
        ),
        OperationSpec(
            "DeleteRoute53Records", DeleteRoute53RecordsRequest, DeleteRoute53RecordsResponse,
            "delete_route53_records",
        ),
        # Cost
        OperationSpec(
            "GetWorkspacesCost", GetWorkspacesCostRequest, GetWorkspacesCostResponse,
            "get_workspaces_cost",
        ),
        OperationSpec(
            "GetApplicationsCost", GetApplicationsCostRequest, GetApplicationsCostResponse,
            "get_applications_cost",
        ),
        OperationSpec(
            "GetCostByTime", GetCostByTimeRequest, GetCostByTimeResponse, "get_cost_by_time"
        ),
        # Registry and object storage
        OperationSpec(
            "GetContainerRegistryAuth", GetContainerRegistryAuthRequest,
            GetContainerRegistryAuthResponse, "get_container_registry_auth",
        ),
        OperationSpec(
            "CreateContainerRegistryRepo", CreateContainerRegistryRepoRequest,
            CreateContainerRegistryRepoResponse, "create_container_registry_repo",
        ),
        OperationSpec("PresignS3Url", PresignS3UrlRequest, PresignS3UrlResponse, "presign_s3_url"),
    )
}

# Names a caller may use for a provider besides its id.
PROVIDER_ALIASES = {
    "eks": CloudProvider.AWS,
    "amazon": CloudProvider.AWS,
    "gke": CloudProvider.GCP,
    "google": CloudProvider.GCP,
    "aks": CloudProvider.AZURE,
    "microsoft": CloudProvider.AZURE,
}


def get_operation(name: str) -> OperationSpec:
    try:
        return OPERATIONS[name]
    except KeyError:
        raise InvalidInputError(f"unknown operation '{name}'")


class ProviderRegistry:
    """Provider id -> adapter mapping, populated once at startup."""

    def __init__(self) -> None:
        self._adapters: dict[CloudProvider, ProviderAdapter] = {}

    def register(self, provider: Union[CloudProvider, str], adapter: ProviderAdapter) -> None:
        if not isinstance(provider, CloudProvider):
            provider = CloudProvider.parse(provider)
        self._adapters[provider] = adapter

    def get(self, provider_id: str) -> ProviderAdapter:
        """Adapter for ``provider_id``; InvalidInputError when none is registered."""
        normalized = (provider_id or "").strip().lower()
        provider: Optional[CloudProvider] = PROVIDER_ALIASES.get(normalized)
        if provider is None:
            try:
                provider = CloudProvider.parse(normalized)
            except ValueError:
                provider = None
        if provider is None or provider not in self._adapters:
            raise InvalidInputError(f"unknown provider '{provider_id}'")
        return self._adapters[provider]

    @property
    def providers(self) -> list[CloudProvider]:
        return list(self._adapters)


def create_registry(resolver: Optional[CredentialResolver]) -> ProviderRegistry:
    """Registry with the AWS, GCP and Azure adapters."""
    registry = ProviderRegistry()
    registry.register(CloudProvider.AWS, EKSManager(AwsSessionFactory(resolver)))
    registry.register(CloudProvider.GCP, GKEManager(GcpSessionFactory(resolver)))
    registry.register(CloudProvider.AZURE, AKSManager(AzureSessionFactory(resolver)))
    return registry


class CloudProviderManager:
    """Routes each operation to the adapter named by the request's provider,
    or to the service handlers for provider-less operations."""

    def __init__(self, registry: ProviderRegistry, handlers: ServiceHandlers):
        self.registry = registry
        self.handlers = handlers

    async def dispatch(
        self, ctx: RequestContext, operation_name: str, request: Message
    ) -> Message:
        """Run ``operation_name`` once through the middleware chain.

        Errors propagate unchanged; nothing is retried.
        """
        spec = get_operation(operation_name)
        if not isinstance(request, spec.request_type):
            raise InvalidInputError(
                f"{operation_name} expects {spec.request_type.__name__}, "
                f"got {type(request).__name__}"
            )

        async def handle(ctx: RequestContext, request: Message) -> Message:
            if spec.routed:
                target = self.registry.get(request.provider)
            else:
                target = self.handlers
            return await getattr(target, spec.method)(ctx, request)

        return await apply_middleware(spec.name, handle)(ctx, request)
