"""Pydantic models for the provider-neutral request and response messages."""

from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Message(BaseModel):
    """Base class for every wire message."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    # Fields that identify the call in log lines. Never list secret material.
    LOG_FIELDS: ClassVar[tuple[str, ...]] = ()

    def log_fields(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in self.LOG_FIELDS}


class ProviderRequest(Message):
    """Request routed to a provider adapter."""

    provider: str = ""
    region: str = ""
    account_name: str = ""

    LOG_FIELDS: ClassVar[tuple[str, ...]] = ("provider", "region", "account_name")


# =============================================================================
# Shared types
# =============================================================================


class CapacityType(str, Enum):
    """Capacity mode of a node group."""

    ON_DEMAND = "ON_DEMAND"
    SPOT = "SPOT"


class MigProfile(str, Enum):
    """GPU partition profile."""

    UNKNOWN = "UNKNOWN"
    MIG1G = "MIG1g"
    MIG2G = "MIG2g"
    MIG3G = "MIG3g"
    MIG4G = "MIG4g"
    MIG7G = "MIG7g"


class NodeSpec(BaseModel):
    """Neutral description of a node group / node pool."""

    name: str
    instance: str = ""
    machine_type: str = ""
    count: int = 0
    disk_size: int = 0
    capacity_type: CapacityType = CapacityType.ON_DEMAND
    spot_instances: List[str] = Field(default_factory=list)
    gpu_enabled: bool = False
    mig_profile: MigProfile = MigProfile.UNKNOWN
    labels: Dict[str, str] = Field(default_factory=dict)

    @property
    def node_count(self) -> int:
        return self.count or 1


class ClusterSpec(Message):
    """Neutral view of a cluster."""

    name: str
    cluster_id: str = ""
    provider: str = ""
    region: str = ""
    node_spec: List[NodeSpec] = Field(default_factory=list)
    labels: Dict[str, str] = Field(default_factory=dict)


class Volume(BaseModel):
    """Neutral view of a block volume."""

    volume_id: str
    size: int
    volume_type: str
    region: str = ""
    availability_zone: str = ""
    snapshot_id: str = ""
    state: str = ""


class GroupBy(BaseModel):
    type: str = "TAG"
    key: str = ""


class Route53ResourceRecord(BaseModel):
    value: str


class Route53ResourceRecordSet(BaseModel):
    type: str
    name: str
    resource_records: List[Route53ResourceRecord] = Field(default_factory=list)
    ttl_in_seconds: int = 300


class AwsCredentials(BaseModel):
    access_key_id: str
    secret_access_key: str
    token: str = ""


class AzureCredentials(BaseModel):
    subscription_id: str
    tenant_id: str
    client_id: str
    client_secret: str
    resource_group: str


class GcpCredentials(BaseModel):
    project_id: str
    service_account: Dict[str, Any] = Field(default_factory=dict)


class GitPatCredentials(BaseModel):
    token: str


# =============================================================================
# Service
# =============================================================================


class Empty(Message):
    pass


class HealthCheckResponse(Message):
    status: str = "SERVING"


class EchoRequest(Message):
    msg: str = ""

    LOG_FIELDS: ClassVar[tuple[str, ...]] = ("msg",)


class EchoResponse(Message):
    msg: str = ""


# =============================================================================
# Clusters
# =============================================================================


class ClusterRequest(ProviderRequest):
    cluster_name: str
    node: NodeSpec
    labels: Dict[str, str] = Field(default_factory=dict)

    LOG_FIELDS: ClassVar[tuple[str, ...]] = ProviderRequest.LOG_FIELDS + (
        "cluster_name",
        "labels",
    )


class ClusterResponse(Message):
    cluster_name: str
    cluster_id: str = ""


class GetClusterRequest(ProviderRequest):
    cluster_name: str

    LOG_FIELDS: ClassVar[tuple[str, ...]] = ProviderRequest.LOG_FIELDS + (
        "cluster_name",
    )


class GetClustersRequest(ProviderRequest):
    pass


class GetClustersResponse(Message):
    clusters: List[ClusterSpec] = Field(default_factory=list)


class ClusterStatusRequest(GetClusterRequest):
    pass


class ClusterStatusResponse(Message):
    status: str


class ClusterDeleteRequest(GetClusterRequest):
    force_delete: bool = False


class ClusterDeleteResponse(Message):
    pass


# =============================================================================
# Nodes
# =============================================================================


class NodeSpawnRequest(GetClusterRequest):
    node_spec: NodeSpec


class NodeSpawnResponse(Message):
    pass


class NodeDeleteRequest(GetClusterRequest):
    node_group_name: str

    LOG_FIELDS: ClassVar[tuple[str, ...]] = GetClusterRequest.LOG_FIELDS + (
        "node_group_name",
    )


class NodeDeleteResponse(Message):
    pass


class TagNodeInstanceRequest(GetClusterRequest):
    node_group: str = ""
    labels: Dict[str, str] = Field(default_factory=dict)

    LOG_FIELDS: ClassVar[tuple[str, ...]] = GetClusterRequest.LOG_FIELDS + (
        "node_group",
    )


class TagNodeInstanceResponse(Message):
    instance_ids: List[str] = Field(default_factory=list)


# =============================================================================
# Volumes and snapshots
# =============================================================================


class CreateVolumeRequest(ProviderRequest):
    availability_zone: str = ""
    volume_type: str = ""
    size: int = 0
    snapshot_id: str = ""
    snapshot_uri: str = ""
    delete_snapshot: bool = False
    labels: Dict[str, str] = Field(default_factory=dict)

    LOG_FIELDS: ClassVar[tuple[str, ...]] = ProviderRequest.LOG_FIELDS + (
        "volume_type",
        "size",
        "snapshot_id",
    )


class CreateVolumeResponse(Message):
    volume_id: str
    size: int
    volume_type: str
    region: str = ""
    availability_zone: str = ""


class GetVolumeRequest(ProviderRequest):
    volume_id: str

    LOG_FIELDS: ClassVar[tuple[str, ...]] = ProviderRequest.LOG_FIELDS + (
        "volume_id",
    )


class GetVolumeResponse(Message):
    volume: Volume


class DeleteVolumeRequest(GetVolumeRequest):
    pass


class DeleteVolumeResponse(Message):
    deleted: bool = True


class CreateSnapshotRequest(GetVolumeRequest):
    labels: Dict[str, str] = Field(default_factory=dict)


class CreateSnapshotResponse(Message):
    snapshot_id: str


class DeleteSnapshotRequest(ProviderRequest):
    snapshot_id: str

    LOG_FIELDS: ClassVar[tuple[str, ...]] = ProviderRequest.LOG_FIELDS + (
        "snapshot_id",
    )


class DeleteSnapshotResponse(Message):
    pass


class CreateSnapshotAndDeleteRequest(GetVolumeRequest):
    labels: Dict[str, str] = Field(default_factory=dict)


class CreateSnapshotAndDeleteResponse(Message):
    snapshot_id: str
    volume_deleted: bool = True


class CopySnapshotRequest(DeleteSnapshotRequest):
    source_region: str = ""


class CopySnapshotResponse(Message):
    snapshot_id: str


# =============================================================================
# Kubernetes credentials
# =============================================================================


class AddTokenRequest(GetClusterRequest):
    pass


class AddTokenResponse(Message):
    token: str
    endpoint: str = ""
    ca_data: str = ""


class GetTokenRequest(GetClusterRequest):
    pass


class GetTokenResponse(Message):
    token: str = ""
    endpoint: str = ""
    ca_data: str = ""
    kube_config: str = ""


class RegisterClusterOIDCRequest(GetClusterRequest):
    pass


class RegisterClusterOIDCResponse(Message):
    issuer: str
    provider_arn: str = ""


class RancherRegistrationRequest(Message):
    cluster_name: str

    LOG_FIELDS: ClassVar[tuple[str, ...]] = ("cluster_name",)


class RancherRegistrationResponse(Message):
    cluster_id: str
    cluster_name: str
    manifest_url: str = ""


# =============================================================================
# DNS
# =============================================================================


class AddRoute53RecordRequest(ProviderRequest):
    provider: str = "aws"
    dns_name: str
    record_name: str
    region_identifier: str = ""

    LOG_FIELDS: ClassVar[tuple[str, ...]] = ProviderRequest.LOG_FIELDS + (
        "dns_name",
        "record_name",
    )


class AddRoute53RecordResponse(Message):
    change_id: str = ""


class CreateRoute53RecordsRequest(ProviderRequest):
    provider: str = "aws"
    records: List[Route53ResourceRecordSet] = Field(default_factory=list)


class CreateRoute53RecordsResponse(Message):
    change_id: str = ""


class GetRoute53TXTRecordsRequest(ProviderRequest):
    provider: str = "aws"


class GetRoute53TXTRecordsResponse(Message):
    records: List[Route53ResourceRecordSet] = Field(default_factory=list)


class DeleteRoute53RecordsRequest(CreateRoute53RecordsRequest):
    pass


class DeleteRoute53RecordsResponse(Message):
    change_id: str = ""


# =============================================================================
# Cost
# =============================================================================


class CostRequest(ProviderRequest):
    start_date: str
    end_date: str
    granularity: str = "DAILY"
    cost_type: str = "BlendedCost"
    group_by: GroupBy = Field(default_factory=GroupBy)

    LOG_FIELDS: ClassVar[tuple[str, ...]] = ProviderRequest.LOG_FIELDS + (
        "start_date",
        "end_date",
    )


class GetWorkspacesCostRequest(CostRequest):
    workspace_ids: List[str] = Field(default_factory=list)


class GetWorkspacesCostResponse(Message):
    total_cost: float = 0.0
    group_by: Dict[str, float] = Field(default_factory=dict)


class GetApplicationsCostRequest(CostRequest):
    application_ids: List[str] = Field(default_factory=list)


class GetApplicationsCostResponse(GetWorkspacesCostResponse):
    pass


class GetCostByTimeRequest(CostRequest):
    ids: List[str] = Field(default_factory=list)


class GetCostByTimeResponse(Message):
    group_by: Dict[str, Dict[str, float]] = Field(default_factory=dict)


# =============================================================================
# Secret store proxy
# =============================================================================


class ReadCredentialRequest(Message):
    account: str
    type: str

    LOG_FIELDS: ClassVar[tuple[str, ...]] = ("account", "type")


class ReadCredentialResponse(Message):
    account: str
    type: str
    aws_cred: Optional[AwsCredentials] = None
    azure_cred: Optional[AzureCredentials] = None
    gcp_cred: Optional[GcpCredentials] = None
    git_pat: Optional[GitPatCredentials] = None


class WriteCredentialRequest(ReadCredentialResponse):
    LOG_FIELDS: ClassVar[tuple[str, ...]] = ("account", "type")


class WriteCredentialResponse(Message):
    pass


# =============================================================================
# Container registry and object storage
# =============================================================================


class GetContainerRegistryAuthRequest(ProviderRequest):
    pass


class GetContainerRegistryAuthResponse(Message):
    url: str
    token: str


class CreateContainerRegistryRepoRequest(ProviderRequest):
    name: str
    labels: Dict[str, str] = Field(default_factory=dict)

    LOG_FIELDS: ClassVar[tuple[str, ...]] = ProviderRequest.LOG_FIELDS + ("name",)


class CreateContainerRegistryRepoResponse(Message):
    registry_id: str = ""
    url: str = ""


class PresignS3UrlRequest(ProviderRequest):
    provider: str = "aws"
    bucket: str
    file: str
    timeout_in_minute: int = 0

    LOG_FIELDS: ClassVar[tuple[str, ...]] = ProviderRequest.LOG_FIELDS + (
        "bucket",
        "file",
    )


class PresignS3UrlResponse(Message):
    signed_url: str
