"""Amazon Elastic Kubernetes Service (EKS) adapter and the AWS services around it."""

import asyncio
import hashlib
import ipaddress
import ssl
from typing import Any, Mapping, Optional
from urllib.parse import urlparse

from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from ..core_utils import CloudProvider, ClusterStatus, RequestContext
from ..exceptions import (
    CredentialError,
    InvalidInputError,
    NotFoundError,
    ProviderError,
    SpawnerError,
    TransientEmptyResultError,
)
from ..instances import is_gpu, mig_partition_size, resolve_instance, wants_gpu_partition
from ..labels import build_tags, node_labels
from ..messages import (
    AddRoute53RecordRequest,
    AddRoute53RecordResponse,
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
    NodeDeleteRequest,
    NodeDeleteResponse,
    NodeSpawnRequest,
    NodeSpawnResponse,
    NodeSpec,
    PresignS3UrlRequest,
    PresignS3UrlResponse,
    RegisterClusterOIDCRequest,
    RegisterClusterOIDCResponse,
    Route53ResourceRecord,
    Route53ResourceRecordSet,
    TagNodeInstanceRequest,
    TagNodeInstanceResponse,
    Volume,
)
from .kube import bearer_api_client, create_admin_token
from .operations import PollingOperation, wait_for_completion
from .provider_adapter import ProviderAdapter, operation
from .sessions import AwsSession

NOT_FOUND_CODES = frozenset(
    {
        "ResourceNotFoundException",
        "NoSuchEntity",
        "NoSuchHostedZone",
        "NoSuchBucket",
        "NoSuchKey",
        "RepositoryNotFoundException",
        "InvalidVolume.NotFound",
        "InvalidSnapshot.NotFound",
    }
)
CREDENTIAL_CODES = frozenset(
    {
        "AuthFailure",
        "ExpiredToken",
        "ExpiredTokenException",
        "InvalidClientTokenId",
        "SignatureDoesNotMatch",
        "UnrecognizedClientException",
    }
)

MIG_CONFIG_LABEL = "nvidia.com/mig.config"
COST_EXPLORER_REGION = "us-east-1"
ROUTE53_REGION = "us-east-1"
OIDC_CLIENT_ID = "sts.amazonaws.com"


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


def _as_tags(tags: Mapping[str, str]) -> list[dict[str, str]]:
    return [{"Key": key, "Value": value} for key, value in tags.items()]


def _collect(client, operation_name: str, key: str, **kwargs) -> list[Any]:
    """Drain a boto3 paginator into a single list."""
    paginator = client.get_paginator(operation_name)
    return [item for page in paginator.paginate(**kwargs) for item in page.get(key, [])]


def _is_ip_address(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
        return True
    except ValueError:
        return False


def _quote_txt(value: str) -> str:
    if value.startswith('"') and value.endswith('"'):
        return value
    return f'"{value}"'


def _unquote_txt(value: str) -> str:
    return value[1:-1] if len(value) >= 2 and value[0] == value[-1] == '"' else value


def _oidc_thumbprint(issuer_url: str) -> str:
    """SHA-1 fingerprint of the certificate served by the OIDC issuer."""
    host = urlparse(issuer_url).hostname
    pem = ssl.get_server_certificate((host, 443))
    return hashlib.sha1(ssl.PEM_cert_to_DER_cert(pem)).hexdigest()


def _cost_group_id(keys: list[str]) -> str:
    # Cost Explorer renders tag groups as "<tag-key>$<tag-value>"
    return keys[0].split("$", 1)[-1] if keys else ""


class EKSManager(ProviderAdapter):
    """AWS adapter: EKS clusters and node groups, EBS volumes, Route53, ECR,
    S3, IAM OIDC providers and Cost Explorer."""

    provider = CloudProvider.AWS

    DEFAULT_CLUSTER_ROLE_NAME = "spawner-eks-cluster-role"
    DEFAULT_NODE_ROLE_NAME = "spawner-eks-node-role"
    DEFAULT_VOLUME_TYPE = "gp2"
    DEFAULT_PRESIGN_MINUTES = 10
    DEFAULT_RECORD_TTL = 300

    def translate_error(self, error: Exception) -> Optional[SpawnerError]:
        if isinstance(error, ClientError):
            code = _error_code(error)
            if code in NOT_FOUND_CODES:
                return NotFoundError(str(error))
            if code in CREDENTIAL_CODES:
                return CredentialError(str(error))
            return ProviderError(str(error))
        if isinstance(error, NoCredentialsError):
            return CredentialError(str(error))
        if isinstance(error, BotoCoreError):
            return ProviderError(str(error))
        return super().translate_error(error)

    # =================================================================
    # Clusters
    # =================================================================

    @operation("CreateCluster")
    async def create_cluster(
        self, ctx: RequestContext, request: ClusterRequest
    ) -> ClusterResponse:
        """Create an EKS cluster with one node group and wait until both are active."""
        if not request.cluster_name:
            raise InvalidInputError("cluster_name is required")
        instance = resolve_instance(self.provider, request.node)

        session: AwsSession = await self.new_session(
            ctx, request.region, request.account_name
        )
        eks = session.client("eks")
        config = ctx.config

        subnet_ids = config.eks_subnet_ids or await asyncio.to_thread(
            self._get_default_subnets, session.client("ec2")
        )
        role_arn = config.eks_cluster_role_arn or await asyncio.to_thread(
            self._get_role_arn, session.client("iam"), self.DEFAULT_CLUSTER_ROLE_NAME
        )

        response = await asyncio.to_thread(
            eks.create_cluster,
            name=request.cluster_name,
            version=config.kubernetes_version,
            roleArn=role_arn,
            resourcesVpcConfig={"subnetIds": subnet_ids},
            tags=build_tags(request.labels, config.env),
        )
        cluster_arn = response["cluster"].get("arn", "")
        ctx.logger.log_info(
            "CreateCluster",
            "cluster creation started",
            cluster_name=request.cluster_name,
            region=request.region,
        )

        await wait_for_completion(
            ctx,
            self._status_operation(
                f"cluster {request.cluster_name}",
                lambda: self._describe_cluster(eks, request.cluster_name),
                ready="ACTIVE",
                failed={"FAILED"},
            ),
        )
        await self._create_node_group(
            ctx, session, request.cluster_name, request.node, instance, subnet_ids
        )
        return ClusterResponse(cluster_name=request.cluster_name, cluster_id=cluster_arn)

    @operation("GetCluster")
    async def get_cluster(self, ctx: RequestContext, request: GetClusterRequest) -> ClusterSpec:
        session = await self.new_session(ctx, request.region, request.account_name)
        eks = session.client("eks")

        cluster = await self._describe_cluster(eks, request.cluster_name)
        names = await asyncio.to_thread(
            _collect, eks, "list_nodegroups", "nodegroups", clusterName=request.cluster_name
        )
        node_specs = []
        for name in names:
            response = await asyncio.to_thread(
                eks.describe_nodegroup, clusterName=request.cluster_name, nodegroupName=name
            )
            node_specs.append(self._node_spec_from_nodegroup(response["nodegroup"]))

        return ClusterSpec(
            name=cluster["name"],
            cluster_id=cluster.get("arn", ""),
            provider=self.provider.value,
            region=session.region,
            node_spec=node_specs,
            labels=cluster.get("tags", {}),
        )

    @operation("GetClusters")
    async def get_clusters(
        self, ctx: RequestContext, request: GetClustersRequest
    ) -> GetClustersResponse:
        session = await self.new_session(ctx, request.region, request.account_name)
        eks = session.client("eks")

        names = await asyncio.to_thread(_collect, eks, "list_clusters", "clusters")
        clusters = []
        for name in names:
            cluster = await self._describe_cluster(eks, name)
            clusters.append(
                ClusterSpec(
                    name=name,
                    cluster_id=cluster.get("arn", ""),
                    provider=self.provider.value,
                    region=session.region,
                    labels=cluster.get("tags", {}),
                )
            )
        return GetClustersResponse(clusters=clusters)

    @operation("ClusterStatus")
    async def cluster_status(
        self, ctx: RequestContext, request: ClusterStatusRequest
    ) -> ClusterStatusResponse:
        session = await self.new_session(ctx, request.region, request.account_name)
        cluster = await self._describe_cluster(session.client("eks"), request.cluster_name)
        status = ClusterStatus.ACTIVE if cluster.get("status") == "ACTIVE" else ClusterStatus.INACTIVE
        return ClusterStatusResponse(status=status.value)

    @operation("DeleteCluster")
    async def delete_cluster(
        self, ctx: RequestContext, request: ClusterDeleteRequest
    ) -> ClusterDeleteResponse:
        """Delete a cluster; ``force_delete`` removes its node groups first."""
        session = await self.new_session(ctx, request.region, request.account_name)
        eks = session.client("eks")
        name = request.cluster_name

        await self._describe_cluster(eks, name)
        node_groups = await asyncio.to_thread(
            _collect, eks, "list_nodegroups", "nodegroups", clusterName=name
        )
        if node_groups and not request.force_delete:
            raise ProviderError(
                f"cluster '{name}' still has node groups {', '.join(node_groups)}"
            )
        for node_group in node_groups:
            await self._delete_node_group(ctx, eks, name, node_group)

        await asyncio.to_thread(eks.delete_cluster, name=name)
        await wait_for_completion(
            ctx,
            self._deleted_operation(
                f"cluster {name} deletion", lambda: self._describe_cluster(eks, name)
            ),
        )
        ctx.logger.log_info("DeleteCluster", "cluster deleted", cluster_name=name)
        return ClusterDeleteResponse()

    @operation("GetToken")
    async def get_token(self, ctx: RequestContext, request: GetTokenRequest) -> GetTokenResponse:
        session: AwsSession = await self.new_session(
            ctx, request.region, request.account_name
        )
        cluster = await self._describe_cluster(session.client("eks"), request.cluster_name)
        token = await asyncio.to_thread(session.get_eks_token, request.cluster_name)
        return GetTokenResponse(
            token=token,
            endpoint=cluster.get("endpoint", ""),
            ca_data=cluster.get("certificateAuthority", {}).get("data", ""),
        )

    @operation("AddToken")
    async def add_token(self, ctx: RequestContext, request: AddTokenRequest) -> AddTokenResponse:
        """Mint a long-lived cluster-admin service-account token."""
        access = await self.get_token(ctx, GetTokenRequest(**request.model_dump()))
        with bearer_api_client(access.endpoint, access.ca_data, access.token) as api_client:
            token = await create_admin_token(ctx, api_client)
        return AddTokenResponse(
            token=token, endpoint=access.endpoint, ca_data=access.ca_data
        )

    @operation("RegisterClusterOIDC")
    async def register_cluster_oidc(
        self, ctx: RequestContext, request: RegisterClusterOIDCRequest
    ) -> RegisterClusterOIDCResponse:
        """Register the cluster's OIDC issuer as an IAM identity provider."""
        session: AwsSession = await self.new_session(
            ctx, request.region, request.account_name
        )
        cluster = await self._describe_cluster(session.client("eks"), request.cluster_name)
        issuer = cluster.get("identity", {}).get("oidc", {}).get("issuer", "")
        if not issuer:
            raise ProviderError(f"cluster '{request.cluster_name}' has no OIDC issuer")

        try:
            thumbprint = await asyncio.to_thread(_oidc_thumbprint, issuer)
        except OSError as e:
            raise ProviderError(f"unable to fetch OIDC issuer certificate: {e}") from e

        iam = session.client("iam")
        try:
            response = await asyncio.to_thread(
                iam.create_open_id_connect_provider,
                Url=issuer,
                ClientIDList=[OIDC_CLIENT_ID],
                ThumbprintList=[thumbprint],
                Tags=_as_tags(build_tags(None, ctx.config.env)),
            )
            provider_arn = response["OpenIDConnectProviderArn"]
        except ClientError as e:
            if _error_code(e) != "EntityAlreadyExists":
                raise
            account_id = await asyncio.to_thread(session.get_account_id)
            provider_arn = (
                f"arn:aws:iam::{account_id}:oidc-provider/{issuer.removeprefix('https://')}"
            )
        return RegisterClusterOIDCResponse(issuer=issuer, provider_arn=provider_arn)

    # =================================================================
    # Node groups
    # =================================================================

    @operation("AddNode")
    async def add_node(self, ctx: RequestContext, request: NodeSpawnRequest) -> NodeSpawnResponse:
        instance = resolve_instance(self.provider, request.node_spec)
        if not request.node_spec.name:
            raise InvalidInputError("node_spec.name is required")

        session = await self.new_session(ctx, request.region, request.account_name)
        cluster = await self._describe_cluster(session.client("eks"), request.cluster_name)
        subnet_ids = cluster.get("resourcesVpcConfig", {}).get("subnetIds", [])

        await self._create_node_group(
            ctx, session, request.cluster_name, request.node_spec, instance, subnet_ids
        )
        return NodeSpawnResponse()

    @operation("DeleteNode")
    async def delete_node(
        self, ctx: RequestContext, request: NodeDeleteRequest
    ) -> NodeDeleteResponse:
        session = await self.new_session(ctx, request.region, request.account_name)
        await self._delete_node_group(
            ctx, session.client("eks"), request.cluster_name, request.node_group_name
        )
        return NodeDeleteResponse()

    @operation("TagNodeInstance")
    async def tag_node_instance(
        self, ctx: RequestContext, request: TagNodeInstanceRequest
    ) -> TagNodeInstanceResponse:
        """Tag the EC2 instances backing a cluster's node group."""
        session = await self.new_session(ctx, request.region, request.account_name)
        await self._describe_cluster(session.client("eks"), request.cluster_name)
        ec2 = session.client("ec2")

        filters = [{"Name": "tag:eks:cluster-name", "Values": [request.cluster_name]}]
        if request.node_group:
            filters.append({"Name": "tag:eks:nodegroup-name", "Values": [request.node_group]})
        reservations = await asyncio.to_thread(
            _collect, ec2, "describe_instances", "Reservations", Filters=filters
        )
        instance_ids = [
            instance["InstanceId"]
            for reservation in reservations
            for instance in reservation.get("Instances", [])
        ]
        if not instance_ids:
            raise TransientEmptyResultError(
                f"no instances in cluster '{request.cluster_name}' to tag"
            )

        await asyncio.to_thread(
            ec2.create_tags,
            Resources=instance_ids,
            Tags=_as_tags(build_tags(request.labels, ctx.config.env)),
        )
        return TagNodeInstanceResponse(instance_ids=instance_ids)

    # =================================================================
    # EBS volumes and snapshots
    # =================================================================

    @operation("CreateVolume")
    async def create_volume(
        self, ctx: RequestContext, request: CreateVolumeRequest
    ) -> CreateVolumeResponse:
        """Create an EBS volume, optionally from (and then deleting) a snapshot."""
        if request.size <= 0 and not request.snapshot_id:
            raise InvalidInputError("size must be positive unless restoring a snapshot")

        session = await self.new_session(ctx, request.region, request.account_name)
        ec2 = session.client("ec2")

        params: dict[str, Any] = {
            "AvailabilityZone": self._availability_zone(request),
            "VolumeType": request.volume_type or self.DEFAULT_VOLUME_TYPE,
            "TagSpecifications": [
                {
                    "ResourceType": "volume",
                    "Tags": _as_tags(build_tags(request.labels, ctx.config.env)),
                }
            ],
        }
        if request.size > 0:
            params["Size"] = request.size
        if request.snapshot_id:
            params["SnapshotId"] = request.snapshot_id

        volume = await asyncio.to_thread(ec2.create_volume, **params)
        volume_id = volume["VolumeId"]
        await wait_for_completion(
            ctx,
            self._status_operation(
                f"volume {volume_id}",
                lambda: self._describe_volume(ec2, volume_id),
                ready="available",
                failed={"error"},
                status_key="State",
            ),
        )

        if request.delete_snapshot and request.snapshot_id:
            await asyncio.to_thread(ec2.delete_snapshot, SnapshotId=request.snapshot_id)

        return CreateVolumeResponse(
            volume_id=volume_id,
            size=volume["Size"],
            volume_type=volume["VolumeType"],
            region=session.region,
            availability_zone=volume["AvailabilityZone"],
        )

    @operation("GetVolume")
    async def get_volume(self, ctx: RequestContext, request: GetVolumeRequest) -> GetVolumeResponse:
        session = await self.new_session(ctx, request.region, request.account_name)
        volume = await self._describe_volume(session.client("ec2"), request.volume_id)
        return GetVolumeResponse(
            volume=Volume(
                volume_id=volume["VolumeId"],
                size=volume["Size"],
                volume_type=volume["VolumeType"],
                region=session.region,
                availability_zone=volume.get("AvailabilityZone", ""),
                snapshot_id=volume.get("SnapshotId", ""),
                state=volume.get("State", ""),
            )
        )

    @operation("DeleteVolume")
    async def delete_volume(
        self, ctx: RequestContext, request: DeleteVolumeRequest
    ) -> DeleteVolumeResponse:
        session = await self.new_session(ctx, request.region, request.account_name)
        await asyncio.to_thread(session.client("ec2").delete_volume, VolumeId=request.volume_id)
        return DeleteVolumeResponse(deleted=True)

    @operation("CreateSnapshot")
    async def create_snapshot(
        self, ctx: RequestContext, request: CreateSnapshotRequest
    ) -> CreateSnapshotResponse:
        session = await self.new_session(ctx, request.region, request.account_name)
        ec2 = session.client("ec2")
        snapshot = await asyncio.to_thread(
            ec2.create_snapshot,
            VolumeId=request.volume_id,
            TagSpecifications=[
                {
                    "ResourceType": "snapshot",
                    "Tags": _as_tags(build_tags(request.labels, ctx.config.env)),
                }
            ],
        )
        snapshot_id = snapshot["SnapshotId"]
        await self._wait_for_snapshot(ctx, ec2, snapshot_id)
        return CreateSnapshotResponse(snapshot_id=snapshot_id)

    @operation("DeleteSnapshot")
    async def delete_snapshot(
        self, ctx: RequestContext, request: DeleteSnapshotRequest
    ) -> DeleteSnapshotResponse:
        session = await self.new_session(ctx, request.region, request.account_name)
        await asyncio.to_thread(
            session.client("ec2").delete_snapshot, SnapshotId=request.snapshot_id
        )
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
        """Copy a snapshot into the request region from ``source_region``."""
        session = await self.new_session(ctx, request.region, request.account_name)
        ec2 = session.client("ec2")
        response = await asyncio.to_thread(
            ec2.copy_snapshot,
            SourceRegion=request.source_region or session.region,
            SourceSnapshotId=request.snapshot_id,
            TagSpecifications=[
                {
                    "ResourceType": "snapshot",
                    "Tags": _as_tags(build_tags(None, ctx.config.env)),
                }
            ],
        )
        snapshot_id = response["SnapshotId"]
        await self._wait_for_snapshot(ctx, ec2, snapshot_id)
        return CopySnapshotResponse(snapshot_id=snapshot_id)

    # =================================================================
    # Cost Explorer
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
        """Cost of each id per time period, keyed by the period start date."""
        results = await self._cost_and_usage(ctx, request, request.ids)
        by_time: dict[str, dict[str, float]] = {}
        for result in results:
            start = result["TimePeriod"]["Start"]
            for group in result.get("Groups", []):
                group_id = _cost_group_id(group.get("Keys", []))
                if not group_id:
                    continue
                amount = float(group["Metrics"][request.cost_type]["Amount"])
                by_time.setdefault(group_id, {})[start] = amount
        return GetCostByTimeResponse(group_by=by_time)

    # =================================================================
    # ECR and S3
    # =================================================================

    @operation("GetContainerRegistryAuth")
    async def get_container_registry_auth(
        self, ctx: RequestContext, request: GetContainerRegistryAuthRequest
    ) -> GetContainerRegistryAuthResponse:
        session = await self.new_session(ctx, request.region, request.account_name)
        response = await asyncio.to_thread(session.client("ecr").get_authorization_token)
        auth = response["authorizationData"][0]
        return GetContainerRegistryAuthResponse(
            url=auth["proxyEndpoint"], token=auth["authorizationToken"]
        )

    @operation("CreateContainerRegistryRepo")
    async def create_container_registry_repo(
        self, ctx: RequestContext, request: CreateContainerRegistryRepoRequest
    ) -> CreateContainerRegistryRepoResponse:
        if not request.name:
            raise InvalidInputError("repository name is required")
        session = await self.new_session(ctx, request.region, request.account_name)
        response = await asyncio.to_thread(
            session.client("ecr").create_repository,
            repositoryName=request.name,
            tags=_as_tags(build_tags(request.labels, ctx.config.env)),
        )
        repository = response["repository"]
        return CreateContainerRegistryRepoResponse(
            registry_id=repository["registryId"], url=repository["repositoryUri"]
        )

    @operation("PresignS3Url")
    async def presign_s3_url(
        self, ctx: RequestContext, request: PresignS3UrlRequest
    ) -> PresignS3UrlResponse:
        if not request.bucket or not request.file:
            raise InvalidInputError("bucket and file are required")
        minutes = request.timeout_in_minute or self.DEFAULT_PRESIGN_MINUTES

        session = await self.new_session(ctx, request.region, request.account_name)
        signed_url = await asyncio.to_thread(
            session.client("s3").generate_presigned_url,
            "get_object",
            Params={"Bucket": request.bucket, "Key": request.file.lstrip("/")},
            ExpiresIn=minutes * 60,
        )
        return PresignS3UrlResponse(signed_url=signed_url)

    # =================================================================
    # Route53
    # =================================================================

    @operation("AddRoute53Record")
    async def add_route53_record(
        self, ctx: RequestContext, request: AddRoute53RecordRequest
    ) -> AddRoute53RecordResponse:
        """Upsert ``record_name`` pointing at ``dns_name``.

        An IP address yields an A record, anything else a CNAME. A region
        identifier turns the record into a latency-routed one.
        """
        if not request.dns_name or not request.record_name:
            raise InvalidInputError("dns_name and record_name are required")

        record_set: dict[str, Any] = {
            "Name": request.record_name,
            "Type": "A" if _is_ip_address(request.dns_name) else "CNAME",
            "TTL": self.DEFAULT_RECORD_TTL,
            "ResourceRecords": [{"Value": request.dns_name}],
        }
        if request.region_identifier:
            record_set["SetIdentifier"] = request.region_identifier
            record_set["Region"] = request.region

        change_id = await self._change_record_sets(
            ctx, request, [{"Action": "UPSERT", "ResourceRecordSet": record_set}]
        )
        return AddRoute53RecordResponse(change_id=change_id)

    @operation("CreateRoute53Records")
    async def create_route53_records(
        self, ctx: RequestContext, request: CreateRoute53RecordsRequest
    ) -> CreateRoute53RecordsResponse:
        changes = self._record_changes("CREATE", request.records)
        change_id = await self._change_record_sets(ctx, request, changes)
        return CreateRoute53RecordsResponse(change_id=change_id)

    @operation("DeleteRoute53Records")
    async def delete_route53_records(
        self, ctx: RequestContext, request: DeleteRoute53RecordsRequest
    ) -> DeleteRoute53RecordsResponse:
        changes = self._record_changes("DELETE", request.records)
        change_id = await self._change_record_sets(ctx, request, changes)
        return DeleteRoute53RecordsResponse(change_id=change_id)

    @operation("GetRoute53TXTRecords")
    async def get_route53_txt_records(
        self, ctx: RequestContext, request: GetRoute53TXTRecordsRequest
    ) -> GetRoute53TXTRecordsResponse:
        zone_id = self._hosted_zone_id(ctx)
        session = await self._route53_session(ctx, request)
        record_sets = await asyncio.to_thread(
            _collect,
            session.client("route53", region=ROUTE53_REGION),
            "list_resource_record_sets",
            "ResourceRecordSets",
            HostedZoneId=zone_id,
        )
        records = [
            Route53ResourceRecordSet(
                type=record_set["Type"],
                name=record_set["Name"],
                ttl_in_seconds=record_set.get("TTL", self.DEFAULT_RECORD_TTL),
                resource_records=[
                    Route53ResourceRecord(value=_unquote_txt(record["Value"]))
                    for record in record_set.get("ResourceRecords", [])
                ],
            )
            for record_set in record_sets
            if record_set["Type"] == "TXT"
        ]
        return GetRoute53TXTRecordsResponse(records=records)

    # =================================================================
    # INTERNAL HELPERS
    # =================================================================

    async def _describe_cluster(self, eks, cluster_name: str) -> dict[str, Any]:
        if not cluster_name:
            raise InvalidInputError("cluster_name is required")
        response = await asyncio.to_thread(eks.describe_cluster, name=cluster_name)
        return response["cluster"]

    async def _describe_nodegroup(self, eks, cluster_name: str, name: str) -> dict[str, Any]:
        response = await asyncio.to_thread(
            eks.describe_nodegroup, clusterName=cluster_name, nodegroupName=name
        )
        return response["nodegroup"]

    async def _describe_volume(self, ec2, volume_id: str) -> dict[str, Any]:
        if not volume_id:
            raise InvalidInputError("volume_id is required")
        response = await asyncio.to_thread(ec2.describe_volumes, VolumeIds=[volume_id])
        volumes = response.get("Volumes", [])
        if not volumes:
            raise NotFoundError(f"volume '{volume_id}' not found")
        return volumes[0]

    async def _describe_snapshot(self, ec2, snapshot_id: str) -> dict[str, Any]:
        response = await asyncio.to_thread(ec2.describe_snapshots, SnapshotIds=[snapshot_id])
        snapshots = response.get("Snapshots", [])
        if not snapshots:
            raise NotFoundError(f"snapshot '{snapshot_id}' not found")
        return snapshots[0]

    async def _wait_for_snapshot(self, ctx: RequestContext, ec2, snapshot_id: str) -> None:
        await wait_for_completion(
            ctx,
            self._status_operation(
                f"snapshot {snapshot_id}",
                lambda: self._describe_snapshot(ec2, snapshot_id),
                ready="completed",
                failed={"error"},
                status_key="State",
            ),
        )

    def _status_operation(
        self, description, describe, ready: str, failed: set[str], status_key="status"
    ) -> PollingOperation:
        async def check() -> bool:
            status = (await describe()).get(status_key)
            if status in failed:
                raise ProviderError(f"{description} ended in status {status}")
            return status == ready

        return PollingOperation(description, check)

    def _deleted_operation(self, description, describe) -> PollingOperation:
        async def check() -> bool:
            try:
                await describe()
            except ClientError as e:
                if _error_code(e) == "ResourceNotFoundException":
                    return True
                raise
            return False

        return PollingOperation(description, check)

    async def _create_node_group(
        self,
        ctx: RequestContext,
        session: AwsSession,
        cluster_name: str,
        node_spec: NodeSpec,
        instance: str,
        subnet_ids: list[str],
    ) -> None:
        """Create a node group and wait until it is active."""
        eks = session.client("eks")
        config = ctx.config
        tags = node_labels(node_spec, config.env, instance)
        kube_labels = dict(tags)
        if wants_gpu_partition(node_spec):
            kube_labels[MIG_CONFIG_LABEL] = f"all-{mig_partition_size(node_spec.mig_profile)}"

        gpu = node_spec.gpu_enabled or is_gpu(node_spec.machine_type)
        instance_types = [instance]
        if node_spec.capacity_type == CapacityType.SPOT and node_spec.spot_instances:
            instance_types = list(node_spec.spot_instances)

        node_role = config.eks_node_role_arn or await asyncio.to_thread(
            self._get_role_arn, session.client("iam"), self.DEFAULT_NODE_ROLE_NAME
        )
        count = node_spec.node_count
        params: dict[str, Any] = {
            "clusterName": cluster_name,
            "nodegroupName": node_spec.name,
            "scalingConfig": {"minSize": count, "maxSize": count, "desiredSize": count},
            "subnets": subnet_ids,
            "instanceTypes": instance_types,
            "amiType": "AL2_x86_64_GPU" if gpu else "AL2_x86_64",
            "nodeRole": node_role,
            "labels": kube_labels,
            "tags": tags,
            "capacityType": node_spec.capacity_type.value,
        }
        if node_spec.disk_size:
            params["diskSize"] = node_spec.disk_size

        await asyncio.to_thread(eks.create_nodegroup, **params)
        ctx.logger.log_info(
            "AddNode",
            "node group creation started",
            cluster_name=cluster_name,
            node_group=node_spec.name,
            instance=instance,
        )
        await wait_for_completion(
            ctx,
            self._status_operation(
                f"node group {node_spec.name}",
                lambda: self._describe_nodegroup(eks, cluster_name, node_spec.name),
                ready="ACTIVE",
                failed={"CREATE_FAILED", "DEGRADED"},
            ),
        )

    async def _delete_node_group(
        self, ctx: RequestContext, eks, cluster_name: str, name: str
    ) -> None:
        await asyncio.to_thread(
            eks.delete_nodegroup, clusterName=cluster_name, nodegroupName=name
        )
        await wait_for_completion(
            ctx,
            self._deleted_operation(
                f"node group {name} deletion",
                lambda: self._describe_nodegroup(eks, cluster_name, name),
            ),
        )
        ctx.logger.log_info(
            "DeleteNode", "node group deleted", cluster_name=cluster_name, node_group=name
        )

    def _node_spec_from_nodegroup(self, nodegroup: dict[str, Any]) -> NodeSpec:
        instance_types = nodegroup.get("instanceTypes") or [""]
        # anything but SPOT, CAPACITY_BLOCK included, reports as ON_DEMAND
        spot = nodegroup.get("capacityType") == CapacityType.SPOT.value
        capacity_type = CapacityType.SPOT if spot else CapacityType.ON_DEMAND
        return NodeSpec(
            name=nodegroup["nodegroupName"],
            instance=instance_types[0],
            count=nodegroup.get("scalingConfig", {}).get("desiredSize", 0),
            disk_size=nodegroup.get("diskSize", 0),
            capacity_type=capacity_type,
            spot_instances=instance_types if capacity_type == CapacityType.SPOT else [],
            labels=nodegroup.get("labels", {}),
        )

    def _get_role_arn(self, iam, role_name: str) -> str:
        try:
            response = iam.get_role(RoleName=role_name)
        except ClientError as e:
            if _error_code(e) == "NoSuchEntity":
                raise ProviderError(
                    f"IAM role '{role_name}' not found, configure its ARN explicitly"
                ) from e
            raise
        return response["Role"]["Arn"]

    def _get_default_subnets(self, ec2) -> list[str]:
        vpcs = ec2.describe_vpcs(Filters=[{"Name": "isDefault", "Values": ["true"]}])
        if not vpcs["Vpcs"]:
            raise ProviderError("no default VPC found, configure EKS_SUBNET_IDS")

        vpc_id = vpcs["Vpcs"][0]["VpcId"]
        subnets = ec2.describe_subnets(Filters=[{"Name": "vpc-id", "Values": [vpc_id]}])
        subnet_ids = [subnet["SubnetId"] for subnet in subnets["Subnets"]]
        if not subnet_ids:
            raise ProviderError("no subnets found in default VPC, configure EKS_SUBNET_IDS")
        return subnet_ids

    def _availability_zone(self, request: CreateVolumeRequest) -> str:
        # A bare region means "any zone of that region".
        zone = request.availability_zone
        if not zone or zone == request.region:
            return f"{request.region}a"
        return zone

    async def _cost_and_usage(
        self, ctx: RequestContext, request: CostRequest, ids: list[str]
    ) -> list[dict[str, Any]]:
        if not ids:
            raise InvalidInputError("at least one id is required")
        if not request.group_by.key:
            raise InvalidInputError("group_by.key is required")

        session = await self.new_session(ctx, request.region, request.account_name)
        ce = session.client("ce", region=COST_EXPLORER_REGION)
        params: dict[str, Any] = {
            "TimePeriod": {"Start": request.start_date, "End": request.end_date},
            "Granularity": request.granularity,
            "Metrics": [request.cost_type],
            "Filter": {
                "Tags": {
                    "Key": request.group_by.key,
                    "Values": ids,
                    "MatchOptions": ["EQUALS"],
                }
            },
            "GroupBy": [{"Type": request.group_by.type, "Key": request.group_by.key}],
        }

        results: list[dict[str, Any]] = []
        while True:
            response = await asyncio.to_thread(ce.get_cost_and_usage, **params)
            results.extend(response.get("ResultsByTime", []))
            token = response.get("NextPageToken")
            if not token:
                return results
            params["NextPageToken"] = token

    async def _cost_totals(
        self, ctx: RequestContext, request: CostRequest, ids: list[str]
    ) -> tuple[float, dict[str, float]]:
        results = await self._cost_and_usage(ctx, request, ids)
        by_id: dict[str, float] = {}
        for result in results:
            for group in result.get("Groups", []):
                group_id = _cost_group_id(group.get("Keys", []))
                if not group_id:
                    continue
                amount = float(group["Metrics"][request.cost_type]["Amount"])
                by_id[group_id] = by_id.get(group_id, 0.0) + amount
        return sum(by_id.values()), by_id

    def _hosted_zone_id(self, ctx: RequestContext) -> str:
        zone_id = ctx.config.route53_hosted_zone_id
        if not zone_id:
            raise InvalidInputError("ROUTE53_HOSTED_ZONE_ID is not configured")
        return zone_id

    async def _route53_session(self, ctx: RequestContext, request) -> AwsSession:
        account_name = request.account_name or ctx.config.route53_account_name
        return await self.new_session(ctx, request.region or ROUTE53_REGION, account_name)

    def _record_changes(
        self, action: str, records: list[Route53ResourceRecordSet]
    ) -> list[dict[str, Any]]:
        if not records:
            raise InvalidInputError("at least one record is required")
        changes = []
        for record in records:
            quote = _quote_txt if record.type == "TXT" else str
            changes.append(
                {
                    "Action": action,
                    "ResourceRecordSet": {
                        "Name": record.name,
                        "Type": record.type,
                        "TTL": record.ttl_in_seconds,
                        "ResourceRecords": [
                            {"Value": quote(r.value)} for r in record.resource_records
                        ],
                    },
                }
            )
        return changes

    async def _change_record_sets(
        self, ctx: RequestContext, request, changes: list[dict[str, Any]]
    ) -> str:
        zone_id = self._hosted_zone_id(ctx)
        session = await self._route53_session(ctx, request)
        route53 = session.client("route53", region=ROUTE53_REGION)
        response = await asyncio.to_thread(
            route53.change_resource_record_sets,
            HostedZoneId=zone_id,
            ChangeBatch={"Changes": changes},
        )
        return response["ChangeInfo"]["Id"]
