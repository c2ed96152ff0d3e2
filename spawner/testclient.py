"""Command line harness that sends one canned request to a running spawner service."""

import argparse
import asyncio
import logging
import sys
from typing import Optional

import grpc

from .core_utils import LoggingUtility
from .exceptions import NotFoundError, SpawnerError
from .messages import (
    AddRoute53RecordRequest,
    AddTokenRequest,
    AwsCredentials,
    AzureCredentials,
    ClusterDeleteRequest,
    ClusterRequest,
    ClusterStatusRequest,
    CopySnapshotRequest,
    CreateContainerRegistryRepoRequest,
    CreateRoute53RecordsRequest,
    CreateSnapshotAndDeleteRequest,
    CreateSnapshotRequest,
    CreateVolumeRequest,
    DeleteRoute53RecordsRequest,
    DeleteSnapshotRequest,
    DeleteVolumeRequest,
    EchoRequest,
    Empty,
    GetApplicationsCostRequest,
    GetClusterRequest,
    GetClustersRequest,
    GetContainerRegistryAuthRequest,
    GetCostByTimeRequest,
    GetRoute53TXTRecordsRequest,
    GetTokenRequest,
    GetVolumeRequest,
    GetWorkspacesCostRequest,
    GitPatCredentials,
    GroupBy,
    Message,
    MigProfile,
    NodeDeleteRequest,
    NodeSpawnRequest,
    NodeSpec,
    PresignS3UrlRequest,
    RancherRegistrationRequest,
    ReadCredentialRequest,
    RegisterClusterOIDCRequest,
    Route53ResourceRecord,
    Route53ResourceRecordSet,
    TagNodeInstanceRequest,
    WriteCredentialRequest,
)
from .rpc import SpawnerClient

CLUSTER_NAME = "gcp-cluster-test-3"
REGION = "us-west-2"
PROVIDER = "aws"
NODE_NAME = "add-node-2"
INSTANCE = "e2-medium"
VOLUME_NAME = "vol-50-20220607164454"
ACCOUNT_NAME = "netbook-aws"
COST_ACCOUNT_NAME = "netbook-aws-dev"
TRACE_ID = "cafebabe-345678-xcvbn-345678-QWDFVBNJI"
WORKSPACE_IDS = [
    "d1411352-c14a-4a78-a1d6-44d4c199ba3a",
    "18638c97-7352-426e-a79e-241956188fed",
    "dceaf501-1775-4339-ba7b-ec6d98569d11",
]

logger = LoggingUtility()


def _txt_records() -> list[Route53ResourceRecordSet]:
    return [
        Route53ResourceRecordSet(
            type="TXT",
            name="ash1234.app.dev.netbook.ai",
            resource_records=[
                Route53ResourceRecord(value="test1"),
                Route53ResourceRecord(value="test2"),
            ],
            ttl_in_seconds=250,
        )
    ]


def canned_requests() -> dict[str, tuple[str, Message]]:
    """Harness method name -> (RPC operation, request)."""
    target = dict(provider=PROVIDER, region=REGION, account_name=ACCOUNT_NAME)
    cost = dict(
        provider="aws",
        account_name=COST_ACCOUNT_NAME,
        start_date="2022-04-01",
        end_date="2022-05-01",
        granularity="DAILY",
        group_by=GroupBy(type="TAG", key="workspaceid"),
    )
    add_node = NodeSpec(
        name=NODE_NAME,
        count=5,
        instance=INSTANCE,
        mig_profile=MigProfile.MIG3G,
        machine_type="m",
        spot_instances=["t2.small", "t3.small"],
        disk_size=20,
        labels={
            "cluster-name": CLUSTER_NAME,
            "node-name": NODE_NAME,
            "user": "dev-tester",
            "workspaceid": "dev-tester",
        },
    )

    return {
        "HealthCheck": ("HealthCheck", Empty()),
        "Echo": ("Echo", EchoRequest(msg="hello spawner")),
        "CreateCluster": (
            "CreateCluster",
            ClusterRequest(
                cluster_name=CLUSTER_NAME,
                node=NodeSpec(name=NODE_NAME, instance=INSTANCE, disk_size=30),
                labels={"user": "dev-tester"},
                **target,
            ),
        ),
        "GetCluster": ("GetCluster", GetClusterRequest(cluster_name=CLUSTER_NAME, **target)),
        "GetClusters": ("GetClusters", GetClustersRequest(**target)),
        "ClusterStatus": (
            "ClusterStatus", ClusterStatusRequest(cluster_name=CLUSTER_NAME, **target)
        ),
        "DeleteCluster": (
            "DeleteCluster",
            ClusterDeleteRequest(cluster_name=CLUSTER_NAME, force_delete=True, **target),
        ),
        "AddToken": ("AddToken", AddTokenRequest(cluster_name=CLUSTER_NAME, **target)),
        "GetToken": ("GetToken", GetTokenRequest(cluster_name=CLUSTER_NAME, **target)),
        "RegisterClusterOIDC": (
            "RegisterClusterOIDC",
            RegisterClusterOIDCRequest(cluster_name=CLUSTER_NAME, **target),
        ),
        "AddNode": (
            "AddNode", NodeSpawnRequest(cluster_name=CLUSTER_NAME, node_spec=add_node, **target)
        ),
        "DeleteNode": (
            "DeleteNode",
            NodeDeleteRequest(cluster_name=CLUSTER_NAME, node_group_name=NODE_NAME, **target),
        ),
        "AddTag": (
            "TagNodeInstance",
            TagNodeInstanceRequest(
                cluster_name=CLUSTER_NAME, labels={"label1": "valuelabel1"}, **target
            ),
        ),
        "CreateVolume": (
            "CreateVolume",
            CreateVolumeRequest(
                availability_zone=REGION, volume_type="gp2", size=50, **target
            ),
        ),
        "GetVolume": ("GetVolume", GetVolumeRequest(volume_id=VOLUME_NAME, **target)),
        "DeleteVolume": ("DeleteVolume", DeleteVolumeRequest(volume_id=VOLUME_NAME, **target)),
        "CreateSnapshot": (
            "CreateSnapshot", CreateSnapshotRequest(volume_id=VOLUME_NAME, **target)
        ),
        "DeleteSnapshot": (
            "DeleteSnapshot",
            DeleteSnapshotRequest(snapshot_id=f"{VOLUME_NAME}-snapshot", **target),
        ),
        "CreateSnapshotAndDelete": (
            "CreateSnapshotAndDelete",
            CreateSnapshotAndDeleteRequest(volume_id=VOLUME_NAME, **target),
        ),
        "CopySnapshot": (
            "CopySnapshot", CopySnapshotRequest(snapshot_id="snap-001c9501528bc1a33", **target)
        ),
        "RegisterWithRancher": (
            "RegisterWithRancher", RancherRegistrationRequest(cluster_name=CLUSTER_NAME)
        ),
        "GetWorkspacesCost": (
            "GetWorkspacesCost",
            GetWorkspacesCostRequest(
                workspace_ids=WORKSPACE_IDS, cost_type="BlendedCost", **cost
            ),
        ),
        "GetApplicationsCost": (
            "GetApplicationsCost",
            GetApplicationsCostRequest(
                application_ids=WORKSPACE_IDS, cost_type="BlendedCost", **cost
            ),
        ),
        "GetCostByTime": ("GetCostByTime", GetCostByTimeRequest(ids=WORKSPACE_IDS, **cost)),
        "ReadCredentialAws": (
            "ReadCredential", ReadCredentialRequest(account="alexis", type="aws")
        ),
        "WriteCredentialAws": (
            "WriteCredential",
            WriteCredentialRequest(
                account="alexis",
                type="aws",
                aws_cred=AwsCredentials(
                    access_key_id="access_id", secret_access_key="secret_key", token="token"
                ),
            ),
        ),
        "ReadCredentialAzure": (
            "ReadCredential", ReadCredentialRequest(account="netbook-azure-dev", type="azure")
        ),
        "WriteCredentialAzure": (
            "WriteCredential",
            WriteCredentialRequest(
                account="alex",
                type="azure",
                azure_cred=AzureCredentials(
                    subscription_id="subscription",
                    tenant_id="tenant_id",
                    client_id="client_id",
                    client_secret="client_secret",
                    resource_group="resource_group",
                ),
            ),
        ),
        "ReadCredentialGitPAT": (
            "ReadCredential", ReadCredentialRequest(account="nsp-dev", type="git-pat")
        ),
        "WriteCredentialGitPAT": (
            "WriteCredential",
            WriteCredentialRequest(
                account="nsp-dev",
                type="git-pat",
                git_pat=GitPatCredentials(token="this-is-a-placeholder-token"),
            ),
        ),
        "GetContainerRegistryAuth": (
            "GetContainerRegistryAuth", GetContainerRegistryAuthRequest(**target)
        ),
        "CreateContainerRegistryRepo": (
            "CreateContainerRegistryRepo",
            CreateContainerRegistryRepoRequest(name="nsp-test-2", **target),
        ),
        "PresignS3": (
            "PresignS3Url",
            PresignS3UrlRequest(
                region=REGION, account_name=ACCOUNT_NAME, bucket="nishanth-test", file="/hello.txt"
            ),
        ),
        "AddRoute53Record": (
            "AddRoute53Record",
            AddRoute53RecordRequest(
                dns_name="20.85.85.202",
                record_name="*.1117907260.eastus2.azure.app.dev.netbook.ai",
                provider=PROVIDER,
                account_name=ACCOUNT_NAME,
            ),
        ),
        "GetRoute53TXTRecords": ("GetRoute53TXTRecords", GetRoute53TXTRecordsRequest()),
        "CreateRoute53Records": (
            "CreateRoute53Records", CreateRoute53RecordsRequest(records=_txt_records())
        ),
        "DeleteRoute53Records": (
            "DeleteRoute53Records", DeleteRoute53RecordsRequest(records=_txt_records())
        ),
    }


async def delete_all_clusters_in_region(
    client: SpawnerClient, provider: str, region: str, account_name: str
) -> dict[str, Optional[Exception]]:
    """Delete every cluster in a region, one at a time.

    A failure on one cluster is logged and the loop moves on; the result maps
    each cluster name to its error, or None when it was deleted. A cluster that
    is already gone counts as deleted.
    """
    target = dict(provider=provider, region=region, account_name=account_name)
    listing = await client.call("GetClusters", GetClustersRequest(**target))
    names = [cluster.name for cluster in listing.clusters]
    logger.log_info("DeleteAllClustersInRegion", "deleting clusters", clusters=names, **target)

    results: dict[str, Optional[Exception]] = {}
    for name in names:
        request = ClusterDeleteRequest(cluster_name=name, force_delete=True, **target)
        try:
            await client.call("DeleteCluster", request)
        except NotFoundError as e:
            logger.log_warning("DeleteAllClustersInRegion", "already deleted", cluster=name, error=e)
            results[name] = None
        except SpawnerError as e:
            logger.log_error("DeleteAllClustersInRegion", e, cluster=name)
            results[name] = e
        else:
            logger.log_info("DeleteAllClustersInRegion", "deleted", cluster=name)
            results[name] = None

    logger.log_info("DeleteAllClustersInRegion", "done", **target)
    return results


def normalize_address(addr: str) -> str:
    """Accept ``:port`` shorthand for a local server."""
    if addr.startswith(":"):
        return f"localhost{addr}"
    return addr


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="spawner-testclient",
        description="Send one canned request to a spawner service",
    )
    parser.add_argument(
        "-grpc-addr", dest="grpc_addr", default=":8083", help="gRPC address of spawner"
    )
    parser.add_argument(
        "-method", dest="method", default="HealthCheck", help="default HealthCheck"
    )
    return parser.parse_args(argv)


async def run(grpc_addr: str, method: str) -> int:
    """Send the canned request for ``method``; return the process exit status."""
    requests = canned_requests()
    if method != "DeleteAllClustersInRegion" and method not in requests:
        logger.log_warning("testclient", "invalid method", method=method)
        return 1

    async with grpc.aio.insecure_channel(normalize_address(grpc_addr)) as channel:
        try:
            await asyncio.wait_for(channel.channel_ready(), timeout=1.0)
        except asyncio.TimeoutError:
            logger.log_warning("testclient", "error connecting to remote", addr=grpc_addr)
            return 1

        client = SpawnerClient(channel)
        if method == "DeleteAllClustersInRegion":
            try:
                results = await delete_all_clusters_in_region(
                    client, PROVIDER, REGION, ACCOUNT_NAME
                )
            except SpawnerError as e:
                logger.log_error(method, e)
                return 1
            return 1 if any(results.values()) else 0

        operation_name, request = requests[method]
        trace_id = TRACE_ID if operation_name == "ClusterStatus" else None
        try:
            response = await client.call(operation_name, request, trace_id=trace_id)
        except SpawnerError as e:
            logger.log_error(method, e)
            return 1

    print(response.model_dump_json(indent=2))
    return 0


def main(argv=None):
    """Entry point for spawner-testclient."""
    logging.basicConfig(level=logging.INFO)
    args = parse_args(argv)
    sys.exit(asyncio.run(run(args.grpc_addr, args.method)))


if __name__ == "__main__":
    main()
