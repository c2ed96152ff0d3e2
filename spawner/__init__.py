"""Spawner Service - one gRPC control plane over EKS, GKE and AKS.

This package exposes a provider-neutral API for Kubernetes clusters, node
groups, block volumes and snapshots, container registries, DNS records and
cost reports. Each request names a provider; the service routes it to the
matching adapter, which translates it into that cloud's native calls.

Key Features:
    - Cluster Management: Create, inspect, tag and delete managed clusters
    - Node Management: Add and remove node groups, including spot and GPU pools
    - Storage: Volumes, snapshots and cross-region snapshot copies
    - Account Services: Credential store proxy, cost queries, DNS, registries

Environment Variables:
    - SPAWNER_ENV: "local" builds sessions from ambient credentials, any other
      value resolves per-account credentials from the secret store
    - SPAWNER_GRPC_PORT: Port the gRPC server listens on (default 8083)
    - SECRET_HOST_REGION: Region of the secret store

Dependencies:
    - boto3, google-cloud-*, azure-mgmt-*: Provider SDKs
    - kubernetes: Service-account token minting
    - grpcio: RPC transport
"""

# Get version dynamically from package metadata
from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("spawner-service")
except PackageNotFoundError:
    # Fallback when package not installed (e.g., development mode)
    __version__ = "dev"
