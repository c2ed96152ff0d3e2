"""Spawner service configuration for cloud providers and the RPC server."""

from dataclasses import dataclass, field
import json
import os
from typing import Optional


def _extract_project_id_from_service_account(path: Optional[str]) -> Optional[str]:
    """Extract project ID from service account JSON file."""
    if not path:
        return None

    try:
        with open(path, "r") as f:
            credentials_data = json.load(f)
            return credentials_data.get("project_id")
    except (FileNotFoundError, json.JSONDecodeError, KeyError):
        return None


def _split_csv(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass(frozen=True)
class Config:
    """Configuration for the spawner service.

    Values are read once at process start and never mutated afterwards.
    """

    # Service settings
    env: str = "dev"
    grpc_port: int = 8083
    log_level: str = "INFO"
    poll_interval_seconds: float = 10.0

    # Secret store settings
    secret_host_region: str = "us-west-2"
    secret_prefix: str = "spawner"

    # AWS settings (local mode only)
    aws_access_key_id: str = ""
    aws_secret_access_key: str = ""
    aws_session_token: str = ""
    aws_profile: str = "default"

    # EKS settings
    kubernetes_version: str = "1.27"
    eks_cluster_role_arn: str = ""
    eks_node_role_arn: str = ""
    eks_subnet_ids: list[str] = field(default_factory=list)

    # Route53 settings
    route53_hosted_zone_id: str = ""
    route53_account_name: str = ""

    # GCP settings (local mode only)
    gcp_project_id: Optional[str] = None
    gcp_service_account_file: Optional[str] = None

    # Azure settings (local mode only)
    azure_subscription_id: str = ""
    azure_tenant_id: str = ""
    azure_client_id: str = ""
    azure_client_secret: str = ""
    azure_resource_group: str = ""

    # Rancher settings
    rancher_addr: str = ""
    rancher_token: str = ""

    @property
    def is_local(self) -> bool:
        return self.env == "local"

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        service_account_file = os.getenv("GOOGLE_APPLICATION_CREDENTIALS")
        return cls(
            env=os.getenv("SPAWNER_ENV", "dev"),
            grpc_port=int(os.getenv("SPAWNER_GRPC_PORT", "8083")),
            log_level=os.getenv("SPAWNER_LOG_LEVEL", "INFO"),
            poll_interval_seconds=float(os.getenv("SPAWNER_POLL_INTERVAL", "10")),
            secret_host_region=os.getenv("SECRET_HOST_REGION", "us-west-2"),
            secret_prefix=os.getenv("SPAWNER_SECRET_PREFIX", "spawner"),
            aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID", ""),
            aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY", ""),
            aws_session_token=os.getenv("AWS_SESSION_TOKEN", ""),
            aws_profile=os.getenv("AWS_PROFILE", "default"),
            kubernetes_version=os.getenv("KUBERNETES_VERSION", "1.27"),
            eks_cluster_role_arn=os.getenv("EKS_CLUSTER_ROLE_ARN", ""),
            eks_node_role_arn=os.getenv("EKS_NODE_ROLE_ARN", ""),
            eks_subnet_ids=_split_csv(os.getenv("EKS_SUBNET_IDS")),
            route53_hosted_zone_id=os.getenv("ROUTE53_HOSTED_ZONE_ID", ""),
            route53_account_name=os.getenv("ROUTE53_ACCOUNT_NAME", ""),
            gcp_project_id=os.getenv("GOOGLE_CLOUD_PROJECT")
            or _extract_project_id_from_service_account(service_account_file),
            gcp_service_account_file=service_account_file,
            azure_subscription_id=os.getenv("AZURE_SUBSCRIPTION_ID", ""),
            azure_tenant_id=os.getenv("AZURE_TENANT_ID", ""),
            azure_client_id=os.getenv("AZURE_CLIENT_ID", ""),
            azure_client_secret=os.getenv("AZURE_CLIENT_SECRET", ""),
            azure_resource_group=os.getenv("AZURE_RESOURCE_GROUP", ""),
            rancher_addr=os.getenv("RANCHER_ADDR", ""),
            rancher_token=os.getenv("RANCHER_TOKEN", ""),
        )
