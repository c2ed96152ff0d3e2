"""Authenticated provider sessions and the factories that build them.

In local mode credentials come from the process configuration. Elsewhere
they are fetched from the secret store in the secret-hosting region.
"""

from abc import ABC, abstractmethod
import asyncio
import base64
from typing import Optional

from azure.core.exceptions import ClientAuthenticationError
from azure.identity import ClientSecretCredential
from azure.mgmt.compute import ComputeManagementClient
from azure.mgmt.containerservice import ContainerServiceClient
from azure.mgmt.costmanagement import CostManagementClient
import boto3
from botocore.exceptions import BotoCoreError, ProfileNotFound
from botocore.signers import RequestSigner
from google.auth import default as google_auth_default
from google.auth.exceptions import DefaultCredentialsError, GoogleAuthError
from google.auth.transport import requests as google_auth_transport
from google.cloud import compute_v1, container_v1
from google.oauth2 import service_account

from ..core_utils import CloudProvider, RequestContext
from ..credentials import (
    AWS_CREDENTIAL,
    AZURE_CREDENTIAL,
    GCP_CREDENTIAL,
    CredentialResolver,
)
from ..exceptions import CredentialError, InvalidInputError

EKS_TOKEN_PREFIX = "k8s-aws-v1."
EKS_TOKEN_EXPIRY_SECONDS = 60
GCP_SCOPES = ["https://www.googleapis.com/auth/cloud-platform"]


# =============================================================================
# SESSIONS
# =============================================================================


class AwsSession:
    """A boto3 session pinned to one region and account."""

    provider = CloudProvider.AWS

    def __init__(self, session: boto3.Session, region: str, account_name: str = ""):
        self.session = session
        self.region = region
        self.account_name = account_name

    def client(self, service: str, region: Optional[str] = None):
        return self.session.client(service, region_name=region or self.region)

    def get_account_id(self) -> str:
        identity = self.client("sts").get_caller_identity()
        return identity["Account"]

    def get_eks_token(self, cluster_name: str) -> str:
        """Bearer token for an EKS cluster's API server.

        The token is a presigned STS GetCallerIdentity URL carrying the
        cluster name in the ``x-k8s-aws-id`` header.
        """
        sts_client = self.client("sts")
        signer = RequestSigner(
            sts_client.meta.service_model.service_id,
            self.region,
            "sts",
            "v4",
            self.session.get_credentials(),
            self.session.events,
        )
        params = {
            "method": "GET",
            "url": f"https://sts.{self.region}.amazonaws.com/"
            "?Action=GetCallerIdentity&Version=2011-06-15",
            "body": {},
            "headers": {"x-k8s-aws-id": cluster_name},
            "context": {},
        }
        signed_url = signer.generate_presigned_url(
            params,
            region_name=self.region,
            expires_in=EKS_TOKEN_EXPIRY_SECONDS,
            operation_name="",
        )
        encoded = base64.urlsafe_b64encode(signed_url.encode("utf-8")).decode("utf-8")
        return EKS_TOKEN_PREFIX + encoded.rstrip("=")


class GcpSession:
    """Google credentials and the project they act on."""

    provider = CloudProvider.GCP

    def __init__(self, credentials, project_id: str, region: str):
        self.credentials = credentials
        self.project_id = project_id
        self.region = region

    def cluster_manager(self) -> container_v1.ClusterManagerClient:
        return container_v1.ClusterManagerClient(credentials=self.credentials)

    def disks(self) -> compute_v1.DisksClient:
        return compute_v1.DisksClient(credentials=self.credentials)

    def snapshots(self) -> compute_v1.SnapshotsClient:
        return compute_v1.SnapshotsClient(credentials=self.credentials)

    def instances(self) -> compute_v1.InstancesClient:
        return compute_v1.InstancesClient(credentials=self.credentials)

    def instance_group_managers(self) -> compute_v1.InstanceGroupManagersClient:
        return compute_v1.InstanceGroupManagersClient(credentials=self.credentials)

    def access_token(self) -> str:
        """Refresh the credentials and return an OAuth2 access token."""
        self.credentials.refresh(google_auth_transport.Request())
        return self.credentials.token


class AzureSession:
    """Azure service-principal credentials scoped to a subscription."""

    provider = CloudProvider.AZURE

    def __init__(
        self,
        credential: ClientSecretCredential,
        subscription_id: str,
        resource_group: str,
        region: str,
    ):
        self.credential = credential
        self.subscription_id = subscription_id
        self.resource_group = resource_group
        self.region = region

    def container_service(self) -> ContainerServiceClient:
        return ContainerServiceClient(self.credential, self.subscription_id)

    def compute(self) -> ComputeManagementClient:
        return ComputeManagementClient(self.credential, self.subscription_id)

    def cost_management(self) -> CostManagementClient:
        return CostManagementClient(self.credential)

    @property
    def scope(self) -> str:
        return f"/subscriptions/{self.subscription_id}"


# =============================================================================
# FACTORIES
# =============================================================================


class SessionFactory(ABC):
    """Builds an authenticated session for a (region, account) pair."""

    credential_type = ""

    def __init__(self, resolver: Optional[CredentialResolver] = None):
        self._resolver = resolver

    async def new_session(self, ctx: RequestContext, region: str, account_name: str):
        if not region:
            raise InvalidInputError("region is required")

        if ctx.config.is_local:
            return await asyncio.to_thread(self._local_session, ctx, region)

        if self._resolver is None:
            raise CredentialError("no credential resolver configured")
        credentials = await self._resolver.get_credentials(
            ctx, ctx.config.secret_host_region, account_name, self.credential_type
        )
        return await asyncio.to_thread(
            self._resolved_session, ctx, region, account_name, credentials
        )

    @abstractmethod
    def _local_session(self, ctx: RequestContext, region: str):
        """Session from the ambient credential chain."""

    @abstractmethod
    def _resolved_session(self, ctx, region, account_name, credentials):
        """Session from credentials read out of the secret store."""



class AwsSessionFactory(SessionFactory):
    credential_type = AWS_CREDENTIAL

    def _local_session(self, ctx: RequestContext, region: str) -> AwsSession:
        config = ctx.config
        try:
            if config.aws_access_key_id:
                session = boto3.Session(
                    aws_access_key_id=config.aws_access_key_id,
                    aws_secret_access_key=config.aws_secret_access_key,
                    aws_session_token=config.aws_session_token or None,
                    region_name=region,
                )
            else:
                session = boto3.Session(profile_name=config.aws_profile, region_name=region)
        except (ProfileNotFound, BotoCoreError) as e:
            raise CredentialError(f"unable to create AWS session: {e}") from e

        if session.get_credentials() is None:
            raise CredentialError(
                f"no AWS credentials found for profile '{config.aws_profile}'"
            )
        return AwsSession(session, region)

    def _resolved_session(self, ctx, region, account_name, credentials) -> AwsSession:
        session = boto3.Session(
            aws_access_key_id=credentials.access_key_id,
            aws_secret_access_key=credentials.secret_access_key,
            aws_session_token=credentials.token or None,
            region_name=region,
        )
        return AwsSession(session, region, account_name)


class GcpSessionFactory(SessionFactory):
    credential_type = GCP_CREDENTIAL

    def _local_session(self, ctx: RequestContext, region: str) -> GcpSession:
        config = ctx.config
        try:
            if config.gcp_service_account_file:
                credentials = service_account.Credentials.from_service_account_file(
                    config.gcp_service_account_file, scopes=GCP_SCOPES
                )
                project_id = config.gcp_project_id or credentials.project_id
            else:
                credentials, project_id = google_auth_default(scopes=GCP_SCOPES)
                project_id = config.gcp_project_id or project_id
        except (DefaultCredentialsError, GoogleAuthError, OSError, ValueError) as e:
            raise CredentialError(f"unable to load GCP credentials: {e}") from e

        if not project_id:
            raise CredentialError("GCP project id is not configured")
        return GcpSession(credentials, project_id, region)

    def _resolved_session(self, ctx, region, account_name, credentials) -> GcpSession:
        try:
            google_credentials = service_account.Credentials.from_service_account_info(
                credentials.service_account, scopes=GCP_SCOPES
            )
        except (GoogleAuthError, ValueError) as e:
            raise CredentialError(
                f"invalid GCP service account for account '{account_name}': {e}"
            ) from e
        return GcpSession(google_credentials, credentials.project_id, region)


class AzureSessionFactory(SessionFactory):
    credential_type = AZURE_CREDENTIAL

    def _local_session(self, ctx: RequestContext, region: str) -> AzureSession:
        config = ctx.config
        required = {
            "AZURE_SUBSCRIPTION_ID": config.azure_subscription_id,
            "AZURE_TENANT_ID": config.azure_tenant_id,
            "AZURE_CLIENT_ID": config.azure_client_id,
            "AZURE_CLIENT_SECRET": config.azure_client_secret,
            "AZURE_RESOURCE_GROUP": config.azure_resource_group,
        }
        missing = [name for name, value in required.items() if not value]
        if missing:
            raise CredentialError(f"missing Azure settings: {', '.join(missing)}")

        return self._build(
            config.azure_tenant_id,
            config.azure_client_id,
            config.azure_client_secret,
            config.azure_subscription_id,
            config.azure_resource_group,
            region,
        )

    def _resolved_session(self, ctx, region, account_name, credentials) -> AzureSession:
        return self._build(
            credentials.tenant_id,
            credentials.client_id,
            credentials.client_secret,
            credentials.subscription_id,
            credentials.resource_group,
            region,
        )

    @staticmethod
    def _build(
        tenant_id, client_id, client_secret, subscription_id, resource_group, region
    ) -> AzureSession:
        try:
            credential = ClientSecretCredential(tenant_id, client_id, client_secret)
        except (ClientAuthenticationError, ValueError) as e:
            raise CredentialError(f"unable to create Azure credential: {e}") from e
        return AzureSession(credential, subscription_id, resource_group, region)
