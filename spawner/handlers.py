"""Handlers for the operations that are not routed to a cloud provider."""

import aiohttp

from .core_utils import RequestContext
from .credentials import (
    AWS_CREDENTIAL,
    AZURE_CREDENTIAL,
    GCP_CREDENTIAL,
    GIT_PAT_CREDENTIAL,
    SecretsManagerStore,
    credential_model,
)
from .exceptions import InvalidInputError, NotFoundError, ProviderError
from .labels import build_tags
from .messages import (
    EchoRequest,
    EchoResponse,
    Empty,
    HealthCheckResponse,
    RancherRegistrationRequest,
    RancherRegistrationResponse,
    ReadCredentialRequest,
    ReadCredentialResponse,
    WriteCredentialRequest,
    WriteCredentialResponse,
)
from .rancher import RancherAPIError, RancherClient

# Credential type -> field of ReadCredentialResponse / WriteCredentialRequest
CREDENTIAL_FIELDS = {
    AWS_CREDENTIAL: "aws_cred",
    AZURE_CREDENTIAL: "azure_cred",
    GCP_CREDENTIAL: "gcp_cred",
    GIT_PAT_CREDENTIAL: "git_pat",
}


class ServiceHandlers:
    """Health, echo, secret store proxy and Rancher registration."""

    def __init__(self, credential_store: SecretsManagerStore, rancher_client=RancherClient):
        self.credential_store = credential_store
        self._rancher_client = rancher_client

    async def health_check(self, ctx: RequestContext, request: Empty) -> HealthCheckResponse:
        return HealthCheckResponse()

    async def echo(self, ctx: RequestContext, request: EchoRequest) -> EchoResponse:
        return EchoResponse(msg=request.msg)

    async def read_credential(
        self, ctx: RequestContext, request: ReadCredentialRequest
    ) -> ReadCredentialResponse:
        """Read account credentials from the secret store."""
        credentials = await self.credential_store.read(
            ctx.config.secret_host_region, request.account, request.type
        )
        return ReadCredentialResponse(
            account=request.account,
            type=request.type,
            **{CREDENTIAL_FIELDS[request.type]: credentials},
        )

    async def write_credential(
        self, ctx: RequestContext, request: WriteCredentialRequest
    ) -> WriteCredentialResponse:
        """Write account credentials to the secret store."""
        credential_model(request.type)
        credentials = getattr(request, CREDENTIAL_FIELDS[request.type])
        if credentials is None:
            raise InvalidInputError(
                f"{CREDENTIAL_FIELDS[request.type]} is required for type '{request.type}'"
            )
        await self.credential_store.write(
            ctx.config.secret_host_region, request.account, request.type, credentials
        )
        return WriteCredentialResponse()

    async def register_with_rancher(
        self, ctx: RequestContext, request: RancherRegistrationRequest
    ) -> RancherRegistrationResponse:
        """Create an imported cluster in Rancher and return its manifest URL."""
        config = ctx.config
        if not request.cluster_name:
            raise InvalidInputError("cluster_name is required")
        if not config.rancher_addr or not config.rancher_token:
            raise InvalidInputError("RANCHER_ADDR and RANCHER_TOKEN must be configured")

        try:
            async with self._rancher_client(config.rancher_addr, config.rancher_token) as rancher:
                cluster = await rancher.create_imported_cluster(
                    request.cluster_name, build_tags(None, config.env)
                )
                token = await rancher.create_registration_token(cluster["id"])
        except RancherAPIError as e:
            if e.status_code == 404:
                raise NotFoundError(str(e)) from e
            raise ProviderError(str(e)) from e
        except aiohttp.ClientError as e:
            raise ProviderError(f"Rancher request failed: {e}") from e

        return RancherRegistrationResponse(
            cluster_id=cluster["id"],
            cluster_name=request.cluster_name,
            manifest_url=token.get("manifestUrl", ""),
        )
