"""Account credential storage backed by AWS Secrets Manager.

Secrets are centralised: every read and write goes to the secret-hosting
region, whatever region the caller's resources live in.
"""

import asyncio
import json
from typing import Optional, Protocol, Type

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel, ValidationError

from .config import Config
from .core_utils import RequestContext
from .exceptions import CredentialError, InvalidInputError, NotFoundError, ProviderError
from .labels import build_tags
from .messages import (
    AwsCredentials,
    AzureCredentials,
    GcpCredentials,
    GitPatCredentials,
)

AWS_CREDENTIAL = "aws"
AZURE_CREDENTIAL = "azure"
GCP_CREDENTIAL = "gcp"
GIT_PAT_CREDENTIAL = "git-pat"

CREDENTIAL_MODELS: dict[str, Type[BaseModel]] = {
    AWS_CREDENTIAL: AwsCredentials,
    AZURE_CREDENTIAL: AzureCredentials,
    GCP_CREDENTIAL: GcpCredentials,
    GIT_PAT_CREDENTIAL: GitPatCredentials,
}


class CredentialResolver(Protocol):
    """Fetch contract consumed by the session factories."""

    async def get_credentials(
        self, ctx: RequestContext, region: str, account_name: str, cred_type: str
    ) -> BaseModel: ...


def credential_model(cred_type: str) -> Type[BaseModel]:
    try:
        return CREDENTIAL_MODELS[cred_type]
    except KeyError:
        supported = ", ".join(CREDENTIAL_MODELS)
        raise InvalidInputError(
            f"unknown credential type '{cred_type}', supported types: {supported}"
        )


class SecretsManagerStore:
    """Reads and writes account credentials as JSON secrets."""

    def __init__(self, config: Config, session: Optional[boto3.Session] = None):
        self._config = config
        self._session = session or boto3.Session()

    def secret_id(self, account: str, cred_type: str) -> str:
        return f"{self._config.secret_prefix}/{cred_type}/{account}"

    def _client(self, region: str):
        return self._session.client("secretsmanager", region_name=region)

    async def read(self, region: str, account: str, cred_type: str) -> BaseModel:
        """Read the ``cred_type`` credentials of ``account``."""
        model = credential_model(cred_type)
        if not account:
            raise InvalidInputError("account is required")

        client = self._client(region)
        secret_id = self.secret_id(account, cred_type)
        try:
            response = await asyncio.to_thread(
                client.get_secret_value, SecretId=secret_id
            )
        except ClientError as e:
            if e.response["Error"]["Code"] == "ResourceNotFoundException":
                raise NotFoundError(
                    f"no {cred_type} credentials stored for account '{account}'"
                ) from e
            raise ProviderError(str(e)) from e
        except BotoCoreError as e:
            raise ProviderError(str(e)) from e

        try:
            return model.model_validate(json.loads(response["SecretString"]))
        except (KeyError, ValueError, ValidationError) as e:
            raise CredentialError(
                f"stored {cred_type} credentials for account '{account}' are malformed"
            ) from e

    async def write(
        self, region: str, account: str, cred_type: str, credentials: BaseModel
    ) -> None:
        """Create or replace the ``cred_type`` credentials of ``account``."""
        credential_model(cred_type)
        if not account:
            raise InvalidInputError("account is required")

        client = self._client(region)
        secret_id = self.secret_id(account, cred_type)
        payload = credentials.model_dump_json()
        try:
            await asyncio.to_thread(
                client.put_secret_value, SecretId=secret_id, SecretString=payload
            )
            return
        except ClientError as e:
            if e.response["Error"]["Code"] != "ResourceNotFoundException":
                raise ProviderError(str(e)) from e
        except BotoCoreError as e:
            raise ProviderError(str(e)) from e

        tags = [
            {"Key": k, "Value": v}
            for k, v in build_tags({"account": account}, self._config.env).items()
        ]
        try:
            await asyncio.to_thread(
                client.create_secret, Name=secret_id, SecretString=payload, Tags=tags
            )
        except (ClientError, BotoCoreError) as e:
            raise ProviderError(str(e)) from e

    async def get_credentials(
        self, ctx: RequestContext, region: str, account_name: str, cred_type: str
    ) -> BaseModel:
        """Resolve credentials for a session; every failure is a CredentialError."""
        try:
            return await self.read(region, account_name, cred_type)
        except CredentialError:
            raise
        except (NotFoundError, ProviderError, InvalidInputError) as e:
            raise CredentialError(
                f"unable to fetch {cred_type} credentials for account '{account_name}': {e}"
            ) from e
