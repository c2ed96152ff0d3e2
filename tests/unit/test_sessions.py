"""Unit tests for operation polling and session factories."""

from unittest.mock import AsyncMock, Mock, patch

import pytest

from spawner.cloud.operations import PollingOperation, wait_for_completion
from spawner.cloud.sessions import (
    AwsSession,
    AwsSessionFactory,
    AzureSessionFactory,
    GcpSessionFactory,
    SessionFactory,
)
from spawner.exceptions import CredentialError, InvalidInputError, ProviderError
from spawner.messages import AwsCredentials
from tests.helpers import make_context


class FakeOperation:
    """Completes on the n-th poll."""

    def __init__(self, polls_needed: int):
        self.description = "fake operation"
        self.polls_needed = polls_needed
        self.polls = 0

    async def poll(self) -> bool:
        self.polls += 1
        return self.polls >= self.polls_needed


@pytest.mark.unit
class TestWaitForCompletion:
    """Test the long-running operation poller."""

    @pytest.mark.asyncio
    async def test_completes_after_n_polls(self):
        operation = FakeOperation(polls_needed=3)
        polls = await wait_for_completion(make_context(), operation, interval=0)

        assert polls == 3
        assert operation.polls == 3

    @pytest.mark.asyncio
    async def test_deadline_exceeded(self):
        ctx = make_context(timeout=0)
        operation = FakeOperation(polls_needed=100)

        with pytest.raises(ProviderError, match="deadline exceeded after 1 polls"):
            await wait_for_completion(ctx, operation, interval=0)
        assert operation.polls == 1

    @pytest.mark.asyncio
    async def test_completed_operation_ignores_deadline(self):
        ctx = make_context(timeout=0)
        assert await wait_for_completion(ctx, FakeOperation(polls_needed=1)) == 1

    @pytest.mark.asyncio
    async def test_poll_errors_propagate(self):
        check = AsyncMock(side_effect=ProviderError("node group ended in status DEGRADED"))
        with pytest.raises(ProviderError, match="DEGRADED"):
            await wait_for_completion(
                make_context(), PollingOperation("node group", check), interval=0
            )

    @pytest.mark.asyncio
    async def test_uses_configured_interval(self):
        ctx = make_context(poll_interval_seconds=0.0)
        check = AsyncMock(side_effect=[False, True])
        assert await wait_for_completion(ctx, PollingOperation("op", check)) == 2


@pytest.mark.unit
class TestSessionFactoryBase:
    """Test the abstract session factory."""

    def test_cannot_instantiate_base(self):
        with pytest.raises(TypeError):
            SessionFactory()

    def test_subclass_must_build_both_session_kinds(self):
        class LocalOnlyFactory(SessionFactory):
            def _local_session(self, ctx, region):
                return Mock()

        with pytest.raises(TypeError):
            LocalOnlyFactory()

    @pytest.mark.parametrize(
        "factory_class", [AwsSessionFactory, GcpSessionFactory, AzureSessionFactory]
    )
    def test_provider_factories_are_concrete(self, factory_class):
        assert isinstance(factory_class(), SessionFactory)


@pytest.mark.unit
class TestAwsSessionFactory:
    """Test AWS session construction."""

    @pytest.mark.asyncio
    async def test_empty_region_is_invalid(self):
        factory = AwsSessionFactory()
        with pytest.raises(InvalidInputError, match="region is required"):
            await factory.new_session(make_context(env="local"), "", "acct")

    @pytest.mark.asyncio
    @patch("spawner.cloud.sessions.boto3")
    async def test_local_static_keys(self, mock_boto3):
        ctx = make_context(
            env="local", aws_access_key_id="AKIA123", aws_secret_access_key="secret"
        )
        mock_boto3.Session.return_value.get_credentials.return_value = Mock()

        session = await AwsSessionFactory().new_session(ctx, "eu-west-1", "acct")

        assert isinstance(session, AwsSession)
        assert session.region == "eu-west-1"
        mock_boto3.Session.assert_called_once_with(
            aws_access_key_id="AKIA123",
            aws_secret_access_key="secret",
            aws_session_token=None,
            region_name="eu-west-1",
        )

    @pytest.mark.asyncio
    @patch("spawner.cloud.sessions.boto3")
    async def test_local_profile_without_credentials(self, mock_boto3):
        ctx = make_context(env="local", aws_profile="missing")
        mock_boto3.Session.return_value.get_credentials.return_value = None

        with pytest.raises(CredentialError, match="missing"):
            await AwsSessionFactory().new_session(ctx, "us-west-2", "acct")
        mock_boto3.Session.assert_called_once_with(
            profile_name="missing", region_name="us-west-2"
        )

    @pytest.mark.asyncio
    @patch("spawner.cloud.sessions.boto3")
    async def test_resolver_reads_from_secret_host_region(self, mock_boto3):
        ctx = make_context(env="dev", secret_host_region="us-east-2")
        resolver = Mock()
        resolver.get_credentials = AsyncMock(
            return_value=AwsCredentials(access_key_id="id", secret_access_key="key")
        )

        session = await AwsSessionFactory(resolver).new_session(ctx, "ap-south-1", "team-a")

        resolver.get_credentials.assert_awaited_once_with(ctx, "us-east-2", "team-a", "aws")
        assert session.region == "ap-south-1"
        assert session.account_name == "team-a"
        mock_boto3.Session.assert_called_once_with(
            aws_access_key_id="id",
            aws_secret_access_key="key",
            aws_session_token=None,
            region_name="ap-south-1",
        )

    @pytest.mark.asyncio
    async def test_missing_resolver_outside_local_mode(self):
        with pytest.raises(CredentialError):
            await AwsSessionFactory().new_session(make_context(env="dev"), "us-west-2", "a")

    def test_client_defaults_to_session_region(self):
        boto_session = Mock()
        session = AwsSession(boto_session, "us-west-2")

        session.client("ec2")
        session.client("ce", region="us-east-1")

        boto_session.client.assert_any_call("ec2", region_name="us-west-2")
        boto_session.client.assert_any_call("ce", region_name="us-east-1")


@pytest.mark.unit
class TestGcpAndAzureSessionFactories:
    """Test GCP and Azure session construction in local mode."""

    @pytest.mark.asyncio
    @patch("spawner.cloud.sessions.google_auth_default")
    async def test_gcp_default_credentials(self, mock_default):
        credentials = Mock()
        mock_default.return_value = (credentials, "adc-project")

        session = await GcpSessionFactory().new_session(
            make_context(env="local"), "us-central1", "acct"
        )

        assert session.project_id == "adc-project"
        assert session.credentials is credentials
        assert session.region == "us-central1"

    @pytest.mark.asyncio
    @patch("spawner.cloud.sessions.google_auth_default")
    async def test_gcp_without_project(self, mock_default):
        mock_default.return_value = (Mock(), None)
        with pytest.raises(CredentialError, match="project id"):
            await GcpSessionFactory().new_session(
                make_context(env="local"), "us-central1", "acct"
            )

    @pytest.mark.asyncio
    async def test_azure_missing_settings(self):
        ctx = make_context(env="local", azure_subscription_id="sub")
        with pytest.raises(CredentialError, match="AZURE_TENANT_ID"):
            await AzureSessionFactory().new_session(ctx, "eastus2", "acct")

    @pytest.mark.asyncio
    @patch("spawner.cloud.sessions.ClientSecretCredential")
    async def test_azure_local_session(self, mock_credential):
        ctx = make_context(
            env="local",
            azure_subscription_id="sub",
            azure_tenant_id="tenant",
            azure_client_id="client",
            azure_client_secret="secret",
            azure_resource_group="rg",
        )

        session = await AzureSessionFactory().new_session(ctx, "eastus2", "acct")

        mock_credential.assert_called_once_with("tenant", "client", "secret")
        assert session.resource_group == "rg"
        assert session.scope == "/subscriptions/sub"
