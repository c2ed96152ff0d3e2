"""Fake provider sessions and SDK errors."""

from unittest.mock import AsyncMock, Mock

from botocore.exceptions import ClientError


def client_error(code: str, operation_name: str = "Operation", message: str = "") -> ClientError:
    """A botocore ClientError carrying ``code``."""
    return ClientError(
        {"Error": {"Code": code, "Message": message or code}}, operation_name
    )


def paginator(key: str, *pages: list) -> Mock:
    """Paginator mock yielding one page per list in ``pages``."""
    mock = Mock()
    mock.paginate.return_value = [{key: items} for items in pages]
    return mock


def aws_session(clients: dict, region: str = "us-west-2") -> Mock:
    """AwsSession stand-in handing out the given per-service client mocks."""
    session = Mock()
    session.region = region
    session.client.side_effect = lambda service, region=None: clients[service]
    return session


def session_factory(session=None) -> Mock:
    """Session factory whose ``new_session`` returns ``session``."""
    factory = Mock()
    factory.new_session = AsyncMock(return_value=session)
    return factory
