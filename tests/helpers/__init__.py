"""Test helpers package for spawner service tests."""

from .fixtures import (
    aws_session,
    client_error,
    paginator,
    session_factory,
)
from .utils import make_config, make_context, make_service_context

__all__ = [
    # Fakes
    "aws_session",
    "client_error",
    "paginator",
    "session_factory",
    # Contexts
    "make_config",
    "make_context",
    "make_service_context",
]
