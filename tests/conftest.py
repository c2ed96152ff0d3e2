"""Pytest configuration and fixtures for spawner service tests."""

import pytest

from tests.helpers import make_config, make_service_context


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: mark test as fully mocked unit test")
    config.addinivalue_line("markers", "fast: mark test as fast running")
    config.addinivalue_line("markers", "aws: mark test as exercising the AWS adapter")
    config.addinivalue_line("markers", "gcp: mark test as exercising the GCP adapter")
    config.addinivalue_line("markers", "azure: mark test as exercising the Azure adapter")


@pytest.fixture
def config():
    """Configuration with polling disabled."""
    return make_config()


@pytest.fixture
def service(config):
    """Process-wide service context."""
    return make_service_context(config)
