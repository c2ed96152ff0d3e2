"""Context builders shared by the unit tests."""

from typing import Optional

from spawner.config import Config
from spawner.core_utils import RequestContext, ServiceContext


def make_config(**overrides) -> Config:
    """Config for tests: no polling delay, a stable environment name."""
    values = {"env": "test", "poll_interval_seconds": 0}
    values.update(overrides)
    return Config(**values)


def make_service_context(config: Optional[Config] = None) -> ServiceContext:
    return ServiceContext(config=config or make_config())


def make_context(
    service: Optional[ServiceContext] = None,
    timeout: Optional[float] = None,
    **config_overrides,
) -> RequestContext:
    if service is None:
        service = make_service_context(make_config(**config_overrides))
    return RequestContext.with_timeout(service, timeout)
