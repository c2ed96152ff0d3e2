"""Core utilities for the spawner service - enums, logging and call contexts."""

from dataclasses import dataclass, field
from enum import Enum
import logging
import threading
import time
from typing import Any, Optional

from .config import Config

logger = logging.getLogger("spawner")


# =============================================================================
# ENUMS
# =============================================================================


class CloudProvider(Enum):
    """Supported cloud providers."""

    AWS = "aws"
    GCP = "gcp"
    AZURE = "azure"

    @classmethod
    def parse(cls, value: str) -> "CloudProvider":
        """Parse a provider identifier, case-insensitively."""
        return cls(value.strip().lower())


class ClusterStatus(str, Enum):
    """Neutral cluster status."""

    ACTIVE = "Active"
    INACTIVE = "Inactive"


# =============================================================================
# LOGGING UTILITIES
# =============================================================================


def _format_fields(fields: dict[str, Any]) -> str:
    return " ".join(f"{key}={value}" for key, value in fields.items())


class LoggingUtility:
    """Simple structured logging utility.

    Lines render as ``operation: message key=value ...``.
    """

    def __init__(self, base: Optional[logging.Logger] = None):
        self._logger = base or logger

    def _log(self, level: int, operation: str, message: str, fields: dict) -> None:
        if fields:
            message = f"{message} {_format_fields(fields)}"
        self._logger.log(level, f"{operation}: {message}")

    def log_info(self, operation: str, message: str, **fields: Any) -> None:
        """Log an info message."""
        self._log(logging.INFO, operation, message, fields)

    def log_error(self, operation: str, error: Exception, **fields: Any) -> None:
        """Log an error message."""
        self._log(logging.ERROR, operation, str(error), fields)

    def log_warning(self, operation: str, message: str, **fields: Any) -> None:
        """Log a warning message."""
        self._log(logging.WARNING, operation, message, fields)

    def log_debug(self, operation: str, message: str, **fields: Any) -> None:
        """Log a debug message."""
        self._log(logging.DEBUG, operation, message, fields)


# =============================================================================
# CALL CONTEXTS
# =============================================================================


class OperationCounter:
    """Process-wide, monotonically increasing operation counter."""

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    def increment(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    @property
    def value(self) -> int:
        return self._value


@dataclass
class ServiceContext:
    """State shared by every call, owned by the process entry point."""

    config: Config
    logger: LoggingUtility = field(default_factory=LoggingUtility)
    counter: OperationCounter = field(default_factory=OperationCounter)


@dataclass
class RequestContext:
    """Per-call context handed to the facade and adapters."""

    service: ServiceContext
    deadline: Optional[float] = None  # time.monotonic() based
    trace_id: Optional[str] = None

    @property
    def config(self) -> Config:
        return self.service.config

    @property
    def logger(self) -> LoggingUtility:
        return self.service.logger

    def time_remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None when there is none."""
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()

    @classmethod
    def with_timeout(
        cls, service: ServiceContext, timeout: Optional[float], **kwargs: Any
    ) -> "RequestContext":
        deadline = time.monotonic() + timeout if timeout is not None else None
        return cls(service=service, deadline=deadline, **kwargs)
