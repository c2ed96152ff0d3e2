"""Error kinds raised by spawner operations."""


class SpawnerError(Exception):
    """Base class for spawner-specific errors.

    Not raised directly. Subclasses carry the error kind; the message may be
    prefixed with the names of the operations it travelled through:

    .. code-block:: python

        raise NotFoundError("cluster 'a' not found") from client_error
    """

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self):
        return self.message

    def annotate(self, operation: str) -> "SpawnerError":
        """Return an error of the same kind with ``operation`` prefixed."""
        annotated = type(self)(f"{operation}: {self.message}")
        annotated.__cause__ = self
        return annotated


class InvalidInputError(SpawnerError):
    """Raised when a request is missing or has bad fields, before any remote call."""

    pass


class CredentialError(SpawnerError):
    """Raised when credentials cannot be resolved or a session cannot be built."""

    pass


class NotFoundError(SpawnerError):
    """Raised when the target resource does not exist at the provider."""

    pass


class ProviderError(SpawnerError):
    """Raised when a provider call fails for any reason other than not-found."""

    pass


class UnsupportedOperationError(ProviderError):
    """Raised when a provider has no implementation of an operation."""

    pass


class TransientEmptyResultError(SpawnerError):
    """Raised when a call succeeded but produced nothing to act on yet."""

    pass
