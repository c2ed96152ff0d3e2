"""Base class for cloud provider adapters."""

from datetime import datetime, timezone
import functools
from typing import Any, Awaitable, Callable, Optional, TypeVar

from kubernetes.client.rest import ApiException

from ..core_utils import CloudProvider, RequestContext
from ..exceptions import (
    NotFoundError,
    ProviderError,
    SpawnerError,
    UnsupportedOperationError,
)

F = TypeVar("F", bound=Callable[..., Awaitable[Any]])


def operation(name: str) -> Callable[[F], F]:
    """Annotate errors leaving an adapter method with the operation ``name``.

    Spawner errors keep their kind. SDK errors the adapter recognises are
    translated to a spawner error first; anything else propagates unchanged.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(self: "ProviderAdapter", ctx: RequestContext, *args, **kwargs):
            try:
                return await func(self, ctx, *args, **kwargs)
            except SpawnerError as e:
                raise e.annotate(name) from e
            except Exception as e:
                translated = self.translate_error(e)
                if translated is None:
                    raise
                raise translated.annotate(name) from e

        return wrapper  # type: ignore[return-value]

    return decorator


class ProviderAdapter:
    """Provider-specific implementation of the neutral operation set.

    Every operation defaults to raising UnsupportedOperationError; adapters
    override the ones their provider can serve.
    """

    provider: CloudProvider

    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def new_session(self, ctx: RequestContext, region: str, account_name: str):
        return await self._session_factory.new_session(ctx, region, account_name)

    def translate_error(self, error: Exception) -> Optional[SpawnerError]:
        """Map an SDK exception to an error kind, or None to let it propagate."""
        if isinstance(error, ApiException):
            if error.status == 404:
                return NotFoundError(error.reason or "kubernetes object not found")
            return ProviderError(f"kubernetes API error {error.status}: {error.reason}")
        return None

    def _unsupported(self, operation_name: str) -> UnsupportedOperationError:
        return UnsupportedOperationError(
            f"{operation_name} is not supported for provider '{self.provider.value}'"
        )

    # =================================================================
    # Clusters
    # =================================================================

    async def create_cluster(self, ctx, request):
        raise self._unsupported("CreateCluster")

    async def get_cluster(self, ctx, request):
        raise self._unsupported("GetCluster")

    async def get_clusters(self, ctx, request):
        raise self._unsupported("GetClusters")

    async def cluster_status(self, ctx, request):
        raise self._unsupported("ClusterStatus")

    async def delete_cluster(self, ctx, request):
        raise self._unsupported("DeleteCluster")

    async def add_token(self, ctx, request):
        raise self._unsupported("AddToken")

    async def get_token(self, ctx, request):
        raise self._unsupported("GetToken")

    async def register_cluster_oidc(self, ctx, request):
        raise self._unsupported("RegisterClusterOIDC")

    # =================================================================
    # Nodes
    # =================================================================

    async def add_node(self, ctx, request):
        raise self._unsupported("AddNode")

    async def delete_node(self, ctx, request):
        raise self._unsupported("DeleteNode")

    async def tag_node_instance(self, ctx, request):
        raise self._unsupported("TagNodeInstance")

    # =================================================================
    # Volumes and snapshots
    # =================================================================

    async def create_volume(self, ctx, request):
        raise self._unsupported("CreateVolume")

    async def get_volume(self, ctx, request):
        raise self._unsupported("GetVolume")

    async def delete_volume(self, ctx, request):
        raise self._unsupported("DeleteVolume")

    async def create_snapshot(self, ctx, request):
        raise self._unsupported("CreateSnapshot")

    async def delete_snapshot(self, ctx, request):
        raise self._unsupported("DeleteSnapshot")

    async def create_snapshot_and_delete(self, ctx, request):
        raise self._unsupported("CreateSnapshotAndDelete")

    async def copy_snapshot(self, ctx, request):
        raise self._unsupported("CopySnapshot")

    # =================================================================
    # Cost
    # =================================================================

    async def get_workspaces_cost(self, ctx, request):
        raise self._unsupported("GetWorkspacesCost")

    async def get_applications_cost(self, ctx, request):
        raise self._unsupported("GetApplicationsCost")

    async def get_cost_by_time(self, ctx, request):
        raise self._unsupported("GetCostByTime")

    # =================================================================
    # Registry, object storage and DNS
    # =================================================================

    async def get_container_registry_auth(self, ctx, request):
        raise self._unsupported("GetContainerRegistryAuth")

    async def create_container_registry_repo(self, ctx, request):
        raise self._unsupported("CreateContainerRegistryRepo")

    async def presign_s3_url(self, ctx, request):
        raise self._unsupported("PresignS3Url")

    async def add_route53_record(self, ctx, request):
        raise self._unsupported("AddRoute53Record")

    async def create_route53_records(self, ctx, request):
        raise self._unsupported("CreateRoute53Records")

    async def get_route53_txt_records(self, ctx, request):
        raise self._unsupported("GetRoute53TXTRecords")

    async def delete_route53_records(self, ctx, request):
        raise self._unsupported("DeleteRoute53Records")


def generate_volume_name(size: int) -> str:
    """Name for a new volume, e.g. ``vol-50-20220607164454``."""
    return f"vol-{size}-{datetime.now(timezone.utc):%Y%m%d%H%M%S}"
