"""Machine-type classes and their instance types per provider."""

from typing import Optional

from .core_utils import CloudProvider
from .exceptions import InvalidInputError
from .messages import MigProfile, NodeSpec

INVALID_INSTANCE_OR_MACHINE_TYPE = (
    "must provide a valid instance by specifying machine_type or instance"
)

MACHINE_TYPES: dict[str, dict[CloudProvider, str]] = {
    "s": {
        CloudProvider.AWS: "t3.medium",
        CloudProvider.GCP: "e2-medium",
        CloudProvider.AZURE: "Standard_B2s",
    },
    "m": {
        CloudProvider.AWS: "m5.xlarge",
        CloudProvider.GCP: "e2-standard-4",
        CloudProvider.AZURE: "Standard_D4s_v3",
    },
    "l": {
        CloudProvider.AWS: "m5.2xlarge",
        CloudProvider.GCP: "e2-standard-8",
        CloudProvider.AZURE: "Standard_D8s_v3",
    },
    "xl": {
        CloudProvider.AWS: "m5.4xlarge",
        CloudProvider.GCP: "e2-standard-16",
        CloudProvider.AZURE: "Standard_D16s_v3",
    },
    "gpu-s": {
        CloudProvider.AWS: "g4dn.xlarge",
        CloudProvider.GCP: "g2-standard-4",
        CloudProvider.AZURE: "Standard_NC4as_T4_v3",
    },
    "gpu-m": {
        CloudProvider.AWS: "p3.2xlarge",
        CloudProvider.GCP: "a2-highgpu-1g",
        CloudProvider.AZURE: "Standard_NC6s_v3",
    },
    "gpu-l": {
        CloudProvider.AWS: "p4d.24xlarge",
        CloudProvider.GCP: "a2-highgpu-8g",
        CloudProvider.AZURE: "Standard_ND96asr_v4",
    },
}

GPU_MACHINE_TYPES = frozenset(name for name in MACHINE_TYPES if name.startswith("gpu"))


def get_instance(provider: CloudProvider, machine_type: str) -> str:
    """Instance type for a machine-type class, or "" when unknown."""
    return MACHINE_TYPES.get(machine_type.strip().lower(), {}).get(provider, "")


def is_gpu(machine_type: str) -> bool:
    return machine_type.strip().lower() in GPU_MACHINE_TYPES


def resolve_instance(provider: CloudProvider, node_spec: NodeSpec) -> str:
    """Concrete instance type for ``node_spec`` on ``provider``.

    A recognised machine-type class wins over the explicit instance. Raises
    InvalidInputError when neither yields an instance type.
    """
    instance: Optional[str] = None
    if node_spec.machine_type:
        instance = get_instance(provider, node_spec.machine_type)
    if not instance:
        instance = node_spec.instance.strip()
    if not instance:
        raise InvalidInputError(INVALID_INSTANCE_OR_MACHINE_TYPE)
    return instance


def wants_gpu_partition(node_spec: NodeSpec) -> bool:
    """True when a GPU partition profile must be sent to the provider."""
    gpu_capable = node_spec.gpu_enabled or is_gpu(node_spec.machine_type)
    return gpu_capable and node_spec.mig_profile != MigProfile.UNKNOWN


# Partition size of each GPU partition profile on an A100 40GB.
MIG_PARTITION_SIZES: dict[MigProfile, str] = {
    MigProfile.MIG1G: "1g.5gb",
    MigProfile.MIG2G: "2g.10gb",
    MigProfile.MIG3G: "3g.20gb",
    MigProfile.MIG4G: "4g.20gb",
    MigProfile.MIG7G: "7g.40gb",
}


def mig_partition_size(profile: MigProfile) -> str:
    return MIG_PARTITION_SIZES[profile]
