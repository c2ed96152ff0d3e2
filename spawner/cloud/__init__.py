"""Cloud provider integration for the spawner service.

This package provides:
- Amazon Elastic Kubernetes Service (EKS) adapter
- Google Kubernetes Engine (GKE) adapter
- Azure Kubernetes Service (AKS) adapter
- The dispatch facade routing requests between them
"""

from .aks_manager import AKSManager
from .cloud_provider_manager import CloudProviderManager, ProviderRegistry
from .eks_manager import EKSManager
from .gke_manager import GKEManager

__all__ = [
    "CloudProviderManager",
    "ProviderRegistry",
    "EKSManager",
    "GKEManager",
    "AKSManager",
]
