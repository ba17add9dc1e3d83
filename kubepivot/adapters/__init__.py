"""Adapters — bindings to the external tools a provisioning run drives.

Public re-exports for convenient access.
"""

from kubepivot.adapters.base import (
    ControlPlaneAdapter,
    GitOpsAdapter,
    ProvisionerAdapter,
    RepositoryAdapter,
    ToolAdapter,
)
from kubepivot.adapters.registry import ControllerRegistry, Toolchain, default_toolchain

__all__ = [
    "ControlPlaneAdapter",
    "ControllerRegistry",
    "GitOpsAdapter",
    "ProvisionerAdapter",
    "RepositoryAdapter",
    "ToolAdapter",
    "Toolchain",
    "default_toolchain",
]
