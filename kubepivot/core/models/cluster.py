"""
Cluster and repository handles passed between stages.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path


class ClusterRole(StrEnum):
    """Which control plane a handle points at."""

    EPHEMERAL = "ephemeral"
    TARGET = "target"


class GitOpsController(StrEnum):
    """Supported GitOps controller variants."""

    ARGOCD = "argocd"
    FLUXCD = "fluxcd"


@dataclass(frozen=True)
class ClusterHandle:
    """Access to one control plane: a kubeconfig path plus its role."""

    name: str
    kubeconfig: Path
    role: ClusterRole

    @property
    def exists(self) -> bool:
        return self.kubeconfig.is_file()

    def relocated(self, directory: Path) -> ClusterHandle:
        """Same cluster, kubeconfig moved under ``directory``."""
        return ClusterHandle(
            name=self.name,
            kubeconfig=directory / self.kubeconfig.name,
            role=self.role,
        )


@dataclass(frozen=True)
class Repository:
    """The GitOps repository created for a cluster."""

    name: str
    url: str                         # web URL, reported to the user
    clone_url: str                   # URL the in-cluster controller pulls from
    local_dir: Path                  # checkout inside the working directory
    deploy_key: Path | None = None   # private key for private repositories
