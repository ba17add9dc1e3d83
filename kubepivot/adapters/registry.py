"""
Adapter registry — GitOps controller lookup and the run's toolchain.

The controller registry resolves the ``--gitops-controller`` choice to
exactly one adapter.  Unknown names are an error, never a silent
default.  ``Toolchain`` bundles every adapter a run needs so the
orchestrator receives its collaborators in one value.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

from kubepivot.adapters.base import (
    ControlPlaneAdapter,
    GitOpsAdapter,
    ProvisionerAdapter,
    RepositoryAdapter,
)
from kubepivot.core.errors import UnknownControllerError

if TYPE_CHECKING:
    from kubepivot.core.config.loader import Settings
    from kubepivot.core.services.exporter import ClusterReader

logger = logging.getLogger(__name__)


class ControllerRegistry:
    """Registry of GitOps controller adapters, keyed by name."""

    def __init__(self) -> None:
        self._controllers: dict[str, GitOpsAdapter] = {}

    def register(self, controller: GitOpsAdapter) -> None:
        name = controller.name
        if name in self._controllers:
            logger.warning("Overwriting existing controller adapter: %s", name)
        self._controllers[name] = controller
        logger.debug("Registered controller adapter: %s", name)

    def names(self) -> list[str]:
        return sorted(self._controllers)

    def resolve(self, name: str) -> GitOpsAdapter:
        """Look up a controller by name.

        Raises:
            UnknownControllerError: ``name`` is not registered.
        """
        controller = self._controllers.get(name)
        if controller is None:
            raise UnknownControllerError(name, self.names())
        return controller

    def status(self) -> dict[str, dict[str, Any]]:
        """Availability of all registered controllers."""
        return {
            name: {
                "name": name,
                "available": adapter.is_available(),
                "type": adapter.__class__.__name__,
            }
            for name, adapter in self._controllers.items()
        }


def _kubectl_reader(kubeconfig: Path) -> ClusterReader:
    from kubepivot.core.services.exporter import KubectlClusterReader

    return KubectlClusterReader(kubeconfig)


@dataclass
class Toolchain:
    """All external collaborators of a provisioning run."""

    control_plane: ControlPlaneAdapter
    provisioner: ProvisionerAdapter
    repository: RepositoryAdapter
    controllers: ControllerRegistry
    reader_factory: Callable[[Path], ClusterReader] = field(default=_kubectl_reader)


def default_toolchain(settings: Settings) -> Toolchain:
    """Wire the real CLI-backed adapters from settings."""
    from kubepivot.adapters.clusterctl import ClusterctlProvisioner
    from kubepivot.adapters.gitops.argocd import ArgoCDController
    from kubepivot.adapters.gitops.fluxcd import FluxCDController
    from kubepivot.adapters.kind import KindControlPlane
    from kubepivot.adapters.vcs.github import GitHubRepository

    readiness = settings.readiness.policy()

    controllers = ControllerRegistry()
    controllers.register(ArgoCDController(install_url=settings.argocd_install_url, readiness=readiness))
    controllers.register(FluxCDController(readiness=readiness))

    return Toolchain(
        control_plane=KindControlPlane(node_image=settings.kind_node_image),
        provisioner=ClusterctlProvisioner(
            kubernetes_version=settings.kubernetes_version,
            worker_count=settings.worker_count,
            cni_manifest_url=settings.cni_manifest_url,
            readiness=readiness,
        ),
        repository=GitHubRepository(),
        controllers=controllers,
    )
