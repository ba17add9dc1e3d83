"""
Adapter base — the contracts between the workflow engine and external tools.

The orchestrator only talks to the outside world through these
interfaces, never directly to kind, clusterctl, git or a GitOps
controller.  That keeps the stage sequencing testable with recording
fakes (see ``kubepivot.adapters.mock``).

Unlike receipt-returning adapters, these raise ``KubepivotError``
subclasses on failure; the orchestrator turns exceptions into
StageResults, so every adapter failure is still captured and tagged.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING

from kubepivot.core.models.cluster import ClusterHandle, Repository
from kubepivot.core.models.providers import AwsCredentials, AzureCredentials
from kubepivot.core.reliability.cancellation import CancellationToken

if TYPE_CHECKING:
    from kubepivot.core.context import WorkflowContext


class ToolAdapter(ABC):
    """Common surface of every adapter."""

    @property
    @abstractmethod
    def name(self) -> str:
        """The adapter identifier (e.g., 'kind', 'clusterctl', 'argocd')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the underlying tool can be used. Fast, never raises."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"


class ControlPlaneAdapter(ToolAdapter):
    """Disposable local control plane used only to drive provisioning."""

    @abstractmethod
    def exists(self, name: str) -> bool:
        """Whether a control plane called ``name`` is running."""

    @abstractmethod
    def create(self, name: str, kubeconfig: Path) -> ClusterHandle:
        """Create the control plane and write its kubeconfig.

        Raises:
            EphemeralClusterExistsError: ``name`` is already taken.
            ControlPlaneError: Creation failed.
        """

    @abstractmethod
    def delete(self, name: str, kubeconfig: Path) -> None:
        """Tear the control plane down.

        Raises:
            ControlPlaneError: Deletion failed.
        """


class ProvisionerAdapter(ToolAdapter):
    """Cluster-lifecycle API driver: creates the target cluster and pivots."""

    @abstractmethod
    def create_target(
        self,
        ephemeral: ClusterHandle,
        name: str,
        workdir: Path,
        credentials: AzureCredentials | AwsCredentials,
        *,
        high_availability: bool = True,
        cancel: CancellationToken | None = None,
    ) -> ClusterHandle:
        """Declare the target cluster and block until its kubeconfig works.

        Raises:
            MissingCredentialError: Required provider keys are empty.
            ProvisioningError: Creation or readiness failed.
        """

    @abstractmethod
    def delete_target(self, ephemeral: ClusterHandle, name: str) -> None:
        """Delete a (partially) created target cluster's declaration."""

    @abstractmethod
    def pivot(
        self,
        ephemeral: ClusterHandle,
        target: ClusterHandle,
        credentials: AzureCredentials | AwsCredentials,
        *,
        cancel: CancellationToken | None = None,
    ) -> None:
        """Move cluster-lifecycle resources from ``ephemeral`` to ``target``.

        Raises:
            PivotError: The move or its verification failed.
        """


class RepositoryAdapter(ToolAdapter):
    """Remote git hosting for the GitOps repository."""

    @abstractmethod
    def create(
        self,
        name: str,
        token: str,
        *,
        private: bool,
        workdir: Path,
    ) -> Repository:
        """Create the remote repository and clone it into ``workdir/<name>``.

        Raises:
            RepositoryError: Creation or cloning failed.
        """

    @abstractmethod
    def commit_and_push(self, repo_dir: Path, message: str, *, token: str) -> str:
        """Commit everything under ``repo_dir`` and push with ``token``; returns the commit id.

        Raises:
            RepositoryError: Commit or push failed.
        """


class GitOpsAdapter(ToolAdapter):
    """One GitOps controller variant: repository layout + in-cluster install."""

    @abstractmethod
    def build_skeleton(self, ctx: WorkflowContext) -> None:
        """Materialize the repository layout and render install manifests."""

    @abstractmethod
    def bootstrap(
        self,
        ctx: WorkflowContext,
        *,
        cancel: CancellationToken | None = None,
    ) -> None:
        """Install the controller on the target cluster and point it at the repo."""
