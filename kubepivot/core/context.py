"""
Workflow context — the single value describing one provisioning run.

Created once at process start, passed by reference to every stage,
released at process end.  Only the orchestrator mutates it; adapters
read what they need and return values the orchestrator stores back.

Releasing the context removes the working directory.  Use it as a
context manager so removal happens whatever the outcome:

    with WorkflowContext.create("demo", creds, home=home) as ctx:
        orchestrator.run(ctx)
"""

from __future__ import annotations

import logging
import re
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from kubepivot.core.errors import ConfigError
from kubepivot.core.models.cluster import ClusterHandle, Repository
from kubepivot.core.models.providers import AwsCredentials, AzureCredentials
from kubepivot.core.reliability.cancellation import CancellationToken

logger = logging.getLogger(__name__)

EPHEMERAL_KUBECONFIG = "kind.kubeconfig"
DEFAULT_EPHEMERAL_NAME = "kubepivot-bootstrapper"

# Cluster names double as GitHub repo names and kubeconfig file names.
_CLUSTER_NAME_RE = re.compile(r"^[a-z0-9]([-a-z0-9]{0,61}[a-z0-9])?$")


def validate_cluster_name(name: str) -> str:
    """Reject names that are not valid DNS-1123 labels."""
    if not _CLUSTER_NAME_RE.match(name or ""):
        raise ConfigError(
            f"Invalid cluster name '{name}': use lowercase letters, digits "
            "and '-', at most 63 characters"
        )
    return name


@dataclass
class WorkflowContext:
    """Shared state of a provisioning run."""

    workdir: Path
    cluster_name: str
    credentials: AzureCredentials | AwsCredentials
    artifacts_dir: Path
    gitops_controller: str = "argocd"
    github_token: str = field(default="", repr=False)
    private_repo: bool = True
    high_availability: bool = True
    ephemeral_name: str = DEFAULT_EPHEMERAL_NAME
    cancel: CancellationToken = field(default_factory=CancellationToken)

    # ── Filled in by stages ──────────────────────────────────────
    ephemeral: ClusterHandle | None = None
    target: ClusterHandle | None = None
    repository: Repository | None = None
    controller: str | None = None
    relocated: bool = False
    keep_workdir: bool = False

    @classmethod
    def create(
        cls,
        cluster_name: str,
        credentials: AzureCredentials | AwsCredentials,
        *,
        home: Path,
        base_dir: Path | None = None,
        **kwargs,
    ) -> WorkflowContext:
        """Validate the name, create a fresh working directory, build the context."""
        validate_cluster_name(cluster_name)
        workdir = Path(tempfile.mkdtemp(prefix="kubepivot-", dir=base_dir))
        logger.debug("Working directory: %s", workdir)
        return cls(
            workdir=workdir,
            cluster_name=cluster_name,
            credentials=credentials,
            artifacts_dir=home / cluster_name,
            **kwargs,
        )

    # ── Derived paths ────────────────────────────────────────────

    @property
    def ephemeral_kubeconfig(self) -> Path:
        return self.workdir / EPHEMERAL_KUBECONFIG

    @property
    def target_kubeconfig(self) -> Path:
        return self.workdir / f"{self.cluster_name}.kubeconfig"

    @property
    def repo_dir(self) -> Path:
        """Local checkout of the GitOps repository."""
        base = self.artifacts_dir if self.relocated else self.workdir
        return base / self.cluster_name

    # ── Lifetime ─────────────────────────────────────────────────

    def release(self) -> None:
        """Remove the working directory if it still exists."""
        if self.keep_workdir and self.workdir.exists():
            logger.warning("Keeping working directory %s", self.workdir)
            return
        if self.workdir.exists():
            logger.debug("Removing working directory %s", self.workdir)
            shutil.rmtree(self.workdir, ignore_errors=True)

    def __enter__(self) -> WorkflowContext:
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()
