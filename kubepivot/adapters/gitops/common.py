"""
Shared GitOps controller plumbing: repository layout, readiness waits,
rendered-output bookkeeping.

Repository layout (relative to the checkout):

    README.md
    bootstrap/<controller>/   install manifests for the controller itself
    core/cluster/             exported cluster-scoped objects
    apps/                     workloads, empty at creation
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING, Callable

from kubepivot.adapters.base import GitOpsAdapter
from kubepivot.adapters.shell.command import require_ok, run_tool
from kubepivot.core.errors import ProvisioningError, ToolError
from kubepivot.core.reliability.backoff import BackoffPolicy, poll_until
from kubepivot.core.reliability.cancellation import CancellationToken
from kubepivot.core.services.exporter import EXPORT_SUBDIR
from kubepivot.core.services.kube_common import deployments_available, dump_manifests

if TYPE_CHECKING:
    from kubepivot.core.context import WorkflowContext

logger = logging.getLogger(__name__)

BOOTSTRAP_DIR = "bootstrap"
APPS_DIR = "apps"

README_TEMPLATE = """\
# {name}

GitOps repository for the `{name}` cluster, reconciled by {controller}.

| Path | Contents |
|------|----------|
| `{bootstrap}/{controller}/` | {controller} installation |
| `{core}/` | cluster-scoped objects exported at creation time |
| `{apps}/` | workloads |
"""


class SkeletonController(GitOpsAdapter):
    """Base for controller adapters.

    Subclasses set ``name``, ``namespace``, ``install_manifest`` and implement
    ``render_install`` and ``sync_objects``.
    """

    namespace: str = ""
    install_manifest: str = ""

    def __init__(
        self,
        readiness: BackoffPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._readiness = readiness or BackoffPolicy()
        self._sleep = sleep

    @property
    def output_dir_name(self) -> str:
        """Working-directory folder holding rendered bootstrap objects."""
        return f"{self.name}-install-output"

    # ── Layout ───────────────────────────────────────────────────

    def create_layout(self, repo_dir: Path, cluster_name: str) -> Path:
        """Create the directory tree; returns the controller's bootstrap dir."""
        bootstrap = repo_dir / BOOTSTRAP_DIR / self.name
        for directory in (bootstrap, repo_dir / EXPORT_SUBDIR, repo_dir / APPS_DIR):
            directory.mkdir(parents=True, exist_ok=True)
        (repo_dir / APPS_DIR / ".gitkeep").touch()

        (repo_dir / "README.md").write_text(
            README_TEMPLATE.format(
                name=cluster_name,
                controller=self.name,
                bootstrap=BOOTSTRAP_DIR,
                core=EXPORT_SUBDIR,
                apps=APPS_DIR,
            ),
            encoding="utf-8",
        )
        return bootstrap

    def build_skeleton(self, ctx: WorkflowContext) -> None:
        logger.info("Populating %s repository layout", self.name)
        bootstrap = self.create_layout(ctx.repo_dir, ctx.cluster_name)
        manifest = self.render_install(ctx, bootstrap)
        target = ctx.workdir / self.install_manifest
        target.write_text(manifest, encoding="utf-8")
        logger.debug("Rendered %s (%d bytes)", target.name, len(manifest))

    def render_install(self, ctx: WorkflowContext, bootstrap_dir: Path) -> str:
        """Write controller files under ``bootstrap_dir``; return the install manifest."""
        raise NotImplementedError

    def sync_objects(self, ctx: WorkflowContext) -> list[dict]:
        """Root objects pointing the controller at the repository."""
        raise NotImplementedError

    # ── Bootstrap helpers ────────────────────────────────────────

    def wait_ready(self, kubeconfig: Path, cancel: CancellationToken | None) -> None:
        poll_until(
            lambda: deployments_available(self.namespace, kubeconfig=kubeconfig),
            self._readiness,
            description=f"{self.name} controllers",
            cancel=cancel,
            sleep=self._sleep,
        )

    def write_output(self, ctx: WorkflowContext, filename: str, docs: list[dict]) -> Path:
        """Record rendered objects under ``<workdir>/<name>-install-output``."""
        out = ctx.workdir / self.output_dir_name
        out.mkdir(exist_ok=True)
        path = out / filename
        path.write_text(dump_manifests(docs), encoding="utf-8")
        return path

    def require_target(self, ctx: WorkflowContext) -> Path:
        if ctx.target is None or ctx.repository is None:
            raise ProvisioningError(
                f"Cannot bootstrap {self.name}: target cluster and repository are required"
            )
        return ctx.target.kubeconfig


def current_branch(repo_dir: Path) -> str:
    """Checked-out branch of the local repository."""
    result = run_tool("git", "rev-parse", "--abbrev-ref", "HEAD", cwd=repo_dir, timeout=15)
    try:
        return require_ok(result, "git rev-parse").strip() or "main"
    except ToolError:
        logger.debug("Cannot read branch of %s, assuming main", repo_dir)
        return "main"


def ssh_url(clone_url: str) -> str:
    """``git@host:owner/repo.git`` → ``ssh://git@host/owner/repo.git``."""
    if clone_url.startswith("git@") and ":" in clone_url:
        host, path = clone_url.split(":", 1)
        return f"ssh://{host}/{path}"
    return clone_url
