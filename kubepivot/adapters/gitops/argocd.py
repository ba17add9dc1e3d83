"""
Argo CD controller adapter.

The install is a kustomization in ``bootstrap/argocd`` that pins the
upstream manifest URL into the ``argocd`` namespace; it is rendered
once with ``kubectl kustomize`` so the applied manifest and the
committed one describe the same thing.  Two root Applications then
point Argo CD at ``core/`` and ``apps/``.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING, Callable

import yaml

from kubepivot.adapters.gitops.common import APPS_DIR, SkeletonController
from kubepivot.adapters.shell.command import require_ok, tool_available
from kubepivot.core.errors import ProvisioningError, ToolError, reraise_as
from kubepivot.core.models.cluster import GitOpsController
from kubepivot.core.reliability.backoff import BackoffPolicy
from kubepivot.core.reliability.cancellation import CancellationToken
from kubepivot.core.services.kube_common import apply_documents, apply_manifest, run_kubectl

if TYPE_CHECKING:
    from kubepivot.core.context import WorkflowContext

logger = logging.getLogger(__name__)

ARGOCD_NAMESPACE = "argocd"
ARGOCD_INSTALL_URL = (
    "https://github.com/argoproj/argo-cd/manifests/cluster-install?ref=stable"
)
IN_CLUSTER = "https://kubernetes.default.svc"


class ArgoCDController(SkeletonController):
    """Bootstrap Argo CD and its root Applications."""

    namespace = ARGOCD_NAMESPACE
    install_manifest = "argocd-install.yaml"

    def __init__(
        self,
        install_url: str = ARGOCD_INSTALL_URL,
        readiness: BackoffPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        super().__init__(readiness=readiness, sleep=sleep)
        self._install_url = install_url

    @property
    def name(self) -> str:
        return GitOpsController.ARGOCD.value

    def is_available(self) -> bool:
        return tool_available("kubectl")

    def render_install(self, ctx: WorkflowContext, bootstrap_dir: Path) -> str:
        namespace = {
            "apiVersion": "v1",
            "kind": "Namespace",
            "metadata": {"name": ARGOCD_NAMESPACE},
        }
        kustomization = {
            "apiVersion": "kustomize.config.k8s.io/v1beta1",
            "kind": "Kustomization",
            "namespace": ARGOCD_NAMESPACE,
            "resources": ["namespace.yaml", self._install_url],
        }
        (bootstrap_dir / "namespace.yaml").write_text(
            yaml.safe_dump(namespace, sort_keys=False), encoding="utf-8"
        )
        (bootstrap_dir / "kustomization.yaml").write_text(
            yaml.safe_dump(kustomization, sort_keys=False), encoding="utf-8"
        )

        try:
            return require_ok(
                run_kubectl("kustomize", str(bootstrap_dir), timeout=180),
                "kubectl kustomize argocd",
            )
        except ToolError as e:
            raise reraise_as(e, ProvisioningError, "Cannot render the Argo CD install") from e

    def repository_secret(self, ctx: WorkflowContext) -> dict:
        """Repository credential Secret recognised by Argo CD."""
        repo = ctx.repository
        return {
            "apiVersion": "v1",
            "kind": "Secret",
            "metadata": {
                "name": f"{ctx.cluster_name}-repo",
                "namespace": ARGOCD_NAMESPACE,
                "labels": {"argocd.argoproj.io/secret-type": "repository"},
            },
            "type": "Opaque",
            "stringData": {
                "type": "git",
                "url": repo.clone_url,
                "sshPrivateKey": repo.deploy_key.read_text(encoding="utf-8"),
            },
        }

    def sync_objects(self, ctx: WorkflowContext) -> list[dict]:
        return [
            self._application(ctx, "core", "core", recurse=True),
            self._application(ctx, "apps", APPS_DIR, recurse=True),
        ]

    def _application(self, ctx: WorkflowContext, suffix: str, path: str, *, recurse: bool) -> dict:
        return {
            "apiVersion": "argoproj.io/v1alpha1",
            "kind": "Application",
            "metadata": {
                "name": f"{ctx.cluster_name}-{suffix}",
                "namespace": ARGOCD_NAMESPACE,
            },
            "spec": {
                "project": "default",
                "source": {
                    "repoURL": ctx.repository.clone_url,
                    "targetRevision": "HEAD",
                    "path": path,
                    "directory": {"recurse": recurse},
                },
                "destination": {"server": IN_CLUSTER},
                "syncPolicy": {"automated": {"prune": False, "selfHeal": True}},
            },
        }

    def bootstrap(
        self,
        ctx: WorkflowContext,
        *,
        cancel: CancellationToken | None = None,
    ) -> None:
        kubeconfig = self.require_target(ctx)
        try:
            logger.info("Installing Argo CD on '%s'", ctx.cluster_name)
            output = apply_manifest(
                ctx.workdir / self.install_manifest, kubeconfig=kubeconfig, server_side=True
            )
            out = ctx.workdir / self.output_dir_name
            out.mkdir(exist_ok=True)
            (out / "apply.log").write_text(output, encoding="utf-8")

            self.wait_ready(kubeconfig, cancel)

            if ctx.repository.deploy_key is not None:
                apply_documents([self.repository_secret(ctx)], kubeconfig=kubeconfig)

            apps = self.sync_objects(ctx)
            self.write_output(ctx, "applications.yaml", apps)
            apply_documents(apps, kubeconfig=kubeconfig)
        except ToolError as e:
            raise reraise_as(e, ProvisioningError, "Argo CD bootstrap failed") from e
        logger.info("Argo CD is syncing %s", ctx.repository.url)
