"""
Flux controller adapter.

``flux install --export`` renders the controllers; the rendered file is
both applied and committed under ``bootstrap/fluxcd`` so Flux can keep
managing itself.  A ``GitRepository`` source and two ``Kustomization``s
(core, apps) point it at the repository.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

import yaml

from kubepivot.adapters.gitops.common import (
    APPS_DIR,
    BOOTSTRAP_DIR,
    SkeletonController,
    current_branch,
    ssh_url,
)
from kubepivot.adapters.shell.command import require_ok, run_tool, tool_available
from kubepivot.core.errors import ProvisioningError, ToolError, reraise_as
from kubepivot.core.models.cluster import GitOpsController
from kubepivot.core.reliability.cancellation import CancellationToken
from kubepivot.core.services.kube_common import (
    apply_documents,
    apply_manifest,
    parse_manifests,
)

if TYPE_CHECKING:
    from kubepivot.core.context import WorkflowContext

logger = logging.getLogger(__name__)

FLUX_NAMESPACE = "flux-system"
SOURCE_NAME = "flux-system"
COMPONENTS_FILE = "gotk-components.yaml"


class FluxCDController(SkeletonController):
    """Bootstrap Flux and its sync objects."""

    namespace = FLUX_NAMESPACE
    install_manifest = "flux-install.yaml"

    @property
    def name(self) -> str:
        return GitOpsController.FLUXCD.value

    def is_available(self) -> bool:
        return tool_available("flux")

    def _flux(self, *args: str, timeout: int = 120) -> str:
        return require_ok(run_tool("flux", *args, timeout=timeout), f"flux {' '.join(args[:2])}")

    def render_install(self, ctx: WorkflowContext, bootstrap_dir: Path) -> str:
        try:
            manifest = self._flux("install", "--export", "--namespace", FLUX_NAMESPACE)
        except ToolError as e:
            raise reraise_as(e, ProvisioningError, "Cannot render the Flux install") from e

        (bootstrap_dir / COMPONENTS_FILE).write_text(manifest, encoding="utf-8")
        kustomization = {
            "apiVersion": "kustomize.config.k8s.io/v1beta1",
            "kind": "Kustomization",
            "resources": [COMPONENTS_FILE],
        }
        (bootstrap_dir / "kustomization.yaml").write_text(
            yaml.safe_dump(kustomization, sort_keys=False), encoding="utf-8"
        )
        return manifest

    def source_url(self, ctx: WorkflowContext) -> str:
        repo = ctx.repository
        return ssh_url(repo.clone_url) if repo.deploy_key is not None else repo.clone_url

    def repository_secret(self, ctx: WorkflowContext) -> list[dict]:
        """Deploy-key Secret, rendered by flux so known_hosts is filled in."""
        rendered = self._flux(
            "create", "secret", "git", SOURCE_NAME,
            "--url", self.source_url(ctx),
            "--private-key-file", str(ctx.repository.deploy_key),
            "--namespace", FLUX_NAMESPACE,
            "--export",
        )
        return parse_manifests(rendered)

    def sync_objects(self, ctx: WorkflowContext) -> list[dict]:
        source: dict = {
            "apiVersion": "source.toolkit.fluxcd.io/v1",
            "kind": "GitRepository",
            "metadata": {"name": SOURCE_NAME, "namespace": FLUX_NAMESPACE},
            "spec": {
                "interval": "1m",
                "url": self.source_url(ctx),
                "ref": {"branch": current_branch(ctx.repo_dir)},
            },
        }
        if ctx.repository.deploy_key is not None:
            source["spec"]["secretRef"] = {"name": SOURCE_NAME}

        return [
            source,
            self._kustomization("flux-system", f"./{BOOTSTRAP_DIR}/{self.name}"),
            self._kustomization("core", "./core"),
            self._kustomization("apps", f"./{APPS_DIR}"),
        ]

    def _kustomization(self, name: str, path: str) -> dict:
        return {
            "apiVersion": "kustomize.toolkit.fluxcd.io/v1",
            "kind": "Kustomization",
            "metadata": {"name": name, "namespace": FLUX_NAMESPACE},
            "spec": {
                "interval": "10m",
                "path": path,
                "prune": False,
                "sourceRef": {"kind": "GitRepository", "name": SOURCE_NAME},
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
            logger.info("Installing Flux on '%s'", ctx.cluster_name)
            output = apply_manifest(
                ctx.workdir / self.install_manifest, kubeconfig=kubeconfig, server_side=True
            )
            out = ctx.workdir / self.output_dir_name
            out.mkdir(exist_ok=True)
            (out / "apply.log").write_text(output, encoding="utf-8")

            self.wait_ready(kubeconfig, cancel)

            if ctx.repository.deploy_key is not None:
                apply_documents(self.repository_secret(ctx), kubeconfig=kubeconfig)

            sync = self.sync_objects(ctx)
            self.write_output(ctx, "sync.yaml", sync)
            apply_documents(sync, kubeconfig=kubeconfig)
        except ToolError as e:
            raise reraise_as(e, ProvisioningError, "Flux bootstrap failed") from e
        logger.info("Flux is syncing %s", ctx.repository.url)
