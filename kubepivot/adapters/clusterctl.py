"""
clusterctl adapter — create the target cluster through Cluster API and
pivot its management onto itself.

Creation runs against the ephemeral control plane: install the core
and infrastructure providers, generate the cluster declaration, apply
it, then wait (bounded, with backoff) until the new cluster hands out a
kubeconfig, answers on its API server, has a CNI and Ready nodes.

Pivot runs ``clusterctl move``.  The move pauses reconciliation of the
Cluster objects on the source, recreates every object on the target,
deletes them from the source and only then unpauses them on the
target, so the two sets of controllers never act on the same
infrastructure at once.  The result is verified explicitly afterwards:
the target must own the un-paused Cluster and the source must hold
none.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable

from kubepivot.adapters.base import ProvisionerAdapter
from kubepivot.adapters.shell.command import require_ok, run_tool, tool_available
from kubepivot.core.errors import (
    MissingCredentialError,
    PivotError,
    ProvisioningError,
    ToolError,
    WaitTimeoutError,
    reraise_as,
)
from kubepivot.core.models.cluster import ClusterHandle, ClusterRole
from kubepivot.core.models.providers import AwsCredentials, AzureCredentials
from kubepivot.core.reliability.backoff import BackoffPolicy, poll_until
from kubepivot.core.reliability.cancellation import CancellationToken
from kubepivot.core.services.kube_common import (
    apply_manifest,
    deployments_available,
    kubectl_json,
    run_kubectl,
)

logger = logging.getLogger(__name__)

CAPI_NAMESPACES = (
    "capi-system",
    "capi-kubeadm-bootstrap-system",
    "capi-kubeadm-control-plane-system",
)
CAPI_CLUSTERS = "clusters.cluster.x-k8s.io"

CAPI_INSTALL_OUTPUT = "capi-install-yamls-output"
CNI_OUTPUT = "cni-output"
CLUSTER_DECLARATION = "install-cluster.yaml"
CNI_MANIFEST = "cni.yaml"

Credentials = AzureCredentials | AwsCredentials


class ClusterctlProvisioner(ProvisionerAdapter):
    """Cluster API driver backed by the clusterctl and kubectl CLIs.

    Args:
        kubernetes_version: Version requested for the target cluster.
        worker_count: Worker machines in the target cluster.
        cni_manifest_url: CNI manifest applied once the API server answers.
        readiness: Backoff policy for every readiness wait.
        sleep: Sleep function for waits (injectable for tests).
    """

    def __init__(
        self,
        kubernetes_version: str = "v1.29.4",
        worker_count: int = 3,
        cni_manifest_url: str = "",
        readiness: BackoffPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._kubernetes_version = kubernetes_version
        self._worker_count = worker_count
        self._cni_manifest_url = cni_manifest_url
        self._readiness = readiness or BackoffPolicy()
        self._sleep = sleep

    @property
    def name(self) -> str:
        return "clusterctl"

    def is_available(self) -> bool:
        return tool_available("clusterctl") and tool_available("kubectl")

    # ── Low-level ────────────────────────────────────────────────

    def _clusterctl(
        self,
        *args: str,
        kubeconfig: Path,
        env: dict[str, str] | None = None,
        timeout: int = 600,
    ) -> str:
        result = run_tool(
            "clusterctl", *args, "--kubeconfig", str(kubeconfig), env=env, timeout=timeout
        )
        return require_ok(result, f"clusterctl {args[0]}")

    def _wait(
        self,
        probe: Callable[[], object],
        description: str,
        cancel: CancellationToken | None,
    ):
        return poll_until(
            probe,
            self._readiness,
            description=description,
            cancel=cancel,
            sleep=self._sleep,
        )

    def _init_providers(
        self,
        kubeconfig: Path,
        credentials: Credentials,
        log_file: Path,
        cancel: CancellationToken | None,
    ) -> None:
        """Install core + infrastructure providers and wait for their controllers."""
        output = self._clusterctl(
            "init", "--infrastructure", credentials.infrastructure,
            kubeconfig=kubeconfig,
            env=credentials.to_env(),
            timeout=900,
        )
        log_file.parent.mkdir(parents=True, exist_ok=True)
        log_file.write_text(output, encoding="utf-8")

        for namespace in (*CAPI_NAMESPACES, credentials.controller_namespace):
            self._wait(
                lambda ns=namespace: deployments_available(ns, kubeconfig=kubeconfig),
                f"controllers in {namespace}",
                cancel,
            )

    # ── Probes (None = not yet) ──────────────────────────────────

    def _fetch_kubeconfig(self, ephemeral: ClusterHandle, name: str) -> str | None:
        result = run_tool(
            "clusterctl", "get", "kubeconfig", name,
            "--kubeconfig", str(ephemeral.kubeconfig),
            timeout=60,
        )
        if result.returncode == 0 and result.stdout.strip():
            return result.stdout
        return None

    def _api_ready(self, kubeconfig: Path) -> bool | None:
        result = run_kubectl("get", "--raw", "/readyz", kubeconfig=kubeconfig, timeout=30)
        return True if result.returncode == 0 else None

    def _nodes_ready(self, kubeconfig: Path, expected: int) -> int | None:
        try:
            items = kubectl_json("get", "nodes", kubeconfig=kubeconfig).get("items") or []
        except ToolError as e:
            if e.retryable:
                return None
            raise
        ready = sum(1 for node in items if _condition_true(node, "Ready"))
        if ready >= expected:
            return ready
        logger.debug("%d/%d nodes Ready", ready, expected)
        return None

    # ── Contract ─────────────────────────────────────────────────

    def create_target(
        self,
        ephemeral: ClusterHandle,
        name: str,
        workdir: Path,
        credentials: Credentials,
        *,
        high_availability: bool = True,
        cancel: CancellationToken | None = None,
    ) -> ClusterHandle:
        missing = credentials.missing_keys()
        if missing:
            raise MissingCredentialError(credentials.infrastructure, missing)

        control_planes = 3 if high_availability else 1
        target_kubeconfig = workdir / f"{name}.kubeconfig"

        try:
            logger.info(
                "Installing Cluster API (%s) on the temporary control plane",
                credentials.provider_tag,
            )
            self._init_providers(
                ephemeral.kubeconfig,
                credentials,
                workdir / CAPI_INSTALL_OUTPUT / "init.log",
                cancel,
            )

            declaration = self._clusterctl(
                "generate", "cluster", name,
                "--infrastructure", credentials.infrastructure,
                "--kubernetes-version", self._kubernetes_version,
                "--control-plane-machine-count", str(control_planes),
                "--worker-machine-count", str(self._worker_count),
                kubeconfig=ephemeral.kubeconfig,
                env=credentials.to_env(),
            )
            declaration_path = workdir / CLUSTER_DECLARATION
            declaration_path.write_text(declaration, encoding="utf-8")
            apply_manifest(declaration_path, kubeconfig=ephemeral.kubeconfig)

            logger.info("Waiting for cluster '%s' to hand out credentials", name)
            kubeconfig_text = self._wait(
                lambda: self._fetch_kubeconfig(ephemeral, name),
                f"kubeconfig of cluster '{name}'",
                cancel,
            )
            target_kubeconfig.write_text(kubeconfig_text, encoding="utf-8")
            target_kubeconfig.chmod(0o600)

            self._wait(
                lambda: self._api_ready(target_kubeconfig),
                f"API server of cluster '{name}'",
                cancel,
            )
            self._install_cni(target_kubeconfig, workdir)

            logger.info("Waiting for %d node(s) of '%s'", control_planes + self._worker_count, name)
            self._wait(
                lambda: self._nodes_ready(target_kubeconfig, control_planes + self._worker_count),
                f"nodes of cluster '{name}' to become Ready",
                cancel,
            )
        except ToolError as e:
            raise reraise_as(e, ProvisioningError, f"Cannot create cluster '{name}'") from e

        return ClusterHandle(name=name, kubeconfig=target_kubeconfig, role=ClusterRole.TARGET)

    def _install_cni(self, kubeconfig: Path, workdir: Path) -> None:
        if not self._cni_manifest_url:
            logger.debug("No CNI manifest configured — skipping")
            return

        rendered = run_kubectl(
            "apply", "-f", self._cni_manifest_url,
            "--dry-run=client", "-o", "yaml",
            kubeconfig=kubeconfig,
            timeout=120,
        )
        manifest = workdir / CNI_MANIFEST
        manifest.write_text(require_ok(rendered, "render CNI manifest"), encoding="utf-8")

        output = apply_manifest(manifest, kubeconfig=kubeconfig, server_side=True)
        log_dir = workdir / CNI_OUTPUT
        log_dir.mkdir(exist_ok=True)
        (log_dir / "apply.log").write_text(output, encoding="utf-8")

    def delete_target(self, ephemeral: ClusterHandle, name: str, timeout: int = 1800) -> None:
        """Delete the Cluster object and block until its finalizers ran.

        The controllers on the ephemeral control plane tear the cloud
        infrastructure down while the object is being finalized, so the
        ephemeral control plane must outlive this call.
        """
        logger.info("Deleting cluster '%s' and its infrastructure", name)
        try:
            require_ok(
                run_kubectl(
                    "delete", CAPI_CLUSTERS, name,
                    "--ignore-not-found", "--wait=true", f"--timeout={timeout}s",
                    kubeconfig=ephemeral.kubeconfig,
                    timeout=timeout + 60,
                ),
                f"kubectl delete cluster {name}",
            )
        except ToolError as e:
            raise reraise_as(e, ProvisioningError, f"Cannot delete cluster '{name}'") from e

    def pivot(
        self,
        ephemeral: ClusterHandle,
        target: ClusterHandle,
        credentials: Credentials,
        *,
        cancel: CancellationToken | None = None,
    ) -> None:
        try:
            logger.info(
                "Installing Cluster API (%s) on '%s'", credentials.provider_tag, target.name
            )
            self._init_providers(
                target.kubeconfig,
                credentials,
                target.kubeconfig.parent / CAPI_INSTALL_OUTPUT / "init-target.log",
                cancel,
            )

            logger.info("Moving Cluster API objects to '%s'", target.name)
            self._clusterctl(
                "move", "--to-kubeconfig", str(target.kubeconfig),
                kubeconfig=ephemeral.kubeconfig,
                timeout=1800,
            )
        except ToolError as e:
            raise reraise_as(e, PivotError, f"Cannot pivot to '{target.name}'") from e
        except WaitTimeoutError as e:
            raise PivotError(f"Cannot pivot to '{target.name}': {e.message}") from e

        self.verify_pivot(ephemeral, target, cancel=cancel)

    def verify_pivot(
        self,
        ephemeral: ClusterHandle,
        target: ClusterHandle,
        *,
        cancel: CancellationToken | None = None,
    ) -> None:
        """Wait until the target alone owns its un-paused Cluster object.

        Raises:
            PivotError: The state did not converge within the readiness budget.
        """
        try:
            self._wait(
                lambda: self._pivot_settled(ephemeral, target),
                f"Cluster '{target.name}' to be owned by itself",
                cancel,
            )
        except (WaitTimeoutError, ToolError) as e:
            raise PivotError(f"Pivot to '{target.name}' did not settle: {e.message}") from e
        logger.info("Cluster '%s' now manages itself", target.name)

    def _pivot_settled(self, ephemeral: ClusterHandle, target: ClusterHandle) -> bool | None:
        on_target = _clusters_named(target.kubeconfig, target.name)
        if not on_target:
            return None
        if any((c.get("spec") or {}).get("paused") for c in on_target):
            return None
        if _clusters_named(ephemeral.kubeconfig, target.name):
            return None
        return True


def _clusters_named(kubeconfig: Path, name: str) -> list[dict]:
    items = kubectl_json("get", CAPI_CLUSTERS, "-A", kubeconfig=kubeconfig).get("items") or []
    return [c for c in items if (c.get("metadata") or {}).get("name") == name]


def _condition_true(obj: dict, condition: str) -> bool:
    for cond in (obj.get("status") or {}).get("conditions") or []:
        if cond.get("type") == condition:
            return cond.get("status") == "True"
    return False
