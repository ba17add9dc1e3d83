"""
kind adapter — the ephemeral local control plane.

A kind cluster exists only to host Cluster API while the real cluster
is built; it is deleted once the target manages itself.  A cluster
left behind by an earlier failed run is reported, never reused: its
Cluster API state may describe a different cluster.
"""

from __future__ import annotations

import logging
from pathlib import Path

from kubepivot.adapters.base import ControlPlaneAdapter
from kubepivot.adapters.shell.command import require_ok, run_tool, tool_available
from kubepivot.core.errors import (
    ControlPlaneError,
    EphemeralClusterExistsError,
    ToolError,
    reraise_as,
)
from kubepivot.core.models.cluster import ClusterHandle, ClusterRole

logger = logging.getLogger(__name__)


class KindControlPlane(ControlPlaneAdapter):
    """Create and delete kind clusters.

    Args:
        node_image: Optional ``kindest/node`` image override.
        wait: How long kind waits for the control plane to be Ready.
        timeout: Subprocess timeout for create/delete, in seconds.
    """

    def __init__(
        self,
        node_image: str | None = None,
        wait: str = "5m",
        timeout: int = 900,
    ):
        self._node_image = node_image
        self._wait = wait
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "kind"

    def is_available(self) -> bool:
        return tool_available("kind")

    def exists(self, name: str) -> bool:
        try:
            result = run_tool("kind", "get", "clusters", timeout=30)
            stdout = require_ok(result, "kind get clusters")
        except ToolError as e:
            raise reraise_as(e, ControlPlaneError, "Cannot list kind clusters") from e
        return name in stdout.split()

    def create(self, name: str, kubeconfig: Path) -> ClusterHandle:
        if self.exists(name):
            raise EphemeralClusterExistsError(name)

        args = [
            "create", "cluster",
            "--name", name,
            "--kubeconfig", str(kubeconfig),
            "--wait", self._wait,
        ]
        if self._node_image:
            args += ["--image", self._node_image]

        logger.info("Creating temporary control plane '%s'", name)
        try:
            require_ok(run_tool("kind", *args, timeout=self._timeout), "kind create cluster")
        except ToolError as e:
            raise reraise_as(e, ControlPlaneError, f"Cannot create kind cluster '{name}'") from e

        if not kubeconfig.is_file():
            raise ControlPlaneError(f"kind did not write a kubeconfig to {kubeconfig}")

        return ClusterHandle(name=name, kubeconfig=kubeconfig, role=ClusterRole.EPHEMERAL)

    def delete(self, name: str, kubeconfig: Path) -> None:
        logger.info("Deleting temporary control plane '%s'", name)
        try:
            require_ok(
                run_tool(
                    "kind", "delete", "cluster",
                    "--name", name,
                    "--kubeconfig", str(kubeconfig),
                    timeout=self._timeout,
                ),
                "kind delete cluster",
            )
        except ToolError as e:
            raise reraise_as(e, ControlPlaneError, f"Cannot delete kind cluster '{name}'") from e
