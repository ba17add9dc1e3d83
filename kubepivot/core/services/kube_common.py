"""
kubectl shared helpers.

Imported by the exporter and by every adapter that talks to a
cluster.  All calls take an explicit kubeconfig: kubepivot never
touches the user's current context.
"""

from __future__ import annotations

import json
import logging
import subprocess
from pathlib import Path

import yaml

from kubepivot.adapters.shell.command import require_ok, run_tool
from kubepivot.core.errors import ToolError

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════
#  Runners
# ═══════════════════════════════════════════════════════════════════


def run_kubectl(
    *args: str,
    kubeconfig: Path | None = None,
    timeout: int = 60,
    stdin: str | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run a kubectl command and return the result."""
    prefix = ["--kubeconfig", str(kubeconfig)] if kubeconfig else []
    return run_tool("kubectl", *prefix, *args, timeout=timeout, stdin=stdin)


def kubectl_json(*args: str, kubeconfig: Path, timeout: int = 60) -> dict:
    """Run ``kubectl <args> -o json`` and decode the output.

    Raises:
        ToolError: Non-zero exit or undecodable output.
    """
    result = run_kubectl(*args, "-o", "json", kubeconfig=kubeconfig, timeout=timeout)
    stdout = require_ok(result, f"kubectl {' '.join(args)}")
    try:
        data = json.loads(stdout)
    except ValueError as e:
        raise ToolError(f"kubectl {' '.join(args)} returned invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ToolError(f"kubectl {' '.join(args)} returned {type(data).__name__}, expected object")
    return data


def apply_manifest(
    path: Path,
    *,
    kubeconfig: Path,
    server_side: bool = False,
    timeout: int = 300,
) -> str:
    """``kubectl apply -f <path>``; returns kubectl's output."""
    args = ["apply", "-f", str(path)]
    if server_side:
        args += ["--server-side", "--force-conflicts"]
    result = run_kubectl(*args, kubeconfig=kubeconfig, timeout=timeout)
    return require_ok(result, f"kubectl apply -f {path.name}")


def apply_documents(
    docs: list[dict],
    *,
    kubeconfig: Path,
    timeout: int = 120,
) -> str:
    """Apply in-memory resources through stdin; nothing touches the disk."""
    result = run_kubectl(
        "apply", "-f", "-",
        kubeconfig=kubeconfig,
        timeout=timeout,
        stdin=dump_manifests(docs),
    )
    kinds = ", ".join(sorted({d.get("kind", "?") for d in docs}))
    return require_ok(result, f"kubectl apply ({kinds})")


def deployments_available(namespace: str, *, kubeconfig: Path) -> bool | None:
    """True when every Deployment in ``namespace`` is Available, else None.

    Shaped as a ``poll_until`` probe: "not yet" is None, not False.
    """
    result = run_kubectl(
        "wait", "deployment", "--all",
        "-n", namespace,
        "--for=condition=Available",
        "--timeout=10s",
        kubeconfig=kubeconfig,
        timeout=30,
    )
    if result.returncode == 0 and result.stdout.strip():
        return True
    logger.debug("Deployments in %s not yet available: %s", namespace, result.stderr.strip())
    return None


# ═══════════════════════════════════════════════════════════════════
#  Manifest helpers
# ═══════════════════════════════════════════════════════════════════


def dump_manifests(docs: list[dict]) -> str:
    """Serialize resources as a multi-document YAML stream."""
    return yaml.safe_dump_all(docs, sort_keys=False, default_flow_style=False)


def parse_manifests(text: str) -> list[dict]:
    """Parse a YAML stream and return the Kubernetes resource dicts in it."""
    resources: list[dict] = []
    for doc in yaml.safe_load_all(text):
        if doc and isinstance(doc, dict) and "kind" in doc and "apiVersion" in doc:
            resources.append(doc)
    return resources
