"""
Prerequisite checks — run before any stage, fail as configuration errors.

A run needs the external CLIs on PATH and must not overwrite the
artifacts of an existing cluster with the same name.
"""

from __future__ import annotations

import logging
from pathlib import Path

from kubepivot.adapters.shell.command import tool_available
from kubepivot.core.errors import ConfigError
from kubepivot.core.models.cluster import GitOpsController

logger = logging.getLogger(__name__)

BASE_TOOLS = ("kind", "kubectl", "clusterctl", "git", "gh")
PRIVATE_REPO_TOOLS = ("ssh-keygen",)
CONTROLLER_TOOLS: dict[str, tuple[str, ...]] = {
    GitOpsController.ARGOCD: (),
    GitOpsController.FLUXCD: ("flux",),
}


def required_tools(controller: str, *, private_repo: bool = True) -> list[str]:
    """CLIs needed for a run with the given options."""
    tools = list(BASE_TOOLS)
    if private_repo:
        tools.extend(PRIVATE_REPO_TOOLS)
    tools.extend(CONTROLLER_TOOLS.get(controller, ()))
    return tools


def missing_tools(tools: list[str]) -> list[str]:
    """Subset of ``tools`` not found on PATH."""
    return [tool for tool in tools if not tool_available(tool)]


def check_prereqs(
    artifacts_dir: Path,
    controller: str,
    *,
    private_repo: bool = True,
    check_tools: bool = True,
) -> None:
    """Validate the environment before provisioning starts.

    Raises:
        ConfigError: Artifacts for this cluster already exist, or tools are missing.
    """
    if artifacts_dir.exists():
        raise ConfigError(
            f"{artifacts_dir} already exists. A cluster with this name was created "
            "before; remove the directory or pick another name."
        )

    if not check_tools:
        return

    missing = missing_tools(required_tools(controller, private_repo=private_repo))
    if missing:
        raise ConfigError(f"Required tools not found on PATH: {', '.join(missing)}")

    logger.debug("Prerequisites satisfied for %s", artifacts_dir.name)
