"""
Create-cluster use case — the vertical slice behind ``kubepivot create-cluster``.

Validates everything that can be validated up front (settings file,
provider credentials, cluster name, GitHub token, tools on PATH,
artifacts directory), then builds the run context and hands it to the
orchestrator.  Configuration problems come back as ``error`` without
any stage having run; pipeline failures come back inside ``report``.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from kubepivot.adapters.registry import Toolchain
from kubepivot.core.config.loader import home_dir, load_settings
from kubepivot.core.context import WorkflowContext, validate_cluster_name
from kubepivot.core.engine.orchestrator import RunReport, WorkflowOrchestrator
from kubepivot.core.errors import ConfigError
from kubepivot.core.models.providers import from_mapping
from kubepivot.core.persistence.audit import AuditWriter
from kubepivot.core.reliability.cancellation import CancellationToken
from kubepivot.core.services.prereqs import check_prereqs

logger = logging.getLogger(__name__)


@dataclass
class CreateClusterResult:
    """Result of a create-cluster invocation."""

    report: RunReport | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.report is not None and self.report.ok

    @property
    def config_error(self) -> bool:
        """Rejected before any stage ran."""
        return self.error is not None

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        return self.report.to_dict() if self.report else {}


def create_cluster(
    provider: str,
    credential_values: dict[str, Any],
    *,
    cluster_name: str,
    github_token: str,
    gitops_controller: str = "argocd",
    private_repo: bool = True,
    high_availability: bool = True,
    timeout: float | None = None,
    config_path: Path | None = None,
    home: Path | None = None,
    toolchain: Toolchain | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> CreateClusterResult:
    """Provision a cluster on ``provider`` and hand it off to itself.

    Args:
        provider: ``azure`` or ``aws``.
        credential_values: Raw provider fields (CLI flags), validated here.
        cluster_name: Target cluster and repository name.
        github_token: Token used to create the GitOps repository.
        gitops_controller: ``argocd`` or ``fluxcd``.
        private_repo: Create a private repository with a deploy key.
        high_availability: Three control-plane machines instead of one.
        timeout: Overall run deadline in seconds (overrides settings).
        config_path: Explicit settings file.
        home: kubepivot home (default: ``KUBEPIVOT_HOME`` or ``~/.kubepivot``).
        toolchain: Pre-wired adapters; the real CLIs when omitted.
        sleep: Sleep between stage retries (injectable for tests).

    Returns:
        CreateClusterResult with either ``error`` or a run report.
    """
    home = home or home_dir()

    # ── Validate before anything is created ──────────────────────
    try:
        settings = load_settings(config_path)
        credentials = from_mapping(provider, credential_values)
        validate_cluster_name(cluster_name)
        if not github_token:
            raise ConfigError("A GitHub token is required (--github-token or GITHUB_TOKEN)")
        check_prereqs(
            home / cluster_name,
            gitops_controller,
            private_repo=private_repo,
            check_tools=toolchain is None,
        )
    except ConfigError as e:
        logger.debug("Rejected before provisioning: %s", e.message)
        return CreateClusterResult(error=e.message)

    if toolchain is None:
        from kubepivot.adapters.registry import default_toolchain

        toolchain = default_toolchain(settings)

    orchestrator = WorkflowOrchestrator(
        toolchain,
        retry_policy=settings.stage_retry.policy(),
        audit=AuditWriter(home=home),
        sleep=sleep,
    )

    deadline = timeout if timeout is not None else settings.run_timeout
    logger.debug("Credentials: %s", credentials.summary())

    with WorkflowContext.create(
        cluster_name,
        credentials,
        home=home,
        gitops_controller=gitops_controller,
        github_token=github_token,
        private_repo=private_repo,
        high_availability=high_availability,
        ephemeral_name=settings.ephemeral_name,
        cancel=CancellationToken(deadline),
    ) as ctx:
        report = orchestrator.run(ctx)

    return CreateClusterResult(report=report)
