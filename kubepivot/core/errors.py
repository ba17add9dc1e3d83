"""
Error hierarchy — one class per failure category.

Every error raised by an adapter or service derives from
``KubepivotError``.  The ``retryable`` flag tags transient failures
(network blips, API server hiccups, subprocess timeouts) so the
orchestrator can decide between retry and abort without string
matching.

    configuration      ConfigError, MissingCredentialError, UnknownControllerError
    control plane      ControlPlaneError, EphemeralClusterExistsError
    provisioning       ProvisioningError, WaitTimeoutError
    pivot              PivotError
    repository         RepositoryError
    export             ExportError
    relocation         RelocationError
    tool invocation    ToolError
    cancellation       OperationCancelled
"""

from __future__ import annotations

from typing import Any


class KubepivotError(Exception):
    """Base class for all kubepivot failures."""

    def __init__(self, message: str, *, retryable: bool = False):
        super().__init__(message)
        self.message = message
        self.retryable = retryable


# ── Configuration ───────────────────────────────────────────────


class ConfigError(KubepivotError):
    """Invalid or missing configuration, detected before provisioning."""


class MissingCredentialError(ConfigError):
    """Required provider credential keys are absent or empty."""

    def __init__(self, provider: str, missing: list[str]):
        self.provider = provider
        self.missing = sorted(missing)
        super().__init__(
            f"Missing {provider} credentials: {', '.join(self.missing)}"
        )


class UnknownControllerError(ConfigError):
    """The requested GitOps controller is not registered."""

    def __init__(self, name: str, known: list[str]):
        self.name = name
        self.known = sorted(known)
        super().__init__(
            f"Unknown GitOps controller '{name}'. Valid: {', '.join(self.known)}"
        )


# ── Runtime categories ──────────────────────────────────────────


class ToolError(KubepivotError):
    """An external CLI was missing, exited non-zero, or timed out."""

    def __init__(
        self,
        message: str,
        *,
        command: list[str] | None = None,
        returncode: int | None = None,
        stderr: str = "",
        retryable: bool = False,
    ):
        super().__init__(message, retryable=retryable)
        self.command = command or []
        self.returncode = returncode
        self.stderr = stderr


class ControlPlaneError(KubepivotError):
    """Ephemeral control plane could not be created or deleted."""


class EphemeralClusterExistsError(ControlPlaneError):
    """A control plane with the bootstrap name is left over from a previous run."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(
            f"A kind cluster named '{name}' already exists. "
            f"Delete it with 'kind delete cluster --name {name}' and retry."
        )


class ProvisioningError(KubepivotError):
    """Target cluster creation or readiness failed."""


class WaitTimeoutError(ProvisioningError):
    """A bounded readiness wait ran out of time or attempts."""


class PivotError(KubepivotError):
    """Migrating Cluster API resources to the target cluster failed."""


class RepositoryError(KubepivotError):
    """Remote repository creation, commit or push failed."""


class ExportError(KubepivotError):
    """Cluster state could not be exported."""

    def __init__(self, message: str, *, report: Any = None, retryable: bool = False):
        super().__init__(message, retryable=retryable)
        self.report = report


class RelocationError(KubepivotError):
    """Moving or pruning the artifacts directory failed."""


class OperationCancelled(KubepivotError):
    """The run was cancelled or exceeded its overall deadline."""


def reraise_as(
    error: ToolError,
    category: type[KubepivotError],
    message: str,
) -> KubepivotError:
    """Translate a ToolError into a category error, keeping the retry tag."""
    detail = error.stderr or error.message
    return category(f"{message}: {detail}", retryable=error.retryable)
