"""
Stage and StageResult models — the orchestrator's execution contract.

Stages are the fixed, strictly ordered steps of a provisioning run.
Each executed stage yields a StageResult: handlers raise, the
orchestrator catches and records.  A result is tagged ``ok``,
``retryable`` (transient failure) or ``failed`` (terminal).
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class Stage(StrEnum):
    """Provisioning workflow stages, in execution order."""

    INIT = "init"
    EPHEMERAL_CREATED = "ephemeral_created"
    TARGET_CLUSTER_CREATED = "target_cluster_created"
    REPO_CREATED = "repo_created"
    REPO_SKELETON_POPULATED = "repo_skeleton_populated"
    STATE_EXPORTED = "state_exported"
    PUSHED_TO_REMOTE = "pushed_to_remote"
    CONTROLLER_BOOTSTRAPPED = "controller_bootstrapped"
    PIVOTED = "pivoted"
    EPHEMERAL_DESTROYED = "ephemeral_destroyed"
    ARTIFACTS_RELOCATED = "artifacts_relocated"
    PRUNED = "pruned"
    DONE = "done"
    ABORTED = "aborted"

    @property
    def terminal(self) -> bool:
        return self in (Stage.DONE, Stage.ABORTED)


# Stages that perform work, in order.  INIT/DONE/ABORTED are bookends.
PIPELINE: tuple[Stage, ...] = (
    Stage.EPHEMERAL_CREATED,
    Stage.TARGET_CLUSTER_CREATED,
    Stage.REPO_CREATED,
    Stage.REPO_SKELETON_POPULATED,
    Stage.STATE_EXPORTED,
    Stage.PUSHED_TO_REMOTE,
    Stage.CONTROLLER_BOOTSTRAPPED,
    Stage.PIVOTED,
    Stage.EPHEMERAL_DESTROYED,
    Stage.ARTIFACTS_RELOCATED,
    Stage.PRUNED,
)


class StageResult(BaseModel):
    """Outcome of one executed stage."""

    stage: Stage
    status: Literal["ok", "retryable", "failed"] = "ok"

    started_at: str = Field(default_factory=_now_iso)
    ended_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0
    attempts: int = 1

    output: str = ""
    error: str | None = None
    error_type: str | None = None

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """Whether the stage succeeded."""
        return self.status == "ok"

    @classmethod
    def success(cls, stage: Stage, output: str = "", **kwargs: Any) -> StageResult:
        """Create a success result."""
        return cls(stage=stage, status="ok", output=output, **kwargs)

    @classmethod
    def failure(
        cls,
        stage: Stage,
        error: str,
        *,
        retryable: bool = False,
        **kwargs: Any,
    ) -> StageResult:
        """Create a failure result, tagged by retryability."""
        return cls(
            stage=stage,
            status="retryable" if retryable else "failed",
            error=error,
            **kwargs,
        )
