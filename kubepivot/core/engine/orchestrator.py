"""
Workflow orchestrator — drives the fixed provisioning stage sequence.

Flow:
    ephemeral control plane → target cluster → repository → skeleton
    → export → push → GitOps bootstrap → pivot → destroy ephemeral
    → relocate → prune

Stages run strictly in order, one at a time.  A stage either succeeds
and the next one starts, or fails and the run moves to ``ABORTED``:
nothing later runs, nothing completed is rolled back.  Handlers raise
``KubepivotError``; the orchestrator turns every outcome into a
``StageResult``.  A retryable error in a retry-safe stage is retried
with backoff; anything else aborts.

On abort the orchestrator cleans up what it safely can and lists the
rest in ``RunReport.leftovers``.
"""

from __future__ import annotations

import dataclasses
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Callable

from kubepivot.adapters.base import GitOpsAdapter
from kubepivot.adapters.registry import Toolchain
from kubepivot.core.context import WorkflowContext
from kubepivot.core.errors import KubepivotError, OperationCancelled
from kubepivot.core.models.stage import PIPELINE, Stage, StageResult
from kubepivot.core.persistence.audit import AuditWriter, RunRecord
from kubepivot.core.reliability.backoff import BackoffPolicy
from kubepivot.core.services.exporter import export_cluster_yaml
from kubepivot.core.services.relocate import ARTIFACT_DENYLIST, prune, relocate

logger = logging.getLogger(__name__)

# Stages whose side effects are idempotent: exporting overwrites files,
# pushing an already-pushed commit is a no-op, bootstrap re-applies.
RETRY_SAFE: frozenset[Stage] = frozenset({
    Stage.STATE_EXPORTED,
    Stage.PUSHED_TO_REMOTE,
    Stage.CONTROLLER_BOOTSTRAPPED,
})

DEFAULT_STAGE_ATTEMPTS = 3

Handler = Callable[[WorkflowContext], str]


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def generate_run_id() -> str:
    """Generate a unique run ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"run-{now}-{short}"


@dataclass
class RunReport:
    """Result of one provisioning run."""

    run_id: str = ""
    cluster_name: str = ""
    results: list[StageResult] = field(default_factory=list)
    final_stage: Stage = Stage.INIT
    failed_stage: Stage | None = None
    error: str | None = None
    leftovers: list[str] = field(default_factory=list)
    artifacts_dir: Path | None = None
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.final_stage == Stage.DONE

    @property
    def status(self) -> str:
        if self.ok:
            return "ok"
        return "aborted" if self.final_stage == Stage.ABORTED else "running"

    @property
    def completed(self) -> list[Stage]:
        return [r.stage for r in self.results if r.ok]

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "cluster_name": self.cluster_name,
            "status": self.status,
            "final_stage": self.final_stage.value,
            "failed_stage": self.failed_stage.value if self.failed_stage else None,
            "error": self.error,
            "leftovers": self.leftovers,
            "artifacts_dir": str(self.artifacts_dir) if self.artifacts_dir else None,
            "duration_ms": self.duration_ms,
            "stages": [r.model_dump(mode="json") for r in self.results],
        }

    def to_record(self, ctx: WorkflowContext) -> RunRecord:
        return RunRecord(
            run_id=self.run_id,
            cluster_name=self.cluster_name,
            provider=ctx.credentials.provider,
            gitops_controller=ctx.gitops_controller,
            status=self.status,
            final_stage=self.final_stage.value,
            failed_stage=self.failed_stage.value if self.failed_stage else None,
            duration_ms=self.duration_ms,
            error=self.error,
            leftovers=list(self.leftovers),
            artifacts_dir=str(self.artifacts_dir) if self.artifacts_dir else None,
            stages={r.stage.value: r.status for r in self.results},
            context={
                **ctx.credentials.summary(),
                "private_repo": ctx.private_repo,
                "high_availability": ctx.high_availability,
            },
        )


class WorkflowOrchestrator:
    """Run the provisioning pipeline against a toolchain.

    Args:
        toolchain: The external collaborators (real or fake).
        retry_policy: Backoff between attempts of retry-safe stages.
        denylist: Relative paths pruned from the relocated directory.
        audit: Optional run ledger; one record per run.
        strict_export: Fail the export stage on any per-object error.
        sleep: Sleep function between retries (injectable for tests).
    """

    def __init__(
        self,
        toolchain: Toolchain,
        *,
        retry_policy: BackoffPolicy | None = None,
        denylist: tuple[str, ...] = ARTIFACT_DENYLIST,
        audit: AuditWriter | None = None,
        strict_export: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._tools = toolchain
        self._retry = retry_policy or BackoffPolicy(
            base_delay=5.0, timeout=None, max_attempts=DEFAULT_STAGE_ATTEMPTS
        )
        self._denylist = denylist
        self._audit = audit
        self._strict_export = strict_export
        self._sleep = sleep

        self._handlers: dict[Stage, Handler] = {
            Stage.EPHEMERAL_CREATED: self._create_ephemeral,
            Stage.TARGET_CLUSTER_CREATED: self._create_target,
            Stage.REPO_CREATED: self._create_repository,
            Stage.REPO_SKELETON_POPULATED: self._populate_skeleton,
            Stage.STATE_EXPORTED: self._export_state,
            Stage.PUSHED_TO_REMOTE: self._push,
            Stage.CONTROLLER_BOOTSTRAPPED: self._bootstrap_controller,
            Stage.PIVOTED: self._pivot,
            Stage.EPHEMERAL_DESTROYED: self._destroy_ephemeral,
            Stage.ARTIFACTS_RELOCATED: self._relocate,
            Stage.PRUNED: self._prune,
        }

    # ── Run loop ─────────────────────────────────────────────────

    def run(self, ctx: WorkflowContext) -> RunReport:
        """Execute every stage in order; stop at the first failure."""
        report = RunReport(run_id=generate_run_id(), cluster_name=ctx.cluster_name)
        start = time.monotonic()
        logger.info(
            "Run %s: cluster '%s' on %s, GitOps with %s",
            report.run_id,
            ctx.cluster_name,
            ctx.credentials.provider,
            ctx.gitops_controller,
        )

        for stage in PIPELINE:
            try:
                result = self._execute(stage, ctx)
            except KeyboardInterrupt:
                ctx.cancel.cancel("interrupted by user")
                result = StageResult.failure(
                    stage, "Interrupted by user", error_type="KeyboardInterrupt"
                )
            report.results.append(result)

            if not result.ok:
                self._abort(ctx, report, result)
                break
            report.final_stage = stage
        else:
            report.final_stage = Stage.DONE
            report.artifacts_dir = ctx.artifacts_dir
            logger.info("Run %s done: artifacts in %s", report.run_id, ctx.artifacts_dir)

        report.duration_ms = int((time.monotonic() - start) * 1000)
        if self._audit is not None:
            self._audit.write(report.to_record(ctx))
        return report

    def _execute(self, stage: Stage, ctx: WorkflowContext) -> StageResult:
        """Run one stage handler, retrying transient failures where safe."""
        handler = self._handlers[stage]
        retry_safe = stage in RETRY_SAFE
        max_attempts = self._retry.max_attempts or DEFAULT_STAGE_ATTEMPTS

        started_at = _now_iso()
        t0 = time.monotonic()
        attempt = 0

        def _timing() -> dict[str, Any]:
            return {
                "started_at": started_at,
                "ended_at": _now_iso(),
                "duration_ms": int((time.monotonic() - t0) * 1000),
                "attempts": attempt,
            }

        while True:
            try:
                ctx.cancel.raise_if_cancelled()
            except OperationCancelled as e:
                return StageResult.failure(
                    stage, e.message, error_type=type(e).__name__, **_timing()
                )

            attempt += 1
            logger.debug("▶ %s (attempt %d)", stage.value, attempt)
            try:
                output = handler(ctx) or ""
            except KubepivotError as e:
                if retry_safe and e.retryable and self._may_retry(attempt, max_attempts, t0):
                    delay = self._retry.delay(attempt)
                    logger.warning(
                        "%s failed (attempt %d/%d), retrying in %.1fs: %s",
                        stage.value, attempt, max_attempts, delay, e.message,
                    )
                    self._sleep(delay)
                    continue
                logger.error("✗ %s: %s", stage.value, e.message)
                return StageResult.failure(
                    stage,
                    e.message,
                    retryable=e.retryable,
                    error_type=type(e).__name__,
                    **_timing(),
                )
            except Exception as e:
                logger.exception("✗ %s: unexpected error", stage.value)
                return StageResult.failure(
                    stage, f"Unexpected error: {e}", error_type=type(e).__name__, **_timing()
                )

            timing = _timing()
            logger.info("✓ %s (%dms)", stage.value, timing["duration_ms"])
            return StageResult.success(stage, output, **timing)

    def _may_retry(self, attempt: int, max_attempts: int, t0: float) -> bool:
        if attempt >= max_attempts:
            return False
        if self._retry.timeout is not None:
            return time.monotonic() - t0 < self._retry.timeout
        return True

    # ── Abort & cleanup ──────────────────────────────────────────

    def _abort(self, ctx: WorkflowContext, report: RunReport, result: StageResult) -> None:
        report.final_stage = Stage.ABORTED
        report.failed_stage = result.stage
        report.error = f"{result.stage.value}: {result.error}"
        report.leftovers = self._cleanup(ctx, result.stage)

        if result.stage == Stage.ARTIFACTS_RELOCATED:
            # The working directory holds the only kubeconfig of a live cluster.
            ctx.keep_workdir = True
            report.leftovers.append(f"working directory {ctx.workdir} (relocation failed)")

        logger.error("Run %s aborted at %s", report.run_id, result.stage.value)

    def _cleanup(self, ctx: WorkflowContext, failed: Stage) -> list[str]:
        """Best-effort teardown; returns what is left for manual cleanup."""
        leftovers: list[str] = []
        tools = self._tools
        provider = ctx.credentials.provider
        # past the pivot the target and its repository are the product, not debris
        pivoted = PIPELINE.index(failed) > PIPELINE.index(Stage.PIVOTED)

        if failed == Stage.TARGET_CLUSTER_CREATED and ctx.ephemeral is not None:
            try:
                tools.provisioner.delete_target(ctx.ephemeral, ctx.cluster_name)
            except KubepivotError as e:
                logger.warning("Cannot delete partial cluster '%s': %s", ctx.cluster_name, e.message)
                leftovers.append(
                    f"partially created {provider} cluster '{ctx.cluster_name}' ({e.message})"
                )
        elif ctx.target is not None and not pivoted:
            leftovers.append(f"{provider} cluster '{ctx.cluster_name}'")

        if ctx.repository is not None and not pivoted:
            leftovers.append(f"GitHub repository {ctx.repository.url}")

        if ctx.ephemeral is not None:
            if failed == Stage.PIVOTED:
                # A failed move may leave the Cluster API objects only here.
                leftovers.append(
                    f"kind cluster '{ctx.ephemeral.name}' (kept: may hold the Cluster API "
                    f"objects; 'kind get kubeconfig --name {ctx.ephemeral.name}')"
                )
            else:
                try:
                    tools.control_plane.delete(ctx.ephemeral.name, ctx.ephemeral.kubeconfig)
                    ctx.ephemeral = None
                except KubepivotError as e:
                    logger.warning("Cannot delete kind cluster: %s", e.message)
                    leftovers.append(f"kind cluster '{ctx.ephemeral.name}' ({e.message})")

        for item in leftovers:
            logger.warning("Left behind: %s", item)
        return leftovers

    # ── Stage handlers ───────────────────────────────────────────

    def _controller(self, ctx: WorkflowContext) -> GitOpsAdapter:
        return self._tools.controllers.resolve(ctx.controller or ctx.gitops_controller)

    def _create_ephemeral(self, ctx: WorkflowContext) -> str:
        ctx.ephemeral = self._tools.control_plane.create(
            ctx.ephemeral_name, ctx.ephemeral_kubeconfig
        )
        return f"kind cluster '{ctx.ephemeral.name}'"

    def _create_target(self, ctx: WorkflowContext) -> str:
        ctx.target = self._tools.provisioner.create_target(
            ctx.ephemeral,
            ctx.cluster_name,
            ctx.workdir,
            ctx.credentials,
            high_availability=ctx.high_availability,
            cancel=ctx.cancel,
        )
        return f"kubeconfig {ctx.target.kubeconfig.name}"

    def _create_repository(self, ctx: WorkflowContext) -> str:
        # Resolved before anything remote is created: an unknown name aborts here.
        ctx.controller = self._tools.controllers.resolve(ctx.gitops_controller).name
        ctx.repository = self._tools.repository.create(
            ctx.cluster_name,
            ctx.github_token,
            private=ctx.private_repo,
            workdir=ctx.workdir,
        )
        return ctx.repository.url

    def _populate_skeleton(self, ctx: WorkflowContext) -> str:
        self._controller(ctx).build_skeleton(ctx)
        return f"{ctx.controller} layout"

    def _export_state(self, ctx: WorkflowContext) -> str:
        kubeconfig = ctx.target.kubeconfig
        report = export_cluster_yaml(
            kubeconfig,
            ctx.repo_dir,
            reader=self._tools.reader_factory(kubeconfig),
            strict=self._strict_export,
        )
        return f"{len(report.written)} manifest(s), {len(report.errors)} error(s)"

    def _push(self, ctx: WorkflowContext) -> str:
        commit = self._tools.repository.commit_and_push(
            ctx.repo_dir,
            f"Initial state of cluster {ctx.cluster_name}",
            token=ctx.github_token,
        )
        return f"commit {commit}"

    def _bootstrap_controller(self, ctx: WorkflowContext) -> str:
        self._controller(ctx).bootstrap(ctx, cancel=ctx.cancel)
        return f"{ctx.controller} bootstrapped"

    def _pivot(self, ctx: WorkflowContext) -> str:
        self._tools.provisioner.pivot(ctx.ephemeral, ctx.target, ctx.credentials, cancel=ctx.cancel)
        return f"'{ctx.cluster_name}' manages itself"

    def _destroy_ephemeral(self, ctx: WorkflowContext) -> str:
        name = ctx.ephemeral.name
        self._tools.control_plane.delete(name, ctx.ephemeral.kubeconfig)
        ctx.ephemeral = None
        return f"kind cluster '{name}' deleted"

    def _relocate(self, ctx: WorkflowContext) -> str:
        final = relocate(ctx.workdir, ctx.artifacts_dir)
        ctx.relocated = True
        ctx.target = ctx.target.relocated(final)
        if ctx.repository is not None:
            key = ctx.repository.deploy_key
            ctx.repository = dataclasses.replace(
                ctx.repository,
                local_dir=ctx.repo_dir,
                deploy_key=final / key.name if key is not None else None,
            )
        return str(final)

    def _prune(self, ctx: WorkflowContext) -> str:
        removed = prune(ctx.artifacts_dir, self._denylist)
        return f"{len(removed)} path(s) removed"
