"""
Mock adapters — recording test doubles for every external collaborator.

All fakes share one ``Recorder`` so a test can assert the exact order
of side effects across adapters.  They write the same files the real
tools leave in the working directory (kubeconfigs, install manifests,
output folders), which makes relocation and pruning observable without
a cluster.

    recorder = Recorder()
    toolchain = mock_toolchain(recorder, nodes=[...])
    recorder.set_failure("provisioner.pivot", PivotError("boom"))
"""

from __future__ import annotations

import copy
from pathlib import Path
from typing import TYPE_CHECKING, Any

from kubepivot.adapters.base import (
    ControlPlaneAdapter,
    ProvisionerAdapter,
    RepositoryAdapter,
)
from kubepivot.adapters.gitops.common import SkeletonController
from kubepivot.adapters.registry import ControllerRegistry, Toolchain
from kubepivot.core.errors import EphemeralClusterExistsError, ToolError
from kubepivot.core.models.cluster import (
    ClusterHandle,
    ClusterRole,
    GitOpsController,
    Repository,
)
from kubepivot.core.reliability.backoff import BackoffPolicy
from kubepivot.core.reliability.cancellation import CancellationToken

if TYPE_CHECKING:
    from kubepivot.core.context import WorkflowContext


class Recorder:
    """Shared call log plus queued failures, keyed by ``"<adapter>.<op>"``."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self._failures: dict[str, list[BaseException]] = {}

    def set_failure(self, op: str, error: BaseException, times: int = 1) -> None:
        """Make the next ``times`` calls of ``op`` raise ``error``."""
        self._failures.setdefault(op, []).extend([error] * times)

    def record(self, op: str) -> None:
        self.calls.append(op)
        queued = self._failures.get(op)
        if queued:
            raise queued.pop(0)

    def count(self, op: str) -> int:
        return self.calls.count(op)

    def reset(self) -> None:
        self.calls.clear()
        self._failures.clear()


def _touch(path: Path, content: str = "") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


class MockControlPlane(ControlPlaneAdapter):
    def __init__(self, recorder: Recorder, existing: set[str] | None = None):
        self.recorder = recorder
        self.clusters: set[str] = set(existing or ())

    @property
    def name(self) -> str:
        return "mock-kind"

    def is_available(self) -> bool:
        return True

    def exists(self, name: str) -> bool:
        return name in self.clusters

    def create(self, name: str, kubeconfig: Path) -> ClusterHandle:
        self.recorder.record("control_plane.create")
        if name in self.clusters:
            raise EphemeralClusterExistsError(name)
        self.clusters.add(name)
        _touch(kubeconfig, f"# kubeconfig for {name}\n")
        return ClusterHandle(name=name, kubeconfig=kubeconfig, role=ClusterRole.EPHEMERAL)

    def delete(self, name: str, kubeconfig: Path) -> None:
        self.recorder.record("control_plane.delete")
        self.clusters.discard(name)


class MockProvisioner(ProvisionerAdapter):
    def __init__(self, recorder: Recorder):
        self.recorder = recorder
        self.pivoted: list[str] = []

    @property
    def name(self) -> str:
        return "mock-clusterctl"

    def is_available(self) -> bool:
        return True

    def create_target(
        self,
        ephemeral: ClusterHandle,
        name: str,
        workdir: Path,
        credentials,
        *,
        high_availability: bool = True,
        cancel: CancellationToken | None = None,
    ) -> ClusterHandle:
        self.recorder.record("provisioner.create_target")
        _touch(workdir / "capi-install-yamls-output" / "init.log", "installed\n")
        _touch(workdir / "install-cluster.yaml", f"# Cluster {name}\n")
        _touch(workdir / "cni.yaml", "# cni\n")
        _touch(workdir / "cni-output" / "apply.log", "applied\n")
        kubeconfig = _touch(workdir / f"{name}.kubeconfig", f"# kubeconfig for {name}\n")
        return ClusterHandle(name=name, kubeconfig=kubeconfig, role=ClusterRole.TARGET)

    def delete_target(self, ephemeral: ClusterHandle, name: str) -> None:
        self.recorder.record("provisioner.delete_target")

    def pivot(
        self,
        ephemeral: ClusterHandle,
        target: ClusterHandle,
        credentials,
        *,
        cancel: CancellationToken | None = None,
    ) -> None:
        self.recorder.record("provisioner.pivot")
        self.pivoted.append(credentials.provider_tag)


class MockRepository(RepositoryAdapter):
    def __init__(self, recorder: Recorder, owner: str = "example"):
        self.recorder = recorder
        self.owner = owner
        self.pushed: list[str] = []
        self.push_tokens: list[str] = []

    @property
    def name(self) -> str:
        return "mock-github"

    def is_available(self) -> bool:
        return True

    def create(self, name: str, token: str, *, private: bool, workdir: Path) -> Repository:
        self.recorder.record("repository.create")
        local_dir = workdir / name
        local_dir.mkdir(parents=True, exist_ok=True)
        deploy_key = _touch(workdir / f"{name}_rsa", "fake key\n") if private else None
        url = f"https://github.com/{self.owner}/{name}"
        return Repository(
            name=name,
            url=url,
            clone_url=f"git@github.com:{self.owner}/{name}.git" if private else f"{url}.git",
            local_dir=local_dir,
            deploy_key=deploy_key,
        )

    def commit_and_push(self, repo_dir: Path, message: str, *, token: str) -> str:
        self.recorder.record("repository.commit_and_push")
        self.pushed.append(message)
        self.push_tokens.append(token)
        return "0000000"


class MockController(SkeletonController):
    """Controller double that writes the real layout and fake manifests."""

    _MANIFESTS = {
        GitOpsController.ARGOCD: "argocd-install.yaml",
        GitOpsController.FLUXCD: "flux-install.yaml",
    }

    def __init__(self, recorder: Recorder, name: str):
        super().__init__(readiness=BackoffPolicy(max_attempts=1), sleep=lambda _: None)
        self.recorder = recorder
        self._name = name
        self.install_manifest = self._MANIFESTS.get(name, f"{name}-install.yaml")

    @property
    def name(self) -> str:
        return self._name

    def is_available(self) -> bool:
        return True

    def build_skeleton(self, ctx: WorkflowContext) -> None:
        self.recorder.record("gitops.build_skeleton")
        super().build_skeleton(ctx)

    def render_install(self, ctx: WorkflowContext, bootstrap_dir: Path) -> str:
        return f"# {self.name} install\n"

    def sync_objects(self, ctx: WorkflowContext) -> list[dict]:
        return [{"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"name": self.name}}]

    def bootstrap(self, ctx: WorkflowContext, *, cancel: CancellationToken | None = None) -> None:
        self.recorder.record("gitops.bootstrap")
        self.require_target(ctx)
        self.write_output(ctx, "sync.yaml", self.sync_objects(ctx))


class FakeClusterReader:
    """In-memory ClusterReader: ``{resource: [object, ...]}``."""

    def __init__(
        self,
        objects: dict[str, list[dict[str, Any]]] | None = None,
        recorder: Recorder | None = None,
    ):
        self.objects = objects or {}
        self.recorder = recorder
        self.failing_gets: dict[str, ToolError] = {}

    def list_objects(self, resource: str) -> list[dict[str, Any]]:
        if self.recorder is not None:
            self.recorder.record("reader.list_objects")
        return copy.deepcopy(self.objects.get(resource, []))

    def get_object(self, resource: str, name: str) -> dict[str, Any]:
        if name in self.failing_gets:
            raise self.failing_gets[name]
        for obj in self.objects.get(resource, []):
            if (obj.get("metadata") or {}).get("name") == name:
                return copy.deepcopy(obj)
        raise ToolError(
            f"kubectl get {resource} {name} failed (exit 1)",
            returncode=1,
            stderr=f'Error from server (NotFound): {resource} "{name}" not found',
        )


def mock_toolchain(
    recorder: Recorder | None = None,
    *,
    nodes: list[dict[str, Any]] | None = None,
    existing_clusters: set[str] | None = None,
) -> Toolchain:
    """A complete Toolchain of recording fakes."""
    recorder = recorder or Recorder()
    controllers = ControllerRegistry()
    for name in GitOpsController:
        controllers.register(MockController(recorder, name.value))

    reader = FakeClusterReader({"nodes": nodes or []}, recorder=recorder)
    return Toolchain(
        control_plane=MockControlPlane(recorder, existing=existing_clusters),
        provisioner=MockProvisioner(recorder),
        repository=MockRepository(recorder),
        controllers=controllers,
        reader_factory=lambda kubeconfig: reader,
    )
