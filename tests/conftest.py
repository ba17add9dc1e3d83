"""
Shared test fixtures and configuration.
"""

from pathlib import Path

import pytest

from kubepivot.adapters.mock import Recorder, mock_toolchain
from kubepivot.core.context import WorkflowContext
from kubepivot.core.models.providers import AwsCredentials, AzureCredentials


def _result(returncode=0, stdout="", stderr=""):
    """Create a mock subprocess.CompletedProcess."""
    return type("Result", (), {
        "returncode": returncode, "stdout": stdout, "stderr": stderr, "args": [],
    })()


@pytest.fixture
def mock_result():
    """Factory for fake CompletedProcess objects."""
    return _result


@pytest.fixture
def azure_credentials() -> AzureCredentials:
    return AzureCredentials(
        app_id="app-123",
        app_secret="s3cret",
        tenant_id="tenant-456",
        subscription_id="sub-789",
    )


@pytest.fixture
def aws_credentials() -> AwsCredentials:
    return AwsCredentials(access_key_id="AKIAEXAMPLE", secret_access_key="wJalr")


@pytest.fixture
def home(tmp_path: Path) -> Path:
    """kubepivot home directory (not created)."""
    return tmp_path / "home"


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def make_node():
    """Factory for a live-looking Node object, as kubectl returns it."""

    def _make(name: str, **spec) -> dict:
        return {
            "apiVersion": "v1",
            "kind": "Node",
            "metadata": {
                "name": name,
                "uid": f"uid-{name}",
                "resourceVersion": "48213",
                "creationTimestamp": "2024-05-01T10:00:00Z",
                "selfLink": f"/api/v1/nodes/{name}",
                "generation": 2,
                "finalizers": ["example.com/protect"],
                "ownerReferences": [{"kind": "Machine", "name": f"m-{name}"}],
                "managedFields": [{"manager": "kubelet", "operation": "Update"}],
                "annotations": {"node.alpha.kubernetes.io/ttl": "0"},
                "labels": {"kubernetes.io/hostname": name},
            },
            "spec": {"podCIDR": "10.244.0.0/24", "providerID": f"azure:///{name}", **spec},
            "status": {
                "conditions": [{"type": "Ready", "status": "True"}],
                "daemonEndpoints": {"kubeletEndpoint": {"Port": 10250}},
                "nodeInfo": {"kubeletVersion": "v1.29.4"},
            },
        }

    return _make


@pytest.fixture
def toolchain(recorder, make_node):
    """Recording fakes for a two-node cluster."""
    return mock_toolchain(recorder, nodes=[make_node("demo-control-plane"), make_node("demo-md-0")])


@pytest.fixture
def make_context(tmp_path: Path, home: Path, azure_credentials):
    """Factory for a WorkflowContext with a fresh working directory."""

    def _make(cluster_name: str = "demo", **kwargs) -> WorkflowContext:
        kwargs.setdefault("github_token", "ghp_test")
        base = tmp_path / "work"
        base.mkdir(exist_ok=True)
        return WorkflowContext.create(
            cluster_name,
            kwargs.pop("credentials", azure_credentials),
            home=home,
            base_dir=base,
            **kwargs,
        )

    return _make
