"""Domain models — public re-exports."""

from kubepivot.core.models.cluster import ClusterHandle, ClusterRole, GitOpsController, Repository
from kubepivot.core.models.providers import (
    PROVIDERS,
    AwsCredentials,
    AzureCredentials,
    ProviderCredentials,
    from_mapping,
)
from kubepivot.core.models.stage import PIPELINE, Stage, StageResult

__all__ = [
    "PIPELINE",
    "PROVIDERS",
    "AwsCredentials",
    "AzureCredentials",
    "ClusterHandle",
    "ClusterRole",
    "GitOpsController",
    "ProviderCredentials",
    "Repository",
    "Stage",
    "StageResult",
    "from_mapping",
]
