"""
Cluster state exporter — live cluster-scoped objects → stable manifests.

Reads every instance of the supported cluster-scoped kinds, strips
identity and mutation-tracking fields, guarantees ``kind`` and
``apiVersion`` are set, and writes one YAML file per object.  Output
is deterministic: exporting an unchanged cluster twice yields the same
file names with byte-identical contents, so git diffs in the GitOps
repository show only real state changes.

Cluster access goes through the ``ClusterReader`` protocol.  The
production reader shells out to kubectl; tests use an in-memory fake.

Failure policy:
    - a failed listing is fatal (``ExportError``);
    - a failed re-fetch, type resolution or write affects only that
      object: it is skipped and recorded in ``ExportReport.errors``;
    - ``strict=True`` raises after the pass if any object failed.
"""

from __future__ import annotations

import copy
import logging
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import yaml

from kubepivot.core.errors import ExportError, ToolError
from kubepivot.core.services.kube_common import kubectl_json

logger = logging.getLogger(__name__)

API_VERSION_INTERNAL = "__internal"
EXPORT_SUBDIR = Path("core") / "cluster"

# metadata fields that identify a live instance or track its mutations
IDENTITY_FIELDS = (
    "resourceVersion",
    "uid",
    "selfLink",
    "managedFields",
    "finalizers",
    "ownerReferences",
    "generation",
    "annotations",
)

# characters that are unsafe in file names or git paths
_UNSAFE_NAME_CHARS = str.maketrans({":": "-"})


# ═══════════════════════════════════════════════════════════════════
#  Type registry
# ═══════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class GroupVersionKind:
    group: str
    version: str
    kind: str

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version


class TypeRegistry:
    """Maps a kind to the group/versions it is served under.

    Registration order matters: the first version that is not the
    internal placeholder wins when type information has to be filled in.
    """

    def __init__(self) -> None:
        self._kinds: dict[str, list[GroupVersionKind]] = {}

    def register(self, kind: str, group: str, *versions: str) -> None:
        entries = self._kinds.setdefault(kind, [])
        for version in versions:
            entries.append(GroupVersionKind(group=group, version=version, kind=kind))

    def object_kinds(self, kind: str) -> list[GroupVersionKind]:
        """All registered GVKs for ``kind``; empty when unknown."""
        return list(self._kinds.get(kind, []))

    def preferred(self, kind: str) -> GroupVersionKind | None:
        """First usable external version of ``kind``."""
        for gvk in self._kinds.get(kind, []):
            if not gvk.kind:
                continue
            if not gvk.version or gvk.version == API_VERSION_INTERNAL:
                continue
            return gvk
        return None


def _default_scheme() -> TypeRegistry:
    scheme = TypeRegistry()
    scheme.register("Node", "", API_VERSION_INTERNAL, "v1")
    return scheme


DEFAULT_SCHEME = _default_scheme()


@dataclass(frozen=True)
class ExportKind:
    """A cluster-scoped kind to export."""

    kind: str        # e.g. "Node"
    resource: str    # kubectl resource name, e.g. "nodes"
    prefix: str      # file name prefix, e.g. "node"


EXPORT_KINDS: tuple[ExportKind, ...] = (
    ExportKind(kind="Node", resource="nodes", prefix="node"),
)


# ═══════════════════════════════════════════════════════════════════
#  Cluster access
# ═══════════════════════════════════════════════════════════════════


class ClusterReader(Protocol):
    """Read-only access to cluster-scoped objects."""

    def list_objects(self, resource: str) -> list[dict[str, Any]]:
        ...

    def get_object(self, resource: str, name: str) -> dict[str, Any]:
        ...


class KubectlClusterReader:
    """ClusterReader backed by ``kubectl get -o json``."""

    def __init__(self, kubeconfig: Path, timeout: int = 60):
        self._kubeconfig = kubeconfig
        self._timeout = timeout

    def list_objects(self, resource: str) -> list[dict[str, Any]]:
        data = kubectl_json("get", resource, kubeconfig=self._kubeconfig, timeout=self._timeout)
        return list(data.get("items") or [])

    def get_object(self, resource: str, name: str) -> dict[str, Any]:
        return kubectl_json(
            "get", resource, name, kubeconfig=self._kubeconfig, timeout=self._timeout
        )


# ═══════════════════════════════════════════════════════════════════
#  Pure transformations
# ═══════════════════════════════════════════════════════════════════


def sanitize_object(obj: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``obj`` without identity, mutation or status data.

    The creation timestamp is kept as an explicit null, the way the
    Kubernetes serializer renders a zero timestamp.  The whole status
    subresource, nested blocks included, becomes an empty mapping.
    """
    clean = copy.deepcopy(obj)
    metadata = clean.get("metadata") or {}
    clean["metadata"] = metadata
    for key in IDENTITY_FIELDS:
        metadata.pop(key, None)
    metadata["creationTimestamp"] = None
    clean["status"] = {}
    return clean


def ensure_type_info(
    obj: dict[str, Any],
    kind: str,
    scheme: TypeRegistry = DEFAULT_SCHEME,
) -> dict[str, Any]:
    """Fill in a missing ``kind`` / ``apiVersion`` from the type registry.

    Objects returned by ``get`` usually carry both; items of a list
    often do not.

    Raises:
        ExportError: The kind is not registered under any usable version.
    """
    if obj.get("kind") and obj.get("apiVersion"):
        return obj

    lookup = obj.get("kind") or kind
    gvk = scheme.preferred(lookup)
    if gvk is None:
        raise ExportError(f"missing apiVersion or kind and cannot assign it for kind '{lookup}'")

    obj["kind"] = gvk.kind
    obj["apiVersion"] = gvk.api_version
    return obj


def manifest_filename(prefix: str, name: str) -> str:
    """``<prefix>-<name>.yaml`` with unsafe characters mapped to hyphens."""
    return f"{prefix}-{name.translate(_UNSAFE_NAME_CHARS)}.yaml"


def render_manifest(obj: dict[str, Any]) -> str:
    """Serialize one object as a declarative YAML manifest.

    Keys are sorted so the output depends only on the object's content.
    """
    return yaml.safe_dump(obj, sort_keys=True, default_flow_style=False, allow_unicode=True)


# ═══════════════════════════════════════════════════════════════════
#  Export
# ═══════════════════════════════════════════════════════════════════


@dataclass
class ExportReport:
    """What an export pass wrote, skipped and failed on."""

    output_dir: Path
    written: list[Path] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "output_dir": str(self.output_dir),
            "ok": self.ok,
            "written": [str(p) for p in self.written],
            "skipped": list(self.skipped),
            "errors": dict(self.errors),
        }


def _write_atomic(path: Path, content: str) -> None:
    """Write-to-temp-then-rename so readers never see a partial file."""
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".export_", suffix=".tmp")
    tmp = Path(tmp_name)
    try:
        with open(fd, "w", encoding="utf-8") as fh:
            fh.write(content)
        tmp.replace(path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


def export_cluster_scoped(
    reader: ClusterReader,
    output_dir: Path,
    *,
    kinds: tuple[ExportKind, ...] = EXPORT_KINDS,
    scheme: TypeRegistry = DEFAULT_SCHEME,
    strict: bool = False,
) -> ExportReport:
    """Export every instance of ``kinds`` into ``output_dir``.

    Raises:
        ExportError: Listing failed, or ``strict`` and any object failed.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    report = ExportReport(output_dir=output_dir)
    # target file → object key that wrote it in this pass
    claimed: dict[Path, str] = {}

    for export_kind in kinds:
        try:
            items = reader.list_objects(export_kind.resource)
        except ToolError as e:
            raise ExportError(
                f"Cannot list {export_kind.resource}: {e.stderr or e.message}",
                report=report,
                retryable=e.retryable,
            ) from e

        names = sorted(
            name for name in ((item.get("metadata") or {}).get("name") for item in items) if name
        )
        skipped = len(items) - len(names)
        if skipped:
            logger.debug("Skipping %d unnamed %s", skipped, export_kind.resource)

        for name in names:
            key = f"{export_kind.prefix}/{name}"
            try:
                live = reader.get_object(export_kind.resource, name)
            except ToolError as e:
                detail = e.stderr or e.message
                if "notfound" in detail.replace(" ", "").lower():
                    # deleted between list and get
                    report.skipped.append(key)
                    continue
                report.errors[key] = detail
                logger.warning("Cannot fetch %s: %s", key, detail)
                continue

            target = output_dir / manifest_filename(export_kind.prefix, name)
            if target in claimed:
                report.errors[key] = f"file {target.name} already written for {claimed[target]}"
                logger.warning("Cannot export %s: %s", key, report.errors[key])
                continue

            try:
                manifest = ensure_type_info(sanitize_object(live), export_kind.kind, scheme)
                content = render_manifest(manifest)
                _write_atomic(target, content)
            except (ExportError, yaml.YAMLError, OSError) as e:
                report.errors[key] = str(e)
                logger.warning("Cannot export %s: %s", key, e)
                continue

            claimed[target] = key
            report.written.append(target)
            logger.debug("Exported %s → %s", key, target.name)

    logger.info(
        "Exported %d object(s) to %s (%d error(s))",
        len(report.written),
        output_dir,
        len(report.errors),
    )

    if strict and report.errors:
        raise ExportError(
            f"{len(report.errors)} object(s) failed to export: "
            + ", ".join(sorted(report.errors)),
            report=report,
        )
    return report


def export_cluster_yaml(
    kubeconfig: Path,
    repo_dir: Path,
    *,
    reader: ClusterReader | None = None,
    strict: bool = False,
) -> ExportReport:
    """Export the cluster behind ``kubeconfig`` into ``repo_dir/core/cluster``."""
    if reader is None:
        reader = KubectlClusterReader(kubeconfig)
    return export_cluster_scoped(reader, repo_dir / EXPORT_SUBDIR, strict=strict)
