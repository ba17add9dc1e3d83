"""
Tests for the cluster state exporter — sanitization, type resolution,
file naming and the per-object failure policy.

Uses FakeClusterReader; no kubectl.
"""

from __future__ import annotations

from unittest.mock import patch

import pytest
import yaml

from kubepivot.adapters.mock import FakeClusterReader
from kubepivot.core.errors import ExportError, ToolError
from kubepivot.core.services.exporter import (
    API_VERSION_INTERNAL,
    DEFAULT_SCHEME,
    EXPORT_KINDS,
    EXPORT_SUBDIR,
    IDENTITY_FIELDS,
    KubectlClusterReader,
    TypeRegistry,
    ensure_type_info,
    export_cluster_scoped,
    export_cluster_yaml,
    manifest_filename,
    render_manifest,
    sanitize_object,
)


def _files(directory):
    return sorted(p.name for p in directory.iterdir())


# ═══════════════════════════════════════════════════════════════════
#  sanitize_object
# ═══════════════════════════════════════════════════════════════════


class TestSanitizeObject:
    def test_identity_fields_removed(self, make_node):
        clean = sanitize_object(make_node("n1"))
        for key in IDENTITY_FIELDS:
            assert key not in clean["metadata"], key

    def test_creation_timestamp_null(self, make_node):
        clean = sanitize_object(make_node("n1"))
        assert "creationTimestamp" in clean["metadata"]
        assert clean["metadata"]["creationTimestamp"] is None

    def test_status_emptied_including_nested(self, make_node):
        clean = sanitize_object(make_node("n1"))
        assert clean["status"] == {}

    def test_status_added_when_absent(self):
        clean = sanitize_object({"kind": "Node", "metadata": {"name": "n1"}})
        assert clean["status"] == {}

    def test_labels_and_spec_preserved(self, make_node):
        clean = sanitize_object(make_node("n1", unschedulable=True))
        assert clean["metadata"]["labels"] == {"kubernetes.io/hostname": "n1"}
        assert clean["metadata"]["name"] == "n1"
        assert clean["spec"]["unschedulable"] is True

    def test_input_not_mutated(self, make_node):
        node = make_node("n1")
        sanitize_object(node)
        assert node["metadata"]["uid"] == "uid-n1"
        assert node["status"]["conditions"]

    def test_idempotent(self, make_node):
        once = sanitize_object(make_node("n1"))
        assert sanitize_object(once) == once

    def test_null_metadata(self):
        clean = sanitize_object({"kind": "Node", "metadata": None})
        assert clean["metadata"] == {"creationTimestamp": None}


# ═══════════════════════════════════════════════════════════════════
#  Type information
# ═══════════════════════════════════════════════════════════════════


class TestTypeRegistry:
    def test_preferred_skips_internal(self):
        gvk = DEFAULT_SCHEME.preferred("Node")
        assert gvk.version == "v1"
        assert gvk.api_version == "v1"

    def test_grouped_api_version(self):
        scheme = TypeRegistry()
        scheme.register("StorageClass", "storage.k8s.io", API_VERSION_INTERNAL, "v1", "v1beta1")
        assert scheme.preferred("StorageClass").api_version == "storage.k8s.io/v1"

    def test_default_scheme_covers_export_kinds(self):
        for export_kind in EXPORT_KINDS:
            assert DEFAULT_SCHEME.preferred(export_kind.kind) is not None

    def test_unknown_kind(self):
        assert DEFAULT_SCHEME.preferred("Widget") is None
        assert DEFAULT_SCHEME.object_kinds("Widget") == []

    def test_only_internal_version(self):
        scheme = TypeRegistry()
        scheme.register("Widget", "example.com", API_VERSION_INTERNAL)
        assert scheme.preferred("Widget") is None

    def test_first_external_version_wins(self):
        scheme = TypeRegistry()
        scheme.register("Widget", "example.com", API_VERSION_INTERNAL, "v2", "v1")
        assert scheme.preferred("Widget").version == "v2"


class TestEnsureTypeInfo:
    def test_present_info_untouched(self):
        obj = {"kind": "Node", "apiVersion": "v1"}
        assert ensure_type_info(obj, "Node") == {"kind": "Node", "apiVersion": "v1"}

    def test_missing_info_filled(self):
        obj = ensure_type_info({"metadata": {"name": "n1"}}, "Node")
        assert obj["kind"] == "Node"
        assert obj["apiVersion"] == "v1"

    def test_missing_api_version_uses_object_kind(self):
        scheme = TypeRegistry()
        scheme.register("ClusterRole", "rbac.authorization.k8s.io", API_VERSION_INTERNAL, "v1")
        obj = ensure_type_info({"kind": "ClusterRole"}, "Node", scheme)
        assert obj["apiVersion"] == "rbac.authorization.k8s.io/v1"

    def test_unresolvable_kind(self):
        with pytest.raises(ExportError, match="cannot assign"):
            ensure_type_info({"metadata": {"name": "w"}}, "Widget")


# ═══════════════════════════════════════════════════════════════════
#  Naming & rendering
# ═══════════════════════════════════════════════════════════════════


class TestManifestFilename:
    def test_plain(self):
        assert manifest_filename("node", "demo-md-0") == "node-demo-md-0.yaml"

    def test_colon_mapped(self):
        assert manifest_filename("clusterrole", "system:node") == "clusterrole-system-node.yaml"


class TestRenderManifest:
    def test_sorted_keys(self):
        text = render_manifest({"spec": {}, "apiVersion": "v1", "kind": "Node"})
        assert text.index("apiVersion") < text.index("kind") < text.index("spec")

    def test_null_timestamp_rendered(self):
        text = render_manifest({"metadata": {"creationTimestamp": None, "name": "n1"}})
        assert "creationTimestamp: null" in text

    def test_parses_back(self, make_node):
        clean = sanitize_object(make_node("n1"))
        assert yaml.safe_load(render_manifest(clean)) == clean


# ═══════════════════════════════════════════════════════════════════
#  export_cluster_scoped
# ═══════════════════════════════════════════════════════════════════


class TestExport:
    def test_one_file_per_node(self, tmp_path, make_node):
        reader = FakeClusterReader({"nodes": [make_node("b"), make_node("a")]})
        report = export_cluster_scoped(reader, tmp_path / "out")

        assert report.ok
        assert _files(tmp_path / "out") == ["node-a.yaml", "node-b.yaml"]
        assert [p.name for p in report.written] == ["node-a.yaml", "node-b.yaml"]

    def test_written_content(self, tmp_path, make_node):
        reader = FakeClusterReader({"nodes": [make_node("a")]})
        export_cluster_scoped(reader, tmp_path)

        doc = yaml.safe_load((tmp_path / "node-a.yaml").read_text())
        assert doc["kind"] == "Node"
        assert doc["apiVersion"] == "v1"
        assert doc["status"] == {}
        assert doc["metadata"]["creationTimestamp"] is None
        assert "uid" not in doc["metadata"]
        assert "annotations" not in doc["metadata"]

    def test_deterministic(self, tmp_path, make_node):
        reader = FakeClusterReader({"nodes": [make_node("a"), make_node("b")]})
        export_cluster_scoped(reader, tmp_path / "one")
        export_cluster_scoped(reader, tmp_path / "two")

        for name in ("node-a.yaml", "node-b.yaml"):
            assert (tmp_path / "one" / name).read_bytes() == (tmp_path / "two" / name).read_bytes()

    def test_rerun_overwrites(self, tmp_path, make_node):
        reader = FakeClusterReader({"nodes": [make_node("a")]})
        export_cluster_scoped(reader, tmp_path)
        first = (tmp_path / "node-a.yaml").read_text()
        export_cluster_scoped(reader, tmp_path)
        assert (tmp_path / "node-a.yaml").read_text() == first
        assert _files(tmp_path) == ["node-a.yaml"]

    def test_no_nodes(self, tmp_path):
        report = export_cluster_scoped(FakeClusterReader(), tmp_path / "out")
        assert report.ok
        assert report.written == []
        assert (tmp_path / "out").is_dir()

    def test_unnamed_items_ignored(self, tmp_path, make_node):
        reader = FakeClusterReader({"nodes": [make_node("a"), {"kind": "Node", "metadata": {}}]})
        report = export_cluster_scoped(reader, tmp_path)
        assert _files(tmp_path) == ["node-a.yaml"]
        assert report.ok

    def test_list_items_without_type_info(self, tmp_path, make_node):
        node = make_node("a")
        del node["kind"]
        del node["apiVersion"]
        reader = FakeClusterReader({"nodes": [node]})
        export_cluster_scoped(reader, tmp_path)

        doc = yaml.safe_load((tmp_path / "node-a.yaml").read_text())
        assert doc["kind"] == "Node"
        assert doc["apiVersion"] == "v1"

    def test_no_temp_files_left(self, tmp_path, make_node):
        reader = FakeClusterReader({"nodes": [make_node("a")]})
        export_cluster_scoped(reader, tmp_path)
        assert not list(tmp_path.glob(".export_*"))


class TestExportFailures:
    def test_list_failure_is_fatal(self, tmp_path):
        reader = FakeClusterReader()
        with patch.object(
            reader, "list_objects", side_effect=ToolError("x", stderr="Unauthorized")
        ):
            with pytest.raises(ExportError, match="Cannot list nodes: Unauthorized") as exc:
                export_cluster_scoped(reader, tmp_path)
        assert not exc.value.retryable

    def test_list_failure_keeps_retry_tag(self, tmp_path):
        reader = FakeClusterReader()
        with patch.object(
            reader, "list_objects", side_effect=ToolError("timed out", retryable=True)
        ):
            with pytest.raises(ExportError) as exc:
                export_cluster_scoped(reader, tmp_path)
        assert exc.value.retryable

    def test_get_failure_skips_object(self, tmp_path, make_node):
        reader = FakeClusterReader({"nodes": [make_node("a"), make_node("b")]})
        reader.failing_gets["a"] = ToolError("x", stderr="connection reset")

        report = export_cluster_scoped(reader, tmp_path)

        assert not report.ok
        assert report.errors == {"node/a": "connection reset"}
        assert _files(tmp_path) == ["node-b.yaml"]

    def test_deleted_between_list_and_get(self, tmp_path, make_node):
        reader = FakeClusterReader({"nodes": [make_node("a")]})
        reader.failing_gets["a"] = ToolError(
            "x", stderr='Error from server (NotFound): nodes "a" not found'
        )

        report = export_cluster_scoped(reader, tmp_path)

        assert report.ok
        assert report.skipped == ["node/a"]
        assert _files(tmp_path) == []

    def test_unresolvable_type_skips_object(self, tmp_path, make_node):
        node = make_node("a")
        del node["apiVersion"]
        node["kind"] = "Widget"
        reader = FakeClusterReader({"nodes": [node, make_node("b")]})

        report = export_cluster_scoped(reader, tmp_path)

        assert "node/a" in report.errors
        assert _files(tmp_path) == ["node-b.yaml"]

    def test_null_metadata_does_not_abort_pass(self, tmp_path, make_node):
        reader = FakeClusterReader({"nodes": [make_node("a"), make_node("b")]})
        fetch = reader.get_object

        def get_object(resource, name):
            if name == "a":
                return {"apiVersion": "v1", "kind": "Node", "metadata": None}
            return fetch(resource, name)

        with patch.object(reader, "get_object", side_effect=get_object):
            report = export_cluster_scoped(reader, tmp_path)

        assert report.ok
        assert _files(tmp_path) == ["node-a.yaml", "node-b.yaml"]

    def test_colliding_file_names(self, tmp_path, make_node):
        reader = FakeClusterReader({"nodes": [make_node("a:b"), make_node("a-b")]})

        report = export_cluster_scoped(reader, tmp_path)

        assert _files(tmp_path) == ["node-a-b.yaml"]
        assert [p.name for p in report.written] == ["node-a-b.yaml"]
        assert report.errors == {"node/a:b": "file node-a-b.yaml already written for node/a-b"}
        written = yaml.safe_load((tmp_path / "node-a-b.yaml").read_text())
        assert written["metadata"]["name"] == "a-b"

    def test_strict_raises_after_pass(self, tmp_path, make_node):
        reader = FakeClusterReader({"nodes": [make_node("a"), make_node("b")]})
        reader.failing_gets["a"] = ToolError("x", stderr="boom")

        with pytest.raises(ExportError, match="1 object\\(s\\) failed") as exc:
            export_cluster_scoped(reader, tmp_path, strict=True)

        assert _files(tmp_path) == ["node-b.yaml"]
        assert exc.value.report.errors == {"node/a": "boom"}


class TestExportClusterYaml:
    def test_writes_under_core_cluster(self, tmp_path, make_node):
        reader = FakeClusterReader({"nodes": [make_node("a")]})
        report = export_cluster_yaml(tmp_path / "kc", tmp_path / "repo", reader=reader)

        assert report.output_dir == tmp_path / "repo" / EXPORT_SUBDIR
        assert (tmp_path / "repo" / "core" / "cluster" / "node-a.yaml").is_file()

    def test_report_to_dict(self, tmp_path, make_node):
        reader = FakeClusterReader({"nodes": [make_node("a")]})
        data = export_cluster_yaml(tmp_path / "kc", tmp_path, reader=reader).to_dict()
        assert data["ok"] is True
        assert data["written"][0].endswith("node-a.yaml")


class TestKubectlClusterReader:
    @patch("kubepivot.core.services.exporter.kubectl_json")
    def test_list_returns_items(self, mock_json, tmp_path):
        mock_json.return_value = {"items": [{"metadata": {"name": "a"}}]}
        reader = KubectlClusterReader(tmp_path / "kc")

        assert reader.list_objects("nodes") == [{"metadata": {"name": "a"}}]
        mock_json.assert_called_once_with(
            "get", "nodes", kubeconfig=tmp_path / "kc", timeout=60
        )

    @patch("kubepivot.core.services.exporter.kubectl_json")
    def test_get_object(self, mock_json, tmp_path):
        mock_json.return_value = {"kind": "Node"}
        reader = KubectlClusterReader(tmp_path / "kc", timeout=5)

        assert reader.get_object("nodes", "a") == {"kind": "Node"}
        mock_json.assert_called_once_with(
            "get", "nodes", "a", kubeconfig=tmp_path / "kc", timeout=5
        )
