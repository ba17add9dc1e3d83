"""
Tests for artifact relocation and pruning.
"""

from __future__ import annotations

import errno
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from kubepivot.core.errors import RelocationError
from kubepivot.core.services.relocate import ARTIFACT_DENYLIST, prune, relocate


@pytest.fixture
def workdir(tmp_path: Path) -> Path:
    wd = tmp_path / "kubepivot-abc"
    (wd / "demo" / "core" / "cluster").mkdir(parents=True)
    (wd / "demo" / "core" / "cluster" / "node-a.yaml").write_text("kind: Node\n")
    (wd / "demo.kubeconfig").write_text("kc")
    (wd / "kind.kubeconfig").write_text("kc")
    (wd / "cni-output").mkdir()
    (wd / "cni-output" / "apply.log").write_text("applied")
    return wd


class TestRelocate:
    def test_rename(self, workdir, tmp_path):
        final = tmp_path / "home" / "demo"
        assert relocate(workdir, final) == final

        assert not workdir.exists()
        assert (final / "demo.kubeconfig").read_text() == "kc"
        assert (final / "demo" / "core" / "cluster" / "node-a.yaml").is_file()

    def test_creates_parent(self, workdir, tmp_path):
        final = tmp_path / "a" / "b" / "demo"
        relocate(workdir, final)
        assert final.is_dir()

    def test_destination_exists(self, workdir, tmp_path):
        final = tmp_path / "demo"
        final.mkdir()
        with pytest.raises(RelocationError, match="already exists"):
            relocate(workdir, final)
        assert workdir.is_dir()

    def test_source_missing(self, tmp_path):
        with pytest.raises(RelocationError, match="does not exist"):
            relocate(tmp_path / "missing", tmp_path / "demo")

    def test_cross_device_copies(self, workdir, tmp_path):
        final = tmp_path / "home" / "demo"
        with patch(
            "kubepivot.core.services.relocate.os.rename",
            side_effect=OSError(errno.EXDEV, os.strerror(errno.EXDEV)),
        ):
            relocate(workdir, final)

        assert not workdir.exists()
        assert (final / "demo.kubeconfig").read_text() == "kc"
        assert (final / "cni-output" / "apply.log").read_text() == "applied"
        assert (final / "demo" / "core" / "cluster" / "node-a.yaml").is_file()

    def test_other_rename_error(self, workdir, tmp_path):
        with patch(
            "kubepivot.core.services.relocate.os.rename",
            side_effect=OSError(errno.EACCES, "Permission denied"),
        ):
            with pytest.raises(RelocationError, match="Cannot move"):
                relocate(workdir, tmp_path / "demo")
        assert workdir.is_dir()

    def test_copy_failure(self, workdir, tmp_path):
        with patch(
            "kubepivot.core.services.relocate.os.rename",
            side_effect=OSError(errno.EXDEV, "cross-device"),
        ), patch(
            "kubepivot.core.services.relocate.shutil.copytree",
            side_effect=OSError("disk full"),
        ):
            with pytest.raises(RelocationError, match="Cannot copy"):
                relocate(workdir, tmp_path / "demo")
        assert workdir.is_dir()


class TestPrune:
    def test_removes_denylisted(self, workdir):
        removed = prune(workdir)

        assert {p.name for p in removed} == {"kind.kubeconfig", "cni-output"}
        assert not (workdir / "kind.kubeconfig").exists()
        assert not (workdir / "cni-output").exists()
        assert (workdir / "demo.kubeconfig").is_file()
        assert (workdir / "demo").is_dir()

    def test_missing_entries_skipped(self, tmp_path):
        assert prune(tmp_path) == []

    def test_every_default_entry(self, tmp_path):
        for rel in ARTIFACT_DENYLIST:
            if rel.endswith(".yaml") or rel.endswith(".kubeconfig"):
                (tmp_path / rel).write_text("x")
            else:
                (tmp_path / rel).mkdir()
                (tmp_path / rel / "out.log").write_text("x")

        removed = prune(tmp_path)

        assert len(removed) == len(ARTIFACT_DENYLIST)
        assert list(tmp_path.iterdir()) == []

    def test_symlink_removed_not_followed(self, tmp_path):
        outside = tmp_path / "outside"
        outside.mkdir()
        (outside / "keep.txt").write_text("x")
        final = tmp_path / "final"
        final.mkdir()
        (final / "cni-output").symlink_to(outside, target_is_directory=True)

        prune(final)

        assert not (final / "cni-output").exists()
        assert (outside / "keep.txt").is_file()

    def test_custom_denylist(self, workdir):
        removed = prune(workdir, ("demo.kubeconfig",))
        assert removed == [workdir / "demo.kubeconfig"]
        assert (workdir / "kind.kubeconfig").exists()

    @pytest.mark.parametrize("entry", ["../escape", "/etc/passwd", "a/../../b"])
    def test_escaping_entries_rejected(self, tmp_path, entry):
        with pytest.raises(RelocationError, match="Refusing"):
            prune(tmp_path, (entry,))

    def test_remove_failure(self, workdir):
        with patch(
            "kubepivot.core.services.relocate.shutil.rmtree",
            side_effect=OSError("busy"),
        ):
            with pytest.raises(RelocationError, match="Cannot remove"):
                prune(workdir, ("cni-output",))
