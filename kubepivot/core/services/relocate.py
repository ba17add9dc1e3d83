"""
Artifact relocation — move the working directory to its permanent home
and prune what nobody needs afterwards.

``relocate`` renames the tree in one step when source and destination
share a filesystem.  ``os.rename`` fails with EXDEV across filesystem
boundaries (the working directory normally lives under /tmp, which is
often tmpfs); in that case the tree is copied and the source deleted.
The copy is not atomic: a crash mid-copy leaves a partial destination
and an intact source.
"""

from __future__ import annotations

import errno
import logging
import os
import shutil
from pathlib import Path

from kubepivot.core.errors import RelocationError

logger = logging.getLogger(__name__)

# Installer output, raw install manifests and the ephemeral kubeconfig:
# meaningless once the cluster manages itself.
ARTIFACT_DENYLIST: tuple[str, ...] = (
    "argocd-install-output",
    "capi-install-yamls-output",
    "cni-output",
    "fluxcd-install-output",
    "argocd-install.yaml",
    "flux-install.yaml",
    "cni.yaml",
    "install-cluster.yaml",
    "kind.kubeconfig",
)


def relocate(workdir: Path, final_dir: Path) -> Path:
    """Move ``workdir`` to ``final_dir``.

    Returns:
        ``final_dir``.

    Raises:
        RelocationError: Source missing, destination already present,
            or the move itself failed.
    """
    if not workdir.is_dir():
        raise RelocationError(f"Working directory does not exist: {workdir}")
    if final_dir.exists():
        raise RelocationError(f"Destination already exists: {final_dir}")

    final_dir.parent.mkdir(parents=True, exist_ok=True)

    try:
        os.rename(workdir, final_dir)
        logger.debug("Renamed %s → %s", workdir, final_dir)
        return final_dir
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise RelocationError(f"Cannot move {workdir} to {final_dir}: {e}") from e

    logger.debug("%s and %s are on different filesystems — copying", workdir, final_dir)
    try:
        shutil.copytree(workdir, final_dir, symlinks=True)
    except (OSError, shutil.Error) as e:
        raise RelocationError(f"Cannot copy {workdir} to {final_dir}: {e}") from e

    try:
        shutil.rmtree(workdir)
    except OSError as e:
        raise RelocationError(f"Copied to {final_dir} but cannot remove {workdir}: {e}") from e

    return final_dir


def prune(final_dir: Path, denylist: tuple[str, ...] = ARTIFACT_DENYLIST) -> list[Path]:
    """Delete every denylisted relative path under ``final_dir``.

    Paths that do not exist are skipped silently.

    Returns:
        The paths actually removed.

    Raises:
        RelocationError: An entry escapes ``final_dir`` or cannot be removed.
    """
    removed: list[Path] = []

    for rel in denylist:
        candidate = Path(rel)
        if candidate.is_absolute() or ".." in candidate.parts:
            raise RelocationError(f"Refusing to prune path outside {final_dir}: {rel}")

        target = final_dir / candidate
        try:
            if target.is_symlink() or target.is_file():
                target.unlink()
            elif target.is_dir():
                shutil.rmtree(target)
            else:
                continue
        except OSError as e:
            raise RelocationError(f"Cannot remove {target}: {e}") from e

        removed.append(target)
        logger.debug("Pruned %s", rel)

    return removed
