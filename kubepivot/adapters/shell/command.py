"""
Process runner — the one place external CLIs are executed.

Every adapter (kind, clusterctl, kubectl, git, gh, flux) goes through
``run_tool``.  Failures surface as ``ToolError``; ``require_ok`` turns
a non-zero exit into one and tags it retryable when stderr looks like
a transient network or API-server condition.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import time
from pathlib import Path

from kubepivot.core.errors import ToolError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300

# Lower-cased stderr fragments that indicate a transient condition.
TRANSIENT_MARKERS = (
    "connection refused",
    "connection reset",
    "i/o timeout",
    "tls handshake timeout",
    "etcdserver: request timed out",
    "the server is currently unable to handle the request",
    "unable to connect to the server",
    "context deadline exceeded",
    "too many requests",
    "502 bad gateway",
    "503 service unavailable",
    "504 gateway timeout",
    "could not resolve host",
)


def is_transient(stderr: str) -> bool:
    """Whether a failure message looks retryable."""
    lowered = stderr.lower()
    return any(marker in lowered for marker in TRANSIENT_MARKERS)


def tool_available(binary: str) -> bool:
    return shutil.which(binary) is not None


def run_tool(
    binary: str,
    *args: str,
    timeout: int = DEFAULT_TIMEOUT,
    env: dict[str, str] | None = None,
    cwd: Path | None = None,
    stdin: str | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run ``binary`` with ``args`` and return the completed process.

    ``env`` entries are layered over the current environment.

    Raises:
        ToolError: Binary not found, or timed out (retryable).
    """
    command = [binary, *args]
    merged_env = {**os.environ, **env} if env else None

    logger.debug("Executing: %s (cwd=%s)", " ".join(command), cwd)
    start = time.monotonic()

    try:
        result = subprocess.run(
            command,
            cwd=str(cwd) if cwd else None,
            env=merged_env,
            input=stdin,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError as e:
        raise ToolError(f"'{binary}' is not installed or not on PATH", command=command) from e
    except subprocess.TimeoutExpired as e:
        raise ToolError(
            f"'{binary} {args[0] if args else ''}' timed out after {timeout}s",
            command=command,
            retryable=True,
        ) from e

    elapsed_ms = int((time.monotonic() - start) * 1000)
    logger.debug("%s exited %d in %dms", binary, result.returncode, elapsed_ms)
    return result


def require_ok(
    result: subprocess.CompletedProcess[str],
    action: str,
) -> str:
    """Return stdout of a successful run or raise ToolError.

    Args:
        result: Completed process from ``run_tool``.
        action: Human description used in the error message.
    """
    if result.returncode == 0:
        return result.stdout

    stderr = (result.stderr or "").strip()
    raise ToolError(
        f"{action} failed (exit {result.returncode})",
        command=list(result.args) if isinstance(result.args, (list, tuple)) else [],
        returncode=result.returncode,
        stderr=stderr or (result.stdout or "").strip(),
        retryable=is_transient(stderr),
    )
