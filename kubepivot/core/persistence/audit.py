"""
Run ledger — append-only history of provisioning runs.

Every run, successful or not, appends one RunRecord to an NDJSON
(newline-delimited JSON) file in the kubepivot home.  Aborted runs are
the interesting ones: the record names the failed stage and what was
left behind for manual cleanup.

The ledger is append-only: records are never modified or deleted.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_LEDGER_FILE = "runs.ndjson"


class RunRecord(BaseModel):
    """One provisioning run, as persisted."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    run_id: str = ""
    cluster_name: str = ""
    provider: str = ""
    gitops_controller: str = ""

    status: str = ""               # ok, aborted
    final_stage: str = ""
    failed_stage: str | None = None
    duration_ms: int = 0

    error: str | None = None
    leftovers: list[str] = Field(default_factory=list)
    artifacts_dir: str | None = None

    # Per-stage summary: stage → status
    stages: dict[str, str] = Field(default_factory=dict)

    # Non-secret run parameters (region, visibility, HA)
    context: dict[str, Any] = Field(default_factory=dict)


class AuditWriter:
    """Append-only run ledger.

    Each call to write() appends a single JSON line.  The file and its
    directory are created on first write.
    """

    def __init__(self, path: Path | None = None, home: Path | None = None):
        if path is not None:
            self._path = path
        elif home is not None:
            self._path = home / DEFAULT_LEDGER_FILE
        else:
            raise ValueError("AuditWriter needs a path or a home directory")

    @property
    def path(self) -> Path:
        return self._path

    def write(self, record: RunRecord) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(record.model_dump(mode="json"), ensure_ascii=False) + "\n"

        try:
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line)
            logger.debug("Run record written: %s (%s)", record.run_id, record.status)
        except OSError as e:
            logger.error("Failed to write run record: %s", e)

    def read_all(self) -> list[RunRecord]:
        """All records, oldest first.  Corrupt lines are skipped with a warning."""
        if not self._path.is_file():
            return []

        records = []
        try:
            with self._path.open("r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        records.append(RunRecord.model_validate(json.loads(line)))
                    except (json.JSONDecodeError, ValidationError) as e:
                        logger.warning("Skipping corrupt run record at line %d: %s", line_num, e)
        except OSError as e:
            logger.error("Failed to read run ledger: %s", e)

        return records

    def read_recent(self, n: int = 20) -> list[RunRecord]:
        """The most recent ``n`` records, oldest first."""
        if n <= 0:
            return []
        return self.read_all()[-n:]

    def entry_count(self) -> int:
        if not self._path.is_file():
            return 0
        try:
            with self._path.open("r", encoding="utf-8") as f:
                return sum(1 for line in f if line.strip())
        except OSError:
            return 0
