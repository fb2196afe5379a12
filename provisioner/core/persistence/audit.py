"""
Execution log — append-only record of step results.

Every step transition writes one line to an NDJSON (newline-delimited
JSON) file, tagged with the run it belongs to. This is the host's
provisioning history: entries are never modified or deleted, and a
fresh install archives the run state but keeps the log.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import BaseModel

from provisioner.core.models.step import StepResult

logger = logging.getLogger(__name__)

DEFAULT_AUDIT_FILE = "audit.ndjson"


class AuditEntry(BaseModel):
    """A single execution log line."""

    run_id: str
    result: StepResult


class AuditWriter:
    """Append-only execution log writer.

    Logging is best effort: the authoritative record is the run state,
    so a failed append is reported but does not fail the run.
    """

    def __init__(self, path: Path | None = None, state_dir: Path | None = None):
        if path is not None:
            self._path = path
        elif state_dir is not None:
            self._path = state_dir / DEFAULT_AUDIT_FILE
        else:
            self._path = Path(DEFAULT_AUDIT_FILE)

    @property
    def path(self) -> Path:
        return self._path

    def write(self, run_id: str, result: StepResult) -> None:
        """Append a step result to the log."""
        entry = AuditEntry(run_id=run_id, result=result)
        line = json.dumps(entry.model_dump(mode="json"), ensure_ascii=False) + "\n"

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line)
            logger.debug("Execution log: %s/%s → %s", run_id, result.step_name, result.status)
        except OSError as e:
            logger.error("Failed to write execution log entry: %s", e)

    def read_all(self) -> list[AuditEntry]:
        """Read all entries, oldest first. Corrupt lines are skipped."""
        if not self._path.is_file():
            return []

        entries = []
        try:
            with self._path.open("r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entries.append(AuditEntry.model_validate(json.loads(line)))
                    except ValueError as e:
                        logger.warning("Skipping corrupt log entry at line %d: %s", line_num, e)
        except OSError as e:
            logger.error("Failed to read execution log: %s", e)

        return entries

    def read_run(self, run_id: str) -> list[StepResult]:
        """All results recorded for one run, in order."""
        return [e.result for e in self.read_all() if e.run_id == run_id]

    def read_recent(self, n: int = 20) -> list[AuditEntry]:
        """Read the most recent N entries."""
        return self.read_all()[-n:]
