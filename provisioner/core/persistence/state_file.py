"""
State recorder — atomic read/write for RunState.

State is stored as JSON in ``<state_dir>/current.json`` with mode 0600.
Writes are atomic (temp file in the same directory, fsync, rename) so
either the whole new record is visible or the old one is. A write that
cannot complete raises ``PersistenceError``: losing run state would
defeat the idempotency guarantee, so it is never ignored.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from provisioner.core.errors import PersistenceError
from provisioner.core.models.state import RunState

logger = logging.getLogger(__name__)

DEFAULT_STATE_FILE = "current.json"
DEFAULT_LOCK_FILE = "run.lock"
DEFAULT_ARCHIVE_DIR = "archive"

_FILE_MODE = 0o600
_DIR_MODE = 0o700


class StateRecorder:
    """Durable store for the single RunState of this host."""

    def __init__(self, state_dir: Path):
        self._dir = state_dir

    @property
    def state_dir(self) -> Path:
        return self._dir

    @property
    def path(self) -> Path:
        return self._dir / DEFAULT_STATE_FILE

    @property
    def lock_path(self) -> Path:
        return self._dir / DEFAULT_LOCK_FILE

    @property
    def archive_dir(self) -> Path:
        return self._dir / DEFAULT_ARCHIVE_DIR

    def load(self) -> RunState | None:
        """Load the run state.

        Returns:
            RunState, or None if there is no record. A corrupt record is
            logged and treated as absent: every precondition is re-checked
            on the next run anyway.
        """
        path = self.path
        if not path.is_file():
            logger.info("No run state at %s, starting fresh", path)
            return None

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            state = RunState.model_validate(data)
        except json.JSONDecodeError as e:
            logger.warning("Corrupt run state %s: %s, starting fresh", path, e)
            return None
        except ValidationError as e:
            logger.warning("Invalid run state %s: %s, starting fresh", path, e)
            return None
        except OSError as e:
            raise PersistenceError(f"Cannot read run state {path}: {e}") from e

        logger.debug("Loaded run state %s (status=%s)", state.run_id, state.status)
        return state

    def persist(self, state: RunState) -> None:
        """Write the run state atomically with owner-only permissions.

        Raises:
            PersistenceError: if the record could not be durably written.
        """
        state.touch()
        path = self.path
        content = json.dumps(state.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n"

        try:
            self._dir.mkdir(parents=True, exist_ok=True, mode=_DIR_MODE)
            fd, tmp_path = tempfile.mkstemp(dir=self._dir, prefix=".state_", suffix=".tmp")
        except OSError as e:
            raise PersistenceError(f"Cannot prepare state directory {self._dir}: {e}") from e

        tmp = Path(tmp_path)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp, _FILE_MODE)
            os.replace(tmp, path)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            logger.error("Failed to save run state to %s: %s", path, e)
            raise PersistenceError(f"Cannot write run state {path}: {e}") from e

        logger.debug("Run state saved to %s (%s)", path, state.status)

    def archive(self) -> Path | None:
        """Move the current record aside for a fresh install.

        Returns:
            Path of the archived record, or None if there was nothing to archive.
        """
        path = self.path
        if not path.is_file():
            return None

        state = self.load()
        stem = state.run_id if state and state.run_id else "unknown"
        target = self.archive_dir / f"{stem}.json"
        counter = 1
        while target.exists():
            target = self.archive_dir / f"{stem}.{counter}.json"
            counter += 1

        try:
            self.archive_dir.mkdir(parents=True, exist_ok=True, mode=_DIR_MODE)
            os.replace(path, target)
        except OSError as e:
            raise PersistenceError(f"Cannot archive run state {path}: {e}") from e

        logger.info("Run state archived to %s", target)
        return target
