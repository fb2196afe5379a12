"""
RunState — the durable record of a provisioning run.

Serialized to ``<state_dir>/current.json`` after every step
transition so a crash mid-run leaves a resumable record. The record
is a hint, not the truth: the engine re-evaluates every step's
precondition on each run.

Secrets never appear here. ``parameters`` holds the redacted view
produced by ``InstallParameters.redacted()``.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from provisioner.core.models.step import StepResult

RunStatus = Literal["in_progress", "completed", "failed"]


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class RunState(BaseModel):
    """Root state model — one per host installation."""

    # ── Schema ───────────────────────────────────────────────────
    schema_version: int = 1

    # ── Identity ─────────────────────────────────────────────────
    run_id: str = ""
    parameters: dict[str, Any] = Field(default_factory=dict)

    # ── Progress ─────────────────────────────────────────────────
    completed_steps: list[str] = Field(default_factory=list)
    status: RunStatus = "in_progress"
    results: list[StepResult] = Field(default_factory=list)

    # ── Failure detail ───────────────────────────────────────────
    failed_step: str | None = None
    error: str | None = None
    error_kind: str | None = None    # apply, verify, cancelled
    cancelled: bool = False
    rollback_error: str | None = None

    # ── Timestamps ───────────────────────────────────────────────
    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)

    def touch(self) -> None:
        """Update the updated_at timestamp."""
        self.updated_at = _now_iso()

    def mark_completed(self, step_name: str) -> None:
        """Add a step to completed_steps (set semantics, order kept)."""
        if step_name not in self.completed_steps:
            self.completed_steps.append(step_name)

    def record(self, result: StepResult) -> None:
        """Append a step result for the current run."""
        self.results.append(result)

    @property
    def applied_steps(self) -> list[str]:
        return [r.step_name for r in self.results if r.status == "applied"]

    @property
    def skipped_steps(self) -> list[str]:
        return [r.step_name for r in self.results if r.status == "skipped"]

    @property
    def ok(self) -> bool:
        return self.status == "completed"

    def summary(self) -> dict[str, Any]:
        """Compact view for CLI and JSON output."""
        return {
            "run_id": self.run_id,
            "status": self.status,
            "completed_steps": list(self.completed_steps),
            "applied": self.applied_steps,
            "skipped": self.skipped_steps,
            "failed_step": self.failed_step,
            "error": self.error,
            "cancelled": self.cancelled,
        }
