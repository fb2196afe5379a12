"""
Step and StepResult — the provisioning contract.

A Step is the smallest unit of provisioning: a named, idempotent
operation with a pre-check, an apply action and a post-check.
Steps are defined once when a registry is built and never mutated.

A StepResult records what happened to one Step in one run. It is
created once and never modified afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Callable, Literal

from pydantic import BaseModel, ConfigDict, Field

StepStatus = Literal["skipped", "applied", "failed"]


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


@dataclass(frozen=True)
class StepContext:
    """Everything a step function sees while it runs.

    ``host`` is opaque to the engine: for the real pipelines it is a
    ``Host`` (collaborators + settings), in tests it can be anything.
    """

    parameters: Any
    host: Any = None
    timeout: int = 300
    applied: frozenset[str] = frozenset()


Predicate = Callable[[StepContext], bool]
Action = Callable[[StepContext], Any]


@dataclass(frozen=True)
class Step:
    """A named, idempotent provisioning operation.

    Attributes:
        name: Unique identifier within a registry.
        precondition: True when the step is already satisfied; apply is skipped.
        apply: Side-effecting action. Only invoked when precondition is False.
        postcondition: Must hold after apply, otherwise the step fails.
        rollback: Optional compensating action for this step's own failure.
        description: Human label shown by the CLI.
        timeout: Seconds allowed for each collaborator call the step makes.
        retries: Extra apply attempts on error (0 = never retry).
        retry_delay: Base delay in seconds between attempts (exponential).
        depends_on: Names of earlier steps this one requires.
    """

    name: str
    precondition: Predicate
    apply: Action
    postcondition: Predicate
    rollback: Action | None = None
    description: str = ""
    timeout: int = 300
    retries: int = 0
    retry_delay: float = 2.0
    depends_on: tuple[str, ...] = field(default_factory=tuple)

    @property
    def label(self) -> str:
        return self.description or self.name

    def __repr__(self) -> str:
        return f"<Step name={self.name!r}>"


class StepResult(BaseModel):
    """Outcome of a single step in a single run (immutable)."""

    model_config = ConfigDict(frozen=True)

    step_name: str
    status: StepStatus
    error: str | None = None
    timestamp: str = Field(default_factory=_now_iso)
    attempts: int = 0
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.status != "failed"
