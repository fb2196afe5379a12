"""
Engine executor — the central provisioning loop.

Takes a step registry, validated parameters and the prior run state,
walks the steps in order and converges the host toward the declared
state. Every transition is persisted so a crash leaves a resumable
record.

Flow per step:
    cancel? → precondition → (skip | apply [retries] → postcondition) → record → persist

Failure policy is fail-stop and fix-forward: the first failing step
halts the run, its own rollback (if any) is invoked, earlier steps are
left in place.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

from provisioner.core.engine.cancel import CancelToken
from provisioner.core.engine.lock import RunLock
from provisioner.core.engine.registry import StepRegistry
from provisioner.core.errors import StepApplyError, StepError, StepVerifyError
from provisioner.core.models.parameters import REDACTED
from provisioner.core.models.state import RunState
from provisioner.core.models.step import Step, StepContext, StepResult
from provisioner.core.persistence.audit import AuditWriter
from provisioner.core.persistence.state_file import StateRecorder

logger = logging.getLogger(__name__)

MAX_RETRY_DELAY = 60.0

_SECRET_KEYS = ("password", "secret", "token")


def generate_run_id() -> str:
    """Generate a unique run ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"run-{now}-{short}"


def redact_parameters(parameters: Any) -> dict[str, Any]:
    """Produce the persistable view of run parameters."""
    redacted = getattr(parameters, "redacted", None)
    if callable(redacted):
        return dict(redacted())
    if isinstance(parameters, Mapping):
        return {
            k: (REDACTED if any(s in str(k).lower() for s in _SECRET_KEYS) else v)
            for k, v in parameters.items()
        }
    return {}


def run(
    registry: StepRegistry,
    parameters: Any,
    prior_state: RunState | None = None,
    *,
    recorder: StateRecorder,
    host: Any = None,
    cancel: CancelToken | None = None,
    audit: AuditWriter | None = None,
    run_id: str | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> RunState:
    """Apply the registry to the host and return the resulting RunState.

    Args:
        registry: The pipeline to run.
        parameters: Validated parameters handed to every step.
        prior_state: State from a previous run. Its completed_steps are
            carried over, but every precondition is still evaluated.
        recorder: Where the state is persisted after each transition.
        host: Collaborators and settings, passed through to steps.
        cancel: Honored between steps only.
        audit: Optional execution log receiving every StepResult.
        run_id: Override the generated run id.
        sleep: Delay function between retries.

    Returns:
        RunState with status ``completed`` or ``failed``.

    Raises:
        AlreadyRunning: another run holds the lock; no step is touched.
        PersistenceError: the state could not be recorded.
    """
    with RunLock(recorder.lock_path):
        return _run_locked(
            registry,
            parameters,
            prior_state,
            recorder=recorder,
            host=host,
            cancel=cancel,
            audit=audit,
            run_id=run_id or generate_run_id(),
            sleep=sleep,
        )


def _start_state(
    registry: StepRegistry,
    parameters: Any,
    prior_state: RunState | None,
    run_id: str,
) -> RunState:
    """Build the state this run starts from."""
    if prior_state is None:
        return RunState(run_id=run_id, parameters=redact_parameters(parameters))

    state = prior_state.model_copy(deep=True)
    unknown = set(state.completed_steps) - set(registry.names())
    if unknown:
        logger.warning("Ignoring unknown steps in prior state: %s", ", ".join(sorted(unknown)))
    state.run_id = run_id
    state.parameters = redact_parameters(parameters)
    state.completed_steps = registry.filter_known(state.completed_steps)
    state.status = "in_progress"
    state.results = []
    state.failed_step = None
    state.error = None
    state.error_kind = None
    state.cancelled = False
    state.rollback_error = None
    return state


def _run_locked(
    registry: StepRegistry,
    parameters: Any,
    prior_state: RunState | None,
    *,
    recorder: StateRecorder,
    host: Any,
    cancel: CancelToken | None,
    audit: AuditWriter | None,
    run_id: str,
    sleep: Callable[[float], None],
) -> RunState:
    state = _start_state(registry, parameters, prior_state, run_id)
    recorder.persist(state)
    logger.info("Run %s started (%d steps, registry=%s)", run_id, len(registry), registry.name)

    applied: list[str] = []

    for step in registry:
        if cancel is not None and cancel.cancelled:
            state.status = "failed"
            state.cancelled = True
            state.error_kind = "cancelled"
            state.error = f"Run cancelled before step '{step.name}': {cancel.reason}"
            recorder.persist(state)
            logger.warning("⊘ %s", state.error)
            return state

        ctx = StepContext(
            parameters=parameters,
            host=host,
            timeout=step.timeout,
            applied=frozenset(applied),
        )
        result, error = _execute_step(step, ctx, sleep)

        state.record(result)
        if audit is not None:
            audit.write(run_id, result)

        if error is not None:
            state.status = "failed"
            state.failed_step = step.name
            state.error = str(error)
            state.error_kind = error.kind
            # attempts == 0: the precondition raised, apply never ran
            if result.attempts > 0:
                _rollback(step, ctx, state)
            recorder.persist(state)
            logger.error("✗ %s", error)
            return state

        if result.status == "applied":
            state.mark_completed(step.name)
            applied.append(step.name)
            logger.info("✓ %s → applied (%dms)", step.name, result.duration_ms)
        else:
            logger.info("⊘ %s → skipped (already satisfied)", step.name)

        recorder.persist(state)

    state.status = "completed"
    recorder.persist(state)
    logger.info(
        "Run %s completed: %d applied, %d skipped",
        run_id,
        len(state.applied_steps),
        len(state.skipped_steps),
    )
    return state


def _execute_step(
    step: Step,
    ctx: StepContext,
    sleep: Callable[[float], None],
) -> tuple[StepResult, StepError | None]:
    """Run one step through its pre/apply/post contract."""
    start = time.monotonic()

    def _result(status: str, attempts: int, error: StepError | None = None) -> StepResult:
        return StepResult(
            step_name=step.name,
            status=status,
            error=str(error) if error else None,
            attempts=attempts,
            duration_ms=int((time.monotonic() - start) * 1000),
        )

    try:
        satisfied = bool(step.precondition(ctx))
    except Exception as e:
        error = StepApplyError(step.name, f"precondition check raised: {e}")
        return _result("failed", 0, error), error

    if satisfied:
        return _result("skipped", 0), None

    attempts = 0
    while True:
        attempts += 1
        try:
            logger.debug("Applying %s (attempt %d/%d)", step.name, attempts, step.retries + 1)
            step.apply(ctx)
            break
        except Exception as e:
            if attempts > step.retries:
                error = StepApplyError(step.name, str(e) or e.__class__.__name__)
                return _result("failed", attempts, error), error
            delay = min(step.retry_delay * (2 ** (attempts - 1)), MAX_RETRY_DELAY)
            logger.warning(
                "Step %s failed (attempt %d/%d): %s; retrying in %.1fs",
                step.name,
                attempts,
                step.retries + 1,
                e,
                delay,
            )
            sleep(delay)

    try:
        verified = bool(step.postcondition(ctx))
    except Exception as e:
        error = StepApplyError(step.name, f"postcondition check raised: {e}")
        return _result("failed", attempts, error), error

    if not verified:
        error = StepVerifyError(step.name, "apply reported success but the postcondition does not hold")
        return _result("failed", attempts, error), error

    return _result("applied", attempts), None


def _rollback(step: Step, ctx: StepContext, state: RunState) -> None:
    """Invoke the failed step's compensating action, if it declares one."""
    if step.rollback is None:
        return
    logger.info("Rolling back %s", step.name)
    try:
        step.rollback(ctx)
    except Exception as e:
        state.rollback_error = f"rollback of '{step.name}' failed: {e}"
        logger.error("%s", state.rollback_error)
