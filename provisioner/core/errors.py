"""
Error taxonomy — every failure the provisioner surfaces to a user.

The engine never lets collaborator failures escape as raw exceptions:
adapters return Receipts, steps turn failed receipts into
``StepApplyError``, and the engine records them on the RunState.
Only ``LockError`` and ``PersistenceError`` propagate out of a run.
"""

from __future__ import annotations


class ProvisionerError(Exception):
    """Base class for all provisioner errors."""


class ConfigError(ProvisionerError):
    """Malformed step registry or persisted configuration.

    Always fatal; nothing is partially applied.
    """


class PreflightError(ProvisionerError):
    """The environment fails a hard pre-flight threshold.

    Advisory by default; fatal only when the caller asks for strict mode.
    """

    def __init__(self, message: str, failures: list[str] | None = None):
        super().__init__(message)
        self.failures = failures or []


class StepError(ProvisionerError):
    """A step could not reach its desired state."""

    kind = "step"

    def __init__(self, step_name: str, cause: str):
        super().__init__(f"step '{step_name}' failed: {cause}")
        self.step_name = step_name
        self.cause = cause


class StepApplyError(StepError):
    """An external collaborator call failed (or timed out) during apply."""

    kind = "apply"


class StepVerifyError(StepError):
    """Apply reported success but the postcondition does not hold."""

    kind = "verify"


class CollaboratorError(ProvisionerError):
    """Raised by ``Receipt.raise_for_status`` inside a step function."""


class LockError(ProvisionerError):
    """The run lock could not be acquired."""


class AlreadyRunning(LockError):
    """Another provisioning run holds the exclusive run lock."""

    def __init__(self, lock_path: str, holder: str = ""):
        detail = f" (held by {holder})" if holder else ""
        super().__init__(f"Another provisioning run is in progress{detail}: {lock_path}")
        self.lock_path = lock_path
        self.holder = holder


class PersistenceError(ProvisionerError):
    """Run state could not be durably recorded."""
