"""
Domain models for the provisioner.

All models are re-exported here for convenient access:

    from provisioner.core.models import Step, StepResult, RunState, InstallParameters
"""

from provisioner.core.models.diagnostics import CheckResult, DiagnosticReport, Thresholds
from provisioner.core.models.parameters import REDACTED, InstallParameters
from provisioner.core.models.receipt import Receipt
from provisioner.core.models.service import ServiceConfig
from provisioner.core.models.state import RunState
from provisioner.core.models.step import Step, StepContext, StepResult

__all__ = [
    # diagnostics.py
    "CheckResult",
    "DiagnosticReport",
    # parameters.py
    "InstallParameters",
    "REDACTED",
    # receipt.py
    "Receipt",
    # state.py
    "RunState",
    # service.py
    "ServiceConfig",
    # step.py
    "Step",
    "StepContext",
    "StepResult",
    "Thresholds",
]
