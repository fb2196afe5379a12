"""Diagnostic checker — read-only pre-flight probes and threshold policy."""

from provisioner.core.services.diagnostics.checker import evaluate
from provisioner.core.services.diagnostics.probes import ProbeUnavailable, SystemProbes

__all__ = ["ProbeUnavailable", "SystemProbes", "evaluate"]
