"""
Pre-flight use case — is this host ready for an install?
"""

from __future__ import annotations

import logging
from typing import Any

from provisioner.core.models.diagnostics import DiagnosticReport, Thresholds
from provisioner.core.services.diagnostics import evaluate

logger = logging.getLogger(__name__)


def run_preflight(
    domain: str | None = None,
    *,
    strict: bool = False,
    thresholds: Thresholds | None = None,
    probes: Any = None,
) -> DiagnosticReport:
    """Evaluate the host against the install thresholds.

    Args:
        domain: Optional domain to check for syntax and DNS.
        strict: Raise on any failed check instead of returning.
        thresholds: Override the default resource limits.
        probes: Override the system probes (tests).

    Raises:
        PreflightError: ``strict`` and at least one check failed.
    """
    report = evaluate(thresholds, probes=probes, domain=domain)
    if strict:
        report.raise_for_failures()
    elif report.failures:
        logger.warning("Pre-flight reported %d failure(s); continuing is at the operator's discretion",
                       len(report.failures))
    return report
