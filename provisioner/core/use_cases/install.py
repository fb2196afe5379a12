"""
Install use case — provision code-server on this host.

Wires the pieces for one run: settings, collaborators for the chosen
install method, the step registry, the state recorder and the
execution log, then hands everything to the engine. Parameters arrive
already validated; nothing here reads the terminal.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from provisioner.adapters.registry import Host, build_host
from provisioner.core.config.settings import Settings
from provisioner.core.engine import executor
from provisioner.core.engine.cancel import CancelToken
from provisioner.core.engine.registry import StepRegistry
from provisioner.core.errors import ConfigError, LockError, PersistenceError
from provisioner.core.models.parameters import InstallParameters
from provisioner.core.models.state import RunState
from provisioner.core.observability.logging_config import mask_secret
from provisioner.core.persistence.audit import AuditWriter
from provisioner.core.persistence.state_file import StateRecorder
from provisioner.core.services.provisioning import build_registry

logger = logging.getLogger(__name__)


@dataclass
class InstallResult:
    """Result of an installation run."""

    state: RunState | None = None
    domain: str = ""
    method: str = ""
    archived: Path | None = None
    error: str | None = None
    error_kind: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.state is not None and self.state.ok

    @property
    def failed_step(self) -> str | None:
        return self.state.failed_step if self.state else None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "ok": self.ok,
            "domain": self.domain,
            "method": self.method,
        }
        if self.archived is not None:
            result["archived"] = str(self.archived)
        if self.error:
            result["error"] = self.error
            result["error_kind"] = self.error_kind
        if self.state is not None:
            result["state"] = self.state.summary()
        return result


def run_install(
    parameters: InstallParameters,
    settings: Settings | None = None,
    *,
    fresh: bool = False,
    host: Host | None = None,
    registry: StepRegistry | None = None,
    cancel: CancelToken | None = None,
    audit: AuditWriter | None = None,
) -> InstallResult:
    """Converge the host toward a working code-server install.

    Args:
        parameters: Validated domain, email, password and method.
        settings: Paths and timeouts (default: from CSP_* environment).
        fresh: Archive the prior run state instead of resuming from it.
        host: Pre-built collaborators (tests pass one over a MockRunner).
        registry: Override the pipeline for ``parameters.install_method``.
        cancel: Cancellation token, honored between steps.
        audit: Execution log writer (default: ``<state_dir>/audit.ndjson``).

    Returns:
        InstallResult. ``ok`` only when every step is applied or skipped.
    """
    settings = settings or Settings.from_env()
    method = parameters.install_method
    mask_secret(parameters.secret())
    result = InstallResult(domain=parameters.domain, method=method)

    try:
        registry = registry or build_registry(method, settings)
    except ConfigError as e:
        result.error = str(e)
        result.error_kind = "config"
        return result

    host = host or build_host(settings, method)
    recorder = StateRecorder(settings.state_dir)
    audit = audit or AuditWriter(state_dir=settings.state_dir)

    try:
        if fresh:
            result.archived = recorder.archive()
            if result.archived:
                logger.info("Prior run state archived to %s", result.archived)
        prior = recorder.load()

        result.state = executor.run(
            registry,
            parameters,
            prior,
            recorder=recorder,
            host=host,
            cancel=cancel,
            audit=audit,
        )
    except LockError as e:
        result.error = str(e)
        result.error_kind = "lock"
        return result
    except PersistenceError as e:
        result.error = str(e)
        result.error_kind = "persistence"
        return result

    if not result.state.ok:
        result.error = result.state.error
        result.error_kind = result.state.error_kind
    return result
