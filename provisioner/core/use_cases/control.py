"""
Control use case — operate the provisioned service.

status | start | stop | restart | update | logs, against whichever
install method the panel record says was used:

    container   docker compose in the install directory
    native      systemctl on code-server@<user> and nginx, journalctl

The record is read once when the controller is built; a structurally
invalid record raises ``ConfigError`` before anything is touched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from provisioner.adapters.base import Runner
from provisioner.adapters.registry import Host, build_host
from provisioner.core.config.loader import load_service_config
from provisioner.core.config.settings import Settings
from provisioner.core.models.receipt import Receipt
from provisioner.core.models.service import ServiceConfig

logger = logging.getLogger(__name__)

ACTIONS = ("status", "start", "stop", "restart", "update", "logs")

_CONFIRMATIONS = {
    "status": "Status retrieved.",
    "start": "Service started successfully.",
    "stop": "Service stopped successfully.",
    "restart": "Service restarted successfully.",
    "update": "Service updated successfully.",
    "logs": "End of logs.",
}


@dataclass
class ControlResult:
    """Outcome of one control action."""

    action: str
    ok: bool
    message: str = ""
    output: str = ""
    error: str | None = None
    receipts: list[Receipt] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"action": self.action, "ok": self.ok, "message": self.message}
        if self.output:
            result["output"] = self.output
        if self.error:
            result["error"] = self.error
        return result


class ServiceControl:
    """Control actions for one installation."""

    def __init__(self, config: ServiceConfig, host: Host):
        self._config = config
        self._host = host

    @property
    def config(self) -> ServiceConfig:
        return self._config

    @property
    def method(self) -> str:
        return self._config.install_method

    def _unit(self) -> str:
        return f"code-server@{self._host.settings.service_user}"

    def _finish(self, action: str, receipts: list[Receipt]) -> ControlResult:
        failed = next((r for r in receipts if r.failed), None)
        output = "\n".join(r.output for r in receipts if r.output)
        if failed is not None:
            logger.error("%s failed: %s", action, failed.error)
            return ControlResult(
                action=action,
                ok=False,
                message=f"Failed to {action} service.",
                output=output,
                error=failed.error or f"{failed.adapter}:{failed.operation} failed",
                receipts=receipts,
            )
        return ControlResult(action=action, ok=True, message=_CONFIRMATIONS[action], output=output, receipts=receipts)

    def _sequence(self, *calls) -> list[Receipt]:
        """Run calls in order, stopping at the first failure."""
        receipts = []
        for call in calls:
            receipt = call()
            receipts.append(receipt)
            if receipt.failed:
                break
        return receipts

    # ── Actions ──────────────────────────────────────────────────

    def status(self) -> ControlResult:
        host = self._host
        if self.method == "container":
            receipts = [host.docker.compose_ps(host.settings.install_dir)]
        else:
            receipts = [host.services.status(self._unit(), "nginx")]
        return self._finish("status", receipts)

    def start(self) -> ControlResult:
        host = self._host
        if self.method == "container":
            receipts = [host.docker.compose_up(host.settings.install_dir)]
        else:
            receipts = [host.services.start(self._unit(), "nginx")]
        return self._finish("start", receipts)

    def stop(self) -> ControlResult:
        host = self._host
        if self.method == "container":
            receipts = [host.docker.compose_down(host.settings.install_dir)]
        else:
            receipts = [host.services.stop(self._unit(), "nginx")]
        return self._finish("stop", receipts)

    def restart(self) -> ControlResult:
        host = self._host
        if self.method == "container":
            receipts = [host.docker.compose_restart(host.settings.install_dir)]
        else:
            receipts = [host.services.restart(self._unit(), "nginx")]
        return self._finish("restart", receipts)

    def update(self) -> ControlResult:
        host = self._host
        settings = host.settings
        if self.method == "container":
            receipts = self._sequence(
                lambda: host.docker.compose_pull(settings.install_dir, timeout=settings.build_timeout),
                lambda: host.docker.compose_up(settings.install_dir, build=True, timeout=settings.build_timeout),
            )
        else:
            script = settings.state_dir / "install-code-server.sh"
            receipts = self._sequence(
                lambda: host.runner.run(
                    ["curl", "-fsSL", settings.code_server_install_url, "-o", str(script)],
                    timeout=settings.command_timeout,
                    operation="download",
                ),
                lambda: host.runner.run(["sh", str(script)], timeout=settings.package_timeout,
                                        operation="install-code-server"),
                lambda: host.services.restart(self._unit()),
            )
            script.unlink(missing_ok=True)
        return self._finish("update", receipts)

    def logs(self, tail: int = 100, follow: bool = False) -> ControlResult:
        host = self._host
        if self.method == "container":
            receipts = [host.docker.compose_logs(host.settings.install_dir, tail=tail, follow=follow)]
        else:
            receipts = [host.services.journal(self._unit(), "nginx", tail=tail, follow=follow)]
        return self._finish("logs", receipts)

    def run(self, action: str, **kwargs: Any) -> ControlResult:
        if action not in ACTIONS:
            raise ValueError(f"Unknown action '{action}'")
        return getattr(self, action)(**kwargs)


def load_control(settings: Settings | None = None, runner: Runner | None = None) -> ServiceControl:
    """Read the panel record and wire collaborators for its install method.

    Raises:
        ConfigError: the record is missing or invalid.
    """
    settings = settings or Settings.from_env()
    config = load_service_config(settings.panel_config)
    host = build_host(settings, config.install_method, runner)
    return ServiceControl(config, host)
