"""
systemd service manager adapter.

start/stop/restart/status(name) -> Receipt, used by the native
install method and by the control panel.
"""

from __future__ import annotations

from provisioner.adapters.base import Adapter
from provisioner.core.models.receipt import Receipt


class SystemdManager(Adapter):

    @property
    def name(self) -> str:
        return "systemd"

    def is_available(self) -> bool:
        return self._runner.which("systemctl") is not None

    def _ctl(self, verb: str, *units: str, timeout: int | None = None) -> Receipt:
        return self._run(["systemctl", verb, *units], verb, timeout)

    def start(self, *units: str, timeout: int | None = None) -> Receipt:
        return self._ctl("start", *units, timeout=timeout)

    def stop(self, *units: str, timeout: int | None = None) -> Receipt:
        return self._ctl("stop", *units, timeout=timeout)

    def restart(self, *units: str, timeout: int | None = None) -> Receipt:
        return self._ctl("restart", *units, timeout=timeout)

    def reload(self, *units: str, timeout: int | None = None) -> Receipt:
        return self._ctl("reload", *units, timeout=timeout)

    def enable(self, *units: str, now: bool = True, timeout: int | None = None) -> Receipt:
        args = ["enable", "--now", *units] if now else ["enable", *units]
        return self._run(["systemctl", *args], "enable", timeout)

    def status(self, *units: str, timeout: int | None = None) -> Receipt:
        return self._run(["systemctl", "status", "--no-pager", *units], "status", timeout)

    def is_active(self, unit: str, timeout: int | None = None) -> bool:
        receipt = self._run(["systemctl", "is-active", unit], "is-active", timeout)
        return receipt.ok and receipt.output.strip() == "active"

    def journal(self, *units: str, tail: int = 100, follow: bool = False,
                timeout: int | None = None) -> Receipt:
        cmd = ["journalctl", "--no-pager", "-n", str(tail)]
        for unit in units:
            cmd += ["-u", unit]
        if follow:
            cmd.append("-f")
            receipt = self._runner.passthrough(cmd, operation="journal")
            receipt.adapter = self.name
            return receipt
        return self._run(cmd, "journal", timeout)
