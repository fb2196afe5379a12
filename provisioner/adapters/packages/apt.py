"""
APT package manager adapter.

Non-interactive installs and upgrades on Debian/Ubuntu hosts. Existing
config files are kept on upgrade so a re-run never stalls on a dpkg
prompt.
"""

from __future__ import annotations

import logging

from provisioner.adapters.base import Adapter
from provisioner.core.models.receipt import Receipt

logger = logging.getLogger(__name__)

_NONINTERACTIVE = {"DEBIAN_FRONTEND": "noninteractive", "NEEDRESTART_MODE": "a"}
_DPKG_OPTS = ["-o", "Dpkg::Options::=--force-confdef", "-o", "Dpkg::Options::=--force-confold"]


class AptPackageManager(Adapter):
    """install(name) -> ok | error, plus update/upgrade/is_installed."""

    @property
    def name(self) -> str:
        return "apt"

    def is_available(self) -> bool:
        return self._runner.which("apt-get") is not None

    def is_installed(self, package: str, timeout: int | None = None) -> bool:
        receipt = self._run(
            ["dpkg-query", "-W", "-f=${Status}", package],
            operation="query",
            timeout=timeout,
        )
        return receipt.ok and "install ok installed" in receipt.output

    def update(self, timeout: int | None = None) -> Receipt:
        return self._run(["apt-get", "update"], operation="update", timeout=timeout, env=_NONINTERACTIVE)

    def upgrade(self, timeout: int | None = None) -> Receipt:
        return self._run(
            ["apt-get", "-y", *_DPKG_OPTS, "upgrade"],
            operation="upgrade",
            timeout=timeout,
            env=_NONINTERACTIVE,
        )

    def install(self, *packages: str, timeout: int | None = None) -> Receipt:
        if not packages:
            return Receipt.skip(adapter=self.name, operation="install", reason="nothing to install")
        logger.info("Installing packages: %s", ", ".join(packages))
        return self._run(
            ["apt-get", "install", "-y", *_DPKG_OPTS, *packages],
            operation="install",
            timeout=timeout,
            env=_NONINTERACTIVE,
        )

    def missing(self, *packages: str, timeout: int | None = None) -> list[str]:
        """Packages from ``packages`` that are not installed."""
        return [p for p in packages if not self.is_installed(p, timeout=timeout)]
