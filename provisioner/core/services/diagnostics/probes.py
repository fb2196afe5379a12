"""
System probes — read-only facts about the host.

Reads /proc and /etc files, runs query-only commands (ping, ss,
dig...) through the command runner, and asks a public echo service for
the server's address. Nothing here writes to the machine.

A probe that cannot run (tool missing, file unreadable, service
unreachable) raises ``ProbeUnavailable``; the checker turns that into a
warning rather than a failure.
"""

from __future__ import annotations

import ipaddress
import logging
import os
import re
import shutil
from pathlib import Path

from provisioner.adapters.base import Runner
from provisioner.adapters.shell.command import CommandRunner

logger = logging.getLogger(__name__)

PUBLIC_IP_ENDPOINTS = ("https://ifconfig.me/ip", "https://icanhazip.com")

_PORT_RE = re.compile(r":(\d+)$")
_SS_USER_RE = re.compile(r'users:\(\("([^"]+)"')
# " 500 http://archive.ubuntu.com/ubuntu jammy/main amd64 Packages"
_APT_SOURCE_RE = re.compile(r"^\s*-?\d+\s+\S+://")


class ProbeUnavailable(Exception):
    """A probe could not execute on this host."""


def _is_ipv4(value: str) -> bool:
    try:
        return isinstance(ipaddress.ip_address(value), ipaddress.IPv4Address)
    except ValueError:
        return False


class SystemProbes:
    """Default probe set for a Linux host."""

    def __init__(
        self,
        runner: Runner | None = None,
        proc_dir: Path = Path("/proc"),
        os_release: Path = Path("/etc/os-release"),
        timeout: int = 5,
    ):
        self._runner = runner or CommandRunner(default_timeout=timeout)
        self._proc = proc_dir
        self._os_release = os_release
        self._timeout = timeout

    # ── Operating system ─────────────────────────────────────────

    def os_release(self) -> dict[str, str]:
        try:
            raw = self._os_release.read_text(encoding="utf-8")
        except OSError as e:
            raise ProbeUnavailable(f"cannot read {self._os_release}: {e}") from e

        info: dict[str, str] = {}
        for line in raw.splitlines():
            if "=" in line and not line.startswith("#"):
                key, _, value = line.partition("=")
                info[key.strip()] = value.strip().strip('"')
        return info

    def privileges(self) -> str:
        """``root``, ``sudo`` (password-less sudo works) or ``user``."""
        if os.geteuid() == 0:
            return "root"
        if self._runner.which("sudo") is None:
            return "user"
        # -n never prompts; it fails when a password would be needed
        receipt = self._runner.run(["sudo", "-n", "true"], timeout=self._timeout, operation="sudo")
        return "sudo" if receipt.ok else "user"

    def package_manager(self) -> tuple[str | None, int]:
        """The package manager on PATH and how many apt sources it knows.

        The source count comes from apt's local cache, so nothing is
        downloaded and the lists are not refreshed.
        """
        if self._runner.which("apt-get") is None:
            for name in ("dnf", "yum", "zypper", "pacman"):
                if self._runner.which(name) is not None:
                    return name, 0
            return None, 0

        receipt = self._runner.run(["apt-cache", "policy"], timeout=self._timeout, operation="apt-cache")
        if not receipt.ok:
            raise ProbeUnavailable(receipt.error or "apt-cache policy failed")
        sources = sum(1 for line in receipt.output.splitlines() if _APT_SOURCE_RE.match(line))
        return "apt-get", sources

    # ── Resources ────────────────────────────────────────────────

    def _meminfo(self) -> dict[str, int]:
        path = self._proc / "meminfo"
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ProbeUnavailable(f"cannot read {path}: {e}") from e

        values: dict[str, int] = {}
        for line in raw.splitlines():
            key, _, rest = line.partition(":")
            parts = rest.split()
            if parts and parts[0].isdigit():
                values[key.strip()] = int(parts[0])
        return values

    def memory_mb(self) -> int:
        kb = self._meminfo().get("MemTotal")
        if kb is None:
            raise ProbeUnavailable("MemTotal missing from meminfo")
        return kb // 1024

    def swap_mb(self) -> int:
        return self._meminfo().get("SwapTotal", 0) // 1024

    def disk_free_gb(self, path: str = "/") -> int:
        try:
            usage = shutil.disk_usage(path)
        except OSError as e:
            raise ProbeUnavailable(f"cannot stat {path}: {e}") from e
        return usage.free // (1024 ** 3)

    def cpu_cores(self) -> int:
        path = self._proc / "cpuinfo"
        try:
            raw = path.read_text(encoding="utf-8")
            count = sum(1 for line in raw.splitlines() if line.startswith("processor"))
            if count:
                return count
        except OSError:
            logger.debug("Cannot read %s, falling back to os.cpu_count()", path)
        count = os.cpu_count()
        if not count:
            raise ProbeUnavailable("CPU count unavailable")
        return count

    # ── Network ──────────────────────────────────────────────────

    def internet(self) -> str:
        """``ok``, ``no-dns`` (IP reachable, names not) or ``down``."""
        if self._runner.which("ping") is None:
            raise ProbeUnavailable("ping not available")

        wait = str(min(self._timeout, 3))
        if self._runner.run(["ping", "-c", "1", "-W", wait, "google.com"],
                            timeout=self._timeout + 2, operation="ping").ok:
            return "ok"
        if self._runner.run(["ping", "-c", "1", "-W", wait, "1.1.1.1"],
                            timeout=self._timeout + 2, operation="ping").ok:
            return "no-dns"
        return "down"

    def public_ip(self) -> str:
        import urllib.request

        errors = []
        for url in PUBLIC_IP_ENDPOINTS:
            try:
                req = urllib.request.Request(url, headers={"User-Agent": "curl/8"})
                with urllib.request.urlopen(req, timeout=self._timeout) as resp:
                    value = resp.read(64).decode("ascii", "replace").strip()
                if _is_ipv4(value):
                    return value
                errors.append(f"{url}: unexpected answer")
            except OSError as e:
                errors.append(f"{url}: {e}")
        raise ProbeUnavailable("public IP unknown (" + "; ".join(errors) + ")")

    def listening_ports(self) -> dict[int, str]:
        """Map of listening TCP/UDP port → owning process (may be '')."""
        if self._runner.which("ss") is not None:
            receipt = self._runner.run(["ss", "-tulnp"], timeout=self._timeout, operation="ss")
            local_col, proc_col = 4, 6
        elif self._runner.which("netstat") is not None:
            receipt = self._runner.run(["netstat", "-tulnp"], timeout=self._timeout, operation="netstat")
            local_col, proc_col = 3, 6
        else:
            raise ProbeUnavailable("neither ss nor netstat is available")

        if not receipt.ok:
            raise ProbeUnavailable(receipt.error or "port listing failed")

        ports: dict[int, str] = {}
        for line in receipt.output.splitlines():
            cols = line.split()
            if len(cols) <= local_col:
                continue
            m = _PORT_RE.search(cols[local_col])
            if not m:
                continue
            owner = ""
            if len(cols) > proc_col:
                rest = " ".join(cols[proc_col:])
                um = _SS_USER_RE.search(rest)
                if um:
                    owner = um.group(1)
                elif "/" in cols[proc_col]:
                    owner = cols[proc_col].split("/", 1)[1]
            ports.setdefault(int(m.group(1)), owner)
        return ports

    def has_binary(self, name: str) -> bool:
        return self._runner.which(name) is not None

    def resolve(self, domain: str) -> list[str]:
        """IPv4 addresses for ``domain`` from dig, nslookup or host."""
        if self._runner.which("dig") is not None:
            receipt = self._runner.run(["dig", "+short", domain, "@8.8.8.8"],
                                       timeout=self._timeout, operation="dig")
            lines = receipt.output.split() if receipt.ok else []
        elif self._runner.which("nslookup") is not None:
            receipt = self._runner.run(["nslookup", domain], timeout=self._timeout, operation="nslookup")
            lines = [ln.split(":", 1)[1].strip() for ln in receipt.output.splitlines()
                     if ln.startswith("Address:")] if receipt.ok else []
        elif self._runner.which("host") is not None:
            receipt = self._runner.run(["host", domain], timeout=self._timeout, operation="host")
            lines = [ln.split()[-1] for ln in receipt.output.splitlines()
                     if " has address " in ln] if receipt.ok else []
        else:
            raise ProbeUnavailable("dig/nslookup/host not available")

        return [ip for ip in lines if _is_ipv4(ip) and not ip.endswith("#53")]
