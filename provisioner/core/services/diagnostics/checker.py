"""
Diagnostic checker — pre-flight readiness of the host.

Runs every probe once, classifies each reading against the thresholds
and returns a fresh DiagnosticReport. The checker never changes the
host: low swap is reported here and remediated later by the ``swap``
step, a domain pointing elsewhere is advisory.

Severity policy:
    probe unavailable      → warn
    not root               → warn with password-less sudo, fail without
    no apt-get             → fail
    resource below *_fail  → fail
    resource below *_pass  → warn
    malformed domain       → fail
    domain ≠ server IP     → warn
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from provisioner.core.models.diagnostics import CheckLevel, DiagnosticReport, Thresholds
from provisioner.core.models.parameters import domain_error
from provisioner.core.services.diagnostics.probes import ProbeUnavailable, SystemProbes

logger = logging.getLogger(__name__)

# distro id → minimum major version known to work with the apt-based installer
SUPPORTED_OS = {"ubuntu": 18, "debian": 9}
NON_APT_OS = ("centos", "rhel", "fedora", "rocky", "almalinux", "amzn")

# check name (or prefix before the last "-") → what to do about a warn/fail
REMEDIES = {
    "privileges": "Run the installer as root: sudo code-server-install",
    "os": "Use Ubuntu 18.04+ or Debian 9+",
    "package-manager": "Use Ubuntu or Debian and run 'sudo apt-get update' so apt knows its sources",
    "memory": "Use a server with at least 2 GB of RAM",
    "swap": "Nothing to do: the installer creates a swap file",
    "disk": "Free up disk space: at least 10 GB is recommended",
    "cpu": "2 or more CPU cores are recommended for development work",
    "internet": "Check the network connection and the resolvers in /etc/resolv.conf",
    "port": "Stop the service holding the port; ports 80 and 443 must be reachable from the internet",
    "software": "Nothing to do: missing tools are installed by the os-update step",
    "domain": "Use a fully qualified subdomain such as code.example.com",
    "dns": "Point the domain's DNS A record at this server's public IP",
}


# ── Classification (pure) ───────────────────────────────────────


def classify_memory(total_mb: int, t: Thresholds) -> tuple[CheckLevel, str]:
    if total_mb < t.ram_fail_mb:
        return "fail", f"{total_mb} MB RAM (minimum {t.ram_fail_mb} MB)"
    if total_mb < t.ram_pass_mb:
        return "warn", f"{total_mb} MB RAM (recommended {t.ram_pass_mb} MB)"
    return "pass", f"{total_mb} MB RAM"


def classify_disk(free_gb: int, t: Thresholds) -> tuple[CheckLevel, str]:
    if free_gb < t.disk_fail_gb:
        return "fail", f"{free_gb} GB free on {t.disk_path} (minimum {t.disk_fail_gb} GB)"
    if free_gb < t.disk_pass_gb:
        return "warn", f"{free_gb} GB free on {t.disk_path} (recommended {t.disk_pass_gb} GB)"
    return "pass", f"{free_gb} GB free on {t.disk_path}"


def classify_cpu(cores: int, t: Thresholds) -> tuple[CheckLevel, str]:
    if cores < t.cpu_pass_cores:
        return "warn", f"{cores} CPU core(s) (recommended {t.cpu_pass_cores})"
    return "pass", f"{cores} CPU cores"


def classify_swap(swap_mb: int) -> tuple[CheckLevel, str]:
    if swap_mb <= 0:
        return "warn", "No swap configured (the installer will create a swap file)"
    return "pass", f"{swap_mb} MB swap"


def classify_os(info: dict[str, str]) -> tuple[CheckLevel, str]:
    distro = info.get("ID", "").lower()
    version = info.get("VERSION_ID", "")
    pretty = info.get("PRETTY_NAME") or f"{distro} {version}".strip() or "unknown"

    if distro in SUPPORTED_OS:
        try:
            major = int(version.split(".")[0])
        except ValueError:
            return "warn", f"{pretty}: version not recognised"
        minimum = SUPPORTED_OS[distro]
        if major < minimum:
            return "fail", f"{pretty}: {distro} {minimum} or newer required"
        return "pass", pretty
    if distro in NON_APT_OS:
        return "warn", f"{pretty}: installer targets apt-based systems (Ubuntu/Debian)"
    return "warn", f"{pretty}: untested distribution"


def classify_privileges(kind: str) -> tuple[CheckLevel, str]:
    if kind == "root":
        return "pass", "Running as root"
    if kind == "sudo":
        return "warn", "Not running as root; password-less sudo is available"
    return "fail", "Not running as root and sudo needs a password (or is missing)"


def classify_package_manager(name: str | None, sources: int) -> tuple[CheckLevel, str]:
    if name is None:
        return "fail", "No package manager found (apt-get required)"
    if name != "apt-get":
        return "fail", f"{name} found; the installer needs apt-get"
    if sources == 0:
        return "warn", "apt-get available but no package sources are known"
    return "pass", f"apt-get with {sources} package source(s)"


# ── Evaluation ──────────────────────────────────────────────────


def _add(report: DiagnosticReport, name: str, level: CheckLevel, message: str, measured: bool = True) -> None:
    hint = ""
    if level != "pass" and measured:
        hint = REMEDIES.get(name) or REMEDIES.get(name.rsplit("-", 1)[0], "")
    report.add(name, level, message, hint=hint)


def _guarded(report: DiagnosticReport, name: str, fn: Callable[[], tuple[CheckLevel, str]]) -> None:
    """Run one check; an unavailable probe becomes a warning."""
    measured = True
    try:
        level, message = fn()
    except (ProbeUnavailable, OSError) as e:
        level, message, measured = "warn", f"Could not check: {e}", False
    logger.debug("check %s → %s (%s)", name, level, message)
    _add(report, name, level, message, measured)


def evaluate(
    thresholds: Thresholds | None = None,
    probes: Any = None,
    domain: str | None = None,
) -> DiagnosticReport:
    """Probe the host and classify every reading.

    Args:
        thresholds: Resource limits; defaults to ``Thresholds()``.
        probes: Probe provider; defaults to ``SystemProbes``. Tests pass
            an object with the same methods returning fixed values.
        domain: When given, its syntax and DNS resolution are checked.

    Returns:
        A new DiagnosticReport. Nothing on the host is modified.
    """
    t = thresholds or Thresholds()
    p = probes if probes is not None else SystemProbes(timeout=t.probe_timeout)
    report = DiagnosticReport()

    _guarded(report, "privileges", lambda: classify_privileges(p.privileges()))
    _guarded(report, "os", lambda: classify_os(p.os_release()))
    _guarded(report, "package-manager", lambda: classify_package_manager(*p.package_manager()))
    _guarded(report, "memory", lambda: classify_memory(p.memory_mb(), t))
    _guarded(report, "swap", lambda: classify_swap(p.swap_mb()))
    _guarded(report, "disk", lambda: classify_disk(p.disk_free_gb(t.disk_path), t))
    _guarded(report, "cpu", lambda: classify_cpu(p.cpu_cores(), t))
    _guarded(report, "internet", lambda: _check_internet(p))

    public_ip: list[str | None] = [None]

    def _check_public_ip() -> tuple[CheckLevel, str]:
        public_ip[0] = p.public_ip()
        return "pass", f"Public IP {public_ip[0]}"

    _guarded(report, "public-ip", _check_public_ip)
    _check_ports(report, p, t)
    _check_software(report, p, t)

    if domain is not None:
        _check_domain(report, p, domain, public_ip[0])

    logger.info(
        "Pre-flight: %d pass, %d warn, %d fail",
        len(report.passed),
        len(report.warnings),
        len(report.failures),
    )
    return report


def _check_internet(p: Any) -> tuple[CheckLevel, str]:
    status = p.internet()
    if status == "ok":
        return "pass", "Internet reachable"
    if status == "no-dns":
        return "fail", "Internet reachable by IP but name resolution is broken"
    return "fail", "No internet connectivity"


def _check_ports(report: DiagnosticReport, p: Any, t: Thresholds) -> None:
    try:
        listening = p.listening_ports()
    except ProbeUnavailable as e:
        for port in t.ports:
            _add(report, f"port-{port}", "warn", f"Could not check: {e}", measured=False)
        return

    for port in t.ports:
        if port in listening:
            owner = listening[port] or "unknown process"
            _add(report, f"port-{port}", "warn", f"Port {port} in use by {owner}")
        else:
            _add(report, f"port-{port}", "pass", f"Port {port} free")


def _check_software(report: DiagnosticReport, p: Any, t: Thresholds) -> None:
    missing = [name for name in t.required_software if not p.has_binary(name)]
    if missing:
        # apt installs them in the os-update step
        _add(report, "software", "warn", f"Missing required tools: {', '.join(missing)}")
    else:
        _add(report, "software", "pass", f"Required tools present: {', '.join(t.required_software)}")

    absent = [name for name in t.optional_software if not p.has_binary(name)]
    present = [name for name in t.optional_software if name not in absent]
    message = f"Optional tools present: {', '.join(present) or 'none'}"
    if absent:
        message += f"; will be installed when needed: {', '.join(absent)}"
    _add(report, "software-optional", "pass", message)


def _check_domain(report: DiagnosticReport, p: Any, domain: str, server_ip: str | None) -> None:
    value = domain.strip().lower().rstrip(".")
    err = domain_error(value)
    if err:
        _add(report, "domain", "fail", f"{domain!r}: {err}")
        return
    _add(report, "domain", "pass", f"{value} is a valid hostname")

    def _dns() -> tuple[CheckLevel, str]:
        addresses = p.resolve(value)
        if not addresses:
            return "warn", f"{value} does not resolve yet (certificate issuance needs it)"
        if server_ip is None:
            return "warn", f"{value} → {', '.join(addresses)} (server IP unknown)"
        if server_ip not in addresses:
            return "warn", f"{value} → {', '.join(addresses)}, but this server is {server_ip}"
        return "pass", f"{value} → {server_ip}"

    _guarded(report, "dns", _dns)
