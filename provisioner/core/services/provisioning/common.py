"""
Steps shared by both install methods.

Every builder returns a ``Step``. Step functions receive a
``StepContext`` whose ``host`` is an ``adapters.Host`` and whose
``parameters`` are ``InstallParameters``; collaborator failures come
back as Receipts and are turned into exceptions with
``raise_for_status()`` so the engine records them as apply errors.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable
from datetime import date
from pathlib import Path

from provisioner import __version__
from provisioner.core.config.loader import load_service_config, save_service_config
from provisioner.core.config.settings import Settings
from provisioner.core.errors import CollaboratorError, ConfigError
from provisioner.core.models.service import ServiceConfig
from provisioner.core.models.step import Step, StepContext
from provisioner.core.models.template import RenderedFile
from provisioner.core.services.provisioning import files, templates

logger = logging.getLogger(__name__)

OS_UPDATE_STAMP = "os-update.stamp"
SERVICE_STAMP = "service.stamp"
SWAP_UNDO_LOG = "swap.undo"
BASE_PACKAGES = ("curl", "ca-certificates", "wget", "git")


def service_stamp(settings: Settings, rendered: Iterable[RenderedFile]) -> RenderedFile:
    """Fingerprint of the config the running services were started with.

    Written after a successful start, so a run that renders new config
    and then fails to restart leaves the stamp stale for the next run.
    """
    return RenderedFile(
        path=settings.state_dir / SERVICE_STAMP,
        content=files.fingerprint(rendered) + "\n",
        mode=0o600,
        reason="config the services were started with",
    )


# ── swap ────────────────────────────────────────────────────────


def _fstab_line(settings: Settings) -> str:
    return f"{settings.swap_file} none swap sw 0 0"


def _fstab_has_swap(settings: Settings) -> bool:
    try:
        lines = settings.fstab.read_text(encoding="utf-8").splitlines()
    except FileNotFoundError:
        return False
    return any(line.split()[:1] == [str(settings.swap_file)] for line in lines if line.strip())


def _swap_active(ctx: StepContext) -> bool:
    host = ctx.host
    receipt = host.runner.run(
        ["swapon", "--show=NAME", "--noheadings"],
        timeout=ctx.timeout,
        operation="swapon-show",
    )
    active = receipt.ok and str(host.settings.swap_file) in receipt.output.split()
    return active and _fstab_has_swap(host.settings)


def _undo_log(settings: Settings) -> Path:
    return settings.state_dir / SWAP_UNDO_LOG


def _record(settings: Settings, action: str) -> None:
    """Note one change made by this apply so rollback can undo just that."""
    log = _undo_log(settings)
    log.parent.mkdir(parents=True, exist_ok=True)
    with log.open("a", encoding="utf-8") as fh:
        fh.write(action + "\n")


def _recorded(settings: Settings) -> set[str]:
    try:
        return set(_undo_log(settings).read_text(encoding="utf-8").split())
    except FileNotFoundError:
        return set()


def _create_swap(ctx: StepContext) -> None:
    host = ctx.host
    settings = host.settings
    swap = str(settings.swap_file)
    _undo_log(settings).unlink(missing_ok=True)

    if not settings.swap_file.exists():
        _record(settings, "file")
        alloc = host.runner.run(
            ["fallocate", "-l", f"{settings.swap_size_mb}M", swap],
            timeout=ctx.timeout,
            operation="fallocate",
        )
        if not alloc.ok:
            # some filesystems (btrfs, older xfs) refuse fallocate for swap
            logger.info("fallocate failed (%s), falling back to dd", alloc.error)
            host.runner.run(
                ["dd", "if=/dev/zero", f"of={swap}", "bs=1M", f"count={settings.swap_size_mb}"],
                timeout=ctx.timeout,
                operation="dd",
            ).raise_for_status()

    host.runner.run(["chmod", "600", swap], timeout=ctx.timeout, operation="chmod").raise_for_status()

    show = host.runner.run(["swapon", "--show=NAME", "--noheadings"], timeout=ctx.timeout, operation="swapon-show")
    if swap not in show.output.split():
        host.runner.run(["mkswap", swap], timeout=ctx.timeout, operation="mkswap").raise_for_status()
        host.runner.run(["swapon", swap], timeout=ctx.timeout, operation="swapon").raise_for_status()
        _record(settings, "swapon")

    if not _fstab_has_swap(settings):
        with settings.fstab.open("a", encoding="utf-8") as fh:
            fh.write(_fstab_line(settings) + "\n")
        _record(settings, "fstab")


def _remove_swap(ctx: StepContext) -> None:
    """Undo what the last apply did; an operator's own swap stays put."""
    host = ctx.host
    settings = host.settings
    swap = str(settings.swap_file)
    done = _recorded(settings)

    if "swapon" in done:
        host.runner.run(["swapoff", swap], timeout=ctx.timeout, operation="swapoff")
    if "fstab" in done and _fstab_has_swap(settings):
        kept = [
            line for line in settings.fstab.read_text(encoding="utf-8").splitlines()
            if line.split()[:1] != [swap]
        ]
        settings.fstab.write_text("\n".join(kept) + "\n", encoding="utf-8")
    if "file" in done:
        settings.swap_file.unlink(missing_ok=True)
    _undo_log(settings).unlink(missing_ok=True)


def swap_step(settings: Settings) -> Step:
    return Step(
        name="swap",
        description=f"Swap file ({settings.swap_size_mb} MB)",
        precondition=_swap_active,
        apply=_create_swap,
        postcondition=_swap_active,
        rollback=_remove_swap,
        timeout=settings.command_timeout,
    )


# ── os-update ───────────────────────────────────────────────────


def _os_fresh(ctx: StepContext) -> bool:
    settings = ctx.host.settings
    stamp = settings.state_dir / OS_UPDATE_STAMP
    try:
        age = time.time() - stamp.stat().st_mtime
    except FileNotFoundError:
        return False
    return age < settings.os_update_max_age_hours * 3600


def _os_update(ctx: StepContext) -> None:
    host = ctx.host
    host.packages.update(timeout=ctx.timeout).raise_for_status()
    host.packages.upgrade(timeout=ctx.timeout).raise_for_status()
    host.packages.install(*BASE_PACKAGES, timeout=ctx.timeout).raise_for_status()

    stamp = host.settings.state_dir / OS_UPDATE_STAMP
    stamp.parent.mkdir(parents=True, exist_ok=True)
    stamp.touch()


def os_update_step(settings: Settings) -> Step:
    return Step(
        name="os-update",
        description="Update OS packages",
        precondition=_os_fresh,
        apply=_os_update,
        postcondition=_os_fresh,
        timeout=settings.package_timeout,
        # apt's lock is often held by unattended-upgrades right after boot
        retries=2,
        retry_delay=10.0,
        depends_on=("swap",),
    )


# ── certificate ─────────────────────────────────────────────────


def _has_certificate(ctx: StepContext) -> bool:
    return ctx.host.certbot.has_certificate(ctx.parameters.domain)


def _issue(ctx: StepContext) -> None:
    params = ctx.parameters
    ctx.host.certbot.issue(params.domain, params.email, timeout=ctx.timeout).raise_for_status()


def certificate_step(settings: Settings, apply=None, depends_on: tuple[str, ...] = ()) -> Step:
    """Let's Encrypt certificate; the authority rate-limits, so no retries."""
    return Step(
        name="certificate",
        description="Obtain TLS certificate",
        precondition=_has_certificate,
        apply=apply or _issue,
        postcondition=_has_certificate,
        timeout=settings.certificate_timeout,
        retries=0,
        depends_on=depends_on,
    )


# ── cert-renewal ────────────────────────────────────────────────


def _renewal_file(ctx: StepContext):
    host = ctx.host
    reload_command = ""
    if host.method == "container":
        reload_command = f"docker exec {templates.PROXY_SERVICE} nginx -s reload"
    return templates.render_renewal_cron(host.settings, host.certbot.renew_command(), reload_command)


def cert_renewal_step(settings: Settings) -> Step:
    return Step(
        name="cert-renewal",
        description=f"Schedule certificate renewal ({settings.renewal_schedule})",
        precondition=lambda ctx: _renewal_file(ctx).is_current(),
        apply=lambda ctx: files.write_rendered(_renewal_file(ctx)),
        postcondition=lambda ctx: _renewal_file(ctx).is_current(),
        timeout=settings.command_timeout,
        depends_on=("certificate",),
    )


# ── panel-config ────────────────────────────────────────────────


def _existing_panel_config(settings: Settings) -> ServiceConfig | None:
    try:
        return load_service_config(settings.panel_config)
    except ConfigError:
        return None


def _panel_matches(ctx: StepContext) -> bool:
    config = _existing_panel_config(ctx.host.settings)
    params = ctx.parameters
    return (
        config is not None
        and config.domain == params.domain
        and config.admin_email == params.email
        and config.install_method == params.install_method
        and config.timezone == params.timezone
    )


def _write_panel_config(ctx: StepContext) -> None:
    settings = ctx.host.settings
    params = ctx.parameters
    previous = _existing_panel_config(settings)
    config = ServiceConfig(
        domain=params.domain,
        admin_email=params.email,
        install_method=params.install_method,
        timezone=params.timezone,
        install_date=previous.install_date if previous else date.today().isoformat(),
        version=__version__,
    )
    save_service_config(config, settings.panel_config)


def panel_config_step(settings: Settings) -> Step:
    return Step(
        name="panel-config",
        description="Write control panel configuration",
        precondition=_panel_matches,
        apply=_write_panel_config,
        postcondition=_panel_matches,
        timeout=settings.command_timeout,
    )


# ── verify ──────────────────────────────────────────────────────


def _https_up(ctx: StepContext) -> bool:
    return ctx.host.proxy.probe_https(ctx.parameters.domain, timeout=ctx.host.settings.probe_timeout).ok


def _reload_and_probe(ctx: StepContext) -> None:
    host = ctx.host
    host.proxy.reload(timeout=ctx.timeout).raise_for_status()
    probe = host.proxy.probe_https(ctx.parameters.domain, timeout=host.settings.probe_timeout)
    if not probe.ok:
        raise CollaboratorError(probe.error or "HTTPS probe failed")


def verify_step(settings: Settings) -> Step:
    return Step(
        name="verify",
        description="Verify HTTPS endpoint",
        precondition=_https_up,
        apply=_reload_and_probe,
        postcondition=_https_up,
        timeout=settings.command_timeout,
        # services need a few seconds after start before they answer
        retries=4,
        retry_delay=3.0,
        depends_on=("service-start",),
    )
