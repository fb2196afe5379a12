"""
Native install method — code-server and nginx under systemd.

Pipeline:
    swap → os-update → code-server → proxy-packages → certificate →
    config-render → service-start → cert-renewal → panel-config → verify

code-server runs as ``code-server@<service_user>`` bound to 127.0.0.1;
nginx terminates TLS and proxies to it.
"""

from __future__ import annotations

import logging

from provisioner.core.config.settings import Settings
from provisioner.core.models.step import Step, StepContext
from provisioner.core.services.provisioning import common, files, templates

logger = logging.getLogger(__name__)

PROXY_PACKAGES = ("nginx", "certbot")


def unit_name(settings: Settings) -> str:
    return f"code-server@{settings.service_user}"


# ── code-server ─────────────────────────────────────────────────


def _code_server_installed(ctx: StepContext) -> bool:
    return ctx.host.runner.which("code-server") is not None


def _install_code_server(ctx: StepContext) -> None:
    host = ctx.host
    settings = host.settings
    script = settings.state_dir / "install-code-server.sh"
    script.parent.mkdir(parents=True, exist_ok=True)

    host.runner.run(
        ["curl", "-fsSL", settings.code_server_install_url, "-o", str(script)],
        timeout=ctx.timeout,
        operation="download",
    ).raise_for_status()
    try:
        host.runner.run(["sh", str(script)], timeout=ctx.timeout, operation="install-code-server").raise_for_status()
    finally:
        script.unlink(missing_ok=True)


def code_server_step(settings: Settings) -> Step:
    return Step(
        name="code-server",
        description="Install code-server",
        precondition=_code_server_installed,
        apply=_install_code_server,
        postcondition=_code_server_installed,
        timeout=settings.package_timeout,
        retries=1,
        retry_delay=5.0,
        depends_on=("os-update",),
    )


# ── proxy-packages ──────────────────────────────────────────────


def _proxy_installed(ctx: StepContext) -> bool:
    return not ctx.host.packages.missing(*PROXY_PACKAGES, timeout=ctx.host.settings.command_timeout)


def _install_proxy(ctx: StepContext) -> None:
    packages = ctx.host.packages
    missing = packages.missing(*PROXY_PACKAGES, timeout=ctx.host.settings.command_timeout)
    packages.install(*missing, timeout=ctx.timeout).raise_for_status()


def proxy_packages_step(settings: Settings) -> Step:
    return Step(
        name="proxy-packages",
        description="Install nginx and certbot",
        precondition=_proxy_installed,
        apply=_install_proxy,
        postcondition=_proxy_installed,
        timeout=settings.package_timeout,
        retries=1,
        retry_delay=5.0,
        depends_on=("os-update",),
    )


# ── config-render ───────────────────────────────────────────────


def _rendered(ctx: StepContext):
    return templates.native_files(ctx.host.settings, ctx.parameters)


def _config_current(ctx: StepContext) -> bool:
    settings = ctx.host.settings
    return files.all_current(_rendered(ctx)) and files.symlink_ok(
        templates.site_enabled_path(settings), templates.site_available_path(settings)
    )


def _config_valid(ctx: StepContext) -> bool:
    if not _config_current(ctx):
        return False
    receipt = ctx.host.proxy.validate(templates.site_available_path(ctx.host.settings), timeout=ctx.timeout)
    if not receipt.ok:
        logger.error("nginx rejected the rendered config: %s", receipt.error)
    return receipt.ok


def _render(ctx: StepContext) -> None:
    host = ctx.host
    settings = host.settings
    rendered = _rendered(ctx)
    changed = files.write_all(rendered)

    config = templates.code_server_config_path(settings)
    if config in changed:
        uid, gid = templates.user_ids(settings.service_user)
        host.runner.run(
            ["chown", "-R", f"{uid}:{gid}", str(config.parent)],
            timeout=ctx.timeout,
            operation="chown",
        ).raise_for_status()

    files.ensure_symlink(templates.site_enabled_path(settings), templates.site_available_path(settings))
    logger.info("Rendered %d config file(s)", len(changed))


def config_render_step(settings: Settings) -> Step:
    return Step(
        name="config-render",
        description="Render code-server config and nginx site",
        precondition=_config_current,
        apply=_render,
        postcondition=_config_valid,
        timeout=settings.command_timeout,
        depends_on=("code-server", "certificate"),
    )


# ── service-start ───────────────────────────────────────────────


def _services_active(ctx: StepContext) -> bool:
    host = ctx.host
    timeout = host.settings.command_timeout
    return host.services.is_active(unit_name(host.settings), timeout=timeout) and host.services.is_active(
        "nginx", timeout=timeout
    )


def _stamp(ctx: StepContext):
    return common.service_stamp(ctx.host.settings, _rendered(ctx))


def _services_current(ctx: StepContext) -> bool:
    return _stamp(ctx).is_current() and _services_active(ctx)


def _start_services(ctx: StepContext) -> None:
    host = ctx.host
    services = host.services
    unit = unit_name(host.settings)

    services.enable(unit, now=True, timeout=ctx.timeout).raise_for_status()
    # enable --now is a no-op for a running unit; restart picks up new config
    services.restart(unit, timeout=ctx.timeout).raise_for_status()
    if services.is_active("nginx", timeout=ctx.timeout):
        services.reload("nginx", timeout=ctx.timeout).raise_for_status()
    else:
        services.enable("nginx", now=True, timeout=ctx.timeout).raise_for_status()
    files.write_rendered(_stamp(ctx))


def service_start_step(settings: Settings) -> Step:
    return Step(
        name="service-start",
        description="Start code-server and reload nginx",
        precondition=_services_current,
        apply=_start_services,
        postcondition=_services_current,
        timeout=settings.command_timeout,
        retries=1,
        retry_delay=3.0,
        depends_on=("config-render",),
    )


# ── Pipeline ────────────────────────────────────────────────────


def native_steps(settings: Settings) -> list[Step]:
    return [
        common.swap_step(settings),
        common.os_update_step(settings),
        code_server_step(settings),
        proxy_packages_step(settings),
        common.certificate_step(settings, depends_on=("proxy-packages",)),
        config_render_step(settings),
        service_start_step(settings),
        common.cert_renewal_step(settings),
        common.panel_config_step(settings),
        common.verify_step(settings),
    ]
