"""
Container install method — code-server and nginx as a compose stack.

Pipeline:
    swap → os-update → docker-runtime → compose-plugin → certificate →
    layout → config-render → service-start → cert-renewal →
    panel-config → verify
"""

from __future__ import annotations

import logging

from provisioner.core.config.settings import Settings
from provisioner.core.models.step import Step, StepContext
from provisioner.core.services.provisioning import common, files, templates

logger = logging.getLogger(__name__)

COMPOSE_PLUGIN = "docker-compose-plugin"


# ── docker-runtime ──────────────────────────────────────────────


def _install_docker(ctx: StepContext) -> None:
    host = ctx.host
    settings = host.settings
    script = settings.state_dir / "get-docker.sh"
    script.parent.mkdir(parents=True, exist_ok=True)

    host.runner.run(
        ["curl", "-fsSL", settings.docker_install_url, "-o", str(script)],
        timeout=ctx.timeout,
        operation="download",
    ).raise_for_status()
    try:
        host.runner.run(["sh", str(script)], timeout=ctx.timeout, operation="get-docker").raise_for_status()
    finally:
        script.unlink(missing_ok=True)
    host.services.enable("docker", now=True, timeout=ctx.timeout).raise_for_status()


def docker_runtime_step(settings: Settings) -> Step:
    return Step(
        name="docker-runtime",
        description="Install Docker engine",
        precondition=lambda ctx: ctx.host.docker.daemon_ready(timeout=ctx.timeout),
        apply=_install_docker,
        postcondition=lambda ctx: ctx.host.docker.daemon_ready(timeout=ctx.timeout),
        timeout=settings.package_timeout,
        retries=1,
        retry_delay=5.0,
        depends_on=("os-update",),
    )


# ── compose-plugin ──────────────────────────────────────────────


def _install_compose(ctx: StepContext) -> None:
    packages = ctx.host.packages
    packages.update(timeout=ctx.timeout).raise_for_status()
    packages.install(COMPOSE_PLUGIN, timeout=ctx.timeout).raise_for_status()


def compose_plugin_step(settings: Settings) -> Step:
    return Step(
        name="compose-plugin",
        description="Install Docker Compose plugin",
        precondition=lambda ctx: ctx.host.docker.compose_available(timeout=ctx.timeout),
        apply=_install_compose,
        postcondition=lambda ctx: ctx.host.docker.compose_available(timeout=ctx.timeout),
        timeout=settings.package_timeout,
        retries=1,
        retry_delay=5.0,
        depends_on=("docker-runtime",),
    )


# ── certificate ─────────────────────────────────────────────────


def _issue_with_port_80(ctx: StepContext) -> None:
    """Standalone issuance needs port 80; stop the proxy if it holds it."""
    host = ctx.host
    params = ctx.parameters
    proxy_up = host.docker.container_running(templates.PROXY_SERVICE, timeout=ctx.timeout)
    if proxy_up:
        logger.info("Stopping %s while the certificate is issued", templates.PROXY_SERVICE)
        host.runner.run(
            ["docker", "stop", templates.PROXY_SERVICE],
            timeout=ctx.timeout,
            operation="docker-stop",
        ).raise_for_status()
    try:
        host.certbot.issue(params.domain, params.email, timeout=ctx.timeout).raise_for_status()
    finally:
        if proxy_up:
            host.runner.run(["docker", "start", templates.PROXY_SERVICE], timeout=ctx.timeout, operation="docker-start")


# ── layout ──────────────────────────────────────────────────────


def _layout_dirs(settings: Settings):
    return [settings.install_dir, settings.install_dir / "nginx", settings.projects_dir]


def _layout_ok(ctx: StepContext) -> bool:
    return all(d.is_dir() for d in _layout_dirs(ctx.host.settings))


def _create_layout(ctx: StepContext) -> None:
    host = ctx.host
    settings = host.settings
    for d in _layout_dirs(settings):
        d.mkdir(parents=True, exist_ok=True)
    uid, gid = templates.user_ids(settings.service_user)
    host.runner.run(
        ["chown", "-R", f"{uid}:{gid}", str(settings.projects_dir)],
        timeout=ctx.timeout,
        operation="chown",
    ).raise_for_status()


def layout_step(settings: Settings) -> Step:
    return Step(
        name="layout",
        description="Create install and project directories",
        precondition=_layout_ok,
        apply=_create_layout,
        postcondition=_layout_ok,
        timeout=settings.command_timeout,
    )


# ── config-render ───────────────────────────────────────────────


def _rendered(ctx: StepContext):
    return templates.container_files(ctx.host.settings, ctx.parameters)


def _config_current(ctx: StepContext) -> bool:
    return files.all_current(_rendered(ctx))


def _config_valid(ctx: StepContext) -> bool:
    if not _config_current(ctx):
        return False
    receipt = ctx.host.proxy.validate(templates.nginx_conf_path(ctx.host.settings), timeout=ctx.timeout)
    if not receipt.ok:
        logger.error("nginx rejected the rendered config: %s", receipt.error)
    return receipt.ok


def _render(ctx: StepContext) -> None:
    changed = files.write_all(_rendered(ctx))
    logger.info("Rendered %d config file(s)", len(changed))


def config_render_step(settings: Settings) -> Step:
    return Step(
        name="config-render",
        description="Render compose, Dockerfile, .env and nginx config",
        precondition=_config_current,
        apply=_render,
        postcondition=_config_valid,
        timeout=settings.command_timeout,
        depends_on=("certificate", "layout"),
    )


# ── service-start ───────────────────────────────────────────────


def _stack_running(ctx: StepContext) -> bool:
    docker = ctx.host.docker
    return all(
        docker.container_running(name, timeout=ctx.host.settings.command_timeout)
        for name in (templates.CONTAINER_SERVICE, templates.PROXY_SERVICE)
    )


def _stamp(ctx: StepContext):
    return common.service_stamp(ctx.host.settings, _rendered(ctx))


def _stack_current(ctx: StepContext) -> bool:
    # fresh config is only picked up by a rebuild
    return _stamp(ctx).is_current() and _stack_running(ctx)


def _compose_up(ctx: StepContext) -> None:
    host = ctx.host
    timeout = host.settings.command_timeout
    proxy_was_up = host.docker.container_running(templates.PROXY_SERVICE, timeout=timeout)
    host.docker.compose_up(host.settings.install_dir, build=True, timeout=ctx.timeout).raise_for_status()
    if proxy_was_up:
        # nginx.conf is a bind mount; compose does not recreate the proxy for it
        host.proxy.reload(timeout=timeout).raise_for_status()
    files.write_rendered(_stamp(ctx))


def service_start_step(settings: Settings) -> Step:
    return Step(
        name="service-start",
        description="Build and start the compose stack",
        precondition=_stack_current,
        apply=_compose_up,
        postcondition=_stack_current,
        timeout=settings.build_timeout,
        retries=1,
        retry_delay=5.0,
        depends_on=("compose-plugin", "config-render"),
    )


# ── Pipeline ────────────────────────────────────────────────────


def container_steps(settings: Settings) -> list[Step]:
    return [
        common.swap_step(settings),
        common.os_update_step(settings),
        docker_runtime_step(settings),
        compose_plugin_step(settings),
        common.certificate_step(settings, apply=_issue_with_port_80, depends_on=("docker-runtime",)),
        layout_step(settings),
        config_render_step(settings),
        service_start_step(settings),
        common.cert_renewal_step(settings),
        common.panel_config_step(settings),
        common.verify_step(settings),
    ]
