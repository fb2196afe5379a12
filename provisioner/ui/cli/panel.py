"""
CLI commands for the control panel.

Thin wrappers over ``provisioner.core.use_cases.control``. Installed
both as ``provisioner panel`` and as the ``code-server-panel`` console
script; run without a sub-command it opens an interactive menu.

Exit codes: 0 success, 1 collaborator failure, 2 unusable panel record.
"""

from __future__ import annotations

import os
import sys

import click

_PROGRESS = {
    "start": "Starting service...",
    "stop": "Stopping service...",
    "restart": "Restarting service...",
    "update": "Updating service (this may take a few minutes)...",
    "logs": "Showing logs. Press Ctrl+C to exit.",
}

_MENU = (
    ("start", "Start service"),
    ("stop", "Stop service"),
    ("restart", "Restart service"),
    ("update", "Update service"),
    ("logs", "View live logs"),
    ("exit", "Exit"),
)


def _controller(ctx: click.Context):
    """Build the controller, or exit 2 when the panel record is unusable."""
    from provisioner.core.config.settings import Settings
    from provisioner.core.errors import ConfigError
    from provisioner.core.use_cases.control import load_control

    try:
        settings = Settings.from_env()
        return load_control(settings, runner=ctx.obj.get("runner"))
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(2)


def _perform(ctx: click.Context, action: str, exit_on_error: bool = True, **kwargs) -> bool:
    control = ctx.obj.get("control") or _controller(ctx)
    ctx.obj["control"] = control

    if action in _PROGRESS:
        click.secho(f"ℹ️  {_PROGRESS[action]}", fg="yellow")
    result = control.run(action, **kwargs)

    if result.output:
        click.echo(result.output)

    if not result.ok:
        click.secho(f"❌ {result.message} {result.error or ''}".rstrip(), fg="red", err=True)
        if exit_on_error:
            sys.exit(1)
        return False

    click.secho(f"✅ {result.message}", fg="green")
    return True


@click.group(invoke_without_command=True)
@click.pass_context
def panel(ctx: click.Context) -> None:
    """Control panel — status, start, stop, restart, update, logs."""
    ctx.ensure_object(dict)
    if ctx.parent is None:
        from provisioner.core.observability.logging_config import setup_logging

        setup_logging(
            level=os.environ.get("CSP_LOG_LEVEL", "WARNING"),
            log_file=os.environ.get("CSP_LOG_FILE"),
            log_file_level=os.environ.get("CSP_LOG_FILE_LEVEL"),
        )
    if ctx.invoked_subcommand is None:
        _menu(ctx)


def _menu(ctx: click.Context) -> None:
    control = _controller(ctx)
    ctx.obj["control"] = control

    while True:
        click.secho("\n===== code-server control panel =====", fg="green", bold=True)
        click.secho(f"   {control.config.domain} ({control.method})", fg="cyan")
        _perform(ctx, "status", exit_on_error=False)
        click.echo()
        for number, (_, label) in enumerate(_MENU, start=1):
            click.echo(f"   {number}) {label}")
        choice = click.prompt("Select an option", type=click.IntRange(1, len(_MENU)))
        action = _MENU[choice - 1][0]
        if action == "exit":
            click.echo("Bye.")
            return
        if action == "logs":
            _perform(ctx, "logs", exit_on_error=False, follow=True)
        else:
            _perform(ctx, action, exit_on_error=False)


@panel.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show service status."""
    _perform(ctx, "status")


@panel.command()
@click.pass_context
def start(ctx: click.Context) -> None:
    """Start the service."""
    _perform(ctx, "start")


@panel.command()
@click.pass_context
def stop(ctx: click.Context) -> None:
    """Stop the service."""
    _perform(ctx, "stop")


@panel.command()
@click.pass_context
def restart(ctx: click.Context) -> None:
    """Restart the service."""
    _perform(ctx, "restart")


@panel.command()
@click.pass_context
def update(ctx: click.Context) -> None:
    """Pull/reinstall the latest code-server and restart."""
    _perform(ctx, "update")


@panel.command()
@click.option("--follow", "-f", is_flag=True, help="Keep streaming new log lines.")
@click.option("--tail", "-n", default=100, show_default=True, type=click.IntRange(min=0),
              help="Number of past lines to show.")
@click.pass_context
def logs(ctx: click.Context, follow: bool, tail: int) -> None:
    """Show service logs."""
    _perform(ctx, "logs", tail=tail, follow=follow)
