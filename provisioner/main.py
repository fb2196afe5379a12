"""
code-server provisioner — CLI entrypoint.

Usage:
    provisioner --help
    provisioner check --domain code.example.com
    provisioner install
    provisioner state show
    provisioner panel status

``code-server-install`` and ``code-server-panel`` are shortcuts for
``provisioner install`` and ``provisioner panel``.
"""

from __future__ import annotations

import json
import os
import sys

import click

from provisioner import __version__
from provisioner.core.observability.logging_config import setup_logging

_LEVEL_ICONS = {"pass": ("✅", "green"), "warn": ("⚠️ ", "yellow"), "fail": ("❌", "red")}
_STATUS_ICONS = {"applied": ("✓", "green"), "skipped": ("⊘", "cyan"), "failed": ("✗", "red")}


# ── Logging ─────────────────────────────────────────────────────


def _resolve_level(verbose: bool, quiet: bool, debug: bool, default: str = "WARNING") -> str:
    """Flags > CSP_LOG_LEVEL > default."""
    if debug:
        return "DEBUG"
    if verbose:
        return "INFO"
    if quiet:
        return "ERROR"
    return os.environ.get("CSP_LOG_LEVEL") or default


def configure_logging(ctx: click.Context, log_file: str | None = None, default_level: str = "WARNING") -> None:
    """(Re)configure logging from the flags stored on the context."""
    obj = ctx.ensure_object(dict)
    level = _resolve_level(obj.get("verbose", False), obj.get("quiet", False), obj.get("debug", False), default_level)
    setup_logging(
        level=level,
        log_file=os.environ.get("CSP_LOG_FILE") or log_file,
        log_file_level=os.environ.get("CSP_LOG_FILE_LEVEL") or ("INFO" if log_file else None),
    )


@click.group()
@click.version_option(version=__version__, prog_name="provisioner")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, quiet: bool, debug: bool) -> None:
    """Provision and operate code-server behind nginx with Let's Encrypt."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    configure_logging(ctx)


# ── Shared output ───────────────────────────────────────────────


def _settings_or_exit(code: int = 1):
    from provisioner.core.config.settings import Settings
    from provisioner.core.errors import ConfigError

    try:
        return Settings.from_env()
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(code)


def print_report(report) -> None:
    """Human-readable diagnostic report."""
    click.secho("\n🔍 Pre-flight check", fg="cyan", bold=True)
    for r in report.results:
        icon, color = _LEVEL_ICONS[r.level]
        click.echo(f"   {icon} ", nl=False)
        click.secho(f"{r.name:<18}", fg=color, nl=False)
        click.echo(f" {r.message}")
    summary = f"   {len(report.passed)} passed, {len(report.warnings)} warnings, {len(report.failures)} failed"
    click.secho(summary, fg=_LEVEL_ICONS[report.level][1], bold=True)
    if report.recommendations:
        click.secho("\n💡 Recommendations", fg="cyan", bold=True)
        for hint in report.recommendations:
            click.echo(f"   • {hint}")
    click.echo()


def print_results(state) -> None:
    for r in state.results:
        icon, color = _STATUS_ICONS[r.status]
        click.secho(f"   {icon} ", fg=color, nl=False)
        extra = f" ({r.attempts} attempts)" if r.attempts > 1 else ""
        click.echo(f"{r.step_name:<16} {r.status}{extra}")


def _failure_line(result) -> str:
    where = f" at step '{result.failed_step}'" if result.failed_step else ""
    return f"❌ Installation failed{where}: {result.error}"


# ── install ─────────────────────────────────────────────────────


@click.command("install")
@click.option("--domain", default=None, help="Subdomain serving code-server (e.g. code.example.com).")
@click.option("--email", default=None, help="Contact email for the Let's Encrypt certificate.")
@click.option("--password", default=None, envvar="CSP_PASSWORD", help="code-server password (env: CSP_PASSWORD).")
@click.option("--method", "method", type=click.Choice(["container", "native"]), default="container",
              show_default=True, help="Install method.")
@click.option("--timezone", default="UTC", show_default=True, help="Timezone for the code-server container.")
@click.option("--fresh", is_flag=True, help="Archive the previous run state and start over.")
@click.option("--strict", is_flag=True, help="Abort when any pre-flight check fails.")
@click.option("--force", is_flag=True, help="Continue past pre-flight failures without asking.")
@click.option("--skip-preflight", is_flag=True, help="Do not run the pre-flight check.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def install(
    ctx: click.Context,
    domain: str | None,
    email: str | None,
    password: str | None,
    method: str,
    timezone: str,
    fresh: bool,
    strict: bool,
    force: bool,
    skip_preflight: bool,
    as_json: bool,
) -> None:
    """Install code-server (safe to re-run: finished steps are skipped)."""
    from provisioner.core.engine.cancel import CancelToken, cancel_on_signals
    from provisioner.core.use_cases.install import run_install
    from provisioner.core.use_cases.preflight import run_preflight
    from provisioner.ui.cli.prompts import collect_parameters

    settings = _settings_or_exit()

    # An install run is worth keeping on disk.
    try:
        settings.state_dir.mkdir(parents=True, exist_ok=True, mode=0o700)
        log_file = str(settings.log_file)
    except OSError:
        log_file = None
    configure_logging(ctx, log_file=log_file, default_level="ERROR" if as_json else "INFO")

    params = collect_parameters(domain, email, password, method, timezone)

    # ── Pre-flight ───────────────────────────────────────────────
    if not skip_preflight:
        report = run_preflight(params.domain)
        if not as_json:
            print_report(report)
        if report.failures:
            if strict:
                click.secho("❌ Pre-flight failed (strict mode).", fg="red", err=True)
                if as_json:
                    click.echo(json.dumps({"ok": False, "preflight": report.to_dict()}, indent=2))
                sys.exit(1)
            if not force:
                if as_json or not click.confirm("Pre-flight reported failures. Continue anyway?", default=False):
                    click.secho("Aborted. Re-run with --force to continue past pre-flight failures.",
                                fg="yellow", err=True)
                    sys.exit(1)

    # ── Run ──────────────────────────────────────────────────────
    if not as_json:
        click.secho(f"\n🚀 Installing code-server for {params.domain} ({params.install_method})",
                    fg="cyan", bold=True)

    token = CancelToken()
    with cancel_on_signals(token):
        result = run_install(params, settings, fresh=fresh, cancel=token)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        if not result.ok:
            click.secho(_failure_line(result), fg="red", err=True)
        sys.exit(0 if result.ok else 1)

    if result.state is not None:
        click.echo()
        print_results(result.state)
        click.echo()

    if not result.ok:
        click.secho(_failure_line(result), fg="red", err=True)
        if result.state is not None and result.state.rollback_error:
            click.secho(f"   {result.state.rollback_error}", fg="yellow", err=True)
        click.echo("   Fix the problem and re-run; completed steps will be skipped.", err=True)
        sys.exit(1)

    click.secho("✅ Installation complete", fg="green", bold=True)
    click.echo(f"   URL:    https://{params.domain}")
    click.echo("   Manage: sudo code-server-panel status")
    click.echo()


cli.add_command(install)


def install_entry() -> None:
    """``code-server-install`` console script."""
    install(prog_name="code-server-install", obj={})


# ── check ───────────────────────────────────────────────────────


@cli.command()
@click.option("--domain", default=None, help="Also check the domain's syntax and DNS.")
@click.option("--strict", is_flag=True, help="Exit non-zero when any check fails.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def check(domain: str | None, strict: bool, as_json: bool) -> None:
    """Pre-flight check: is this host ready for an install?"""
    from provisioner.core.use_cases.preflight import run_preflight

    report = run_preflight(domain)

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
    else:
        print_report(report)

    if strict and report.failures:
        sys.exit(1)


# ── state ───────────────────────────────────────────────────────


@cli.group()
def state() -> None:
    """Inspect or reset the recorded run state."""


@state.command("show")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def state_show(as_json: bool) -> None:
    """Show the last recorded run."""
    from provisioner.core.persistence.state_file import StateRecorder

    settings = _settings_or_exit()
    current = StateRecorder(settings.state_dir).load()

    if as_json:
        click.echo(json.dumps(current.model_dump(mode="json") if current else None, indent=2))
        return

    if current is None:
        click.secho("No run recorded yet.", fg="yellow")
        return

    color = {"completed": "green", "failed": "red"}.get(current.status, "yellow")
    click.secho(f"\n📋 Run {current.run_id}", fg="cyan", bold=True)
    click.echo("   Status:    ", nl=False)
    click.secho(current.status, fg=color)
    click.echo(f"   Updated:   {current.updated_at}")
    for key, value in current.parameters.items():
        click.echo(f"   {key + ':':<10} {value}")
    click.echo(f"   Completed: {', '.join(current.completed_steps) or '(none)'}")
    if current.failed_step:
        click.secho(f"   Failed:    {current.failed_step}: {current.error}", fg="red")
    if current.results:
        click.echo()
        print_results(current)
    click.echo()


@state.command("reset")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
def state_reset(yes: bool) -> None:
    """Archive the run state so the next install starts fresh."""
    from provisioner.core.errors import PersistenceError
    from provisioner.core.persistence.state_file import StateRecorder

    settings = _settings_or_exit()
    if not yes:
        click.confirm("Archive the recorded run state?", abort=True)

    try:
        archived = StateRecorder(settings.state_dir).archive()
    except PersistenceError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(1)

    if archived is None:
        click.echo("Nothing to reset.")
    else:
        click.secho(f"✅ Run state archived to {archived}", fg="green")


@state.command("log")
@click.option("-n", "count", default=20, show_default=True, help="Number of entries to show.")
@click.option("--run", "run_id", default=None, help="Only entries for this run.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def state_log(count: int, run_id: str | None, as_json: bool) -> None:
    """Show the execution log."""
    from provisioner.core.persistence.audit import AuditWriter

    settings = _settings_or_exit()
    writer = AuditWriter(state_dir=settings.state_dir)
    if run_id:
        entries = [e for e in writer.read_all() if e.run_id == run_id][-count:]
    else:
        entries = writer.read_recent(count)

    if as_json:
        click.echo(json.dumps([e.model_dump(mode="json") for e in entries], indent=2))
        return

    if not entries:
        click.secho("Execution log is empty.", fg="yellow")
        return

    for entry in entries:
        r = entry.result
        icon, color = _STATUS_ICONS[r.status]
        click.secho(f"{icon} ", fg=color, nl=False)
        click.echo(f"{r.timestamp}  {entry.run_id}  {r.step_name:<16} {r.status}")
        if r.error:
            click.secho(f"      {r.error}", fg="red")


# ── Sub-command groups ──────────────────────────────────────────

from provisioner.ui.cli.panel import panel  # noqa: E402

cli.add_command(panel)


if __name__ == "__main__":
    cli()
