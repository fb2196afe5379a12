"""
Input collection — turn flags and prompts into InstallParameters.

Values passed as flags are validated and rejected with a usage error;
missing values are prompted for, re-asking until they pass. The
password is read hidden and confirmed.
"""

from __future__ import annotations

from collections.abc import Callable

import click
from pydantic import ValidationError

from provisioner.core.models.parameters import (
    InstallParameters,
    domain_error,
    email_error,
    password_error,
)


def _normalize_domain(value: str) -> str:
    return value.strip().lower().rstrip(".")


def _checked(check: Callable[[str], str | None], normalize: Callable[[str], str] = str.strip):
    """value_proc for click.prompt: re-prompts on a validation error."""

    def _proc(value: str) -> str:
        value = normalize(value)
        err = check(value)
        if err:
            raise click.BadParameter(err)
        return value

    return _proc


def _from_flag(value: str, check: Callable[[str], str | None], hint: str,
               normalize: Callable[[str], str] = str.strip) -> str:
    value = normalize(value)
    err = check(value)
    if err:
        raise click.BadParameter(err, param_hint=hint)
    return value


def prompt_domain() -> str:
    return click.prompt(
        "Subdomain (e.g. code.example.com)",
        value_proc=_checked(domain_error, _normalize_domain),
    )


def prompt_email() -> str:
    return click.prompt("Email for the TLS certificate", value_proc=_checked(email_error))


def prompt_password() -> str:
    click.echo("Password: 8+ characters, one uppercase letter, one digit, no spaces or backslashes.")
    return click.prompt(
        "Password for code-server",
        hide_input=True,
        confirmation_prompt="Repeat password",
        value_proc=_checked(password_error, lambda v: v),
    )


def collect_parameters(
    domain: str | None,
    email: str | None,
    password: str | None,
    method: str,
    timezone: str,
) -> InstallParameters:
    """Validated parameters from flags, prompting for what is missing.

    Raises:
        click.BadParameter: a value given as a flag is invalid.
    """
    domain = _from_flag(domain, domain_error, "--domain", _normalize_domain) if domain else prompt_domain()
    email = _from_flag(email, email_error, "--email") if email else prompt_email()
    if password:
        password = _from_flag(password, password_error, "--password", lambda v: v)
    else:
        password = prompt_password()

    try:
        return InstallParameters(
            domain=domain,
            email=email,
            password=password,
            install_method=method,
            timezone=timezone,
        )
    except ValidationError as e:
        raise click.BadParameter(str(e)) from e
