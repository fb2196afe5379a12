"""
InstallParameters — validated user input for a provisioning run.

Produced by the input-collection stage (interactive prompts or CLI
flags) before the engine starts. The engine itself never reads the
terminal, so tests can build these directly.
"""

from __future__ import annotations

import re
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, SecretStr, field_validator

REDACTED = "***REDACTED***"

_LABEL_RE = re.compile(r"^[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?$")
_TLD_RE = re.compile(r"^[a-z]{2,63}$")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

InstallMethod = Literal["container", "native"]


def domain_error(value: str) -> str | None:
    """Return why ``value`` is not a valid DNS hostname, or None."""
    if not value:
        return "Domain cannot be empty"
    if len(value) > 253:
        return "Domain is longer than 253 characters"
    labels = value.split(".")
    if len(labels) < 2:
        return "Domain needs at least two labels (e.g. code.example.com)"
    for label in labels:
        if not _LABEL_RE.match(label):
            return f"Invalid DNS label '{label}'"
    if not _TLD_RE.match(labels[-1]):
        return f"Invalid top-level domain '{labels[-1]}'"
    return None


def password_error(value: str) -> str | None:
    """Return why ``value`` violates the password policy, or None."""
    if not value:
        return "Password cannot be empty"
    if len(value) < 8:
        return "Password must be at least 8 characters"
    if not any(c.isupper() for c in value):
        return "Password must contain an uppercase letter"
    if not any(c.isdigit() for c in value):
        return "Password must contain a digit"
    # the value lands on one line of .env and config.yaml
    if any(c.isspace() or not c.isprintable() for c in value):
        return "Password must not contain spaces or control characters"
    if "\\" in value:
        return "Password must not contain backslashes"
    return None


def email_error(value: str) -> str | None:
    """Return why ``value`` is not a usable contact address, or None."""
    if not value:
        return "Email cannot be empty"
    if not _EMAIL_RE.match(value):
        return "Email must look like name@example.com"
    return None


class InstallParameters(BaseModel):
    """Validated input for the installation pipeline."""

    model_config = ConfigDict(frozen=True)

    domain: str
    email: str
    password: SecretStr
    install_method: InstallMethod = "container"
    timezone: str = "UTC"

    @field_validator("domain", mode="before")
    @classmethod
    def _check_domain(cls, v: Any) -> str:
        value = str(v or "").strip().lower().rstrip(".")
        err = domain_error(value)
        if err:
            raise ValueError(err)
        return value

    @field_validator("email", mode="before")
    @classmethod
    def _check_email(cls, v: Any) -> str:
        value = str(v or "").strip()
        err = email_error(value)
        if err:
            raise ValueError(err)
        return value

    @field_validator("password", mode="before")
    @classmethod
    def _check_password(cls, v: Any) -> Any:
        raw = v.get_secret_value() if isinstance(v, SecretStr) else str(v or "")
        err = password_error(raw)
        if err:
            raise ValueError(err)
        return raw

    def secret(self) -> str:
        """The raw password. Only step functions that render it may call this."""
        return self.password.get_secret_value()

    def redacted(self) -> dict[str, Any]:
        """Parameters safe to persist or log."""
        return {
            "domain": self.domain,
            "email": self.email,
            "install_method": self.install_method,
            "timezone": self.timezone,
            "password": REDACTED,
        }
