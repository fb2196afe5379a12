"""
ServiceConfig — the control panel's configuration record.

Written by the ``panel-config`` step at the end of an installation
and read by the control panel at startup. The record is validated
as a whole: unknown keys or wrong types reject it entirely, nothing
is merged field-by-field.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class ServiceConfig(BaseModel):
    """What the control panel needs to know about the installation."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    domain: str = Field(min_length=1)
    admin_email: str = Field(min_length=1)
    install_method: Literal["native", "container"]
    timezone: str = "UTC"
    install_date: str
    version: str
