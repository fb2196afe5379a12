"""Adapters — bindings for the external collaborators.

Public re-exports for convenient access.
"""

from provisioner.adapters.base import Adapter
from provisioner.adapters.mock import MockRunner
from provisioner.adapters.registry import Host, build_host
from provisioner.adapters.shell.command import CommandRunner

__all__ = [
    "Adapter",
    "CommandRunner",
    "Host",
    "MockRunner",
    "build_host",
]
