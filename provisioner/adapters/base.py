"""
Adapter base — the contract between steps and external tools.

Steps never shell out directly: they talk to a collaborator adapter
(package manager, container runtime, certificate client, reverse
proxy, service manager), which talks to the tool through a command
runner. Adapters return Receipts and never raise for tool failures.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Protocol

from provisioner.core.models.receipt import Receipt


class Runner(Protocol):
    """What adapters need from a command runner (real or mock)."""

    def which(self, binary: str) -> str | None: ...

    def run(self, cmd, *, timeout=None, input=None, cwd=None, env=None, operation="") -> Receipt: ...

    def passthrough(self, cmd, *, timeout=None, cwd=None, operation="") -> Receipt: ...


class Adapter(ABC):
    """Abstract base class for collaborator adapters.

    To create a new adapter:
        1. Subclass Adapter
        2. Implement name and is_available
        3. Add operations that return Receipts
    """

    def __init__(self, runner: Runner, default_timeout: int = 120):
        self._runner = runner
        self._default_timeout = default_timeout

    @property
    @abstractmethod
    def name(self) -> str:
        """The adapter identifier (e.g. 'apt', 'docker', 'certbot')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check whether the underlying tool is present. Never raises."""

    @property
    def runner(self) -> Runner:
        return self._runner

    def _run(self, cmd: list[str], operation: str, timeout: int | None = None, **kwargs) -> Receipt:
        receipt = self._runner.run(
            cmd,
            timeout=timeout or self._default_timeout,
            operation=operation,
            **kwargs,
        )
        receipt.adapter = self.name
        return receipt

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
