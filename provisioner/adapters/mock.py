"""
Mock command runner — test double for every collaborator.

Records every command it is asked to run and answers from a table of
canned responses keyed by command prefix. Unknown commands succeed
with empty output, so tests only describe what matters to them.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from provisioner.core.models.receipt import Receipt

Responder = Callable[[list[str]], Receipt]


@dataclass
class MockCall:
    """One recorded invocation."""

    cmd: list[str]
    timeout: int | None = None
    input: str | None = None
    cwd: str | None = None
    env: dict[str, str] = field(default_factory=dict)
    passthrough: bool = False


class MockRunner:
    """Drop-in replacement for ``CommandRunner``."""

    name = "mock"

    def __init__(self, available: Sequence[str] | None = None, default_output: str = ""):
        self._available = set(available) if available is not None else None
        self._default_output = default_output
        self._responses: list[tuple[tuple[str, ...], Responder]] = []
        self._calls: list[MockCall] = []

    # ── Configuration ────────────────────────────────────────────

    def set_response(
        self,
        prefix: Sequence[str],
        output: str = "",
        *,
        ok: bool = True,
        error: str = "Mock failure",
        return_code: int | None = None,
        timed_out: bool = False,
    ) -> None:
        """Answer commands starting with ``prefix``. Later entries win."""

        def _respond(cmd: list[str]) -> Receipt:
            if ok:
                return Receipt.success(adapter=self.name, operation=cmd[0], output=output, return_code=0)
            return Receipt.failure(
                adapter=self.name,
                operation=cmd[0],
                error=error,
                output=output,
                return_code=1 if return_code is None else return_code,
                timed_out=timed_out,
            )

        self._responses.append((tuple(prefix), _respond))

    def set_failure(self, prefix: Sequence[str], error: str = "Mock failure") -> None:
        """Make commands starting with ``prefix`` fail."""
        self.set_response(prefix, ok=False, error=error)

    def set_handler(self, prefix: Sequence[str], handler: Responder) -> None:
        """Answer commands starting with ``prefix`` with a callable."""
        self._responses.append((tuple(prefix), handler))

    def set_available(self, *binaries: str) -> None:
        if self._available is None:
            self._available = set()
        self._available.update(binaries)

    # ── Inspection ───────────────────────────────────────────────

    @property
    def calls(self) -> list[MockCall]:
        return self._calls

    @property
    def commands(self) -> list[list[str]]:
        return [c.cmd for c in self._calls]

    def called(self, *prefix: str) -> bool:
        return any(tuple(c.cmd[: len(prefix)]) == prefix for c in self._calls)

    def reset(self) -> None:
        self._calls.clear()
        self._responses.clear()

    # ── CommandRunner protocol ───────────────────────────────────

    def which(self, binary: str) -> str | None:
        if self._available is None or binary in self._available:
            return f"/usr/bin/{binary}"
        return None

    def _answer(self, cmd: list[str]) -> Receipt:
        for prefix, responder in reversed(self._responses):
            if tuple(cmd[: len(prefix)]) == prefix:
                return responder(cmd)
        return Receipt.success(adapter=self.name, operation=cmd[0] if cmd else "", output=self._default_output)

    def run(self, cmd: Sequence[str], *, timeout: int | None = None, input: str | None = None,
            cwd: Any = None, env: Any = None, operation: str = "") -> Receipt:
        argv = [str(c) for c in cmd]
        self._calls.append(MockCall(
            cmd=argv,
            timeout=timeout,
            input=input,
            cwd=str(cwd) if cwd is not None else None,
            env=dict(env or {}),
        ))
        return self._answer(argv)

    def passthrough(self, cmd: Sequence[str], *, timeout: int | None = None,
                    cwd: Any = None, operation: str = "") -> Receipt:
        argv = [str(c) for c in cmd]
        self._calls.append(MockCall(
            cmd=argv,
            timeout=timeout,
            cwd=str(cwd) if cwd is not None else None,
            passthrough=True,
        ))
        return self._answer(argv)
