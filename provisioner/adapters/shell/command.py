"""
Command runner — the single place where collaborator commands execute.

Every apt, docker, certbot, nginx and systemctl call goes through
``CommandRunner.run``. It always carries an explicit timeout and never
raises for a failed command: non-zero exits, timeouts and missing
binaries all come back as failed Receipts.

Commands run in their own session, so a Ctrl+C at the terminal reaches
the provisioner (which queues the cancellation) but not a package
install that is halfway through.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import time
from collections.abc import Mapping, Sequence

from provisioner.core.models.receipt import Receipt

logger = logging.getLogger(__name__)

_OUTPUT_LIMIT = 4000


def _tail(text: str | None) -> str:
    if not text:
        return ""
    text = text.strip()
    return text[-_OUTPUT_LIMIT:]


class CommandRunner:
    """Execute external commands and capture their outcome.

    Args:
        default_timeout: Timeout used when a caller passes ``timeout=None``
            to ``run``. There is no way to run without a timeout.
    """

    name = "shell"

    def __init__(self, default_timeout: int = 120):
        self._default_timeout = default_timeout

    def which(self, binary: str) -> str | None:
        """Locate a binary on PATH."""
        return shutil.which(binary)

    def run(
        self,
        cmd: Sequence[str],
        *,
        timeout: int | None = None,
        input: str | None = None,
        cwd: str | os.PathLike[str] | None = None,
        env: Mapping[str, str] | None = None,
        operation: str = "",
    ) -> Receipt:
        """Run a command to completion.

        Args:
            cmd: Argument list (no shell interpretation).
            timeout: Seconds before the command is killed.
            input: Text piped to stdin. Never logged.
            cwd: Working directory.
            env: Extra environment variables layered over os.environ.
            operation: Label recorded on the receipt (defaults to argv[0]).

        Returns:
            Receipt; ``ok`` only for exit code 0.
        """
        argv = [str(c) for c in cmd]
        label = operation or (argv[0] if argv else "")
        limit = timeout or self._default_timeout

        full_env = None
        if env:
            full_env = os.environ.copy()
            full_env.update(env)

        logger.debug("Executing: %s (timeout=%ss, cwd=%s)", " ".join(argv), limit, cwd)
        start = time.monotonic()

        try:
            result = subprocess.run(
                argv,
                input=input,
                cwd=cwd,
                env=full_env,
                capture_output=True,
                text=True,
                timeout=limit,
                start_new_session=True,
            )
        except subprocess.TimeoutExpired:
            return Receipt.failure(
                adapter=self.name,
                operation=label,
                error=f"Command timed out after {limit}s: {' '.join(argv)}",
                timed_out=True,
                duration_ms=int((time.monotonic() - start) * 1000),
                metadata={"command": argv, "timeout": limit},
            )
        except FileNotFoundError:
            return Receipt.failure(
                adapter=self.name,
                operation=label,
                error=f"Command not found: {argv[0] if argv else '<empty>'}",
                metadata={"command": argv},
            )
        except OSError as e:
            return Receipt.failure(
                adapter=self.name,
                operation=label,
                error=f"Command execution error: {e}",
                metadata={"command": argv},
            )

        elapsed_ms = int((time.monotonic() - start) * 1000)
        stdout = _tail(result.stdout)
        stderr = _tail(result.stderr)

        if result.returncode == 0:
            return Receipt.success(
                adapter=self.name,
                operation=label,
                output=stdout,
                return_code=0,
                duration_ms=elapsed_ms,
                metadata={"command": argv, "stderr": stderr},
            )

        return Receipt.failure(
            adapter=self.name,
            operation=label,
            error=stderr or f"Command exited with code {result.returncode}",
            output=stdout,
            return_code=result.returncode,
            duration_ms=elapsed_ms,
            metadata={"command": argv},
        )

    def passthrough(
        self,
        cmd: Sequence[str],
        *,
        timeout: int | None = None,
        cwd: str | os.PathLike[str] | None = None,
        operation: str = "",
    ) -> Receipt:
        """Run a command attached to the terminal (e.g. ``logs --follow``).

        ``timeout=None`` means "until the user stops it"; only the
        control panel's follow mode uses that.
        """
        argv = [str(c) for c in cmd]
        label = operation or (argv[0] if argv else "")
        logger.debug("Attaching: %s", " ".join(argv))
        start = time.monotonic()

        try:
            returncode = subprocess.call(argv, cwd=cwd, timeout=timeout)
        except subprocess.TimeoutExpired:
            return Receipt.failure(
                adapter=self.name,
                operation=label,
                error=f"Command timed out after {timeout}s",
                timed_out=True,
            )
        except KeyboardInterrupt:
            return Receipt.success(adapter=self.name, operation=label, output="interrupted")
        except OSError as e:
            return Receipt.failure(adapter=self.name, operation=label, error=f"Command execution error: {e}")

        elapsed_ms = int((time.monotonic() - start) * 1000)
        if returncode == 0:
            return Receipt.success(adapter=self.name, operation=label, return_code=0, duration_ms=elapsed_ms)
        return Receipt.failure(
            adapter=self.name,
            operation=label,
            error=f"Command exited with code {returncode}",
            return_code=returncode,
            duration_ms=elapsed_ms,
        )
