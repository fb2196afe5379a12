"""
Docker container runtime adapter.

Wraps ``docker run`` for one-shot containers (certbot, nginx -t) and
``docker compose`` for the long-running code-server + nginx stack.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

from provisioner.adapters.base import Adapter
from provisioner.core.models.receipt import Receipt

logger = logging.getLogger(__name__)


class DockerRuntime(Adapter):
    """run(image, args) -> ok | error; compose up/down and friends."""

    @property
    def name(self) -> str:
        return "docker"

    def is_available(self) -> bool:
        return self._runner.which("docker") is not None

    def daemon_ready(self, timeout: int | None = None) -> bool:
        if not self.is_available():
            return False
        return self._run(["docker", "info", "--format", "{{.ServerVersion}}"], "info", timeout).ok

    def compose_available(self, timeout: int | None = None) -> bool:
        if not self.is_available():
            return False
        return self._run(["docker", "compose", "version", "--short"], "compose-version", timeout).ok

    def run(
        self,
        image: str,
        args: Sequence[str] = (),
        *,
        volumes: Sequence[str] = (),
        ports: Sequence[str] = (),
        extra: Sequence[str] = (),
        timeout: int | None = None,
    ) -> Receipt:
        """Run a throwaway container (``--rm``) to completion."""
        cmd = ["docker", "run", "--rm"]
        for port in ports:
            cmd += ["-p", port]
        for volume in volumes:
            cmd += ["-v", volume]
        cmd += list(extra)
        cmd.append(image)
        cmd += list(args)
        return self._run(cmd, "run", timeout)

    def exec(self, container: str, args: Sequence[str], timeout: int | None = None) -> Receipt:
        return self._run(["docker", "exec", container, *args], "exec", timeout)

    def container_running(self, container: str, timeout: int | None = None) -> bool:
        receipt = self._run(
            ["docker", "inspect", "-f", "{{.State.Running}}", container],
            "inspect",
            timeout,
        )
        return receipt.ok and receipt.output.strip() == "true"

    # ── Compose ──────────────────────────────────────────────────

    def compose(self, args: Sequence[str], project_dir: Path, timeout: int | None = None) -> Receipt:
        return self._run(
            ["docker", "compose", *args],
            f"compose-{args[0] if args else 'noop'}",
            timeout,
            cwd=str(project_dir),
        )

    def compose_up(self, project_dir: Path, build: bool = False, timeout: int | None = None) -> Receipt:
        args = ["up", "-d"]
        if build:
            args.append("--build")
        return self.compose(args, project_dir, timeout)

    def compose_down(self, project_dir: Path, timeout: int | None = None) -> Receipt:
        return self.compose(["down"], project_dir, timeout)

    def compose_restart(self, project_dir: Path, timeout: int | None = None) -> Receipt:
        return self.compose(["restart"], project_dir, timeout)

    def compose_pull(self, project_dir: Path, timeout: int | None = None) -> Receipt:
        return self.compose(["pull", "--ignore-buildable"], project_dir, timeout)

    def compose_ps(self, project_dir: Path, timeout: int | None = None) -> Receipt:
        return self.compose(["ps"], project_dir, timeout)

    def compose_logs(self, project_dir: Path, tail: int = 100, follow: bool = False,
                     timeout: int | None = None) -> Receipt:
        args = ["docker", "compose", "logs", "--tail", str(tail)]
        if follow:
            args.append("-f")
            receipt = self._runner.passthrough(args, cwd=str(project_dir), operation="compose-logs")
            receipt.adapter = self.name
            return receipt
        return self._run(args, "compose-logs", timeout, cwd=str(project_dir))
