"""
Reverse proxy adapters — nginx.

validate(config) -> ok | error; reload() -> ok | error; plus an HTTPS
probe used by the final verification step. The probe pins the domain to
127.0.0.1 so a slow DNS propagation does not fail the local check.
"""

from __future__ import annotations

import logging
from pathlib import Path

from provisioner.adapters.base import Adapter, Runner
from provisioner.adapters.containers.docker import DockerRuntime
from provisioner.adapters.services.systemd import SystemdManager
from provisioner.core.models.receipt import Receipt

logger = logging.getLogger(__name__)


class NginxProxy(Adapter):
    """Shared behaviour for both nginx flavours."""

    @property
    def name(self) -> str:
        return "nginx"

    def validate(self, config_path: Path, timeout: int | None = None) -> Receipt:
        raise NotImplementedError

    def reload(self, timeout: int | None = None) -> Receipt:
        raise NotImplementedError

    def probe_https(self, domain: str, timeout: int | None = None) -> Receipt:
        """GET https://<domain>/ through the local proxy.

        Any HTTP status below 500 counts as up (code-server answers 302
        to its login page).
        """
        limit = timeout or self._default_timeout
        receipt = self._run(
            [
                "curl", "-sS", "-o", "/dev/null",
                "-w", "%{http_code}",
                "--max-time", str(limit),
                "--resolve", f"{domain}:443:127.0.0.1",
                f"https://{domain}/",
            ],
            "probe",
            limit + 5,
        )
        if not receipt.ok:
            return receipt

        code = receipt.output.strip()
        if not code.isdigit() or int(code) == 0 or int(code) >= 500:
            return Receipt.failure(
                adapter=self.name,
                operation="probe",
                error=f"https://{domain}/ answered HTTP {code or '???'}",
                metadata={"http_code": code},
            )
        return Receipt.success(
            adapter=self.name,
            operation="probe",
            output=code,
            metadata={"http_code": int(code)},
        )


class ContainerNginx(NginxProxy):
    """nginx running as the ``nginx-proxy`` compose service."""

    def __init__(
        self,
        docker: DockerRuntime,
        letsencrypt_dir: Path,
        image: str = "nginx:latest",
        container: str = "nginx-proxy",
        upstream_host: str = "code-server",
        default_timeout: int = 120,
    ):
        super().__init__(docker.runner, default_timeout)
        self._docker = docker
        self._letsencrypt_dir = letsencrypt_dir
        self._image = image
        self._container = container
        self._upstream_host = upstream_host

    @property
    def container(self) -> str:
        return self._container

    def is_available(self) -> bool:
        return self._docker.is_available()

    def validate(self, config_path: Path, timeout: int | None = None) -> Receipt:
        """``nginx -t`` in a throwaway container with the real mounts."""
        receipt = self._docker.run(
            self._image,
            ["nginx", "-t"],
            volumes=[
                f"{config_path}:/etc/nginx/nginx.conf:ro",
                f"{self._letsencrypt_dir}:/etc/letsencrypt:ro",
            ],
            # The upstream only resolves on the compose network.
            extra=["--add-host", f"{self._upstream_host}:127.0.0.1"],
            timeout=timeout or self._default_timeout,
        )
        receipt.adapter = self.name
        return receipt

    def reload(self, timeout: int | None = None) -> Receipt:
        receipt = self._docker.exec(self._container, ["nginx", "-s", "reload"], timeout or self._default_timeout)
        receipt.adapter = self.name
        return receipt


class NativeNginx(NginxProxy):
    """nginx installed from the distribution, managed by systemd."""

    def __init__(self, runner: Runner, services: SystemdManager, default_timeout: int = 120):
        super().__init__(runner, default_timeout)
        self._services = services

    def is_available(self) -> bool:
        return self._runner.which("nginx") is not None

    def validate(self, config_path: Path, timeout: int | None = None) -> Receipt:
        # Site files are included from nginx.conf; test the whole tree.
        return self._run(["nginx", "-t"], "validate", timeout)

    def reload(self, timeout: int | None = None) -> Receipt:
        receipt = self._services.reload("nginx", timeout=timeout or self._default_timeout)
        receipt.adapter = self.name
        return receipt
