"""
Certificate client adapters — Let's Encrypt via certbot.

Two flavours share one contract:

- ``ContainerCertbot`` runs the ``certbot/certbot`` image in standalone
  mode with the letsencrypt directories bind-mounted (container method).
- ``NativeCertbot`` runs the host's certbot in standalone mode, stopping
  nginx around the challenge with pre/post hooks (native method).

issue(domain, email) -> Receipt carrying the certificate paths.
Issuance is rate limited by the authority: callers must not retry it
blindly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from provisioner.adapters.base import Adapter, Runner
from provisioner.adapters.containers.docker import DockerRuntime
from provisioner.core.models.receipt import Receipt

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CertPaths:
    """Where certbot keeps the live certificate for a domain."""

    fullchain: Path
    privkey: Path

    def exist(self) -> bool:
        return all(p.is_file() and p.stat().st_size > 0 for p in (self.fullchain, self.privkey))


class CertbotClient(Adapter):
    """Shared behaviour for both certbot flavours."""

    def __init__(self, runner: Runner, letsencrypt_dir: Path, default_timeout: int = 300):
        super().__init__(runner, default_timeout)
        self._letsencrypt_dir = letsencrypt_dir

    @property
    def name(self) -> str:
        return "certbot"

    @property
    def letsencrypt_dir(self) -> Path:
        return self._letsencrypt_dir

    def paths(self, domain: str) -> CertPaths:
        live = self._letsencrypt_dir / "live" / domain
        return CertPaths(fullchain=live / "fullchain.pem", privkey=live / "privkey.pem")

    def has_certificate(self, domain: str) -> bool:
        return self.paths(domain).exist()

    def _issued(self, receipt: Receipt, domain: str) -> Receipt:
        paths = self.paths(domain)
        receipt.metadata.update({"fullchain": str(paths.fullchain), "privkey": str(paths.privkey)})
        if receipt.ok:
            logger.info("Certificate issued for %s", domain)
        return receipt

    @staticmethod
    def _certonly_args(domain: str, email: str) -> list[str]:
        return [
            "certonly", "--standalone",
            "-d", domain,
            "--agree-tos",
            "-m", email,
            "--non-interactive",
        ]

    def issue(self, domain: str, email: str, timeout: int | None = None) -> Receipt:
        raise NotImplementedError

    def renew(self, timeout: int | None = None) -> Receipt:
        raise NotImplementedError

    def renew_command(self) -> str:
        """Shell command line suitable for a cron entry."""
        raise NotImplementedError


class ContainerCertbot(CertbotClient):
    """certbot in a throwaway container, binding port 80 for the challenge."""

    def __init__(
        self,
        docker: DockerRuntime,
        letsencrypt_dir: Path,
        lib_dir: Path,
        image: str = "certbot/certbot",
        default_timeout: int = 300,
    ):
        super().__init__(docker.runner, letsencrypt_dir, default_timeout)
        self._docker = docker
        self._lib_dir = lib_dir
        self._image = image

    def is_available(self) -> bool:
        return self._docker.is_available()

    def _volumes(self) -> list[str]:
        return [
            f"{self._letsencrypt_dir}:/etc/letsencrypt",
            f"{self._lib_dir}:/var/lib/letsencrypt",
        ]

    def issue(self, domain: str, email: str, timeout: int | None = None) -> Receipt:
        receipt = self._docker.run(
            self._image,
            self._certonly_args(domain, email),
            volumes=self._volumes(),
            ports=["80:80"],
            timeout=timeout or self._default_timeout,
        )
        receipt.adapter = self.name
        return self._issued(receipt, domain)

    def renew(self, timeout: int | None = None) -> Receipt:
        receipt = self._docker.run(
            self._image,
            ["renew", "--quiet"],
            volumes=self._volumes(),
            timeout=timeout or self._default_timeout,
        )
        receipt.adapter = self.name
        return receipt

    def renew_command(self) -> str:
        volumes = " ".join(f"-v {v}" for v in self._volumes())
        return f"docker run --rm {volumes} {self._image} renew --quiet"


class NativeCertbot(CertbotClient):
    """Host certbot; nginx is stopped while the standalone server runs."""

    def __init__(
        self,
        runner: Runner,
        letsencrypt_dir: Path,
        pre_hook: str = "systemctl stop nginx",
        post_hook: str = "systemctl start nginx",
        default_timeout: int = 300,
    ):
        super().__init__(runner, letsencrypt_dir, default_timeout)
        self._pre_hook = pre_hook
        self._post_hook = post_hook

    def is_available(self) -> bool:
        return self._runner.which("certbot") is not None

    def _hooks(self) -> list[str]:
        return ["--pre-hook", self._pre_hook, "--post-hook", self._post_hook]

    def issue(self, domain: str, email: str, timeout: int | None = None) -> Receipt:
        receipt = self._run(
            ["certbot", *self._certonly_args(domain, email), *self._hooks()],
            "issue",
            timeout,
        )
        return self._issued(receipt, domain)

    def renew(self, timeout: int | None = None) -> Receipt:
        return self._run(["certbot", "renew", "--quiet", *self._hooks()], "renew", timeout)

    def renew_command(self) -> str:
        return f'certbot renew --quiet --pre-hook "{self._pre_hook}" --post-hook "{self._post_hook}"'
