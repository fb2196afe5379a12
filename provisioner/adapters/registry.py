"""
Collaborator registry — builds the adapter set for an install method.

Steps and control actions receive a ``Host``: the settings plus one
adapter per collaborator, all sharing the same command runner. Swap
the runner for a ``MockRunner`` and nothing touches the machine.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

from provisioner.adapters.base import Adapter, Runner
from provisioner.adapters.certs.certbot import CertbotClient, ContainerCertbot, NativeCertbot
from provisioner.adapters.containers.docker import DockerRuntime
from provisioner.adapters.packages.apt import AptPackageManager
from provisioner.adapters.proxy.nginx import ContainerNginx, NativeNginx, NginxProxy
from provisioner.adapters.services.systemd import SystemdManager
from provisioner.adapters.shell.command import CommandRunner
from provisioner.core.config.settings import Settings

logger = logging.getLogger(__name__)


@dataclass
class Host:
    """Everything a step or control action may touch."""

    settings: Settings
    method: Literal["container", "native"]
    runner: Runner
    packages: AptPackageManager
    docker: DockerRuntime
    certbot: CertbotClient
    proxy: NginxProxy
    services: SystemdManager

    def adapters(self) -> list[Adapter]:
        return [self.packages, self.docker, self.certbot, self.proxy, self.services]


def build_host(
    settings: Settings,
    method: Literal["container", "native"] = "container",
    runner: Runner | None = None,
) -> Host:
    """Wire the collaborators for an install method.

    Args:
        settings: Paths and timeouts.
        method: ``container`` (docker compose stack) or ``native``
            (code-server + nginx under systemd).
        runner: Command runner; defaults to a real ``CommandRunner``.
    """
    runner = runner or CommandRunner(default_timeout=settings.command_timeout)

    packages = AptPackageManager(runner, default_timeout=settings.package_timeout)
    docker = DockerRuntime(runner, default_timeout=settings.command_timeout)
    services = SystemdManager(runner, default_timeout=settings.command_timeout)

    if method == "container":
        certbot: CertbotClient = ContainerCertbot(
            docker,
            settings.letsencrypt_dir,
            settings.letsencrypt_lib_dir,
            image=settings.certbot_image,
            default_timeout=settings.certificate_timeout,
        )
        proxy: NginxProxy = ContainerNginx(
            docker,
            settings.letsencrypt_dir,
            image=settings.nginx_image,
            default_timeout=settings.command_timeout,
        )
    else:
        certbot = NativeCertbot(
            runner,
            settings.letsencrypt_dir,
            default_timeout=settings.certificate_timeout,
        )
        proxy = NativeNginx(runner, services, default_timeout=settings.command_timeout)

    logger.debug("Collaborators wired for %s method", method)
    return Host(
        settings=settings,
        method=method,
        runner=runner,
        packages=packages,
        docker=docker,
        certbot=certbot,
        proxy=proxy,
        services=services,
    )
