"""
Settings — host paths, timeouts and tunables.

Every value has a default matching a standard code-server install and
can be overridden with a ``CSP_*`` environment variable (handy for
tests and for non-standard layouts). Settings are passed explicitly;
nothing here is a process-wide global.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel, ValidationError

from provisioner.core.errors import ConfigError

ENV_PREFIX = "CSP_"


def _default_service_user() -> str:
    return os.environ.get("SUDO_USER") or os.environ.get("USER") or "root"


class Settings(BaseModel):
    """Paths and tunables for provisioning and the control panel."""

    # ── Layout ───────────────────────────────────────────────────
    install_dir: Path = Path("/opt/code-server")
    projects_dir: Path = Path("/srv/projects")
    state_dir: Path = Path("/var/lib/code-server-provisioner")
    panel_config: Path = Path("/opt/code-server/panel.yml")
    letsencrypt_dir: Path = Path("/etc/letsencrypt")
    letsencrypt_lib_dir: Path = Path("/var/lib/letsencrypt")
    nginx_dir: Path = Path("/etc/nginx")

    # ── Host tuning ──────────────────────────────────────────────
    swap_file: Path = Path("/swapfile")
    swap_size_mb: int = 2048
    fstab: Path = Path("/etc/fstab")
    os_update_max_age_hours: int = 24

    # ── Service ──────────────────────────────────────────────────
    service_user: str = ""
    # defaults to ~<service_user>/.config/code-server/config.yaml
    code_server_config: Path | None = None
    code_server_port: int = 8080
    code_server_image: str = "codercom/code-server:latest"
    nginx_image: str = "nginx:latest"
    certbot_image: str = "certbot/certbot"
    docker_install_url: str = "https://get.docker.com"
    code_server_install_url: str = "https://code-server.dev/install.sh"
    renewal_schedule: str = "30 3 * * *"
    renewal_cron_file: Path = Path("/etc/cron.d/code-server-certbot")

    # ── Timeouts (seconds) ───────────────────────────────────────
    command_timeout: int = 120
    package_timeout: int = 900
    certificate_timeout: int = 300
    build_timeout: int = 1200
    probe_timeout: int = 10

    def model_post_init(self, __context: object) -> None:
        if not self.service_user:
            self.service_user = _default_service_user()

    @property
    def log_file(self) -> Path:
        return self.state_dir / "install.log"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Build settings from ``CSP_*`` environment variables.

        Raises:
            ConfigError: if an override has the wrong type.
        """
        env = os.environ if environ is None else environ
        overrides: dict[str, str] = {}
        for name in cls.model_fields:
            key = ENV_PREFIX + name.upper()
            if key in env and env[key] != "":
                overrides[name] = env[key]
        try:
            return cls.model_validate(overrides)
        except ValidationError as e:
            raise ConfigError(f"Invalid {ENV_PREFIX}* environment settings: {e}") from e
