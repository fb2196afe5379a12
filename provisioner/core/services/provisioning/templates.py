"""
Config templates — everything the installer writes to disk.

Container method (under the install directory):
    .env                 CODE_SERVER_PASSWORD, mode 0600
    Dockerfile           code-server image with python/tmux/sudo
    docker-compose.yml   code-server + nginx-proxy on one network
    nginx/nginx.conf     HTTP→HTTPS redirect, TLS proxy with websockets

Native method:
    ~/.config/code-server/config.yaml   bind 127.0.0.1, password auth, mode 0600
    /etc/nginx/sites-available/code-server

Renderers are pure: same inputs, same bytes. That is what lets the
config-render step compare the disk against the template to decide
whether anything needs writing.
"""

from __future__ import annotations

import pwd
from pathlib import Path

import yaml

from provisioner.core.config.settings import Settings
from provisioner.core.models.parameters import InstallParameters
from provisioner.core.models.template import RenderedFile

CONTAINER_SERVICE = "code-server"
PROXY_SERVICE = "nginx-proxy"
NETWORK = "codeserver_network"
NATIVE_SITE = "code-server"

_HEADER = "# Managed by code-server-provisioner. Local edits are overwritten on re-run.\n"


# ── Dockerfile ──────────────────────────────────────────────────


_DOCKERFILE = """\
FROM {image}
USER root
RUN apt-get update && apt-get install -y python3 python3-pip python3-venv tmux sudo \\
    && rm -rf /var/lib/apt/lists/*
RUN echo "coder ALL=(ALL) NOPASSWD:ALL" > /etc/sudoers.d/coder \\
    && chmod 0440 /etc/sudoers.d/coder
USER coder
"""


# ── nginx ───────────────────────────────────────────────────────


_PROXY_LOCATION = """\
        location / {{
            proxy_pass http://{upstream};
            proxy_http_version 1.1;
            proxy_set_header Host $host;
            proxy_set_header X-Real-IP $remote_addr;
            proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;
            proxy_set_header X-Forwarded-Proto $scheme;
            proxy_set_header Upgrade $http_upgrade;
            proxy_set_header Connection $connection_upgrade;
        }}
"""

_SERVERS = """\
    server {{
        listen 80;
        server_name {domain};
        location / {{
            return 301 https://$host$request_uri;
        }}
    }}

    server {{
        listen 443 ssl;
        server_name {domain};
        ssl_certificate {cert_dir}/live/{domain}/fullchain.pem;
        ssl_certificate_key {cert_dir}/live/{domain}/privkey.pem;
{location}    }}
"""

_UPGRADE_MAP = """\
    map $http_upgrade $connection_upgrade {
        default upgrade;
        ''      close;
    }
"""

_NGINX_CONF = """\
events {{}}

http {{
{upgrade_map}
{servers}}}
"""


def _servers(domain: str, upstream: str, cert_dir: str) -> str:
    return _SERVERS.format(
        domain=domain,
        cert_dir=cert_dir,
        location=_PROXY_LOCATION.format(upstream=upstream),
    )


def _dedent4(text: str) -> str:
    return "".join(line[4:] if line.startswith("    ") else line for line in text.splitlines(keepends=True))


# ── Helpers ─────────────────────────────────────────────────────


def user_ids(user: str) -> tuple[int, int]:
    """uid/gid of ``user``; 1000:1000 when the account does not exist."""
    try:
        entry = pwd.getpwnam(user)
    except KeyError:
        return 1000, 1000
    return entry.pw_uid, entry.pw_gid


def user_home(user: str) -> Path:
    try:
        return Path(pwd.getpwnam(user).pw_dir)
    except KeyError:
        return Path("/root") if user == "root" else Path("/home") / user


def code_server_config_path(settings: Settings) -> Path:
    if settings.code_server_config is not None:
        return settings.code_server_config
    return user_home(settings.service_user) / ".config" / "code-server" / "config.yaml"


def _env_value(value: str) -> str:
    """Quote a value for a compose ``.env`` file.

    Single quotes are literal (no ``$`` interpolation); a value that
    itself contains a single quote falls back to double quotes.
    """
    if "'" not in value:
        return f"'{value}'"
    escaped = value.replace('"', '\\"').replace("$", "$$")
    return f'"{escaped}"'


# ── Container method ────────────────────────────────────────────


def render_env(settings: Settings, params: InstallParameters) -> RenderedFile:
    return RenderedFile(
        path=settings.install_dir / ".env",
        content=f"CODE_SERVER_PASSWORD={_env_value(params.secret())}\nTZ={params.timezone}\n",
        mode=0o600,
        reason="code-server password",
    )


def render_dockerfile(settings: Settings) -> RenderedFile:
    return RenderedFile(
        path=settings.install_dir / "Dockerfile",
        content=_DOCKERFILE.format(image=settings.code_server_image),
        reason="code-server image",
    )


def compose_document(settings: Settings, uid: int, gid: int) -> dict:
    """The docker-compose.yml structure."""
    port = settings.code_server_port
    return {
        "services": {
            CONTAINER_SERVICE: {
                "build": ".",
                "image": "code-server-custom",
                "container_name": CONTAINER_SERVICE,
                "restart": "unless-stopped",
                "environment": [
                    "PASSWORD=${CODE_SERVER_PASSWORD}",
                    "TZ=${TZ:-UTC}",
                    f"PUID={uid}",
                    f"PGID={gid}",
                ],
                "volumes": [f"{settings.projects_dir}:/home/coder/project"],
                "networks": [NETWORK],
                "command": ["--bind-addr", f"0.0.0.0:{port}", "/home/coder/project"],
            },
            PROXY_SERVICE: {
                "image": settings.nginx_image,
                "container_name": PROXY_SERVICE,
                "restart": "unless-stopped",
                "depends_on": [CONTAINER_SERVICE],
                "ports": ["80:80", "443:443"],
                "volumes": [
                    "./nginx/nginx.conf:/etc/nginx/nginx.conf:ro",
                    f"{settings.letsencrypt_dir}:/etc/letsencrypt:ro",
                ],
                "networks": [NETWORK],
            },
        },
        "networks": {NETWORK: {"name": NETWORK}},
    }


def render_compose(settings: Settings, uid: int, gid: int) -> RenderedFile:
    content = _HEADER + yaml.dump(
        compose_document(settings, uid, gid),
        default_flow_style=False,
        sort_keys=False,
    )
    return RenderedFile(
        path=settings.install_dir / "docker-compose.yml",
        content=content,
        reason="compose stack",
    )


def nginx_conf_path(settings: Settings) -> Path:
    return settings.install_dir / "nginx" / "nginx.conf"


def render_container_nginx(settings: Settings, domain: str) -> RenderedFile:
    servers = _servers(domain, f"{CONTAINER_SERVICE}:{settings.code_server_port}", "/etc/letsencrypt")
    return RenderedFile(
        path=nginx_conf_path(settings),
        content=_HEADER + _NGINX_CONF.format(upgrade_map=_UPGRADE_MAP, servers=servers),
        reason="reverse proxy",
    )


def container_files(settings: Settings, params: InstallParameters) -> list[RenderedFile]:
    uid, gid = user_ids(settings.service_user)
    return [
        render_env(settings, params),
        render_dockerfile(settings),
        render_compose(settings, uid, gid),
        render_container_nginx(settings, params.domain),
    ]


# ── Native method ───────────────────────────────────────────────


def render_code_server_config(settings: Settings, params: InstallParameters) -> RenderedFile:
    document = {
        "bind-addr": f"127.0.0.1:{settings.code_server_port}",
        "auth": "password",
        "password": params.secret(),
        "cert": False,
    }
    return RenderedFile(
        path=code_server_config_path(settings),
        content=yaml.safe_dump(document, default_flow_style=False, sort_keys=False),
        mode=0o600,
        reason="code-server config",
    )


def site_available_path(settings: Settings) -> Path:
    return settings.nginx_dir / "sites-available" / NATIVE_SITE


def site_enabled_path(settings: Settings) -> Path:
    return settings.nginx_dir / "sites-enabled" / NATIVE_SITE


def render_native_site(settings: Settings, domain: str) -> RenderedFile:
    servers = _servers(domain, f"127.0.0.1:{settings.code_server_port}", str(settings.letsencrypt_dir))
    return RenderedFile(
        path=site_available_path(settings),
        content=_HEADER + _dedent4(_UPGRADE_MAP) + "\n" + _dedent4(servers),
        reason="nginx site",
    )


def native_files(settings: Settings, params: InstallParameters) -> list[RenderedFile]:
    return [
        render_code_server_config(settings, params),
        render_native_site(settings, params.domain),
    ]


# ── Certificate renewal ─────────────────────────────────────────


def render_renewal_cron(settings: Settings, renew_command: str, reload_command: str = "") -> RenderedFile:
    """A /etc/cron.d entry running the renewal daily."""
    command = renew_command
    if reload_command:
        command = f"{renew_command} && {reload_command}"
    content = (
        _HEADER
        + "SHELL=/bin/sh\n"
        + "PATH=/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin\n"
        + f"{settings.renewal_schedule} root {command} >/dev/null 2>&1\n"
    )
    return RenderedFile(path=settings.renewal_cron_file, content=content, reason="certificate renewal")
