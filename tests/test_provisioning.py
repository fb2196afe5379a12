"""
Tests for the provisioning pipelines — templates, file helpers and both
install methods run end to end against a fake machine.
"""

import os
import stat
from pathlib import Path

import pytest
import yaml

from provisioner.core.config.loader import load_service_config
from provisioner.core.config.settings import Settings
from provisioner.core.engine import executor
from provisioner.core.errors import ConfigError
from provisioner.core.models.parameters import InstallParameters
from provisioner.core.models.step import StepContext
from provisioner.core.models.template import RenderedFile
from provisioner.core.persistence.state_file import StateRecorder
from provisioner.core.services.provisioning import INSTALL_METHODS, build_registry, common, files, templates
from provisioner.core.services.provisioning.container import container_steps
from provisioner.core.services.provisioning.native import unit_name

CONTAINER_PIPELINE = [
    "swap", "os-update", "docker-runtime", "compose-plugin", "certificate", "layout",
    "config-render", "service-start", "cert-renewal", "panel-config", "verify",
]
NATIVE_PIPELINE = [
    "swap", "os-update", "code-server", "proxy-packages", "certificate",
    "config-render", "service-start", "cert-renewal", "panel-config", "verify",
]


def _install(machine, params, prior=None, delays=None):
    registry = build_registry(machine.method, machine.settings)
    return executor.run(
        registry,
        params,
        prior,
        recorder=StateRecorder(machine.settings.state_dir),
        host=machine.host,
        sleep=(delays.append if delays is not None else lambda s: None),
    )


def _mode(path: Path) -> int:
    return stat.S_IMODE(path.stat().st_mode)


# ── Templates ───────────────────────────────────────────────────


class TestTemplates:
    def test_env_file(self, settings, params):
        env = templates.render_env(settings, params)
        assert env.path == settings.install_dir / ".env"
        assert env.content == "CODE_SERVER_PASSWORD='Sup3rSecret'\nTZ=UTC\n"
        assert env.mode == 0o600

    def test_env_value_with_single_quote(self):
        assert templates._env_value("it's$x") == '"it\'s$$x"'

    def test_compose_document(self, settings):
        rendered = templates.render_compose(settings, 1001, 1002)
        assert rendered.content.startswith("# Managed by")
        doc = yaml.safe_load(rendered.content)

        code = doc["services"]["code-server"]
        proxy = doc["services"]["nginx-proxy"]
        assert "PUID=1001" in code["environment"]
        assert "PASSWORD=${CODE_SERVER_PASSWORD}" in code["environment"]
        assert code["volumes"] == [f"{settings.projects_dir}:/home/coder/project"]
        assert proxy["ports"] == ["80:80", "443:443"]
        assert proxy["depends_on"] == ["code-server"]
        assert doc["networks"] == {"codeserver_network": {"name": "codeserver_network"}}

    def test_container_nginx(self, settings):
        conf = templates.render_container_nginx(settings, "code.example.com").content
        assert "server_name code.example.com;" in conf
        assert "return 301 https://$host$request_uri;" in conf
        assert "ssl_certificate /etc/letsencrypt/live/code.example.com/fullchain.pem;" in conf
        assert "proxy_pass http://code-server:8080;" in conf
        assert "proxy_set_header Upgrade $http_upgrade;" in conf
        assert "map $http_upgrade $connection_upgrade {" in conf
        assert conf.count("{") == conf.count("}")

    def test_native_site(self, settings):
        site = templates.render_native_site(settings, "code.example.com").content
        assert "\nmap $http_upgrade $connection_upgrade {" in site
        assert "proxy_pass http://127.0.0.1:8080;" in site
        assert f"ssl_certificate_key {settings.letsencrypt_dir}/live/code.example.com/privkey.pem;" in site
        assert "events" not in site
        assert site.count("{") == site.count("}")

    def test_code_server_config(self, settings, native_params):
        rendered = templates.render_code_server_config(settings, native_params)
        assert rendered.path == settings.code_server_config
        assert rendered.mode == 0o600
        assert yaml.safe_load(rendered.content) == {
            "bind-addr": "127.0.0.1:8080",
            "auth": "password",
            "password": "Sup3rSecret",
            "cert": False,
        }

    def test_renders_are_pure(self, settings, params):
        first = [f.content for f in templates.container_files(settings, params)]
        second = [f.content for f in templates.container_files(settings, params)]
        assert first == second

    def test_renewal_cron(self, settings):
        cron = templates.render_renewal_cron(settings, "certbot renew --quiet", "docker exec nginx-proxy nginx -s reload")
        assert cron.path == settings.renewal_cron_file
        assert (
            "30 3 * * * root certbot renew --quiet && docker exec nginx-proxy nginx -s reload >/dev/null 2>&1\n"
            in cron.content
        )

    def test_unknown_user_defaults(self):
        assert templates.user_ids("no-such-user-xyz") == (1000, 1000)
        assert templates.user_home("no-such-user-xyz") == Path("/home/no-such-user-xyz")

    def test_code_server_config_path_default(self):
        settings = Settings(service_user="no-such-user-xyz")
        assert templates.code_server_config_path(settings) == Path(
            "/home/no-such-user-xyz/.config/code-server/config.yaml"
        )


# ── File helpers ────────────────────────────────────────────────


class TestFiles:
    def test_write_rendered_sets_mode(self, tmp_path):
        f = RenderedFile(path=tmp_path / "a" / ".env", content="X=1\n", mode=0o600)
        files.write_rendered(f)
        assert f.path.read_text() == "X=1\n"
        assert _mode(f.path) == 0o600
        assert f.is_current()

    def test_write_all_reports_changes(self, tmp_path):
        rendered = [
            RenderedFile(path=tmp_path / "one", content="1\n"),
            RenderedFile(path=tmp_path / "two", content="2\n"),
        ]
        assert files.write_all(rendered) == [tmp_path / "one", tmp_path / "two"]
        assert files.write_all(rendered) == []
        assert files.all_current(rendered)

    def test_mode_drift_is_not_current(self, tmp_path):
        f = RenderedFile(path=tmp_path / "secret", content="s\n", mode=0o600)
        files.write_rendered(f)
        os.chmod(f.path, 0o644)
        assert not f.is_current()
        assert files.write_all([f]) == [f.path]
        assert _mode(f.path) == 0o600

    def test_fingerprint(self, tmp_path):
        one = RenderedFile(path=tmp_path / "one", content="1\n")
        two = RenderedFile(path=tmp_path / "two", content="2\n", mode=0o600)

        assert files.fingerprint([one, two]) == files.fingerprint([two, one])
        assert files.fingerprint([one, two]) != files.fingerprint([one, two.model_copy(update={"mode": 0o644})])
        assert files.fingerprint([one, two]) != files.fingerprint([one, two.model_copy(update={"content": "3\n"})])

    def test_ensure_symlink(self, tmp_path):
        target = tmp_path / "sites-available" / "code-server"
        link = tmp_path / "sites-enabled" / "code-server"
        target.parent.mkdir()
        target.write_text("site")

        files.ensure_symlink(link, target)
        assert files.symlink_ok(link, target)

        link.unlink()
        link.write_text("a stray copy")
        assert not files.symlink_ok(link, target)
        files.ensure_symlink(link, target)
        assert files.symlink_ok(link, target)


# ── Pipeline selection ──────────────────────────────────────────


class TestBuildRegistry:
    def test_methods(self):
        assert INSTALL_METHODS == ("container", "native")

    def test_container_pipeline(self, settings):
        assert build_registry("container", settings).names() == CONTAINER_PIPELINE

    def test_native_pipeline(self, settings):
        assert build_registry("native", settings).names() == NATIVE_PIPELINE

    def test_unknown_method(self, settings):
        with pytest.raises(ConfigError, match="Unknown install method 'snap'"):
            build_registry("snap", settings)

    def test_certificate_never_retried(self, settings):
        for method in INSTALL_METHODS:
            assert build_registry(method, settings).get("certificate").retries == 0


# ── Container method ────────────────────────────────────────────


class TestContainerPipeline:
    def test_fresh_install(self, container_machine, params):
        settings = container_machine.settings
        state = _install(container_machine, params)

        assert state.status == "completed", state.error
        assert state.applied_steps == [
            "swap", "os-update", "docker-runtime", "certificate", "layout",
            "config-render", "service-start", "cert-renewal", "panel-config",
        ]
        assert state.skipped_steps == ["compose-plugin", "verify"]

        assert (settings.install_dir / "docker-compose.yml").is_file()
        assert _mode(settings.install_dir / ".env") == 0o600
        assert (settings.install_dir / "nginx" / "nginx.conf").is_file()
        assert settings.projects_dir.is_dir()
        assert f"{settings.swap_file} none swap sw 0 0" in settings.fstab.read_text()
        assert "nginx -s reload" in settings.renewal_cron_file.read_text()
        assert _mode(settings.state_dir / common.SERVICE_STAMP) == 0o600

        config = load_service_config(settings.panel_config)
        assert config.install_method == "container"
        assert config.domain == "code.example.com"

    def test_rerun_applies_nothing(self, container_machine, params):
        first = _install(container_machine, params)
        calls_before = len(container_machine.runner.calls)

        second = _install(container_machine, params, prior=first)

        assert second.status == "completed"
        assert second.applied_steps == []
        new_calls = container_machine.runner.commands[calls_before:]
        assert ["docker", "compose", "up", "-d", "--build"] not in new_calls
        assert not [c for c in new_calls if c[:2] == ["apt-get", "install"]]

    def test_password_change_rebuilds_stack(self, container_machine, params):
        first = _install(container_machine, params)
        changed = InstallParameters(domain=params.domain, email=params.email, password="N3wPassword")
        calls_before = len(container_machine.runner.calls)

        second = _install(container_machine, changed, prior=first)

        assert second.applied_steps == ["config-render", "service-start"]
        new_calls = container_machine.runner.commands[calls_before:]
        assert ["docker", "compose", "up", "-d", "--build"] in new_calls
        assert ["docker", "exec", "nginx-proxy", "nginx", "-s", "reload"] in new_calls
        assert "N3wPassword" in (container_machine.settings.install_dir / ".env").read_text()

    def test_failed_restart_retried_next_run(self, container_machine, params):
        runner = container_machine.runner
        first = _install(container_machine, params)
        changed = InstallParameters(domain=params.domain, email=params.email, password="N3wPassword")

        runner.set_failure(["docker", "compose", "up"], "failed to solve: network timeout")
        second = _install(container_machine, changed, prior=first)
        assert second.failed_step == "service-start"
        assert "config-render" in second.applied_steps

        # the old stack is still up, but it runs with the old password
        runner.set_handler(["docker", "compose", "up"], container_machine._start)
        calls_before = len(runner.calls)
        third = _install(container_machine, changed, prior=second)

        assert third.status == "completed"
        assert third.applied_steps == ["service-start"]
        assert ["docker", "compose", "up", "-d", "--build"] in runner.commands[calls_before:]

    def test_certificate_failure_stops_run(self, container_machine, params):
        container_machine.runner.set_failure(["docker", "run", "--rm", "-p", "80:80"],
                                             "too many certificates already issued")
        state = _install(container_machine, params)

        assert state.status == "failed"
        assert state.failed_step == "certificate"
        assert state.error_kind == "apply"
        assert "too many certificates" in state.error
        assert state.results[-1].attempts == 1
        assert not container_machine.runner.called("docker", "compose", "up")
        assert not container_machine.settings.install_dir.exists()

    def test_resume_after_failure(self, container_machine, params):
        runner = container_machine.runner
        runner.set_failure(["docker", "run", "--rm", "-p", "80:80"], "DNS problem: NXDOMAIN")
        first = _install(container_machine, params)
        assert first.failed_step == "certificate"

        runner.set_handler(["docker", "run", "--rm", "-p", "80:80"], container_machine._issue)
        second = _install(container_machine, params, prior=first)

        assert second.status == "completed"
        assert second.skipped_steps[:3] == ["swap", "os-update", "docker-runtime"]
        assert "certificate" in second.applied_steps
        assert set(first.completed_steps) <= set(second.completed_steps)

    def test_certificate_stops_running_proxy(self, container_machine, params):
        container_machine.running = True
        step = next(s for s in container_steps(container_machine.settings) if s.name == "certificate")
        step.apply(StepContext(parameters=params, host=container_machine.host, timeout=60))

        docker = [c[:3] for c in container_machine.runner.commands if c[0] == "docker" and c[1] != "inspect"]
        assert docker == [
            ["docker", "stop", "nginx-proxy"],
            ["docker", "run", "--rm"],
            ["docker", "start", "nginx-proxy"],
        ]

    def test_swap_failure_rolls_back(self, container_machine, params):
        settings = container_machine.settings
        container_machine.runner.set_failure(["mkswap"], "mkswap: error")
        state = _install(container_machine, params)

        assert state.failed_step == "swap"
        assert not settings.swap_file.exists()
        assert not settings.fstab.exists()
        # never turned on, so nothing to turn off
        assert not container_machine.runner.called("swapoff")
        assert not (settings.state_dir / common.SWAP_UNDO_LOG).exists()

    def test_swap_rollback_undoes_own_changes(self, container_machine, params, tmp_path):
        settings = container_machine.settings
        # appending to fstab fails once swap is already on
        settings.fstab.symlink_to(tmp_path / "missing" / "fstab")

        state = _install(container_machine, params)

        assert state.failed_step == "swap"
        assert container_machine.runner.called("swapoff", str(settings.swap_file))
        assert not container_machine.swap_on
        assert not settings.swap_file.exists()

    def test_swap_rollback_keeps_existing_swap(self, container_machine, params, tmp_path):
        settings = container_machine.settings
        settings.swap_file.write_bytes(b"operator swap")
        container_machine.swap_on = True
        settings.fstab.symlink_to(tmp_path / "missing" / "fstab")

        state = _install(container_machine, params)

        assert state.failed_step == "swap"
        assert "No such file" in state.error
        assert settings.swap_file.read_bytes() == b"operator swap"
        assert container_machine.swap_on
        assert not container_machine.runner.called("swapoff")
        assert not container_machine.runner.called("mkswap")

    def test_apt_lock_retried(self, container_machine, params):
        container_machine.runner.set_failure(["apt-get", "update"], "Could not get lock /var/lib/dpkg/lock")
        delays = []
        state = _install(container_machine, params, delays=delays)

        assert state.failed_step == "os-update"
        assert state.results[-1].attempts == 3
        assert delays == [10.0, 20.0]

    def test_verify_fails_when_https_down(self, container_machine, params):
        container_machine.runner.set_failure(["curl", "-sS"], "Connection refused")
        state = _install(container_machine, params)

        assert state.failed_step == "verify"
        assert state.results[-1].attempts == 5
        assert "Connection refused" in state.error
        assert "panel-config" in state.completed_steps


# ── Native method ───────────────────────────────────────────────


class TestNativePipeline:
    def test_fresh_install(self, native_machine, native_params):
        settings = native_machine.settings
        runner = native_machine.runner
        state = _install(native_machine, native_params)

        assert state.status == "completed", state.error
        assert state.applied_steps == NATIVE_PIPELINE[:-1]

        config = settings.code_server_config
        assert _mode(config) == 0o600
        assert yaml.safe_load(config.read_text())["bind-addr"] == "127.0.0.1:8080"
        assert files.symlink_ok(templates.site_enabled_path(settings), templates.site_available_path(settings))
        assert runner.called("chown", "-R")
        assert runner.called("systemctl", "enable", "--now", unit_name(settings))
        assert runner.called("certbot", "certonly", "--standalone")
        assert {"nginx", "certbot"} <= native_machine.packages
        assert "--pre-hook" in settings.renewal_cron_file.read_text()
        assert load_service_config(settings.panel_config).install_method == "native"

    def test_rerun_applies_nothing(self, native_machine, native_params):
        first = _install(native_machine, native_params)
        second = _install(native_machine, native_params, prior=first)
        assert second.status == "completed"
        assert second.applied_steps == []
        assert second.skipped_steps == NATIVE_PIPELINE

    def test_failed_restart_retried_next_run(self, native_machine, native_params):
        runner = native_machine.runner
        unit = unit_name(native_machine.settings)
        first = _install(native_machine, native_params)
        changed = InstallParameters(domain=native_params.domain, email=native_params.email,
                                    password="N3wPassword", install_method="native")

        runner.set_failure(["systemctl", "restart"], "Job for code-server@coder.service failed")
        second = _install(native_machine, changed, prior=first)
        assert second.failed_step == "service-start"

        runner.set_response(["systemctl", "restart"])
        calls_before = len(runner.calls)
        third = _install(native_machine, changed, prior=second)

        assert third.status == "completed"
        assert third.applied_steps == ["service-start"]
        assert ["systemctl", "restart", unit] in runner.commands[calls_before:]

    def test_unit_name(self, settings):
        assert unit_name(settings) == "code-server@coder"

    def test_nginx_rejects_config(self, native_machine, native_params):
        native_machine.runner.set_failure(["nginx", "-t"], "unknown directive")
        state = _install(native_machine, native_params)

        assert state.failed_step == "config-render"
        assert state.error_kind == "verify"
        assert not native_machine.runner.called("systemctl", "enable", "--now", unit_name(native_machine.settings))
