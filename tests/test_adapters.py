"""
Tests for collaborator adapters — command runner, mock runner, tool bindings.
"""

import shutil
from pathlib import Path

import pytest

from provisioner.adapters.certs.certbot import ContainerCertbot, NativeCertbot
from provisioner.adapters.containers.docker import DockerRuntime
from provisioner.adapters.mock import MockRunner
from provisioner.adapters.packages.apt import AptPackageManager
from provisioner.adapters.proxy.nginx import ContainerNginx, NativeNginx
from provisioner.adapters.registry import build_host
from provisioner.adapters.services.systemd import SystemdManager
from provisioner.adapters.shell.command import CommandRunner
from provisioner.core.models.receipt import Receipt


# ── Command runner ──────────────────────────────────────────────


@pytest.mark.skipif(shutil.which("true") is None, reason="coreutils not available")
class TestCommandRunner:
    def test_success(self):
        receipt = CommandRunner().run(["true"])
        assert receipt.ok
        assert receipt.return_code == 0
        assert receipt.adapter == "shell"

    def test_captures_output(self):
        receipt = CommandRunner().run(["echo", "hello"], operation="greet")
        assert receipt.output == "hello"
        assert receipt.operation == "greet"

    def test_nonzero_exit(self):
        receipt = CommandRunner().run(["false"])
        assert receipt.failed
        assert receipt.return_code == 1
        assert "exited with code 1" in receipt.error

    def test_timeout(self):
        receipt = CommandRunner().run(["sleep", "5"], timeout=1)
        assert receipt.failed
        assert receipt.timed_out
        assert "timed out after 1s" in receipt.error

    def test_missing_binary(self):
        receipt = CommandRunner().run(["definitely-not-a-real-binary-xyz"])
        assert receipt.failed
        assert "Command not found" in receipt.error

    def test_stdin_and_env(self):
        receipt = CommandRunner().run(["cat"], input="piped")
        assert receipt.output == "piped"
        receipt = CommandRunner().run(["sh", "-c", "echo $CSP_TEST_VAR"], env={"CSP_TEST_VAR": "x1"})
        assert receipt.output == "x1"

    def test_which(self):
        assert CommandRunner().which("true")
        assert CommandRunner().which("definitely-not-a-real-binary-xyz") is None


# ── Mock runner ─────────────────────────────────────────────────


class TestMockRunner:
    def test_unknown_command_succeeds(self):
        runner = MockRunner()
        assert runner.run(["anything"]).ok
        assert runner.commands == [["anything"]]

    def test_prefix_response_latest_wins(self):
        runner = MockRunner()
        runner.set_response(["docker"], "generic")
        runner.set_response(["docker", "info"], "24.0")
        assert runner.run(["docker", "info"]).output == "24.0"
        assert runner.run(["docker", "ps"]).output == "generic"

    def test_failure(self):
        runner = MockRunner()
        runner.set_failure(["apt-get"], "dpkg lock")
        receipt = runner.run(["apt-get", "update"])
        assert receipt.failed
        assert receipt.error == "dpkg lock"

    def test_handler(self):
        runner = MockRunner()
        runner.set_handler(["echo"], lambda cmd: Receipt.success(adapter="mock", operation="echo",
                                                                 output=" ".join(cmd[1:])))
        assert runner.run(["echo", "a", "b"]).output == "a b"

    def test_available(self):
        runner = MockRunner(available=["docker"])
        assert runner.which("docker") == "/usr/bin/docker"
        assert runner.which("nginx") is None
        runner.set_available("nginx")
        assert runner.which("nginx")

    def test_records_calls(self):
        runner = MockRunner()
        runner.run(["a"], timeout=7, input="secret", cwd=Path("/tmp"))
        runner.passthrough(["b"])
        assert runner.calls[0].timeout == 7
        assert runner.calls[0].cwd == "/tmp"
        assert runner.calls[1].passthrough
        assert runner.called("a")
        assert not runner.called("c")
        runner.reset()
        assert runner.calls == []


# ── Package manager ─────────────────────────────────────────────


class TestApt:
    def test_install_is_noninteractive(self):
        runner = MockRunner()
        apt = AptPackageManager(runner)
        assert apt.install("nginx", "certbot").ok

        call = runner.calls[0]
        assert call.cmd[:3] == ["apt-get", "install", "-y"]
        assert call.cmd[-2:] == ["nginx", "certbot"]
        assert call.env["DEBIAN_FRONTEND"] == "noninteractive"
        assert "Dpkg::Options::=--force-confold" in call.cmd

    def test_install_nothing_skips(self):
        runner = MockRunner()
        receipt = AptPackageManager(runner).install()
        assert receipt.status == "skipped"
        assert runner.calls == []

    def test_failure_is_receipt(self):
        runner = MockRunner()
        runner.set_failure(["apt-get"], "Could not get lock")
        receipt = AptPackageManager(runner).update()
        assert receipt.failed
        assert receipt.adapter == "apt"

    def test_is_installed(self):
        runner = MockRunner()
        runner.set_response(["dpkg-query", "-W", "-f=${Status}", "nginx"], "install ok installed")
        runner.set_failure(["dpkg-query", "-W", "-f=${Status}", "certbot"])
        apt = AptPackageManager(runner)
        assert apt.is_installed("nginx")
        assert apt.missing("nginx", "certbot") == ["certbot"]

    def test_default_timeout_applied(self):
        runner = MockRunner()
        AptPackageManager(runner, default_timeout=900).upgrade()
        assert runner.calls[0].timeout == 900


# ── Container runtime ───────────────────────────────────────────


class TestDocker:
    def test_daemon_ready(self):
        runner = MockRunner()
        assert DockerRuntime(runner).daemon_ready()
        runner.set_failure(["docker", "info"])
        assert not DockerRuntime(runner).daemon_ready()
        assert not DockerRuntime(MockRunner(available=[])).daemon_ready()

    def test_run_builds_command(self):
        runner = MockRunner()
        DockerRuntime(runner).run("certbot/certbot", ["renew"], volumes=["/a:/b"], ports=["80:80"])
        assert runner.commands[0] == [
            "docker", "run", "--rm", "-p", "80:80", "-v", "/a:/b", "certbot/certbot", "renew",
        ]

    def test_compose_runs_in_project_dir(self, tmp_path):
        runner = MockRunner()
        receipt = DockerRuntime(runner).compose_up(tmp_path, build=True)
        assert receipt.adapter == "docker"
        assert runner.calls[0].cmd == ["docker", "compose", "up", "-d", "--build"]
        assert runner.calls[0].cwd == str(tmp_path)

    def test_container_running(self):
        runner = MockRunner()
        runner.set_response(["docker", "inspect"], "true\n")
        assert DockerRuntime(runner).container_running("code-server")
        runner.set_response(["docker", "inspect"], "false\n")
        assert not DockerRuntime(runner).container_running("code-server")

    def test_follow_logs_attach(self, tmp_path):
        runner = MockRunner()
        DockerRuntime(runner).compose_logs(tmp_path, tail=20, follow=True)
        assert runner.calls[0].passthrough
        assert runner.calls[0].cmd == ["docker", "compose", "logs", "--tail", "20", "-f"]


# ── Service manager ─────────────────────────────────────────────


class TestSystemd:
    def test_verbs(self):
        runner = MockRunner()
        systemd = SystemdManager(runner)
        systemd.start("nginx")
        systemd.enable("code-server@coder")
        systemd.enable("nginx", now=False)
        assert runner.commands == [
            ["systemctl", "start", "nginx"],
            ["systemctl", "enable", "--now", "code-server@coder"],
            ["systemctl", "enable", "nginx"],
        ]

    def test_is_active(self):
        runner = MockRunner()
        runner.set_response(["systemctl", "is-active"], "active\n")
        assert SystemdManager(runner).is_active("nginx")
        runner.set_response(["systemctl", "is-active"], "inactive\n", ok=False)
        assert not SystemdManager(runner).is_active("nginx")

    def test_journal(self):
        runner = MockRunner()
        SystemdManager(runner).journal("code-server@coder", "nginx", tail=50)
        assert runner.commands[0] == [
            "journalctl", "--no-pager", "-n", "50", "-u", "code-server@coder", "-u", "nginx",
        ]


# ── Certificate client ──────────────────────────────────────────


class TestCertbot:
    def test_container_issue(self, tmp_path):
        runner = MockRunner()
        certbot = ContainerCertbot(DockerRuntime(runner), tmp_path / "le", tmp_path / "lib")
        receipt = certbot.issue("code.example.com", "admin@example.com")

        cmd = runner.commands[0]
        assert cmd[:3] == ["docker", "run", "--rm"]
        assert "80:80" in cmd
        assert f"{tmp_path / 'le'}:/etc/letsencrypt" in cmd
        assert cmd[cmd.index("-d") + 1] == "code.example.com"
        assert "--non-interactive" in cmd
        assert receipt.adapter == "certbot"
        assert receipt.metadata["fullchain"].endswith("live/code.example.com/fullchain.pem")

    def test_native_issue_uses_hooks(self, tmp_path):
        runner = MockRunner()
        NativeCertbot(runner, tmp_path).issue("code.example.com", "admin@example.com")
        cmd = runner.commands[0]
        assert cmd[:3] == ["certbot", "certonly", "--standalone"]
        assert cmd[cmd.index("--pre-hook") + 1] == "systemctl stop nginx"

    def test_has_certificate(self, tmp_path):
        certbot = NativeCertbot(MockRunner(), tmp_path)
        assert not certbot.has_certificate("code.example.com")
        live = tmp_path / "live" / "code.example.com"
        live.mkdir(parents=True)
        (live / "fullchain.pem").write_text("CERT")
        (live / "privkey.pem").write_text("")
        assert not certbot.has_certificate("code.example.com")
        (live / "privkey.pem").write_text("KEY")
        assert certbot.has_certificate("code.example.com")

    def test_renew_commands(self, tmp_path):
        native = NativeCertbot(MockRunner(), tmp_path)
        assert native.renew_command().startswith("certbot renew --quiet")
        container = ContainerCertbot(DockerRuntime(MockRunner()), tmp_path / "le", tmp_path / "lib")
        assert container.renew_command().startswith("docker run --rm -v ")
        assert container.renew_command().endswith("certbot/certbot renew --quiet")

    def test_issue_failure_returned(self, tmp_path):
        runner = MockRunner()
        runner.set_failure(["certbot"], "too many certificates already issued")
        receipt = NativeCertbot(runner, tmp_path).issue("code.example.com", "a@example.com")
        assert receipt.failed
        assert "too many" in receipt.error


# ── Reverse proxy ───────────────────────────────────────────────


class TestNginx:
    def test_probe_ok(self):
        runner = MockRunner()
        runner.set_response(["curl"], "302")
        receipt = NativeNginx(runner, SystemdManager(runner)).probe_https("code.example.com")
        assert receipt.ok
        assert receipt.metadata["http_code"] == 302
        assert "code.example.com:443:127.0.0.1" in runner.commands[0]

    @pytest.mark.parametrize("code", ["502", "000", ""])
    def test_probe_bad_status(self, code):
        runner = MockRunner()
        runner.set_response(["curl"], code)
        receipt = NativeNginx(runner, SystemdManager(runner)).probe_https("code.example.com")
        assert receipt.failed

    def test_probe_connection_refused(self):
        runner = MockRunner()
        runner.set_failure(["curl"], "Connection refused")
        assert NativeNginx(runner, SystemdManager(runner)).probe_https("code.example.com").failed

    def test_native_validate_and_reload(self, tmp_path):
        runner = MockRunner()
        proxy = NativeNginx(runner, SystemdManager(runner))
        proxy.validate(tmp_path / "site")
        receipt = proxy.reload()
        assert runner.commands == [["nginx", "-t"], ["systemctl", "reload", "nginx"]]
        assert receipt.adapter == "nginx"

    def test_container_validate_and_reload(self, tmp_path):
        runner = MockRunner()
        proxy = ContainerNginx(DockerRuntime(runner), tmp_path / "le")
        proxy.validate(tmp_path / "nginx.conf")
        proxy.reload()
        validate, reload = runner.commands
        assert validate[:3] == ["docker", "run", "--rm"]
        assert f"{tmp_path / 'nginx.conf'}:/etc/nginx/nginx.conf:ro" in validate
        assert validate[-2:] == ["nginx", "-t"]
        assert reload == ["docker", "exec", "nginx-proxy", "nginx", "-s", "reload"]


# ── Host wiring ─────────────────────────────────────────────────


class TestBuildHost:
    def test_container_flavours(self, settings):
        host = build_host(settings, "container", runner=MockRunner())
        assert isinstance(host.certbot, ContainerCertbot)
        assert isinstance(host.proxy, ContainerNginx)

    def test_native_flavours(self, settings):
        host = build_host(settings, "native", runner=MockRunner())
        assert isinstance(host.certbot, NativeCertbot)
        assert isinstance(host.proxy, NativeNginx)

    def test_shared_runner(self, settings, mock_runner):
        host = build_host(settings, "native", runner=mock_runner)
        assert all(a.runner is mock_runner for a in host.adapters())

    def test_default_runner_is_real(self, settings):
        assert isinstance(build_host(settings, "container").runner, CommandRunner)
