"""
Shared test fixtures and configuration.
"""

from pathlib import Path

import pytest

from provisioner.adapters.mock import MockRunner
from provisioner.adapters.registry import build_host
from provisioner.core.config.settings import Settings
from provisioner.core.models.parameters import InstallParameters
from provisioner.core.models.receipt import Receipt


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def tmp_state_dir(tmp_path: Path) -> Path:
    """Return a temporary directory for state files."""
    state_dir = tmp_path / "state"
    state_dir.mkdir()
    return state_dir


@pytest.fixture
def settings(tmp_path: Path, tmp_state_dir: Path) -> Settings:
    """Settings with every host path redirected under tmp_path."""
    return Settings(
        install_dir=tmp_path / "opt" / "code-server",
        projects_dir=tmp_path / "srv" / "projects",
        state_dir=tmp_state_dir,
        panel_config=tmp_path / "opt" / "code-server" / "panel.yml",
        letsencrypt_dir=tmp_path / "letsencrypt",
        letsencrypt_lib_dir=tmp_path / "letsencrypt-lib",
        nginx_dir=tmp_path / "nginx",
        swap_file=tmp_path / "swapfile",
        fstab=tmp_path / "fstab",
        renewal_cron_file=tmp_path / "cron.d" / "code-server-certbot",
        code_server_config=tmp_path / "home" / ".config" / "code-server" / "config.yaml",
        service_user="coder",
    )


@pytest.fixture
def mock_runner() -> MockRunner:
    return MockRunner()


@pytest.fixture
def container_host(settings: Settings, mock_runner: MockRunner):
    return build_host(settings, "container", runner=mock_runner)


@pytest.fixture
def native_host(settings: Settings, mock_runner: MockRunner):
    return build_host(settings, "native", runner=mock_runner)


@pytest.fixture
def params() -> InstallParameters:
    return InstallParameters(
        domain="code.example.com",
        email="admin@example.com",
        password="Sup3rSecret",
    )


@pytest.fixture
def native_params() -> InstallParameters:
    return InstallParameters(
        domain="code.example.com",
        email="admin@example.com",
        password="Sup3rSecret",
        install_method="native",
    )


@pytest.fixture
def make_cert(settings: Settings):
    """Place a fake live certificate where certbot would put it."""

    def _make(domain: str = "code.example.com") -> None:
        live = settings.letsencrypt_dir / "live" / domain
        live.mkdir(parents=True, exist_ok=True)
        (live / "fullchain.pem").write_text("CERT\n")
        (live / "privkey.pem").write_text("KEY\n")

    return _make


class FakeMachine:
    """A stateful host behind a MockRunner.

    Collaborator commands change the fake machine the way the real
    tools would change a server (swap turns on, docker appears, the
    certificate lands on disk, services come up), so whole pipelines
    can run end to end and then be re-run against the result.
    """

    def __init__(self, settings: Settings, method: str):
        self.settings = settings
        self.method = method
        self.swap_on = False
        self.docker = False
        self.running = False
        self.packages: set[str] = set()
        self.runner = MockRunner(available=None if method == "container" else
                                 ["apt-get", "nginx", "certbot", "systemctl", "curl", "swapon"])
        self.host = build_host(settings, method, runner=self.runner)
        self._wire()

    # ── Responses ────────────────────────────────────────────────

    @staticmethod
    def _ok(output: str = "") -> Receipt:
        return Receipt.success(adapter="mock", operation="fake", output=output)

    @staticmethod
    def _fail(error: str) -> Receipt:
        return Receipt.failure(adapter="mock", operation="fake", error=error)

    def _issue(self, cmd):
        domain = cmd[cmd.index("-d") + 1]
        live = self.settings.letsencrypt_dir / "live" / domain
        live.mkdir(parents=True, exist_ok=True)
        (live / "fullchain.pem").write_text("CERT\n")
        (live / "privkey.pem").write_text("KEY\n")
        return self._ok()

    def _install_script(self, cmd):
        if self.method == "container":
            self.docker = True
        else:
            self.runner.set_available("code-server")
        return self._ok()

    def _apt_install(self, cmd):
        self.packages.update(c for c in cmd[3:] if not c.startswith("-") and not c.startswith("Dpkg::"))
        return self._ok()

    def _start(self, cmd):
        self.running = True
        return self._ok()

    def _wire(self) -> None:
        r = self.runner
        swap = str(self.settings.swap_file)

        def swapon(cmd):
            self.swap_on = True
            return self._ok()

        def swapoff(cmd):
            self.swap_on = False
            return self._ok()

        def fallocate(cmd):
            Path(cmd[-1]).write_bytes(b"")
            return self._ok()

        r.set_handler(["swapon"], swapon)
        r.set_handler(["swapon", "--show=NAME", "--noheadings"],
                      lambda cmd: self._ok(swap if self.swap_on else ""))
        r.set_handler(["swapoff"], swapoff)
        r.set_handler(["fallocate"], fallocate)

        r.set_handler(["apt-get", "install"], self._apt_install)
        r.set_handler(["dpkg-query"], lambda cmd: self._ok("install ok installed")
                      if cmd[-1] in self.packages else self._fail("no packages found"))
        r.set_handler(["sh"], self._install_script)

        r.set_handler(["docker", "info"], lambda cmd: self._ok("24.0.7") if self.docker
                      else self._fail("Cannot connect to the Docker daemon"))
        r.set_handler(["docker", "run", "--rm", "-p", "80:80"], self._issue)
        r.set_handler(["docker", "compose", "up"], self._start)
        r.set_handler(["docker", "inspect"], lambda cmd: self._ok("true" if self.running else "false"))

        r.set_handler(["certbot", "certonly"], self._issue)
        r.set_handler(["systemctl", "enable", "--now"], self._start)
        r.set_handler(["systemctl", "is-active"], lambda cmd: self._ok("active") if self.running
                      else self._fail("inactive"))

        r.set_handler(["curl", "-sS"], lambda cmd: self._ok("302") if self.running
                      else self._fail("Failed to connect to port 443: Connection refused"))


@pytest.fixture
def container_machine(settings: Settings) -> FakeMachine:
    return FakeMachine(settings, "container")


@pytest.fixture
def native_machine(settings: Settings) -> FakeMachine:
    return FakeMachine(settings, "native")


@pytest.fixture
def csp_env(monkeypatch, settings: Settings) -> Settings:
    """Point ``Settings.from_env()`` at the temporary layout."""
    for name in (
        "install_dir", "projects_dir", "state_dir", "panel_config", "letsencrypt_dir",
        "letsencrypt_lib_dir", "nginx_dir", "swap_file", "fstab", "renewal_cron_file",
        "code_server_config", "service_user",
    ):
        monkeypatch.setenv(f"CSP_{name.upper()}", str(getattr(settings, name)))
    for name in ("CSP_LOG_LEVEL", "CSP_LOG_FILE", "CSP_LOG_FILE_LEVEL", "CSP_PASSWORD"):
        monkeypatch.delenv(name, raising=False)
    return settings
