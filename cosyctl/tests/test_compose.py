import socket
import stat

import pytest
from dotenv import dotenv_values

from cosyctl.errors import (
    BackendCommandFailure,
    CorruptInstallation,
    HealthTimeout,
    InstallationNotFound,
    PortInUse,
    PrerequisiteMissing,
    UserCancelled,
)
from cosyctl.models import APPLICATION_ADMIN, BackendKind, DeploymentRequest, StepOutcome
from cosyctl.modules import engine
from cosyctl.modules.backends import ComposeBackend, cors_origin
from cosyctl.modules.backends.compose import check_port_available, normalize_handle

from conftest import STACK_CONTAINERS


def compose_request(base, port=8080, domain="example.com"):
    return DeploymentRequest(
        backend=BackendKind.COMPOSE,
        handle=str(base),
        admin_username="admin",
        exposed_port=port,
        domain=domain,
        non_interactive=True,
    )


@pytest.mark.parametrize("domain, port, expected", [
    ("localhost", 80, "http://localhost"),
    ("example.com", 8080, "http://example.com:8080"),
    ("games.example.org", 443, "http://games.example.org:443"),
])
def test_cors_origin(domain, port, expected):
    assert cors_origin(domain, port) == expected


def test_normalize_handle(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    assert normalize_handle("/opt") == normalize_handle("/opt/")
    assert str(normalize_handle("/opt")) == "/opt/cosy"
    assert normalize_handle("apps") == tmp_path / "apps" / "cosy"
    assert normalize_handle("~/apps") == tmp_path / "home" / "apps" / "cosy"


def test_port_in_use_is_detected():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as listener:
        listener.bind(("0.0.0.0", 0))
        listener.listen(1)
        port = listener.getsockname()[1]
        with pytest.raises(PortInUse, match=str(port)):
            check_port_available(port)


def test_free_port_passes():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as probe:
        probe.bind(("127.0.0.1", 0))
        port = probe.getsockname()[1]
    check_port_available(port)


def test_install_writes_layout_and_starts_stack(host, source_tree, tmp_path):
    report = engine.install(compose_request(tmp_path / "base"))
    install_dir = tmp_path / "base" / "cosy"
    config_dir = install_dir / "config"

    assert report.warnings == []
    for name in ("docker-compose.yml", "loki-config.yaml", "loki-nginx.conf", "nginx.conf", "htpasswd", ".env"):
        assert (config_dir / name).is_file(), name

    env = dotenv_values(config_dir / ".env")
    assert env["COSY_CORS_ALLOWED_ORIGINS"] == "http://example.com:8080"
    assert env["COSY_PORT"] == "8080"
    assert env["POSTGRES_PASSWORD"] != env["LOKI_PASSWORD"]
    assert len(env["INFLUXDB_ADMIN_TOKEN"]) == 30

    compose_file = (config_dir / "docker-compose.yml").read_text()
    assert '"8080:80"' in compose_file
    assert "__COSY_" not in compose_file
    assert "server_name example.com;" in (config_dir / "nginx.conf").read_text()
    assert (config_dir / "htpasswd").read_text().startswith("loki:$apr1$")

    credentials = install_dir / "credentials.txt"
    admin_password = report.backend.credentials[APPLICATION_ADMIN].secret
    assert admin_password != "admin"
    assert admin_password in credentials.read_text()
    for secret_file in (credentials, config_dir / ".env", config_dir / "htpasswd"):
        assert stat.S_IMODE(secret_file.stat().st_mode) == 0o600

    up = host.commands("up", "-d")
    assert up and up[0][:2] == ["docker", "compose"]
    assert up[0][-4:] == ["-p", "cosy", "up", "-d"]
    assert host.containers == set(STACK_CONTAINERS)
    assert (install_dir / "logs" / "compose-up.log").exists()


def test_default_port_has_no_port_in_origin(host, source_tree, tmp_path):
    engine.install(compose_request(tmp_path / "base", port=80, domain="localhost"))
    env = dotenv_values(tmp_path / "base" / "cosy" / "config" / ".env")
    assert env["COSY_CORS_ALLOWED_ORIGINS"] == "http://localhost"


def test_reinstall_overwrites_configuration(host, source_tree, tmp_path):
    first = engine.install(compose_request(tmp_path / "base"))
    second = engine.install(compose_request(tmp_path / "base", port=9090))
    env = dotenv_values(tmp_path / "base" / "cosy" / "config" / ".env")
    assert env["COSY_PORT"] == "9090"
    assert env["COSY_ADMIN_PASSWORD"] == second.backend.credentials[APPLICATION_ADMIN].secret
    assert env["COSY_ADMIN_PASSWORD"] != first.backend.credentials[APPLICATION_ADMIN].secret


def test_start_failure_is_fatal_and_leaves_files(host, source_tree, tmp_path):
    host.fail("up", returncode=17)
    with pytest.raises(BackendCommandFailure) as exc:
        engine.install(compose_request(tmp_path / "base"))
    assert exc.value.step == "start_services"
    assert exc.value.returncode == 17
    assert "compose-up.log" in exc.value.remediation
    assert (tmp_path / "base" / "cosy" / "config" / ".env").exists()


def test_health_timeout_after_full_window(host, source_tree, tmp_path):
    host.http_ready = False
    with pytest.raises(HealthTimeout, match="180 seconds") as exc:
        engine.install(compose_request(tmp_path / "base"))
    assert exc.value.step == "await_ready"
    assert len(host.slept) == 60
    assert sum(host.slept) == 180


def test_missing_docker_stops_before_anything_is_written(host, source_tree, tmp_path):
    host.tools = {"htpasswd"}
    with pytest.raises(PrerequisiteMissing) as exc:
        engine.install(compose_request(tmp_path / "base"))
    assert exc.value.step == "check_prerequisites"
    assert not (tmp_path / "base" / "cosy" / "config" / ".env").exists()


def test_uninstall_removes_everything(host, source_tree, service_unit, tmp_path):
    request = compose_request(tmp_path / "base")
    engine.install(request)
    service_unit.parent.mkdir(parents=True)
    service_unit.write_text("[Unit]\n")

    report = engine.uninstall(request, assume_yes=True)

    assert report.warnings == []
    assert not (tmp_path / "base" / "cosy").exists()
    assert not service_unit.exists()
    assert host.containers == set()
    down = host.commands("down", "--volumes", "--remove-orphans")
    assert down and "--env-file" in down[0]


def test_uninstall_removes_leftovers_when_down_fails(host, source_tree, tmp_path):
    request = compose_request(tmp_path / "base")
    engine.install(request)
    host.fail("down")

    report = engine.uninstall(request, assume_yes=True)

    assert [w.name for w in report.warnings] == ["compose_down"]
    assert host.containers == set()
    removed = sorted(cmd[-1] for cmd in host.commands("rm", "-f"))
    assert removed == sorted(STACK_CONTAINERS)
    assert not (tmp_path / "base" / "cosy").exists()


def test_uninstall_reports_residue(host, source_tree, tmp_path):
    request = compose_request(tmp_path / "base")
    engine.install(request)
    host.fail("down")
    host.fail("rm", "-f")

    report = engine.uninstall(request, assume_yes=True)

    names = {w.name: w for w in report.warnings}
    assert set(names) == {"compose_down", "remove_leftover_containers", "verify_no_residue"}
    assert "cosy-backend" in names["verify_no_residue"].message
    assert all(r.outcome in (StepOutcome.OK, StepOutcome.WARNED) for r in report.results)


def test_uninstall_without_installation(host, tmp_path):
    with pytest.raises(InstallationNotFound) as exc:
        engine.uninstall(compose_request(tmp_path / "nowhere"), assume_yes=True)
    assert exc.value.step == "locate"
    assert "--path" in exc.value.remediation
    assert host.commands("down") == []
    assert host.commands("rm") == []


def test_uninstall_without_compose_file_is_corrupt(host, tmp_path):
    (tmp_path / "base" / "cosy").mkdir(parents=True)
    with pytest.raises(CorruptInstallation):
        engine.uninstall(compose_request(tmp_path / "base"), assume_yes=True)
    assert (tmp_path / "base" / "cosy").exists()
    assert host.commands("down") == []


def test_uninstall_without_terminal_or_yes_is_cancelled(host, source_tree, tmp_path, monkeypatch):
    request = compose_request(tmp_path / "base")
    engine.install(request)
    monkeypatch.setattr(engine, "stdin_is_tty", lambda: False)

    with pytest.raises(UserCancelled):
        engine.uninstall(request)
    assert (tmp_path / "base" / "cosy").exists()
    assert host.commands("down") == []


def test_declined_confirmation_changes_nothing(host, source_tree, tmp_path, monkeypatch):
    request = compose_request(tmp_path / "base")
    engine.install(request)
    asked = []

    def decline(question, default=None):
        asked.append(default)
        return False

    monkeypatch.setattr(engine, "stdin_is_tty", lambda: True)
    monkeypatch.setattr(engine.typer, "confirm", decline)

    with pytest.raises(UserCancelled):
        engine.uninstall(request)
    assert asked == [False]
    assert (tmp_path / "base" / "cosy").exists()


def test_backend_handle_is_normalized(tmp_path):
    backend = ComposeBackend(compose_request(str(tmp_path / "base") + "/"))
    assert backend.handle == str(tmp_path / "base" / "cosy")
