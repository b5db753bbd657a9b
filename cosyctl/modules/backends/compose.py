"""Docker Compose backend.

Everything for one installation lives under ``<path>/cosy``::

    cosy/
      config/docker-compose.yml   service topology (fetched)
      config/loki-config.yaml     log aggregator
      config/loki-nginx.conf      basic-auth proxy in front of Loki
      config/nginx.conf           front proxy on the exposed port
      config/htpasswd             log proxy credentials (0600)
      config/.env                 secrets, port, CORS origin, image pins (0600)
      credentials.txt             human-readable credentials record (0600)
      logs/compose-up.log         output of the last ``up -d``
"""

import errno
import logging
import os
import shutil
import socket
from collections import OrderedDict
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from ...config import Config
from ...errors import (
    BackendCommandFailure,
    CorruptInstallation,
    CosyError,
    FilesystemError,
    HealthTimeout,
    InstallationNotFound,
    PortInUse,
    PrerequisiteMissing,
    PrerequisiteUnreachable,
)
from ...models import (
    APPLICATION_ADMIN,
    DATABASE,
    LOG_STORE,
    METRICS_STORE,
    BackendKind,
    ConfigArtifact,
    HealthCheckSpec,
    HealthResult,
    ProvisionStep,
)
from ...utils import command_exists, require_command, run_command, stream_command
from .. import health, materializer
from ..credentials import derive_basic_auth_credential, detect_hashing_tool
from ..materializer import token
from .base import Backend

logger = logging.getLogger("cosyctl.backends.compose")

DOCKER_INSTALL_HINT = (
    "Install Docker: https://docs.docker.com/engine/install/ and add your user to the "
    "'docker' group (sudo usermod -aG docker $USER), then log out and back in."
)
COMPOSE_INSTALL_HINT = (
    "Install the Docker Compose plugin (sudo apt-get install docker-compose-plugin) "
    "or see https://docs.docker.com/compose/install/"
)

HEALTH_PATH = "/api/actuator/health"


def normalize_handle(path: str) -> Path:
    """Resolve the installation directory for a base path.

    ``~`` is expanded, relative paths are made absolute against the current
    directory, trailing separators are dropped and the fixed ``cosy``
    sub-directory is appended. Install and uninstall both go through this,
    so the same ``--path`` always names the same installation.
    """
    base = os.path.abspath(os.path.expanduser(path))
    return Path(base) / Config.INSTALL_SUBDIR


def detect_compose_command() -> List[str]:
    """Return the compose invocation, preferring the docker plugin."""
    if command_exists("docker"):
        result = run_command(["docker", "compose", "version"], check=False)
        if result.returncode == 0:
            logger.info("✅ Docker Compose (plugin) found")
            return ["docker", "compose"]
    if command_exists("docker-compose"):
        logger.info("✅ Docker Compose (standalone) found")
        return ["docker-compose"]
    raise PrerequisiteMissing("Docker Compose is not installed.", COMPOSE_INSTALL_HINT)


def check_port_available(port: int) -> None:
    """Raise PortInUse if something already listens on ``port``."""
    hint = f"Stop the service using port {port} or choose a different one with --port."
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind(("0.0.0.0", port))
            return
        except OSError as e:
            if e.errno == errno.EADDRINUSE:
                raise PortInUse(f"Port {port} is already in use.", hint) from e
            # EACCES on a privileged port: the docker daemon binds it, not us.
            # Fall through to a connect probe.
    try:
        with socket.create_connection(("127.0.0.1", port), timeout=1):
            pass
    except OSError:
        return
    raise PortInUse(f"Port {port} is already in use.", hint)


def list_stack_containers() -> List[str]:
    """Names of all containers, running or not, carrying the stack prefix."""
    result = run_command([
        "docker", "ps", "-a",
        "--filter", f"name={Config.CONTAINER_PREFIX}",
        "--format", "{{.Names}}",
    ])
    return [
        name.strip() for name in result.stdout.splitlines()
        if name.strip().startswith(Config.CONTAINER_PREFIX)
    ]


class ComposeBackend(Backend):
    """Single-host install driven by docker compose."""

    kind = BackendKind.COMPOSE

    def __init__(self, request, credentials=None):
        super().__init__(request, credentials)
        self.install_dir = normalize_handle(request.handle)
        self.compose_cmd: Optional[List[str]] = None
        self.hashing_tool: Optional[str] = None

    @property
    def handle(self) -> str:
        return str(self.install_dir)

    @property
    def port(self) -> int:
        return self.request.exposed_port or Config.DEFAULT_PORT

    @property
    def config_dir(self) -> Path:
        return self.install_dir / "config"

    @property
    def compose_file(self) -> Path:
        return self.config_dir / "docker-compose.yml"

    @property
    def env_file(self) -> Path:
        return self.config_dir / ".env"

    @property
    def auth_file(self) -> Path:
        return self.config_dir / "htpasswd"

    @property
    def credentials_file(self) -> Path:
        return self.install_dir / "credentials.txt"

    @property
    def log_file(self) -> Path:
        return self.install_dir / "logs" / "compose-up.log"

    def compose(self, *args: str) -> List[str]:
        cmd = list(self.compose_cmd or detect_compose_command())
        cmd += ["-f", str(self.compose_file)]
        if self.env_file.exists():
            cmd += ["--env-file", str(self.env_file)]
        cmd += ["-p", Config.STACK_NAME]
        return cmd + list(args)

    # ── install ────────────────────────────────────────────────────────────

    def install_steps(self) -> List[ProvisionStep]:
        return [
            ProvisionStep("normalize_handle", self.log_handle),
            ProvisionStep("create_directory", self.create_directory),
            ProvisionStep("check_prerequisites", self.check_prerequisites),
            ProvisionStep("write_auth_file", self.write_auth_file),
            ProvisionStep("materialize_config", self.materialize_config),
            ProvisionStep("write_environment_file", self.write_environment_file),
            ProvisionStep("persist_credentials_summary", self.persist_credentials_summary),
            ProvisionStep("start_services", self.apply),
            ProvisionStep("await_ready", self.await_ready),
        ]

    def log_handle(self) -> None:
        logger.info(f"📁 Installation directory: {self.install_dir}")

    def create_directory(self) -> None:
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FilesystemError(
                f"Could not create directory '{self.install_dir}': {e}",
                "Make sure you have write permissions, or choose a different path with --path.",
            ) from e
        logger.info("✅ Installation directory ready.")

    def check_prerequisites(self) -> None:
        require_command("docker", DOCKER_INSTALL_HINT)
        version = run_command(["docker", "--version"], check=False).stdout.strip()
        logger.info(f"✅ Docker found: {version}")

        try:
            run_command(["docker", "info"])
        except BackendCommandFailure as e:
            raise PrerequisiteUnreachable(
                "Docker daemon is not running.",
                "Start it with: sudo systemctl start docker (check: sudo systemctl status docker)",
            ) from e
        logger.info("✅ Docker daemon is running.")

        self.compose_cmd = detect_compose_command()

        check_port_available(self.port)
        logger.info(f"✅ Port {self.port} is available.")

        self.hashing_tool = detect_hashing_tool()

    def write_auth_file(self) -> None:
        log_store = self.credentials[LOG_STORE]
        log_store.derived_hash = derive_basic_auth_credential(
            log_store.username, log_store.secret, self.hashing_tool
        )
        materializer.write_file(self.auth_file, log_store.derived_hash + "\n", 0o600)
        logger.info("✅ htpasswd created.")

    def artifacts(self) -> List[ConfigArtifact]:
        return [
            ConfigArtifact(
                "service topology",
                Config.source_url_for("deploy/docker/docker-compose.yml"),
                self.compose_file,
            ),
            ConfigArtifact("log aggregator config", "template:loki-config.yaml",
                           self.config_dir / "loki-config.yaml"),
            ConfigArtifact("log proxy config", "template:loki-nginx.conf",
                           self.config_dir / "loki-nginx.conf"),
            ConfigArtifact("front proxy config", "template:nginx.conf",
                           self.config_dir / "nginx.conf"),
        ]

    def placeholder_map(self):
        placeholders = super().placeholder_map()
        placeholders[token("PORT")] = str(self.port)
        return placeholders

    def materialize_config(self) -> List[Path]:
        return materializer.materialize(self.artifacts(), self.placeholder_map())

    def environment(self) -> "OrderedDict[str, str]":
        """Variables the compose definition interpolates."""
        database = self.credentials[DATABASE]
        log_store = self.credentials[LOG_STORE]
        metrics = self.credentials[METRICS_STORE]
        admin = self.credentials[APPLICATION_ADMIN]
        return OrderedDict([
            ("POSTGRES_USER", database.username),
            ("POSTGRES_PASSWORD", database.secret),
            ("LOKI_USER", log_store.username),
            ("LOKI_PASSWORD", log_store.secret),
            ("INFLUXDB_USERNAME", metrics.username),
            ("INFLUXDB_PASSWORD", metrics.secret),
            ("INFLUXDB_ADMIN_TOKEN", metrics.token),
            ("INFLUXDB_ORG", Config.INFLUXDB_ORG),
            ("INFLUXDB_BUCKET", Config.INFLUXDB_BUCKET),
            ("COSY_ADMIN_USERNAME", admin.username),
            ("COSY_ADMIN_PASSWORD", admin.secret),
            ("COSY_PORT", str(self.port)),
            ("COSY_DOMAIN", self.request.domain),
            ("COSY_CORS_ALLOWED_ORIGINS", self.cors_origin),
            ("COSY_BACKEND_IMAGE", Config.BACKEND_IMAGE),
            ("COSY_FRONTEND_IMAGE", Config.FRONTEND_IMAGE),
        ])

    def write_environment_file(self) -> None:
        lines = [f"# COSY environment configuration, generated on {datetime.now().isoformat(timespec='seconds')}"]
        lines += [f"{key}={value}" for key, value in self.environment().items()]
        materializer.write_file(self.env_file, "\n".join(lines) + "\n", 0o600)
        logger.info(".env file created.")

    def persist_credentials_summary(self) -> None:
        database = self.credentials[DATABASE]
        log_store = self.credentials[LOG_STORE]
        metrics = self.credentials[METRICS_STORE]
        admin = self.credentials[APPLICATION_ADMIN]
        text = f"""COSY credentials, generated on {datetime.now().isoformat(timespec='seconds')}
Installation: {self.install_dir}
URL:          {self.cors_origin}

Application admin
  Username: {admin.username}
  Password: {admin.secret}

Database (PostgreSQL)
  Username: {database.username}
  Password: {database.secret}

Log store (Loki, behind basic auth)
  Username: {log_store.username}
  Password: {log_store.secret}

Metrics store (InfluxDB)
  Username:    {metrics.username}
  Password:    {metrics.secret}
  Admin token: {metrics.token}
  Org:         {Config.INFLUXDB_ORG}
  Bucket:      {Config.INFLUXDB_BUCKET}
"""
        materializer.write_file(self.credentials_file, text, 0o600)
        logger.info(f"🔑 Credentials saved to {self.credentials_file}")

    def apply(self) -> None:
        logger.info("🚀 Starting COSY services...")
        returncode = stream_command(self.compose("up", "-d"), self.log_file, cwd=self.config_dir)
        if returncode != 0:
            raise BackendCommandFailure(
                f"Failed to start COSY services (exit code {returncode}).",
                f"Check {self.log_file} and `cd {self.config_dir} && {' '.join(self.compose('logs'))}`; "
                f"make sure Docker has enough RAM/disk and that {Config.BACKEND_IMAGE} can be pulled.",
                returncode=returncode,
            )

    def health_check(self) -> HealthCheckSpec:
        base = f"http://127.0.0.1:{self.port}"
        return HealthCheckSpec(
            probe=health.http_probe([base + HEALTH_PATH, base + "/"]),
            interval=Config.HEALTH_INTERVAL,
            max_attempts=Config.HEALTH_MAX_ATTEMPTS,
            description=f"COSY on port {self.port}",
        )

    def await_ready(self) -> None:
        spec = self.health_check()
        if health.await_ready(spec) is HealthResult.TIMEOUT:
            raise HealthTimeout(
                f"Services did not become ready within {spec.interval * spec.max_attempts:g} seconds.",
                f"Check the logs: cd {self.config_dir} && {' '.join(self.compose('logs', '-f'))}",
            )

    def summary_lines(self) -> List[str]:
        admin = self.credentials[APPLICATION_ADMIN]
        compose = " ".join(self.compose_cmd or ["docker", "compose"])
        return [
            "COSY installation completed successfully!",
            "",
            f"  Installation path:  {self.install_dir}",
            "  Deployment method:  Docker Compose",
            "",
            f"  Username:           {admin.username}",
            f"  Password:           {admin.secret}",
            f"  URL:                {self.cors_origin}",
            "",
            "  ⚠  Please save the password above; it is also stored in",
            f"     {self.credentials_file}",
            "",
            f"  Stop COSY:    cd {self.config_dir} && {compose} -p {Config.STACK_NAME} down",
            f"  View logs:    cd {self.config_dir} && {compose} -p {Config.STACK_NAME} logs -f",
        ]

    # ── teardown ───────────────────────────────────────────────────────────

    def locate(self) -> None:
        if not self.install_dir.is_dir():
            raise InstallationNotFound(
                f"No COSY installation found at {self.install_dir}.",
                "If COSY was installed in a custom location, pass its base directory with --path.",
            )
        if not self.compose_file.is_file():
            raise CorruptInstallation(
                f"docker-compose.yml not found at {self.compose_file}.",
                "The installation appears to be incomplete or corrupted; remove the directory manually.",
            )
        self.compose_cmd = detect_compose_command()

    def removal_plan(self) -> List[str]:
        return [
            f"Installation directory:  {self.install_dir}",
            "",
            "This will:",
            "  • Stop and remove all COSY containers",
            "  • Remove all Docker volumes (database, logs, metrics)",
            "  • Remove the Docker network",
            f"  • Delete all files in {self.install_dir}",
        ]

    def remove_steps(self) -> List[ProvisionStep]:
        return [
            ProvisionStep("compose_down", self.compose_down, fatal=False),
            ProvisionStep("remove_leftover_containers", self.remove_leftover_containers, fatal=False),
            ProvisionStep("remove_service_unit", self.remove_service_unit, fatal=False),
            ProvisionStep("delete_directory", self.delete_directory, fatal=False),
            ProvisionStep("verify_no_residue", self.verify_no_residue, fatal=False),
        ]

    def compose_down(self) -> None:
        logger.info("🧹 Stopping and removing COSY containers, volumes, and networks...")
        result = run_command(self.compose("down", "--volumes", "--remove-orphans"), check=False)
        if result.returncode != 0:
            raise BackendCommandFailure(
                "docker compose down encountered errors (some resources may already have been removed).",
                returncode=result.returncode,
                output=(result.stderr or "").strip(),
            )
        logger.info("✅ Containers, volumes, and networks removed.")

    def remove_leftover_containers(self) -> None:
        leftovers = list_stack_containers()
        failed = []
        for name in leftovers:
            logger.info(f"🗑️ Removing leftover container: {name}")
            if run_command(["docker", "rm", "-f", name], check=False).returncode != 0:
                failed.append(name)
        removed = len(leftovers) - len(failed)
        logger.info(f"🧹 Removed {removed} leftover container(s).")
        if failed:
            raise BackendCommandFailure(f"Could not remove containers: {', '.join(failed)}")

    def remove_service_unit(self) -> None:
        unit = Path(Config.SERVICE_UNIT_PATH)
        if not unit.exists():
            logger.debug(f"🔍 No service unit at {unit} (skipped)")
            return
        if command_exists("systemctl"):
            run_command(["systemctl", "disable", "--now", unit.name], check=False)
        try:
            unit.unlink()
        except OSError as e:
            raise FilesystemError(f"Could not remove {unit}: {e}", "Re-run with sudo.") from e
        if command_exists("systemctl"):
            run_command(["systemctl", "daemon-reload"], check=False)
        logger.info(f"🧹 Removed service unit {unit}")

    def delete_directory(self) -> None:
        logger.info(f"🗑️ Deleting installation directory: {self.install_dir}")
        try:
            shutil.rmtree(self.install_dir)
        except OSError as e:
            raise FilesystemError(
                f"Could not fully remove {self.install_dir}: {e}",
                "You may need to run with sudo.",
            ) from e
        logger.info("✅ Installation directory deleted.")

    def verify_no_residue(self) -> None:
        residue = list_stack_containers()
        if self.install_dir.exists():
            residue.append(str(self.install_dir))
        if residue:
            raise CosyError(f"Residue left behind: {', '.join(residue)}")
        logger.info("✅ No COSY containers or files left behind.")
