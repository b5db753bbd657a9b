"""Kubernetes backend.

All objects live in one namespace, so deleting the namespace removes the
whole installation. Manifests are downloaded into a staging directory that
only exists for the duration of the install run.
"""

import logging
import shutil
import signal
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import yaml

from ...config import Config
from ...errors import HealthTimeout, NamespaceNotFound
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
from ...utils import kube, require_command, run_command
from .. import health, materializer
from ..credentials import derive_basic_auth_credential, detect_hashing_tool
from ..materializer import token
from .base import Backend

logger = logging.getLogger("cosyctl.backends.cluster")

KUBECTL_INSTALL_HINT = "Install kubectl: https://kubernetes.io/docs/tasks/tools/"

# Applied in this order: later groups reference secrets and services of earlier ones
MANIFEST_GROUPS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("datastore", ("database.yaml",)),
    ("log-aggregator", ("loki-config.yaml", "loki.yaml")),
    ("log-proxy", ("loki-nginx.yaml",)),
    ("metrics-store", ("influxdb.yaml",)),
    ("app-backend", ("backend.yaml",)),
    ("app-frontend", ("frontend.yaml",)),
    ("ingress", ("ingress.yaml",)),
)

WORKLOAD_KINDS = ("Deployment", "StatefulSet")

DATABASE_SECRET = "cosy-database-credentials"
LOG_STORE_SECRET = "cosy-loki-credentials"
LOG_PROXY_SECRET = "cosy-loki-htpasswd"
METRICS_STORE_SECRET = "cosy-influx-credentials"
ADMIN_SECRET = "cosy-admin-credentials"


@contextmanager
def manifest_staging() -> Iterator[Path]:
    """Temporary directory for downloaded manifests.

    The directory is removed on every way out of the block. SIGTERM is turned
    into SystemExit while the block is active so that a terminated run
    unwinds through the cleanup as well.
    """
    staging = Path(tempfile.mkdtemp(prefix="cosy-manifests-"))
    logger.debug(f"📂 Staging manifests in {staging}")

    def _terminate(signum, frame):
        raise SystemExit(128 + signum)

    previous = None
    try:
        previous = signal.signal(signal.SIGTERM, _terminate)
    except ValueError:
        # signal handlers can only be installed from the main thread
        previous = None

    try:
        yield staging
    finally:
        shutil.rmtree(staging, ignore_errors=True)
        if previous is not None:
            signal.signal(signal.SIGTERM, previous)
        logger.debug(f"🧹 Removed {staging}")


def discover_workloads(paths: Sequence[Path]) -> List[str]:
    """``kind/name`` of every Deployment and StatefulSet in ``paths``."""
    workloads = []
    for path in paths:
        try:
            with open(path, encoding="utf-8") as f:
                documents = list(yaml.safe_load_all(f))
        except yaml.YAMLError as e:
            logger.warning(f"⚠️  Could not parse {path.name} for workloads: {e}")
            continue
        for doc in documents:
            if isinstance(doc, dict) and doc.get("kind") in WORKLOAD_KINDS:
                name = (doc.get("metadata") or {}).get("name")
                if name:
                    workloads.append(f"{doc['kind'].lower()}/{name}")
    return workloads


class ClusterBackend(Backend):
    """Install into a Kubernetes namespace with kubectl."""

    kind = BackendKind.CLUSTER

    def __init__(self, request, credentials=None):
        super().__init__(request, credentials)
        self.namespace = request.handle
        self.kubeconfig: Optional[str] = None
        self.hashing_tool: Optional[str] = None
        self.staging_dir: Optional[Path] = None
        self.manifests: Dict[str, List[Path]] = {}
        self.unready: List[str] = []

    @property
    def handle(self) -> str:
        return self.namespace

    @property
    def cors_origin(self) -> str:
        # Served through the ingress on plain HTTP port 80
        return f"http://{self.request.domain}"

    def kubectl(self, *args: str) -> List[str]:
        cmd = ["kubectl"]
        if self.kubeconfig:
            cmd += ["--kubeconfig", self.kubeconfig]
        return cmd + list(args)

    def apply_object(self, *create_args: str, input: Optional[str] = None) -> None:
        """Create-or-update by rendering with a client dry run and applying.

        The rendered object may hold secret data, so it is never logged.
        """
        rendered = run_command(
            self.kubectl(*create_args, "--dry-run=client", "-o", "yaml"),
            input=input,
            sensitive_output=True,
        )
        run_command(self.kubectl("apply", "-f", "-"), input=rendered.stdout)

    @contextmanager
    def session(self) -> Iterator[Path]:
        with manifest_staging() as staging:
            self.staging_dir = staging
            try:
                yield staging
            finally:
                self.staging_dir = None

    # ── install ────────────────────────────────────────────────────────────

    def install_steps(self) -> List[ProvisionStep]:
        return [
            ProvisionStep("check_prerequisites", self.check_prerequisites),
            ProvisionStep("create_namespace", self.create_namespace),
            ProvisionStep("create_secrets", self.create_secrets),
            ProvisionStep("materialize_config", self.materialize_config),
            ProvisionStep("apply_manifests", self.apply),
            ProvisionStep("await_ready", self.await_ready, fatal=False),
        ]

    def check_cluster(self) -> None:
        require_command("kubectl", KUBECTL_INSTALL_HINT)
        self.kubeconfig = kube.resolve_kubeconfig()
        version = kube.check_cluster_reachable(self.kubeconfig)
        logger.info(f"✅ Kubernetes cluster reachable (server {version})")

    def check_prerequisites(self) -> None:
        self.check_cluster()
        self.hashing_tool = detect_hashing_tool()

    def create_namespace(self) -> None:
        self.apply_object("create", "namespace", self.namespace)
        logger.info(f"✅ Namespace {self.namespace} ready.")

    def secret_data(self) -> Dict[str, Dict[str, str]]:
        database = self.credentials[DATABASE]
        log_store = self.credentials[LOG_STORE]
        metrics = self.credentials[METRICS_STORE]
        admin = self.credentials[APPLICATION_ADMIN]
        if log_store.derived_hash is None:
            log_store.derived_hash = derive_basic_auth_credential(
                log_store.username, log_store.secret, self.hashing_tool
            )
        return {
            DATABASE_SECRET: {"username": database.username, "password": database.secret},
            LOG_STORE_SECRET: {"username": log_store.username, "password": log_store.secret},
            LOG_PROXY_SECRET: {"htpasswd": log_store.derived_hash},
            METRICS_STORE_SECRET: {
                "username": metrics.username,
                "password": metrics.secret,
                "admin-token": metrics.token,
                "org": Config.INFLUXDB_ORG,
                "bucket": Config.INFLUXDB_BUCKET,
            },
            ADMIN_SECRET: {"username": admin.username, "password": admin.secret},
        }

    def create_secrets(self) -> None:
        # Values go over stdin as an env file so they never appear on argv
        for name, data in self.secret_data().items():
            env_file = "".join(f"{key}={value}\n" for key, value in data.items())
            self.apply_object(
                "create", "secret", "generic", name, "-n", self.namespace,
                "--from-env-file=/dev/stdin",
                input=env_file,
            )
            logger.info(f"🔐 Secret {name} ready.")

    def placeholder_map(self):
        placeholders = super().placeholder_map()
        placeholders[token("NAMESPACE")] = self.namespace
        return placeholders

    def artifacts(self) -> List[ConfigArtifact]:
        if self.staging_dir is None:
            raise RuntimeError("Manifests can only be staged inside session()")
        artifacts = []
        for group, files in MANIFEST_GROUPS:
            for name in files:
                artifacts.append(ConfigArtifact(
                    f"{group}/{name}",
                    Config.source_url_for(f"deploy/kubernetes/{name}"),
                    self.staging_dir / group / name,
                ))
        return artifacts

    def materialize_config(self) -> List[Path]:
        written = materializer.materialize(self.artifacts(), self.placeholder_map())
        self.manifests = {}
        for path in written:
            self.manifests.setdefault(path.parent.name, []).append(path)
        return written

    def apply(self) -> None:
        for group, _ in MANIFEST_GROUPS:
            for path in self.manifests.get(group, []):
                logger.info(f"📦 Applying {group}: {path.name}")
                run_command(self.kubectl("apply", "-n", self.namespace, "-f", str(path)))

    def rollout_probe(self, workload: str):
        def probe() -> bool:
            result = run_command(
                self.kubectl("rollout", "status", workload, "-n", self.namespace, "--watch=false"),
                check=False,
            )
            return result.returncode == 0 and "successfully rolled out" in result.stdout
        return probe

    def health_checks(self) -> List[HealthCheckSpec]:
        paths = [path for files in self.manifests.values() for path in files]
        return [
            HealthCheckSpec(
                probe=self.rollout_probe(workload),
                interval=Config.ROLLOUT_INTERVAL,
                max_attempts=Config.ROLLOUT_MAX_ATTEMPTS,
                description=workload,
            )
            for workload in discover_workloads(paths)
        ]

    def await_ready(self) -> None:
        self.unready = []
        for spec in self.health_checks():
            if health.await_ready(spec) is HealthResult.TIMEOUT:
                self.unready.append(spec.description)
        if self.unready:
            raise HealthTimeout(
                f"Not ready yet: {', '.join(self.unready)}. The cluster may still converge.",
                f"Watch progress with: kubectl get pods -n {self.namespace} -w",
            )

    def summary_lines(self) -> List[str]:
        admin = self.credentials[APPLICATION_ADMIN]
        lines = [
            "COSY installation completed successfully!",
            "",
            f"  Namespace:          {self.namespace}",
            "  Deployment method:  Kubernetes",
            "",
            f"  Username:           {admin.username}",
            f"  Password:           {admin.secret}",
            f"  URL:                {self.cors_origin}",
            "",
            "  ⚠  Please save the password above. To read it again:",
            f"     kubectl get secret {ADMIN_SECRET} -n {self.namespace} "
            "-o jsonpath='{.data.password}' | base64 -d",
        ]
        if self.unready:
            lines += ["", f"  Still starting:     {', '.join(self.unready)}"]
        return lines

    # ── teardown ───────────────────────────────────────────────────────────

    def locate(self) -> None:
        self.check_cluster()
        if not kube.namespace_exists(self.namespace, self.kubeconfig):
            raise NamespaceNotFound(
                f"Namespace {self.namespace} does not exist.",
                "Pass the namespace COSY was installed into with --namespace.",
            )

    def removal_plan(self) -> List[str]:
        return [
            f"Namespace:  {self.namespace}",
            "",
            "This will delete the namespace and everything in it:",
            "  • All COSY workloads and services",
            "  • All persistent volume claims (database, logs, metrics)",
            "  • All COSY secrets",
        ]

    def remove_steps(self) -> List[ProvisionStep]:
        return [ProvisionStep("delete_namespace", self.delete_namespace)]

    def delete_namespace(self) -> None:
        logger.info(f"🗑️ Deleting namespace {self.namespace} (this can take a while)...")
        run_command(self.kubectl("delete", "namespace", self.namespace))
        logger.info(f"✅ Namespace {self.namespace} deleted.")
