import shutil
import subprocess
from pathlib import Path

import pytest

from cosyctl.config import Config
from cosyctl.errors import BackendCommandFailure, PrerequisiteUnreachable
from cosyctl.modules import health
from cosyctl.utils import kube

STACK_CONTAINERS = (
    "cosy-backend",
    "cosy-frontend",
    "cosy-database",
    "cosy-loki",
    "cosy-loki-nginx",
    "cosy-influx",
    "cosy-nginx",
)

SAMPLE_COMPOSE = """services:
  backend:
    image: __COSY_BACKEND_IMAGE__
    container_name: cosy-backend
    environment:
      - COSY_CORS_ALLOWED_ORIGINS=${COSY_CORS_ALLOWED_ORIGINS}
  frontend:
    image: __COSY_FRONTEND_IMAGE__
    container_name: cosy-frontend
  nginx:
    image: nginx:1.25
    container_name: cosy-nginx
    ports:
      - "__COSY_PORT__:80"
"""

SAMPLE_MANIFESTS = {
    "database.yaml": """apiVersion: apps/v1
kind: StatefulSet
metadata:
  name: cosy-database
  namespace: __COSY_NAMESPACE__
---
apiVersion: v1
kind: Service
metadata:
  name: database
""",
    "loki-config.yaml": """apiVersion: v1
kind: ConfigMap
metadata:
  name: cosy-loki-config
""",
    "loki.yaml": """apiVersion: apps/v1
kind: StatefulSet
metadata:
  name: cosy-loki
""",
    "loki-nginx.yaml": """apiVersion: apps/v1
kind: Deployment
metadata:
  name: cosy-loki-nginx
""",
    "influxdb.yaml": """apiVersion: apps/v1
kind: StatefulSet
metadata:
  name: cosy-influx
spec:
  template:
    spec:
      containers:
        - name: influxdb
          env:
            - name: DOCKER_INFLUXDB_INIT_ORG
              value: __COSY_INFLUXDB_ORG__
            - name: DOCKER_INFLUXDB_INIT_BUCKET
              value: __COSY_INFLUXDB_BUCKET__
""",
    "backend.yaml": """apiVersion: apps/v1
kind: Deployment
metadata:
  name: cosy-backend
spec:
  template:
    spec:
      containers:
        - name: backend
          image: __COSY_BACKEND_IMAGE__
          env:
            - name: COSY_CORS_ALLOWED_ORIGINS
              value: __COSY_CORS_ORIGIN__
""",
    "frontend.yaml": """apiVersion: apps/v1
kind: Deployment
metadata:
  name: cosy-frontend
spec:
  template:
    spec:
      containers:
        - name: frontend
          image: __COSY_FRONTEND_IMAGE__
""",
    "ingress.yaml": """apiVersion: networking.k8s.io/v1
kind: Ingress
metadata:
  name: cosy
  namespace: __COSY_NAMESPACE__
  annotations:
    cosy/public-url: http://__COSY_DOMAIN__
spec:
  rules:
    - host: __COSY_DOMAIN__
      http:
        paths:
          - path: /
            pathType: Prefix
            backend:
              service:
                name: frontend
                port:
                  number: 80
""",
}


class FakeHost:
    """Stands in for docker, docker compose, kubectl and the hashing tools."""

    def __init__(self):
        self.calls = []
        self.inputs = []
        self.tools = {"docker", "htpasswd", "kubectl"}
        self.containers = set()
        self.namespaces = set()
        self.secrets = set()
        self.failures = {}
        self.rollout_ready = True
        self.http_ready = True
        self.cluster_up = True
        self.slept = []
        self.applied = []
        self.sensitive = []

    def fail(self, *tokens, returncode=1):
        """Make every command containing all ``tokens`` exit with ``returncode``."""
        self.failures[tokens] = returncode

    def which(self, name, *args, **kwargs):
        return f"/usr/bin/{name}" if name in self.tools else None

    def _failure(self, cmd):
        for tokens, returncode in self.failures.items():
            if all(t in cmd for t in tokens):
                return returncode
        return 0

    def run(self, cmd, *, check=True, capture_output=True, cwd=None, input=None, env=None,
            sensitive_output=False):
        cmd = list(cmd)
        self.calls.append(cmd)
        self.inputs.append(input)
        if sensitive_output:
            self.sensitive.append(cmd)
        returncode, stdout = self._dispatch(cmd)
        if check and returncode != 0:
            raise BackendCommandFailure(f"Command failed: {' '.join(cmd)}", returncode=returncode)
        return subprocess.CompletedProcess(cmd, returncode, stdout, "")

    def stream(self, cmd, log_path, *, cwd=None):
        cmd = list(cmd)
        self.calls.append(cmd)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        log_path.write_text("Container cosy-backend  Started\n")
        returncode = self._failure(cmd)
        if returncode == 0 and "up" in cmd:
            self.containers.update(STACK_CONTAINERS)
        return returncode

    def _dispatch(self, cmd):
        returncode = self._failure(cmd)
        if returncode:
            return returncode, ""
        if cmd[0] == "htpasswd":
            return 0, f"{cmd[-1]}:$apr1$fakesalt$fakehash\n"
        if cmd[0] == "openssl":
            return 0, "$apr1$fakesalt$fakehash\n"
        if cmd[0] == "perl":
            return 0, "$6$fakesalt$fakehash"
        if cmd[:3] == ["docker", "ps", "-a"]:
            return 0, "".join(f"{name}\n" for name in sorted(self.containers))
        if cmd[:2] == ["docker", "rm"]:
            self.containers.discard(cmd[-1])
            return 0, ""
        if cmd[0] == "docker" and "down" in cmd:
            self.containers.clear()
            return 0, ""
        if cmd[0] == "kubectl":
            return self._kubectl(cmd[1:])
        return 0, ""

    def _kubectl(self, args):
        if args[:1] == ["--kubeconfig"]:
            args = args[2:]
        if args[:2] == ["create", "namespace"]:
            self.namespaces.add(args[2])
            return 0, f"apiVersion: v1\nkind: Namespace\nmetadata:\n  name: {args[2]}\n"
        if args[:3] == ["create", "secret", "generic"]:
            self.secrets.add(args[3])
            return 0, f"apiVersion: v1\nkind: Secret\nmetadata:\n  name: {args[3]}\n"
        if args[:1] == ["apply"] and args[-1] != "-":
            manifest = Path(args[-1])
            self.applied.append((manifest.parent.name, manifest.name, manifest.read_text()))
            return 0, ""
        if args[:2] == ["delete", "namespace"]:
            self.namespaces.discard(args[2])
            return 0, ""
        if args[:2] == ["rollout", "status"]:
            if self.rollout_ready:
                return 0, f'{args[2]} successfully rolled out\n'
            return 0, f'Waiting for {args[2]} rollout to finish: 0 of 1 updated replicas are available...\n'
        return 0, ""

    def commands(self, *tokens):
        """Recorded commands containing all ``tokens``."""
        return [cmd for cmd in self.calls if all(t in cmd for t in tokens)]


@pytest.fixture
def host(monkeypatch):
    fake = FakeHost()
    for module in (
        "cosyctl.modules.backends.compose",
        "cosyctl.modules.backends.cluster",
        "cosyctl.modules.credentials",
    ):
        monkeypatch.setattr(f"{module}.run_command", fake.run)
    monkeypatch.setattr("cosyctl.modules.backends.compose.stream_command", fake.stream)
    monkeypatch.setattr("cosyctl.modules.backends.compose.check_port_available", lambda port: None)
    monkeypatch.setattr(shutil, "which", fake.which)

    def reachable(kubeconfig=None):
        if not fake.cluster_up:
            raise PrerequisiteUnreachable("Kubernetes cluster is not reachable: connection refused")
        return "v1.30.0"

    monkeypatch.setattr(kube, "resolve_kubeconfig", lambda: None)
    monkeypatch.setattr(kube, "check_cluster_reachable", reachable)
    monkeypatch.setattr(kube, "namespace_exists", lambda namespace, kubeconfig=None: namespace in fake.namespaces)

    monkeypatch.setattr(health, "http_probe", lambda urls, timeout=None: (lambda: fake.http_ready))
    monkeypatch.setattr("time.sleep", fake.slept.append)
    return fake


@pytest.fixture
def source_tree(tmp_path, monkeypatch):
    """A local checkout of the versioned source with sample templates."""
    root = tmp_path / "source"
    docker_dir = root / "deploy" / "docker"
    kube_dir = root / "deploy" / "kubernetes"
    docker_dir.mkdir(parents=True)
    kube_dir.mkdir(parents=True)
    (docker_dir / "docker-compose.yml").write_text(SAMPLE_COMPOSE)
    for name, content in SAMPLE_MANIFESTS.items():
        (kube_dir / name).write_text(content)
    monkeypatch.setattr(Config, "SOURCE_URL", str(root))
    monkeypatch.setattr(Config, "SOURCE_REF", "")
    return root


@pytest.fixture(autouse=True)
def service_unit(tmp_path, monkeypatch) -> Path:
    unit = tmp_path / "systemd" / "cosy.service"
    monkeypatch.setattr(Config, "SERVICE_UNIT_PATH", str(unit))
    return unit
