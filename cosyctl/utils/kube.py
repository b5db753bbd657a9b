import logging
import os
import pwd
from pathlib import Path
from typing import Optional

import urllib3
from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException

from ..errors import PrerequisiteUnreachable

logger = logging.getLogger("cosyctl.kube")


def resolve_kubeconfig() -> Optional[str]:
    """
    Pick the kubeconfig to use for this run.

    Returns None to let kubectl and the client fall back to their defaults.
    That includes a set KUBECONFIG: it may list several files, which both
    read themselves but which `--kubeconfig` does not accept. When running
    under sudo without one, root's own config is usually empty, so the
    invoking user's ~/.kube/config is reused if it exists.
    """
    if os.environ.get("KUBECONFIG"):
        return None

    sudo_user = os.environ.get("SUDO_USER")
    if os.geteuid() != 0 or not sudo_user or sudo_user == "root":
        return None

    try:
        home = pwd.getpwnam(sudo_user).pw_dir
    except KeyError:
        logger.warning(f"⚠️  Could not find home directory of {sudo_user}")
        return None

    candidate = Path(home) / ".kube" / "config"
    if candidate.exists():
        logger.info(f"🔑 Reusing kubeconfig of {sudo_user}: {candidate}")
        return str(candidate)
    return None


def load_client(kubeconfig: Optional[str] = None) -> None:
    try:
        config.load_kube_config(config_file=kubeconfig)
    except (ConfigException, OSError) as e:
        raise PrerequisiteUnreachable(
            f"Could not load kubeconfig: {e}",
            "Set KUBECONFIG or make sure ~/.kube/config points at a cluster.",
        ) from e


def check_cluster_reachable(kubeconfig: Optional[str] = None) -> str:
    """Query the API server version. Returns the server's git version."""
    load_client(kubeconfig)
    try:
        version = client.VersionApi().get_code()
    except (ApiException, urllib3.exceptions.HTTPError, OSError) as e:
        raise PrerequisiteUnreachable(
            f"Kubernetes cluster is not reachable: {e}",
            "Check your kubeconfig context and that the API server is up (kubectl cluster-info).",
        ) from e
    return version.git_version


def namespace_exists(namespace: str, kubeconfig: Optional[str] = None) -> bool:
    load_client(kubeconfig)
    try:
        client.CoreV1Api().read_namespace(name=namespace)
    except ApiException as e:
        if e.status == 404:
            return False
        raise PrerequisiteUnreachable(f"Failed to look up namespace {namespace}: {e.reason}") from e
    except (urllib3.exceptions.HTTPError, OSError) as e:
        raise PrerequisiteUnreachable(f"Kubernetes cluster is not reachable: {e}") from e
    return True
