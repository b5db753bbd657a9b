"""Execution backends for the COSY stack."""
from typing import Optional

from ...models import BackendKind, CredentialSet, DeploymentRequest
from .base import Backend, cors_origin
from .cluster import ClusterBackend
from .compose import ComposeBackend

BACKENDS = {
    BackendKind.COMPOSE: ComposeBackend,
    BackendKind.CLUSTER: ClusterBackend,
}


def get_backend(request: DeploymentRequest, credentials: Optional[CredentialSet] = None) -> Backend:
    """Instantiate the backend selected by ``request.backend``."""
    return BACKENDS[BackendKind(request.backend)](request, credentials)


__all__ = [
    'Backend',
    'BACKENDS',
    'ClusterBackend',
    'ComposeBackend',
    'cors_origin',
    'get_backend',
]
