"""Backend contract shared by the compose and cluster variants."""

from abc import ABC, abstractmethod
from contextlib import nullcontext
from pathlib import Path
from typing import ContextManager, Dict, List, Optional

from ...config import Config
from ...models import BackendKind, CredentialSet, DeploymentRequest, ProvisionStep
from ..credentials import generate_credentials
from ..materializer import token


def cors_origin(domain: str, port: int) -> str:
    """Origin the backend accepts cross-origin calls from.

    The services compare the literal string, so port 80 must not appear and
    there is never a trailing slash.
    """
    if port == 80:
        return f"http://{domain}"
    return f"http://{domain}:{port}"


class Backend(ABC):
    """
    One execution target for the stack.

    A backend is built for a single request. Install runs
    ``install_steps()`` inside ``session()``; teardown runs ``locate()``,
    then the confirmation gate, then ``remove_steps()``.
    """

    kind: BackendKind

    def __init__(self, request: DeploymentRequest, credentials: Optional[CredentialSet] = None):
        self.request = request
        self._credentials = credentials

    @property
    def credentials(self) -> CredentialSet:
        if self._credentials is None:
            self._credentials = generate_credentials(self.request.admin_username)
        return self._credentials

    @property
    @abstractmethod
    def handle(self) -> str:
        """The installation handle: install directory or namespace name."""

    @property
    def cors_origin(self) -> str:
        return cors_origin(self.request.domain, self.request.exposed_port or 80)

    def placeholder_map(self) -> Dict[str, str]:
        """Tokens common to every artifact of this backend."""
        return {
            token("DOMAIN"): self.request.domain,
            token("CORS_ORIGIN"): self.cors_origin,
            token("BACKEND_IMAGE"): Config.BACKEND_IMAGE,
            token("FRONTEND_IMAGE"): Config.FRONTEND_IMAGE,
            token("INFLUXDB_ORG"): Config.INFLUXDB_ORG,
            token("INFLUXDB_BUCKET"): Config.INFLUXDB_BUCKET,
        }

    def session(self) -> ContextManager:
        """Resources that must live for the whole install run."""
        return nullcontext()

    @abstractmethod
    def check_prerequisites(self) -> None:
        """Verify the tools and services this backend drives are available."""

    @abstractmethod
    def materialize_config(self) -> List[Path]:
        """Produce the configuration artifacts for this install."""

    @abstractmethod
    def apply(self) -> None:
        """Start the stack on the backend."""

    @abstractmethod
    def await_ready(self) -> None:
        """Block until the stack reports ready, within the configured bounds."""

    @abstractmethod
    def install_steps(self) -> List[ProvisionStep]:
        """The ordered install sequence."""

    @abstractmethod
    def locate(self) -> None:
        """Find the existing installation or raise a not-found error."""

    @abstractmethod
    def remove_steps(self) -> List[ProvisionStep]:
        """The ordered removal sequence. Only valid after locate()."""

    @abstractmethod
    def removal_plan(self) -> List[str]:
        """Human-readable lines describing what removal will delete."""

    @abstractmethod
    def summary_lines(self) -> List[str]:
        """Lines shown to the operator after a successful install."""
