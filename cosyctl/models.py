"""Data models for cosyctl."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional


class BackendKind(str, Enum):
    """Execution backends the stack can be installed on."""
    COMPOSE = 'compose'
    CLUSTER = 'cluster'


@dataclass(frozen=True)
class DeploymentRequest:
    """A validated install or uninstall request.

    ``handle`` is the base install path for the compose backend and the
    namespace name for the cluster backend.
    """
    backend: BackendKind
    handle: str
    admin_username: str = 'admin'
    exposed_port: Optional[int] = None
    domain: str = 'localhost'
    non_interactive: bool = False


# Credential slot names
DATABASE = 'database'
LOG_STORE = 'log-store'
METRICS_STORE = 'metrics-store'
APPLICATION_ADMIN = 'application-admin'


@dataclass
class Credential:
    """One generated credential."""
    username: str
    secret: str
    token: Optional[str] = None
    derived_hash: Optional[str] = None


@dataclass
class CredentialSet:
    """Credentials generated for one install, keyed by slot name."""
    slots: Dict[str, Credential] = field(default_factory=dict)

    def __getitem__(self, name: str) -> Credential:
        return self.slots[name]

    def __contains__(self, name: str) -> bool:
        return name in self.slots

    def __iter__(self) -> Iterator[str]:
        return iter(self.slots)

    def secrets(self) -> List[str]:
        """All secret and token values, in slot order."""
        values = []
        for credential in self.slots.values():
            values.append(credential.secret)
            if credential.token:
                values.append(credential.token)
        return values


@dataclass(frozen=True)
class ConfigArtifact:
    """A configuration file to fetch, fill in and write."""
    logical_name: str
    source_locator: str
    destination_path: Path
    placeholder_map: Dict[str, str] = field(default_factory=dict)
    mode: int = 0o644


@dataclass(frozen=True)
class ProvisionStep:
    """A named unit of an apply or remove sequence."""
    name: str
    action: Callable[[], object]
    fatal: bool = True


class StepOutcome(str, Enum):
    """How an executed step ended."""
    OK = 'ok'
    WARNED = 'warned'


@dataclass
class StepResult:
    """Record of one executed step."""
    name: str
    outcome: StepOutcome
    message: str = ''


class HealthResult(str, Enum):
    """Outcome of a health gate."""
    READY = 'ready'
    TIMEOUT = 'timeout'


@dataclass(frozen=True)
class HealthCheckSpec:
    """What to poll, how often and how many times."""
    probe: Callable[[], bool]
    interval: float
    max_attempts: int
    description: str = ''
