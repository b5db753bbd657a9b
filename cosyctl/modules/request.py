"""Turn command-line flags and interactive answers into a DeploymentRequest."""

import sys
from typing import Any, Dict, Optional

import typer
from jsonschema import ValidationError, validate

from ..config import Config
from ..errors import InvalidInput
from ..models import BackendKind, DeploymentRequest

DNS_LABEL = r"^[a-z0-9]([-a-z0-9]{0,61}[a-z0-9])?$"
HOSTNAME = r"^[A-Za-z0-9]([A-Za-z0-9.-]*[A-Za-z0-9])?$"

REQUEST_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "properties": {
        "backend": {"enum": [kind.value for kind in BackendKind]},
        "handle": {"type": "string", "minLength": 1},
        "admin_username": {"type": "string", "pattern": r"^[A-Za-z0-9._@-]+$"},
        "exposed_port": {"type": ["integer", "null"], "minimum": 1, "maximum": 65535},
        "domain": {"type": "string", "pattern": HOSTNAME},
        "non_interactive": {"type": "boolean"},
    },
    "required": ["backend", "handle", "admin_username", "domain"],
    "allOf": [
        {
            "if": {"properties": {"backend": {"const": BackendKind.CLUSTER.value}}},
            "then": {"properties": {"handle": {"pattern": DNS_LABEL}}},
        },
        {
            "if": {"properties": {"backend": {"const": BackendKind.COMPOSE.value}}},
            "then": {
                "required": ["exposed_port"],
                "properties": {"exposed_port": {"type": "integer"}},
            },
        },
    ],
}

FIELD_LABELS = {
    "handle": "installation path / namespace",
    "admin_username": "admin username",
    "exposed_port": "port",
    "domain": "domain",
}


def stdin_is_tty() -> bool:
    return sys.stdin is not None and sys.stdin.isatty()


def parse_port(value: Any) -> Optional[int]:
    """Parse a port given as text; range checking is left to validation."""
    if value is None or isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError as e:
        raise InvalidInput(f"Invalid port '{value}': must be a number between 1 and 65535.") from e


def validate_request(data: Dict[str, Any]) -> None:
    """Validate raw request fields.

    Raises:
        InvalidInput: Naming the first offending field
    """
    try:
        validate(instance=data, schema=REQUEST_SCHEMA)
    except ValidationError as ve:
        field = next((str(p) for p in ve.absolute_path), None)
        label = FIELD_LABELS.get(field, field or "request")
        raise InvalidInput(f"Invalid {label}: {ve.message}") from ve


def make_request(data: Dict[str, Any]) -> DeploymentRequest:
    validate_request(data)
    return DeploymentRequest(
        backend=BackendKind(data["backend"]),
        handle=data["handle"],
        admin_username=data["admin_username"],
        exposed_port=data.get("exposed_port"),
        domain=data["domain"],
        non_interactive=data.get("non_interactive", False),
    )


def build_install_request(
    backend: BackendKind,
    handle: Optional[str] = None,
    port: Optional[str] = None,
    username: Optional[str] = None,
    domain: Optional[str] = None,
    use_defaults: bool = False,
) -> DeploymentRequest:
    """Build the request for ``install``.

    Values given on the command line are used as-is. Missing values are asked
    for when attached to a terminal, unless ``use_defaults`` is set; otherwise
    they take the configured defaults.
    """
    interactive = not use_defaults and stdin_is_tty()
    is_compose = backend == BackendKind.COMPOSE

    def ask(value, question, default, **kwargs):
        if value is not None:
            return value
        if interactive:
            return typer.prompt(question, default=default, **kwargs)
        return default

    if is_compose:
        handle = ask(handle, "Installation path", Config.DEFAULT_INSTALL_PATH)
    else:
        handle = ask(handle, "Namespace", Config.DEFAULT_NAMESPACE)
    username = ask(username, "Admin username", Config.DEFAULT_ADMIN_USERNAME)
    domain = ask(domain, "Domain", Config.DEFAULT_DOMAIN)
    exposed_port = None
    if is_compose:
        exposed_port = parse_port(ask(port, "Port", str(Config.DEFAULT_PORT)))

    return make_request({
        "backend": backend.value,
        "handle": handle,
        "admin_username": username,
        "exposed_port": exposed_port,
        "domain": domain,
        "non_interactive": not interactive,
    })


def build_uninstall_request(
    backend: BackendKind,
    handle: Optional[str] = None,
    assume_yes: bool = False,
) -> DeploymentRequest:
    """Build the request for ``uninstall``; only the handle matters."""
    if handle is None:
        handle = Config.DEFAULT_INSTALL_PATH if backend == BackendKind.COMPOSE else Config.DEFAULT_NAMESPACE
    return make_request({
        "backend": backend.value,
        "handle": handle,
        "admin_username": Config.DEFAULT_ADMIN_USERNAME,
        "exposed_port": Config.DEFAULT_PORT if backend == BackendKind.COMPOSE else None,
        "domain": Config.DEFAULT_DOMAIN,
        "non_interactive": assume_yes,
    })
