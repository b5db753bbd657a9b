"""Credential generation for a COSY install."""

import logging
import secrets
import string
from typing import Optional

from ..config import Config
from ..errors import BackendCommandFailure, NoHashingToolAvailable
from ..models import (
    APPLICATION_ADMIN,
    DATABASE,
    LOG_STORE,
    METRICS_STORE,
    Credential,
    CredentialSet,
)
from ..utils import command_exists, run_command

logger = logging.getLogger("cosyctl.credentials")

ALPHABET = string.ascii_letters + string.digits

# Preference order for deriving the log proxy's basic-auth line
HASHING_TOOLS = ("htpasswd", "openssl", "perl")

DATABASE_USER = "cosy"
LOG_STORE_USER = "loki"
METRICS_STORE_USER = "cosy"

_PERL_CRYPT = 'print crypt($ENV{COSY_HASH_SECRET}, "\\$6\\$" . $ENV{COSY_HASH_SALT} . "\\$")'


def generate_secret(length: Optional[int] = None) -> str:
    """Generate a random alphanumeric secret.

    Args:
        length: Number of characters (default: Config.SECRET_LENGTH)

    Returns:
        str: The secret
    """
    if length is None:
        length = Config.SECRET_LENGTH
    if length <= 0:
        raise ValueError("Secret length must be positive")
    return ''.join(secrets.choice(ALPHABET) for _ in range(length))


def generate_credentials(admin_username: str) -> CredentialSet:
    """Generate every credential slot for one install."""
    return CredentialSet(slots={
        DATABASE: Credential(DATABASE_USER, generate_secret()),
        LOG_STORE: Credential(LOG_STORE_USER, generate_secret()),
        METRICS_STORE: Credential(
            METRICS_STORE_USER,
            generate_secret(),
            token=generate_secret(Config.TOKEN_LENGTH),
        ),
        APPLICATION_ADMIN: Credential(admin_username, generate_secret()),
    })


def detect_hashing_tool() -> str:
    """Return the first available hashing tool.

    Raises:
        NoHashingToolAvailable: If none of htpasswd, openssl or perl is installed
    """
    for tool in HASHING_TOOLS:
        if command_exists(tool):
            return tool
    raise NoHashingToolAvailable(
        "Cannot generate the htpasswd entry for the log proxy.",
        "Install one of: apache2-utils (htpasswd), openssl, perl. "
        "On Debian/Ubuntu: sudo apt-get install apache2-utils",
    )


def derive_basic_auth_credential(username: str, secret: str, tool: Optional[str] = None) -> str:
    """Derive an htpasswd line (``user:hash``) for nginx basic auth.

    The secret is handed to the tool over stdin or the environment so it
    never shows up in the process list.

    Args:
        username: Basic-auth user
        secret: Plain password
        tool: Hashing tool to use (default: detect_hashing_tool())

    Returns:
        str: The htpasswd line without a trailing newline
    """
    tool = tool or detect_hashing_tool()
    logger.debug(f"🔐 Hashing log proxy password with {tool}")

    try:
        if tool == "htpasswd":
            result = run_command(
                ["htpasswd", "-n", "-i", username], input=secret, sensitive_output=True
            )
            line = result.stdout.strip().splitlines()[0]
            return line
        if tool == "openssl":
            result = run_command(
                ["openssl", "passwd", "-apr1", "-stdin"], input=secret, sensitive_output=True
            )
            return f"{username}:{result.stdout.strip()}"
        if tool == "perl":
            salt = generate_secret(16)
            result = run_command(
                ["perl", "-e", _PERL_CRYPT],
                env={"COSY_HASH_SECRET": secret, "COSY_HASH_SALT": salt},
                sensitive_output=True,
            )
            return f"{username}:{result.stdout.strip()}"
    except (BackendCommandFailure, IndexError) as e:
        raise BackendCommandFailure(f"{tool} failed to hash the log proxy password: {e}") from e

    raise ValueError(f"Unsupported hashing tool: {tool}")
