"""Configuration management for the cosyctl application."""
import os

from dotenv import load_dotenv

# Load environment variables from .env file if it exists
load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Application configuration with sensible defaults."""

    # Stack identity
    STACK_NAME: str = "cosy"
    INSTALL_SUBDIR: str = "cosy"
    CONTAINER_PREFIX: str = "cosy-"
    SERVICE_UNIT_PATH: str = os.getenv("COSY_SERVICE_UNIT_PATH", "/etc/systemd/system/cosy.service")

    # Request defaults
    DEFAULT_INSTALL_PATH: str = os.getenv("COSY_INSTALL_PATH", "/opt")
    DEFAULT_NAMESPACE: str = os.getenv("COSY_NAMESPACE", "cosy")
    DEFAULT_PORT: int = int(os.getenv("COSY_PORT", "80"))
    DEFAULT_DOMAIN: str = os.getenv("COSY_DOMAIN", "localhost")
    DEFAULT_ADMIN_USERNAME: str = os.getenv("COSY_ADMIN_USERNAME", "admin")

    # Versioned source of compose definitions and manifests
    SOURCE_URL: str = os.getenv("COSY_SOURCE_URL", "https://raw.githubusercontent.com/magenta-mause/cosy")
    SOURCE_REF: str = os.getenv("COSY_SOURCE_REF", "main")

    # Image pins
    BACKEND_IMAGE: str = os.getenv("COSY_BACKEND_IMAGE", "ghcr.io/magenta-mause/cosy-backend:sha-2d4bdf3")
    FRONTEND_IMAGE: str = os.getenv("COSY_FRONTEND_IMAGE", "ghcr.io/magenta-mause/cosy-frontend:sha-b006d97")

    # Metrics store
    INFLUXDB_ORG: str = os.getenv("COSY_INFLUXDB_ORG", "cosy")
    INFLUXDB_BUCKET: str = os.getenv("COSY_INFLUXDB_BUCKET", "cosy-metrics")

    # Credentials
    SECRET_LENGTH: int = int(os.getenv("COSY_SECRET_LENGTH", "24"))
    TOKEN_LENGTH: int = int(os.getenv("COSY_TOKEN_LENGTH", "30"))

    # Timeouts (in seconds)
    FETCH_TIMEOUT: int = int(os.getenv("COSY_FETCH_TIMEOUT", "30"))
    PROBE_TIMEOUT: int = int(os.getenv("COSY_PROBE_TIMEOUT", "5"))

    # Health gate
    HEALTH_INTERVAL: float = float(os.getenv("COSY_HEALTH_INTERVAL", "3"))
    HEALTH_MAX_ATTEMPTS: int = int(os.getenv("COSY_HEALTH_MAX_ATTEMPTS", "60"))
    ROLLOUT_INTERVAL: float = float(os.getenv("COSY_ROLLOUT_INTERVAL", "5"))
    ROLLOUT_MAX_ATTEMPTS: int = int(os.getenv("COSY_ROLLOUT_MAX_ATTEMPTS", "60"))

    # Reject artifacts that still contain __COSY_*__ tokens after substitution
    STRICT_PLACEHOLDERS: bool = _flag("COSY_STRICT_PLACEHOLDERS", "true")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    LOG_FORMAT: str = os.getenv(
        "LOG_FORMAT",
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    LOG_FILE: str = os.getenv("COSY_LOG_FILE", "")

    # Security
    REDACT_KEYS: tuple = ("password", "secret", "token", "htpasswd")

    @classmethod
    def source_url_for(cls, relative_path: str) -> str:
        """Build the locator of a file in the versioned source tree."""
        parts = [cls.SOURCE_URL.rstrip("/"), cls.SOURCE_REF.strip("/"), relative_path.lstrip("/")]
        return "/".join(part for part in parts if part)
