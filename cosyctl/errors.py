"""Error taxonomy for cosyctl.

Every failure a component can raise derives from :class:`CosyError`. The step
driver stamps the failing step name onto the exception and the command layer
turns it into a diagnostic plus exit code 1. :class:`UserCancelled` is the one
kind that exits with 0.
"""
from typing import Optional


class CosyError(Exception):
    """Base class for all cosyctl failures."""

    exit_code = 1

    def __init__(self, message: str, remediation: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.remediation = remediation
        self.step: Optional[str] = None

    def __str__(self) -> str:
        return self.message


class PrerequisiteMissing(CosyError):
    """A required tool is not installed."""


class NoHashingToolAvailable(PrerequisiteMissing):
    """None of htpasswd, openssl or perl is available to hash the log proxy password."""


class PrerequisiteUnreachable(CosyError):
    """The container daemon or the cluster API does not respond."""


class PortInUse(CosyError):
    """The requested host port is already bound."""


class InvalidInput(CosyError):
    """The deployment request failed validation."""


class ArtifactFetchFailed(CosyError):
    """A configuration artifact could not be fetched from its source."""


class UnresolvedPlaceholder(CosyError):
    """An artifact still contains placeholder tokens after substitution."""


class FilesystemError(CosyError):
    """A create, write or delete on the local filesystem failed."""


class DestinationUnwritable(FilesystemError):
    """An artifact destination could not be written."""


class BackendCommandFailure(CosyError):
    """An external tool exited non-zero."""

    def __init__(self, message: str, remediation: Optional[str] = None,
                 returncode: Optional[int] = None, output: str = ""):
        super().__init__(message, remediation)
        self.returncode = returncode
        self.output = output


class HealthTimeout(CosyError):
    """The stack did not become ready within the health gate's attempts."""


class InstallationNotFound(CosyError):
    """No installation exists at the given directory."""


class CorruptInstallation(CosyError):
    """The installation directory exists but its compose definition is missing."""


class NamespaceNotFound(CosyError):
    """The target namespace does not exist in the cluster."""


class UserCancelled(CosyError):
    """The operator declined the confirmation prompt."""

    exit_code = 0
