"""Install and teardown orchestration.

Both flows are straight sequences of provision steps run by the step
driver. Nothing is rolled back: a fatal step leaves whatever the earlier
steps created in place, and the operator either fixes the cause and re-runs
install or runs uninstall.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional

import typer

from ..errors import UserCancelled
from ..models import DeploymentRequest, ProvisionStep, StepOutcome, StepResult
from .backends import Backend, get_backend
from .request import stdin_is_tty
from .steps import run_steps

logger = logging.getLogger("cosyctl.engine")


@dataclass
class RunReport:
    """What an install or uninstall run did."""
    backend: Backend
    results: List[StepResult] = field(default_factory=list)

    @property
    def warnings(self) -> List[StepResult]:
        return [r for r in self.results if r.outcome == StepOutcome.WARNED]


def install(request: DeploymentRequest, backend: Optional[Backend] = None) -> RunReport:
    """Provision the stack described by ``request``."""
    backend = backend or get_backend(request)
    logger.info(f"🚀 Installing COSY ({backend.kind.value}) → {backend.handle}")
    with backend.session():
        results = run_steps(backend.install_steps())
    logger.info("✅ COSY installation complete.")
    return RunReport(backend, results)


def confirm_teardown(plan: List[str], assume_yes: bool) -> None:
    """Ask the operator to confirm a teardown.

    ``assume_yes`` skips the question entirely. An empty answer means no.
    Without a terminal there is nobody to ask, so the run is cancelled
    instead of blocking.

    Raises:
        UserCancelled: If the teardown was not confirmed
    """
    if assume_yes:
        logger.debug("Confirmation skipped (--yes)")
        return
    if not stdin_is_tty():
        raise UserCancelled("Uninstallation cancelled: no terminal to confirm on. Re-run with --yes.")

    typer.echo("")
    for line in plan:
        typer.echo(f"  {line}")
    typer.echo("")
    if not typer.confirm("Are you sure you want to continue?", default=False):
        raise UserCancelled("Uninstallation cancelled.")


def uninstall(request: DeploymentRequest, assume_yes: bool = False,
              backend: Optional[Backend] = None) -> RunReport:
    """Remove the installation identified by ``request.handle``."""
    backend = backend or get_backend(request)
    results = run_steps([ProvisionStep("locate", backend.locate)])
    confirm_teardown(backend.removal_plan(), assume_yes)
    logger.info(f"🧹 Uninstalling COSY ({backend.kind.value}) at {backend.handle}")
    results += run_steps(backend.remove_steps())
    logger.info("✅ COSY has been uninstalled.")
    return RunReport(backend, results)
