"""Ordered provision step execution."""
import logging
from typing import Iterable, List

from ..errors import CosyError
from ..models import ProvisionStep, StepOutcome, StepResult

logger = logging.getLogger("cosyctl.steps")


def run_steps(steps: Iterable[ProvisionStep]) -> List[StepResult]:
    """Run ``steps`` in order.

    A failing fatal step stops the run: its error is stamped with the step
    name and re-raised. A failing warn step is logged and the run continues.
    Only CosyError is treated as a step failure; anything else is a bug and
    propagates unchanged.

    Args:
        steps: Steps to execute

    Returns:
        One StepResult per executed step
    """
    results = []
    for step in steps:
        logger.info(f"▶️  {step.name}")
        try:
            step.action()
        except CosyError as e:
            if e.step is None:
                e.step = step.name
            if step.fatal:
                logger.error(f"❌ {step.name} failed: {e}")
                raise
            logger.warning(f"⚠️  {step.name}: {e}")
            results.append(StepResult(step.name, StepOutcome.WARNED, str(e)))
            continue
        results.append(StepResult(step.name, StepOutcome.OK))
    return results
