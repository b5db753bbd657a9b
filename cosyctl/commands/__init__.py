import logging
from contextlib import contextmanager

import typer

from ..errors import CosyError, UserCancelled
from ..modules.engine import RunReport

logger = logging.getLogger("cosyctl.commands")

CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}


@contextmanager
def reporting_errors():
    """Turn cosyctl errors into a diagnostic and the matching exit code."""
    try:
        yield
    except UserCancelled as e:
        typer.echo(f"ℹ️  {e}")
        raise typer.Exit(code=e.exit_code)
    except CosyError as e:
        where = f"{e.step}: " if e.step else ""
        logger.error(f"❌ {where}{e}")
        if e.remediation:
            logger.error(f"👉 {e.remediation}")
        raise typer.Exit(code=e.exit_code)


def print_report(report: RunReport, lines=None) -> None:
    for warning in report.warnings:
        typer.echo(f"⚠️  {warning.name}: {warning.message}")
    for line in lines or []:
        typer.echo(line)


__all__ = ['CONTEXT_SETTINGS', 'print_report', 'reporting_errors']
