import logging

import typer

from cosyctl.commands import CONTEXT_SETTINGS, install, uninstall
from cosyctl.logging import setup_logging

app = typer.Typer(
    help="Install and uninstall the COSY stack.",
    context_settings=CONTEXT_SETTINGS,
    no_args_is_help=True,
)

# Add all command groups
app.add_typer(install.app, name="install")
app.add_typer(uninstall.app, name="uninstall")


# Global options callback
@app.callback()
def main(
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug logging"),
):
    """cosyctl - COSY installer."""
    setup_logging(debug)
    if debug:
        logging.debug("Debug mode enabled")


if __name__ == "__main__":
    app()
