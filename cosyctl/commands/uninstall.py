import typer

from ..models import BackendKind
from ..modules import engine
from ..modules.request import build_uninstall_request
from . import CONTEXT_SETTINGS, print_report, reporting_errors

app = typer.Typer(help="Uninstall COSY", context_settings=CONTEXT_SETTINGS, no_args_is_help=True)


@app.command("compose")
def uninstall_compose_cmd(
    path: str = typer.Option(None, "--path", help="Base directory that contains the cosy/ folder (default: /opt)"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
):
    """Stop COSY and delete its containers, volumes and files."""
    with reporting_errors():
        request = build_uninstall_request(BackendKind.COMPOSE, path, yes)
        report = engine.uninstall(request, assume_yes=yes)
        print_report(report, ["COSY has been uninstalled."])


@app.command("cluster")
def uninstall_cluster_cmd(
    namespace: str = typer.Option(None, "--namespace", help="Namespace COSY was installed into (default: cosy)"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
):
    """Delete the COSY namespace and everything in it."""
    with reporting_errors():
        request = build_uninstall_request(BackendKind.CLUSTER, namespace, yes)
        report = engine.uninstall(request, assume_yes=yes)
        print_report(report, ["COSY has been uninstalled."])
