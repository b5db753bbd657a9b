import typer

from ..models import BackendKind
from ..modules import engine
from ..modules.request import build_install_request
from . import CONTEXT_SETTINGS, print_report, reporting_errors

app = typer.Typer(help="Install COSY", context_settings=CONTEXT_SETTINGS, no_args_is_help=True)


def _install(request) -> None:
    report = engine.install(request)
    typer.echo("")
    print_report(report, report.backend.summary_lines())


@app.command("compose")
def install_compose_cmd(
    path: str = typer.Option(None, "--path", help="Base directory; COSY goes into <path>/cosy (default: /opt)"),
    port: str = typer.Option(None, "--port", help="Host port the web app is exposed on (default: 80)"),
    username: str = typer.Option(None, "--username", help="Admin account username (default: admin)"),
    domain: str = typer.Option(None, "--domain", help="Domain the app is reached at (default: localhost)"),
    default: bool = typer.Option(False, "--default", help="Use defaults for anything not given; never prompt"),
):
    """Install COSY on this host with Docker Compose."""
    with reporting_errors():
        request = build_install_request(BackendKind.COMPOSE, path, port, username, domain, default)
        _install(request)


@app.command("cluster")
def install_cluster_cmd(
    namespace: str = typer.Option(None, "--namespace", help="Kubernetes namespace (default: cosy)"),
    username: str = typer.Option(None, "--username", help="Admin account username (default: admin)"),
    domain: str = typer.Option(None, "--domain", help="Ingress host name (default: localhost)"),
    default: bool = typer.Option(False, "--default", help="Use defaults for anything not given; never prompt"),
):
    """Install COSY into a Kubernetes cluster."""
    with reporting_errors():
        request = build_install_request(BackendKind.CLUSTER, namespace, None, username, domain, default)
        _install(request)
