"""credfix dashboard command."""

from __future__ import annotations

import click

from credfix.cli.common import build_services, get_config, handle_errors
from credfix.core.output import console


@click.command()
@click.option("--port", type=int, default=None, help="Port to serve on (default: 7654)")
@click.option("--no-open", is_flag=True, help="Don't auto-open browser")
@click.pass_context
@handle_errors
def dashboard(ctx: click.Context, port: int | None, no_open: bool):
    """Open the localhost dashboard.

    Serves a web UI on http://localhost:7654 that runs real scans and
    applies fixes through the same backup and consent flow as the CLI.
    """
    config = get_config(ctx)

    effective_port = port or config.dashboard.port
    auto_open = not no_open and config.dashboard.auto_open_browser

    console.print("\n  [bold]credfix Dashboard[/bold]")
    console.print(f"  Starting on http://localhost:{effective_port}")

    try:
        from credfix.dashboard.server import DashboardServer
        server = DashboardServer(build_services(config), port=effective_port)
        server.start(open_browser=auto_open)
    except KeyboardInterrupt:
        console.print("\n  Dashboard stopped.")
