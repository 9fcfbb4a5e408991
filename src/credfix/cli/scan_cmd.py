"""credfix scan command."""

from __future__ import annotations

import json
import sys

import click

from credfix.cli.common import (
    EXIT_ISSUES,
    EXIT_OK,
    build_services,
    event_spinner,
    get_config,
    handle_errors,
    reports_dir,
)
from credfix.core.output import console, print_report
from credfix.core.serialize import session_to_dict, session_to_html


@click.command()
@click.option("--export", "export_fmt", type=click.Choice(["html", "json"]), help="Export report format")
@click.option("--json", "as_json", is_flag=True, help="Print the session as JSON instead of the report")
@click.option("--no-registry", is_flag=True, help="Skip the registry pull probe")
@click.pass_context
@handle_errors
def scan(ctx: click.Context, export_fmt: str | None, as_json: bool, no_registry: bool):
    """Scan for Docker credential problems without changing anything.

    Exits 0 when healthy and 1 when issues were found.
    """
    config = get_config(ctx)
    if no_registry:
        config.scan.registry_probe = False

    services = build_services(config)
    if as_json:
        session = services.engine.run()
        click.echo(json.dumps(session_to_dict(session), indent=2, default=str))
        sys.exit(EXIT_OK if session.is_healthy else EXIT_ISSUES)

    with event_spinner(services.events):
        session = services.engine.run()

    print_report(session)

    if export_fmt == "json":
        out_file = reports_dir(config) / f"scan-{session.id}.json"
        out_file.write_text(json.dumps(session_to_dict(session), indent=2, default=str))
        console.print(f"\n  [dim]JSON report saved to {out_file}[/dim]")
    elif export_fmt == "html":
        out_file = reports_dir(config) / f"scan-{session.id}.html"
        out_file.write_text(session_to_html(session))
        console.print(f"\n  [dim]HTML report saved to {out_file}[/dim]")

    if not session.is_healthy:
        console.print("\n  Fix: [bold]credfix fix --all[/bold]   Guided: [bold]credfix doctor[/bold]\n")
    sys.exit(EXIT_OK if session.is_healthy else EXIT_ISSUES)
