"""Click CLI entry point for credfix."""

from __future__ import annotations

import sys
from pathlib import Path

import click

from credfix._version import __version__
from credfix.core.config import load_config
from credfix.core.errors import SettingsError
from credfix.core.log import setup_logging
from credfix.core.output import error_console


@click.group()
@click.version_option(version=__version__, prog_name="credfix")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
@click.option("--log-file", type=click.Path(path_type=Path), default=None, help="Also write logs to this file")
@click.option("--config", "config_path", type=click.Path(path_type=Path), default=None, help="Path to credfix.toml")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, log_file: Path | None, config_path: Path | None):
    """credfix - Docker credential helper doctor.

    Find out why `docker login` and `docker pull` fail with
    "error getting credentials", and fix it with a backup first.
    """
    try:
        config = load_config(config_path)
    except SettingsError as e:
        error_console.print(f"\n  [red]Error:[/red] {e.message}")
        error_console.print(f"  [dim]{e.suggestion}[/dim]\n")
        sys.exit(2)

    setup_logging(config.general.log_level, verbose=verbose, log_file=log_file)
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


# Import and register subcommands
from credfix.cli.doctor_cmd import doctor  # noqa: E402
from credfix.cli.scan_cmd import scan  # noqa: E402
from credfix.cli.fix_cmd import fix  # noqa: E402
from credfix.cli.backup_cmd import backup  # noqa: E402
from credfix.cli.dashboard_cmd import dashboard  # noqa: E402

cli.add_command(doctor)
cli.add_command(scan)
cli.add_command(fix)
cli.add_command(backup)
cli.add_command(dashboard)


if __name__ == "__main__":
    cli()
