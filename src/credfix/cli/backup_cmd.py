"""credfix backup commands."""

from __future__ import annotations

import sys

import click
from rich.prompt import Confirm

from credfix.cli.common import EXIT_ISSUES, build_services, get_config, handle_errors
from credfix.core.output import console, print_backups


@click.group()
def backup():
    """List, verify, restore and clean up Docker config backups."""
    pass


@backup.command("list")
@click.option("--type", "backup_type", type=str, default=None, help="Only backups of this type (fix, consent)")
@click.pass_context
@handle_errors
def list_cmd(ctx: click.Context, backup_type: str | None):
    """Show backups, newest first."""
    store = build_services(get_config(ctx)).backups
    print_backups(store.list_backups(type=backup_type))


@backup.command()
@click.argument("backup_id")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@click.pass_context
@handle_errors
def restore(ctx: click.Context, backup_id: str, yes: bool):
    """Restore the files saved in BACKUP_ID."""
    store = build_services(get_config(ctx)).backups
    record = store.get_backup(backup_id)
    if record is None:
        console.print(f"\n  [red]No backup with id {backup_id}.[/red]\n")
        sys.exit(EXIT_ISSUES)

    for path in record.source_paths:
        console.print(f"  {path}")
    if not yes and not Confirm.ask("  Overwrite these files with the backup?", default=False):
        console.print("  [dim]Cancelled.[/dim]")
        return

    outcome = store.restore_backup(backup_id)
    color = "green" if outcome.success else "red"
    console.print(f"  [{color}]{outcome.message}[/{color}]")
    if not outcome.success:
        sys.exit(EXIT_ISSUES)


@backup.command()
@click.argument("backup_id")
@click.pass_context
@handle_errors
def delete(ctx: click.Context, backup_id: str):
    """Delete BACKUP_ID."""
    outcome = build_services(get_config(ctx)).backups.delete_backup(backup_id)
    color = "green" if outcome.success else "red"
    console.print(f"  [{color}]{outcome.message}[/{color}]")
    if not outcome.success:
        sys.exit(EXIT_ISSUES)


@backup.command()
@click.argument("backup_id")
@click.pass_context
@handle_errors
def verify(ctx: click.Context, backup_id: str):
    """Check BACKUP_ID against its checksums."""
    outcome = build_services(get_config(ctx)).backups.verify_backup(backup_id)
    color = "green" if outcome.success else "red"
    console.print(f"  [{color}]{outcome.message}[/{color}]")
    if not outcome.success:
        sys.exit(EXIT_ISSUES)


@backup.command()
@click.option("--dry-run", is_flag=True, help="Only list what would be deleted")
@click.pass_context
@handle_errors
def cleanup(ctx: click.Context, dry_run: bool):
    """Delete backups beyond the configured count and age limits."""
    config = get_config(ctx)
    store = build_services(config).backups
    doomed = store.cleanup(config.backup.max_backups, config.backup.max_age_days, dry_run=dry_run)
    if not doomed:
        console.print("  [dim]Nothing to clean up.[/dim]")
        return
    verb = "Would delete" if dry_run else "Deleted"
    console.print(f"  {verb} {len(doomed)} backup(s):")
    for backup_id in doomed:
        console.print(f"    - {backup_id}")


@backup.command()
@click.pass_context
@handle_errors
def stats(ctx: click.Context):
    """Show backup count, size and age range."""
    info = build_services(get_config(ctx)).backups.stats()
    console.print(f"  Backups:   {info['count']}")
    console.print(f"  Size:      {info['total_size']:,} bytes")
    console.print(f"  Oldest:    {info['oldest'] or '-'}")
    console.print(f"  Newest:    {info['newest'] or '-'}")
    console.print(f"  Directory: {info['backup_dir']}")
    for backup_type, count in sorted(info["by_type"].items()):
        console.print(f"    {backup_type}: {count}")
