"""Shared wiring for credfix commands."""

from __future__ import annotations

import functools
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

import click

from credfix.core.config import CredfixConfig, get_backup_dir
from credfix.core.errors import CredfixError
from credfix.core.events import EventBroadcaster
from credfix.core.models import DoctorResult, ResultKind
from credfix.core.output import error_console, get_progress
from credfix.core.process import ProcessRunner
from credfix.diagnostics.engine import DiagnosticEngine
from credfix.doctor.decisions import DecisionProvider
from credfix.repair.backup import BackupStore
from credfix.repair.consent import ConsentFlow
from credfix.repair.repairer import CredentialRepairer

EXIT_OK = 0
EXIT_ISSUES = 1
EXIT_ERROR = 2
EXIT_CANCELLED = 130


@dataclass
class Services:
    """The core components a command needs, built from one config."""

    config: CredfixConfig
    events: EventBroadcaster
    runner: ProcessRunner
    backups: BackupStore
    engine: DiagnosticEngine
    repairer: CredentialRepairer

    def consent(
        self, decisions: DecisionProvider | None, interactive: bool, auto_approve: bool = True
    ) -> ConsentFlow:
        return ConsentFlow(self.repairer, self.backups, self.config, decisions, interactive, auto_approve)


def build_services(config: CredfixConfig, events: EventBroadcaster | None = None) -> Services:
    events = events or EventBroadcaster()
    runner = ProcessRunner(timeout=config.general.timeout)
    backups = BackupStore(get_backup_dir(config), encrypt=config.backup.encrypt)
    return Services(
        config=config,
        events=events,
        runner=runner,
        backups=backups,
        engine=DiagnosticEngine(runner, config, events),
        repairer=CredentialRepairer(runner, config, backups, events),
    )


@contextmanager
def event_spinner(events: EventBroadcaster):
    """Show scan and fix progress events on a spinner while the block runs."""
    with get_progress() as progress:
        task = progress.add_task("Starting...", total=None)

        def on_event(event: dict) -> None:
            if event.get("message"):
                progress.update(task, description=event["message"])

        unsubscribe = events.subscribe(on_event)
        try:
            yield
        finally:
            unsubscribe()


def get_config(ctx: click.Context) -> CredfixConfig:
    return ctx.obj["config"]


def reports_dir(config: CredfixConfig) -> Path:
    path = get_backup_dir(config).parent / "reports"
    path.mkdir(parents=True, exist_ok=True)
    return path


def exit_code_for(result: DoctorResult) -> int:
    if result.kind == ResultKind.HEALTHY:
        return EXIT_OK
    if result.kind == ResultKind.USER_CANCELLED:
        return EXIT_CANCELLED
    if result.kind == ResultKind.FIXES_APPLIED:
        failed = result.summary.failed if result.summary else 0
        return EXIT_ISSUES if failed else EXIT_OK
    return EXIT_ISSUES


def handle_errors(func):
    """Turn credfix errors into a message, a suggestion and exit status 2."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except CredfixError as e:
            error_console.print(f"\n  [red]Error:[/red] {e.message}")
            error_console.print(f"  [dim]{e.suggestion}[/dim]\n")
            sys.exit(EXIT_ERROR)
        except KeyboardInterrupt:
            error_console.print("\n  [yellow]Interrupted.[/yellow]\n")
            sys.exit(EXIT_CANCELLED)

    return wrapper
