"""credfix fix command."""

from __future__ import annotations

import asyncio
import sys

import click

from credfix.cli.common import (
    EXIT_CANCELLED,
    EXIT_ISSUES,
    EXIT_OK,
    build_services,
    event_spinner,
    get_config,
    handle_errors,
)
from credfix.core.output import (
    console,
    format_issue,
    print_execution_summary,
    print_fix_list,
    print_fix_result,
)
from credfix.doctor.decisions import InteractiveDecisions


@click.command()
@click.argument("fix_id", required=False)
@click.option("--all", "fix_all", is_flag=True, help="Fix all auto-fixable issues")
@click.option("--dry-run", is_flag=True, help="Show the diff and commands without applying them")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompts (auto-approve policy applies)")
@click.option("--stop-on-failure", is_flag=True, help="Stop at the first fix that fails")
@click.pass_context
@handle_errors
def fix(ctx: click.Context, fix_id: str | None, fix_all: bool, dry_run: bool, yes: bool, stop_on_failure: bool):
    """Fix Docker credential issues found by a scan.

    Pass a FIX_ID (or the issue id it targets) or use --all for every
    automatic fix. Config files are backed up before they change.
    """
    config = get_config(ctx)
    if yes:
        config.fix.auto_approve = True
    services = build_services(config)

    with event_spinner(services.events):
        session = services.engine.run()
    analysis = services.repairer.analyze_and_repair(session)

    if not analysis.issues:
        console.print("\n  [green]No issues found. Nothing to fix.[/green]\n")
        sys.exit(EXIT_OK)

    if fix_id:
        fixes = [f for f in analysis.fixes if fix_id == f.id or fix_id in f.target_issue_ids]
        if not fixes:
            console.print(f"\n  [red]No automatic fix {fix_id} in the current scan.[/red]")
            manual = [i for i in analysis.manual if i.id == fix_id]
            for issue in manual:
                console.print(format_issue(issue))
            console.print("  Run `credfix fix` to list available fixes.\n")
            sys.exit(EXIT_ISSUES)
    elif fix_all:
        fixes = list(analysis.fixes)
    else:
        if analysis.fixes:
            console.print("\n  [bold]Available fixes:[/bold]")
            print_fix_list(analysis.fixes)
        if analysis.manual:
            console.print("\n  [dim]Needs manual attention:[/dim]")
            for issue in analysis.manual:
                console.print(format_issue(issue))
        console.print("\n  Usage: credfix fix <FIX_ID> or credfix fix --all\n")
        sys.exit(EXIT_ISSUES)

    if not fixes:
        console.print("\n  No automatic fixes available; see `credfix scan` for manual steps.\n")
        sys.exit(EXIT_ISSUES)

    dry_run = dry_run or config.fix.dry_run
    backup = None
    if not dry_run:
        consent = services.consent(InteractiveDecisions(), interactive=not yes)
        proposal = consent.propose(fixes)
        decision = consent.get_consent(proposal)
        if not decision.approved:
            console.print(f"  [yellow]Not applied: {decision.reason}[/yellow]")
            console.print(f"  [dim]Backup {proposal.backup.id} was taken; nothing was changed.[/dim]\n")
            sys.exit(EXIT_CANCELLED)
        backup = proposal.backup

    summary = asyncio.run(services.repairer.execute_fixes(
        fixes,
        dry_run=dry_run,
        stop_on_failure=stop_on_failure or config.fix.stop_on_failure,
        backup=backup,
        session_id=session.id,
    ))

    console.print()
    for outcome in summary.results:
        print_fix_result(outcome)
    print_execution_summary(summary)

    if not dry_run:
        after = services.engine.run()
        console.print(f"  Issues: {len(analysis.issues)} -> {len(after.issues)}\n")
    sys.exit(EXIT_ISSUES if summary.failed else EXIT_OK)
