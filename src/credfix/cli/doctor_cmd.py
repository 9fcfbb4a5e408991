"""credfix doctor command."""

from __future__ import annotations

import asyncio
import sys

import click

from credfix.cli.common import build_services, event_spinner, exit_code_for, get_config, handle_errors
from credfix.core.output import (
    console,
    print_doctor_result,
    print_execution_summary,
    print_fix_result,
    print_report,
    print_summary,
)
from credfix.doctor.decisions import AutomaticDecisions, InteractiveDecisions, SummaryChoice
from credfix.doctor.orchestrator import DoctorState, Orchestrator


@click.command()
@click.option("--yes", "-y", is_flag=True, help="Non-interactive: fix everything the auto-approve policy allows")
@click.option("--critical-only", is_flag=True, help="With --yes, only fix critical issues")
@click.option("--dry-run", is_flag=True, help="Show what would change without changing anything")
@click.option("--report", "report_only", is_flag=True, help="Diagnose and report, never fix")
@click.option(
    "--allow-critical",
    is_flag=True,
    help="With --yes, also approve critical-risk fixes (logged override)",
)
@click.pass_context
@handle_errors
def doctor(
    ctx: click.Context,
    yes: bool,
    critical_only: bool,
    dry_run: bool,
    report_only: bool,
    allow_critical: bool,
):
    """Diagnose Docker credential problems and walk through fixing them.

    Runs a quick scan, shows a summary, then offers to fix critical issues,
    review them one by one, or just print the full report.
    """
    config = get_config(ctx)
    interactive = not (yes or report_only)
    if yes:
        config.fix.auto_approve = True
        config.fix.allow_critical_noninteractive = allow_critical or config.fix.allow_critical_noninteractive

    services = build_services(config)
    if interactive:
        decisions = _PrintingDecisions()
    else:
        decisions = AutomaticDecisions(critical_only=critical_only, report_only=report_only)

    orchestrator = Orchestrator(
        services.engine,
        services.repairer,
        services.consent(decisions, interactive),
        decisions,
        dry_run=dry_run or config.fix.dry_run,
    )

    if interactive:
        run = asyncio.run(orchestrator.run())
    else:
        with event_spinner(services.events):
            run = asyncio.run(orchestrator.run())
        if run.baseline is not None:
            print_summary(run.baseline)

    if run.baseline is not None and run.baseline.is_healthy and interactive:
        print_summary(run.baseline)

    reported = (DoctorState.OPTIONS_DISPLAYED, DoctorState.REPORT_ONLY) in run.transitions
    if reported and run.detailed is not None:
        print_report(run.detailed)

    if run.execution is not None:
        console.print()
        for outcome in run.execution.results:
            print_fix_result(outcome)
        print_execution_summary(run.execution)

    if run.state == DoctorState.DONE and run.result is not None:
        print_doctor_result(run.result)
        sys.exit(exit_code_for(run.result))


class _PrintingDecisions(InteractiveDecisions):
    """Interactive decisions that print the scan summary before asking."""

    def summary_choice(self, session) -> SummaryChoice:
        print_summary(session)
        return super().summary_choice(session)
