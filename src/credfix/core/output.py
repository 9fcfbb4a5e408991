"""Rich terminal formatting for credfix output."""

from __future__ import annotations

from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from credfix.core.models import (
    BackupRecord,
    DiagnosticSession,
    DoctorResult,
    ExecutionSummary,
    Fix,
    FixOutcome,
    FixProposal,
    Issue,
    ResultKind,
    RiskLevel,
    Severity,
)

console = Console()
error_console = Console(stderr=True)


SEVERITY_ICONS = {
    Severity.CRITICAL: "[red]●[/red]",
    Severity.HIGH: "[bright_red]●[/bright_red]",
    Severity.MEDIUM: "[yellow]●[/yellow]",
    Severity.LOW: "[blue]●[/blue]",
}

SEVERITY_COLORS = {
    Severity.CRITICAL: "red",
    Severity.HIGH: "bright_red",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "blue",
}

RISK_COLORS = {
    RiskLevel.LOW: "green",
    RiskLevel.MEDIUM: "yellow",
    RiskLevel.HIGH: "bright_red",
    RiskLevel.CRITICAL: "red",
}


def session_color(session: DiagnosticSession) -> str:
    counts = session.severity_counts
    if counts["critical"]:
        return "red"
    if counts["high"] or counts["medium"]:
        return "yellow"
    return "green"


def format_issue(issue: Issue) -> str:
    """Format a single issue for terminal output."""
    icon = SEVERITY_ICONS.get(issue.severity, "●")
    fix_label = " [dim](auto)[/dim]" if issue.auto_fixable else ""
    lines = [f"  {icon} {issue.code}  {issue.description}{fix_label}"]
    if issue.evidence:
        lines.append(f"     [dim]{issue.evidence}[/dim]")
    if issue.suggestion:
        lines.append(f"     Fix: {issue.suggestion}")
    return "\n".join(lines)


def format_diff(diff: str) -> list[str]:
    lines = []
    for diff_line in diff.splitlines():
        if diff_line.startswith("---") or diff_line.startswith("+++"):
            lines.append(f"  [bold]{diff_line}[/bold]")
        elif diff_line.startswith("-"):
            lines.append(f"  [red]{diff_line}[/red]")
        elif diff_line.startswith("+"):
            lines.append(f"  [green]{diff_line}[/green]")
        elif diff_line.startswith("@@"):
            lines.append(f"  [cyan]{diff_line}[/cyan]")
        else:
            lines.append(f"  {diff_line}")
    return lines


def print_summary(session: DiagnosticSession) -> None:
    """Print the quick-scan summary: counts by severity and the platform."""
    color = session_color(session)
    counts = session.severity_counts
    info = session.platform

    lines = [""]
    if info is not None:
        lines.append(f"  Platform:   {info.os_family.value} ({info.arch})")
        lines.append(f"  Docker:     {info.docker_version or '[red]not found[/red]'}")
        helper = info.credential_helper or "[red]none[/red]"
        lines.append(f"  Helper:     {helper}  [dim]{info.helper_status.value}[/dim]")
        lines.append("")

    if session.is_healthy:
        lines.append("  [green]✅ No issues found. Docker credentials look healthy.[/green]")
    else:
        for severity in Severity:
            n = counts[severity.value]
            if n:
                lines.append(f"  {SEVERITY_ICONS[severity]} {severity.value.capitalize():<9} {n}")
        fixable = sum(1 for i in session.issues if i.auto_fixable)
        lines.append("")
        lines.append(f"  {fixable} auto-fixable | {len(session.issues) - fixable} manual")

    if session.errors:
        lines.append("")
        lines.append(f"  [yellow]{len(session.errors)} check(s) could not run[/yellow]")

    lines.append("")
    lines.append(f"  [dim]Session {session.id} | {session.duration:.1f}s[/dim]")

    console.print(Panel(
        "\n".join(lines),
        title="[bold]Docker Credential Health[/bold]",
        border_style=color,
        padding=(0, 1),
    ))


def print_issues(issues: list[Issue]) -> None:
    for issue in issues:
        console.print(format_issue(issue))
        console.print()


def print_report(session: DiagnosticSession) -> None:
    """Print the full report: summary, issues, warnings, recommendations."""
    print_summary(session)
    if session.issues:
        console.print()
        print_issues(session.issues)

    warnings = []
    if session.docker is not None:
        for section in session.docker.sections():
            warnings.extend(section.warnings)
    if session.probes is not None:
        warnings.extend(session.probes.facts.get("warnings", []))
    if warnings:
        console.print("  [yellow]Warnings:[/yellow]")
        for warning in warnings:
            console.print(f"    - {warning}")
        console.print()

    if session.recommendations:
        table = Table(title="Recommendations", show_lines=False)
        table.add_column("Priority", style="bold")
        table.add_column("Recommendation")
        table.add_column("Actions")
        for rec in session.recommendations:
            color = SEVERITY_COLORS[rec.priority]
            table.add_row(
                f"[{color}]{rec.priority.value}[/{color}]",
                f"{rec.title}\n[dim]{rec.description}[/dim]",
                "\n".join(rec.actions),
            )
        console.print(table)

    for error in session.errors:
        console.print(f"  [yellow]! {error.probe}:[/yellow] {error.message}")
        console.print(f"    [dim]{error.suggestion}[/dim]")


def print_fix_list(fixes: list[Fix]) -> None:
    table = Table(show_header=True)
    table.add_column("Fix")
    table.add_column("Title")
    table.add_column("Risk")
    table.add_column("Notes")
    for fix in fixes:
        color = RISK_COLORS[fix.risk_level]
        notes = []
        if fix.requires_sudo:
            notes.append("sudo")
        if fix.requires_restart:
            notes.append("restart")
        if fix.requires_reauth:
            notes.append("re-login")
        table.add_row(fix.id, fix.title, f"[{color}]{fix.risk_level.value}[/{color}]", ", ".join(notes))
    console.print(table)


def print_fix_preview(proposal: FixProposal) -> None:
    """Print a consent proposal: risk, affected resources, backup and diff."""
    color = RISK_COLORS[proposal.risk]
    lines = [f"  Risk: [{color}]{proposal.risk.value.upper()}[/{color}]", ""]
    lines.append(f"  {proposal.description}")
    lines.append("")

    for fix in proposal.fixes:
        lines.append(f"  [bold]{fix.title}[/bold]")
        for action in fix.actions:
            lines.append(f"    - {action.describe()}")

    if proposal.affected:
        lines.append("")
        lines.append("  [yellow]Affected:[/yellow]")
        for item in proposal.affected:
            lines.append(f"    - {item}")

    if proposal.backup is not None:
        lines.append("")
        lines.append(f"  Backup: [cyan]{proposal.backup.id}[/cyan]")

    if proposal.diff:
        lines.append("")
        lines.extend(format_diff(proposal.diff))

    manual = [step for fix in proposal.fixes for step in fix.manual_steps]
    if manual:
        lines.append("")
        lines.append("  [cyan]Manual steps required:[/cyan]")
        for step in manual:
            lines.append(f"    - {step}")

    console.print(Panel(
        "\n".join(lines),
        title="[bold]Fix Preview[/bold]",
        border_style=color,
        padding=(0, 1),
    ))


def print_fix_result(result: FixOutcome) -> None:
    """Print a single fix result."""
    tag = " [dim](dry run)[/dim]" if result.dry_run else ""
    if result.success:
        console.print(f"  [green]✅ {result.fix_id}[/green]  {result.message}{tag}")
    else:
        console.print(f"  [red]❌ {result.fix_id}[/red]  {result.message}{tag}")
        if result.suggestion:
            console.print(f"     [cyan]-> {result.suggestion}[/cyan]")
    if result.dry_run and result.diff:
        for line in format_diff(result.diff):
            console.print(line)


def print_execution_summary(summary: ExecutionSummary) -> None:
    """Print summary after applying fixes, with explicit next steps."""
    console.print()
    if summary.dry_run:
        console.print(f"  [cyan]{summary.executed} fix(es) simulated. Nothing was changed.[/cyan]")
    else:
        if summary.successful:
            console.print(f"  [green]{summary.successful} fix(es) applied.[/green]")
        if summary.failed:
            console.print(f"  [red]{summary.failed} fix(es) failed.[/red]")

    if summary.next_steps:
        console.print()
        console.print("  [bold]Next steps:[/bold]")
        for step in summary.next_steps:
            console.print(f"    -> {step}")
    if not summary.dry_run and summary.successful:
        console.print("  [dim]Run `credfix backup list` to see the backups taken.[/dim]")
    console.print()


def print_doctor_result(result: DoctorResult) -> None:
    if result.kind == ResultKind.HEALTHY:
        console.print("  [green]✅ Healthy. Nothing to fix.[/green]")
    elif result.kind == ResultKind.USER_CANCELLED:
        console.print("  [yellow]Cancelled. No changes were made.[/yellow]")
    elif result.kind == ResultKind.ISSUES_FOUND:
        console.print(f"  [yellow]{result.remaining_count} issue(s) remain.[/yellow]")
    else:
        console.print(
            f"  Issues before: {result.baseline_count}  after: {result.remaining_count}"
        )
        for issue in result.remaining:
            console.print(format_issue(issue))
    if result.message:
        console.print(f"  [dim]{result.message}[/dim]")


def print_backups(records: list[BackupRecord]) -> None:
    if not records:
        console.print("  [dim]No backups.[/dim]")
        return
    table = Table(show_header=True)
    table.add_column("ID")
    table.add_column("Created")
    table.add_column("Type")
    table.add_column("Files")
    table.add_column("Description")
    for record in records:
        files = ", ".join(str(p) for p in record.source_paths)
        lock = " \U0001f512" if record.encrypted else ""
        table.add_row(
            record.id,
            record.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            record.type,
            files + lock,
            record.description,
        )
    console.print(table)


def get_progress() -> Progress:
    """Create a progress instance for scanning."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    )
