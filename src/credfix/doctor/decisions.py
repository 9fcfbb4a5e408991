"""Decision providers for the doctor state machine.

The orchestrator asks the same questions whoever answers them: a person at
a terminal, a batch policy, or a test script.
"""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod

from rich.console import Console
from rich.prompt import Prompt

from credfix.core.models import Analysis, DiagnosticSession, Fix, FixProposal, Recommendation, Severity
from credfix.core.output import console as default_console
from credfix.core.output import format_diff, print_fix_list, print_fix_preview
from credfix.repair.consent import APPROVE, SKIP, VIEW_DIFF


class SummaryChoice(enum.Enum):
    FIX_CRITICAL = "fix-critical"
    REVIEW = "review"
    REPORT = "report"
    EXIT = "exit"


class OptionChoice(enum.Enum):
    FIX_SPECIFIC = "fix"
    APPLY_RECOMMENDATION = "recommendation"
    AUTO_FIX_ALL = "all"
    REPORT_ONLY = "report"
    EXIT = "exit"


class DecisionProvider(ABC):
    """Answers the orchestrator's questions."""

    @abstractmethod
    def summary_choice(self, session: DiagnosticSession) -> SummaryChoice: ...

    @abstractmethod
    def option_choice(self, analysis: Analysis) -> OptionChoice: ...

    @abstractmethod
    def select_fixes(self, analysis: Analysis) -> list[Fix]: ...

    @abstractmethod
    def select_recommendation(self, analysis: Analysis) -> Recommendation | None: ...

    @abstractmethod
    def review_proposal(self, proposal: FixProposal) -> str:
        """One of ``approve``, ``diff`` or ``skip``."""

    def show_diff(self, proposal: FixProposal) -> None:
        pass


class InteractiveDecisions(DecisionProvider):
    """Prompts on the terminal with rich."""

    def __init__(self, console: Console | None = None):
        self.console = console or default_console

    def summary_choice(self, session: DiagnosticSession) -> SummaryChoice:
        self.console.print()
        self.console.print("  [bold]1[/bold] Fix critical issues")
        self.console.print("  [bold]2[/bold] Review issues individually")
        self.console.print("  [bold]3[/bold] View full report")
        self.console.print("  [bold]4[/bold] Exit")
        answer = Prompt.ask("  Choose", choices=["1", "2", "3", "4"], default="1", console=self.console)
        return {
            "1": SummaryChoice.FIX_CRITICAL,
            "2": SummaryChoice.REVIEW,
            "3": SummaryChoice.REPORT,
            "4": SummaryChoice.EXIT,
        }[answer]

    def option_choice(self, analysis: Analysis) -> OptionChoice:
        if analysis.fixes:
            print_fix_list(analysis.fixes)
        self.console.print()
        self.console.print("  [bold]1[/bold] Fix specific issues")
        self.console.print("  [bold]2[/bold] Apply a recommendation")
        self.console.print("  [bold]3[/bold] Auto-fix everything fixable")
        self.console.print("  [bold]4[/bold] Report only")
        self.console.print("  [bold]5[/bold] Exit")
        answer = Prompt.ask("  Choose", choices=["1", "2", "3", "4", "5"], default="3", console=self.console)
        return {
            "1": OptionChoice.FIX_SPECIFIC,
            "2": OptionChoice.APPLY_RECOMMENDATION,
            "3": OptionChoice.AUTO_FIX_ALL,
            "4": OptionChoice.REPORT_ONLY,
            "5": OptionChoice.EXIT,
        }[answer]

    def select_fixes(self, analysis: Analysis) -> list[Fix]:
        if not analysis.fixes:
            return []
        for n, fix in enumerate(analysis.fixes, start=1):
            self.console.print(f"  [bold]{n}[/bold] {fix.title}  [dim]{fix.id}[/dim]")
        answer = Prompt.ask("  Fix numbers (comma separated)", default="1", console=self.console)
        chosen = []
        for part in answer.split(","):
            part = part.strip()
            if part.isdigit() and 1 <= int(part) <= len(analysis.fixes):
                fix = analysis.fixes[int(part) - 1]
                if fix not in chosen:
                    chosen.append(fix)
        return chosen

    def select_recommendation(self, analysis: Analysis) -> Recommendation | None:
        if not analysis.recommendations:
            return None
        for n, rec in enumerate(analysis.recommendations, start=1):
            self.console.print(f"  [bold]{n}[/bold] {rec.title}")
        choices = [str(n) for n in range(1, len(analysis.recommendations) + 1)]
        answer = Prompt.ask("  Recommendation", choices=choices, default="1", console=self.console)
        return analysis.recommendations[int(answer) - 1]

    def review_proposal(self, proposal: FixProposal) -> str:
        print_fix_preview(proposal)
        answer = Prompt.ask(
            "  Apply these changes?",
            choices=["y", "d", "n"],
            default="n",
            console=self.console,
        )
        return {"y": APPROVE, "d": VIEW_DIFF}.get(answer, SKIP)

    def show_diff(self, proposal: FixProposal) -> None:
        if not proposal.diff:
            self.console.print("  [dim]No file changes; only commands will run.[/dim]")
            return
        for line in format_diff(proposal.diff):
            self.console.print(line)


class AutomaticDecisions(DecisionProvider):
    """Batch mode: fix everything (or only critical issues), never prompt.

    Consent for the resulting proposals comes from the configured
    auto-approve policy, not from this provider.
    """

    def __init__(self, critical_only: bool = False, report_only: bool = False):
        self.critical_only = critical_only
        self.report_only = report_only

    def summary_choice(self, session: DiagnosticSession) -> SummaryChoice:
        if self.report_only:
            return SummaryChoice.REPORT
        return SummaryChoice.FIX_CRITICAL if self.critical_only else SummaryChoice.REVIEW

    def option_choice(self, analysis: Analysis) -> OptionChoice:
        return OptionChoice.REPORT_ONLY if self.report_only else OptionChoice.AUTO_FIX_ALL

    def select_fixes(self, analysis: Analysis) -> list[Fix]:
        return list(analysis.fixes)

    def select_recommendation(self, analysis: Analysis) -> Recommendation | None:
        for rec in analysis.recommendations:
            if rec.auto_fixable and rec.priority == Severity.CRITICAL:
                return rec
        return None

    def review_proposal(self, proposal: FixProposal) -> str:
        return SKIP


class ScriptedDecisions(DecisionProvider):
    """Replays queued answers; records every question asked."""

    def __init__(
        self,
        summary: list[SummaryChoice] | None = None,
        options: list[OptionChoice] | None = None,
        reviews: list[str] | None = None,
        fix_ids: list[str] | None = None,
        recommendation: str | None = None,
    ):
        self.summary = list(summary or [])
        self.options = list(options or [])
        self.reviews = list(reviews or [])
        self.fix_ids = fix_ids
        self.recommendation = recommendation
        self.asked: list[str] = []

    def summary_choice(self, session: DiagnosticSession) -> SummaryChoice:
        self.asked.append("summary")
        return self.summary.pop(0) if self.summary else SummaryChoice.EXIT

    def option_choice(self, analysis: Analysis) -> OptionChoice:
        self.asked.append("options")
        return self.options.pop(0) if self.options else OptionChoice.EXIT

    def select_fixes(self, analysis: Analysis) -> list[Fix]:
        self.asked.append("select_fixes")
        if self.fix_ids is None:
            return list(analysis.fixes)
        return [f for f in analysis.fixes if f.id in self.fix_ids]

    def select_recommendation(self, analysis: Analysis) -> Recommendation | None:
        self.asked.append("select_recommendation")
        for rec in analysis.recommendations:
            if self.recommendation is None or rec.title == self.recommendation:
                return rec
        return None

    def review_proposal(self, proposal: FixProposal) -> str:
        self.asked.append("review")
        return self.reviews.pop(0) if self.reviews else SKIP

    def show_diff(self, proposal: FixProposal) -> None:
        self.asked.append("diff")
