"""The doctor: an explicit state machine from quick scan to verification.

Exit is only offered at ``SUMMARIZED`` and ``OPTIONS_DISPLAYED``; nothing
mutates the host before a proposal has been approved.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field

from credfix.core.errors import BackupFailure
from credfix.core.models import (
    Analysis,
    DiagnosticSession,
    DoctorResult,
    ExecutionSummary,
    Fix,
    ResultKind,
    Severity,
    severity_counts,
)
from credfix.diagnostics.engine import DiagnosticEngine
from credfix.doctor.decisions import DecisionProvider, OptionChoice, SummaryChoice
from credfix.repair.consent import ConsentFlow
from credfix.repair.repairer import CredentialRepairer

logger = logging.getLogger("credfix.doctor")


class DoctorState(enum.Enum):
    IDLE = "idle"
    QUICK_SCANNING = "quick-scanning"
    SUMMARIZED = "summarized"
    DETAILED_ANALYZING = "detailed-analyzing"
    OPTIONS_DISPLAYED = "options-displayed"
    FIXING_SPECIFIC = "fixing-specific"
    APPLYING_RECOMMENDATION = "applying-recommendation"
    AUTO_FIXING_ALL = "auto-fixing-all"
    REPORT_ONLY = "report-only"
    VERIFYING = "verifying"
    EXIT = "exit"
    DONE = "done"


TRANSITIONS: dict[DoctorState, set[DoctorState]] = {
    DoctorState.IDLE: {DoctorState.QUICK_SCANNING},
    DoctorState.QUICK_SCANNING: {DoctorState.SUMMARIZED, DoctorState.DONE},
    DoctorState.SUMMARIZED: {DoctorState.EXIT, DoctorState.DETAILED_ANALYZING},
    DoctorState.DETAILED_ANALYZING: {DoctorState.OPTIONS_DISPLAYED},
    DoctorState.OPTIONS_DISPLAYED: {
        DoctorState.EXIT,
        DoctorState.FIXING_SPECIFIC,
        DoctorState.APPLYING_RECOMMENDATION,
        DoctorState.AUTO_FIXING_ALL,
        DoctorState.REPORT_ONLY,
    },
    DoctorState.FIXING_SPECIFIC: {DoctorState.VERIFYING, DoctorState.DONE},
    DoctorState.APPLYING_RECOMMENDATION: {DoctorState.VERIFYING, DoctorState.DONE},
    DoctorState.AUTO_FIXING_ALL: {DoctorState.VERIFYING, DoctorState.DONE},
    DoctorState.REPORT_ONLY: {DoctorState.DONE},
    DoctorState.VERIFYING: {DoctorState.DONE},
    DoctorState.EXIT: {DoctorState.DONE},
    DoctorState.DONE: set(),
}

OPTION_STATES = {
    OptionChoice.FIX_SPECIFIC: DoctorState.FIXING_SPECIFIC,
    OptionChoice.APPLY_RECOMMENDATION: DoctorState.APPLYING_RECOMMENDATION,
    OptionChoice.AUTO_FIX_ALL: DoctorState.AUTO_FIXING_ALL,
    OptionChoice.REPORT_ONLY: DoctorState.REPORT_ONLY,
    OptionChoice.EXIT: DoctorState.EXIT,
}


@dataclass
class DoctorRun:
    """Everything the doctor saw and did in one run."""

    state: DoctorState = DoctorState.IDLE
    transitions: list[tuple[DoctorState, DoctorState]] = field(default_factory=list)
    baseline: DiagnosticSession | None = None
    detailed: DiagnosticSession | None = None
    analysis: Analysis | None = None
    summary_choice: SummaryChoice | None = None
    selected: list[Fix] = field(default_factory=list)
    execution: ExecutionSummary | None = None
    verification: DiagnosticSession | None = None
    result: DoctorResult | None = None


class Orchestrator:
    """Runs the doctor flow over an engine, a repairer and a consent flow."""

    def __init__(
        self,
        engine: DiagnosticEngine,
        repairer: CredentialRepairer,
        consent: ConsentFlow,
        decisions: DecisionProvider,
        dry_run: bool = False,
    ):
        self.engine = engine
        self.repairer = repairer
        self.consent = consent
        self.decisions = decisions
        self.dry_run = dry_run
        self.run_state = DoctorRun()

    @property
    def state(self) -> DoctorState:
        return self.run_state.state

    def transition(self, target: DoctorState) -> None:
        current = self.run_state.state
        if target not in TRANSITIONS[current]:
            raise RuntimeError(f"Invalid doctor transition {current.value} -> {target.value}")
        logger.debug("doctor: %s -> %s", current.value, target.value)
        self.run_state.transitions.append((current, target))
        self.run_state.state = target

    async def run(self) -> DoctorRun:
        run = self.run_state

        self.transition(DoctorState.QUICK_SCANNING)
        run.baseline = await self.engine.quick_scan()
        if run.baseline.is_healthy:
            self.transition(DoctorState.DONE)
            return self._finish(DoctorResult(
                kind=ResultKind.HEALTHY,
                session_id=run.baseline.id,
                severity_counts=run.baseline.severity_counts,
                message="No issues found",
            ))

        self.transition(DoctorState.SUMMARIZED)
        run.summary_choice = self.decisions.summary_choice(run.baseline)
        if run.summary_choice == SummaryChoice.EXIT:
            return self._cancel("Exited after the summary")

        self.transition(DoctorState.DETAILED_ANALYZING)
        run.detailed = await self.engine.quick_scan()
        run.analysis = self.repairer.analyze_and_repair(run.detailed)

        self.transition(DoctorState.OPTIONS_DISPLAYED)
        if run.summary_choice == SummaryChoice.FIX_CRITICAL:
            choice = OptionChoice.FIX_SPECIFIC
            run.selected = self._critical_fixes(run.analysis)
        elif run.summary_choice == SummaryChoice.REPORT:
            choice = OptionChoice.REPORT_ONLY
        else:
            choice = self.decisions.option_choice(run.analysis)
        self.transition(OPTION_STATES[choice])

        if choice == OptionChoice.EXIT:
            return self._cancel("Exited at the options menu")
        if choice == OptionChoice.REPORT_ONLY:
            self.transition(DoctorState.DONE)
            return self._finish(self._issues_found(run.detailed, "Report only; nothing was changed"))

        if choice == OptionChoice.FIX_SPECIFIC and run.summary_choice != SummaryChoice.FIX_CRITICAL:
            run.selected = self.decisions.select_fixes(run.analysis)
        elif choice == OptionChoice.APPLY_RECOMMENDATION:
            run.selected = self._recommended_fixes(run.analysis)
        elif choice == OptionChoice.AUTO_FIX_ALL:
            run.selected = list(run.analysis.fixes)

        if not run.selected:
            self.transition(DoctorState.DONE)
            return self._finish(self._issues_found(run.detailed, "No automatic fixes selected"))

        return await self._execute(run.selected)

    async def _execute(self, fixes: list[Fix]) -> DoctorRun:
        run = self.run_state
        session_id = run.baseline.id

        if self.dry_run:
            run.execution = await self.repairer.execute_fixes(fixes, dry_run=True, session_id=session_id)
            self.transition(DoctorState.DONE)
            result = self._issues_found(run.detailed, f"{len(run.execution.results)} fix(es) simulated (dry run)")
            result.summary = run.execution
            return self._finish(result)

        try:
            proposal = self.consent.propose(fixes)
        except BackupFailure as e:
            logger.error("Backup failed, nothing changed: %s", e.message)
            self.transition(DoctorState.DONE)
            return self._finish(self._issues_found(run.detailed, f"{e.message}. {e.suggestion}"))

        decision = self.consent.get_consent(proposal)
        if not decision.approved:
            logger.info("Proposal not approved: %s", decision.reason)
            self.transition(DoctorState.DONE)
            return self._finish(DoctorResult(
                kind=ResultKind.USER_CANCELLED,
                session_id=session_id,
                severity_counts=run.baseline.severity_counts,
                baseline_count=len(run.baseline.issues),
                remaining=list(run.detailed.issues),
                message=decision.reason,
            ))
        run.execution = await self.repairer.execute_fixes(
            fixes, dry_run=False, backup=proposal.backup, session_id=session_id
        )

        self.transition(DoctorState.VERIFYING)
        run.verification = await self.engine.quick_scan()
        remaining = run.verification.issues
        self.transition(DoctorState.DONE)
        return self._finish(DoctorResult(
            kind=ResultKind.FIXES_APPLIED,
            session_id=session_id,
            severity_counts=severity_counts(remaining),
            summary=run.execution,
            baseline_count=len(run.baseline.issues),
            remaining=list(remaining),
            message=f"{len(run.baseline.issues)} issue(s) before, {len(remaining)} after",
        ))

    def _critical_fixes(self, analysis: Analysis) -> list[Fix]:
        critical = {i.id for i in analysis.issues if i.severity == Severity.CRITICAL}
        return [f for f in analysis.fixes if critical.intersection(f.target_issue_ids)]

    def _recommended_fixes(self, analysis: Analysis) -> list[Fix]:
        rec = self.decisions.select_recommendation(analysis)
        if rec is None or not rec.issue_code:
            return []
        targets = {i.id for i in analysis.issues if i.code == rec.issue_code}
        return [f for f in analysis.fixes if targets.intersection(f.target_issue_ids)]

    def _issues_found(self, session: DiagnosticSession, message: str) -> DoctorResult:
        return DoctorResult(
            kind=ResultKind.ISSUES_FOUND,
            session_id=self.run_state.baseline.id,
            severity_counts=session.severity_counts,
            baseline_count=len(self.run_state.baseline.issues),
            remaining=list(session.issues),
            message=message,
        )

    def _cancel(self, message: str) -> DoctorRun:
        baseline = self.run_state.baseline
        if self.state != DoctorState.EXIT:
            self.transition(DoctorState.EXIT)
        self.transition(DoctorState.DONE)
        return self._finish(DoctorResult(
            kind=ResultKind.USER_CANCELLED,
            session_id=baseline.id,
            severity_counts=baseline.severity_counts,
            baseline_count=len(baseline.issues),
            remaining=list(baseline.issues),
            message=message,
        ))

    def _finish(self, result: DoctorResult) -> DoctorRun:
        self.run_state.result = result
        if self.run_state.baseline is not None:
            self.run_state.baseline.result = result
        logger.info("doctor finished: %s", result.kind.value)
        return self.run_state
