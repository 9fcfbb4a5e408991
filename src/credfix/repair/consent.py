"""Consent flow: every destructive fix goes through a backed-up, approved proposal."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from credfix.core.config import CredfixConfig, docker_config_path
from credfix.core.errors import BackupFailure, ConfigError, ConsentRejected
from credfix.core.models import ConsentDecision, Fix, FixProposal, RiskLevel
from credfix.repair.backup import BackupStore
from credfix.repair.repairer import CredentialRepairer

if TYPE_CHECKING:
    from credfix.doctor.decisions import DecisionProvider

logger = logging.getLogger("credfix.consent")

APPROVE = "approve"
VIEW_DIFF = "diff"
SKIP = "skip"


class ConsentFlow:
    """Builds proposals and decides whether they may run.

    ``decisions`` is the human (or scripted) reviewer; without one only the
    auto-approve policy can approve anything.
    """

    def __init__(
        self,
        repairer: CredentialRepairer,
        backups: BackupStore | None,
        config: CredfixConfig | None = None,
        decisions: DecisionProvider | None = None,
        interactive: bool = True,
        auto_approve: bool = True,
    ):
        self.repairer = repairer
        self.backups = backups
        self.config = config or repairer.config
        self.decisions = decisions
        self.interactive = interactive
        # False when every approval must come from the decision provider.
        self.auto_approve = auto_approve

    def propose(self, fixes: list[Fix]) -> FixProposal:
        """Back up every affected file, then describe the batch.

        Raises BackupFailure (and proposes nothing) when the backup fails.
        """
        if not fixes:
            raise ValueError("Cannot propose an empty set of fixes")
        if self.backups is None:
            raise BackupFailure("No backup store is configured; refusing to propose changes")

        paths = []
        for fix in fixes:
            for path in fix.files:
                if path not in paths:
                    paths.append(path)
        if not paths:
            paths = [docker_config_path(self.config, self.repairer.env, self.repairer.home)]

        titles = "; ".join(f.title for f in fixes)
        backup = self.backups.create_backup(paths, type="consent", description=titles)

        try:
            diff = self.repairer.preview(fixes)
        except ConfigError as e:
            logger.info("No diff for proposal: %s", e.message)
            diff = None

        affected = []
        for fix in fixes:
            for item in fix.affected:
                if item not in affected:
                    affected.append(item)

        noun = "fix" if len(fixes) == 1 else "fixes"
        return FixProposal(
            description=f"{len(fixes)} {noun}: {titles}",
            risk=RiskLevel.highest(f.risk_level for f in fixes),
            affected=affected,
            fixes=list(fixes),
            backup=backup,
            diff=diff or None,
        )

    def validate(self, proposal: FixProposal) -> list[str]:
        problems = []
        if not proposal.fixes:
            problems.append("proposal has no fixes")
        if proposal.backup is None:
            problems.append("proposal has no backup")
        for fix in proposal.fixes:
            if not fix.auto_fixable:
                problems.append(f"{fix.id} requires manual steps")
        if proposal.fixes and proposal.risk != RiskLevel.highest(f.risk_level for f in proposal.fixes):
            problems.append("proposal risk does not match its fixes")
        return problems

    def get_consent(self, proposal: FixProposal) -> ConsentDecision:
        problems = self.validate(proposal)
        if problems:
            return ConsentDecision(False, "invalid proposal: " + "; ".join(problems))

        policy = self.config.fix
        allowed = self.auto_approve and policy.auto_approve
        if allowed and proposal.risk.rank < policy.auto_approve_below.rank:
            logger.info("Auto-approved %s-risk proposal", proposal.risk.value)
            return ConsentDecision(
                True, f"auto-approved: {proposal.risk.value} risk is below {policy.auto_approve_below.value}"
            )

        if (
            proposal.risk == RiskLevel.CRITICAL
            and not self.interactive
            and self.auto_approve
            and policy.auto_approve
            and policy.allow_critical_noninteractive
        ):
            logger.warning(
                "Approving critical-risk proposal without a human decision (non-interactive override): %s",
                proposal.description,
            )
            return ConsentDecision(True, "approved by non-interactive critical override")

        if self.decisions is None or not self.interactive:
            return ConsentDecision(False, f"{proposal.risk.value}-risk changes need explicit approval")

        while True:
            choice = self.decisions.review_proposal(proposal)
            if choice == APPROVE:
                return ConsentDecision(True, "approved by user")
            if choice == VIEW_DIFF:
                self.decisions.show_diff(proposal)
                continue
            return ConsentDecision(False, "declined by user")

    def require_consent(self, proposal: FixProposal) -> ConsentDecision:
        """get_consent, raising ConsentRejected when not approved."""
        decision = self.get_consent(proposal)
        if not decision.approved:
            raise ConsentRejected(f"Proposal rejected: {decision.reason}")
        return decision
