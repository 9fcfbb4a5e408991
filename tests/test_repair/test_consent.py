"""Tests for the consent flow."""

from __future__ import annotations

import asyncio
import json

import pytest

from credfix.core.errors import BackupFailure, ConsentRejected
from credfix.core.models import Fix, FixAction, FixKind, RiskLevel
from credfix.doctor.decisions import ScriptedDecisions
from credfix.repair.consent import APPROVE, SKIP, VIEW_DIFF, ConsentFlow


def _fixes(host):
    host.write_config({"auths": {}, "credsStore": "desktop"})
    return host.repairer().analyze_and_repair(host.engine().run()).fixes


def _command_fix(risk=RiskLevel.CRITICAL):
    return Fix(
        id="fix-restart",
        kind=FixKind.ADD_DOCKER_GROUP,
        title="Restart things",
        target_issue_ids=["x"],
        actions=[FixAction(command=["sudo", "systemctl", "restart", "docker"])],
        risk_level=risk,
    )


class TestPropose:
    def test_backs_up_and_describes(self, host):
        fixes = _fixes(host)
        repairer = host.repairer()
        flow = ConsentFlow(repairer, repairer.backups)
        proposal = flow.propose(fixes)

        assert proposal.backup is not None
        assert proposal.backup.type == "consent"
        assert proposal.backup.source_paths == [host.config_path]
        assert proposal.risk == RiskLevel.MEDIUM
        assert str(host.config_path) in proposal.affected
        assert proposal.requires_reauth
        assert '-  "credsStore": "desktop"' in proposal.diff
        assert proposal.description.startswith("1 fix: ")

    def test_risk_is_highest_of_batch(self, host):
        fixes = _fixes(host) + [_command_fix(RiskLevel.HIGH)]
        repairer = host.repairer()
        proposal = ConsentFlow(repairer, repairer.backups).propose(fixes)
        assert proposal.risk == RiskLevel.HIGH
        assert "sudo systemctl restart docker" in proposal.affected
        assert proposal.description.startswith("2 fixes: ")

    def test_command_only_fix_backs_up_docker_config(self, host):
        host.write_config({"auths": {}})
        repairer = host.repairer()
        proposal = ConsentFlow(repairer, repairer.backups).propose([_command_fix()])
        assert proposal.backup.source_paths == [host.config_path]
        assert proposal.diff.startswith("$ sudo systemctl restart docker")

    def test_empty_batch(self, host):
        repairer = host.repairer()
        with pytest.raises(ValueError):
            ConsentFlow(repairer, repairer.backups).propose([])

    def test_no_backup_store(self, host):
        fixes = _fixes(host)
        with pytest.raises(BackupFailure):
            ConsentFlow(host.repairer(), None).propose(fixes)

    def test_backup_failure_proposes_nothing(self, host, tmp_path):
        fixes = _fixes(host)
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        host.backup_dir = blocker
        repairer = host.repairer()
        with pytest.raises(BackupFailure):
            ConsentFlow(repairer, repairer.backups).propose(fixes)


class TestGetConsent:
    def _proposal(self, host, fixes=None):
        repairer = host.repairer()
        return repairer, ConsentFlow(repairer, repairer.backups).propose(fixes or _fixes(host))

    def test_auto_approve_below_threshold(self, host):
        host.config.fix.auto_approve = True
        repairer, proposal = self._proposal(host)
        decision = ConsentFlow(repairer, repairer.backups, interactive=False).get_consent(proposal)
        assert decision.approved
        assert decision.reason.startswith("auto-approved")

    def test_auto_approve_respects_threshold(self, host):
        host.config.fix.auto_approve = True
        host.config.fix.auto_approve_below = RiskLevel.MEDIUM
        repairer, proposal = self._proposal(host)
        decision = ConsentFlow(repairer, repairer.backups, interactive=False).get_consent(proposal)
        assert not decision.approved

    def test_policy_off_asks_the_decision_provider(self, host):
        host.config.fix.auto_approve = True
        repairer, proposal = self._proposal(host)
        decisions = ScriptedDecisions(reviews=[SKIP])
        flow = ConsentFlow(repairer, repairer.backups, decisions=decisions, auto_approve=False)
        assert not flow.get_consent(proposal).approved
        assert decisions.asked == ["review"]

    def test_critical_needs_override_when_non_interactive(self, host):
        host.write_config({"auths": {}})
        host.config.fix.auto_approve = True
        repairer, proposal = self._proposal(host, [_command_fix()])
        flow = ConsentFlow(repairer, repairer.backups, interactive=False)
        assert not flow.get_consent(proposal).approved

        host.config.fix.allow_critical_noninteractive = True
        decision = flow.get_consent(proposal)
        assert decision.approved
        assert "override" in decision.reason

    def test_override_does_not_apply_interactively(self, host):
        host.write_config({"auths": {}})
        host.config.fix.auto_approve = True
        host.config.fix.allow_critical_noninteractive = True
        repairer, proposal = self._proposal(host, [_command_fix()])
        decisions = ScriptedDecisions(reviews=[SKIP])
        assert not ConsentFlow(repairer, repairer.backups, decisions=decisions).get_consent(proposal).approved
        assert decisions.asked == ["review"]

    def test_non_interactive_without_policy_rejects(self, host):
        repairer, proposal = self._proposal(host)
        decisions = ScriptedDecisions(reviews=[APPROVE])
        flow = ConsentFlow(repairer, repairer.backups, decisions=decisions, interactive=False)
        assert not flow.get_consent(proposal).approved
        assert decisions.asked == []

    def test_diff_then_approve(self, host):
        repairer, proposal = self._proposal(host)
        decisions = ScriptedDecisions(reviews=[VIEW_DIFF, VIEW_DIFF, APPROVE])
        decision = ConsentFlow(repairer, repairer.backups, decisions=decisions).get_consent(proposal)
        assert decision.approved
        assert decisions.asked == ["review", "diff", "review", "diff", "review"]

    def test_decline_leaves_config_untouched(self, host):
        fixes = _fixes(host)
        before = host.config_path.read_bytes()
        repairer = host.repairer()
        flow = ConsentFlow(repairer, repairer.backups, decisions=ScriptedDecisions(reviews=[SKIP]))
        proposal = flow.propose(fixes)

        decision = flow.get_consent(proposal)
        assert not decision.approved
        assert decision.reason == "declined by user"
        assert host.config_path.read_bytes() == before

    def test_invalid_proposal(self, host):
        repairer, proposal = self._proposal(host)
        proposal.backup = None
        proposal.fixes[0].auto_fixable = False
        decision = ConsentFlow(repairer, repairer.backups, decisions=ScriptedDecisions(reviews=[APPROVE])).get_consent(
            proposal
        )
        assert not decision.approved
        assert "no backup" in decision.reason
        assert "manual steps" in decision.reason

    def test_require_consent_raises(self, host):
        repairer, proposal = self._proposal(host)
        with pytest.raises(ConsentRejected):
            ConsentFlow(repairer, repairer.backups, interactive=False).require_consent(proposal)


class TestApprovedExecution:
    def test_uses_proposal_backup(self, host):
        fixes = _fixes(host)
        repairer = host.repairer()
        flow = ConsentFlow(repairer, repairer.backups, decisions=ScriptedDecisions(reviews=[APPROVE]))
        proposal = flow.propose(fixes)
        assert flow.require_consent(proposal).approved

        summary = asyncio.run(repairer.execute_fixes(proposal.fixes, backup=proposal.backup))
        assert summary.results[0].backup_id == proposal.backup.id
        assert json.loads(host.config_path.read_text()) == {"auths": {}}
        assert len(repairer.backups.list_backups()) == 1

        assert repairer.backups.restore_backup(proposal.backup.id).success
        assert json.loads(host.config_path.read_text())["credsStore"] == "desktop"
