"""End-to-end: a host with no credential helper is diagnosed and repaired."""

from __future__ import annotations

import asyncio
import json

from credfix.core.models import FixKind, IssueType, Severity
from credfix.doctor.decisions import ScriptedDecisions
from credfix.repair.consent import APPROVE, ConsentFlow


def _no_helper_host(host):
    host.install("apt-get", "sudo")
    host.runner.hooks["sudo apt-get install"] = lambda: host.install("docker-credential-secretservice")
    return host


class TestMissingHelperRepair:
    def test_scan_finds_exactly_the_missing_helper(self, host):
        session = _no_helper_host(host).engine().run()

        [issue] = session.issues
        assert issue.code == "HELPER_NOT_INSTALLED"
        assert issue.type == IssueType.CREDENTIAL_HELPER
        assert issue.severity == Severity.CRITICAL
        assert issue.auto_fixable
        assert session.docker.configuration.issues == []
        assert session.recommendations[0].priority == Severity.CRITICAL

    def test_scan_fix_rescan(self, host):
        _no_helper_host(host)
        repairer = host.repairer()
        analysis = repairer.analyze_and_repair(host.engine().run())

        [fix] = analysis.fixes
        assert fix.kind == FixKind.INSTALL_HELPER
        assert fix.actions[0].command == ["sudo", "apt-get", "install", "-y", "golang-docker-credential-helpers"]

        flow = ConsentFlow(repairer, repairer.backups, decisions=ScriptedDecisions(reviews=[APPROVE]))
        proposal = flow.propose(analysis.fixes)
        assert flow.require_consent(proposal).approved

        summary = asyncio.run(repairer.execute_fixes(proposal.fixes, backup=proposal.backup))
        assert summary.successful == 1
        assert summary.requires_reauth
        assert json.loads(host.config_path.read_text()) == {"credsStore": "secretservice"}

        after = host.engine().run()
        assert not [i for i in after.issues if i.severity == Severity.CRITICAL]
        assert after.platform.credential_helper == "docker-credential-secretservice"
        assert any("auths" in w for w in after.docker.configuration.warnings)

    def test_restore_undoes_the_repair(self, host):
        _no_helper_host(host)
        repairer = host.repairer()
        analysis = repairer.analyze_and_repair(host.engine().run())
        summary = asyncio.run(repairer.execute_fixes(analysis.fixes))
        assert host.config_path.exists()

        assert repairer.backups.restore_backup(summary.results[0].backup_id).success
        assert not host.config_path.exists()

    def test_auto_approve_policy(self, host):
        _no_helper_host(host)
        host.config.fix.auto_approve = True
        repairer = host.repairer()
        analysis = repairer.analyze_and_repair(host.engine().run())

        flow = ConsentFlow(repairer, repairer.backups, interactive=False)
        proposal = flow.propose(analysis.fixes)
        assert flow.get_consent(proposal).approved

    def test_failed_install_leaves_config_alone(self, host):
        _no_helper_host(host)
        host.runner.hooks.clear()
        host.runner.responses["sudo"] = (100, "", "E: Unable to locate package golang-docker-credential-helpers")
        repairer = host.repairer()
        analysis = repairer.analyze_and_repair(host.engine().run())

        summary = asyncio.run(repairer.execute_fixes(analysis.fixes))
        assert summary.failed == 1
        assert not host.config_path.exists()
        assert summary.next_steps == []


class TestHeadlessPacmanRepair:
    def test_registers_the_helper_the_package_installed(self, host):
        del host.env["DBUS_SESSION_BUS_ADDRESS"]
        host.install("pacman", "sudo")
        host.runner.hooks["sudo pacman -S"] = lambda: host.install("docker-credential-secretservice")
        repairer = host.repairer()
        analysis = repairer.analyze_and_repair(host.engine().run())

        [fix] = analysis.fixes
        assert fix.actions[1].params["credsStore"] == "secretservice"

        summary = asyncio.run(repairer.execute_fixes(analysis.fixes))
        assert summary.successful == 1

        after = host.engine().run()
        codes = [i.code for i in after.issues]
        assert "INVALID_CREDSSTORE" not in codes
        assert "HELPER_NOT_INSTALLED" not in codes
        assert not [i for i in after.issues if i.severity == Severity.CRITICAL]
