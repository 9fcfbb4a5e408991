"""Tests for fix synthesis and execution."""

from __future__ import annotations

import asyncio
import json
import stat
import threading
from pathlib import Path

import pytest

from credfix.core.errors import BackupFailure, ConfigError
from credfix.core.models import FixAction, FixKind, Issue, IssueType, OSFamily, RiskLevel, Severity
from credfix.repair.repairer import (
    REAUTH_STEP,
    RESTART_STEP,
    apply_config_edit,
    repair_json_text,
    unified_diff,
    write_config,
)


def _issue(code, auto_fixable=True, severity=Severity.HIGH, **details):
    return Issue(
        code=code,
        type=IssueType.CONFIGURATION,
        severity=severity,
        description=code,
        evidence=code.lower(),
        auto_fixable=auto_fixable,
        details=details,
    )


class TestConfigEdits:
    def test_repair_json_strips_comments_and_trailing_commas(self):
        text = '{\n  // login data\n  "auths": {"a": {},},\n  /* helper */ "credsStore": "pass",\n}'
        assert repair_json_text(text) == {"auths": {"a": {}}, "credsStore": "pass"}

    def test_repair_hopeless_json(self):
        assert repair_json_text("{{{{") == {"auths": {}}
        assert repair_json_text("[1, 2]") == {"auths": {}}

    def test_set_creds_store_on_missing_file(self):
        action = FixAction(config_edit="set_creds_store", params={"credsStore": "pass"})
        assert json.loads(apply_config_edit(action, None)) == {"credsStore": "pass"}

    def test_remove_creds_store_keeps_other_keys(self):
        action = FixAction(config_edit="remove_creds_store")
        after = apply_config_edit(action, '{"auths": {"x": {}}, "credsStore": "desktop"}')
        assert json.loads(after) == {"auths": {"x": {}}}
        assert after.endswith("\n")

    def test_reset_auths(self):
        after = apply_config_edit(FixAction(config_edit="reset_auths"), '{"auths": "legacy"}')
        assert json.loads(after) == {"auths": {}}

    def test_edit_on_invalid_json_raises(self):
        with pytest.raises(ConfigError):
            apply_config_edit(FixAction(config_edit="reset_auths"), "{oops")

    def test_unknown_edit(self):
        with pytest.raises(ValueError):
            apply_config_edit(FixAction(config_edit="teleport"), "{}")

    def test_unified_diff(self):
        diff = unified_diff(Path("c.json"), '{\n  "a": 1\n}\n', '{\n  "a": 2\n}\n')
        assert '-  "a": 1' in diff
        assert '+  "a": 2' in diff
        assert unified_diff(Path("c.json"), None, "{}\n").startswith("--- /dev/null")

    def test_write_config_keeps_mode(self, tmp_path: Path):
        path = tmp_path / "config.json"
        path.write_text("{}")
        path.chmod(0o640)
        write_config(path, '{"auths": {}}\n')
        assert json.loads(path.read_text()) == {"auths": {}}
        assert stat.S_IMODE(path.stat().st_mode) == 0o640

    def test_write_config_new_file_is_private(self, tmp_path: Path):
        path = tmp_path / "d" / "config.json"
        write_config(path, "{}\n")
        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_write_config_rejects_invalid_json(self, tmp_path: Path):
        path = tmp_path / "config.json"
        with pytest.raises(ValueError):
            write_config(path, "{")
        assert not path.exists()

    def test_concurrent_writes_never_collide(self, tmp_path: Path):
        path = tmp_path / "config.json"
        errors = []

        def write(n):
            try:
                for _ in range(20):
                    write_config(path, json.dumps({"writer": n}))
            except OSError as e:
                errors.append(e)

        threads = [threading.Thread(target=write, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert json.loads(path.read_text())["writer"] in range(4)
        assert [p.name for p in tmp_path.iterdir()] == ["config.json"]


class TestSynthesizeFix:
    def test_install_helper_linux(self, host):
        repairer = host.repairer()
        facts = {"package_manager": {"install_command": ["sudo", "apt-get", "install", "-y", "pkg"]}}
        fix = repairer.synthesize_fix(_issue("HELPER_NOT_INSTALLED"), facts, OSFamily.LINUX, host.config_path)
        assert fix.kind == FixKind.INSTALL_HELPER
        assert fix.actions[0].command == ["sudo", "apt-get", "install", "-y", "pkg"]
        assert fix.actions[1].params == {"credsStore": "secretservice", "binary": "docker-credential-secretservice"}
        assert fix.requires_sudo
        assert fix.requires_reauth
        assert fix.risk_level == RiskLevel.MEDIUM

    def test_install_helper_prefers_pass_without_session_bus(self, host):
        host.install("apt-get", "pass")
        facts = {"secret_store": {"session_bus": False}}
        fix = host.repairer().synthesize_fix(_issue("HELPER_NOT_INSTALLED"), facts, OSFamily.LINUX, host.config_path)
        assert fix.actions[1].params == {"credsStore": "pass", "binary": "docker-credential-pass"}
        assert fix.actions[0].command[:2] == ["sudo", "apt-get"]

    def test_headless_without_pass_store_keeps_secretservice(self, host):
        host.install("apt-get")
        facts = {"secret_store": {"session_bus": False}}
        fix = host.repairer().synthesize_fix(_issue("HELPER_NOT_INSTALLED"), facts, OSFamily.LINUX, host.config_path)
        assert fix.actions[1].params["credsStore"] == "secretservice"

    def test_headless_pacman_registers_what_the_package_ships(self, host):
        host.install("pacman", "pass")
        facts = {"secret_store": {"session_bus": False}}
        fix = host.repairer().synthesize_fix(_issue("HELPER_NOT_INSTALLED"), facts, OSFamily.LINUX, host.config_path)
        assert fix.actions[0].command == ["sudo", "pacman", "-S", "--noconfirm", "docker-credential-secretservice"]
        assert fix.actions[1].params["credsStore"] == "secretservice"

    def test_install_helper_macos(self, host):
        host.install("brew")
        fix = host.repairer().synthesize_fix(_issue("HELPER_NOT_INSTALLED"), {}, OSFamily.MACOS, host.config_path)
        assert fix.actions[0].command == ["brew", "install", "docker-credential-helper"]
        assert fix.actions[1].params["credsStore"] == "osxkeychain"
        assert not fix.requires_sudo

    def test_no_package_manager_no_fix(self, host):
        assert host.repairer().synthesize_fix(_issue("HELPER_NOT_INSTALLED"), {}, OSFamily.LINUX, host.config_path) is None

    def test_remove_creds_store(self, host):
        issue = _issue("INVALID_CREDSSTORE", config_path=str(host.config_path))
        fix = host.repairer().synthesize_fix(issue, {}, OSFamily.LINUX, Path("/elsewhere"))
        assert fix.kind == FixKind.REMOVE_CREDSSTORE
        assert fix.files == [host.config_path]
        assert fix.target_issue_ids == [issue.id]
        assert fix.id == f"fix-{issue.id}"

    def test_docker_group(self, host):
        fix = host.repairer().synthesize_fix(_issue("DOCKER_GROUP_MISSING", user="dev"), {}, OSFamily.LINUX, host.config_path)
        assert fix.actions[0].command == ["sudo", "usermod", "-aG", "docker", "dev"]
        assert fix.requires_restart
        assert fix.risk_level == RiskLevel.HIGH

    def test_unknown_code(self, host):
        assert host.repairer().synthesize_fix(_issue("KEYRING_LOCKED"), {}, OSFamily.LINUX, host.config_path) is None


class TestAnalyzeAndRepair:
    def test_non_fixable_issues_get_no_fix(self, host):
        host.write_config({"auths": "legacy", "credsStore": "desktop"})
        host.env.pop("DBUS_SESSION_BUS_ADDRESS")
        session = host.engine().run()
        analysis = host.repairer().analyze_and_repair(session)

        fixed = {i for f in analysis.fixes for i in f.target_issue_ids}
        for issue in analysis.issues:
            if not issue.auto_fixable:
                assert issue.id not in fixed
                assert issue in analysis.manual
        assert {f.kind for f in analysis.fixes} >= {FixKind.REMOVE_CREDSSTORE, FixKind.MIGRATE_AUTHS}

    def test_repair_config_runs_first(self, host):
        host.write_config("{broken,")
        host.install("apt-get")
        analysis = host.repairer().analyze_and_repair(host.engine().run())
        assert analysis.fixes[0].kind == FixKind.REPAIR_CONFIG
        assert len(analysis.fixes) == 2


class TestExecuteFixes:
    def _invalid_creds_store(self, host):
        host.write_config({"auths": {}, "credsStore": "desktop"})
        return host.repairer().analyze_and_repair(host.engine().run())

    def test_dry_run_changes_nothing(self, host):
        analysis = self._invalid_creds_store(host)
        path = host.config_path
        before = path.read_bytes()
        mtime = path.stat().st_mtime_ns

        summary = asyncio.run(host.repairer().execute_fixes(analysis.fixes, dry_run=True))

        assert summary.dry_run
        assert all(r.dry_run and r.success for r in summary.results)
        assert summary.results[0].diff
        assert '-  "credsStore": "desktop"' in summary.results[0].diff
        assert path.read_bytes() == before
        assert path.stat().st_mtime_ns == mtime
        assert not host.backup_dir.exists() or host.backups().list_backups() == []

    def test_applies_with_backup(self, host):
        analysis = self._invalid_creds_store(host)
        repairer = host.repairer()
        summary = asyncio.run(repairer.execute_fixes(analysis.fixes))

        [outcome] = summary.results
        assert outcome.success
        assert outcome.backup_id
        assert json.loads(host.config_path.read_text()) == {"auths": {}}
        assert summary.requires_reauth
        assert REAUTH_STEP in summary.next_steps
        assert host.repairer().backups.get_backup(outcome.backup_id).type == "fix"

    def test_given_backup_is_used(self, host):
        analysis = self._invalid_creds_store(host)
        backups = host.backups()
        record = backups.create_backup([host.config_path], type="consent")
        summary = asyncio.run(host.repairer(backups).execute_fixes(analysis.fixes, backup=record))
        assert summary.results[0].backup_id == record.id
        assert len(backups.list_backups()) == 1

    def test_no_backup_store_refuses(self, host):
        analysis = self._invalid_creds_store(host)
        repairer = host.repairer()
        repairer.backups = None
        before = host.config_path.read_bytes()
        with pytest.raises(BackupFailure):
            asyncio.run(repairer.execute_fixes(analysis.fixes))
        assert host.config_path.read_bytes() == before

    def test_failed_command_is_recorded_and_batch_continues(self, host):
        host.install("sudo")
        host.runner.responses["sudo"] = (100, "", "E: Unable to locate package")
        fixes = [
            host.repairer().synthesize_fix(
                _issue("HELPER_NOT_INSTALLED"),
                {"package_manager": {"install_command": ["sudo", "apt-get", "install", "-y", "pkg"]}},
                OSFamily.LINUX,
                host.config_path,
            ),
            host.repairer().synthesize_fix(
                _issue("DEPRECATED_AUTHS_FORMAT", config_path=str(host.config_path)),
                {},
                OSFamily.LINUX,
                host.config_path,
            ),
        ]
        host.write_config({"auths": "legacy"})

        summary = asyncio.run(host.repairer().execute_fixes(fixes))
        assert [r.success for r in summary.results] == [False, True]
        assert "Unable to locate package" in summary.results[0].message
        assert summary.results[0].suggestion
        assert json.loads(host.config_path.read_text()) == {"auths": {}}

    def test_missing_binary_after_install_fails_the_fix(self, host):
        host.install("sudo")
        fix = host.repairer().synthesize_fix(
            _issue("HELPER_NOT_INSTALLED"),
            {"package_manager": {"install_command": ["sudo", "apt-get", "install", "-y", "pkg"]}},
            OSFamily.LINUX,
            host.config_path,
        )
        summary = asyncio.run(host.repairer().execute_fixes([fix]))
        [outcome] = summary.results
        assert not outcome.success
        assert "docker-credential-secretservice" in outcome.message
        assert "manually" in outcome.suggestion
        assert not host.config_path.exists()
        assert summary.next_steps == []

    def test_stop_on_failure(self, host):
        host.install("sudo")
        host.runner.responses["sudo"] = (1, "")
        group = host.repairer().synthesize_fix(_issue("DOCKER_GROUP_MISSING", user="dev"), {}, OSFamily.LINUX, host.config_path)
        auths = host.repairer().synthesize_fix(
            _issue("DEPRECATED_AUTHS_FORMAT", config_path=str(host.config_path)), {}, OSFamily.LINUX, host.config_path
        )
        summary = asyncio.run(host.repairer().execute_fixes([group, auths], stop_on_failure=True))
        assert summary.executed == 1
        assert not summary.requires_restart
        assert RESTART_STEP not in summary.next_steps

    def test_manual_fixes_never_run(self, host):
        analysis = self._invalid_creds_store(host)
        analysis.fixes[0].auto_fixable = False
        before = host.config_path.read_bytes()
        summary = asyncio.run(host.repairer().execute_fixes(analysis.fixes))
        assert summary.executed == 0
        assert host.config_path.read_bytes() == before

    def test_emits_fix_events(self, host):
        analysis = self._invalid_creds_store(host)
        asyncio.run(host.repairer().execute_fixes(analysis.fixes, dry_run=True, session_id="s1"))
        kinds = [e["type"] for e in host.events.since("s1")]
        assert kinds == ["fix-start", "fix-progress", "fix-complete"]
        assert host.events.since("s1")[-1]["result"]["dryRun"] is True

    def test_preview_combines_commands_and_diff(self, host):
        fix = host.repairer().synthesize_fix(
            _issue("HELPER_NOT_INSTALLED"),
            {"package_manager": {"install_command": ["brew", "install", "docker-credential-helper"]}},
            OSFamily.MACOS,
            host.config_path,
        )
        preview = host.repairer().preview([fix])
        assert preview.startswith("$ brew install docker-credential-helper\n")
        assert '+  "credsStore": "osxkeychain"' in preview
