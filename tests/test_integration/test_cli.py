"""CLI tests through click's CliRunner."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from credfix import __version__
from credfix.cli.main import cli
from credfix.repair.backup import BackupStore


@pytest.fixture
def settings(tmp_path: Path, host) -> Path:
    path = tmp_path / "credfix.toml"
    path.write_text(f'[backup]\ndirectory = "{host.backup_dir}"\nencrypt = false\n')
    return path


@pytest.fixture
def wired(monkeypatch, host):
    """Point every command at the fake host."""
    for module in ("scan_cmd", "doctor_cmd", "fix_cmd"):
        monkeypatch.setattr(f"credfix.cli.{module}.build_services", lambda config, events=None: host.services(config))
    return host


def _invoke(settings: Path, *args: str, input: str | None = None):
    return CliRunner().invoke(cli, ["--config", str(settings), *args], input=input)


class TestCLIBasics:
    def test_version(self):
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help_lists_commands(self):
        result = CliRunner().invoke(cli, ["--help"])
        assert result.exit_code == 0
        for command in ("doctor", "scan", "fix", "backup", "dashboard"):
            assert command in result.output

    def test_bad_settings_file(self, tmp_path: Path):
        path = tmp_path / "credfix.toml"
        path.write_text("[backup\n")
        result = CliRunner().invoke(cli, ["--config", str(path), "backup", "list"])
        assert result.exit_code == 2


class TestScanCommand:
    def test_healthy(self, settings: Path, wired):
        wired.install("docker-credential-secretservice")
        wired.write_config({"auths": {}, "credsStore": "secretservice"})
        result = _invoke(settings, "scan")
        assert result.exit_code == 0

    def test_issues_exit_one(self, settings: Path, wired):
        wired.write_config({"auths": {}, "credsStore": "desktop"})
        result = _invoke(settings, "scan")
        assert result.exit_code == 1
        assert "INVALID_CREDSSTORE" in result.output

    def test_json_output(self, settings: Path, wired):
        wired.write_config({"auths": "legacy"})
        result = _invoke(settings, "scan", "--json")
        data = json.loads(result.stdout)
        assert "DEPRECATED_AUTHS_FORMAT" in [i["code"] for i in data["issues"]]

    def test_scan_changes_nothing(self, settings: Path, wired):
        path = wired.write_config({"auths": "legacy", "credsStore": "desktop"})
        before = path.read_bytes()
        _invoke(settings, "scan")
        assert path.read_bytes() == before


class TestFixCommand:
    def test_dry_run(self, settings: Path, wired):
        path = wired.write_config({"auths": {}, "credsStore": "desktop"})
        before = path.read_bytes()
        result = _invoke(settings, "fix", "--all", "--dry-run")
        assert result.exit_code == 0
        assert path.read_bytes() == before

    def test_yes_applies_below_critical(self, settings: Path, wired):
        wired.write_config({"auths": {}, "credsStore": "desktop"})
        result = _invoke(settings, "fix", "--all", "--yes")
        assert result.exit_code == 0
        assert json.loads(wired.config_path.read_text()) == {"auths": {}}
        assert len(wired.backups().list_backups()) == 1


class TestDoctorCommand:
    def test_report_only(self, settings: Path, wired):
        path = wired.write_config({"auths": {}, "credsStore": "desktop"})
        before = path.read_bytes()
        result = _invoke(settings, "doctor", "--report")
        assert result.exit_code == 1
        assert path.read_bytes() == before

    def test_healthy(self, settings: Path, wired):
        wired.install("docker-credential-secretservice")
        wired.write_config({"auths": {}, "credsStore": "secretservice"})
        result = _invoke(settings, "doctor", "--yes")
        assert result.exit_code == 0

    def test_yes_installs_missing_helper(self, settings: Path, wired):
        wired.install("apt-get", "sudo")
        wired.runner.hooks["sudo apt-get install"] = lambda: wired.install("docker-credential-secretservice")
        result = _invoke(settings, "doctor", "--yes")
        assert result.exit_code == 0
        assert json.loads(wired.config_path.read_text()) == {"credsStore": "secretservice"}

    def test_dry_run_exits_one_and_changes_nothing(self, settings: Path, wired):
        path = wired.write_config({"auths": {}, "credsStore": "desktop"})
        before = path.read_bytes()
        result = _invoke(settings, "doctor", "--yes", "--dry-run")
        assert result.exit_code == 1
        assert path.read_bytes() == before

    def test_interactive_exit(self, settings: Path, wired):
        path = wired.write_config({"auths": {}, "credsStore": "desktop"})
        before = path.read_bytes()
        result = _invoke(settings, "doctor", input="4\n")
        assert result.exit_code == 130
        assert path.read_bytes() == before


class TestBackupCommands:
    def test_empty_list(self, settings: Path):
        result = _invoke(settings, "backup", "list")
        assert result.exit_code == 0
        assert "No backups" in result.output

    def test_list_and_restore(self, settings: Path, host):
        path = host.write_config({"auths": {}, "credsStore": "desktop"})
        original = path.read_bytes()
        record = BackupStore(host.backup_dir, encrypt=False).create_backup([path], type="fix")
        path.write_text("{}")

        assert _invoke(settings, "backup", "list").exit_code == 0
        result = _invoke(settings, "backup", "restore", record.id, "--yes")
        assert result.exit_code == 0
        assert path.read_bytes() == original

    def test_restore_unknown(self, settings: Path):
        result = _invoke(settings, "backup", "restore", "nope", "--yes")
        assert result.exit_code == 1

    def test_stats(self, settings: Path, host):
        path = host.write_config({"auths": {}})
        BackupStore(host.backup_dir, encrypt=False).create_backup([path])
        result = _invoke(settings, "backup", "stats")
        assert result.exit_code == 0
        assert "Backups:   1" in result.output
