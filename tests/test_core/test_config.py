"""Tests for credfix.toml loading and path resolution."""

from __future__ import annotations

from pathlib import Path

import pytest

from credfix.core.config import (
    CredfixConfig,
    docker_config_path,
    find_config_file,
    get_backup_dir,
    load_config,
)
from credfix.core.errors import SettingsError
from credfix.core.models import RiskLevel


class TestLoadConfig:
    def test_defaults_when_missing(self, tmp_path: Path):
        config = load_config(tmp_path / "credfix.toml")
        assert config.general.timeout == 30.0
        assert config.scan.registry_probe is True
        assert config.fix.auto_approve is False
        assert config.fix.auto_approve_below == RiskLevel.CRITICAL
        assert config.backup.encrypt is True
        assert config.source is None

    def test_reads_sections(self, tmp_path: Path):
        path = tmp_path / "credfix.toml"
        path.write_text(
            "[general]\n"
            'docker_config = "/etc/docker/config.json"\n'
            "timeout = 5\n"
            'log_level = "debug"\n'
            "\n[scan]\n"
            "registry_probe = false\n"
            "memory_threshold = 75\n"
            "\n[fix]\n"
            "auto_approve = true\n"
            'auto_approve_below = "HIGH"\n'
            'helper_package = "my-helpers"\n'
            "\n[backup]\n"
            f'directory = "{tmp_path / "b"}"\n'
            "max_backups = 3\n"
            "encrypt = false\n"
            "\n[dashboard]\n"
            "port = 9000\n"
        )
        config = load_config(path)
        assert config.source == path
        assert config.general.docker_config == Path("/etc/docker/config.json")
        assert config.general.timeout == 5.0
        assert config.general.log_level == "DEBUG"
        assert config.scan.registry_probe is False
        assert config.scan.memory_threshold == 75.0
        assert config.fix.auto_approve is True
        assert config.fix.auto_approve_below == RiskLevel.HIGH
        assert config.fix.helper_package == "my-helpers"
        assert config.backup.directory == tmp_path / "b"
        assert config.backup.max_backups == 3
        assert config.backup.encrypt is False
        assert config.dashboard.port == 9000

    def test_invalid_risk_level(self, tmp_path: Path):
        path = tmp_path / "credfix.toml"
        path.write_text('[fix]\nauto_approve_below = "extreme"\n')
        with pytest.raises(SettingsError) as exc:
            load_config(path)
        assert "low, medium, high, critical" in exc.value.suggestion

    def test_bad_toml(self, tmp_path: Path):
        path = tmp_path / "credfix.toml"
        path.write_text("[general\n")
        with pytest.raises(SettingsError):
            load_config(path)


class TestPaths:
    def test_find_config_prefers_env(self, tmp_path: Path):
        found = find_config_file(cwd=tmp_path, env={"CREDFIX_CONFIG": "/x/credfix.toml"}, home=tmp_path)
        assert found == Path("/x/credfix.toml")

    def test_find_config_in_cwd(self, tmp_path: Path):
        (tmp_path / "credfix.toml").write_text("")
        assert find_config_file(cwd=tmp_path, env={}, home=tmp_path / "home") == tmp_path / "credfix.toml"

    def test_find_config_none(self, tmp_path: Path):
        assert find_config_file(cwd=tmp_path, env={}, home=tmp_path) is None

    def test_docker_config_default(self, tmp_path: Path):
        assert docker_config_path(env={}, home=tmp_path) == tmp_path / ".docker" / "config.json"

    def test_docker_config_env(self, tmp_path: Path):
        path = docker_config_path(env={"DOCKER_CONFIG": str(tmp_path / "d")}, home=tmp_path)
        assert path == tmp_path / "d" / "config.json"

    def test_docker_config_setting_wins(self, tmp_path: Path):
        config = CredfixConfig()
        config.general.docker_config = tmp_path / "c.json"
        assert docker_config_path(config, env={"DOCKER_CONFIG": "/elsewhere"}) == tmp_path / "c.json"

    def test_backup_dir_created(self, tmp_path: Path):
        backup_dir = get_backup_dir(home=tmp_path)
        assert backup_dir == tmp_path / ".docker" / "backups"
        assert backup_dir.is_dir()
