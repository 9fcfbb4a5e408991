"""Configuration management for credfix (credfix.toml parsing + defaults)."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from credfix.core.errors import SettingsError
from credfix.core.models import RiskLevel

try:
    import tomllib
except ImportError:
    try:
        import tomli as tomllib  # type: ignore[no-redef]
    except ImportError:
        tomllib = None  # type: ignore[assignment]

CONFIG_FILENAME = "credfix.toml"


@dataclass
class GeneralConfig:
    docker_config: Path | None = None
    timeout: float = 30.0
    log_level: str = "WARNING"


@dataclass
class ScanConfig:
    registry_probe: bool = True
    registry_image: str = "hello-world"
    registry_timeout: float = 30.0
    memory_threshold: float = 90.0
    disk_free_threshold: float = 10.0
    docker_storage_threshold: float = 85.0


@dataclass
class FixConfig:
    dry_run: bool = False
    stop_on_failure: bool = False
    auto_approve: bool = False
    auto_approve_below: RiskLevel = RiskLevel.CRITICAL
    allow_critical_noninteractive: bool = False
    helper_package: str = ""


@dataclass
class BackupConfig:
    directory: Path | None = None
    max_backups: int = 50
    max_age_days: int = 90
    encrypt: bool = True


@dataclass
class DashboardConfig:
    port: int = 7654
    auto_open_browser: bool = True


@dataclass
class CredfixConfig:
    """Complete credfix configuration."""

    general: GeneralConfig = field(default_factory=GeneralConfig)
    scan: ScanConfig = field(default_factory=ScanConfig)
    fix: FixConfig = field(default_factory=FixConfig)
    backup: BackupConfig = field(default_factory=BackupConfig)
    dashboard: DashboardConfig = field(default_factory=DashboardConfig)
    source: Path | None = None


def find_config_file(
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    home: Path | None = None,
) -> Path | None:
    """Locate credfix.toml: $CREDFIX_CONFIG, then cwd, then ~/.config/credfix."""
    env = os.environ if env is None else env
    if env.get("CREDFIX_CONFIG"):
        return Path(env["CREDFIX_CONFIG"]).expanduser()

    candidates = [
        (cwd or Path.cwd()) / CONFIG_FILENAME,
        (home or Path.home()) / ".config" / "credfix" / CONFIG_FILENAME,
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


def load_config(config_path: Path | None = None) -> CredfixConfig:
    """Load configuration from credfix.toml if present, otherwise return defaults."""
    config = CredfixConfig()

    if config_path is None:
        config_path = find_config_file()
    if config_path is None or not config_path.exists():
        return config

    if tomllib is None:
        return config

    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise SettingsError(f"Cannot read {config_path}: {e}") from e

    config.source = config_path

    if "general" in data:
        gen = data["general"]
        if "docker_config" in gen:
            config.general.docker_config = Path(gen["docker_config"]).expanduser()
        if "timeout" in gen:
            config.general.timeout = float(gen["timeout"])
        if "log_level" in gen:
            config.general.log_level = str(gen["log_level"]).upper()

    if "scan" in data:
        s = data["scan"]
        for attr in ("registry_probe", "registry_image"):
            if attr in s:
                setattr(config.scan, attr, s[attr])
        for attr in (
            "registry_timeout",
            "memory_threshold",
            "disk_free_threshold",
            "docker_storage_threshold",
        ):
            if attr in s:
                setattr(config.scan, attr, float(s[attr]))

    if "fix" in data:
        fx = data["fix"]
        for attr in (
            "dry_run",
            "stop_on_failure",
            "auto_approve",
            "allow_critical_noninteractive",
            "helper_package",
        ):
            if attr in fx:
                setattr(config.fix, attr, fx[attr])
        if "auto_approve_below" in fx:
            try:
                config.fix.auto_approve_below = RiskLevel(str(fx["auto_approve_below"]).lower())
            except ValueError as e:
                raise SettingsError(
                    f"Invalid fix.auto_approve_below in {config_path}: {fx['auto_approve_below']!r}",
                    "Use one of: low, medium, high, critical.",
                ) from e

    if "backup" in data:
        b = data["backup"]
        if "directory" in b:
            config.backup.directory = Path(b["directory"]).expanduser()
        for attr in ("max_backups", "max_age_days", "encrypt"):
            if attr in b:
                setattr(config.backup, attr, b[attr])

    if "dashboard" in data:
        d = data["dashboard"]
        if "port" in d:
            config.dashboard.port = d["port"]
        if "auto_open_browser" in d:
            config.dashboard.auto_open_browser = d["auto_open_browser"]

    return config


def docker_config_path(
    config: CredfixConfig | None = None,
    env: Mapping[str, str] | None = None,
    home: Path | None = None,
) -> Path:
    """Path of the Docker CLI config file ($DOCKER_CONFIG aware)."""
    if config is not None and config.general.docker_config is not None:
        return config.general.docker_config
    env = os.environ if env is None else env
    if env.get("DOCKER_CONFIG"):
        return Path(env["DOCKER_CONFIG"]).expanduser() / "config.json"
    return (home or Path.home()) / ".docker" / "config.json"


def get_backup_dir(config: CredfixConfig | None = None, home: Path | None = None) -> Path:
    """Get or create the backup directory (default ~/.docker/backups)."""
    if config is not None and config.backup.directory is not None:
        backup_dir = config.backup.directory
    else:
        backup_dir = (home or Path.home()) / ".docker" / "backups"
    backup_dir.mkdir(parents=True, exist_ok=True)
    return backup_dir
