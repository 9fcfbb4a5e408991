"""Shared fixtures: a scripted process runner and a fake Linux host."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Callable

import pytest

from credfix.cli.common import Services
from credfix.core.config import CredfixConfig
from credfix.core.errors import ExecutionError, ExecutionErrorKind
from credfix.core.events import EventBroadcaster
from credfix.core.process import CommandResult, ProcessRunner, format_command
from credfix.diagnostics.docker_checker import DockerChecker
from credfix.diagnostics.engine import DiagnosticEngine
from credfix.diagnostics.platform_detector import PlatformDetector
from credfix.diagnostics.probes.linux import LinuxProbeSet
from credfix.core.models import OSFamily
from credfix.repair.backup import BackupStore
from credfix.repair.repairer import CredentialRepairer


class FakeRunner(ProcessRunner):
    """ProcessRunner that answers from a script instead of spawning.

    Commands not in ``installed`` fail to spawn, like a missing binary.
    ``responses`` maps a full command line (or just the program name) to
    ``(exit_code, stdout)`` or ``(exit_code, stdout, stderr)``; the string
    ``"timeout"`` as exit code raises a timeout. Unscripted commands exit 0
    with no output.
    """

    def __init__(self, installed=(), responses=None, delays=None, hooks=None):
        super().__init__(timeout=5, env={"PATH": "/usr/bin"})
        self.installed = set(installed)
        self.responses = dict(responses or {})
        self.delays = dict(delays or {})
        self.hooks: dict[str, Callable[[], None]] = dict(hooks or {})
        self.calls: list[str] = []

    def which(self, name: str) -> str | None:
        return f"/usr/bin/{name}" if name in self.installed else None

    async def run(self, command, args=(), timeout=None, check=True, input=None) -> CommandResult:
        cmdline = format_command(command, args)
        self.calls.append(cmdline)

        delay = self.delays.get(command)
        if delay:
            await asyncio.sleep(delay)

        if command not in self.installed:
            raise ExecutionError(
                ExecutionErrorKind.SPAWN_FAILURE, cmdline, stderr=f"No such file or directory: '{command}'"
            )

        for prefix, hook in self.hooks.items():
            if cmdline.startswith(prefix):
                hook()

        response = self.responses.get(cmdline, self.responses.get(command, (0, "")))
        exit_code, stdout = response[0], response[1]
        stderr = response[2] if len(response) > 2 else ""
        if exit_code == "timeout":
            raise ExecutionError(ExecutionErrorKind.TIMEOUT, cmdline)

        result = CommandResult(cmdline, stdout, stderr, exit_code, 0.0)
        if check and exit_code != 0:
            raise ExecutionError(
                ExecutionErrorKind.NON_ZERO_EXIT, cmdline, exit_code=exit_code, stderr=stderr, stdout=stdout
            )
        return result

    def called(self, prefix: str) -> bool:
        return any(c.startswith(prefix) for c in self.calls)


class FakeHost:
    """A Linux home directory under tmp_path plus the runner that serves it."""

    def __init__(self, tmp_path: Path):
        self.home = tmp_path / "home"
        self.home.mkdir()
        self.root = tmp_path / "root"
        self.root.mkdir()
        self.backup_dir = tmp_path / "backups"
        self.socket = tmp_path / "docker.sock"
        self.env = {
            "HOME": str(self.home),
            "USER": "dev",
            "PATH": "/usr/bin",
            "DBUS_SESSION_BUS_ADDRESS": "unix:path=/run/user/1000/bus",
        }
        self.runner = FakeRunner(installed={"docker", "dbus-send"})
        self.config = CredfixConfig()
        self.config.backup.directory = self.backup_dir
        self.config.scan.registry_probe = False
        self.events = EventBroadcaster()

    @property
    def config_path(self) -> Path:
        return self.home / ".docker" / "config.json"

    def write_config(self, data) -> Path:
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        text = data if isinstance(data, str) else json.dumps(data, indent=2)
        self.config_path.write_text(text)
        return self.config_path

    def install(self, *names: str) -> None:
        self.runner.installed.update(names)

    def engine(self) -> DiagnosticEngine:
        detector = PlatformDetector(self.runner, self.config, env=self.env, home=self.home, system="Linux")
        checker = DockerChecker(
            self.runner,
            OSFamily.LINUX,
            self.config,
            env=self.env,
            home=self.home,
            socket_path=self.socket,
            meminfo_path=self.root / "meminfo",
        )
        probe_set = LinuxProbeSet(self.runner, self.config, env=self.env, home=self.home, root=self.root)
        probe_set.socket_path = self.socket
        return DiagnosticEngine(
            self.runner,
            self.config,
            self.events,
            env=self.env,
            home=self.home,
            system="Linux",
            detector=detector,
            checker=checker,
            probe_set=probe_set,
        )

    def backups(self) -> BackupStore:
        return BackupStore(self.backup_dir, encrypt=self.config.backup.encrypt)

    def repairer(self, backups: BackupStore | None = None) -> CredentialRepairer:
        return CredentialRepairer(
            self.runner, self.config, backups or self.backups(), self.events, env=self.env, home=self.home
        )

    def services(self, config: CredfixConfig | None = None) -> Services:
        """The command-level wiring over this host, as ``build_services`` would return it."""
        if config is not None:
            config.backup.directory = self.backup_dir
            config.scan.registry_probe = False
            self.config = config
        backups = self.backups()
        return Services(self.config, self.events, self.runner, backups, self.engine(), self.repairer(backups))


@pytest.fixture
def host(tmp_path: Path) -> FakeHost:
    return FakeHost(tmp_path)


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner(installed={"docker"})
