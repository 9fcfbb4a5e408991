"""Base class shared by the platform-specific probe sets."""

from __future__ import annotations

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Awaitable, Callable, Mapping

from credfix.core.config import CredfixConfig, docker_config_path
from credfix.core.errors import ConfigError, ProbeError
from credfix.core.models import CheckSection, HelperStatus, OSFamily, ProbeReport
from credfix.core.process import ProcessRunner
from credfix.diagnostics.config_inspector import inspect_docker_config, load_docker_config
from credfix.diagnostics.helpers import helper_binary, probe_helper
from credfix.diagnostics.recommendations import build_recommendations

logger = logging.getLogger("credfix.probes")

Probe = Callable[[], Awaitable[CheckSection]]


class BaseProbeSet(ABC):
    """A platform's deep checks.

    Subclasses list their probes; each probe runs concurrently with the
    others and a probe that raises is recorded as a ProbeError.
    """

    os_family: OSFamily = OSFamily.UNKNOWN
    helper_names: list[str] = []

    def __init__(
        self,
        runner: ProcessRunner,
        config: CredfixConfig | None = None,
        env: Mapping[str, str] | None = None,
        home: Path | None = None,
        root: Path = Path("/"),
    ):
        self.runner = runner
        self.config = config or CredfixConfig()
        self.env = os.environ if env is None else env
        self.home = home or Path.home()
        self.root = root

    @property
    def config_path(self) -> Path:
        return docker_config_path(self.config, self.env, self.home)

    @abstractmethod
    def probes(self) -> list[tuple[str, Probe]]:
        """Named probes in discovery order."""
        ...

    async def run_diagnostics(self) -> ProbeReport:
        report = ProbeReport(os_family=self.os_family)
        probes = self.probes()
        sections = await asyncio.gather(*(self._guarded(name, probe) for name, probe in probes))

        for section in sections:
            report.facts[section.name] = section.facts
            report.issues.extend(section.issues)
            if section.warnings:
                report.facts.setdefault("warnings", []).extend(section.warnings)
            if section.error is not None:
                report.errors.append(section.error)

        report.recommendations = build_recommendations(
            report.issues, self.summary_facts(report.facts), self.os_family
        )
        return report

    async def _guarded(self, name: str, probe: Probe) -> CheckSection:
        try:
            section = await probe()
        except Exception as e:
            logger.warning("Probe %s failed: %s", name, e)
            return CheckSection(name=name, ok=False, error=ProbeError.from_exception(name, e))
        section.name = name
        return section

    def summary_facts(self, facts: dict) -> dict:
        """Flatten the facts recommendations depend on."""
        helpers = facts.get("credential_helpers", {})
        return {
            "package_manager": facts.get("package_manager", {}).get("manager"),
            "working_helpers": [
                name for name, info in helpers.items() if info.get("status") == HelperStatus.WORKING.value
            ],
        }

    # Probes shared by every platform

    async def probe_credential_helpers(self) -> CheckSection:
        section = CheckSection(name="credential_helpers")
        results = await asyncio.gather(
            *(probe_helper(self.runner, helper_binary(n, self.os_family)) for n in self.helper_names)
        )
        for name, probe in zip(self.helper_names, results):
            section.facts[name] = {
                "binary": probe.binary,
                "path": probe.path,
                "status": probe.status.value,
                "exit_code": probe.exit_code,
                "entries": probe.entries,
            }
        return section

    async def probe_docker_config(self) -> CheckSection:
        return inspect_docker_config(self.config_path, self.runner.which, self.os_family)

    def configured_creds_store(self) -> str | None:
        try:
            data = load_docker_config(self.config_path)
        except ConfigError:
            return None
        if data is None:
            return None
        value = data.get("credsStore")
        return value if isinstance(value, str) else None

    async def command_output(self, command: str, args: list[str], timeout: float = 10) -> str | None:
        """stdout of a successful command, None if it is missing or fails."""
        if self.runner.which(command) is None:
            return None
        result = await self.runner.run(command, args, timeout=timeout, check=False)
        return result.stdout if result.exit_code == 0 else None

    def access(self, path: Path) -> dict:
        exists = path.exists()
        return {
            "exists": exists,
            "readable": exists and os.access(path, os.R_OK),
            "writable": exists and os.access(path, os.W_OK),
        }


class ConfigOnlyProbeSet(BaseProbeSet):
    """Fallback for platforms without a dedicated probe set."""

    def probes(self) -> list[tuple[str, Probe]]:
        return [("docker_config", self.probe_docker_config)]
