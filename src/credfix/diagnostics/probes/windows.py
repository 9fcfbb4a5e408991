"""Windows probe set: Credential Manager, Docker Desktop, services."""

from __future__ import annotations

import re
from pathlib import Path

from credfix.core.models import CheckSection, Issue, IssueType, OSFamily, Severity
from credfix.diagnostics.probes.base import BaseProbeSet, Probe

WINDOWS_VERSION_RE = re.compile(r"Microsoft Windows \[Version ([^\]]+)\]")

DOCKER_SERVICES = ["docker", "com.docker.service", "vmms"]

REGISTRY_KEY = r"HKLM\SOFTWARE\Docker Inc.\Docker"


def categorize_target(target: str) -> str:
    """Registry family for a Credential Manager target name."""
    lowered = target.lower()
    if "docker.io" in lowered or "index.docker" in lowered or "docker hub" in lowered:
        return "docker_hub"
    if ".ecr." in lowered and "amazonaws.com" in lowered:
        return "ecr"
    if "azurecr.io" in lowered:
        return "acr"
    if "gcr.io" in lowered or "pkg.dev" in lowered:
        return "gcr"
    return "other"


def parse_cmdkey(output: str) -> list[str]:
    targets = []
    for line in output.splitlines():
        line = line.strip()
        if line.lower().startswith("target:"):
            targets.append(line.split(":", 1)[1].strip())
    return targets


class WindowsProbeSet(BaseProbeSet):
    os_family = OSFamily.WINDOWS
    helper_names = ["wincred", "desktop", "ecr-login", "acr-login"]

    def probes(self) -> list[tuple[str, Probe]]:
        return [
            ("windows_version", self.probe_windows_version),
            ("docker_desktop", self.probe_docker_desktop),
            ("credential_manager", self.probe_credential_manager),
            ("credential_helpers", self.probe_credential_helpers),
            ("privileges", self.probe_privileges),
            ("services", self.probe_services),
            ("docker_config", self.probe_docker_config),
        ]

    def docker_desktop_paths(self) -> list[Path]:
        paths = []
        for var in ("PROGRAMFILES", "PROGRAMFILES(X86)"):
            base = self.env.get(var)
            if base:
                paths.append(Path(base) / "Docker" / "Docker" / "Docker Desktop.exe")
        paths.append(self.home / "AppData" / "Local" / "Programs" / "Docker" / "Docker" / "Docker Desktop.exe")
        return paths

    async def probe_windows_version(self) -> CheckSection:
        section = CheckSection(name="windows_version")
        output = await self.command_output("cmd", ["/c", "ver"])
        match = WINDOWS_VERSION_RE.search(output or "")
        section.facts["version"] = match.group(1) if match else None
        return section

    async def probe_docker_desktop(self) -> CheckSection:
        section = CheckSection(name="docker_desktop")
        installed = next((p for p in self.docker_desktop_paths() if p.exists()), None)
        section.facts["installed"] = installed is not None
        section.facts["path"] = str(installed) if installed else None
        if installed is None:
            section.warnings.append("Docker Desktop was not found in the usual install locations.")
            return section

        tasks = await self.command_output("tasklist", ["/FI", "IMAGENAME eq Docker Desktop.exe"])
        running = bool(tasks and "Docker Desktop.exe" in tasks)
        section.facts["running"] = running
        if not running:
            section.issues.append(Issue(
                code="DOCKER_DESKTOP_NOT_RUNNING",
                type=IssueType.DAEMON,
                severity=Severity.HIGH,
                description="Docker Desktop is installed but not running",
                evidence="tasklist: Docker Desktop.exe not running",
                auto_fixable=False,
                suggestion="Start Docker Desktop from the Start menu.",
                source="windows",
            ))
            section.ok = False

        registry = await self.command_output("reg", ["query", REGISTRY_KEY])
        section.facts["registry_key"] = registry is not None
        return section

    async def probe_credential_manager(self) -> CheckSection:
        section = CheckSection(name="credential_manager")
        output = await self.command_output("cmd", ["/c", "cmdkey", "/list"])
        if output is None:
            section.ok = False
            section.issues.append(Issue(
                code="CREDENTIAL_MANAGER_INACCESSIBLE",
                type=IssueType.CREDENTIAL_HELPER,
                severity=Severity.HIGH,
                description="Windows Credential Manager cannot be listed",
                evidence="cmdkey /list failed",
                auto_fixable=False,
                suggestion="Open Credential Manager from the Control Panel and check that it works.",
                source="windows",
            ))
            return section

        targets = parse_cmdkey(output)
        categories: dict[str, int] = {}
        for target in targets:
            category = categorize_target(target)
            if category != "other":
                categories[category] = categories.get(category, 0) + 1
        section.facts.update({
            "accessible": True,
            "total_credentials": len(targets),
            "docker_credentials": categories,
        })
        return section

    async def probe_privileges(self) -> CheckSection:
        section = CheckSection(name="privileges")
        admin = await self.runner.succeeds("net", ["session"], timeout=5)
        section.facts["admin"] = admin
        if not admin:
            section.warnings.append(
                "Not running as Administrator; starting Docker services may need an elevated prompt."
            )
        return section

    async def probe_services(self) -> CheckSection:
        section = CheckSection(name="services")
        states = {}
        for service in DOCKER_SERVICES:
            output = await self.command_output("sc", ["query", service])
            if output is None:
                states[service] = "missing"
            elif "RUNNING" in output:
                states[service] = "running"
            else:
                states[service] = "stopped"
        section.facts["services"] = states
        if not any(states[s] == "running" for s in ("docker", "com.docker.service")):
            section.warnings.append(
                "NO_DOCKER_SERVICE_RUNNING: neither the docker nor the com.docker.service service is running."
            )
        return section
