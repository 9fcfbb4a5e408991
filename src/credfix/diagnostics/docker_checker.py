"""Docker checks: daemon, configuration, registry, system, permissions, version."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import shutil
from pathlib import Path
from typing import Awaitable, Mapping

from credfix.core.config import CredfixConfig, docker_config_path
from credfix.core.errors import ExecutionError, ExecutionErrorKind, ProbeError
from credfix.core.models import CheckSection, DockerReport, Issue, IssueType, OSFamily, Severity
from credfix.core.process import ProcessRunner
from credfix.diagnostics.config_inspector import inspect_docker_config

logger = logging.getLogger("credfix.diagnostics")

UNIX_SOCKET = Path("/var/run/docker.sock")
WINDOWS_PIPE = Path(r"\\.\pipe\docker_engine")
PROXY_VARS = ("HTTP_PROXY", "HTTPS_PROXY", "NO_PROXY", "http_proxy", "https_proxy", "no_proxy")

DAEMON_START_HINTS = {
    OSFamily.LINUX: 'Run "sudo systemctl start docker" or "sudo service docker start".',
    OSFamily.MACOS: "Start Docker Desktop from the Applications folder.",
    OSFamily.WINDOWS: "Start Docker Desktop or the Docker service.",
}

_SIZE_RE = re.compile(r"([\d.]+)\s*([kKMGTP]?B)")
_SIZE_UNITS = {"B": 1, "kB": 1e3, "KB": 1e3, "MB": 1e6, "GB": 1e9, "TB": 1e12, "PB": 1e15}


def parse_size(text: str) -> float:
    """Parse docker's human sizes ("1.2GB", "512kB") into bytes."""
    match = _SIZE_RE.search(text or "")
    if not match:
        return 0.0
    return float(match.group(1)) * _SIZE_UNITS.get(match.group(2), 1)


def _percent(part: float, whole: float) -> float:
    return round(part / whole * 100, 1) if whole else 0.0


class DockerChecker:
    """Runs the six Docker check sections concurrently.

    A section that raises is reported as an error-carrying section; the
    report always has every section populated.
    """

    def __init__(
        self,
        runner: ProcessRunner,
        os_family: OSFamily,
        config: CredfixConfig | None = None,
        env: Mapping[str, str] | None = None,
        home: Path | None = None,
        socket_path: Path | None = None,
        meminfo_path: Path = Path("/proc/meminfo"),
    ):
        self.runner = runner
        self.os_family = os_family
        self.config = config or CredfixConfig()
        self.env = os.environ if env is None else env
        self.home = home or Path.home()
        self.socket_path = socket_path or (WINDOWS_PIPE if os_family == OSFamily.WINDOWS else UNIX_SOCKET)
        self.meminfo_path = meminfo_path

    async def run_docker_checks(self) -> DockerReport:
        names = ("daemon", "configuration", "registry", "system", "permissions", "version")
        sections = await asyncio.gather(
            self._guarded("daemon", self.check_daemon()),
            self._guarded("configuration", self.check_configuration()),
            self._guarded("registry", self.check_registry()),
            self._guarded("system", self.check_system()),
            self._guarded("permissions", self.check_permissions()),
            self._guarded("version", self.check_version()),
        )
        return DockerReport(**dict(zip(names, sections)))

    async def _guarded(self, name: str, check: Awaitable[CheckSection]) -> CheckSection:
        try:
            return await check
        except Exception as e:
            logger.warning("Docker check %r failed: %s", name, e)
            return CheckSection(name=name, ok=False, error=ProbeError.from_exception(f"docker.{name}", e))

    async def check_daemon(self) -> CheckSection:
        section = CheckSection(name="daemon", facts={"running": False})
        try:
            result = await self.runner.run("docker", ["info", "--format", "{{json .}}"])
        except ExecutionError as e:
            section.ok = False
            section.issues.append(Issue(
                code="DAEMON_NOT_RUNNING",
                type=IssueType.DAEMON,
                severity=Severity.CRITICAL,
                description="Docker daemon is not reachable",
                evidence=f"docker info: {e.evidence}",
                auto_fixable=False,
                suggestion=DAEMON_START_HINTS.get(self.os_family, "Start the Docker daemon."),
                source="docker",
                details={"stderr": e.stderr.strip()},
            ))
            return section

        info = json.loads(result.stdout or "{}")
        section.facts.update({
            "running": True,
            "server_version": info.get("ServerVersion"),
            "os": info.get("OperatingSystem"),
            "arch": info.get("Architecture"),
            "containers": info.get("Containers"),
            "images": info.get("Images"),
            "docker_root": info.get("DockerRootDir"),
        })
        api = await self.runner.run(
            "docker", ["version", "--format", "{{.Server.APIVersion}}"], check=False, timeout=10
        )
        section.facts["api_version"] = api.stdout.strip() or None
        return section

    async def check_configuration(self) -> CheckSection:
        path = docker_config_path(self.config, self.env, self.home)
        return inspect_docker_config(path, self.runner.which, self.os_family)

    async def check_registry(self) -> CheckSection:
        section = CheckSection(name="registry")
        proxies = {k: v for k, v in self.env.items() if k in PROXY_VARS}
        section.facts["proxy"] = proxies
        if not self.config.scan.registry_probe:
            section.facts["skipped"] = True
            return section

        image = self.config.scan.registry_image
        section.facts["image"] = image
        try:
            await self.runner.run("docker", ["pull", image], timeout=self.config.scan.registry_timeout)
        except ExecutionError as e:
            section.ok = False
            section.facts["reachable"] = False
            section.issues.append(self._registry_issue(image, e, bool(proxies)))
            return section

        section.facts["reachable"] = True
        return section

    def _registry_issue(self, image: str, error: ExecutionError, proxied: bool) -> Issue:
        stderr = error.stderr.lower()
        proxy_hint = " Check your proxy settings." if proxied else ""
        if error.kind == ExecutionErrorKind.TIMEOUT:
            return Issue(
                code="REGISTRY_TIMEOUT",
                type=IssueType.NETWORK,
                severity=Severity.MEDIUM,
                description=f"Pulling {image} timed out",
                evidence=f"docker pull {image}: timeout",
                suggestion="Check your network connection and registry availability." + proxy_hint,
                source="docker",
            )
        if "error getting credentials" in stderr:
            return Issue(
                code="REGISTRY_CREDENTIALS_ERROR",
                type=IssueType.CREDENTIAL_HELPER,
                severity=Severity.HIGH,
                description="Docker could not read credentials from the credential helper",
                evidence=f"docker pull {image}: error getting credentials",
                suggestion="Repair or remove the configured credential helper, then `docker login` again.",
                source="docker",
                details={"stderr": error.stderr.strip()},
            )
        if any(word in stderr for word in ("unauthorized", "authentication required", "denied")):
            return Issue(
                code="REGISTRY_AUTH_ERROR",
                type=IssueType.NETWORK,
                severity=Severity.HIGH,
                description=f"Registry rejected the credentials used to pull {image}",
                evidence=f"docker pull {image}: unauthorized",
                suggestion="Run `docker logout` and `docker login` for the registry.",
                source="docker",
            )
        return Issue(
            code="REGISTRY_ERROR",
            type=IssueType.NETWORK,
            severity=Severity.MEDIUM,
            description=f"Could not pull {image}",
            evidence=f"docker pull {image}: {error.evidence}",
            suggestion="Check registry connectivity with `docker pull hello-world`." + proxy_hint,
            source="docker",
            details={"stderr": error.stderr.strip()},
        )

    async def check_system(self) -> CheckSection:
        section = CheckSection(name="system")
        scan = self.config.scan

        memory = await self._memory_usage()
        if memory is not None:
            section.facts["memory_percent"] = memory
            if memory > scan.memory_threshold:
                section.warnings.append(
                    f"HIGH_MEMORY_USAGE: memory usage is {memory}%. "
                    "Close other applications or give Docker more memory."
                )

        try:
            usage = shutil.disk_usage(self.home)
        except OSError:
            usage = None
        if usage is not None:
            free = _percent(usage.free, usage.total)
            section.facts["disk_free_percent"] = free
            if free < scan.disk_free_threshold:
                section.warnings.append(
                    f"LOW_DISK_SPACE: only {free}% disk space free. "
                    "Free up disk space or move the Docker data directory."
                )

        storage = await self._docker_storage()
        if storage is not None:
            section.facts["docker_storage_percent"] = storage
            if storage > scan.docker_storage_threshold:
                section.warnings.append(
                    f"HIGH_DOCKER_STORAGE: Docker storage is {storage}% in use. "
                    'Run "docker system prune" to clean up unused resources.'
                )

        if hasattr(os, "getloadavg"):
            try:
                section.facts["load_average"] = [round(v, 2) for v in os.getloadavg()]
            except OSError:
                pass
        section.facts["cpu_count"] = os.cpu_count()
        return section

    async def _memory_usage(self) -> float | None:
        if self.os_family == OSFamily.LINUX and self.meminfo_path.exists():
            values = {}
            for line in self.meminfo_path.read_text().splitlines():
                key, _, rest = line.partition(":")
                parts = rest.split()
                if parts and parts[0].isdigit():
                    values[key] = int(parts[0])
            total = values.get("MemTotal", 0)
            available = values.get("MemAvailable", values.get("MemFree", 0))
            return _percent(total - available, total) if total else None

        if self.os_family == OSFamily.MACOS:
            try:
                total = int((await self.runner.run("sysctl", ["-n", "hw.memsize"], timeout=5)).stdout.strip())
                vm = (await self.runner.run("vm_stat", timeout=5)).stdout
            except (ExecutionError, ValueError):
                return None
            page_match = re.search(r"page size of (\d+)", vm)
            page = int(page_match.group(1)) if page_match else 4096
            free_pages = 0
            for name in ("Pages free", "Pages inactive", "Pages speculative"):
                match = re.search(rf"{name}:\s+(\d+)", vm)
                if match:
                    free_pages += int(match.group(1))
            return _percent(total - free_pages * page, total)

        if self.os_family == OSFamily.WINDOWS:
            try:
                out = (await self.runner.run(
                    "wmic", ["OS", "get", "FreePhysicalMemory,TotalVisibleMemorySize", "/Value"], timeout=10
                )).stdout
            except ExecutionError:
                return None
            free = re.search(r"FreePhysicalMemory=(\d+)", out)
            total = re.search(r"TotalVisibleMemorySize=(\d+)", out)
            if free and total:
                return _percent(int(total.group(1)) - int(free.group(1)), int(total.group(1)))
        return None

    async def _docker_storage(self) -> float | None:
        try:
            result = await self.runner.run("docker", ["system", "df", "--format", "{{json .}}"], timeout=15)
        except ExecutionError:
            return None
        total = reclaimable = 0.0
        for line in result.stdout.splitlines():
            line = line.strip()
            if not line:
                continue
            row = json.loads(line)
            total += parse_size(row.get("Size", ""))
            reclaimable += parse_size(row.get("Reclaimable", ""))
        if not total:
            return 0.0
        return _percent(total - reclaimable, total)

    async def check_permissions(self) -> CheckSection:
        section = CheckSection(name="permissions")
        sock = self.socket_path
        docker_dir = docker_config_path(self.config, self.env, self.home).parent

        if self.os_family == OSFamily.WINDOWS:
            section.facts["socket_exists"] = sock.exists()
            section.facts["elevated"] = await self.runner.succeeds("net", ["session"], timeout=5)
        else:
            exists = sock.exists()
            readable = exists and os.access(sock, os.R_OK)
            writable = exists and os.access(sock, os.W_OK)
            section.facts.update({
                "socket": str(sock),
                "socket_exists": exists,
                "socket_readable": readable,
                "socket_writable": writable,
                "elevated": hasattr(os, "geteuid") and os.geteuid() == 0,
            })
            if exists and not (readable and writable):
                section.issues.append(Issue(
                    code="SOCKET_PERMISSION_DENIED",
                    type=IssueType.PERMISSIONS,
                    severity=Severity.HIGH,
                    description=f"Current user cannot read and write {sock}",
                    evidence=f"{sock}: read={readable} write={writable}",
                    suggestion="Add your user to the docker group, then log out and back in.",
                    source="docker",
                ))

        if docker_dir.exists():
            readable = os.access(docker_dir, os.R_OK)
            writable = os.access(docker_dir, os.W_OK)
            section.facts["docker_dir_readable"] = readable
            section.facts["docker_dir_writable"] = writable
            if not (readable and writable):
                section.issues.append(Issue(
                    code="DOCKER_DIR_NOT_WRITABLE",
                    type=IssueType.PERMISSIONS,
                    severity=Severity.HIGH,
                    description=f"{docker_dir} is not readable and writable by the current user",
                    evidence=f"{docker_dir}: read={readable} write={writable}",
                    suggestion=f'Run "sudo chown -R $USER {docker_dir}".',
                    source="docker",
                ))

        section.ok = not section.issues
        return section

    async def check_version(self) -> CheckSection:
        section = CheckSection(name="version")
        result = await self.runner.run("docker", ["version", "--format", "{{json .}}"], check=False, timeout=15)
        text = result.stdout.strip()
        if not text:
            section.ok = False
            section.warnings.append("Docker CLI did not report a version.")
            return section
        data = json.loads(text.splitlines()[0])
        client = data.get("Client") or {}
        server = data.get("Server") or {}
        section.facts.update({
            "client_version": client.get("Version"),
            "client_api_version": client.get("ApiVersion"),
            "server_version": server.get("Version"),
            "server_api_version": server.get("ApiVersion"),
        })
        return section
