"""Platform detection: OS, Docker version and the effective credential helper."""

from __future__ import annotations

import json
import logging
import os
import platform
import re
from pathlib import Path
from typing import Mapping

from credfix.core.config import CredfixConfig, docker_config_path
from credfix.core.errors import ExecutionError
from credfix.core.models import HelperStatus, Issue, IssueType, OSFamily, PlatformInfo, Severity
from credfix.core.process import ProcessRunner
from credfix.diagnostics.helpers import (
    HelperProbe,
    classify_helper,
    expected_binaries,
    helper_binary,
    probe_helper,
)

logger = logging.getLogger("credfix.diagnostics")

DOCKER_VERSION_RE = re.compile(r"Docker version ([^\s,]+)")

KEYCHAIN_PROBES: dict[OSFamily, tuple[str, list[str]]] = {
    OSFamily.MACOS: ("security", ["list-keychains"]),
    OSFamily.LINUX: (
        "dbus-send",
        [
            "--session",
            "--dest=org.freedesktop.secrets",
            "--type=method_call",
            "--print-reply",
            "/org/freedesktop/secrets",
            "org.freedesktop.Secret.Service.OpenSession",
            "string:plain",
            "variant:string:",
        ],
    ),
    OSFamily.WINDOWS: ("cmd", ["/c", "cmdkey", "/list"]),
}


class PlatformDetector:
    """Builds the PlatformInfo snapshot for one diagnostic run.

    Every step is independent: a failure is recorded in ``errors`` and the
    remaining steps still run.
    """

    def __init__(
        self,
        runner: ProcessRunner,
        config: CredfixConfig | None = None,
        env: Mapping[str, str] | None = None,
        home: Path | None = None,
        system: str | None = None,
    ):
        self.runner = runner
        self.config = config or CredfixConfig()
        self.env = os.environ if env is None else env
        self.home = home or Path.home()
        self.system = system

    async def detect(self) -> PlatformInfo:
        errors: list[str] = []

        # (a) runtime facts
        os_family = OSFamily.from_platform(self.system or platform.system())
        arch = platform.machine()
        release = platform.release()
        config_path = docker_config_path(self.config, self.env, self.home)

        # (b) docker version
        docker_version = None
        try:
            docker_version = await self._docker_version()
        except Exception as e:
            errors.append(f"docker version: {e}")

        # (c) + (d) expected helpers and config-declared helper
        config_helper, helper_source = None, None
        try:
            config_helper, helper_source = self._configured_helper(config_path, os_family)
        except Exception as e:
            errors.append(f"docker config: {e}")

        path_helpers: list[str] = []
        try:
            path_helpers = [b for b in expected_binaries(os_family) if self.runner.which(b)]
        except Exception as e:
            errors.append(f"helper lookup: {e}")
        path_helper = path_helpers[0] if path_helpers else None

        credential_helper = config_helper or path_helper
        if credential_helper and not helper_source:
            helper_source = "path"

        # (e) test the resolved helper
        status, exit_code, helper_error, helper_evidence = HelperStatus.UNKNOWN, None, "", ""
        if credential_helper:
            try:
                probe = await probe_helper(self.runner, credential_helper)
                status, exit_code = probe.status, probe.exit_code
                helper_error, helper_evidence = probe.error, probe.evidence
            except Exception as e:
                errors.append(f"helper test: {e}")
        else:
            status = HelperStatus.NOT_FOUND

        keychain = None
        try:
            keychain = await self._keychain_accessible(os_family)
        except Exception as e:
            errors.append(f"keychain: {e}")

        for err in errors:
            logger.info("Platform detection step failed: %s", err)

        return PlatformInfo(
            os_family=os_family,
            arch=arch,
            release=release,
            homedir=self.home,
            docker_config_path=config_path,
            docker_version=docker_version,
            credential_helper=credential_helper,
            helper_source=helper_source,
            helper_status=status,
            helper_exit_code=exit_code,
            helper_error=helper_error,
            helper_evidence=helper_evidence,
            path_helper=path_helper if path_helper not in (None, config_helper) else None,
            keychain_accessible=keychain,
            errors=tuple(errors),
        )

    async def _docker_version(self) -> str | None:
        try:
            result = await self.runner.run("docker", ["--version"], timeout=10)
        except ExecutionError:
            return None
        match = DOCKER_VERSION_RE.search(result.stdout)
        return match.group(1) if match else result.stdout.strip() or None

    def _configured_helper(self, config_path: Path, os_family: OSFamily) -> tuple[str | None, str | None]:
        """credsStore wins over credHelpers; unreadable config means no helper."""
        if not config_path.exists():
            return None, None
        try:
            data = json.loads(config_path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None, None
        if not isinstance(data, dict):
            return None, None

        creds_store = data.get("credsStore")
        if isinstance(creds_store, str) and creds_store:
            return helper_binary(creds_store, os_family), "config"

        cred_helpers = data.get("credHelpers")
        if isinstance(cred_helpers, dict):
            for registry in sorted(cred_helpers):
                name = cred_helpers[registry]
                if isinstance(name, str) and name:
                    return helper_binary(name, os_family), "cred_helpers"
        return None, None

    async def _keychain_accessible(self, os_family: OSFamily) -> bool | None:
        probe = KEYCHAIN_PROBES.get(os_family)
        if probe is None:
            return None
        command, args = probe
        if self.runner.which(command) is None:
            return False
        return await self.runner.succeeds(command, args, timeout=10)


def issues_from_platform(info: PlatformInfo) -> list[Issue]:
    """Derive credential-helper issues from a platform snapshot."""
    issues: list[Issue] = []
    expected = expected_binaries(info.os_family)

    if info.credential_helper is None:
        issues.append(Issue(
            code="HELPER_NOT_INSTALLED",
            type=IssueType.CREDENTIAL_HELPER,
            severity=Severity.CRITICAL,
            description="No credential helper installed",
            evidence=f"expected one of: {', '.join(expected) or 'none known for this platform'}",
            auto_fixable=info.os_family in (OSFamily.LINUX, OSFamily.MACOS),
            suggestion=_install_hint(info.os_family),
            source="platform",
            details={"expected": expected},
        ))
        return issues

    if info.helper_status in (HelperStatus.BROKEN, HelperStatus.FAILED):
        probe = HelperProbe(
            binary=info.credential_helper,
            status=info.helper_status,
            exit_code=info.helper_exit_code,
            error=info.helper_error,
            evidence=info.helper_evidence,
        )
        issue = classify_helper(
            probe,
            auto_fixable=info.helper_source == "config",
            source="platform",
            details={"config_path": str(info.docker_config_path)},
        )
        if issue is not None:
            issues.append(issue)

    if (
        info.helper_source in ("config", "cred_helpers")
        and info.path_helper is not None
        and info.helper_status != HelperStatus.NOT_FOUND
    ):
        issues.append(Issue(
            code="HELPER_MISMATCH",
            type=IssueType.CREDENTIAL_HELPER,
            severity=Severity.LOW,
            description=(
                f"Docker config uses {info.credential_helper} but {info.path_helper} "
                "is the platform's native helper"
            ),
            evidence=f"config={info.credential_helper} path={info.path_helper}",
            auto_fixable=False,
            suggestion=(
                "The helper in your Docker config is used. Switch credsStore only if "
                "you meant to use the native helper."
            ),
            source="platform",
        ))

    return issues


def _install_hint(os_family: OSFamily) -> str:
    if os_family == OSFamily.MACOS:
        return "Install it with `brew install docker-credential-helper`."
    if os_family == OSFamily.LINUX:
        return "Install docker-credential-helpers from your distribution (secretservice or pass)."
    if os_family == OSFamily.WINDOWS:
        return "Install Docker Desktop, which ships docker-credential-wincred.exe."
    return "Install a Docker credential helper for your platform."
