"""macOS probe set: Keychain, Homebrew and Docker Desktop."""

from __future__ import annotations

import plistlib
from pathlib import Path

from credfix.core.models import CheckSection, Issue, IssueType, OSFamily, Severity
from credfix.diagnostics.packages import helper_package, install_command
from credfix.diagnostics.probes.base import BaseProbeSet, Probe


class MacOSProbeSet(BaseProbeSet):
    os_family = OSFamily.MACOS
    helper_names = ["osxkeychain", "desktop"]

    applications_dir = Path("/Applications")

    def probes(self) -> list[tuple[str, Probe]]:
        return [
            ("keychain", self.probe_keychain),
            ("credential_helpers", self.probe_credential_helpers),
            ("package_manager", self.probe_homebrew),
            ("docker_desktop", self.probe_docker_desktop),
            ("docker_access", self.probe_docker_access),
            ("docker_config", self.probe_docker_config),
        ]

    @property
    def login_keychain(self) -> Path:
        return self.home / "Library" / "Keychains" / "login.keychain-db"

    async def probe_keychain(self) -> CheckSection:
        section = CheckSection(name="keychain")
        keychain = self.login_keychain
        section.facts["login_keychain"] = str(keychain)
        section.facts["login_keychain_exists"] = keychain.exists()

        keychains = await self.command_output("security", ["list-keychains"])
        if keychains is None:
            section.ok = False
            section.facts["accessible"] = False
            section.issues.append(Issue(
                code="KEYCHAIN_INACCESSIBLE",
                type=IssueType.CREDENTIAL_HELPER,
                severity=Severity.HIGH,
                description="The macOS keychain cannot be queried",
                evidence="security list-keychains failed",
                auto_fixable=False,
                suggestion="Open Keychain Access and make sure a login keychain exists and is the default.",
                source="macos",
            ))
            return section

        listed = [line.strip().strip('"') for line in keychains.splitlines() if line.strip()]
        section.facts["keychains"] = listed
        section.facts["accessible"] = True

        if keychain.exists():
            result = await self.runner.run(
                "security", ["show-keychain-info", str(keychain)], timeout=5, check=False
            )
            locked = result.exit_code != 0 and "locked" in (result.stdout + result.stderr).lower()
            section.facts["locked"] = locked
            if locked:
                section.issues.append(Issue(
                    code="KEYCHAIN_LOCKED",
                    type=IssueType.CREDENTIAL_HELPER,
                    severity=Severity.MEDIUM,
                    description="The login keychain is locked",
                    evidence="security show-keychain-info: locked",
                    auto_fixable=False,
                    suggestion="Run `security unlock-keychain login.keychain-db`.",
                    source="macos",
                ))
        else:
            section.warnings.append(f"No login keychain at {keychain}.")

        section.ok = not section.issues
        return section

    async def probe_homebrew(self) -> CheckSection:
        section = CheckSection(name="package_manager", facts={"manager": None})
        if self.runner.which("brew") is None:
            section.warnings.append("Homebrew is not installed; install it from https://brew.sh.")
            return section

        package = helper_package("brew", self.config.fix.helper_package)
        version = await self.command_output("brew", ["--version"])
        installed = await self.runner.succeeds("brew", ["list", package], timeout=30)
        section.facts.update({
            "manager": "brew",
            "version": version.splitlines()[0] if version else None,
            "package": package,
            "package_installed": installed,
            "install_command": install_command("brew", self.config.fix.helper_package),
        })
        return section

    async def probe_docker_desktop(self) -> CheckSection:
        section = CheckSection(name="docker_desktop")
        app = self.applications_dir / "Docker.app"
        section.facts["installed"] = app.exists()
        if not app.exists():
            section.warnings.append("Docker Desktop is not installed in /Applications.")
            return section

        info_plist = app / "Contents" / "Info.plist"
        if info_plist.exists():
            with open(info_plist, "rb") as f:
                info = plistlib.load(f)
            section.facts["version"] = info.get("CFBundleShortVersionString")
        return section

    async def probe_docker_access(self) -> CheckSection:
        section = CheckSection(name="docker_access")
        groups_out = await self.command_output("id", ["-Gn"]) or ""
        groups = groups_out.split()
        docker_dir = self.config_path.parent
        access = self.access(docker_dir)
        section.facts.update({
            "groups": groups,
            "admin": "admin" in groups,
            "staff": "staff" in groups,
            "docker_dir": access,
        })
        if access["exists"] and not (access["readable"] and access["writable"]):
            section.issues.append(Issue(
                code="DOCKER_DIR_NOT_WRITABLE",
                type=IssueType.PERMISSIONS,
                severity=Severity.HIGH,
                description=f"{docker_dir} is not readable and writable by the current user",
                evidence=f"{docker_dir}: read={access['readable']} write={access['writable']}",
                suggestion=f'Run "sudo chown -R $USER {docker_dir}".',
                source="docker",
            ))
        section.ok = not section.issues
        return section
