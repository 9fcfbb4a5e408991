"""Linux probe set: Secret Service, D-Bus, keyring, packages, docker group."""

from __future__ import annotations

import getpass
import os
import re
from pathlib import Path

from credfix.core.models import CheckSection, Issue, IssueType, OSFamily, Severity
from credfix.diagnostics.packages import (
    LINUX_PACKAGE_MANAGERS,
    availability_command,
    helper_package,
    install_command,
)
from credfix.diagnostics.probes.base import BaseProbeSet, Probe

RELEASE_FILES = ["etc/os-release", "etc/lsb-release", "etc/redhat-release", "etc/debian_version"]

DESKTOPS = ["GNOME", "KDE", "XFCE", "LXDE", "MATE", "CINNAMON", "BUDGIE", "UNITY"]

DESKTOP_PROCESSES = {
    "gnome-shell": "GNOME",
    "gnome-session": "GNOME",
    "plasmashell": "KDE",
    "kwin_x11": "KDE",
    "kwin_wayland": "KDE",
    "xfce4-session": "XFCE",
    "lxsession": "LXDE",
    "mate-session": "MATE",
    "cinnamon": "CINNAMON",
    "budgie-wm": "BUDGIE",
    "unity-panel-ser": "UNITY",
}

DBUS_PING = [
    "--session",
    "--dest=org.freedesktop.DBus",
    "--type=method_call",
    "--print-reply",
    "/org/freedesktop/DBus",
    "org.freedesktop.DBus.Peer.Ping",
]

DBUS_SYSTEM_LIST = [
    "--system",
    "--dest=org.freedesktop.DBus",
    "--type=method_call",
    "--print-reply",
    "/org/freedesktop/DBus",
    "org.freedesktop.DBus.ListNames",
]

SECRET_SERVICE_OPEN = [
    "--session",
    "--dest=org.freedesktop.secrets",
    "--type=method_call",
    "--print-reply",
    "/org/freedesktop/secrets",
    "org.freedesktop.Secret.Service.OpenSession",
    "string:plain",
    "variant:string:",
]

_KV_RE = re.compile(r'^([A-Z_]+)="?([^"\n]*)"?$', re.MULTILINE)


def parse_release_file(name: str, content: str) -> dict | None:
    """Distribution identity from one release file, None if unrecognised."""
    if name.endswith("os-release"):
        values = dict(_KV_RE.findall(content))
        if "ID" in values or "NAME" in values:
            return {
                "id": values.get("ID", "").lower(),
                "name": values.get("NAME", ""),
                "version": values.get("VERSION_ID", ""),
                "pretty_name": values.get("PRETTY_NAME", ""),
            }
    elif name.endswith("lsb-release"):
        values = dict(_KV_RE.findall(content))
        if "DISTRIB_ID" in values:
            return {
                "id": values["DISTRIB_ID"].lower(),
                "name": values["DISTRIB_ID"],
                "version": values.get("DISTRIB_RELEASE", ""),
                "pretty_name": values.get("DISTRIB_DESCRIPTION", ""),
            }
    elif name.endswith("redhat-release"):
        text = content.strip()
        if text:
            match = re.search(r"release ([\d.]+)", text)
            return {
                "id": "rhel",
                "name": text.split(" release")[0],
                "version": match.group(1) if match else "",
                "pretty_name": text,
            }
    elif name.endswith("debian_version"):
        text = content.strip()
        if text:
            return {"id": "debian", "name": "Debian", "version": text, "pretty_name": f"Debian {text}"}
    return None


class LinuxProbeSet(BaseProbeSet):
    os_family = OSFamily.LINUX
    helper_names = ["secretservice", "pass", "desktop"]

    socket_path = Path("/var/run/docker.sock")

    def probes(self) -> list[tuple[str, Probe]]:
        return [
            ("distribution", self.probe_distribution),
            ("desktop", self.probe_desktop),
            ("secret_store", self.probe_secret_store),
            ("credential_helpers", self.probe_credential_helpers),
            ("package_manager", self.probe_package_manager),
            ("docker_service", self.probe_docker_service),
            ("docker_access", self.probe_docker_access),
            ("docker_config", self.probe_docker_config),
        ]

    async def probe_distribution(self) -> CheckSection:
        section = CheckSection(name="distribution")
        for rel in RELEASE_FILES:
            path = self.root / rel
            if not path.exists():
                continue
            info = parse_release_file(rel, path.read_text(errors="ignore"))
            if info is not None:
                section.facts.update(info)
                section.facts["source"] = str(path)
                return section
        section.facts["id"] = "unknown"
        section.warnings.append("Could not identify the Linux distribution.")
        return section

    async def probe_desktop(self) -> CheckSection:
        section = CheckSection(name="desktop")
        for var in ("XDG_CURRENT_DESKTOP", "DESKTOP_SESSION", "GNOME_DESKTOP_SESSION_ID"):
            value = self.env.get(var)
            if not value:
                continue
            if var == "GNOME_DESKTOP_SESSION_ID":
                section.facts.update({"desktop": "GNOME", "detected_by": var})
                return section
            upper = value.upper()
            for desktop in DESKTOPS:
                if desktop in upper:
                    section.facts.update({"desktop": desktop, "detected_by": var})
                    return section

        output = await self.command_output("ps", ["-eo", "comm"])
        if output:
            running = {line.strip() for line in output.splitlines()}
            for process, desktop in DESKTOP_PROCESSES.items():
                if process in running:
                    section.facts.update({"desktop": desktop, "detected_by": "process"})
                    return section

        section.facts.update({"desktop": None, "headless": True})
        return section

    async def probe_secret_store(self) -> CheckSection:
        """D-Bus session bus, then the Secret Service, then keyring lock state."""
        section = CheckSection(name="secret_store")
        creds_store = self.configured_creds_store()
        uses_secretservice = creds_store in (None, "secretservice")
        severity = Severity.HIGH if uses_secretservice else Severity.LOW

        bus_address = self.env.get("DBUS_SESSION_BUS_ADDRESS")
        section.facts["session_bus_address"] = bool(bus_address)
        session_ok = False
        if self.runner.which("dbus-send") is None:
            section.facts["dbus_send"] = False
        elif bus_address:
            session_ok = await self.runner.succeeds("dbus-send", DBUS_PING, timeout=5)
        section.facts["session_bus"] = session_ok

        if self.runner.which("dbus-send") is not None:
            section.facts["system_bus"] = await self.runner.succeeds("dbus-send", DBUS_SYSTEM_LIST, timeout=5)

        if not session_ok:
            section.issues.append(Issue(
                code="DBUS_SESSION_UNAVAILABLE",
                type=IssueType.CREDENTIAL_HELPER,
                severity=severity,
                description="No D-Bus session bus is reachable",
                evidence="DBUS_SESSION_BUS_ADDRESS unset" if not bus_address else "dbus-send Ping failed",
                auto_fixable=False,
                suggestion=(
                    "Run Docker commands from a desktop session, or start one with "
                    "`eval $(dbus-launch --sh-syntax)`."
                ),
                source="linux",
            ))
            section.facts["secret_service"] = False
            section.ok = False
            return section

        secret_service = await self.runner.succeeds("dbus-send", SECRET_SERVICE_OPEN, timeout=5)
        section.facts["secret_service"] = secret_service
        keyring_version = await self.command_output("gnome-keyring-daemon", ["--version"])
        section.facts["gnome_keyring"] = keyring_version.strip() if keyring_version else None
        kwallet = await self.command_output("kwallet-query", ["-l", "kdewallet"])
        section.facts["kwallet"] = kwallet is not None

        if not secret_service:
            section.issues.append(Issue(
                code="SECRET_SERVICE_UNAVAILABLE",
                type=IssueType.CREDENTIAL_HELPER,
                severity=severity,
                description="The Secret Service API is not available on the session bus",
                evidence="org.freedesktop.Secret.Service.OpenSession failed",
                auto_fixable=False,
                suggestion="Start a keyring: `gnome-keyring-daemon --start --components=secrets`.",
                source="linux",
            ))
            section.ok = False
            return section

        if self.runner.which("secret-tool") is not None:
            result = await self.runner.run(
                "secret-tool", ["search", "--all", "service", "credfix-probe"], timeout=5, check=False
            )
            locked = "locked" in (result.stdout + result.stderr).lower()
            section.facts["keyring_locked"] = locked
            if locked:
                section.issues.append(Issue(
                    code="KEYRING_LOCKED",
                    type=IssueType.CREDENTIAL_HELPER,
                    severity=Severity.MEDIUM,
                    description="The login keyring is locked",
                    evidence="secret-tool reports a locked collection",
                    auto_fixable=False,
                    suggestion="Unlock the login keyring (log in to the desktop, or use Seahorse).",
                    source="linux",
                ))
        section.ok = not section.issues
        return section

    async def probe_package_manager(self) -> CheckSection:
        section = CheckSection(name="package_manager", facts={"manager": None})
        for manager in LINUX_PACKAGE_MANAGERS:
            if self.runner.which(manager) is not None:
                section.facts["manager"] = manager
                break
        manager = section.facts["manager"]
        if manager is None:
            section.warnings.append("No supported package manager found.")
            return section

        package = helper_package(manager, self.config.fix.helper_package)
        section.facts["package"] = package
        section.facts["install_command"] = install_command(manager, self.config.fix.helper_package)
        check = availability_command(manager, package) if package else None
        if check:
            section.facts["package_available"] = await self.runner.succeeds(check[0], check[1:], timeout=30)
        return section

    async def probe_docker_service(self) -> CheckSection:
        section = CheckSection(name="docker_service")
        if self.runner.which("systemctl") is None:
            section.facts["systemd"] = False
            return section
        result = await self.runner.run("systemctl", ["is-active", "docker"], timeout=5, check=False)
        state = result.stdout.strip() or "unknown"
        section.facts.update({"systemd": True, "state": state, "active": state == "active"})
        if state != "active":
            section.warnings.append(
                f"docker.service is {state}; run `sudo systemctl start docker` unless you use "
                "Docker Desktop or rootless Docker."
            )
        return section

    async def probe_docker_access(self) -> CheckSection:
        """Group membership, socket access, sudo and home directory access."""
        section = CheckSection(name="docker_access")
        user = self.env.get("USER") or getpass.getuser()
        groups_out = await self.command_output("id", ["-nG"]) or ""
        groups = groups_out.split()
        is_root = hasattr(os, "geteuid") and os.geteuid() == 0
        socket = self.access(self.socket_path)
        can_sudo = False
        if self.runner.which("sudo") is not None:
            can_sudo = await self.runner.succeeds("sudo", ["-n", "true"], timeout=5)

        section.facts.update({
            "user": user,
            "groups": groups,
            "in_docker_group": "docker" in groups,
            "root": is_root,
            "socket": socket,
            "home": self.access(self.home),
            "can_sudo": can_sudo,
        })

        if (
            socket["exists"]
            and not (socket["readable"] and socket["writable"])
            and "docker" not in groups
            and not is_root
        ):
            section.issues.append(Issue(
                code="DOCKER_GROUP_MISSING",
                type=IssueType.PERMISSIONS,
                severity=Severity.HIGH,
                description=f"User {user} is not in the docker group",
                evidence=f"{user} groups: {' '.join(sorted(groups))}",
                auto_fixable=True,
                suggestion="Run `sudo usermod -aG docker $USER`, then log out and back in.",
                source="linux",
                details={"user": user},
            ))
        section.ok = not section.issues
        return section
