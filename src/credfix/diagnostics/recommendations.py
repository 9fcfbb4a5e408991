"""Recommendation generation.

A pure function of issues and collected facts: identical inputs always give
the same list, ordered critical > high > medium > low and, within a
priority, by the order the issues were discovered.
"""

from __future__ import annotations

from typing import Any, Callable

from credfix.core.models import Issue, OSFamily, Recommendation, Severity
from credfix.diagnostics.packages import SOURCE_INSTALL, install_command

Facts = dict[str, Any]


def _install_actions(issue: Issue, facts: Facts, os_family: OSFamily) -> list[str]:
    manager = facts.get("package_manager") or ("brew" if os_family == OSFamily.MACOS else None)
    command = install_command(manager)
    actions = []
    if command:
        actions.append(" ".join(command))
    if os_family == OSFamily.LINUX:
        actions.append(SOURCE_INSTALL)
        actions.append('Set "credsStore": "secretservice" (or "pass") in ~/.docker/config.json')
    elif os_family == OSFamily.WINDOWS:
        actions.append("Install Docker Desktop, which includes docker-credential-wincred.exe")
    return actions


def _broken_helper_actions(issue: Issue, facts: Facts, os_family: OSFamily) -> list[str]:
    binary = issue.details.get("binary", "the credential helper")
    actions = [
        'Remove "credsStore" from ~/.docker/config.json to fall back to file storage',
        f"Run `{binary} list` to see the underlying error",
    ]
    if os_family == OSFamily.LINUX:
        actions.append("Start the keyring: `gnome-keyring-daemon --start --components=secrets`")
    elif os_family == OSFamily.MACOS:
        actions.append("Unlock the login keychain: `security unlock-keychain login.keychain-db`")
    return actions


def _secret_service_actions(issue: Issue, facts: Facts, os_family: OSFamily) -> list[str]:
    return [
        "gnome-keyring-daemon --start --components=secrets",
        "export $(gnome-keyring-daemon --start)",
        'Or switch to the pass helper: "credsStore": "pass"',
    ]


def _docker_group_actions(issue: Issue, facts: Facts, os_family: OSFamily) -> list[str]:
    return ["sudo usermod -aG docker $USER", "newgrp docker (or log out and back in)"]


def _keychain_actions(issue: Issue, facts: Facts, os_family: OSFamily) -> list[str]:
    return [
        "security unlock-keychain ~/Library/Keychains/login.keychain-db",
        "Open Keychain Access and check that the login keychain is the default",
    ]


def _config_actions(issue: Issue, facts: Facts, os_family: OSFamily) -> list[str]:
    path = issue.details.get("config_path", "~/.docker/config.json")
    return [f"Back up and repair {path}", "Run `docker login` again for your registries"]


_TEMPLATES: dict[str, tuple[str, str, Callable[[Issue, Facts, OSFamily], list[str]]]] = {
    "HELPER_NOT_INSTALLED": (
        "Install a Docker credential helper",
        "A credential helper is required to store registry credentials securely.",
        _install_actions,
    ),
    "HELPER_BROKEN": (
        "Fix the broken credential helper",
        "The credential helper exits with status 1, so every docker login/pull fails.",
        _broken_helper_actions,
    ),
    "INVALID_CREDSSTORE": (
        "Remove the invalid credential helper",
        "Docker is configured to use a credential helper that is not installed.",
        _config_actions,
    ),
    "CONFIG_PARSE_ERROR": (
        "Fix the Docker configuration file",
        "The Docker config file contains invalid JSON.",
        _config_actions,
    ),
    "DEPRECATED_AUTHS_FORMAT": (
        "Update the Docker configuration format",
        "The `auths` field uses the deprecated string format.",
        _config_actions,
    ),
    "SECRET_SERVICE_UNAVAILABLE": (
        "Start the Secret Service",
        "The secretservice helper needs a running Secret Service on the session bus.",
        _secret_service_actions,
    ),
    "DBUS_SESSION_UNAVAILABLE": (
        "Start a D-Bus session",
        "No D-Bus session bus is reachable from this shell.",
        _secret_service_actions,
    ),
    "DOCKER_GROUP_MISSING": (
        "Add your user to the docker group",
        "Your user needs the docker group to talk to the Docker daemon.",
        _docker_group_actions,
    ),
    "KEYCHAIN_INACCESSIBLE": (
        "Fix keychain access",
        "The macOS keychain cannot be used by the osxkeychain helper.",
        _keychain_actions,
    ),
    "KEYCHAIN_LOCKED": (
        "Unlock the login keychain",
        "The login keychain is locked.",
        _keychain_actions,
    ),
}


def recommendation_for(issue: Issue, facts: Facts, os_family: OSFamily) -> Recommendation:
    template = _TEMPLATES.get(issue.code)
    if template is None:
        return Recommendation(
            priority=issue.severity,
            title=issue.description,
            description=issue.suggestion,
            actions=[issue.suggestion] if issue.suggestion else [],
            auto_fixable=issue.auto_fixable,
            issue_code=issue.code,
        )
    title, description, actions = template
    return Recommendation(
        priority=issue.severity,
        title=title,
        description=description,
        actions=actions(issue, facts, os_family),
        auto_fixable=issue.auto_fixable,
        issue_code=issue.code,
    )


def build_recommendations(
    issues: list[Issue],
    facts: Facts | None = None,
    os_family: OSFamily = OSFamily.UNKNOWN,
) -> list[Recommendation]:
    facts = facts or {}
    recommendations: list[Recommendation] = []
    seen: set[str] = set()

    for issue in issues:
        rec = recommendation_for(issue, facts, os_family)
        if rec.title in seen:
            continue
        seen.add(rec.title)
        recommendations.append(rec)

    working = facts.get("working_helpers") or []
    helper_codes = {"HELPER_BROKEN", "INVALID_CREDSSTORE", "HELPER_NOT_INSTALLED"}
    if working and any(i.code in helper_codes for i in issues):
        names = ", ".join(working)
        recommendations.append(Recommendation(
            priority=Severity.MEDIUM,
            title="Switch to a working credential helper",
            description=f"These helpers are installed and working: {names}.",
            actions=[f'Set "credsStore": "{working[0]}" in ~/.docker/config.json'],
        ))

    return sorted(recommendations, key=lambda r: r.priority.rank)
