"""Docker config file validation.

Pure with respect to the file it reads; used by the Docker checker and every
platform probe set, so the same config problem always yields the same Issue.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Callable

from credfix.core.errors import ConfigError
from credfix.core.models import CheckSection, Issue, IssueType, OSFamily, Severity
from credfix.diagnostics.helpers import helper_binary


def load_docker_config(path: Path) -> dict | None:
    """Parse config.json; None when absent, ConfigError when malformed."""
    if not path.exists():
        return None
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(path, f"Cannot read {path}: {e.strerror or e}") from e
    if not raw.strip():
        raise ConfigError(path, f"{path} is empty")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigError(
            path, f"Invalid JSON in {path}: {e.msg} (line {e.lineno}, column {e.colno})"
        ) from e
    if not isinstance(data, dict):
        raise ConfigError(path, f"{path} must contain a JSON object, found {type(data).__name__}")
    return data


def inspect_docker_config(
    path: Path,
    which: Callable[[str], str | None],
    os_family: OSFamily,
) -> CheckSection:
    """Validate existence, JSON syntax and structure of the Docker config."""
    section = CheckSection(name="configuration", facts={"path": str(path), "exists": path.exists()})

    try:
        data = load_docker_config(path)
    except ConfigError as e:
        section.ok = False
        section.facts["valid"] = False
        section.issues.append(Issue(
            code="CONFIG_PARSE_ERROR",
            type=IssueType.CONFIGURATION,
            severity=Severity.HIGH,
            description="Docker configuration file is not valid JSON",
            evidence=e.message,
            auto_fixable=True,
            suggestion=e.suggestion,
            source="config",
            details={"config_path": str(path)},
        ))
        return section

    if data is None:
        section.facts["valid"] = True
        section.warnings.append(
            f"No Docker config file at {path}; Docker will create one on first login."
        )
        return section

    section.facts["valid"] = True
    section.facts["keys"] = sorted(data)

    if "auths" not in data:
        section.warnings.append("Docker config has no `auths` field.")
    elif isinstance(data["auths"], str):
        section.issues.append(Issue(
            code="DEPRECATED_AUTHS_FORMAT",
            type=IssueType.CONFIGURATION,
            severity=Severity.MEDIUM,
            description="Docker config uses the deprecated string `auths` format",
            evidence="auths is a string",
            auto_fixable=True,
            suggestion="Convert `auths` to an object and log in to your registries again.",
            source="config",
            details={"config_path": str(path)},
        ))
    elif not isinstance(data["auths"], dict):
        section.issues.append(Issue(
            code="INVALID_AUTHS_FIELD",
            type=IssueType.CONFIGURATION,
            severity=Severity.HIGH,
            description="Docker config `auths` field is not an object",
            evidence=f"auths is a {type(data['auths']).__name__}",
            auto_fixable=True,
            suggestion="Replace `auths` with an empty object and log in again.",
            source="config",
            details={"config_path": str(path)},
        ))
    else:
        section.facts["auths_count"] = len(data["auths"])

    if "credsStore" in data:
        creds_store = data["credsStore"]
        section.facts["credsStore"] = creds_store
        if not isinstance(creds_store, str) or not creds_store:
            binary = None
        else:
            binary = helper_binary(creds_store, os_family)
        if binary is None or which(binary) is None:
            section.issues.append(Issue(
                code="INVALID_CREDSSTORE",
                type=IssueType.CONFIGURATION,
                severity=Severity.CRITICAL,
                description=f"Configured credential helper {creds_store!r} is not installed",
                evidence=f"credsStore={creds_store!r}",
                auto_fixable=True,
                suggestion=(
                    "Remove `credsStore` from the Docker config or install "
                    f"{binary or 'a valid credential helper'}."
                ),
                source="config",
                details={"config_path": str(path), "credsStore": creds_store},
            ))

    cred_helpers = data.get("credHelpers")
    if cred_helpers is not None:
        if not isinstance(cred_helpers, dict):
            section.issues.append(Issue(
                code="INVALID_CRED_HELPERS",
                type=IssueType.CONFIGURATION,
                severity=Severity.HIGH,
                description="Docker config `credHelpers` field is not an object",
                evidence=f"credHelpers is a {type(cred_helpers).__name__}",
                auto_fixable=False,
                suggestion="Make `credHelpers` a mapping of registry to helper name.",
                source="config",
            ))
        else:
            section.facts["credHelpers"] = dict(cred_helpers)
            for registry in sorted(cred_helpers):
                name = cred_helpers[registry]
                binary = helper_binary(str(name), os_family)
                if which(binary) is None:
                    section.issues.append(Issue(
                        code="INVALID_CRED_HELPERS",
                        type=IssueType.CONFIGURATION,
                        severity=Severity.HIGH,
                        description=f"Credential helper for {registry} ({name}) is not installed",
                        evidence=f"credHelpers[{registry}]={name}",
                        auto_fixable=False,
                        suggestion=f"Install {binary} or remove the {registry} entry from `credHelpers`.",
                        source="config",
                    ))

    section.ok = not section.issues
    return section
