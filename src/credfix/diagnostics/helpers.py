"""Credential helper naming, probing and classification.

Shared by the platform detector and the platform probe sets so that the
same broken helper always yields the same Issue.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from credfix.core.errors import ExecutionError, ExecutionErrorKind
from credfix.core.models import HelperStatus, Issue, IssueType, OSFamily, Severity
from credfix.core.process import ProcessRunner, is_broken_helper

logger = logging.getLogger("credfix.diagnostics")

HELPER_PREFIX = "docker-credential-"

EXPECTED_HELPERS: dict[OSFamily, list[str]] = {
    OSFamily.MACOS: ["osxkeychain"],
    OSFamily.LINUX: ["secretservice", "pass"],
    OSFamily.WINDOWS: ["wincred"],
    OSFamily.UNKNOWN: [],
}

HELPER_TIMEOUT = 10.0


def helper_binary(name: str, os_family: OSFamily) -> str:
    """Executable Docker runs for a credsStore/credHelpers value."""
    binary = name if name.startswith(HELPER_PREFIX) else f"{HELPER_PREFIX}{name}"
    if os_family == OSFamily.WINDOWS and not binary.endswith(".exe"):
        binary += ".exe"
    return binary


def helper_name(binary: str) -> str:
    """Inverse of helper_binary: the short name used in config.json."""
    name = binary[len(HELPER_PREFIX):] if binary.startswith(HELPER_PREFIX) else binary
    return name[:-4] if name.endswith(".exe") else name


def expected_binaries(os_family: OSFamily) -> list[str]:
    return [helper_binary(n, os_family) for n in EXPECTED_HELPERS.get(os_family, [])]


@dataclass
class HelperProbe:
    """Outcome of running `<helper> list`."""

    binary: str
    status: HelperStatus
    path: str | None = None
    exit_code: int | None = None
    error: str = ""
    evidence: str = ""
    entries: int = 0
    facts: dict = field(default_factory=dict)


async def probe_helper(runner: ProcessRunner, binary: str, timeout: float = HELPER_TIMEOUT) -> HelperProbe:
    """Locate a helper and run its `list` command."""
    path = runner.which(binary)
    if path is None:
        return HelperProbe(
            binary=binary,
            status=HelperStatus.NOT_FOUND,
            evidence=f"{binary}: not found on PATH",
        )

    try:
        result = await runner.run(binary, ["list"], timeout=timeout)
    except ExecutionError as e:
        if is_broken_helper(e):
            status = HelperStatus.BROKEN
        elif e.kind == ExecutionErrorKind.SPAWN_FAILURE:
            status = HelperStatus.NOT_FOUND
        else:
            status = HelperStatus.FAILED
        logger.debug("%s list failed: %s", binary, e.message)
        return HelperProbe(
            binary=binary,
            status=status,
            path=path,
            exit_code=e.exit_code,
            error=(e.stderr or e.message).strip(),
            evidence=f"{binary} list: {e.evidence}",
        )

    entries = result.stdout.count('":')
    return HelperProbe(
        binary=binary,
        status=HelperStatus.WORKING,
        path=path,
        exit_code=0,
        evidence=f"{binary} list: exit status 0",
        entries=entries,
    )


def classify_helper(
    probe: HelperProbe,
    auto_fixable: bool = False,
    source: str = "",
    details: dict | None = None,
) -> Issue | None:
    """Turn a failed helper probe into an Issue (None when healthy or absent).

    Exit status 1 is always a critical credential_helper issue.
    """
    if probe.status == HelperStatus.BROKEN:
        return Issue(
            code="HELPER_BROKEN",
            type=IssueType.CREDENTIAL_HELPER,
            severity=Severity.CRITICAL,
            description=f"Credential helper {probe.binary} is installed but broken (exit status 1)",
            evidence=probe.evidence,
            auto_fixable=auto_fixable,
            suggestion=(
                f"Remove the broken helper from your Docker config, or repair its backing "
                f"store so that `{probe.binary} list` succeeds."
            ),
            source=source,
            details={"binary": probe.binary, "stderr": probe.error, **(details or {})},
        )
    if probe.status == HelperStatus.FAILED:
        return Issue(
            code="HELPER_FAILED",
            type=IssueType.CREDENTIAL_HELPER,
            severity=Severity.HIGH,
            description=f"Credential helper {probe.binary} failed to list credentials",
            evidence=probe.evidence,
            auto_fixable=False,
            suggestion=f"Run `{probe.binary} list` manually and check its error output.",
            source=source,
            details={"binary": probe.binary, "stderr": probe.error, **(details or {})},
        )
    return None
