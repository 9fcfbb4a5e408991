"""Shared data models used across credfix modules."""

from __future__ import annotations

import enum
import hashlib
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from credfix.core.errors import ProbeError


class Severity(enum.Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Sort key; critical sorts first."""
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MEDIUM: 2,
    Severity.LOW: 3,
}


class RiskLevel(enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]

    @classmethod
    def highest(cls, levels) -> "RiskLevel":
        """Aggregate risk of a batch: the maximum of its members."""
        levels = list(levels)
        if not levels:
            return cls.LOW
        return max(levels, key=lambda r: r.rank)


_RISK_RANK = {
    RiskLevel.LOW: 0,
    RiskLevel.MEDIUM: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.CRITICAL: 3,
}


class IssueType(enum.Enum):
    CREDENTIAL_HELPER = "credential_helper"
    CONFIGURATION = "configuration"
    PERMISSIONS = "permissions"
    NETWORK = "network"
    DAEMON = "daemon"


class OSFamily(enum.Enum):
    LINUX = "linux"
    MACOS = "darwin"
    WINDOWS = "win32"
    UNKNOWN = "unknown"

    @classmethod
    def from_platform(cls, name: str) -> "OSFamily":
        """Map ``sys.platform`` / ``platform.system()`` names to a family."""
        name = name.lower()
        if name.startswith("linux"):
            return cls.LINUX
        if name in ("darwin", "macos"):
            return cls.MACOS
        if name in ("win32", "windows", "cygwin"):
            return cls.WINDOWS
        return cls.UNKNOWN


class HelperStatus(enum.Enum):
    WORKING = "working"
    BROKEN = "broken"  # `<helper> list` exited 1
    FAILED = "failed"  # any other failure
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class PlatformInfo:
    """Snapshot of the host taken once per diagnostic run."""

    os_family: OSFamily
    arch: str
    release: str
    homedir: Path
    docker_config_path: Path
    docker_version: str | None = None
    credential_helper: str | None = None
    helper_source: str | None = None  # "config", "cred_helpers" or "path"
    helper_status: HelperStatus = HelperStatus.UNKNOWN
    helper_exit_code: int | None = None
    helper_error: str = ""
    helper_evidence: str = ""
    path_helper: str | None = None
    keychain_accessible: bool | None = None
    errors: tuple[str, ...] = ()


@dataclass(frozen=True)
class Issue:
    """A classified finding produced by a probe.

    Identity is structural: two issues with the same type, code and evidence
    are the same issue, whichever probe reported them and in whichever run.
    """

    code: str
    type: IssueType
    severity: Severity
    description: str
    evidence: str = ""
    auto_fixable: bool = False
    suggestion: str = ""
    source: str = field(default="", compare=False)
    details: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def identity(self) -> tuple[str, str, str]:
        return (self.type.value, self.code, self.evidence)

    @property
    def id(self) -> str:
        digest = hashlib.sha1("\0".join(self.identity).encode()).hexdigest()[:8]
        return f"{self.code.lower().replace('_', '-')}-{digest}"


@dataclass
class Recommendation:
    """A prioritized, human-readable course of action."""

    priority: Severity
    title: str
    description: str
    actions: list[str] = field(default_factory=list)
    auto_fixable: bool = False
    issue_code: str = ""


class FixKind(enum.Enum):
    INSTALL_HELPER = "install_helper"
    REMOVE_CREDSSTORE = "remove_credsstore"
    REPAIR_CONFIG = "repair_config"
    MIGRATE_AUTHS = "migrate_auths"
    ADD_DOCKER_GROUP = "add_docker_group"


@dataclass
class FixAction:
    """One step of a fix: an external command or a named Docker config edit."""

    command: list[str] = field(default_factory=list)
    config_edit: str = ""
    config_path: Path | None = None
    params: dict[str, Any] = field(default_factory=dict)

    @property
    def is_command(self) -> bool:
        return bool(self.command)

    def describe(self) -> str:
        if self.is_command:
            return " ".join(self.command)
        return f"edit {self.config_path}: {self.config_edit.replace('_', ' ')}"


@dataclass
class Fix:
    """An executable remedy for one or more issues."""

    id: str
    kind: FixKind
    title: str
    target_issue_ids: list[str]
    actions: list[FixAction] = field(default_factory=list)
    risk_level: RiskLevel = RiskLevel.LOW
    requires_restart: bool = False
    requires_reauth: bool = False
    requires_sudo: bool = False
    auto_fixable: bool = True
    manual_steps: list[str] = field(default_factory=list)

    @property
    def files(self) -> list[Path]:
        seen: list[Path] = []
        for action in self.actions:
            if action.config_path is not None and action.config_path not in seen:
                seen.append(action.config_path)
        return seen

    @property
    def affected(self) -> list[str]:
        """Files and resources this fix touches, for consent proposals."""
        items = [str(p) for p in self.files]
        items.extend(a.describe() for a in self.actions if a.is_command)
        return items


@dataclass
class FixOutcome:
    """Result of executing (or simulating) a single fix."""

    fix_id: str
    success: bool
    message: str
    dry_run: bool = False
    diff: str | None = None
    backup_id: str | None = None
    suggestion: str = ""
    output: str = ""
    applied_at: datetime = field(default_factory=datetime.now)


@dataclass
class ExecutionSummary:
    """Aggregate outcome of an ``execute_fixes`` batch."""

    results: list[FixOutcome] = field(default_factory=list)
    dry_run: bool = False
    requires_restart: bool = False
    requires_reauth: bool = False
    next_steps: list[str] = field(default_factory=list)

    @property
    def executed(self) -> int:
        return len(self.results)

    @property
    def successful(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)


@dataclass
class BackupRecord:
    """A restorable snapshot of files taken before a destructive fix."""

    id: str
    created_at: datetime
    source_paths: list[Path]
    restorable: bool = True
    type: str = "config"
    description: str = ""
    encrypted: bool = False
    files: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class BackupOutcome:
    success: bool
    message: str
    backup_id: str = ""
    paths: list[Path] = field(default_factory=list)


@dataclass
class FixProposal:
    """Human-reviewable description of pending fixes, gated on consent."""

    description: str
    risk: RiskLevel
    affected: list[str]
    fixes: list[Fix]
    backup: BackupRecord | None = None
    diff: str | None = None

    @property
    def requires_restart(self) -> bool:
        return any(f.requires_restart for f in self.fixes)

    @property
    def requires_reauth(self) -> bool:
        return any(f.requires_reauth for f in self.fixes)


@dataclass(frozen=True)
class ConsentDecision:
    approved: bool
    reason: str


@dataclass
class CheckSection:
    """One section of a diagnostic report. Always populated, even on error."""

    name: str
    ok: bool = True
    facts: dict[str, Any] = field(default_factory=dict)
    issues: list[Issue] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    error: ProbeError | None = None


@dataclass
class DockerReport:
    daemon: CheckSection
    configuration: CheckSection
    registry: CheckSection
    system: CheckSection
    permissions: CheckSection
    version: CheckSection

    def sections(self) -> list[CheckSection]:
        return [
            self.daemon,
            self.configuration,
            self.registry,
            self.system,
            self.permissions,
            self.version,
        ]

    @property
    def issues(self) -> list[Issue]:
        return [issue for section in self.sections() for issue in section.issues]

    @property
    def errors(self) -> list[ProbeError]:
        return [s.error for s in self.sections() if s.error is not None]


@dataclass
class ProbeReport:
    """Output of a platform-specific probe set."""

    os_family: OSFamily
    facts: dict[str, Any] = field(default_factory=dict)
    issues: list[Issue] = field(default_factory=list)
    recommendations: list[Recommendation] = field(default_factory=list)
    errors: list[ProbeError] = field(default_factory=list)


class SessionStatus(enum.Enum):
    SCANNING = "scanning"
    COMPLETED = "completed"
    FAILED = "failed"


class ResultKind(enum.Enum):
    HEALTHY = "healthy"
    ISSUES_FOUND = "issues-found"
    FIXES_APPLIED = "fixes-applied"
    USER_CANCELLED = "user-cancelled"


def severity_counts(issues: list[Issue]) -> dict[str, int]:
    """Issue counts keyed by severity, in priority order."""
    counts = {s.value: 0 for s in Severity}
    for issue in issues:
        counts[issue.severity.value] += 1
    return counts


@dataclass
class DoctorResult:
    kind: ResultKind
    session_id: str
    severity_counts: dict[str, int] = field(default_factory=dict)
    summary: ExecutionSummary | None = None
    baseline_count: int = 0
    remaining: list[Issue] = field(default_factory=list)
    message: str = ""

    @property
    def remaining_count(self) -> int:
        return len(self.remaining)


@dataclass
class DiagnosticSession:
    """Everything one quick scan learned about the host."""

    id: str
    status: SessionStatus = SessionStatus.SCANNING
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: datetime | None = None
    platform: PlatformInfo | None = None
    docker: DockerReport | None = None
    probes: ProbeReport | None = None
    issues: list[Issue] = field(default_factory=list)
    recommendations: list[Recommendation] = field(default_factory=list)
    errors: list[ProbeError] = field(default_factory=list)
    result: DoctorResult | None = None

    @property
    def severity_counts(self) -> dict[str, int]:
        return severity_counts(self.issues)

    @property
    def is_healthy(self) -> bool:
        return not self.issues

    @property
    def duration(self) -> float:
        if self.completed_at is None:
            return 0.0
        return (self.completed_at - self.started_at).total_seconds()


@dataclass
class Analysis:
    """Repairer output: ranked issues, their fixes, and what stays manual."""

    issues: list[Issue] = field(default_factory=list)
    fixes: list[Fix] = field(default_factory=list)
    recommendations: list[Recommendation] = field(default_factory=list)
    manual: list[Issue] = field(default_factory=list)

    @property
    def risk_level(self) -> RiskLevel:
        return RiskLevel.highest(f.risk_level for f in self.fixes)

    def fixes_for(self, issue: Issue) -> list[Fix]:
        return [f for f in self.fixes if issue.id in f.target_issue_ids]
