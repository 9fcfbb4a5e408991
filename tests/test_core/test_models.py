"""Tests for the shared data models."""

from __future__ import annotations

from pathlib import Path

from credfix.core.models import (
    Analysis,
    DiagnosticSession,
    ExecutionSummary,
    Fix,
    FixAction,
    FixKind,
    FixOutcome,
    Issue,
    IssueType,
    OSFamily,
    RiskLevel,
    Severity,
    severity_counts,
)


def _issue(code="HELPER_BROKEN", evidence="exit status 1", severity=Severity.CRITICAL, source="platform"):
    return Issue(
        code=code,
        type=IssueType.CREDENTIAL_HELPER,
        severity=severity,
        description="broken",
        evidence=evidence,
        source=source,
    )


class TestIssueIdentity:
    def test_same_type_code_evidence_are_equal(self):
        a = _issue(source="platform")
        b = _issue(source="linux")
        assert a == b
        assert a.identity == b.identity
        assert a.id == b.id

    def test_different_evidence_differs(self):
        assert _issue(evidence="a").id != _issue(evidence="b").id

    def test_id_is_slug_plus_digest(self):
        issue = _issue()
        prefix, digest = issue.id.rsplit("-", 1)
        assert prefix == "helper-broken"
        assert len(digest) == 8

    def test_id_is_stable(self):
        assert _issue().id == _issue().id


class TestEnums:
    def test_severity_rank_order(self):
        ranked = sorted(Severity, key=lambda s: s.rank)
        assert ranked == [Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM, Severity.LOW]

    def test_risk_highest(self):
        assert RiskLevel.highest([RiskLevel.LOW, RiskLevel.HIGH, RiskLevel.MEDIUM]) == RiskLevel.HIGH

    def test_risk_highest_empty_is_low(self):
        assert RiskLevel.highest([]) == RiskLevel.LOW

    def test_os_family_from_platform(self):
        assert OSFamily.from_platform("Linux") == OSFamily.LINUX
        assert OSFamily.from_platform("linux2") == OSFamily.LINUX
        assert OSFamily.from_platform("Darwin") == OSFamily.MACOS
        assert OSFamily.from_platform("Windows") == OSFamily.WINDOWS
        assert OSFamily.from_platform("win32") == OSFamily.WINDOWS
        assert OSFamily.from_platform("SunOS") == OSFamily.UNKNOWN


class TestFix:
    def test_files_deduplicated_in_order(self):
        path = Path("/tmp/config.json")
        fix = Fix(
            id="fix-1",
            kind=FixKind.INSTALL_HELPER,
            title="Install",
            target_issue_ids=["a"],
            actions=[
                FixAction(command=["brew", "install", "docker-credential-helper"]),
                FixAction(config_edit="set_creds_store", config_path=path),
                FixAction(config_edit="reset_auths", config_path=path),
            ],
        )
        assert fix.files == [path]
        assert fix.affected == [str(path), "brew install docker-credential-helper"]

    def test_action_describe(self):
        assert FixAction(command=["sudo", "usermod"]).describe() == "sudo usermod"
        edit = FixAction(config_edit="remove_creds_store", config_path=Path("c.json"))
        assert edit.describe() == "edit c.json: remove creds store"


class TestAggregates:
    def test_severity_counts_has_every_level(self):
        counts = severity_counts([_issue(), _issue(code="X", severity=Severity.LOW)])
        assert counts == {"critical": 1, "high": 0, "medium": 0, "low": 1}

    def test_session_health(self):
        session = DiagnosticSession(id="s1")
        assert session.is_healthy
        assert session.duration == 0.0
        session.issues.append(_issue())
        assert not session.is_healthy

    def test_execution_summary_counts(self):
        summary = ExecutionSummary(results=[
            FixOutcome("a", True, "ok"),
            FixOutcome("b", False, "failed"),
            FixOutcome("c", True, "ok"),
        ])
        assert summary.executed == 3
        assert summary.successful == 2
        assert summary.failed == 1

    def test_analysis_risk_and_lookup(self):
        issue = _issue()
        fix = Fix(id="f", kind=FixKind.REPAIR_CONFIG, title="t", target_issue_ids=[issue.id], risk_level=RiskLevel.HIGH)
        analysis = Analysis(issues=[issue], fixes=[fix])
        assert analysis.risk_level == RiskLevel.HIGH
        assert analysis.fixes_for(issue) == [fix]
