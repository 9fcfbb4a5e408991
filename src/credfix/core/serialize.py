"""JSON-serializable views of credfix results, plus the HTML report."""

from __future__ import annotations

import html
from typing import Any

from credfix.core.models import (
    BackupRecord,
    CheckSection,
    DiagnosticSession,
    DoctorResult,
    ExecutionSummary,
    Fix,
    FixOutcome,
    FixProposal,
    Issue,
    PlatformInfo,
    Recommendation,
)


def issue_to_dict(issue: Issue) -> dict:
    return {
        "id": issue.id,
        "code": issue.code,
        "type": issue.type.value,
        "severity": issue.severity.value,
        "description": issue.description,
        "evidence": issue.evidence,
        "auto_fixable": issue.auto_fixable,
        "suggestion": issue.suggestion,
        "source": issue.source,
    }


def recommendation_to_dict(rec: Recommendation) -> dict:
    return {
        "priority": rec.priority.value,
        "title": rec.title,
        "description": rec.description,
        "actions": list(rec.actions),
        "auto_fixable": rec.auto_fixable,
    }


def platform_to_dict(info: PlatformInfo) -> dict:
    return {
        "os": info.os_family.value,
        "arch": info.arch,
        "release": info.release,
        "docker_version": info.docker_version,
        "docker_config_path": str(info.docker_config_path),
        "credential_helper": info.credential_helper,
        "helper_source": info.helper_source,
        "helper_status": info.helper_status.value,
        "path_helper": info.path_helper,
        "keychain_accessible": info.keychain_accessible,
        "errors": list(info.errors),
    }


def section_to_dict(section: CheckSection) -> dict:
    return {
        "ok": section.ok,
        "facts": section.facts,
        "issues": [issue_to_dict(i) for i in section.issues],
        "warnings": list(section.warnings),
        "error": section.error.to_dict() if section.error else None,
    }


def session_to_dict(session: DiagnosticSession) -> dict:
    """Convert a DiagnosticSession to a JSON-serializable dict."""
    data: dict[str, Any] = {
        "id": session.id,
        "status": session.status.value,
        "started_at": session.started_at.isoformat(),
        "completed_at": session.completed_at.isoformat() if session.completed_at else None,
        "duration": round(session.duration, 3),
        "platform": platform_to_dict(session.platform) if session.platform else None,
        "severity_counts": session.severity_counts,
        "issues": [issue_to_dict(i) for i in session.issues],
        "recommendations": [recommendation_to_dict(r) for r in session.recommendations],
        "errors": [e.to_dict() for e in session.errors],
    }
    if session.docker is not None:
        data["docker"] = {s.name: section_to_dict(s) for s in session.docker.sections()}
    if session.probes is not None:
        data["probes"] = {
            "os": session.probes.os_family.value,
            "facts": session.probes.facts,
        }
    if session.result is not None:
        data["result"] = doctor_result_to_dict(session.result)
    return data


def fix_to_dict(fix: Fix) -> dict:
    return {
        "id": fix.id,
        "kind": fix.kind.value,
        "title": fix.title,
        "target_issue_ids": list(fix.target_issue_ids),
        "actions": [a.describe() for a in fix.actions],
        "risk_level": fix.risk_level.value,
        "requires_restart": fix.requires_restart,
        "requires_reauth": fix.requires_reauth,
        "requires_sudo": fix.requires_sudo,
        "auto_fixable": fix.auto_fixable,
        "files": [str(p) for p in fix.files],
        "manual_steps": list(fix.manual_steps),
    }


def outcome_to_dict(outcome: FixOutcome) -> dict:
    return {
        "fix_id": outcome.fix_id,
        "success": outcome.success,
        "message": outcome.message,
        "dry_run": outcome.dry_run,
        "diff": outcome.diff,
        "backup_id": outcome.backup_id,
        "suggestion": outcome.suggestion,
        "applied_at": outcome.applied_at.isoformat(),
    }


def summary_to_dict(summary: ExecutionSummary) -> dict:
    return {
        "results": [outcome_to_dict(r) for r in summary.results],
        "dry_run": summary.dry_run,
        "executed": summary.executed,
        "successful": summary.successful,
        "failed": summary.failed,
        "requires_restart": summary.requires_restart,
        "requires_reauth": summary.requires_reauth,
        "next_steps": list(summary.next_steps),
    }


def backup_to_dict(record: BackupRecord) -> dict:
    return {
        "id": record.id,
        "created_at": record.created_at.isoformat(),
        "type": record.type,
        "description": record.description,
        "source_paths": [str(p) for p in record.source_paths],
        "restorable": record.restorable,
        "encrypted": record.encrypted,
        "files": record.files,
    }


def proposal_to_dict(proposal: FixProposal) -> dict:
    return {
        "description": proposal.description,
        "risk": proposal.risk.value,
        "affected": list(proposal.affected),
        "fixes": [fix_to_dict(f) for f in proposal.fixes],
        "backup": backup_to_dict(proposal.backup) if proposal.backup else None,
        "diff": proposal.diff,
        "requires_restart": proposal.requires_restart,
        "requires_reauth": proposal.requires_reauth,
    }


def doctor_result_to_dict(result: DoctorResult) -> dict:
    return {
        "kind": result.kind.value,
        "session_id": result.session_id,
        "severity_counts": result.severity_counts,
        "summary": summary_to_dict(result.summary) if result.summary else None,
        "baseline_count": result.baseline_count,
        "remaining_count": result.remaining_count,
        "remaining": [issue_to_dict(i) for i in result.remaining],
        "message": result.message,
    }


SEVERITY_HTML_COLORS = {
    "critical": "#e74c3c",
    "high": "#e67e22",
    "medium": "#f39c12",
    "low": "#3498db",
}


def session_to_html(session: DiagnosticSession) -> str:
    """Generate a simple HTML report."""
    rows = ""
    for issue in session.issues:
        color = SEVERITY_HTML_COLORS[issue.severity.value]
        rows += f"""
        <tr>
            <td><span style="color:{color}">●</span> {html.escape(issue.code)}</td>
            <td>{issue.severity.value}</td>
            <td>{html.escape(issue.description)}</td>
            <td><code>{html.escape(issue.evidence)}</code></td>
            <td>{html.escape(issue.suggestion)}</td>
        </tr>"""

    recs = "".join(
        f"<li><b>{html.escape(r.title)}</b>: {html.escape(r.description)}</li>"
        for r in session.recommendations
    )
    counts = " | ".join(f"{k}: {v}" for k, v in session.severity_counts.items())
    helper = session.platform.credential_helper if session.platform else None

    return f"""<!DOCTYPE html>
<html><head><title>credfix Report {session.id}</title>
<style>
body {{ font-family: -apple-system, sans-serif; margin: 40px; background: #1a1a2e; color: #eee; }}
h1 {{ color: #00d4ff; }}
table {{ border-collapse: collapse; width: 100%; margin-top: 20px; }}
th, td {{ padding: 12px; text-align: left; border-bottom: 1px solid #333; }}
th {{ background: #16213e; }}
code {{ color: #aaa; }}
</style></head>
<body>
<h1>Docker Credential Health</h1>
<p>Session {session.id} | {session.started_at:%Y-%m-%d %H:%M:%S} | helper: {html.escape(helper or "none")}</p>
<p>{counts}</p>
<table>
<tr><th>Issue</th><th>Severity</th><th>Description</th><th>Evidence</th><th>Suggestion</th></tr>
{rows}
</table>
<h2>Recommendations</h2>
<ul>{recs}</ul>
</body></html>"""
