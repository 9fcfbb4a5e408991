"""Credential repairer: turns issues into fixes and executes them."""

from __future__ import annotations

import difflib
import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Mapping

from credfix.core.config import CredfixConfig, docker_config_path
from credfix.core.errors import BackupFailure, ConfigError, ExecutionError, ExecutionErrorKind
from credfix.core.events import FIX_COMPLETE, FIX_PROGRESS, FIX_START, EventBroadcaster
from credfix.core.models import (
    Analysis,
    BackupRecord,
    DiagnosticSession,
    ExecutionSummary,
    Fix,
    FixAction,
    FixKind,
    FixOutcome,
    HelperStatus,
    Issue,
    OSFamily,
    RiskLevel,
)
from credfix.core.process import ProcessRunner
from credfix.diagnostics.engine import merge_issues
from credfix.diagnostics.helpers import helper_binary
from credfix.diagnostics.packages import LINUX_PACKAGE_MANAGERS, install_command, packaged_helpers
from credfix.diagnostics.recommendations import build_recommendations
from credfix.repair.backup import BackupStore

logger = logging.getLogger("credfix.repair")

INSTALL_TIMEOUT = 600.0

RESTART_STEP = "Log out and back in (or restart Docker) so the changes take effect."
REAUTH_STEP = "Run `docker login` again for each registry you use; stored credentials were reset."

# Config repairs run before any other config edit, which needs valid JSON.
KIND_ORDER = {FixKind.REPAIR_CONFIG: 0}


# Config edits

_LINE_COMMENT_RE = re.compile(r"^\s*//.*$", re.MULTILINE)
_BLOCK_COMMENT_RE = re.compile(r"/\*.*?\*/", re.DOTALL)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")


def repair_json_text(text: str) -> dict:
    """Best-effort recovery of a damaged config; an empty config when hopeless."""
    cleaned = _BLOCK_COMMENT_RE.sub("", text)
    cleaned = _LINE_COMMENT_RE.sub("", cleaned)
    cleaned = _TRAILING_COMMA_RE.sub(r"\1", cleaned)
    try:
        data = json.loads(cleaned)
    except ValueError:
        return {"auths": {}}
    if not isinstance(data, dict):
        return {"auths": {}}
    return data


def _parse(path: Path, text: str | None) -> dict:
    if text is None or not text.strip():
        return {}
    try:
        data = json.loads(text)
    except ValueError as e:
        raise ConfigError(path, f"Invalid JSON in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(path, f"{path} must contain a JSON object")
    return data


def apply_config_edit(action: FixAction, text: str | None) -> str:
    """New config file text after ``action``; ``text`` is None for a missing file."""
    path = action.config_path or Path("config.json")
    edit = action.config_edit

    if edit == "repair_json":
        data = repair_json_text(text or "")
    else:
        data = _parse(path, text)
        if edit == "set_creds_store":
            data["credsStore"] = action.params["credsStore"]
        elif edit == "remove_creds_store":
            data.pop("credsStore", None)
        elif edit == "reset_auths":
            data["auths"] = {}
        else:
            raise ValueError(f"Unknown config edit: {edit}")

    return json.dumps(data, indent=2) + "\n"


def unified_diff(path: Path, before: str | None, after: str) -> str:
    return "".join(difflib.unified_diff(
        (before or "").splitlines(keepends=True),
        after.splitlines(keepends=True),
        fromfile=f"{path} (current)" if before is not None else "/dev/null",
        tofile=f"{path} (fixed)",
    ))


def write_config(path: Path, text: str) -> None:
    """Atomically replace the config, keeping its permissions."""
    json.loads(text)
    path.parent.mkdir(parents=True, exist_ok=True)
    mode = path.stat().st_mode & 0o777 if path.exists() else 0o600
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{path.name}.", suffix=".credfix-tmp", dir=str(path.parent)
    )
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
        os.chmod(tmp, mode)
        tmp.replace(path)
    finally:
        if tmp.exists():
            tmp.unlink()


def next_steps_for(fixes: list[Fix]) -> list[str]:
    steps = []
    if any(f.requires_restart for f in fixes):
        steps.append(RESTART_STEP)
    if any(f.requires_reauth for f in fixes):
        steps.append(REAUTH_STEP)
    for fix in fixes:
        for step in fix.manual_steps:
            if step not in steps:
                steps.append(step)
    return steps


class CredentialRepairer:
    """Analyzes a diagnostic session and applies the fixes it calls for.

    Every config write is preceded by a backup, either the one a consent
    proposal already took or one taken here.
    """

    def __init__(
        self,
        runner: ProcessRunner | None = None,
        config: CredfixConfig | None = None,
        backups: BackupStore | None = None,
        events: EventBroadcaster | None = None,
        env: Mapping[str, str] | None = None,
        home: Path | None = None,
    ):
        self.config = config or CredfixConfig()
        self.runner = runner or ProcessRunner(timeout=self.config.general.timeout)
        self.backups = backups
        self.events = events or EventBroadcaster()
        self.env = os.environ if env is None else env
        self.home = home or Path.home()

    # Analysis

    def analyze_and_repair(self, session: DiagnosticSession) -> Analysis:
        """Merge and rank the session's issues and synthesize one fix per fixable issue."""
        groups = [session.issues]
        if session.probes is not None:
            groups.append(session.probes.issues)
        if session.docker is not None:
            groups.append(session.docker.issues)
        issues = merge_issues(*groups)

        facts = session.probes.facts if session.probes is not None else {}
        os_family = session.platform.os_family if session.platform else OSFamily.UNKNOWN
        config_path = (
            session.platform.docker_config_path
            if session.platform
            else docker_config_path(self.config, self.env, self.home)
        )

        analysis = Analysis(issues=issues)
        for issue in issues:
            fix = self.synthesize_fix(issue, facts, os_family, config_path) if issue.auto_fixable else None
            if fix is None:
                analysis.manual.append(issue)
            else:
                analysis.fixes.append(fix)

        analysis.fixes.sort(key=lambda f: KIND_ORDER.get(f.kind, 1))
        analysis.recommendations = build_recommendations(issues, self._summary_facts(facts), os_family)
        logger.info(
            "Analysis: %d issue(s), %d fix(es), %d manual",
            len(issues), len(analysis.fixes), len(analysis.manual),
        )
        return analysis

    def synthesize_fix(
        self,
        issue: Issue,
        facts: dict,
        os_family: OSFamily,
        config_path: Path,
    ) -> Fix | None:
        """The minimal corrective fix for ``issue``, None if none can be built."""
        path = Path(issue.details.get("config_path") or config_path)
        fix_id = f"fix-{issue.id}"

        if issue.code == "HELPER_NOT_INSTALLED":
            manager = self._package_manager(facts, os_family)
            command = self._install_command(facts, manager)
            if command is None:
                return None
            helper = self._preferred_helper(facts, os_family, manager)
            binary = helper_binary(helper, os_family)
            return Fix(
                id=fix_id,
                kind=FixKind.INSTALL_HELPER,
                title=f"Install docker-credential-{helper} and register it",
                target_issue_ids=[issue.id],
                actions=[
                    FixAction(command=command),
                    FixAction(
                        config_edit="set_creds_store",
                        config_path=path,
                        params={"credsStore": helper, "binary": binary},
                    ),
                ],
                risk_level=RiskLevel.MEDIUM,
                requires_reauth=True,
                requires_sudo=command[0] == "sudo",
            )

        if issue.code in ("HELPER_BROKEN", "INVALID_CREDSSTORE"):
            return Fix(
                id=fix_id,
                kind=FixKind.REMOVE_CREDSSTORE,
                title="Remove the unusable credsStore from the Docker config",
                target_issue_ids=[issue.id],
                actions=[FixAction(config_edit="remove_creds_store", config_path=path)],
                risk_level=RiskLevel.MEDIUM,
                requires_reauth=True,
                manual_steps=["Install a working credential helper; until then Docker stores credentials in config.json."],
            )

        if issue.code == "CONFIG_PARSE_ERROR":
            return Fix(
                id=fix_id,
                kind=FixKind.REPAIR_CONFIG,
                title="Repair the Docker config JSON",
                target_issue_ids=[issue.id],
                actions=[FixAction(config_edit="repair_json", config_path=path)],
                risk_level=RiskLevel.HIGH,
                requires_reauth=True,
            )

        if issue.code in ("DEPRECATED_AUTHS_FORMAT", "INVALID_AUTHS_FIELD"):
            return Fix(
                id=fix_id,
                kind=FixKind.MIGRATE_AUTHS,
                title="Convert `auths` to the object format",
                target_issue_ids=[issue.id],
                actions=[FixAction(config_edit="reset_auths", config_path=path)],
                risk_level=RiskLevel.MEDIUM,
                requires_reauth=True,
            )

        if issue.code == "DOCKER_GROUP_MISSING":
            user = issue.details.get("user") or self.env.get("USER")
            if not user:
                return None
            return Fix(
                id=fix_id,
                kind=FixKind.ADD_DOCKER_GROUP,
                title=f"Add {user} to the docker group",
                target_issue_ids=[issue.id],
                actions=[FixAction(command=["sudo", "usermod", "-aG", "docker", user])],
                risk_level=RiskLevel.HIGH,
                requires_restart=True,
                requires_sudo=True,
            )

        logger.debug("No automatic fix for %s", issue.code)
        return None

    def _package_manager(self, facts: dict, os_family: OSFamily) -> str | None:
        known = facts.get("package_manager", {}).get("manager")
        if known:
            return known
        if os_family == OSFamily.MACOS:
            return "brew" if self.runner.which("brew") else None
        if os_family == OSFamily.LINUX:
            for manager in LINUX_PACKAGE_MANAGERS:
                if self.runner.which(manager):
                    return manager
        return None

    def _install_command(self, facts: dict, manager: str | None) -> list[str] | None:
        known = facts.get("package_manager", {}).get("install_command")
        if known:
            return list(known)
        return install_command(manager, self.config.fix.helper_package)

    def _preferred_helper(self, facts: dict, os_family: OSFamily, manager: str | None) -> str:
        """A helper the package actually ships; ``pass`` only where the pass store exists."""
        shipped = packaged_helpers(manager)
        if os_family == OSFamily.MACOS:
            return "osxkeychain"
        if os_family == OSFamily.WINDOWS:
            return "wincred"
        headless = facts.get("secret_store", {}).get("session_bus") is False
        if headless and "pass" in shipped and self.runner.which("pass"):
            return "pass"
        if "secretservice" in shipped or not shipped:
            return "secretservice"
        return shipped[0]

    def _summary_facts(self, facts: dict) -> dict:
        helpers = facts.get("credential_helpers", {})
        return {
            "package_manager": facts.get("package_manager", {}).get("manager"),
            "working_helpers": [n for n, info in helpers.items() if info.get("status") == HelperStatus.WORKING.value],
        }

    # Execution

    def preview(self, fixes: list[Fix]) -> str:
        """Combined simulated diff of ``fixes``, applied in order."""
        texts: dict[Path, str | None] = {}
        originals: dict[Path, str | None] = {}
        commands: list[str] = []
        for fix in fixes:
            for action in fix.actions:
                if action.is_command:
                    commands.append(f"$ {action.describe()}\n")
                    continue
                path = action.config_path
                if path not in texts:
                    texts[path] = originals[path] = self._read(path)
                texts[path] = apply_config_edit(action, texts[path])

        parts = list(commands)
        for path, after in texts.items():
            parts.append(unified_diff(path, originals[path], after or ""))
        return "".join(parts)

    async def execute_fixes(
        self,
        fixes: list[Fix],
        dry_run: bool | None = None,
        stop_on_failure: bool | None = None,
        backup: BackupRecord | None = None,
        session_id: str = "",
    ) -> ExecutionSummary:
        """Apply fixes one at a time, in order.

        Fixes that are not auto-fixable are never run. A failing fix is
        recorded and the batch continues unless ``stop_on_failure``.
        Raises BackupFailure when a required backup cannot be taken.
        """
        dry_run = self.config.fix.dry_run if dry_run is None else dry_run
        stop_on_failure = self.config.fix.stop_on_failure if stop_on_failure is None else stop_on_failure
        runnable = [f for f in fixes if f.auto_fixable]
        for skipped in fixes:
            if not skipped.auto_fixable:
                logger.info("Skipping %s: it needs manual steps", skipped.id)

        summary = ExecutionSummary(dry_run=dry_run)
        self.events.emit(FIX_START, session_id, 0, message=f"Applying {len(runnable)} fix(es)")

        executed: list[Fix] = []
        for n, fix in enumerate(runnable, start=1):
            outcome = await self.execute_fix(fix, dry_run=dry_run, backup=backup)
            summary.results.append(outcome)
            executed.append(fix)
            self.events.emit(
                FIX_PROGRESS,
                session_id,
                int(n / len(runnable) * 100),
                message=f"{fix.id}: {outcome.message}",
            )
            if not outcome.success and stop_on_failure:
                logger.warning("Stopping after failed fix %s", fix.id)
                break

        applied = [f for f, r in zip(executed, summary.results) if r.success]
        summary.requires_restart = any(f.requires_restart for f in applied)
        summary.requires_reauth = any(f.requires_reauth for f in applied)
        summary.next_steps = next_steps_for(applied)

        self.events.emit(FIX_COMPLETE, session_id, 100, result={
            "executed": summary.executed,
            "successful": summary.successful,
            "failed": summary.failed,
            "requiresRestart": summary.requires_restart,
            "requiresReauth": summary.requires_reauth,
            "dryRun": dry_run,
        })
        return summary

    async def execute_fix(
        self,
        fix: Fix,
        dry_run: bool = False,
        backup: BackupRecord | None = None,
    ) -> FixOutcome:
        if dry_run:
            try:
                diff = self.preview([fix])
            except ConfigError as e:
                return FixOutcome(fix.id, False, e.message, dry_run=True, suggestion=e.suggestion)
            return FixOutcome(fix.id, True, f"Would apply: {fix.title}", dry_run=True, diff=diff)

        backup_id = backup.id if backup is not None else None
        if fix.files and backup_id is None:
            backup_id = self._backup(fix).id

        outputs = []
        for action in fix.actions:
            try:
                if action.is_command:
                    result = await self.runner.run(
                        action.command[0], action.command[1:], timeout=INSTALL_TIMEOUT
                    )
                    outputs.append(result.stdout)
                else:
                    path = action.config_path
                    self._require_binary(action)
                    write_config(path, apply_config_edit(action, self._read(path)))
            except ExecutionError as e:
                logger.warning("Fix %s failed: %s", fix.id, e.message)
                return FixOutcome(
                    fix.id, False, e.message, backup_id=backup_id, suggestion=e.suggestion,
                    output="".join(outputs),
                )
            except ConfigError as e:
                logger.warning("Fix %s failed: %s", fix.id, e.message)
                return FixOutcome(fix.id, False, e.message, backup_id=backup_id, suggestion=e.suggestion)
            except OSError as e:
                logger.warning("Fix %s failed: %s", fix.id, e)
                return FixOutcome(
                    fix.id, False, f"Could not write {action.config_path}: {e}", backup_id=backup_id,
                    suggestion=f"Check the permissions of {action.config_path}.",
                )

        logger.info("Applied fix %s", fix.id)
        return FixOutcome(fix.id, True, fix.title, backup_id=backup_id, output="".join(outputs))

    def _require_binary(self, action: FixAction) -> None:
        binary = action.params.get("binary")
        if binary and self.runner.which(binary) is None:
            raise ExecutionError(
                ExecutionErrorKind.SPAWN_FAILURE,
                binary,
                stderr=f"{binary} is not on PATH after the install",
                suggestion=f"Install {binary} manually, then run `credfix doctor` again.",
            )

    def _backup(self, fix: Fix) -> BackupRecord:
        if self.backups is None:
            raise BackupFailure(
                f"No backup store configured; refusing to modify {', '.join(map(str, fix.files))}"
            )
        return self.backups.create_backup(fix.files, type="fix", description=fix.title)

    @staticmethod
    def _read(path: Path) -> str | None:
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")
