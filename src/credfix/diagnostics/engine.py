"""Diagnostic engine: runs every probe component and assembles the session."""

from __future__ import annotations

import asyncio
import logging
import os
import platform
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Mapping

from credfix.core.config import CredfixConfig
from credfix.core.errors import ProbeError
from credfix.core.events import SCAN_COMPLETE, SCAN_PROGRESS, SCAN_START, EventBroadcaster
from credfix.core.models import (
    DiagnosticSession,
    Issue,
    OSFamily,
    SessionStatus,
)
from credfix.core.process import ProcessRunner
from credfix.diagnostics.docker_checker import DockerChecker
from credfix.diagnostics.platform_detector import PlatformDetector, issues_from_platform
from credfix.diagnostics.probes import BaseProbeSet, select_probe_set
from credfix.diagnostics.recommendations import build_recommendations

logger = logging.getLogger("credfix.diagnostics")


def merge_issues(*groups: list[Issue]) -> list[Issue]:
    """Concatenate, drop structural duplicates, then sort by severity.

    The sort is stable, so issues of equal severity keep discovery order.
    """
    merged: list[Issue] = []
    seen: set[tuple[str, str, str]] = set()
    for group in groups:
        for issue in group:
            if issue.identity in seen:
                continue
            seen.add(issue.identity)
            merged.append(issue)
    return sorted(merged, key=lambda i: i.severity.rank)


def new_session_id() -> str:
    return uuid.uuid4().hex[:12]


class DiagnosticEngine:
    """Quick scan over the platform detector, Docker checker and probe set.

    The three components run concurrently; one that raises becomes a
    scan-level error and the others still contribute.
    """

    def __init__(
        self,
        runner: ProcessRunner | None = None,
        config: CredfixConfig | None = None,
        events: EventBroadcaster | None = None,
        env: Mapping[str, str] | None = None,
        home: Path | None = None,
        system: str | None = None,
        detector: PlatformDetector | None = None,
        checker: DockerChecker | None = None,
        probe_set: BaseProbeSet | None = None,
    ):
        self.config = config or CredfixConfig()
        self.runner = runner or ProcessRunner(timeout=self.config.general.timeout)
        self.events = events or EventBroadcaster()
        self.env = os.environ if env is None else env
        self.home = home or Path.home()
        self.os_family = OSFamily.from_platform(system or platform.system())

        self.detector = detector or PlatformDetector(
            self.runner, self.config, env=self.env, home=self.home, system=system
        )
        self.checker = checker or DockerChecker(
            self.runner, self.os_family, self.config, env=self.env, home=self.home
        )
        self.probe_set = probe_set or select_probe_set(
            self.os_family, self.runner, config=self.config, env=self.env, home=self.home
        )

    def run(self, session_id: str | None = None) -> DiagnosticSession:
        """Blocking entry point for synchronous callers."""
        return asyncio.run(self.quick_scan(session_id))

    async def quick_scan(self, session_id: str | None = None) -> DiagnosticSession:
        session = DiagnosticSession(id=session_id or new_session_id())
        self.events.emit(SCAN_START, session.id, 0, message=f"Scanning {self.os_family.value} host")

        steps = [
            ("platform", self.detector.detect()),
            ("docker", self.checker.run_docker_checks()),
            ("probes", self.probe_set.run_diagnostics()),
        ]
        done = {"count": 0}
        results = await asyncio.gather(
            *(self._tracked(session.id, name, step, done, len(steps)) for name, step in steps),
            return_exceptions=True,
        )

        failures = 0
        for (name, _), result in zip(steps, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning("Scan component %s failed: %s", name, result)
                session.errors.append(ProbeError.from_exception(name, result))
                failures += 1
            else:
                setattr(session, name, result)

        platform_issues: list[Issue] = []
        if session.platform is not None:
            platform_issues = issues_from_platform(session.platform)
            session.errors.extend(ProbeError("platform", err) for err in session.platform.errors)
        probe_issues = session.probes.issues if session.probes is not None else []
        docker_issues = session.docker.issues if session.docker is not None else []
        if session.probes is not None:
            session.errors.extend(session.probes.errors)
        if session.docker is not None:
            session.errors.extend(session.docker.errors)

        session.issues = merge_issues(platform_issues, probe_issues, docker_issues)
        session.recommendations = build_recommendations(
            session.issues, self._summary_facts(session), self.os_family
        )
        session.status = SessionStatus.FAILED if failures == len(steps) else SessionStatus.COMPLETED
        session.completed_at = datetime.now()

        logger.info(
            "Scan %s finished: %d issue(s), %d error(s) in %.2fs",
            session.id, len(session.issues), len(session.errors), session.duration,
        )
        self.events.emit(SCAN_COMPLETE, session.id, 100, result=self._scan_result(session))
        return session

    async def _tracked(
        self,
        session_id: str,
        name: str,
        step: Awaitable[Any],
        done: dict,
        total: int,
    ) -> Any:
        try:
            return await step
        finally:
            done["count"] += 1
            self.events.emit(
                SCAN_PROGRESS,
                session_id,
                int(done["count"] / total * 90),
                message=f"{name} checks finished",
            )

    def _summary_facts(self, session: DiagnosticSession) -> dict:
        if session.probes is None:
            return {}
        return self.probe_set.summary_facts(session.probes.facts)

    def _scan_result(self, session: DiagnosticSession) -> dict:
        return {
            "status": session.status.value,
            "issues": len(session.issues),
            "severity_counts": session.severity_counts,
            "errors": len(session.errors),
        }
