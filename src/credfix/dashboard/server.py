"""Localhost HTTP server for the credfix dashboard."""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import webbrowser
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import parse_qs, urlparse

from credfix.core.errors import CredfixError
from credfix.core.models import DiagnosticSession
from credfix.core.serialize import (
    backup_to_dict,
    fix_to_dict,
    issue_to_dict,
    proposal_to_dict,
    session_to_dict,
    summary_to_dict,
)
from credfix.doctor.decisions import ScriptedDecisions
from credfix.repair.consent import APPROVE, SKIP

logger = logging.getLogger("credfix.dashboard")


class DashboardState:
    """The latest scan, shared by request handler threads."""

    def __init__(self, services):
        self.services = services
        self.session: DiagnosticSession | None = None
        self.lock = threading.Lock()
        # Held across propose, consent and execute so fixes never interleave.
        self.fix_lock = threading.Lock()

    def scan(self) -> DiagnosticSession:
        session = self.services.engine.run()
        with self.lock:
            self.session = session
        return session

    def current(self) -> DiagnosticSession:
        with self.lock:
            session = self.session
        return session if session is not None else self.scan()


class DashboardServer:
    """Minimal HTTP server serving the dashboard."""

    def __init__(self, services, port: int = 7654):
        self.services = services
        self.port = port

    def make_server(self) -> ThreadingHTTPServer:
        handler = _make_handler(DashboardState(self.services))
        return ThreadingHTTPServer(("127.0.0.1", self.port), handler)

    def start(self, open_browser: bool = True):
        """Start the dashboard server."""
        server = self.make_server()

        if open_browser:
            webbrowser.open(f"http://localhost:{self.port}")

        try:
            server.serve_forever()
        except KeyboardInterrupt:
            server.shutdown()


def _make_handler(state: DashboardState):
    """Create a request handler class bound to the dashboard state."""
    services = state.services

    class DashboardHandler(BaseHTTPRequestHandler):
        """HTTP request handler for the credfix dashboard API and UI."""

        def log_message(self, format, *args):
            logger.debug("dashboard: " + format, *args)

        def do_GET(self):
            parsed = urlparse(self.path)
            path = parsed.path
            query = parse_qs(parsed.query)

            if path == "/" or path == "":
                self._serve_html()
            elif path == "/api/scan":
                self._send_json(session_to_dict(state.scan()))
            elif path == "/api/issues":
                session = state.current()
                self._send_json({
                    "session_id": session.id,
                    "issues": [issue_to_dict(i) for i in session.issues],
                })
            elif path == "/api/fixes":
                self._api_fixes()
            elif path == "/api/backups":
                self._send_json({"backups": [backup_to_dict(b) for b in services.backups.list_backups()]})
            elif path == "/api/events":
                session_id = query.get("session", [""])[0]
                events = services.events.since(session_id) if session_id else list(services.events.events)
                self._send_json({"events": events})
            else:
                self._send_json({"error": "Not found"}, 404)

        def do_POST(self):
            parsed = urlparse(self.path)
            path = parsed.path

            content_length = int(self.headers.get("Content-Length", 0))
            body = self.rfile.read(content_length) if content_length else b""
            try:
                data = json.loads(body) if body else {}
            except ValueError:
                self._send_json({"error": "Request body is not valid JSON"}, 400)
                return

            try:
                if path == "/api/preview":
                    self._api_preview(data)
                elif path == "/api/fix":
                    self._api_fix(data)
                elif path == "/api/restore":
                    self._api_restore(data)
                else:
                    self._send_json({"error": "Not found"}, 404)
            except CredfixError as e:
                self._send_json(e.to_dict(), 500)

        def _serve_html(self):
            html = _EMBEDDED_HTML
            self.send_response(200)
            self.send_header("Content-Type", "text/html; charset=utf-8")
            self.send_header("Content-Length", str(len(html.encode())))
            self.end_headers()
            self.wfile.write(html.encode())

        def _api_fixes(self):
            session = state.current()
            analysis = services.repairer.analyze_and_repair(session)
            self._send_json({
                "session_id": session.id,
                "fixes": [fix_to_dict(f) for f in analysis.fixes],
                "manual": [issue_to_dict(i) for i in analysis.manual],
            })

        def _selected(self, data: dict):
            session = state.current()
            analysis = services.repairer.analyze_and_repair(session)
            wanted = data.get("fix_ids") or []
            if data.get("all"):
                return session, list(analysis.fixes)
            return session, [f for f in analysis.fixes if f.id in wanted]

        def _api_preview(self, data: dict):
            session, fixes = self._selected(data)
            if not fixes:
                self._send_json({"error": "No matching fixes"}, 404)
                return
            diff = services.repairer.preview(fixes)
            self._send_json({"session_id": session.id, "fixes": [fix_to_dict(f) for f in fixes], "diff": diff})

        def _api_fix(self, data: dict):
            with state.fix_lock:
                self._run_fix(data)

        def _run_fix(self, data: dict):
            session, fixes = self._selected(data)
            if not fixes:
                self._send_json({"error": "No matching fixes"}, 404)
                return

            if data.get("dry_run"):
                summary = asyncio.run(services.repairer.execute_fixes(fixes, dry_run=True, session_id=session.id))
                self._send_json({"summary": summary_to_dict(summary)})
                return

            decisions = ScriptedDecisions(reviews=[APPROVE if data.get("approve") else SKIP])
            consent = services.consent(decisions, interactive=True, auto_approve=False)
            proposal = consent.propose(fixes)
            decision = consent.get_consent(proposal)
            if not decision.approved:
                self._send_json({
                    "approved": False,
                    "reason": decision.reason,
                    "proposal": proposal_to_dict(proposal),
                })
                return

            summary = asyncio.run(services.repairer.execute_fixes(
                fixes, dry_run=False, backup=proposal.backup, session_id=session.id
            ))
            after = state.scan()
            self._send_json({
                "approved": True,
                "summary": summary_to_dict(summary),
                "proposal": proposal_to_dict(proposal),
                "remaining": [issue_to_dict(i) for i in after.issues],
            })

        def _api_restore(self, data: dict):
            with state.fix_lock:
                outcome = services.backups.restore_backup(data.get("backup_id", ""))
            self._send_json(
                {"success": outcome.success, "message": outcome.message},
                200 if outcome.success else 400,
            )

        def _send_json(self, data: dict, status: int = 200):
            body = json.dumps(data, default=str).encode()
            self.send_response(status)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

    return DashboardHandler


_EMBEDDED_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>credfix Dashboard</title>
<style>
* { margin: 0; padding: 0; box-sizing: border-box; }
body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif; background: #0d1117; color: #c9d1d9; }
.header { background: #161b22; border-bottom: 1px solid #30363d; padding: 16px 24px; display: flex; justify-content: space-between; align-items: center; }
.header h1 { font-size: 20px; color: #58a6ff; }
.content { max-width: 1000px; margin: 0 auto; padding: 24px; }
.counts { display: grid; grid-template-columns: repeat(4, 1fr); gap: 16px; margin-bottom: 24px; }
.count { background: #161b22; padding: 16px; border-radius: 8px; border: 1px solid #30363d; text-align: center; }
.count b { display: block; font-size: 32px; }
.issues { background: #161b22; border-radius: 12px; border: 1px solid #30363d; overflow: hidden; margin-bottom: 24px; }
.issue { display: flex; align-items: center; padding: 12px 16px; border-bottom: 1px solid #21262d; gap: 12px; }
.severity { width: 10px; height: 10px; border-radius: 50%; flex-shrink: 0; }
.severity.critical { background: #f85149; }
.severity.high { background: #db6d28; }
.severity.medium { background: #d29922; }
.severity.low { background: #58a6ff; }
.code { font-family: monospace; font-weight: bold; min-width: 220px; color: #8b949e; }
.msg { flex: 1; }
.evidence { font-family: monospace; font-size: 12px; color: #8b949e; }
button { padding: 6px 14px; background: #238636; color: white; border: none; border-radius: 6px; cursor: pointer; }
pre { background: #161b22; padding: 16px; border-radius: 8px; overflow-x: auto; white-space: pre-wrap; }
</style>
</head>
<body>
<div class="header"><h1>credfix</h1><div><button onclick="loadScan()">Rescan</button> <button onclick="fixAll()">Fix all</button></div></div>
<div class="content">
<div class="counts" id="counts"></div>
<div class="issues" id="issues"></div>
<pre id="output"></pre>
</div>
<script>
async function api(path, method='GET', body=null) {
    const opts = {method, headers: {'Content-Type': 'application/json'}};
    if (body) opts.body = JSON.stringify(body);
    const r = await fetch('/api/' + path, opts);
    return r.json();
}

async function loadScan() {
    document.getElementById('output').textContent = 'Scanning...';
    const data = await api('scan');
    const counts = data.severity_counts;
    document.getElementById('counts').innerHTML = Object.keys(counts).map(
        k => `<div class="count"><b>${counts[k]}</b>${k}</div>`).join('');
    document.getElementById('issues').innerHTML = data.issues.length ? data.issues.map(i =>
        `<div class="issue"><span class="severity ${i.severity}"></span><span class="code">${i.code}</span>` +
        `<span class="msg">${i.description}<br><span class="evidence">${i.evidence}</span></span></div>`).join('')
        : '<div class="issue">No issues found.</div>';
    document.getElementById('output').textContent = '';
}

async function fixAll() {
    const preview = await api('preview', 'POST', {all: true});
    if (preview.error) { document.getElementById('output').textContent = preview.error; return; }
    if (!confirm('Apply these changes?\\n\\n' + (preview.diff || '(commands only)'))) return;
    const result = await api('fix', 'POST', {all: true, approve: true});
    document.getElementById('output').textContent = JSON.stringify(result.summary || result, null, 2);
    loadScan();
}

loadScan();
</script>
</body>
</html>
"""
