"""Tests for the credfix exception hierarchy."""

from __future__ import annotations

from credfix.core.errors import (
    BackupFailure,
    CredfixError,
    ExecutionError,
    ExecutionErrorKind,
    ProbeError,
)


class TestExecutionError:
    def test_non_zero_exit_message_uses_last_stderr_line(self):
        err = ExecutionError(
            ExecutionErrorKind.NON_ZERO_EXIT,
            "docker-credential-pass list",
            exit_code=1,
            stderr="warning\npass store is empty\n",
        )
        assert err.message == "`docker-credential-pass list` exited with status 1: pass store is empty"
        assert err.evidence == "exit status 1"

    def test_timeout(self):
        err = ExecutionError(ExecutionErrorKind.TIMEOUT, "docker pull hello-world")
        assert "timed out" in err.message
        assert err.evidence == "timeout"
        assert err.suggestion

    def test_spawn_failure_hint(self):
        err = ExecutionError(ExecutionErrorKind.SPAWN_FAILURE, "docker info")
        assert "PATH" in err.suggestion

    def test_is_credfix_error(self):
        assert isinstance(ExecutionError(ExecutionErrorKind.TIMEOUT, "x"), CredfixError)


class TestSuggestions:
    def test_every_error_has_a_suggestion(self):
        for err in (CredfixError("boom"), BackupFailure("disk full"), ProbeError("linux", "bad")):
            assert err.suggestion

    def test_explicit_suggestion_wins(self):
        assert BackupFailure("x", "do y").suggestion == "do y"

    def test_to_dict(self):
        data = BackupFailure("disk full").to_dict()
        assert data["error"] == "BackupFailure"
        assert data["message"] == "disk full"


class TestProbeError:
    def test_from_plain_exception(self):
        err = ProbeError.from_exception("docker.daemon", ValueError("bad json"))
        assert err.probe == "docker.daemon"
        assert err.message == "ValueError: bad json"

    def test_from_credfix_error_keeps_suggestion(self):
        source = ExecutionError(ExecutionErrorKind.TIMEOUT, "docker info")
        err = ProbeError.from_exception("daemon", source)
        assert err.message == source.message
        assert err.suggestion == source.suggestion
        assert err.to_dict()["probe"] == "daemon"
