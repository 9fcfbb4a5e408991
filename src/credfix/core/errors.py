"""Exception hierarchy for credfix.

Every error carries a human-readable ``suggestion`` so callers never have to
show a bare error code without a remediation hint.
"""

from __future__ import annotations

import enum


class CredfixError(Exception):
    """Base class for all credfix errors."""

    default_suggestion = "Re-run with --verbose for more detail."

    def __init__(self, message: str, suggestion: str = ""):
        super().__init__(message)
        self.message = message
        self.suggestion = suggestion or self.default_suggestion

    def to_dict(self) -> dict:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "suggestion": self.suggestion,
        }


class ExecutionErrorKind(enum.Enum):
    TIMEOUT = "timeout"
    NON_ZERO_EXIT = "non_zero_exit"
    SPAWN_FAILURE = "spawn_failure"


class ExecutionError(CredfixError):
    """An external command timed out, exited non-zero or could not start."""

    def __init__(
        self,
        kind: ExecutionErrorKind,
        command: str,
        exit_code: int | None = None,
        stderr: str = "",
        stdout: str = "",
        suggestion: str = "",
    ):
        self.kind = kind
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        self.stdout = stdout
        super().__init__(self._describe(), suggestion or self._default_hint())

    def _describe(self) -> str:
        if self.kind == ExecutionErrorKind.TIMEOUT:
            return f"`{self.command}` timed out and was killed"
        if self.kind == ExecutionErrorKind.SPAWN_FAILURE:
            detail = f": {self.stderr}" if self.stderr else ""
            return f"`{self.command}` could not be started{detail}"
        detail = self.stderr.strip().splitlines()[-1] if self.stderr.strip() else ""
        text = f"`{self.command}` exited with status {self.exit_code}"
        return f"{text}: {detail}" if detail else text

    def _default_hint(self) -> str:
        if self.kind == ExecutionErrorKind.TIMEOUT:
            return "The command hung; check that the service it talks to is responsive."
        if self.kind == ExecutionErrorKind.SPAWN_FAILURE:
            return "Make sure the program is installed and on your PATH."
        return "Run the command manually to see its full output."

    @property
    def evidence(self) -> str:
        """Compact, stable description of the failure for Issue evidence."""
        if self.kind == ExecutionErrorKind.NON_ZERO_EXIT:
            return f"exit status {self.exit_code}"
        return self.kind.value


class ProbeError(CredfixError):
    """A named probe failed to complete. Recorded in the report, not raised."""

    default_suggestion = "This check could not run; the rest of the report is still valid."

    def __init__(self, probe: str, message: str, suggestion: str = ""):
        self.probe = probe
        super().__init__(message, suggestion)

    @classmethod
    def from_exception(cls, probe: str, exc: BaseException) -> "ProbeError":
        if isinstance(exc, CredfixError):
            return cls(probe, exc.message, exc.suggestion)
        return cls(probe, f"{type(exc).__name__}: {exc}")

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["probe"] = self.probe
        return data


class ConfigError(CredfixError):
    """The Docker config file could not be parsed or is structurally invalid."""

    default_suggestion = "Fix the JSON syntax in your Docker config file or let credfix repair it."

    def __init__(self, path, message: str, suggestion: str = ""):
        self.path = path
        super().__init__(message, suggestion)


class ConsentRejected(CredfixError):
    """The user (or policy) declined a proposal."""

    default_suggestion = "Nothing was changed. Review the proposal and re-run when ready."


class BackupFailure(CredfixError):
    """A backup could not be created or restored; the action is aborted."""

    default_suggestion = "Check that the backup directory is writable and has free space."


class SettingsError(CredfixError):
    """credfix.toml could not be read."""

    default_suggestion = "Check the syntax of your credfix.toml."
