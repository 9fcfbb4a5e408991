"""Bounded external command execution on asyncio subprocesses."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import time
from dataclasses import dataclass
from typing import Mapping, Sequence

from credfix.core.errors import ExecutionError, ExecutionErrorKind

logger = logging.getLogger("credfix.process")

DEFAULT_TIMEOUT = 30.0

# Exit status a credential helper returns from `list` when it is installed
# but cannot reach its backing store.
BROKEN_HELPER_EXIT_CODE = 1


@dataclass(frozen=True)
class CommandResult:
    command: str
    stdout: str
    stderr: str
    exit_code: int
    duration: float

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


def format_command(command: str, args: Sequence[str] = ()) -> str:
    return " ".join([command, *args])


def is_broken_helper(error: BaseException) -> bool:
    """True for the exit-status-1 signal of a helper's `list` invocation."""
    return (
        isinstance(error, ExecutionError)
        and error.kind == ExecutionErrorKind.NON_ZERO_EXIT
        and error.exit_code == BROKEN_HELPER_EXIT_CODE
    )


class ProcessRunner:
    """Runs external commands with a deadline and classified failures.

    Each call owns its child process; a timeout kills that child only.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        env: Mapping[str, str] | None = None,
    ):
        self.timeout = timeout
        self.env = dict(os.environ if env is None else env)

    async def run(
        self,
        command: str,
        args: Sequence[str] = (),
        timeout: float | None = None,
        check: bool = True,
        input: str | None = None,
    ) -> CommandResult:
        """Run ``command args`` and return its captured output.

        Raises ExecutionError on timeout, on spawn failure, and (when
        ``check`` is set) on a non-zero exit status.
        """
        cmdline = format_command(command, args)
        deadline = self.timeout if timeout is None else timeout
        started = time.monotonic()

        try:
            proc = await asyncio.create_subprocess_exec(
                command,
                *args,
                stdin=asyncio.subprocess.PIPE if input is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self.env,
            )
        except OSError as e:
            logger.debug("Spawn failed for %s: %s", cmdline, e)
            raise ExecutionError(
                ExecutionErrorKind.SPAWN_FAILURE, cmdline, stderr=str(e)
            ) from e

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(input.encode() if input is not None else None),
                timeout=deadline,
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            logger.debug("Killed %s after %.1fs", cmdline, deadline)
            raise ExecutionError(ExecutionErrorKind.TIMEOUT, cmdline) from None
        except asyncio.CancelledError:
            proc.kill()
            await proc.wait()
            raise

        result = CommandResult(
            command=cmdline,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
            exit_code=proc.returncode if proc.returncode is not None else -1,
            duration=time.monotonic() - started,
        )
        logger.debug("%s -> %s (%.2fs)", cmdline, result.exit_code, result.duration)

        if check and result.exit_code != 0:
            raise ExecutionError(
                ExecutionErrorKind.NON_ZERO_EXIT,
                cmdline,
                exit_code=result.exit_code,
                stderr=result.stderr,
                stdout=result.stdout,
            )
        return result

    async def succeeds(self, command: str, args: Sequence[str] = (), timeout: float | None = None) -> bool:
        """Run a probe command and report only whether it exited 0."""
        try:
            await self.run(command, args, timeout=timeout)
        except ExecutionError:
            return False
        return True

    def which(self, name: str) -> str | None:
        """Resolve an executable on this runner's PATH."""
        return shutil.which(name, path=self.env.get("PATH"))
