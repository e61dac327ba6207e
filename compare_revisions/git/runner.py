"""Effect boundary for the git binary.

Everything the git layer does to a repository goes through a ``GitRunner``,
so tests can substitute a fake that records arguments instead of spawning
processes.
"""

from __future__ import annotations

import asyncio
import shlex
from pathlib import Path
from typing import Protocol

from compare_revisions.errors import GitProcessError
from compare_revisions.observability.logging import get_logger
from compare_revisions.observability.metrics import git_commands_total

_log = get_logger("git.runner")


class GitRunner(Protocol):
    """Runs ``git <args>`` and returns ``(stdout, stderr)``.

    Implementations raise GitProcessError on a non-zero exit status.
    """

    async def run(self, args: list[str], cwd: Path | None = None) -> tuple[str, str]: ...


class SubprocessGitRunner:
    """Runs the real git binary with ``asyncio.create_subprocess_exec``.

    Args:
        git:     Name or path of the git executable.
        timeout: Seconds a single invocation may take before it is killed.
    """

    def __init__(self, git: str = "git", timeout: float = 300.0) -> None:
        self._git = git
        self._timeout = timeout

    async def run(self, args: list[str], cwd: Path | None = None) -> tuple[str, str]:
        argv = [self._git, *args]
        command = shlex.join(argv)
        subcommand = args[0] if args else ""
        _log.debug("git_command_started", command=command, cwd=str(cwd) if cwd else None)

        proc = await asyncio.create_subprocess_exec(
            *argv,
            cwd=cwd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            raw_out, raw_err = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except TimeoutError:
            await _kill(proc)
            git_commands_total.labels(command=subcommand, success="false").inc()
            raise GitProcessError(
                command=command,
                exit_code=-1,
                stdout="",
                stderr=f"timed out after {self._timeout:g}s",
                cwd=str(cwd) if cwd else None,
            ) from None
        except asyncio.CancelledError:
            await _kill(proc)
            raise

        stdout = raw_out.decode("utf-8", errors="replace")
        stderr = raw_err.decode("utf-8", errors="replace")
        exit_code = proc.returncode if proc.returncode is not None else -1

        if exit_code != 0:
            git_commands_total.labels(command=subcommand, success="false").inc()
            error = GitProcessError(
                command=command,
                exit_code=exit_code,
                stdout=stdout,
                stderr=stderr,
                cwd=str(cwd) if cwd else None,
            )
            _log.warning("git_command_failed", **error.to_log_fields())
            raise error

        git_commands_total.labels(command=subcommand, success="true").inc()
        _log.debug("git_command_succeeded", command=command)
        return stdout, stderr


async def _kill(proc: asyncio.subprocess.Process) -> None:
    """Kill *proc* if it is still running and reap it."""
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
    await proc.wait()
