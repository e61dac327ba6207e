"""Exception hierarchy for compare-revisions.

Failures local to one image are recorded in the published snapshot; only
configuration errors at startup are fatal to the process.
"""

from __future__ import annotations


class CompareRevisionsError(Exception):
    """Base class for every error raised by compare-revisions."""


class GitProcessError(CompareRevisionsError):
    """A git invocation exited non-zero.

    Carries everything needed to log the failure verbatim.
    """

    def __init__(
        self,
        command: str,
        exit_code: int,
        stdout: str,
        stderr: str,
        cwd: str | None,
    ) -> None:
        super().__init__(f"git command failed ({exit_code}): {command}: {stderr.strip()}")
        self.command = command
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        self.cwd = cwd

    def to_log_fields(self) -> dict[str, object]:
        return {
            "command": self.command,
            "exit_code": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "cwd": self.cwd,
        }


ToolExecutionError = GitProcessError


class RefNotFoundError(GitProcessError):
    """A branch or revision does not exist in the mirror."""


class ConfigurationError(CompareRevisionsError):
    """The configuration document is missing, unparsable or inconsistent."""


class PolicyApplicationError(CompareRevisionsError):
    """An image tag could not be turned into a revision by its policy."""

    def __init__(self, policy: str, label: str | None, message: str) -> None:
        super().__init__(message)
        self.policy = policy
        self.label = label


class NotFoundError(CompareRevisionsError):
    """Something the caller asked for is not configured."""


class ManifestError(CompareRevisionsError, ValueError):
    """A document is not a manifest of a kind that declares images."""
