"""Exception hierarchy for git-rest.

Provides a structured exception tree so callers can catch broad
categories (``GitRestError``) or specific failure modes.  Every error
knows the HTTP status it maps to and renders as ``{"error": <detail>}``.

This module is a base-layer module: it must NOT import from any
other ``git_rest`` submodule.
"""

from __future__ import annotations

import re
from typing import Sequence


class GitRestError(Exception):
    """Base exception for all git-rest errors."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"error": self.message}


class InvalidRequest(GitRestError):
    """A request is missing a field or carries a malformed one."""

    status_code = 400


class InvalidIdentifier(InvalidRequest):
    """A caller-supplied name, ref or path failed validation."""


class NotFound(GitRestError):
    """Repository, path, branch or commit is absent."""

    status_code = 404


class AlreadyExists(GitRestError):
    """Init/clone target collides with an existing repository."""

    status_code = 409


class ToolInvocationFailed(GitRestError):
    """git exited non-zero (or could not be run at all)."""

    status_code = 400

    def __init__(
        self,
        message: str,
        *,
        argv: Sequence[str] = (),
        exit_code: int | None = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.argv = list(argv)
        self.exit_code = exit_code
        self.stderr = stderr


class ParseFailure(GitRestError):
    """git output did not match the expected shape."""

    status_code = 500


class FilesystemError(GitRestError):
    """I/O failure unrelated to git."""

    status_code = 500


class RepositoryBusy(GitRestError):
    """A repository lock could not be acquired in time."""

    status_code = 503


class ConfigError(GitRestError):
    """Invalid service configuration."""


# ============================================================================
# stderr Classification
# ============================================================================

_NOT_FOUND_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"unknown revision",
        r"bad revision",
        r"bad object",
        r"not a valid object name",
        r"invalid object name",
        r"does not exist in '",
        r"exists on disk, but not in",
        r"pathspec '.*' did not match",
        r"did not match any file\(s\) known to git",
        r"no such remote",
        r"does not have any commits yet",
        r"bad source",
        r"not a git repository",
    )
)

_ALREADY_EXISTS_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"already exists",
        r"destination exists",
    )
)


def classify_tool_failure(
    argv: Sequence[str],
    exit_code: int | None,
    detail: str,
) -> GitRestError:
    """Map a failed git invocation to the most specific error type.

    Args:
        argv: git arguments (without the binary).
        exit_code: Process exit status.
        detail: Trimmed stderr (or stdout when stderr was empty).

    Returns:
        ``NotFound`` or ``AlreadyExists`` when the message matches a known
        pattern, otherwise ``ToolInvocationFailed`` carrying the raw detail.
    """
    message = detail or f"git {' '.join(argv[:2])} exited with status {exit_code}"
    if any(p.search(detail) for p in _NOT_FOUND_PATTERNS):
        return NotFound(message)
    if any(p.search(detail) for p in _ALREADY_EXISTS_PATTERNS):
        return AlreadyExists(message)
    return ToolInvocationFailed(
        message, argv=argv, exit_code=exit_code, stderr=detail,
    )
