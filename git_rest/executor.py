"""git subprocess execution.

Runs the git binary without a shell, against an explicit working
directory, with a sanitized environment.  Output is fully buffered: every
parser downstream works on the complete stdout of one invocation.

A non-zero exit status is a normal outcome.  ``GitExecutor.execute``
returns it as a ``CommandResult``; ``GitExecutor.run`` converts it into a
classified ``GitRestError`` for the operation layer to report.
"""

from __future__ import annotations

import logging
import os
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Sequence, TypeVar

from git_rest.atomic_io import atomic_write
from git_rest.constants import DEFAULT_COMMAND_TIMEOUT, DEFAULT_GIT_BINARY
from git_rest.errors import ToolInvocationFailed, classify_tool_failure

T = TypeVar("T")

# Flags injected before every subcommand.
# core.hooksPath=/dev/null  -> repositories in a workspace never run hooks
# core.fsmonitor=false      -> fs-monitor can execute arbitrary commands
BASE_CONFIG_FLAGS: tuple[str, ...] = (
    "-c", "core.hooksPath=/dev/null",
    "-c", "core.fsmonitor=false",
)

DEFAULT_BRANCH = "master"

# ---------------------------------------------------------------------------
# Environment Sanitization
# ---------------------------------------------------------------------------

# Minimal allowed env vars for git execution
ENV_ALLOWED: frozenset = frozenset({
    "PATH",
    "HOME",
    "USER",
    "TMPDIR",
    "TZ",
})


def build_clean_env(gitconfig_path: str | os.PathLike | None = None) -> dict[str, str]:
    """Build a sanitized environment for git subprocess execution.

    Starts from an empty env and only copies allowed variables, so no
    ``GIT_*`` or ``SSH_*`` variable of the server process leaks into git.
    The C locale keeps git's messages (and therefore the stderr
    classification) stable.

    Args:
        gitconfig_path: Server-managed global gitconfig supplying the
            default commit identity.  Repository-local config still wins.
    """
    clean: dict[str, str] = {}

    for key in ENV_ALLOWED:
        val = os.environ.get(key)
        if val is not None:
            clean[key] = val

    if "PATH" not in clean:
        clean["PATH"] = "/usr/local/bin:/usr/bin:/bin"

    clean["LC_ALL"] = "C"
    clean["LANG"] = "C"
    clean["GIT_TERMINAL_PROMPT"] = "0"
    clean["GIT_CONFIG_NOSYSTEM"] = "1"
    if gitconfig_path is not None:
        clean["GIT_CONFIG_GLOBAL"] = str(gitconfig_path)

    return clean


def _quote_config_value(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def write_identity_config(path: Path, author_name: str, author_email: str) -> None:
    """Write the global gitconfig used by every invocation."""
    content = (
        "[user]\n"
        f"\tname = {_quote_config_value(author_name)}\n"
        f"\temail = {_quote_config_value(author_email)}\n"
        "[init]\n"
        f"\tdefaultBranch = {DEFAULT_BRANCH}\n"
        "[advice]\n"
        "\tdetachedHead = false\n"
    )
    atomic_write(path, content)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one git invocation."""

    argv: tuple[str, ...]
    exit_code: int
    stdout: bytes
    stderr: bytes

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def text(self) -> str:
        """stdout decoded as UTF-8 (undecodable bytes replaced)."""
        return self.stdout.decode("utf-8", errors="replace")

    @property
    def error_detail(self) -> str:
        """Trimmed stderr, or stdout when git reported the failure there."""
        detail = self.stderr.decode("utf-8", errors="replace").strip()
        if not detail:
            detail = self.text.strip()
        return detail


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class GitExecutor:
    """Spawns git and optionally pipes its output through a parser."""

    def __init__(
        self,
        git_binary: str = DEFAULT_GIT_BINARY,
        timeout: float = DEFAULT_COMMAND_TIMEOUT,
        gitconfig_path: str | os.PathLike | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.git_binary = git_binary
        self.timeout = timeout
        self.gitconfig_path = gitconfig_path
        self.logger = logger or logging.getLogger(__name__)

    def execute(
        self,
        argv: Sequence[str],
        cwd: str | os.PathLike,
    ) -> CommandResult:
        """Run ``git <argv>`` in *cwd* and capture its output.

        Returns:
            The result, whatever the exit status.

        Raises:
            ToolInvocationFailed: If git could not be spawned or timed out.
        """
        argv = tuple(argv)
        cmd = [self.git_binary, *BASE_CONFIG_FLAGS, *argv]
        started = time.monotonic()
        try:
            proc = subprocess.run(
                cmd,
                cwd=os.fspath(cwd),
                capture_output=True,
                timeout=self.timeout,
                env=build_clean_env(self.gitconfig_path),
            )
        except subprocess.TimeoutExpired:
            self.logger.warning(
                "git command timed out",
                extra={"command_args": list(argv), "timeout": self.timeout},
            )
            raise ToolInvocationFailed(
                f"git {' '.join(argv[:2])} timed out after {self.timeout:g}s",
                argv=argv,
            )
        except OSError as exc:
            self.logger.error("git execution failed: %s", exc)
            raise ToolInvocationFailed(f"Execution error: {exc}", argv=argv)

        result = CommandResult(
            argv=argv,
            exit_code=proc.returncode,
            stdout=proc.stdout,
            stderr=proc.stderr,
        )
        self.logger.debug(
            "git %s -> %d",
            " ".join(argv[:3]),
            result.exit_code,
            extra={
                "command_args": list(argv),
                "exit_code": result.exit_code,
                "duration_ms": (time.monotonic() - started) * 1000,
            },
        )
        return result

    def run(
        self,
        argv: Sequence[str],
        cwd: str | os.PathLike,
        parser: Callable[[CommandResult], T] | None = None,
    ) -> T | CommandResult:
        """Run git and return parsed output on success.

        Args:
            argv: git arguments (without the binary).
            cwd: Working directory.
            parser: Applied to the result when git exits 0.

        Returns:
            ``parser(result)`` if a parser is given, else the raw result.

        Raises:
            GitRestError: The classified failure when git exits non-zero.
        """
        result = self.execute(argv, cwd)
        if not result.ok:
            detail = result.error_detail
            self.logger.info(
                "git %s failed: %s",
                " ".join(result.argv[:2]),
                detail,
                extra={"command_args": list(result.argv), "exit_code": result.exit_code},
            )
            raise classify_tool_failure(result.argv, result.exit_code, detail)
        if parser is None:
            return result
        return parser(result)

    def version(self) -> str:
        """Return ``git --version`` output."""
        result = self.run(["--version"], cwd=os.getcwd())
        return result.text.strip()  # type: ignore[union-attr]
