"""Unit tests for git_rest/executor.py.

Tests cover:
- build_clean_env: allow-listed variables only, fixed locale and prompts
- GitExecutor.execute: argv shape, non-zero exits returned, spawn failures
- GitExecutor.run: parser dispatch and failure classification
- write_identity_config: gitconfig content
"""

from __future__ import annotations

import subprocess
from unittest.mock import Mock, patch

import pytest

from git_rest.errors import AlreadyExists, NotFound, ToolInvocationFailed
from git_rest.executor import (
    BASE_CONFIG_FLAGS,
    CommandResult,
    GitExecutor,
    build_clean_env,
    write_identity_config,
)


# ============================================================================
# Environment
# ============================================================================


class TestBuildCleanEnv:
    """Tests for build_clean_env()."""

    def test_drops_unlisted_variables(self, monkeypatch):
        monkeypatch.setenv("GIT_DIR", "/elsewhere")
        monkeypatch.setenv("SSH_AUTH_SOCK", "/tmp/agent")
        monkeypatch.setenv("HOME", "/home/tester")

        env = build_clean_env()

        assert "GIT_DIR" not in env
        assert "SSH_AUTH_SOCK" not in env
        assert env["HOME"] == "/home/tester"

    def test_fixed_values(self):
        env = build_clean_env()

        assert env["LC_ALL"] == "C"
        assert env["GIT_TERMINAL_PROMPT"] == "0"
        assert env["GIT_CONFIG_NOSYSTEM"] == "1"
        assert "GIT_CONFIG_GLOBAL" not in env

    def test_global_config_path(self, tmp_path):
        env = build_clean_env(tmp_path / ".gitconfig")
        assert env["GIT_CONFIG_GLOBAL"] == str(tmp_path / ".gitconfig")

    def test_default_path_when_missing(self, monkeypatch):
        monkeypatch.delenv("PATH", raising=False)
        assert build_clean_env()["PATH"] == "/usr/local/bin:/usr/bin:/bin"


# ============================================================================
# execute / run
# ============================================================================


class TestExecute:
    """Tests for GitExecutor.execute()."""

    @patch("git_rest.executor.subprocess.run")
    def test_argv_and_cwd(self, mock_run, tmp_path):
        mock_run.return_value = Mock(returncode=0, stdout=b"ok\n", stderr=b"")

        result = GitExecutor(git_binary="git").execute(["status", "--short"], tmp_path)

        cmd = mock_run.call_args[0][0]
        assert cmd == ["git", *BASE_CONFIG_FLAGS, "status", "--short"]
        assert mock_run.call_args.kwargs["cwd"] == str(tmp_path)
        assert "shell" not in mock_run.call_args.kwargs
        assert result.ok
        assert result.text == "ok\n"
        assert result.argv == ("status", "--short")

    @patch("git_rest.executor.subprocess.run")
    def test_nonzero_exit_is_returned(self, mock_run, tmp_path):
        mock_run.return_value = Mock(returncode=128, stdout=b"", stderr=b"fatal: nope\n")

        result = GitExecutor().execute(["log"], tmp_path)

        assert result.exit_code == 128
        assert not result.ok
        assert result.error_detail == "fatal: nope"

    @patch("git_rest.executor.subprocess.run")
    def test_timeout_raises(self, mock_run, tmp_path):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="git", timeout=1)

        with pytest.raises(ToolInvocationFailed, match="timed out"):
            GitExecutor(timeout=1).execute(["fetch"], tmp_path)

    @patch("git_rest.executor.subprocess.run")
    def test_missing_binary_raises(self, mock_run, tmp_path):
        mock_run.side_effect = FileNotFoundError("no such file: git")

        with pytest.raises(ToolInvocationFailed, match="Execution error"):
            GitExecutor().execute(["status"], tmp_path)


class TestRun:
    """Tests for GitExecutor.run()."""

    @patch("git_rest.executor.subprocess.run")
    def test_parser_applied_on_success(self, mock_run, tmp_path):
        mock_run.return_value = Mock(returncode=0, stdout=b"a\nb\n", stderr=b"")

        lines = GitExecutor().run(["branch"], tmp_path, lambda r: r.text.split())

        assert lines == ["a", "b"]

    @patch("git_rest.executor.subprocess.run")
    def test_raw_result_without_parser(self, mock_run, tmp_path):
        mock_run.return_value = Mock(returncode=0, stdout=b"\x00\xff", stderr=b"")

        result = GitExecutor().run(["show", "HEAD:bin"], tmp_path)

        assert isinstance(result, CommandResult)
        assert result.stdout == b"\x00\xff"

    @patch("git_rest.executor.subprocess.run")
    def test_parser_not_called_on_failure(self, mock_run, tmp_path):
        mock_run.return_value = Mock(
            returncode=128, stdout=b"",
            stderr=b"fatal: ambiguous argument 'x': unknown revision or path\n",
        )
        parser = Mock()

        with pytest.raises(NotFound, match="unknown revision"):
            GitExecutor().run(["show", "x"], tmp_path, parser)

        parser.assert_not_called()

    @patch("git_rest.executor.subprocess.run")
    def test_already_exists_classified(self, mock_run, tmp_path):
        mock_run.return_value = Mock(
            returncode=128, stdout=b"",
            stderr=b"fatal: a branch named 'dev' already exists\n",
        )

        with pytest.raises(AlreadyExists):
            GitExecutor().run(["branch", "dev"], tmp_path)

    @patch("git_rest.executor.subprocess.run")
    def test_unclassified_failure_carries_details(self, mock_run, tmp_path):
        mock_run.return_value = Mock(
            returncode=1, stdout=b"", stderr=b"error: failed to push some refs\n",
        )

        with pytest.raises(ToolInvocationFailed) as exc_info:
            GitExecutor().run(["push", "origin"], tmp_path)

        err = exc_info.value
        assert err.exit_code == 1
        assert err.argv == ["push", "origin"]
        assert err.message == "error: failed to push some refs"
        assert err.status_code == 400

    @patch("git_rest.executor.subprocess.run")
    def test_stdout_used_when_stderr_empty(self, mock_run, tmp_path):
        mock_run.return_value = Mock(
            returncode=1, stdout=b"nothing to commit, working tree clean\n", stderr=b"",
        )

        with pytest.raises(ToolInvocationFailed, match="nothing to commit"):
            GitExecutor().run(["commit", "-m", "x"], tmp_path)

    @patch("git_rest.executor.subprocess.run")
    def test_version(self, mock_run):
        mock_run.return_value = Mock(returncode=0, stdout=b"git version 2.43.0\n", stderr=b"")

        assert GitExecutor().version() == "git version 2.43.0"


# ============================================================================
# Identity config
# ============================================================================


class TestWriteIdentityConfig:
    def test_content(self, tmp_path):
        path = tmp_path / ".gitconfig"

        write_identity_config(path, 'Bot "B"', "bot@example.com")

        text = path.read_text()
        assert '\tname = "Bot \\"B\\""\n' in text
        assert '\temail = "bot@example.com"\n' in text
        assert "defaultBranch = master" in text
