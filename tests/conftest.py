"""
Top-level pytest conftest.py -- shared fixtures.

Provides:
    has_git      - session-scoped check for a git binary
    requires_git - skip the test when git is not installed
    settings     - Settings rooted at a temporary directory
    app / client - Flask application and test client over ``settings``
    local_repo   - temporary directory with a deterministic git repo
"""

import os
import shutil
import subprocess

import pytest

from git_rest.api import create_app
from git_rest.config import Settings


@pytest.fixture(scope="session")
def has_git():
    """Check whether git is available on this system."""
    return shutil.which("git") is not None


@pytest.fixture
def requires_git(has_git):
    """Skip the test when git is not installed."""
    if not has_git:
        pytest.skip("git is not available")


@pytest.fixture
def settings(tmp_path):
    """Settings with a private root dir and a fixed secret."""
    return Settings(
        root_dir=str(tmp_path / "root"),
        secret_key="test-secret",
        lock_timeout=5,
        command_timeout=60,
        log_format="text",
    )


@pytest.fixture
def app(settings, requires_git):
    """Flask app over a real git binary."""
    application = create_app(settings)
    application.config["TESTING"] = True
    return application


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def local_repo(tmp_path, requires_git):
    """Create a temporary directory containing a deterministic git repo.

    The repo has ``main`` as its default branch, a single ``README.md``,
    and one initial commit.  Yields the ``pathlib.Path`` to the repo root.
    """
    repo = tmp_path / "repo"
    repo.mkdir()

    env = {
        **os.environ,
        "GIT_AUTHOR_NAME": "Test User",
        "GIT_AUTHOR_EMAIL": "test@example.com",
        "GIT_COMMITTER_NAME": "Test User",
        "GIT_COMMITTER_EMAIL": "test@example.com",
    }
    run_opts = {"cwd": str(repo), "env": env, "capture_output": True, "text": True}

    subprocess.run(["git", "init", "-b", "main"], check=True, **run_opts)
    (repo / "README.md").write_text("# Test Repository\n")
    subprocess.run(["git", "add", "README.md"], check=True, **run_opts)
    subprocess.run(
        ["git", "commit", "-m", "Initial commit"], check=True, **run_opts
    )

    yield repo
