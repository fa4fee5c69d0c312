"""Configuration defaults for git-rest.

Every default can be overridden through a ``GIT_REST_*`` environment
variable or a YAML settings file (see ``git_rest.config``).
"""

from __future__ import annotations

import os


def _env_int(key: str, default: int) -> int:
    """Read an integer from an environment variable, returning default on parse failure."""
    try:
        return int(os.environ.get(key, str(default)))
    except (ValueError, TypeError):
        return default


# ============================================================================
# Paths
# ============================================================================

DEFAULT_ROOT_DIR = "/tmp/git"

# Hidden entries under the root dir; never valid workspace ids.
LOCKS_DIR_NAME = ".locks"
GITCONFIG_FILE_NAME = ".gitconfig"

WORKSPACE_PREFIX = "ws-"

# ============================================================================
# git
# ============================================================================

DEFAULT_GIT_BINARY = "git"

# Seconds before a git invocation is killed.
DEFAULT_COMMAND_TIMEOUT = _env_int("GIT_REST_COMMAND_TIMEOUT", 300)

# Seconds to wait for a repository lock.
DEFAULT_LOCK_TIMEOUT = _env_int("GIT_REST_LOCK_TIMEOUT", 120)

DEFAULT_AUTHOR_NAME = "git-rest"
DEFAULT_AUTHOR_EMAIL = "git-rest@localhost"

DEFAULT_REVISION = "HEAD"
DEFAULT_REMOTE = "origin"

# ============================================================================
# HTTP
# ============================================================================

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080

SESSION_COOKIE = "workspace"

# Upload size cap for PUT /repo/<repo>/tree/<path>.
DEFAULT_MAX_UPLOAD_SIZE = _env_int("GIT_REST_MAX_UPLOAD_SIZE", 64 * 1024 * 1024)
