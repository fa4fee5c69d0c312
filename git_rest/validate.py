"""Input validation for git-rest.

Whitelists every caller-supplied identifier before it reaches a
filesystem path or a git argument vector.

Convention:
- ``is_*`` functions are pure predicates.
- ``validate_*`` functions return the accepted value unchanged or raise
  ``InvalidIdentifier``.
"""

from __future__ import annotations

import posixpath
import re

from git_rest.errors import InvalidIdentifier


# ============================================================================
# Repository Names
# ============================================================================

_REPO_NAME_RE = re.compile(r"[A-Za-z0-9._-]+")


def is_valid_repo_name(name: object) -> bool:
    """Check whether *name* may be used as a repository directory name."""
    if not isinstance(name, str):
        return False
    if not _REPO_NAME_RE.fullmatch(name):
        return False
    return name != "." and ".." not in name


def validate_repo_name(name: object) -> str:
    """Return *name* unchanged if it is a legal repository name.

    Legal names fully match ``[A-Za-z0-9._-]+``; ``.`` and names containing
    ``..`` anywhere are rejected as well.

    Raises:
        InvalidIdentifier: If the name is rejected.
    """
    if not is_valid_repo_name(name):
        raise InvalidIdentifier(f"Illegal repo name: {name}")
    return name  # type: ignore[return-value]


# ============================================================================
# Commits, Branches, Remotes, Revisions
# ============================================================================

_COMMIT_REF_RE = re.compile(r"[0-9a-fA-F]{5,40}")


def validate_commit_ref(value: object) -> str:
    """Accept abbreviated or full hex commit names (5-40 characters)."""
    if not isinstance(value, str) or not _COMMIT_REF_RE.fullmatch(value):
        raise InvalidIdentifier(f"Illegal commit name: {value}")
    return value


_BRANCH_FORBIDDEN_RE = re.compile(r"[\x00-\x20\x7f~^:?*\[\\]")


def is_valid_branch_name(name: object) -> bool:
    """Apply the rules of ``git check-ref-format --branch``."""
    if not isinstance(name, str) or not name:
        return False
    if name.startswith("-") or name == "@":
        return False
    if _BRANCH_FORBIDDEN_RE.search(name):
        return False
    if ".." in name or "@{" in name or "//" in name:
        return False
    if name.startswith("/") or name.endswith("/") or name.endswith("."):
        return False
    if name.endswith(".lock"):
        return False
    return not any(part.startswith(".") for part in name.split("/"))


def validate_branch_name(name: object) -> str:
    if not is_valid_branch_name(name):
        raise InvalidIdentifier(f"Illegal branch name: {name}")
    return name  # type: ignore[return-value]


def validate_remote_name(name: object) -> str:
    """Remote names follow repository-name rules and may not start with ``-``."""
    if not is_valid_repo_name(name) or name.startswith("-"):  # type: ignore[union-attr]
        raise InvalidIdentifier(f"Illegal remote name: {name}")
    return name  # type: ignore[return-value]


_CONFIG_KEY_RE = re.compile(
    r"[A-Za-z][A-Za-z0-9-]*(\.[^\x00-\x1f\x7f]+)?\.[A-Za-z][A-Za-z0-9-]*"
)


def validate_config_key(key: object) -> str:
    """Accept ``section.name`` and ``section.subsection.name`` keys."""
    if not isinstance(key, str) or not _CONFIG_KEY_RE.fullmatch(key):
        raise InvalidIdentifier(f"Illegal config option name: {key}")
    return key


def validate_revision(rev: object) -> str:
    """Accept any revision expression that cannot be mistaken for an option."""
    if (
        not isinstance(rev, str)
        or not rev
        or rev.startswith("-")
        or re.search(r"[\x00-\x20\x7f]", rev)
    ):
        raise InvalidIdentifier(f"Illegal revision: {rev}")
    return rev


# ============================================================================
# Repository-relative Paths
# ============================================================================


def normalize_repo_path(raw: str | None) -> str:
    """Normalize a URL tail into a repository-relative path.

    Strips leading/trailing slashes and collapses ``.`` segments.  The
    repository root is returned as ``""``.

    Raises:
        InvalidIdentifier: If the path escapes the repository or contains
            NUL bytes.
    """
    raw = raw or ""
    if "\x00" in raw:
        raise InvalidIdentifier("Illegal path: NUL byte")
    stripped = raw.strip("/")
    if not stripped:
        return ""
    normalized = posixpath.normpath(stripped)
    if normalized == ".":
        return ""
    if normalized == ".." or normalized.startswith("../"):
        raise InvalidIdentifier(f"Illegal path: {raw}")
    return normalized


def validate_pathspec(path: object) -> str:
    """Validate a non-empty repository-relative path given in a request body."""
    if not isinstance(path, str) or not path:
        raise InvalidIdentifier(f"Illegal path: {path}")
    normalized = normalize_repo_path(path)
    if not normalized:
        raise InvalidIdentifier(f"Illegal path: {path}")
    return normalized
