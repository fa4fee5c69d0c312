"""Unit tests for git_rest/validate.py.

Tests cover:
- repository names (the whitelist and the dot-name exclusions)
- commit refs, branch names, remote names, config keys, revisions
- repository-relative path normalization
"""

from __future__ import annotations

import pytest

from git_rest import validate
from git_rest.errors import InvalidIdentifier


# ============================================================================
# Repository Names
# ============================================================================


class TestRepoNameValidation:
    """Tests for validate_repo_name()."""

    @pytest.mark.parametrize("name", ["x", "my-repo", "repo_1", "a.b", "R2.D2"])
    def test_legal_names_accepted(self, name):
        assert validate.validate_repo_name(name) == name

    @pytest.mark.parametrize("name", ["", "a/b", "a b", "a:b", "repo!", "ü", "a\x00b"])
    def test_illegal_characters_rejected(self, name):
        with pytest.raises(InvalidIdentifier, match="Illegal repo name"):
            validate.validate_repo_name(name)

    @pytest.mark.parametrize("name", [".", "..", "...", "..hidden", "a..b", "x..", "v1..2"])
    def test_dot_names_rejected(self, name):
        with pytest.raises(InvalidIdentifier):
            validate.validate_repo_name(name)

    def test_single_leading_dot_accepted(self):
        assert validate.is_valid_repo_name(".config")

    def test_non_string_rejected(self):
        assert validate.is_valid_repo_name(None) is False
        assert validate.is_valid_repo_name(42) is False


# ============================================================================
# Commits, Branches, Remotes, Config, Revisions
# ============================================================================


class TestCommitRefValidation:
    """Tests for validate_commit_ref()."""

    @pytest.mark.parametrize("ref", ["abcde", "ABCDEF12", "0" * 40])
    def test_hex_refs_accepted(self, ref):
        assert validate.validate_commit_ref(ref) == ref

    @pytest.mark.parametrize("ref", ["abcd", "0" * 41, "HEAD", "abcdeg", "abcde~1", ""])
    def test_other_refs_rejected(self, ref):
        with pytest.raises(InvalidIdentifier, match="Illegal commit name"):
            validate.validate_commit_ref(ref)


class TestBranchNameValidation:
    """Tests for is_valid_branch_name()."""

    @pytest.mark.parametrize("name", ["main", "feature/x", "release-1.2", "fix_123"])
    def test_ordinary_names_accepted(self, name):
        assert validate.is_valid_branch_name(name)

    @pytest.mark.parametrize(
        "name",
        [
            "", "-b", "@", "a..b", "a b", "a~1", "a^", "a:b", "a?", "a*", "a[b",
            "a\\b", "a@{1}", "a//b", "/a", "a/", "a.", "a.lock", ".a", "a/.b",
        ],
    )
    def test_ref_format_violations_rejected(self, name):
        assert not validate.is_valid_branch_name(name)

    def test_validate_raises(self):
        with pytest.raises(InvalidIdentifier, match="Illegal branch name"):
            validate.validate_branch_name("--force")


class TestRemoteAndConfigValidation:
    def test_remote_name_follows_repo_rules(self):
        assert validate.validate_remote_name("origin") == "origin"
        with pytest.raises(InvalidIdentifier, match="Illegal remote name"):
            validate.validate_remote_name("a b")

    def test_remote_name_option_like(self):
        with pytest.raises(InvalidIdentifier):
            validate.validate_remote_name("-upload")

    @pytest.mark.parametrize(
        "key", ["user.name", "core.bare", "remote.origin.url", "branch.feature/x.merge"],
    )
    def test_config_keys_accepted(self, key):
        assert validate.validate_config_key(key) == key

    @pytest.mark.parametrize("key", ["", "user", ".name", "user.", "1x.y", "--add", "a.b\n.c"])
    def test_config_keys_rejected(self, key):
        with pytest.raises(InvalidIdentifier, match="Illegal config option name"):
            validate.validate_config_key(key)

    @pytest.mark.parametrize("rev", ["HEAD", "HEAD~2", "main", "v1.0^{commit}", "abc123"])
    def test_revisions_accepted(self, rev):
        assert validate.validate_revision(rev) == rev

    @pytest.mark.parametrize("rev", ["", "-p", "--output=/tmp/x", "a b", "a\nb"])
    def test_revisions_rejected(self, rev):
        with pytest.raises(InvalidIdentifier, match="Illegal revision"):
            validate.validate_revision(rev)


# ============================================================================
# Paths
# ============================================================================


class TestNormalizeRepoPath:
    """Tests for normalize_repo_path() and validate_pathspec()."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            (None, ""),
            ("", ""),
            ("/", ""),
            (".", ""),
            ("a/b.txt", "a/b.txt"),
            ("/a/b/", "a/b"),
            ("a/./b", "a/b"),
            ("a/c/../b", "a/b"),
        ],
    )
    def test_normalizes(self, raw, expected):
        assert validate.normalize_repo_path(raw) == expected

    @pytest.mark.parametrize("raw", ["..", "../x", "a/../../x", "a\x00b"])
    def test_escapes_rejected(self, raw):
        with pytest.raises(InvalidIdentifier, match="Illegal path"):
            validate.normalize_repo_path(raw)

    def test_pathspec_requires_non_root(self):
        assert validate.validate_pathspec("dir/file") == "dir/file"
        for bad in ("", "/", ".", None):
            with pytest.raises(InvalidIdentifier):
                validate.validate_pathspec(bad)
