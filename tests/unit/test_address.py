"""Unit tests for git_rest/address.py."""

from pathlib import Path

import pytest

from git_rest.address import local_paths, parse_address
from git_rest.errors import InvalidIdentifier


class TestParseAddress:
    """Tests for parse_address()."""

    @pytest.mark.parametrize(
        "raw,short",
        [
            ("https://github.com/org/project.git", "project"),
            ("http://example.com/a/b/", "b"),
            ("ssh://git@host:2222/srv/repo.git", "repo"),
            ("git://host/repo", "repo"),
            ("file:///srv/git/thing.git", "thing"),
            ("git@github.com:org/proj.git", "proj"),
            ("host:proj", "proj"),
            ("/srv/git/local.git", "local"),
            ("/srv/git/local/", "local"),
        ],
    )
    def test_short_project(self, raw, short):
        address = parse_address(raw)
        assert address.short_project == short
        assert address.address == raw

    def test_surrounding_whitespace_trimmed(self):
        assert parse_address("  /srv/x.git \n").address == "/srv/x.git"

    @pytest.mark.parametrize("raw", [None, "", "   "])
    def test_empty_rejected(self, raw):
        with pytest.raises(InvalidIdentifier, match="Empty remote url"):
            parse_address(raw)

    @pytest.mark.parametrize("raw", ["--upload-pack=touch /tmp/x", "-x", "https://a b/c"])
    def test_option_like_or_spaced_rejected(self, raw):
        with pytest.raises(InvalidIdentifier, match="Illegal remote url"):
            parse_address(raw)

    def test_unsupported_scheme(self):
        with pytest.raises(InvalidIdentifier, match="Unsupported"):
            parse_address("ftp://host/repo.git")

    def test_relative_path_rejected(self):
        with pytest.raises(InvalidIdentifier, match="Unrecognized"):
            parse_address("relative/path")


class TestLocalPaths:
    """Tests for local_paths()."""

    @pytest.mark.parametrize(
        "address",
        [
            "https://example.com/repo.git",
            "ssh://host/srv/repo",
            "git@github.com:org/proj.git",
            "host:proj",
        ],
    )
    def test_network_addresses(self, address, tmp_path):
        assert local_paths(address, tmp_path) == []

    def test_absolute_path(self, tmp_path):
        assert local_paths(str(tmp_path / "a" / "b.git"), "/elsewhere") == [
            tmp_path.resolve() / "a" / "b.git",
        ]

    def test_relative_path_taken_from_base(self, tmp_path):
        base = tmp_path / "ws" / "repo"
        assert local_paths("../../other/secret", base) == [
            tmp_path.resolve() / "other" / "secret",
        ]

    def test_slash_before_colon_is_local(self, tmp_path):
        assert local_paths("./a:b", tmp_path) == [tmp_path.resolve() / "a:b"]

    def test_file_url_both_spellings(self, tmp_path):
        paths = local_paths(f"file://{tmp_path}/a%20b", "/")

        assert Path(f"{tmp_path.resolve()}/a%20b") in paths
        assert tmp_path.resolve() / "a b" in paths

    def test_symlinks_resolved(self, tmp_path):
        (tmp_path / "real").mkdir()
        (tmp_path / "link").symlink_to(tmp_path / "real")

        assert local_paths(str(tmp_path / "link"), "/") == [tmp_path.resolve() / "real"]
