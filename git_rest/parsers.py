"""Parsers turning git's text output into typed records.

Each parser is a pure function ``text -> record(s)`` that raises
``ParseFailure`` when the output does not have the expected shape.  The
git invocations that feed them request fixed, machine-oriented formats;
those format strings live here as constants so a parser and the format it
understands change together.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from git_rest.errors import NotFound, ParseFailure
from git_rest.records import (
    BranchInfo,
    CommitRecord,
    CommitSummary,
    FileChange,
    RemoteInfo,
    TreeEntry,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Formats
# ---------------------------------------------------------------------------

RECORD_SEPARATOR = "\x1e"
FIELD_SEPARATOR = "\x1f"

# sha1, parents, author, author date, committer, commit date, raw body.
# The trailing field separator fences the body off from --name-status output.
LOG_FORMAT = "%x1e" + "%x1f".join([
    "%H",
    "%P",
    "%an <%ae>",
    "%ad",
    "%cn <%ce>",
    "%cd",
    "%B",
]) + "%x1f"

LOG_ARGS: tuple[str, ...] = (
    f"--format={LOG_FORMAT}",
    "--date=iso-strict",
    "--name-status",
    "--no-color",
)

BRANCH_FORMAT = "%(HEAD) %(refname:short)"

TREE_MODE = "040000"

_OBJECT_ID_RE = re.compile(r"[0-9a-f]{40}|[0-9a-f]{64}")

# ---------------------------------------------------------------------------
# Quoted Paths
# ---------------------------------------------------------------------------

_C_ESCAPES = {
    "a": 0x07, "b": 0x08, "t": 0x09, "n": 0x0A,
    "v": 0x0B, "f": 0x0C, "r": 0x0D, '"': 0x22, "\\": 0x5C,
}


def unquote_path(path: str) -> str:
    """Undo git's C-style quoting of unusual path names.

    git wraps paths containing control characters, quotes, backslashes or
    (with ``core.quotePath``) non-ASCII bytes in double quotes and escapes
    them, non-ASCII bytes as three-digit octal.
    """
    if len(path) < 2 or not (path.startswith('"') and path.endswith('"')):
        return path
    body = path[1:-1]
    out = bytearray()
    i = 0
    while i < len(body):
        ch = body[i]
        if ch != "\\":
            out.extend(ch.encode("utf-8"))
            i += 1
            continue
        if i + 1 >= len(body):
            raise ParseFailure(f"Dangling escape in quoted path: {path}")
        nxt = body[i + 1]
        if nxt in _C_ESCAPES:
            out.append(_C_ESCAPES[nxt])
            i += 2
        elif re.match(r"[0-3][0-7]{2}", body[i + 1:i + 4]):
            out.append(int(body[i + 1:i + 4], 8))
            i += 4
        else:
            raise ParseFailure(f"Unknown escape in quoted path: {path}")
    return out.decode("utf-8", errors="replace")


# ---------------------------------------------------------------------------
# Log / Commit
# ---------------------------------------------------------------------------


def _parse_object_id(value: str, what: str) -> str:
    if not _OBJECT_ID_RE.fullmatch(value):
        raise ParseFailure(f"Malformed {what}: {value!r}")
    return value


def _parse_file_changes(block: str) -> list[FileChange]:
    """Parse ``--name-status`` lines (``<status> TAB <path> [TAB <path>]``)."""
    changes: list[FileChange] = []
    for line in block.split("\n"):
        if not line.strip():
            continue
        parts = line.split("\t")
        status = parts[0]
        letter = status[:1]
        if letter in ("R", "C"):
            # Renames and copies report as changed at the destination.
            if len(parts) != 3:
                raise ParseFailure(f"Malformed rename/copy line: {line!r}")
            changes.append(FileChange("changed", unquote_path(parts[2])))
            continue
        if len(parts) != 2:
            raise ParseFailure(f"Malformed file status line: {line!r}")
        path = unquote_path(parts[1])
        if letter == "A":
            changes.append(FileChange("added", path))
        elif letter == "D":
            changes.append(FileChange("removed", path))
        elif letter in ("M", "T", "U"):
            changes.append(FileChange("changed", path))
        else:
            raise ParseFailure(f"Unknown file status {status!r} for {path!r}")
    return changes


def _parse_commit_record(chunk: str) -> CommitRecord:
    head = chunk.split(FIELD_SEPARATOR, 6)
    if len(head) != 7 or FIELD_SEPARATOR not in head[6]:
        raise ParseFailure(
            f"Malformed commit record ({len(head)} fields): {chunk[:80]!r}"
        )
    sha1, parents, author, author_date, committer, commit_date, tail = head
    message, files_block = tail.rsplit(FIELD_SEPARATOR, 1)

    sha1 = _parse_object_id(sha1.strip(), "commit id")
    parent_ids = [_parse_object_id(p, "parent id") for p in parents.split()]
    if not author or not author_date or not committer or not commit_date:
        raise ParseFailure(f"Commit {sha1} is missing author/committer fields")

    return CommitRecord(
        sha1=sha1,
        parents=parent_ids,
        author=author,
        author_date=author_date,
        committer=committer,
        commit_date=commit_date,
        message=message.rstrip("\n"),
        files=_parse_file_changes(files_block),
    )


def parse_log(text: str) -> list[CommitRecord]:
    """Parse ``git log`` output produced with ``LOG_ARGS``.

    Records are delimited by ``RECORD_SEPARATOR`` rather than blank lines,
    so multi-line messages parse unambiguously.  A record that does not
    parse fails the whole listing.
    """
    chunks = text.split(RECORD_SEPARATOR)
    if chunks[0].strip():
        raise ParseFailure(f"Unexpected output before first commit: {chunks[0][:80]!r}")
    return [_parse_commit_record(chunk) for chunk in chunks[1:]]


def parse_commit_show(text: str) -> CommitRecord:
    """Parse ``git show`` output for exactly one commit."""
    records = parse_log(text)
    if len(records) != 1:
        raise ParseFailure(f"Expected one commit, got {len(records)}")
    return records[0]


_COMMIT_SUMMARY_RE = re.compile(
    r"^\[(?P<branch>.+?)(?: \(root-commit\))? (?P<sha1>[0-9a-f]{4,64})\] (?P<title>.*)$"
)


def parse_commit_summary(text: str) -> CommitSummary:
    """Parse the ``[<branch> <sha>] <title>`` line printed by ``git commit``."""
    for line in text.splitlines():
        m = _COMMIT_SUMMARY_RE.match(line)
        if m:
            return CommitSummary(
                branch=m.group("branch"),
                sha1=m.group("sha1"),
                title=m.group("title"),
            )
    raise ParseFailure(f"No commit summary in output: {text[:80]!r}")


# ---------------------------------------------------------------------------
# Trees
# ---------------------------------------------------------------------------


def _split_tree_records(text: str) -> tuple[list[str], bool]:
    """Split a listing into records; the flag tells whether paths are quoted."""
    if "\x00" in text:
        return [r for r in text.split("\x00") if r], False
    return [r for r in text.split("\n") if r], True


def parse_ls_tree(text: str) -> list[TreeEntry]:
    """Fold a recursive ``git ls-tree`` listing into a hierarchy.

    Each record has the shape ``<mode> SP <kind> SP <objectId> TAB <path>``
    (NUL- or newline-terminated).  Intermediate directories missing from the
    listing are created as ``tree`` nodes; children keep input order.

    Returns:
        The top-level entries.

    Raises:
        NotFound: If the listing is empty.
        ParseFailure: On malformed records.
    """
    records, quoted = _split_tree_records(text)
    if not records:
        raise NotFound("Empty tree listing")

    roots: list[TreeEntry] = []
    index: dict[str, TreeEntry] = {}

    for record in records:
        meta, sep, raw_path = record.partition("\t")
        fields = meta.split()
        if not sep or len(fields) != 3 or not raw_path:
            raise ParseFailure(f"Malformed ls-tree record: {record!r}")
        mode, kind, object_id = fields
        if kind not in ("blob", "tree", "commit"):
            raise ParseFailure(f"Unknown object type {kind!r} in {record!r}")
        _parse_object_id(object_id, "object id")
        path = unquote_path(raw_path) if quoted else raw_path

        segments = path.split("/")
        siblings = roots
        prefix = ""
        for segment in segments[:-1]:
            prefix = f"{prefix}/{segment}" if prefix else segment
            node = index.get(prefix)
            if node is None:
                node = TreeEntry(segment, TREE_MODE, None, "tree")
                index[prefix] = node
                siblings.append(node)
            elif node.kind != "tree":
                raise ParseFailure(f"{prefix!r} is listed as both a file and a directory")
            siblings = node.contents  # type: ignore[assignment]

        existing = index.get(path)
        if existing is not None:
            # A placeholder created for an earlier child; fill in its identity.
            if existing.kind != kind or existing.object_id is not None:
                raise ParseFailure(f"Duplicate ls-tree entry for {path!r}")
            existing.mode = mode
            existing.object_id = object_id
            continue

        entry = TreeEntry(segments[-1], mode, object_id, kind)  # type: ignore[arg-type]
        index[path] = entry
        siblings.append(entry)

    return roots


def subtree_at(entries: list[TreeEntry], path: str) -> list[TreeEntry]:
    """Return the entries rooted at *path* (``""`` is the root)."""
    if not path:
        return entries
    current = entries
    node: Optional[TreeEntry] = None
    for segment in path.split("/"):
        node = next((e for e in current if e.name == segment), None)
        if node is None:
            raise NotFound(f"No such path: {path}")
        current = node.contents or []
    return [node]  # type: ignore[list-item]


def flatten_tree(
    entries: list[TreeEntry],
    prefix: str = "",
    include_trees: bool = False,
) -> list[str]:
    """Turn a hierarchy back into flat paths, depth first."""
    paths: list[str] = []
    for entry in entries:
        path = f"{prefix}/{entry.name}" if prefix else entry.name
        if entry.kind == "tree":
            if include_trees:
                paths.append(path)
            paths.extend(flatten_tree(entry.contents or [], path, include_trees))
        else:
            paths.append(path)
    return paths


# ---------------------------------------------------------------------------
# Branches
# ---------------------------------------------------------------------------


def parse_branches(
    text: str,
    log: Optional[logging.Logger] = None,
) -> list[BranchInfo]:
    """Parse ``git branch --list`` output.

    ``* `` marks the checked-out branch, two spaces any other branch and
    ``+ `` a branch checked out in another worktree.  Detached-HEAD pseudo
    entries are skipped, so a detached repository has no current branch.
    Lines with any other prefix are skipped with a warning.
    """
    log = log or logger
    branches: list[BranchInfo] = []
    for line in text.split("\n"):
        if not line.strip():
            continue
        marker, name = line[:2], line[2:].rstrip()
        if marker not in ("* ", "  ", "+ ") or not name:
            log.warning("branch parser: skipping malformed line: %r", line)
            continue
        if name.startswith("("):
            continue
        branches.append(BranchInfo(name=name, current=marker == "* "))
    return branches


# ---------------------------------------------------------------------------
# Config / Remotes
# ---------------------------------------------------------------------------


def parse_config_values(text: str) -> list[str]:
    """Parse ``git config --get-all`` output: one verbatim value per line."""
    if not text:
        return []
    if text.endswith("\n"):
        text = text[:-1]
    return text.split("\n")


_REMOTE_LINE_RE = re.compile(
    r"^(?P<name>\S+)\s+(?P<url>.+?)\s+\((?P<direction>fetch|push)\)(?:\s+\[.*\])?$"
)


def parse_remotes(text: str) -> list[RemoteInfo]:
    """Parse ``git remote -v`` output into one entry per remote.

    The fetch URL wins; a push URL that differs from it is kept as
    ``push_url``.  Remotes keep first-seen order.
    """
    urls: dict[str, dict[str, str]] = {}
    for line in text.split("\n"):
        line = line.rstrip()
        if not line:
            continue
        m = _REMOTE_LINE_RE.match(line)
        if not m:
            raise ParseFailure(f"Malformed remote line: {line!r}")
        entry = urls.setdefault(m.group("name"), {})
        entry.setdefault(m.group("direction"), m.group("url"))

    remotes: list[RemoteInfo] = []
    for name, entry in urls.items():
        fetch = entry.get("fetch")
        push = entry.get("push")
        url = fetch or push
        push_url = push if fetch and push and push != fetch else None
        remotes.append(RemoteInfo(name=name, url=url, push_url=push_url))  # type: ignore[arg-type]
    return remotes
