"""Recursive listing of a repository's working tree on disk.

Browses files as they are right now, not as committed.  The shape mirrors
the committed-tree listing (see ``parsers.parse_ls_tree``) but is built
from ``lstat`` calls.

Policy for non-regular entries:
- Symlinks are never followed.  They are reported with kind ``link`` and
  their target.
- FIFOs, sockets and device nodes are reported with kind ``special`` and
  never opened.
- The ``.git`` directory is not listed.
"""

from __future__ import annotations

import os
import stat
from pathlib import Path

from git_rest.errors import FilesystemError, InvalidIdentifier, NotFound
from git_rest.records import FsEntry

HIDDEN_NAMES = frozenset({".git"})


def resolve_in_repo(repo_dir: Path, rel_path: str) -> Path:
    """Join *rel_path* onto *repo_dir*, refusing to leave the repository.

    Symlinks in the parent chain are resolved for the containment check;
    the final component is left unresolved so a symlink can be reported
    rather than followed.

    Raises:
        InvalidIdentifier: If the path escapes the repository.
    """
    root = repo_dir.resolve()
    if not rel_path:
        return root
    if rel_path.split("/", 1)[0] in HIDDEN_NAMES:
        raise InvalidIdentifier(f"Illegal path: {rel_path}")
    candidate = root / rel_path
    parent = candidate.parent.resolve()
    if parent != root and root not in parent.parents:
        raise InvalidIdentifier(f"Illegal path: {rel_path}")
    target = parent / candidate.name
    # A symlinked parent may lead back into .git by another route.
    if target.relative_to(root).parts[0] in HIDDEN_NAMES:
        raise InvalidIdentifier(f"Illegal path: {rel_path}")
    return target


def _classify(st: os.stat_result) -> str:
    if stat.S_ISDIR(st.st_mode):
        return "dir"
    if stat.S_ISREG(st.st_mode):
        return "file"
    if stat.S_ISLNK(st.st_mode):
        return "link"
    return "special"


def _entry_for(path: Path, st: os.stat_result) -> FsEntry:
    kind = _classify(st)
    entry = FsEntry(name=path.name, kind=kind, mode=st.st_mode)  # type: ignore[arg-type]
    if kind == "file":
        entry.size = st.st_size
    elif kind == "link":
        entry.target = os.readlink(path)
    elif kind == "dir":
        entry.contents = list_directory(path)
    return entry


def list_directory(path: Path) -> list[FsEntry]:
    """Recursively list *path*, entries sorted by name."""
    entries: list[FsEntry] = []
    with os.scandir(path) as it:
        children = sorted(it, key=lambda e: e.name)
    for child in children:
        if child.name in HIDDEN_NAMES:
            continue
        entries.append(_entry_for(Path(child.path), child.stat(follow_symlinks=False)))
    return entries


def read_path(repo_dir: Path, rel_path: str) -> bytes | FsEntry:
    """Read a working-tree path.

    Args:
        repo_dir: Repository root.
        rel_path: Normalized repository-relative path (``""`` for the root).

    Returns:
        The file's bytes for a regular file, or an ``FsEntry`` tree for a
        directory.

    Raises:
        NotFound: If the path does not exist.
        InvalidIdentifier: If the path is neither a regular file nor a
            directory, or escapes the repository.
        FilesystemError: On other I/O errors.
    """
    target = resolve_in_repo(repo_dir, rel_path)
    try:
        st = target.lstat()
    except FileNotFoundError:
        raise NotFound(f"No such file: {rel_path or '/'}")
    except OSError as exc:
        raise FilesystemError(f"Cannot stat {rel_path}: {exc.strerror}")

    try:
        if stat.S_ISREG(st.st_mode):
            return target.read_bytes()
        if stat.S_ISDIR(st.st_mode):
            name = target.name if rel_path else ""
            return FsEntry(
                name=name, kind="dir", mode=st.st_mode, contents=list_directory(target),
            )
    except OSError as exc:
        raise FilesystemError(f"Cannot read {rel_path or '/'}: {exc.strerror}")

    raise InvalidIdentifier(f"Not a regular file or a directory: {rel_path}")
