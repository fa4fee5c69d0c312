"""Typed records produced by the output parsers and the filesystem lister.

Every record is rebuilt per request from git output or filesystem state
and rendered to JSON through ``to_dict()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Optional

TreeKind = Literal["blob", "tree", "commit"]
FileAction = Literal["added", "removed", "changed"]
FsKind = Literal["file", "dir", "link", "special"]


@dataclass
class TreeEntry:
    """One node of a committed tree (``git ls-tree``)."""

    name: str
    mode: str
    object_id: Optional[str]
    kind: TreeKind
    contents: Optional[list["TreeEntry"]] = None

    def __post_init__(self) -> None:
        if self.kind == "tree" and self.contents is None:
            self.contents = []

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "name": self.name,
            "mode": self.mode,
            "sha1": self.object_id,
            "type": self.kind,
        }
        if self.kind == "tree":
            result["contents"] = [child.to_dict() for child in self.contents or []]
        return result


@dataclass(frozen=True)
class FileChange:
    action: FileAction
    path: str

    def to_dict(self) -> dict[str, str]:
        return {"action": self.action, "path": self.path}


@dataclass
class CommitRecord:
    """Commit metadata as reported by ``git log`` / ``git show``."""

    sha1: str
    parents: list[str]
    author: str
    author_date: str
    committer: str
    commit_date: str
    message: str
    files: list[FileChange] = field(default_factory=list)

    @property
    def is_merge(self) -> bool:
        return len(self.parents) > 1

    @property
    def title(self) -> str:
        return self.message.split("\n", 1)[0]

    def to_dict(self) -> dict[str, Any]:
        return {
            "sha1": self.sha1,
            "parents": list(self.parents),
            "isMerge": self.is_merge,
            "author": self.author,
            "authorDate": self.author_date,
            "committer": self.committer,
            "commitDate": self.commit_date,
            "message": self.message,
            "files": [f.to_dict() for f in self.files],
        }


@dataclass(frozen=True)
class CommitSummary:
    """The one-line summary ``git commit`` prints for a new commit."""

    branch: str
    sha1: str
    title: str

    def to_dict(self) -> dict[str, str]:
        return {"branch": self.branch, "sha1": self.sha1, "title": self.title}


@dataclass(frozen=True)
class BranchInfo:
    name: str
    current: bool

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "current": self.current}


@dataclass(frozen=True)
class RemoteInfo:
    """A remote; ``push_url`` is set only when it differs from ``url``."""

    name: str
    url: str
    push_url: Optional[str] = None

    def to_dict(self) -> dict[str, str]:
        result = {"name": self.name, "url": self.url}
        if self.push_url is not None:
            result["pushUrl"] = self.push_url
        return result


@dataclass
class FsEntry:
    """One node of the working tree on disk."""

    name: str
    kind: FsKind
    mode: int
    size: Optional[int] = None
    target: Optional[str] = None
    contents: Optional[list["FsEntry"]] = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "name": self.name,
            "type": self.kind,
            "mode": f"{self.mode:06o}",
        }
        if self.size is not None:
            result["size"] = self.size
        if self.target is not None:
            result["target"] = self.target
        if self.kind == "dir":
            result["contents"] = [child.to_dict() for child in self.contents or []]
        return result
