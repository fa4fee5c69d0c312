"""Repository resolution and per-repository serialization.

Turns a workspace + caller-supplied repository name into a verified
directory handle, and owns the reader/writer discipline around it:
read-only operations share a repository, mutating operations get it
exclusively.  Locks are ``flock`` sidecar files under ``<root>/.locks`` so
they hold across threads and worker processes alike.
"""

from __future__ import annotations

import contextlib
import logging
import os
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from git_rest.atomic_io import file_lock
from git_rest.constants import DEFAULT_LOCK_TIMEOUT
from git_rest.errors import FilesystemError, NotFound, RepositoryBusy
from git_rest.validate import is_valid_repo_name, validate_repo_name
from git_rest.workspace import Workspace


@dataclass(frozen=True)
class Repository:
    name: str
    dir: Path


class RepositoryLocks:
    """Shared/exclusive locks keyed by workspace id and repository name."""

    def __init__(
        self,
        locks_dir: str | os.PathLike,
        timeout: float = DEFAULT_LOCK_TIMEOUT,
    ) -> None:
        self.locks_dir = Path(locks_dir)
        self.timeout = timeout

    def lock_path(self, workspace: Workspace, name: str) -> Path:
        return self.locks_dir / workspace.id / f"{name}.lock"

    @contextlib.contextmanager
    def acquire(
        self,
        workspace: Workspace,
        name: str,
        *,
        shared: bool,
    ) -> Iterator[None]:
        """Hold the repository lock for the duration of the block.

        Raises:
            RepositoryBusy: If the lock is not acquired within the timeout.
        """
        stack = contextlib.ExitStack()
        try:
            stack.enter_context(file_lock(
                self.lock_path(workspace, name), shared=shared, timeout=self.timeout,
            ))
        except TimeoutError:
            raise RepositoryBusy(f"Repository {name} is busy; try again later")
        except OSError as exc:
            raise FilesystemError(f"Cannot lock repository {name}: {exc.strerror or exc}")
        with stack:
            yield

    def discard(self, workspace: Workspace, name: str) -> None:
        """Remove the lock file of a deleted repository.

        Call with the exclusive lock held; waiters notice the unlink and
        lock the file's replacement instead.
        """
        try:
            self.lock_path(workspace, name).unlink(missing_ok=True)
        except OSError as exc:
            raise FilesystemError(f"Cannot remove lock of {name}: {exc.strerror or exc}")


class RepositoryResolver:
    """Composes validation, workspace layout and locking."""

    def __init__(
        self,
        locks: RepositoryLocks,
        logger: logging.Logger | None = None,
    ) -> None:
        self.locks = locks
        self.logger = logger or logging.getLogger(__name__)

    def path_for(self, workspace: Workspace, name: str) -> Path:
        return workspace.root_dir / validate_repo_name(name)

    def list_names(self, workspace: Workspace) -> list[str]:
        """Repository directories in the workspace, sorted."""
        try:
            return sorted(
                entry.name
                for entry in os.scandir(workspace.root_dir)
                if entry.is_dir(follow_symlinks=False) and is_valid_repo_name(entry.name)
            )
        except OSError as exc:
            raise FilesystemError(f"Cannot list repositories: {exc.strerror or exc}")

    @contextlib.contextmanager
    def open(
        self,
        workspace: Workspace,
        name: str,
        *,
        write: bool = False,
    ) -> Iterator[Repository]:
        """Yield an existing repository while holding its lock.

        The existence check happens under the lock, so a concurrent delete
        cannot slip in between the check and the operation.

        Raises:
            InvalidIdentifier: If the name is illegal.
            NotFound: If the repository does not exist.
            RepositoryBusy: If the lock times out.
        """
        path = self.path_for(workspace, name)
        with self.locks.acquire(workspace, name, shared=not write):
            if not path.is_dir():
                raise NotFound(f"Unknown repo: {name}")
            self.logger.debug("repo dir: %s", path)
            yield Repository(name=name, dir=path)

    @contextlib.contextmanager
    def reserve(self, workspace: Workspace, name: str) -> Iterator[Path]:
        """Hold the exclusive lock for a repository that may not exist yet."""
        path = self.path_for(workspace, name)
        with self.locks.acquire(workspace, name, shared=False):
            yield path
