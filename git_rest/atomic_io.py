"""Shared atomic I/O primitives for crash-safe file writes.

Provides file locking (via ``fcntl.flock()``) and atomic write-via-rename
so that concurrent requests and mid-write crashes never leave corrupted
files on disk.

WARNING: ``fcntl.flock()`` provides only advisory locking and does not
work reliably on NFS or other networked filesystems.  Keep the service
root on local disk.
"""

from __future__ import annotations

import contextlib
import fcntl
import os
import shutil
import tempfile
import time
from collections.abc import Iterator
from pathlib import Path
from typing import BinaryIO

LOCK_TIMEOUT_SECONDS = 30.0
LOCK_POLL_INTERVAL = 0.05


@contextlib.contextmanager
def file_lock(
    lock_path: Path,
    *,
    shared: bool = False,
    timeout: float = LOCK_TIMEOUT_SECONDS,
) -> Iterator[None]:
    """Hold an advisory lock on *lock_path* for the duration of the block.

    Each call opens its own file description, so the lock serializes
    threads of one process as well as separate worker processes.  Uses
    non-blocking attempts with a retry loop so that a stuck lock never
    blocks indefinitely.  A lock file unlinked while we wait is not
    trusted: the lock is retaken on the file now at *lock_path*.

    Args:
        lock_path: The lock file (created if missing).
        shared: If ``True`` acquire a shared (read) lock; otherwise exclusive.
        timeout: Maximum seconds to wait.

    Raises:
        TimeoutError: If the lock cannot be acquired within *timeout*.
    """
    lock_op = (fcntl.LOCK_SH if shared else fcntl.LOCK_EX) | fcntl.LOCK_NB
    deadline = time.monotonic() + timeout
    while True:
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(lock_path), os.O_CREAT | os.O_RDWR, 0o600)
        try:
            while True:
                try:
                    fcntl.flock(fd, lock_op)
                    break
                except OSError:
                    if time.monotonic() >= deadline:
                        raise TimeoutError(
                            f"Timed out after {timeout:g}s waiting for lock on {lock_path}"
                        )
                    time.sleep(LOCK_POLL_INTERVAL)
        except BaseException:
            os.close(fd)
            raise
        if _is_current(fd, lock_path):
            break
        # Unlinked by the previous holder; lock whatever file is there now.
        fcntl.flock(fd, fcntl.LOCK_UN)
        os.close(fd)
    try:
        yield
    finally:
        fcntl.flock(fd, fcntl.LOCK_UN)
        os.close(fd)


def _is_current(fd: int, lock_path: Path) -> bool:
    try:
        on_disk = os.stat(lock_path)
    except FileNotFoundError:
        return False
    held = os.fstat(fd)
    return (held.st_dev, held.st_ino) == (on_disk.st_dev, on_disk.st_ino)


@contextlib.contextmanager
def _temp_beside(path: Path) -> Iterator[tuple[int, str]]:
    """Yield a temp file in *path*'s directory; unlink it unless it was renamed."""
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
    try:
        yield fd, tmp_path
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def atomic_write(path: Path, content: str | bytes, mode: int = 0o644) -> None:
    """Write *content* to *path* atomically.

    Uses write-to-temp + ``os.replace()`` to avoid truncated files on crash.
    Parent directories are created as needed.
    """
    data = content.encode("utf-8") if isinstance(content, str) else content
    path.parent.mkdir(parents=True, exist_ok=True)
    with _temp_beside(path) as (fd, tmp_path):
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)


def atomic_copy(source: BinaryIO, path: Path, mode: int = 0o644) -> int:
    """Stream *source* into *path* atomically and return the bytes written."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with _temp_beside(path) as (fd, tmp_path):
        with os.fdopen(fd, "wb") as f:
            shutil.copyfileobj(source, f)
            written = f.tell()
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    return written
