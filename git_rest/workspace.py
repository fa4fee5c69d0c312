"""Session-scoped workspaces.

A workspace is a directory under the service root that holds the
repositories one caller can see.  Callers identify their workspace with an
opaque capability token minted here: ``<workspace-id>.<signature>`` where
the signature is HMAC-SHA256 over the id with the service secret.  The
token is transport-agnostic; the HTTP layer happens to carry it in a
cookie.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import os
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from git_rest.constants import WORKSPACE_PREFIX
from git_rest.errors import FilesystemError

_WORKSPACE_ID_RE = re.compile(re.escape(WORKSPACE_PREFIX) + r"[A-Za-z0-9_]+")


@dataclass(frozen=True)
class Workspace:
    id: str
    root_dir: Path
    token: str


def compute_signature(workspace_id: str, secret: bytes) -> str:
    sig = hmac.new(secret, workspace_id.encode("utf-8"), hashlib.sha256)
    return sig.hexdigest()


class WorkspaceManager:
    """Maps tokens to workspace directories, creating them on demand."""

    def __init__(
        self,
        root_dir: str | os.PathLike,
        secret_key: str | bytes,
        logger: logging.Logger | None = None,
    ) -> None:
        self.root_dir = Path(root_dir)
        self._secret = (
            secret_key.encode("utf-8") if isinstance(secret_key, str) else secret_key
        )
        self.logger = logger or logging.getLogger(__name__)

    def issue_token(self, workspace_id: str) -> str:
        return f"{workspace_id}.{compute_signature(workspace_id, self._secret)}"

    def verify_token(self, token: Optional[str]) -> Optional[str]:
        """Return the workspace id a token names, or None if it is not genuine."""
        if not token or "." not in token:
            return None
        workspace_id, _, provided = token.rpartition(".")
        if not _WORKSPACE_ID_RE.fullmatch(workspace_id):
            return None
        expected = compute_signature(workspace_id, self._secret)
        if not hmac.compare_digest(expected, provided):
            return None
        return workspace_id

    def create(self) -> Workspace:
        """Create a fresh, uniquely named workspace directory.

        ``mkdtemp`` creates the directory atomically with a unique name, so
        concurrent first requests can never end up sharing a directory.

        Raises:
            FilesystemError: If the directory cannot be created.
        """
        try:
            self.root_dir.mkdir(parents=True, exist_ok=True)
            path = Path(tempfile.mkdtemp(prefix=WORKSPACE_PREFIX, dir=self.root_dir))
        except OSError as exc:
            raise FilesystemError(f"Cannot create workspace: {exc.strerror or exc}")
        workspace_id = path.name
        self.logger.info("created workspace", extra={"workspace_dir": str(path)})
        return Workspace(id=workspace_id, root_dir=path, token=self.issue_token(workspace_id))

    def resolve(self, token: Optional[str]) -> tuple[Workspace, bool]:
        """Resolve a token to its workspace.

        Returns:
            ``(workspace, issued)``.  ``issued`` is True when a new workspace
            (and token) had to be created because the token was absent,
            forged, or named a directory that no longer exists; the caller
            must hand the new token back to the client.
        """
        workspace_id = self.verify_token(token)
        if workspace_id is not None:
            path = self.root_dir / workspace_id
            if path.is_dir():
                return Workspace(id=workspace_id, root_dir=path, token=token), False  # type: ignore[arg-type]
            self.logger.info("workspace %s vanished; issuing a new one", workspace_id)
        elif token:
            self.logger.info("rejected workspace token")
        return self.create(), True
