from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class _Body(BaseModel):
    """Base for request bodies: unknown keys are ignored, aliases accepted."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class InitRequest(_Body):
    """Body of ``POST /init``."""

    repo: str = ""
    """Local repository name."""

    bare: bool = False
    """Create a bare repository (``--bare``)."""

    shared: bool = False
    """Make the repository group-shareable (``--shared``)."""


class CloneRequest(_Body):
    """Body of ``POST /clone``."""

    remote: str = ""
    """Remote address to clone from."""

    repo: Optional[str] = None
    """Local repository name; defaults to the remote's project name."""

    bare: bool = False


class ConfigSetRequest(_Body):
    name: str = ""
    value: str = ""


class ConfigUnsetRequest(_Body):
    name: str = ""
    unset_all: bool = Field(default=False, alias="unset-all")


class RemoteAddRequest(_Body):
    name: str = ""
    url: str = ""


class RemoteRemoveRequest(_Body):
    name: str = ""


class BranchRequest(_Body):
    branch: str = ""


class MoveRequest(_Body):
    source: str = ""
    destination: str = ""


class CommitRequest(_Body):
    message: str = ""
    allow_empty: bool = Field(default=False, alias="allow-empty")


class PushRequest(_Body):
    remote: Optional[str] = None
    """Remote name; ``origin`` when omitted."""

    branch: Optional[str] = None
    """Branch to push; git's default push behaviour when omitted."""
