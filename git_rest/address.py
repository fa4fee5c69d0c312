"""Remote address parsing for clone requests.

Normalizes what a caller typed into the address git should clone from and
derives a short project name to use as the default repository name.
Local addresses can be mapped back onto the directories git would open.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import unquote, urlparse

from git_rest.errors import InvalidIdentifier

_URL_SCHEMES = frozenset({"http", "https", "ssh", "git", "file"})

# user@host:path (scp-like syntax); the host part must not contain '/'.
_SCP_LIKE_RE = re.compile(r"^(?:(?P<user>[^@/\s]+)@)?(?P<host>[^:/\s]+):(?P<path>[^\s].*)$")


@dataclass(frozen=True)
class RemoteAddress:
    address: str
    short_project: str


def _short_project(path: str) -> str:
    tail = path.rstrip("/").rsplit("/", 1)[-1]
    if tail.endswith(".git"):
        tail = tail[: -len(".git")]
    return tail


def parse_address(raw: str | None) -> RemoteAddress:
    """Parse a remote address.

    Accepts URLs (http, https, ssh, git, file), scp-like ``user@host:path``
    and absolute local paths.

    Raises:
        InvalidIdentifier: If the address is empty, looks like an option or
            contains whitespace.
    """
    address = (raw or "").strip()
    if not address:
        raise InvalidIdentifier("Empty remote url")
    if address.startswith("-") or re.search(r"\s", address):
        raise InvalidIdentifier(f"Illegal remote url: {address}")

    if "://" in address:
        try:
            parsed = urlparse(address)
        except ValueError as exc:
            raise InvalidIdentifier(f"Illegal remote url: {address}: {exc}")
        if parsed.scheme not in _URL_SCHEMES:
            raise InvalidIdentifier(f"Unsupported remote url scheme: {parsed.scheme}")
        return RemoteAddress(address, _short_project(parsed.path))

    if address.startswith("/"):
        return RemoteAddress(address, _short_project(address))

    m = _SCP_LIKE_RE.match(address)
    if m:
        return RemoteAddress(address, _short_project(m.group("path")))

    raise InvalidIdentifier(f"Unrecognized remote url: {address}")


def local_paths(address: str, base: str | os.PathLike) -> list[Path]:
    """Filesystem locations git would open for *address*, symlinks resolved.

    Follows git's own reading of an address: ``file://`` URLs and anything
    without a colon before its first slash are local paths, relative ones
    taken from *base*.  Network addresses yield ``[]``.  A ``file://`` path
    is returned both as written and percent-decoded.
    """
    if "://" in address:
        try:
            parsed = urlparse(address)
        except ValueError:
            return []
        if parsed.scheme != "file":
            return []
        raw = {parsed.path, unquote(parsed.path)}
    else:
        colon = address.find(":")
        slash = address.find("/")
        if colon != -1 and (slash == -1 or colon < slash):
            return []
        raw = {address}
    return sorted(Path(os.path.realpath(os.path.join(base, p))) for p in raw if p)
