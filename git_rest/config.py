"""Settings loader for git-rest.

Loads and validates settings from an optional YAML file with support for
environment variable overrides.  Precedence (highest first): explicit
keyword overrides, ``GIT_REST_*`` environment variables, the YAML file,
built-in defaults.
"""

from __future__ import annotations

import logging
import os
import secrets
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from git_rest.constants import (
    DEFAULT_AUTHOR_EMAIL,
    DEFAULT_AUTHOR_NAME,
    DEFAULT_COMMAND_TIMEOUT,
    DEFAULT_GIT_BINARY,
    DEFAULT_LOCK_TIMEOUT,
    DEFAULT_MAX_UPLOAD_SIZE,
    DEFAULT_ROOT_DIR,
    GITCONFIG_FILE_NAME,
    LOCKS_DIR_NAME,
)
from git_rest.errors import ConfigError

logger = logging.getLogger(__name__)

ENV_PREFIX = "GIT_REST_"
CONFIG_PATH_ENV = "GIT_REST_CONFIG"

_VALID_LOG_FORMATS = frozenset({"json", "text"})
_VALID_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})
_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off", ""})


@dataclass
class Settings:
    """Runtime settings for the service."""

    prefix: str = ""
    root_dir: str = DEFAULT_ROOT_DIR
    secret_key: str = ""
    git_binary: str = DEFAULT_GIT_BINARY
    command_timeout: float = DEFAULT_COMMAND_TIMEOUT
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT
    author_name: str = DEFAULT_AUTHOR_NAME
    author_email: str = DEFAULT_AUTHOR_EMAIL
    verbose: bool = False
    max_upload_size: int = DEFAULT_MAX_UPLOAD_SIZE
    log_level: str = "INFO"
    log_format: str = "json"
    ephemeral_secret: bool = field(default=False, init=False, repr=False)

    def __post_init__(self) -> None:
        """Validate and normalize settings."""
        self.prefix = (self.prefix or "").rstrip("/")
        if self.prefix and not self.prefix.startswith("/"):
            raise ConfigError(f"prefix must start with '/', got {self.prefix!r}")
        if not self.root_dir:
            raise ConfigError("root_dir cannot be empty")
        self.root_dir = os.path.abspath(os.path.expanduser(self.root_dir))
        if self.command_timeout <= 0:
            raise ConfigError(
                f"command_timeout must be positive, got {self.command_timeout}"
            )
        if self.lock_timeout <= 0:
            raise ConfigError(f"lock_timeout must be positive, got {self.lock_timeout}")
        if self.max_upload_size <= 0:
            raise ConfigError(
                f"max_upload_size must be positive, got {self.max_upload_size}"
            )
        self.log_level = self.log_level.upper()
        if self.log_level not in _VALID_LOG_LEVELS:
            raise ConfigError(
                f"Invalid log_level '{self.log_level}'. "
                f"Valid levels: {', '.join(sorted(_VALID_LOG_LEVELS))}"
            )
        self.log_format = self.log_format.lower()
        if self.log_format not in _VALID_LOG_FORMATS:
            raise ConfigError(f"log_format must be 'json' or 'text', got {self.log_format!r}")
        if not self.author_name or not self.author_email:
            raise ConfigError("author_name and author_email cannot be empty")
        if not self.secret_key:
            self.secret_key = secrets.token_hex(32)
            self.ephemeral_secret = True

    @property
    def locks_dir(self) -> Path:
        return Path(self.root_dir) / LOCKS_DIR_NAME

    @property
    def gitconfig_path(self) -> Path:
        return Path(self.root_dir) / GITCONFIG_FILE_NAME


def _coerce(name: str, raw: Any, target: type) -> Any:
    """Convert a YAML/env value to the declared field type."""
    if target is bool:
        if isinstance(raw, bool):
            return raw
        text = str(raw).strip().lower()
        if text in _TRUE_VALUES:
            return True
        if text in _FALSE_VALUES:
            return False
        raise ConfigError(f"{name} must be a boolean, got {raw!r}")
    if target in (int, float):
        try:
            return target(raw)
        except (TypeError, ValueError):
            raise ConfigError(f"{name} must be a number, got {raw!r}")
    if raw is None:
        return ""
    return str(raw)


_FIELD_TYPES: dict[str, type] = {
    "prefix": str,
    "root_dir": str,
    "secret_key": str,
    "git_binary": str,
    "command_timeout": float,
    "lock_timeout": float,
    "author_name": str,
    "author_email": str,
    "verbose": bool,
    "max_upload_size": int,
    "log_level": str,
    "log_format": str,
}


def load_yaml_file(path: str | Path) -> dict[str, Any]:
    """Load a YAML mapping from *path*.

    Raises:
        ConfigError: If the file is missing, unreadable or not a mapping.
    """
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigError(f"Configuration file not found: {path}")
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Invalid configuration file {path}: {e}")
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file {path} must contain a mapping")
    return data


def _from_env(environ: dict[str, str]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for name in _FIELD_TYPES:
        key = ENV_PREFIX + name.upper()
        if key in environ:
            values[name] = environ[key]
    return values


def load_settings(
    path: str | Path | None = None,
    environ: dict[str, str] | None = None,
    **overrides: Any,
) -> Settings:
    """Build ``Settings`` from file, environment and explicit overrides.

    Args:
        path: YAML settings file.  Defaults to ``$GIT_REST_CONFIG`` if set.
        environ: Environment mapping (defaults to ``os.environ``).
        **overrides: Field values that win over everything else.  ``None``
            values are ignored so CLI options can be passed through as-is.

    Returns:
        Validated settings.

    Raises:
        ConfigError: On unknown keys or invalid values.
    """
    env = dict(os.environ if environ is None else environ)
    path = path or env.get(CONFIG_PATH_ENV)

    merged: dict[str, Any] = {}
    if path:
        merged.update(load_yaml_file(path))
    merged.update(_from_env(env))
    merged.update({k: v for k, v in overrides.items() if v is not None})

    known = {f.name for f in fields(Settings) if f.init}
    unknown = sorted(set(merged) - known)
    if unknown:
        raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")

    kwargs = {
        name: _coerce(name, value, _FIELD_TYPES[name])
        for name, value in merged.items()
    }
    settings = Settings(**kwargs)
    if settings.ephemeral_secret:
        logger.warning(
            "No secret_key configured; workspace tokens will not survive a restart"
        )
    return settings
