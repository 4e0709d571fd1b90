"""Engine settings and helpers for loading them from TOML/JSON sources.

This module provides a single entry point `load_settings` that accepts
various configuration sources:

* None -> default EngineSettings
* dict -> EngineSettings.from_dict
* Path / path-like string -> load .toml/.json from filesystem

Environment variables ``GITPROFILES_MAX_DEPTH`` and
``GITPROFILES_CACHE_TTL`` override the corresponding fields after loading.
"""

from __future__ import annotations

import json
import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from gitprofiles.errors import SettingsError

logger = logging.getLogger("gitprofiles.config.settings")

SettingsSource = Union[str, Path, Dict[str, Any], None]

_ENV_OVERRIDES = {
    "GITPROFILES_MAX_DEPTH": "max_depth",
    "GITPROFILES_CACHE_TTL": "cache_ttl_seconds",
}


def default_store_dir() -> Path:
    """Return the platform default fragment directory.

    ``$GITPROFILES_HOME`` wins, then ``$XDG_CONFIG_HOME/git/setup/profiles``,
    then ``~/.config/git/setup/profiles``.
    """
    explicit = os.getenv("GITPROFILES_HOME")
    if explicit:
        return Path(explicit).expanduser()
    config_home = os.getenv("XDG_CONFIG_HOME")
    base = Path(config_home) if config_home else Path.home() / ".config"
    return base / "git" / "setup" / "profiles"


class EngineSettings(BaseModel):
    """Top-level settings for the profile engine.

    Attributes:
        store_dir: Directory holding one file per fragment.
        trash_dir: Where deleted fragments are moved. Defaults to
            ``<store_dir>/.trash``.
        max_depth: Maximum number of fragments in an inheritance chain.
        cache_ttl_seconds: Lifetime of a detection cache entry.
        cache_max_entries: LRU bound of the detection cache.
        cache_file: Optional file the detection cache is persisted to.
        external_check_timeout: Upper bound for a single external
            validation check (seconds).
        default_encoding: Encoding used for newly created fragment files.
    """

    store_dir: Path = Field(default_factory=default_store_dir)
    trash_dir: Optional[Path] = None
    max_depth: int = Field(default=5, ge=1, le=64)
    cache_ttl_seconds: float = Field(default=300.0, gt=0)
    cache_max_entries: int = Field(default=1000, ge=1)
    cache_file: Optional[Path] = None
    external_check_timeout: float = Field(default=0.05, gt=0, le=5.0)
    default_encoding: Literal["toml", "json", "json5", "yaml"] = "toml"

    @property
    def effective_trash_dir(self) -> Path:
        """Trash directory with the default applied."""
        return self.trash_dir if self.trash_dir is not None else self.store_dir / ".trash"

    @classmethod
    def default(cls) -> "EngineSettings":
        """Create settings with every field at its default."""
        return cls()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineSettings":
        """Create settings from a dictionary.

        Raises:
            ValidationError: If the settings are invalid.
        """
        return cls.model_validate(data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert settings to a dictionary."""
        return self.model_dump()


def _read_file(path: Path) -> Dict[str, Any]:
    suffix = path.suffix.lower()
    text = path.read_text(encoding="utf-8")
    if suffix in {".toml", ".tml"}:
        return tomllib.loads(text)
    if suffix == ".json":
        data = json.loads(text)
        if not isinstance(data, dict):
            raise SettingsError(f"settings root must be an object, got {type(data).__name__}")
        return data
    raise SettingsError(f"unsupported settings format: {path.suffix or path.name}")


def _apply_env_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(data)
    for env_name, field_name in _ENV_OVERRIDES.items():
        raw = os.getenv(env_name)
        if raw is None or raw == "":
            continue
        logger.debug("Overriding %s from %s=%s", field_name, env_name, raw)
        merged[field_name] = raw
    return merged


def load_settings(source: SettingsSource = None) -> EngineSettings:
    """Load EngineSettings from various configuration sources.

    Args:
        source: One of:
            * None: defaults (plus environment overrides)
            * dict: already-parsed settings mapping
            * str/Path: filesystem path to a .toml or .json file

    Returns:
        EngineSettings instance.

    Raises:
        SettingsError: If the source cannot be read or fails validation.
    """
    if source is None:
        data: Dict[str, Any] = {}
    elif isinstance(source, dict):
        logger.debug("Loading EngineSettings from provided dict")
        data = dict(source)
    elif isinstance(source, (str, Path)):
        path = Path(source).expanduser()
        if not path.is_file():
            raise SettingsError(f"settings file not found: {path}")
        try:
            data = _read_file(path)
        except (OSError, ValueError) as exc:
            # tomllib.TOMLDecodeError and json.JSONDecodeError are ValueErrors
            raise SettingsError(f"cannot read {path}: {exc}") from exc
        logger.info("Loaded settings from %s", path)
    else:
        raise SettingsError(f"unsupported settings source type: {type(source).__name__}")

    try:
        return EngineSettings.from_dict(_apply_env_overrides(data))
    except ValidationError as exc:
        raise SettingsError(str(exc)) from exc


__all__ = ["EngineSettings", "default_store_dir", "load_settings"]
