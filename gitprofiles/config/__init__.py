"""Fragment data model and engine settings for gitprofiles."""

from .schema import (
    ConfigMatcher,
    DirectoryMatcher,
    Fragment,
    HostnameMatcher,
    MatchRule,
    Matcher,
    PathMatcher,
    RemoteMatcher,
)
from .settings import EngineSettings, default_store_dir, load_settings

__all__ = [
    "ConfigMatcher",
    "DirectoryMatcher",
    "Fragment",
    "HostnameMatcher",
    "MatchRule",
    "Matcher",
    "PathMatcher",
    "RemoteMatcher",
    "EngineSettings",
    "default_store_dir",
    "load_settings",
]
