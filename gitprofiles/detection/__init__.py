"""Context building, rule matching and cached fragment detection."""

from .cache import DetectionCache, DetectionCacheEntry
from .context import ContextBuilder, DetectionContext, find_repo_root, read_git_config
from .detector import DetectionExplanation, Detector
from .matchers import CompiledRule, compile_rules
from .patterns import normalize_remote_url

__all__ = [
    "DetectionCache",
    "DetectionCacheEntry",
    "ContextBuilder",
    "DetectionContext",
    "find_repo_root",
    "read_git_config",
    "DetectionExplanation",
    "Detector",
    "CompiledRule",
    "compile_rules",
    "normalize_remote_url",
]
