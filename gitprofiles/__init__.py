"""gitprofiles: layered git identity profiles with inheritance and detection."""

from gitprofiles.config.schema import Fragment, MatchRule
from gitprofiles.config.settings import EngineSettings, load_settings
from gitprofiles.detection.context import DetectionContext
from gitprofiles.engine import ProfileEngine
from gitprofiles.errors import (
    CycleDetected,
    DepthExceeded,
    NotFound,
    ParseError,
    ProfileError,
    SettingsError,
    StorageError,
    Timeout,
    ValidationFailed,
)
from gitprofiles.resolution.resolved import ResolvedConfiguration
from gitprofiles.validation.result import ValidationIssue, ValidationResult

__version__ = "0.1.0"

__all__ = [
    "CycleDetected",
    "DepthExceeded",
    "DetectionContext",
    "EngineSettings",
    "Fragment",
    "MatchRule",
    "NotFound",
    "ParseError",
    "ProfileError",
    "ResolvedConfiguration",
    "SettingsError",
    "StorageError",
    "Timeout",
    "ValidationFailed",
    "ValidationIssue",
    "ValidationResult",
    "ProfileEngine",
    "load_settings",
]
