"""Fragment validation."""

from .result import ValidationIssue, ValidationResult
from .validator import KNOWN_SECTIONS, Validator

__all__ = ["KNOWN_SECTIONS", "ValidationIssue", "ValidationResult", "Validator"]
