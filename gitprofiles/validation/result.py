"""Validation findings and their aggregate result."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from gitprofiles.errors import ValidationFailed


@dataclass(frozen=True)
class ValidationIssue:
    """One problem found in a fragment.

    Attributes:
        path: Dotted path of the offending field (``id``, ``identity.email``,
            ``rules[0].when[1].pattern``).
        message: Human-readable description.
        code: Stable machine-readable key for the kind of problem.
        suggestion: Optional replacement value a front end may offer.
    """

    path: str
    message: str
    code: str
    suggestion: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "message": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
        }

    def __str__(self) -> str:
        hint = f" (try '{self.suggestion}')" if self.suggestion else ""
        return f"{self.path}: {self.message}{hint}"


@dataclass
class ValidationResult:
    """Errors and warnings accumulated across all validation stages."""

    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True when there are no errors; warnings never block."""
        return not self.errors

    def error(self, path: str, message: str, code: str, suggestion: Optional[str] = None) -> None:
        self.errors.append(ValidationIssue(path, message, code, suggestion))

    def warn(self, path: str, message: str, code: str, suggestion: Optional[str] = None) -> None:
        self.warnings.append(ValidationIssue(path, message, code, suggestion))

    def raise_for_errors(self, identifier: str) -> None:
        """Raise ValidationFailed if any error was recorded."""
        if self.errors:
            raise ValidationFailed(identifier, self.errors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "errors": [issue.to_dict() for issue in self.errors],
            "warnings": [issue.to_dict() for issue in self.warnings],
        }
