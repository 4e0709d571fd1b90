"""Exception hierarchy for profile storage, resolution and detection.

Every error kind carries a stable ``code`` and a stable message ``template``
so that front ends can map failures to remediation hints without parsing
free text. The structured attributes used to render the template are kept
on the instance.
"""

from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

if TYPE_CHECKING:
    from gitprofiles.validation.result import ValidationIssue


class ProfileError(Exception):
    """Base class for all errors raised by gitprofiles."""

    code: str = "profile_error"
    template: str = "{detail}"

    def __init__(self, **fields: Any) -> None:
        self.fields: Dict[str, Any] = fields
        super().__init__(self.render())

    def render(self) -> str:
        """Render the message template from the structured fields."""
        return self.template.format(**self.fields)

    def to_dict(self) -> Dict[str, Any]:
        """Return a serializable description of the error."""
        return {"code": self.code, "message": str(self), "fields": dict(self.fields)}


class NotFound(ProfileError):
    """A fragment does not exist in the store."""

    code = "not_found"
    template = "Fragment '{identifier}' not found{suffix}"

    def __init__(self, identifier: str, referenced_by: Optional[str] = None) -> None:
        self.identifier = identifier
        self.referenced_by = referenced_by
        suffix = f" (extended by '{referenced_by}')" if referenced_by else ""
        super().__init__(identifier=identifier, referenced_by=referenced_by, suffix=suffix)


class ParseError(ProfileError):
    """Stored fragment data cannot be decoded into a fragment."""

    code = "parse_error"
    template = "Cannot parse fragment '{identifier}' from {path}: {detail}"

    def __init__(self, identifier: str, path: str, detail: str) -> None:
        self.identifier = identifier
        self.path = path
        self.detail = detail
        super().__init__(identifier=identifier, path=path, detail=detail)


class StorageError(ProfileError):
    """The storage medium could not be read or written."""

    code = "storage_error"
    template = "Storage failure at {path}: {detail}"

    def __init__(self, path: str, detail: str) -> None:
        self.path = path
        self.detail = detail
        super().__init__(path=path, detail=detail)


class ValidationFailed(ProfileError):
    """A fragment failed validation with one or more errors."""

    code = "validation_failed"
    template = "Fragment '{identifier}' is invalid: {summary}"

    def __init__(self, identifier: str, errors: Sequence["ValidationIssue"]) -> None:
        self.identifier = identifier
        self.errors: List["ValidationIssue"] = list(errors)
        summary = "; ".join(f"{issue.path}: {issue.message}" for issue in self.errors)
        super().__init__(identifier=identifier, summary=summary or "no details")


class CycleDetected(ProfileError):
    """The inheritance chain revisits an identifier."""

    code = "cycle_detected"
    template = "Inheritance cycle detected: {rendered_chain}"

    def __init__(self, chain: Sequence[str]) -> None:
        self.chain: List[str] = list(chain)
        super().__init__(chain=self.chain, rendered_chain=" -> ".join(self.chain))


class DepthExceeded(ProfileError):
    """The inheritance chain is longer than the configured maximum."""

    code = "depth_exceeded"
    template = "Inheritance chain exceeds maximum depth {max_depth}: {rendered_chain}"

    def __init__(self, chain: Sequence[str], max_depth: int) -> None:
        self.chain: List[str] = list(chain)
        self.max_depth = max_depth
        super().__init__(
            chain=self.chain,
            max_depth=max_depth,
            rendered_chain=" -> ".join(self.chain),
        )


class Timeout(ProfileError):
    """An external validation check did not finish in time."""

    code = "timeout"
    template = "Check '{check}' timed out after {seconds:.3f}s"

    def __init__(self, check: str, seconds: float) -> None:
        self.check = check
        self.seconds = seconds
        super().__init__(check=check, seconds=seconds)


class SettingsError(ProfileError):
    """Engine settings are malformed."""

    code = "settings_error"
    template = "Invalid settings: {detail}"

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail=detail)


__all__ = [
    "ProfileError",
    "NotFound",
    "ParseError",
    "StorageError",
    "ValidationFailed",
    "CycleDetected",
    "DepthExceeded",
    "Timeout",
    "SettingsError",
]
