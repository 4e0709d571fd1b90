"""Fragment data model using Pydantic.

A fragment is the unit of storage: a named set of configuration sections
that may extend one parent fragment and may carry match rules used by the
detector. Models here describe *shape* only; semantic checks (identifier
format, required sections, enum values) live in
:mod:`gitprofiles.validation` so that invalid fragments can still be
constructed and reported on in full.
"""

import re
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")
MAX_IDENTIFIER_LENGTH = 64
RESERVED_IDENTIFIERS = frozenset({"default", "none", "auto", "current", "all"})
# Maximum number of fragments in an inheritance chain, leaf included.
DEFAULT_MAX_DEPTH = 5

# Top-level document keys that are not sections.
RESERVED_DOCUMENT_KEYS = frozenset({"id", "extends", "abstract", "match"})


def is_storable_identifier(identifier: str) -> bool:
    """Whether ``identifier`` is safe to use as a fragment file name."""
    return (
        bool(identifier)
        and len(identifier) <= MAX_IDENTIFIER_LENGTH
        and IDENTIFIER_PATTERN.match(identifier) is not None
        and identifier.lower() not in RESERVED_IDENTIFIERS
    )


# Relative evaluation cost of each matcher kind; cheaper clauses run first.
MATCHER_COST: Dict[str, int] = {
    "hostname": 0,
    "directory": 1,
    "path": 1,
    "remote": 2,
    "config": 9,
}


class RemoteMatcher(BaseModel):
    """Glob against the normalized remote URLs of the repository.

    Attributes:
        pattern: Glob pattern, normalized like a remote URL before matching.
    """

    kind: Literal["remote"] = "remote"
    pattern: str

    model_config = ConfigDict(frozen=True, extra="forbid")


class PathMatcher(BaseModel):
    """Glob against the working path or any of its ancestors.

    Attributes:
        pattern: Glob pattern; a leading ``~`` is expanded.
    """

    kind: Literal["path"] = "path"
    pattern: str

    model_config = ConfigDict(frozen=True, extra="forbid")


class DirectoryMatcher(BaseModel):
    """Glob against any single component of the working path."""

    kind: Literal["directory"] = "directory"
    pattern: str

    model_config = ConfigDict(frozen=True, extra="forbid")


class HostnameMatcher(BaseModel):
    """Glob against the hostname of the current machine."""

    kind: Literal["hostname"] = "hostname"
    pattern: str

    model_config = ConfigDict(frozen=True, extra="forbid")


class ConfigMatcher(BaseModel):
    """Equality test on an ambient configuration value.

    Attributes:
        key: Ambient configuration key (for example ``user.email``).
        value: Expected value.
    """

    kind: Literal["config"] = "config"
    key: str
    value: str

    model_config = ConfigDict(frozen=True, extra="forbid")


Matcher = Annotated[
    Union[RemoteMatcher, PathMatcher, DirectoryMatcher, HostnameMatcher, ConfigMatcher],
    Field(discriminator="kind"),
]

GLOB_MATCHER_KINDS = frozenset({"remote", "path", "directory", "hostname"})


class MatchRule(BaseModel):
    """Prioritized conjunction of matcher clauses.

    Attributes:
        priority: Higher priorities are evaluated first.
        when: Clauses that must all hold for the rule to match.
    """

    priority: int = 0
    when: List[Matcher] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")

    def clauses_by_cost(self) -> List[Any]:
        """Return clauses ordered cheapest first, keeping declaration order on ties."""
        return sorted(self.when, key=lambda clause: MATCHER_COST.get(clause.kind, 99))


class Fragment(BaseModel):
    """Named, optionally inheriting configuration fragment.

    Attributes:
        id: Unique identifier; also the stored file name.
        extends: Identifier of the parent fragment, if any.
        abstract: Base-only fragment, never selected by detection.
        sections: Section name -> mapping of key -> value.
        rules: Match rules used for automatic detection.
    """

    id: str
    extends: Optional[str] = None
    abstract: bool = False
    sections: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    rules: List[MatchRule] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")

    @property
    def detectable(self) -> bool:
        """Whether the detector should consider this fragment."""
        return bool(self.rules) and not self.abstract

    def get(self, dotted: str, default: Any = None) -> Any:
        """Look up ``section.key`` in this fragment's own sections."""
        section, _, key = dotted.partition(".")
        return self.sections.get(section, {}).get(key, default)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Fragment":
        """Create a fragment from a plain mapping.

        Raises:
            ValidationError: If the mapping does not have fragment shape.
        """
        return cls.model_validate(data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert the fragment to a plain mapping."""
        return self.model_dump()
