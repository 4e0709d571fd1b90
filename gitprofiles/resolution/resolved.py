"""The flattened result of resolving an inheritance chain."""

import hashlib
import json
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from gitprofiles.config.schema import Fragment, MatchRule

_MISSING = object()


class ResolvedConfiguration(BaseModel):
    """Complete configuration produced by `InheritanceResolver.resolve`.

    Attributes:
        identifier: Identifier that was resolved (the leaf).
        chain: Fragment identifiers from root to leaf.
        sections: Merged section maps; fields never set remain absent.
        rules: Match rules of the nearest fragment in the chain that has any.
        origins: Dotted field path -> identifier of the supplying fragment.
    """

    identifier: str
    chain: List[str]
    sections: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    rules: List[MatchRule] = Field(default_factory=list)
    origins: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    @property
    def parent(self) -> Optional[str]:
        return self.chain[-2] if len(self.chain) > 1 else None

    def get(self, dotted: str, default: Any = None) -> Any:
        """Look up a value by dotted path (``identity.email``, ``extensions.tool.flag``).

        Returns:
            The value, or ``default`` if any path segment is absent.
        """
        current: Any = self.sections
        for segment in dotted.split("."):
            if not isinstance(current, dict):
                return default
            current = current.get(segment, _MISSING)
            if current is _MISSING:
                return default
        return current

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        return self.model_dump(mode="json")

    def canonical_json(self) -> str:
        """Serialize with sorted keys and compact separators.

        Equal configurations always produce byte-identical output.
        """
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    def fingerprint(self) -> str:
        """SHA-256 hex digest of `canonical_json`."""
        return hashlib.sha256(self.canonical_json().encode("utf-8")).hexdigest()

    def as_fragment(self) -> Fragment:
        """Merged view as a standalone fragment, for validating the result."""
        return Fragment(id=self.identifier, sections=self.sections, rules=list(self.rules))
