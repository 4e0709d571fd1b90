"""Inheritance chain walking and merging.

`InheritanceResolver.resolve` follows ``extends`` pointers from a leaf
fragment with an explicit visited list, so a cycle is reported as
`CycleDetected` instead of recursing forever, and a chain longer than the
configured depth is reported as `DepthExceeded`. Sections are then merged
root to leaf, see :mod:`gitprofiles.resolution.merge`.

The resolver keeps no state between calls; resolving different
identifiers concurrently is safe as long as the source is.
"""

import logging
from typing import List, Optional, Protocol

from gitprofiles.config.schema import DEFAULT_MAX_DEPTH, Fragment, MatchRule
from gitprofiles.errors import CycleDetected, DepthExceeded, NotFound
from gitprofiles.resolution.merge import Origins, Sections, merge_sections
from gitprofiles.resolution.resolved import ResolvedConfiguration

logger = logging.getLogger("gitprofiles.resolution")


class FragmentSource(Protocol):
    """Anything that can load a fragment by identifier."""

    def load(self, identifier: str) -> Fragment: ...


class InheritanceResolver:
    """Resolve fragments into complete configurations.

    Args:
        source: Fragment source, usually a `FragmentStore`.
        max_depth: Maximum number of fragments in a chain, leaf included.
    """

    def __init__(self, source: FragmentSource, max_depth: int = DEFAULT_MAX_DEPTH) -> None:
        if max_depth < 1:
            raise ValueError("max_depth must be at least 1")
        self.source = source
        self.max_depth = max_depth

    def walk(self, identifier: str) -> List[Fragment]:
        """Load the chain starting at ``identifier``, leaf first.

        Raises:
            CycleDetected: If an identifier repeats; ``chain`` lists the
                traversal up to and including the repeated identifier.
            DepthExceeded: If the chain has more than ``max_depth`` fragments.
            NotFound: If a fragment in the chain is missing; ``referenced_by``
                names the fragment whose ``extends`` points at it.
        """
        fragments: List[Fragment] = []
        visited: List[str] = []
        current: Optional[str] = identifier
        referenced_by: Optional[str] = None
        while current is not None:
            if current in visited:
                raise CycleDetected(visited + [current])
            if len(visited) >= self.max_depth:
                raise DepthExceeded(visited + [current], self.max_depth)
            try:
                fragment = self.source.load(current)
            except NotFound as e:
                if referenced_by is None:
                    raise
                raise NotFound(current, referenced_by=referenced_by) from e
            visited.append(current)
            fragments.append(fragment)
            referenced_by, current = current, fragment.extends
        return fragments

    def chain(self, identifier: str) -> List[str]:
        """Identifiers of the inheritance chain, root to leaf."""
        return [fragment.id for fragment in reversed(self.walk(identifier))]

    def resolve(self, identifier: str) -> ResolvedConfiguration:
        """Resolve ``identifier`` into a flattened configuration.

        Raises:
            CycleDetected, DepthExceeded, NotFound: See `walk`; store errors
                such as `ParseError` propagate unchanged.
        """
        root_to_leaf = list(reversed(self.walk(identifier)))
        sections: Sections = {}
        origins: Origins = {}
        rules: List[MatchRule] = []
        for fragment in root_to_leaf:
            sections, origins = merge_sections(sections, fragment.sections, fragment.id, origins)
            if fragment.rules:
                rules = [rule.model_copy(deep=True) for rule in fragment.rules]
        chain = [fragment.id for fragment in root_to_leaf]
        logger.debug("Resolved %s through %s", identifier, " -> ".join(chain))
        return ResolvedConfiguration(
            identifier=identifier,
            chain=chain,
            sections=sections,
            rules=rules,
            origins=origins,
        )
