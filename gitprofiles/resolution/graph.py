"""Store-wide view of the ``extends`` relation.

`InheritanceGraph` holds one node per fragment and one edge from each
child to its parent. It answers questions that single-chain resolution
cannot: which fragments inherit from a given one (needed before a
delete), and where the store as a whole has cycles, dangling parents or
over-deep chains.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

import networkx as nx

from gitprofiles.config.schema import Fragment
from gitprofiles.errors import ProfileError
from gitprofiles.resolution.resolver import DEFAULT_MAX_DEPTH

logger = logging.getLogger("gitprofiles.resolution.graph")


@dataclass
class InheritanceAudit:
    """Store-wide inheritance problems.

    Attributes:
        cycles: Each cycle as a list of identifiers, smallest first.
        dangling: ``(child, missing_parent)`` pairs.
        depth_violations: Identifier -> chain length above the limit.
        unreadable: Identifier -> error message for fragments that failed to load.
    """

    cycles: List[List[str]] = field(default_factory=list)
    dangling: List[Tuple[str, str]] = field(default_factory=list)
    depth_violations: Dict[str, int] = field(default_factory=dict)
    unreadable: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not (self.cycles or self.dangling or self.depth_violations or self.unreadable)

    def to_dict(self) -> Dict[str, object]:
        return {
            "cycles": [list(cycle) for cycle in self.cycles],
            "dangling": [list(pair) for pair in self.dangling],
            "depth_violations": dict(self.depth_violations),
            "unreadable": dict(self.unreadable),
        }


class InheritanceGraph:
    """Directed child -> parent graph of fragments."""

    def __init__(self, max_depth: int = DEFAULT_MAX_DEPTH) -> None:
        self.graph = nx.DiGraph()
        self.max_depth = max_depth
        self.unreadable: Dict[str, str] = {}
        self._present: Set[str] = set()

    @classmethod
    def from_fragments(
        cls, fragments: Iterable[Fragment], max_depth: int = DEFAULT_MAX_DEPTH
    ) -> "InheritanceGraph":
        graph = cls(max_depth=max_depth)
        for fragment in fragments:
            graph.add(fragment)
        return graph

    @classmethod
    def from_store(cls, store, max_depth: int = DEFAULT_MAX_DEPTH) -> "InheritanceGraph":
        """Build the graph from every fragment in ``store``.

        Fragments that fail to load are recorded in `unreadable` and kept
        as nodes without edges.
        """
        graph = cls(max_depth=max_depth)
        for identifier in store.list():
            try:
                graph.add(store.load(identifier))
            except ProfileError as e:
                logger.warning("Cannot load fragment %s for graph: %s", identifier, e)
                graph.unreadable[identifier] = str(e)
                graph._present.add(identifier)
                graph.graph.add_node(identifier)
        return graph

    def add(self, fragment: Fragment) -> None:
        self._present.add(fragment.id)
        self.graph.add_node(fragment.id)
        if fragment.extends:
            self.graph.add_edge(fragment.id, fragment.extends)

    def parent(self, identifier: str) -> Optional[str]:
        if identifier not in self.graph:
            return None
        parents = list(self.graph.successors(identifier))
        return parents[0] if parents else None

    def cycles(self) -> List[List[str]]:
        """Every inheritance cycle, rotated to start at its smallest identifier."""
        found: List[List[str]] = []
        for cycle in nx.simple_cycles(self.graph):
            nodes = [str(node) for node in cycle]
            start = nodes.index(min(nodes))
            found.append(nodes[start:] + nodes[:start])
        return sorted(found)

    def dangling(self) -> List[Tuple[str, str]]:
        """``(child, parent)`` pairs whose parent does not exist."""
        return sorted(
            (child, parent)
            for child, parent in self.graph.edges()
            if parent not in self._present
        )

    def descendants(self, identifier: str) -> Set[str]:
        """Fragments that inherit from ``identifier``, directly or transitively."""
        if identifier not in self.graph:
            return set()
        return set(nx.ancestors(self.graph, identifier))

    def depth(self, identifier: str) -> Optional[int]:
        """Number of fragments in the chain of ``identifier``, or None on a cycle."""
        seen: Set[str] = set()
        current: Optional[str] = identifier
        while current is not None:
            if current in seen:
                return None
            seen.add(current)
            current = self.parent(current)
        return len(seen)

    def depth_violations(self) -> Dict[str, int]:
        """Identifiers whose chain is longer than `max_depth`."""
        violations: Dict[str, int] = {}
        for identifier in sorted(self._present):
            depth = self.depth(identifier)
            if depth is not None and depth > self.max_depth:
                violations[identifier] = depth
        return violations

    def audit(self) -> InheritanceAudit:
        audit = InheritanceAudit(
            cycles=self.cycles(),
            dangling=self.dangling(),
            depth_violations=self.depth_violations(),
            unreadable=dict(self.unreadable),
        )
        if not audit.ok:
            logger.info(
                "Inheritance audit: %d cycle(s), %d dangling parent(s), %d over-deep chain(s)",
                len(audit.cycles),
                len(audit.dangling),
                len(audit.depth_violations),
            )
        return audit
