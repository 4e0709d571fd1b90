"""Compile match rules into predicates over a `DetectionContext`."""

import os
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Tuple

from gitprofiles.config.schema import (
    ConfigMatcher,
    DirectoryMatcher,
    Fragment,
    HostnameMatcher,
    PathMatcher,
    RemoteMatcher,
)
from gitprofiles.detection.context import DetectionContext
from gitprofiles.detection.patterns import compile_glob, normalize_remote_url

ClausePredicate = Callable[[DetectionContext], bool]


def _remote_predicate(clause: RemoteMatcher) -> ClausePredicate:
    regex = compile_glob(normalize_remote_url(clause.pattern) or clause.pattern)

    def predicate(context: DetectionContext) -> bool:
        return any(regex.match(remote) for remote in context.remotes)

    return predicate


def _path_predicate(clause: PathMatcher) -> ClausePredicate:
    pattern = os.path.expanduser(clause.pattern)
    if len(pattern) > 1:
        pattern = pattern.rstrip("/")
    regex = compile_glob(pattern)

    def predicate(context: DetectionContext) -> bool:
        return any(regex.match(ancestor) for ancestor in context.ancestors)

    return predicate


def _directory_predicate(clause: DirectoryMatcher) -> ClausePredicate:
    regex = compile_glob(clause.pattern)

    def predicate(context: DetectionContext) -> bool:
        return any(regex.match(part) for part in context.components)

    return predicate


def _hostname_predicate(clause: HostnameMatcher) -> ClausePredicate:
    regex = compile_glob(clause.pattern)

    def predicate(context: DetectionContext) -> bool:
        return bool(context.hostname) and regex.match(context.hostname) is not None

    return predicate


def _config_predicate(clause: ConfigMatcher) -> ClausePredicate:
    key, expected = clause.key, clause.value

    def predicate(context: DetectionContext) -> bool:
        return context.lookup(key) == expected

    return predicate


_COMPILERS: Dict[str, Callable] = {
    "remote": _remote_predicate,
    "path": _path_predicate,
    "directory": _directory_predicate,
    "hostname": _hostname_predicate,
    "config": _config_predicate,
}


def compile_clause(clause) -> ClausePredicate:
    """Return a predicate implementing one matcher clause.

    Raises:
        ValueError: If the clause kind is unknown.
    """
    try:
        compiler = _COMPILERS[clause.kind]
    except KeyError:
        raise ValueError(f"unknown matcher kind: {clause.kind!r}") from None
    return compiler(clause)


@dataclass(frozen=True)
class CompiledRule:
    """A match rule ready for evaluation.

    Attributes:
        fragment_id: Fragment selected when the rule matches.
        priority: Rule priority; higher wins.
        order: Position of the fragment in the store listing.
        index: Position of the rule inside its fragment.
        clauses: Predicates ordered cheapest first.
        kinds: Matcher kind of each predicate, for diagnostics.
    """

    fragment_id: str
    priority: int
    order: int
    index: int
    clauses: Tuple[ClausePredicate, ...]
    kinds: Tuple[str, ...]

    @property
    def sort_key(self) -> Tuple[int, int, int]:
        return (-self.priority, self.order, self.index)

    def matches(self, context: DetectionContext) -> bool:
        """All clauses hold; stops at the first failing clause."""
        return all(clause(context) for clause in self.clauses)


def compile_rules(fragments: Iterable[Fragment]) -> List[CompiledRule]:
    """Compile the rules of detectable fragments into evaluation order.

    Rules are ordered by descending priority, then by fragment listing
    order, then by position within the fragment, which makes the first
    match the winner.
    """
    compiled: List[CompiledRule] = []
    for order, fragment in enumerate(fragments):
        if not fragment.detectable:
            continue
        for index, rule in enumerate(fragment.rules):
            if not rule.when:
                continue
            clauses = rule.clauses_by_cost()
            compiled.append(
                CompiledRule(
                    fragment_id=fragment.id,
                    priority=rule.priority,
                    order=order,
                    index=index,
                    clauses=tuple(compile_clause(clause) for clause in clauses),
                    kinds=tuple(clause.kind for clause in clauses),
                )
            )
    compiled.sort(key=lambda rule: rule.sort_key)
    return compiled
