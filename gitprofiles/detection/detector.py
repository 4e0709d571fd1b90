"""Select the fragment that applies to a repository context.

The detector consults the `DetectionCache` first. On a miss it evaluates
the compiled rule table (priority descending, store listing order on
ties, cheapest clauses first) and stores only positive results, so a
fragment added later is picked up by the very next detection.

The compiled rule table is memoized against the store fingerprint and
rebuilt whenever the fragment set changes on disk.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Tuple

from gitprofiles.config.schema import Fragment
from gitprofiles.detection.cache import DetectionCache
from gitprofiles.detection.context import DetectionContext
from gitprofiles.detection.matchers import CompiledRule, compile_rules
from gitprofiles.utils.metrics import Metrics, get_metrics

logger = logging.getLogger("gitprofiles.detection")


class FragmentCatalog(Protocol):
    """Read side of the fragment store used by the detector."""

    def list(self) -> List[str]: ...

    def load(self, identifier: str) -> Fragment: ...

    def fingerprint(self) -> str: ...


@dataclass
class RuleTrace:
    """Outcome of evaluating one rule, for `Detector.explain`."""

    fragment_id: str
    priority: int
    index: int
    kinds: Tuple[str, ...]
    matched: bool


@dataclass
class DetectionExplanation:
    """Full evaluation trace of a context, ignoring the cache.

    Attributes:
        selected: Identifier that `detect` would return.
        rules: Every rule in evaluation order with its outcome.
    """

    selected: Optional[str] = None
    rules: List[RuleTrace] = field(default_factory=list)

    @property
    def matches(self) -> List[RuleTrace]:
        """Fully matching rules in evaluation order."""
        return [trace for trace in self.rules if trace.matched]


class Detector:
    """Prioritized, cache-backed fragment detection.

    Args:
        store: Source of fragments and their listing order.
        cache: Detection cache; a fresh one is created when omitted.
        metrics: Metrics sink for evaluation counters.
        persist_cache: Write the cache to its persist path after each new entry.
    """

    def __init__(
        self,
        store: FragmentCatalog,
        cache: Optional[DetectionCache] = None,
        metrics: Optional[Metrics] = None,
        persist_cache: bool = False,
    ) -> None:
        self.store = store
        self.cache = cache if cache is not None else DetectionCache()
        self.metrics = metrics if metrics is not None else get_metrics()
        self.persist_cache = persist_cache
        self._rules: List[CompiledRule] = []
        self._rules_fingerprint: Optional[str] = None
        self._rules_lock = threading.Lock()

    def rules(self) -> List[CompiledRule]:
        """Return the compiled rule table, rebuilding it if the store changed."""
        fingerprint = self.store.fingerprint()
        with self._rules_lock:
            if fingerprint != self._rules_fingerprint:
                fragments = [self.store.load(identifier) for identifier in self.store.list()]
                self._rules = compile_rules(fragments)
                self._rules_fingerprint = fingerprint
                logger.debug("Compiled %d detection rules", len(self._rules))
            return self._rules

    def detect(self, context: DetectionContext) -> Optional[str]:
        """Return the identifier of the fragment that applies to ``context``.

        Raises:
            ProfileError: Store failures while building the rule table.
        """
        root = context.repo_root
        if root is not None:
            cached = self.cache.get(root)
            if cached is not None:
                self.metrics.increment("detector.cache_hits")
                logger.debug("Detection cache hit for %s -> %s", root, cached)
                return cached
            self.metrics.increment("detector.cache_misses")

        generation = self.cache.generation
        with self.metrics.timer("detector.evaluate"):
            selected = self._evaluate(context)

        if selected is not None and root is not None:
            stored = self.cache.put(root, selected, generation=generation)
            if stored and self.persist_cache:
                self.cache.persist()
        logger.debug("Detected %s for %s", selected, root or context.working_dir)
        return selected

    def _evaluate(self, context: DetectionContext) -> Optional[str]:
        for rule in self.rules():
            self.metrics.increment("detector.rule_evaluations")
            if rule.matches(context):
                return rule.fragment_id
        return None

    def explain(self, context: DetectionContext) -> DetectionExplanation:
        """Evaluate every rule against ``context`` without touching the cache."""
        explanation = DetectionExplanation()
        for rule in self.rules():
            matched = rule.matches(context)
            explanation.rules.append(
                RuleTrace(rule.fragment_id, rule.priority, rule.index, rule.kinds, matched)
            )
            if matched and explanation.selected is None:
                explanation.selected = rule.fragment_id
        return explanation

    def invalidate(self, identifier: str) -> None:
        """Forget cached detections pointing at ``identifier``."""
        self.cache.invalidate_fragment(identifier)
