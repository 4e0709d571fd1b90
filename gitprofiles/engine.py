"""Library-facing facade wiring the store, resolver, detector and validator.

Front ends (CLI, TUI, shell prompt hooks) normally only need this module::

    from gitprofiles.engine import ProfileEngine

    engine = ProfileEngine.from_settings()
    fragment_id = engine.detect_in(".")
    if fragment_id:
        config = engine.resolve(fragment_id)
        print(config.get("identity.email"))

Components are constructor-injected, so tests can build an engine around
a temporary store, a fresh cache and a private metrics instance.
"""

import logging
from pathlib import Path
from typing import List, Optional, Union

from gitprofiles.config.schema import Fragment
from gitprofiles.config.settings import EngineSettings, SettingsSource, load_settings
from gitprofiles.detection.cache import DetectionCache
from gitprofiles.detection.context import ContextBuilder, DetectionContext
from gitprofiles.detection.detector import DetectionExplanation, Detector
from gitprofiles.resolution.graph import InheritanceAudit, InheritanceGraph
from gitprofiles.resolution.resolved import ResolvedConfiguration
from gitprofiles.resolution.resolver import InheritanceResolver
from gitprofiles.storage.store import FragmentStore
from gitprofiles.utils.metrics import Metrics, get_metrics
from gitprofiles.validation.result import ValidationResult
from gitprofiles.validation.validator import Validator

logger = logging.getLogger("gitprofiles.engine")


class ProfileEngine:
    """Single entry point for storing, resolving and detecting fragments.

    Args:
        store: Fragment store.
        detector: Detector sharing the store's detection cache.
        validator: Validator used by `validate` and by `resolve`.
        max_depth: Inheritance depth limit.
        context_builder: Builds detection contexts from paths.
    """

    def __init__(
        self,
        store: FragmentStore,
        detector: Detector,
        validator: Validator,
        max_depth: int = 5,
        context_builder: Optional[ContextBuilder] = None,
    ) -> None:
        self.store = store
        self.detector = detector
        self.validator = validator
        self.resolver = InheritanceResolver(store, max_depth=max_depth)
        self.context_builder = context_builder or ContextBuilder()

    @classmethod
    def from_settings(
        cls,
        settings: Union[EngineSettings, SettingsSource] = None,
        *,
        metrics: Optional[Metrics] = None,
        context_builder: Optional[ContextBuilder] = None,
    ) -> "ProfileEngine":
        """Create an engine from settings, a settings file or defaults.

        A persisted detection cache is loaded here when ``cache_file`` is set.

        Raises:
            SettingsError: If the settings cannot be loaded.
        """
        if not isinstance(settings, EngineSettings):
            settings = load_settings(settings)
        cache = DetectionCache(
            ttl_seconds=settings.cache_ttl_seconds,
            max_entries=settings.cache_max_entries,
            persist_path=settings.cache_file,
        )
        if settings.cache_file is not None:
            cache.load()
        validator = Validator(timeout=settings.external_check_timeout, max_depth=settings.max_depth)
        store = FragmentStore(
            settings.store_dir,
            trash_dir=settings.effective_trash_dir,
            default_encoding=settings.default_encoding,
            validator=Validator(run_external_checks=False, max_depth=settings.max_depth),
            cache=cache,
        )
        detector = Detector(
            store,
            cache=cache,
            metrics=metrics or get_metrics(),
            persist_cache=settings.cache_file is not None,
        )
        logger.debug("Engine using store %s (max depth %d)", settings.store_dir, settings.max_depth)
        return cls(
            store,
            detector,
            validator,
            max_depth=settings.max_depth,
            context_builder=context_builder,
        )

    # ------------------------------------------------------------------
    # Store operations
    # ------------------------------------------------------------------
    def list(self) -> List[str]:
        return self.store.list()

    def exists(self, identifier: str) -> bool:
        return self.store.exists(identifier)

    def load(self, identifier: str) -> Fragment:
        return self.store.load(identifier)

    def save(self, fragment: Fragment) -> ValidationResult:
        """Validate and persist ``fragment``; raises `ValidationFailed` on errors."""
        return self.store.save(fragment)

    def delete(self, identifier: str) -> Path:
        """Move ``identifier`` to the trash, warning about orphaned descendants."""
        orphans = InheritanceGraph.from_store(self.store, self.resolver.max_depth).descendants(identifier)
        trashed = self.store.delete(identifier)
        if orphans:
            logger.warning(
                "Deleted fragment %s is still extended by: %s",
                identifier,
                ", ".join(sorted(orphans)),
            )
        return trashed

    def restore(self, identifier: str) -> Fragment:
        return self.store.restore(identifier)

    # ------------------------------------------------------------------
    # Resolution and validation
    # ------------------------------------------------------------------
    def resolve(self, identifier: str, validate: bool = True) -> ResolvedConfiguration:
        """Resolve ``identifier`` and validate the merged result.

        Raises:
            NotFound, CycleDetected, DepthExceeded, ParseError: From the resolver.
            ValidationFailed: If ``validate`` is set and the merged result has errors.
        """
        resolved = self.resolver.resolve(identifier)
        if validate:
            result = self.validator.validate(resolved.as_fragment())
            for warning in result.warnings:
                logger.info("Resolved %s: %s", identifier, warning)
            result.raise_for_errors(identifier)
        return resolved

    def validate(self, fragment: Fragment) -> ValidationResult:
        """Validate a single fragment against the stored parent chain."""
        parents, descendant_depth = self.store.chain_context(fragment.id)
        return self.validator.validate(
            fragment,
            reference_lookup=self.store.exists,
            parent_lookup=parents.get,
            descendant_depth=descendant_depth,
        )

    def audit(self) -> InheritanceAudit:
        """Report cycles, dangling parents, over-deep chains and unreadable fragments."""
        return InheritanceGraph.from_store(self.store, self.resolver.max_depth).audit()

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------
    def detect(self, context: DetectionContext) -> Optional[str]:
        return self.detector.detect(context)

    def detect_in(self, path: Union[str, Path]) -> Optional[str]:
        """Build a context for ``path`` and detect its fragment."""
        return self.detector.detect(self.context_builder.build(path))

    def explain(self, path: Union[str, Path]) -> DetectionExplanation:
        return self.detector.explain(self.context_builder.build(path))

    def close(self) -> None:
        """Release validator worker threads and flush a persisted cache."""
        self.validator.close()
        if self.detector.persist_cache:
            self.detector.cache.persist()
