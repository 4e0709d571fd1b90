"""Shared fixtures for gitprofiles tests."""

from pathlib import Path
from typing import Callable, Dict, Optional

import pytest

from gitprofiles.config.schema import Fragment
from gitprofiles.detection.cache import DetectionCache
from gitprofiles.errors import NotFound
from gitprofiles.storage.store import FragmentStore
from gitprofiles.utils.metrics import Metrics


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class MemorySource:
    """In-memory fragment source for resolver tests."""

    def __init__(self, *fragments: Fragment) -> None:
        self.fragments: Dict[str, Fragment] = {fragment.id: fragment for fragment in fragments}
        self.loads = 0

    def load(self, identifier: str) -> Fragment:
        self.loads += 1
        try:
            return self.fragments[identifier]
        except KeyError:
            raise NotFound(identifier) from None


def write_raw(store: FragmentStore, identifier: str, text: str, suffix: str = ".toml") -> Path:
    """Write fragment text directly, bypassing validation."""
    store.root.mkdir(parents=True, exist_ok=True)
    path = store.root / f"{identifier}{suffix}"
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def metrics() -> Metrics:
    return Metrics()


@pytest.fixture
def cache(clock: FakeClock) -> DetectionCache:
    return DetectionCache(ttl_seconds=300, max_entries=1000, clock=clock)


@pytest.fixture
def make_store(tmp_path: Path) -> Callable[..., FragmentStore]:
    """Factory creating stores under the test's temporary directory."""

    def factory(
        name: str = "profiles",
        cache: Optional[DetectionCache] = None,
        default_encoding: str = "toml",
    ) -> FragmentStore:
        return FragmentStore(tmp_path / name, cache=cache, default_encoding=default_encoding)

    return factory


@pytest.fixture
def store(make_store: Callable[..., FragmentStore], cache: DetectionCache) -> FragmentStore:
    return make_store(cache=cache)
