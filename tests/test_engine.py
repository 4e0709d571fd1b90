"""End-to-end tests through the ProfileEngine facade."""

import logging
from pathlib import Path

import pytest

from gitprofiles.config.schema import Fragment, MatchRule, RemoteMatcher
from gitprofiles.config.settings import EngineSettings
from gitprofiles.detection.context import ContextBuilder
from gitprofiles.engine import ProfileEngine
from gitprofiles.errors import CycleDetected, ValidationFailed
from gitprofiles.utils.metrics import Metrics

from conftest import write_raw


@pytest.fixture
def engine(tmp_path: Path) -> ProfileEngine:
    settings = EngineSettings(store_dir=tmp_path / "profiles", external_check_timeout=0.05)
    built = ProfileEngine.from_settings(
        settings,
        metrics=Metrics(),
        context_builder=ContextBuilder(hostname_provider=lambda: "test-host"),
    )
    yield built
    built.close()


def _make_repo(root: Path, url: str) -> Path:
    (root / ".git").mkdir(parents=True)
    (root / ".git" / "config").write_text(f'[remote "origin"]\n\turl = {url}\n', encoding="utf-8")
    return root


def _seed(engine: ProfileEngine) -> None:
    engine.save(Fragment(id="base", sections={"identity": {"name": "Org"}}))
    engine.save(
        Fragment(
            id="work",
            extends="base",
            sections={"identity": {"email": "w@x.com"}},
            rules=[MatchRule(priority=10, when=[RemoteMatcher(pattern="*org/*")])],
        )
    )


def test_detect_then_resolve(engine: ProfileEngine, tmp_path: Path) -> None:
    _seed(engine)
    repo = _make_repo(tmp_path / "code" / "app", "https://host.example/org/app.git")
    (repo / "src").mkdir()

    fragment_id = engine.detect_in(repo / "src")
    assert fragment_id == "work"

    resolved = engine.resolve(fragment_id)
    assert resolved.sections == {"identity": {"name": "Org", "email": "w@x.com"}}
    assert engine.explain(repo).selected == "work"


def test_resolve_validates_merged_result(engine: ProfileEngine) -> None:
    """A child may defer the signing key to its parent, but the chain must supply it."""
    engine.save(Fragment(id="base", sections={"identity": {"name": "Org", "email": "o@x.com"}}))
    engine.save(Fragment(id="signed", extends="base", sections={"signing": {"method": "gpg"}}))

    with pytest.raises(ValidationFailed) as excinfo:
        engine.resolve("signed")
    assert [issue.path for issue in excinfo.value.errors] == ["signing.gpg_key"]

    resolved = engine.resolve("signed", validate=False)
    assert resolved.get("signing.method") == "gpg"


def test_cycle_surfaces_through_engine(engine: ProfileEngine) -> None:
    write_raw(engine.store, "loop_a", 'extends = "loop_b"\n')
    write_raw(engine.store, "loop_b", 'extends = "loop_a"\n')

    with pytest.raises(CycleDetected):
        engine.resolve("loop_a")
    assert engine.audit().cycles == [["loop_a", "loop_b"]]


def test_delete_warns_about_descendants(
    engine: ProfileEngine, caplog: pytest.LogCaptureFixture
) -> None:
    _seed(engine)
    with caplog.at_level(logging.WARNING, logger="gitprofiles.engine"):
        engine.delete("base")

    assert "still extended by: work" in caplog.text
    assert engine.audit().dangling == [("work", "base")]

    engine.restore("base")
    assert engine.audit().ok


def test_validate_checks_parent_existence(engine: ProfileEngine) -> None:
    result = engine.validate(Fragment(id="x", extends="nobody", sections={"identity": {"name": "n"}}))
    assert [issue.code for issue in result.errors] == ["extends.missing"]

    _seed(engine)
    cyclic = engine.validate(Fragment(id="base", extends="work", sections={"identity": {"name": "n"}}))
    assert [issue.code for issue in cyclic.errors] == ["extends.cycle"]


def test_store_operations(engine: ProfileEngine) -> None:
    _seed(engine)
    assert engine.list() == ["base", "work"]
    assert engine.exists("work")
    assert engine.load("work").extends == "base"


def test_persisted_cache_survives_restart(tmp_path: Path) -> None:
    settings = EngineSettings(store_dir=tmp_path / "profiles", cache_file=tmp_path / "cache.json")
    builder = ContextBuilder(hostname_provider=lambda: "h")
    repo = _make_repo(tmp_path / "repo", "git@host.example:org/app.git")

    first = ProfileEngine.from_settings(settings, metrics=Metrics(), context_builder=builder)
    _seed(first)
    assert first.detect_in(repo) == "work"
    first.close()
    assert (tmp_path / "cache.json").is_file()

    metrics = Metrics()
    second = ProfileEngine.from_settings(settings, metrics=metrics, context_builder=builder)
    assert second.detect_in(repo) == "work"
    assert metrics.get_counter("detector.cache_hits") == 1
    assert metrics.get_counter("detector.rule_evaluations") == 0
    second.close()
