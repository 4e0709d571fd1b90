"""Tests for the store-wide inheritance graph."""

from gitprofiles.config.schema import Fragment
from gitprofiles.resolution.graph import InheritanceGraph
from gitprofiles.storage.store import FragmentStore

from conftest import write_raw


def _graph(*pairs, max_depth: int = 5) -> InheritanceGraph:
    return InheritanceGraph.from_fragments(
        (Fragment(id=child, extends=parent) for child, parent in pairs), max_depth=max_depth
    )


def test_descendants_and_depth() -> None:
    graph = _graph(("base", None), ("work", "base"), ("client", "work"), ("home", "base"), ("solo", None))

    assert graph.descendants("base") == {"work", "client", "home"}
    assert graph.descendants("work") == {"client"}
    assert graph.descendants("solo") == set()
    assert graph.descendants("unknown") == set()
    assert graph.depth("client") == 3
    assert graph.parent("client") == "work"
    assert graph.audit().ok


def test_cycles_are_reported_rotated() -> None:
    graph = _graph(("loop_b", "loop_a"), ("loop_a", "loop_b"), ("self", "self"), ("ok", None))

    assert graph.cycles() == [["loop_a", "loop_b"], ["self"]]
    assert graph.depth("loop_a") is None


def test_dangling_parents() -> None:
    graph = _graph(("child", "ghost"), ("other", "child"))
    assert graph.dangling() == [("child", "ghost")]


def test_depth_violations() -> None:
    pairs = [("f0", None)] + [(f"f{i}", f"f{i - 1}") for i in range(1, 5)]
    graph = _graph(*pairs, max_depth=3)
    assert graph.depth_violations() == {"f3": 4, "f4": 5}


def test_audit_from_store_records_unreadable(store: FragmentStore) -> None:
    store.save(Fragment(id="base", sections={"identity": {"name": "n"}}))
    write_raw(store, "orphan", 'extends = "gone"\n')
    write_raw(store, "broken", "extends = \n")

    audit = InheritanceGraph.from_store(store).audit()

    assert not audit.ok
    assert audit.dangling == [("orphan", "gone")]
    assert list(audit.unreadable) == ["broken"]
    assert audit.to_dict()["dangling"] == [["orphan", "gone"]]
