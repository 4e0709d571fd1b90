"""Tests for inheritance resolution."""

from typing import Callable

import pytest

from gitprofiles.config.schema import Fragment, HostnameMatcher, MatchRule, RemoteMatcher
from gitprofiles.errors import CycleDetected, DepthExceeded, NotFound
from gitprofiles.resolution.merge import merge_sections
from gitprofiles.resolution.resolver import InheritanceResolver
from gitprofiles.storage.store import FragmentStore

from conftest import MemorySource, write_raw


def _rule(pattern: str, priority: int = 0) -> MatchRule:
    return MatchRule(priority=priority, when=[RemoteMatcher(pattern=pattern)])


def test_base_work_scenario(store: FragmentStore) -> None:
    store.save(Fragment(id="base", sections={"identity": {"name": "Org"}}))
    store.save(
        Fragment(
            id="work",
            extends="base",
            sections={"identity": {"email": "w@x.com"}},
            rules=[_rule("*org/*", 10)],
        )
    )

    resolved = InheritanceResolver(store).resolve("work")

    assert resolved.sections == {"identity": {"name": "Org", "email": "w@x.com"}}
    assert resolved.chain == ["base", "work"]
    assert resolved.origins == {"identity.name": "base", "identity.email": "work"}
    assert resolved.get("identity.name") == "Org"
    assert resolved.parent == "base"


def test_child_overrides_parent() -> None:
    source = MemorySource(
        Fragment(id="a", sections={"s": {"x": 1, "keep": True}}),
        Fragment(id="b", extends="a", sections={"s": {"x": 2}}),
        Fragment(id="c", extends="a"),
    )
    resolver = InheritanceResolver(source)

    assert resolver.resolve("b").get("s.x") == 2
    assert resolver.resolve("b").get("s.keep") is True
    assert resolver.resolve("c").get("s.x") == 1


def test_mapping_fields_union_and_lists_replace() -> None:
    source = MemorySource(
        Fragment(
            id="a",
            sections={"extensions": {"tool": {"one": 1, "two": 2}, "tags": ["a", "b", "c"], "mode": {"k": "v"}}},
        ),
        Fragment(
            id="b",
            extends="a",
            sections={"extensions": {"tool": {"two": 22, "three": 3}, "tags": ["z"], "mode": "flat"}},
        ),
    )
    resolved = InheritanceResolver(source).resolve("b")

    assert resolved.get("extensions.tool") == {"one": 1, "two": 22, "three": 3}
    assert resolved.get("extensions.tags") == ["z"]
    assert resolved.get("extensions.mode") == "flat"
    assert resolved.origins["extensions.tool.one"] == "a"
    assert resolved.origins["extensions.tool.two"] == "b"
    assert resolved.origins["extensions.mode"] == "b"
    assert "extensions.mode.k" not in resolved.origins


def test_match_rules_replace_not_concatenate() -> None:
    """A child with one rule over a parent with three ends up with one rule."""
    source = MemorySource(
        Fragment(id="a", rules=[_rule("one/*"), _rule("two/*"), _rule("three/*")]),
        Fragment(id="b", extends="a", rules=[_rule("mine/*")]),
        Fragment(id="c", extends="a"),
    )
    resolver = InheritanceResolver(source)

    assert [rule.when[0].pattern for rule in resolver.resolve("b").rules] == ["mine/*"]
    assert len(resolver.resolve("c").rules) == 3


def test_cycle_detected(make_store: Callable[..., FragmentStore]) -> None:
    store = make_store()
    write_raw(store, "loop_a", 'extends = "loop_b"\n')
    write_raw(store, "loop_b", 'extends = "loop_a"\n')

    with pytest.raises(CycleDetected) as excinfo:
        InheritanceResolver(store).resolve("loop_a")
    assert excinfo.value.chain == ["loop_a", "loop_b", "loop_a"]


def test_self_reference_is_a_cycle() -> None:
    source = MemorySource(Fragment(id="me", extends="me"))
    with pytest.raises(CycleDetected):
        InheritanceResolver(source).resolve("me")


def test_depth_limit() -> None:
    fragments = [Fragment(id="f0")] + [Fragment(id=f"f{i}", extends=f"f{i - 1}") for i in range(1, 7)]
    source = MemorySource(*fragments)

    assert InheritanceResolver(source).chain("f4") == ["f0", "f1", "f2", "f3", "f4"]

    with pytest.raises(DepthExceeded) as excinfo:
        InheritanceResolver(source).resolve("f5")
    assert excinfo.value.chain == ["f5", "f4", "f3", "f2", "f1", "f0"]
    assert excinfo.value.max_depth == 5

    assert len(InheritanceResolver(source, max_depth=7).chain("f6")) == 7


def test_long_cycle_stops_at_depth_limit() -> None:
    """Walking terminates even when a cycle is longer than the depth limit."""
    ids = [f"n{i}" for i in range(10)]
    source = MemorySource(*(Fragment(id=ids[i], extends=ids[(i + 1) % 10]) for i in range(10)))
    with pytest.raises(DepthExceeded):
        InheritanceResolver(source).resolve("n0")
    assert source.loads == 5


def test_missing_parent_names_referencing_child() -> None:
    source = MemorySource(Fragment(id="child", extends="ghost"))
    with pytest.raises(NotFound) as excinfo:
        InheritanceResolver(source).resolve("child")
    assert excinfo.value.identifier == "ghost"
    assert excinfo.value.referenced_by == "child"

    with pytest.raises(NotFound) as excinfo:
        InheritanceResolver(source).resolve("nobody")
    assert excinfo.value.referenced_by is None


def test_resolution_is_deterministic() -> None:
    source = MemorySource(
        Fragment(id="a", sections={"identity": {"name": "A"}, "git": {"scope": "global"}}),
        Fragment(
            id="b",
            extends="a",
            sections={"git": {"scope": "local"}, "identity": {"email": "b@x.io"}},
            rules=[MatchRule(priority=3, when=[HostnameMatcher(pattern="h*")])],
        ),
    )
    first = InheritanceResolver(source).resolve("b")
    second = InheritanceResolver(source).resolve("b")

    assert first.canonical_json() == second.canonical_json()
    assert first.fingerprint() == second.fingerprint()
    assert len(first.fingerprint()) == 64


def test_resolution_does_not_mutate_fragments() -> None:
    parent = Fragment(id="a", sections={"extensions": {"tool": {"x": 1}}})
    child = Fragment(id="b", extends="a", sections={"extensions": {"tool": {"y": 2}}})
    resolved = InheritanceResolver(MemorySource(parent, child)).resolve("b")
    resolved.sections["extensions"]["tool"]["z"] = 3

    assert parent.sections == {"extensions": {"tool": {"x": 1}}}
    assert child.sections == {"extensions": {"tool": {"y": 2}}}


def test_absent_fields_stay_absent() -> None:
    resolved = InheritanceResolver(MemorySource(Fragment(id="a", sections={"identity": {"name": "A"}}))).resolve("a")
    assert resolved.get("identity.email") is None
    assert resolved.get("signing.method", "unset") == "unset"
    assert "signing" not in resolved.sections


def test_merge_sections_keeps_inputs_intact() -> None:
    base = {"s": {"a": 1}}
    merged, origins = merge_sections(base, {"s": {"b": 2}, "t": {}}, "child", {"s.a": "root"})
    assert merged == {"s": {"a": 1, "b": 2}, "t": {}}
    assert origins == {"s.a": "root", "s.b": "child", "t": "child"}
    assert base == {"s": {"a": 1}}
