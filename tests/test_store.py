"""Tests for the file-per-fragment store."""

import os
import threading
from pathlib import Path
from typing import Callable

import pytest

from gitprofiles.config.schema import Fragment, MatchRule, PathMatcher, RemoteMatcher
from gitprofiles.detection.cache import DetectionCache
from gitprofiles.errors import NotFound, ParseError, StorageError, ValidationFailed
from gitprofiles.storage.store import FragmentStore

from conftest import write_raw

IDENTITY = {"identity": {"name": "Dev", "email": "dev@example.com"}}


@pytest.mark.parametrize("encoding", ["toml", "json", "json5", "yaml"])
def test_round_trip(make_store: Callable[..., FragmentStore], encoding: str) -> None:
    """save(f); load(f.id) == f for valid fragments in every encoding."""
    store = make_store(default_encoding=encoding)
    store.save(Fragment(id="base", sections=IDENTITY))
    fragment = Fragment(
        id="work",
        extends="base",
        sections={
            "identity": {"email": "w@x.com"},
            "signing": {"method": "ssh", "ssh_key": "ssh-ed25519 AAAAC3Nza"},
            "credentials": {"reference": "op://vault/item/field"},
            "extensions": {"labels": ["a", "b"], "nested": {"depth": 2}},
        },
        rules=[
            MatchRule(priority=10, when=[RemoteMatcher(pattern="*org/*")]),
            MatchRule(priority=5, when=[PathMatcher(pattern="~/work/*")]),
        ],
    )

    result = store.save(fragment)

    assert result.ok
    assert store.load("work") == fragment
    assert (store.root / f"work.{'yaml' if encoding == 'yaml' else encoding}").is_file()


def test_credential_reference_is_stored_verbatim(store: FragmentStore) -> None:
    reference = "  op://Private/GitHub Key/private key?ssh-format=openssh  "
    store.save(Fragment(id="p", sections={**IDENTITY, "credentials": {"reference": reference}}))
    assert store.load("p").get("credentials.reference") == reference


def test_list_is_sorted_and_skips_foreign_files(store: FragmentStore) -> None:
    for identifier in ("zeta", "alpha", "mid"):
        store.save(Fragment(id=identifier, sections=IDENTITY))
    write_raw(store, "notes", "hello", suffix=".txt")
    write_raw(store, "bad name", "", suffix=".toml")
    (store.root / "dir.toml").mkdir()

    assert store.list() == ["alpha", "mid", "zeta"]
    assert store.exists("mid")
    assert not store.exists("nope")
    assert not store.exists("../etc/passwd")


def test_list_of_missing_directory_is_empty(make_store: Callable[..., FragmentStore]) -> None:
    assert make_store("never-created").list() == []


def test_existing_encoding_is_kept(store: FragmentStore) -> None:
    write_raw(store, "legacy", '{"identity": {"name": "Old"}}', suffix=".json")
    store.save(Fragment(id="legacy", sections={"identity": {"name": "New"}}))

    assert not (store.root / "legacy.toml").exists()
    assert store.load("legacy").get("identity.name") == "New"


def test_encoding_precedence_for_duplicates(store: FragmentStore) -> None:
    write_raw(store, "dup", "identity:\n  name: Yaml\n", suffix=".yaml")
    write_raw(store, "dup", '[identity]\nname = "Toml"\n', suffix=".toml")

    assert store.list() == ["dup"]
    assert store.load("dup").get("identity.name") == "Toml"


def test_load_errors(store: FragmentStore) -> None:
    with pytest.raises(NotFound):
        store.load("missing")

    path = write_raw(store, "broken", "[identity\n")
    with pytest.raises(ParseError) as excinfo:
        store.load("broken")
    assert excinfo.value.identifier == "broken"
    assert excinfo.value.path == str(path)

    write_raw(store, "shape", 'identity = "flat"\n')
    with pytest.raises(ParseError):
        store.load("shape")


def test_save_rejects_invalid_fragment(store: FragmentStore) -> None:
    """An empty identifier fails with exactly one error on the id field."""
    with pytest.raises(ValidationFailed) as excinfo:
        store.save(Fragment(id="", sections=IDENTITY))
    assert len(excinfo.value.errors) == 1
    assert excinfo.value.errors[0].path == "id"
    assert store.list() == []


def test_save_requires_existing_parent(store: FragmentStore) -> None:
    with pytest.raises(ValidationFailed) as excinfo:
        store.save(Fragment(id="child", extends="ghost", sections=IDENTITY))
    assert [issue.code for issue in excinfo.value.errors] == ["extends.missing"]


def test_save_rejects_inheritance_cycle(store: FragmentStore) -> None:
    store.save(Fragment(id="a", sections=IDENTITY))
    store.save(Fragment(id="b", extends="a", sections=IDENTITY))

    with pytest.raises(ValidationFailed) as excinfo:
        store.save(Fragment(id="a", extends="b", sections=IDENTITY))

    assert [issue.code for issue in excinfo.value.errors] == ["extends.cycle"]
    assert store.load("a").extends is None


def test_save_rejects_chain_deeper_than_limit(store: FragmentStore) -> None:
    store.save(Fragment(id="f0", sections=IDENTITY))
    for index in range(1, 5):
        store.save(Fragment(id=f"f{index}", extends=f"f{index - 1}", sections=IDENTITY))

    with pytest.raises(ValidationFailed) as excinfo:
        store.save(Fragment(id="f5", extends="f4", sections=IDENTITY))

    assert [issue.code for issue in excinfo.value.errors] == ["extends.depth"]
    assert not store.exists("f5")


def test_save_counts_existing_descendants_against_depth(store: FragmentStore) -> None:
    """Re-parenting a root must not push its descendants past the limit."""
    store.save(Fragment(id="top", sections=IDENTITY))
    store.save(Fragment(id="f0", sections=IDENTITY))
    for index in range(1, 5):
        store.save(Fragment(id=f"f{index}", extends=f"f{index - 1}", sections=IDENTITY))

    parents, height = store.chain_context("f0")
    assert height == 4
    assert parents["f4"] == "f3" and "f0" not in parents

    with pytest.raises(ValidationFailed) as excinfo:
        store.save(Fragment(id="f0", extends="top", sections=IDENTITY))
    assert [issue.code for issue in excinfo.value.errors] == ["extends.depth"]
    assert store.load("f0").extends is None


def test_save_returns_warnings(store: FragmentStore) -> None:
    result = store.save(Fragment(id="bare"))
    assert result.ok
    assert [issue.code for issue in result.warnings] == ["identity.missing"]


def test_atomic_write_leaves_no_temporary_files(store: FragmentStore) -> None:
    for index in range(5):
        store.save(Fragment(id="p", sections={"identity": {"name": f"v{index}"}}))
    leftovers = [entry.name for entry in store.root.iterdir() if entry.name.endswith(".tmp")]
    assert leftovers == []
    assert store.load("p").get("identity.name") == "v4"


def test_concurrent_saves_to_one_identifier(store: FragmentStore) -> None:
    """Serialized writers never interleave; the file always holds one complete version."""
    errors = []

    def writer(index: int) -> None:
        try:
            for round_ in range(10):
                store.save(Fragment(id="shared", sections={"identity": {"name": f"w{index}-{round_}"}}))
                store.load("shared")
        except Exception as exc:  # noqa: BLE001
            errors.append(exc)

    threads = [threading.Thread(target=writer, args=(index,)) for index in range(6)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert store.load("shared").get("identity.name").startswith("w")


def test_delete_moves_to_trash_and_restore(store: FragmentStore) -> None:
    fragment = Fragment(id="old", sections=IDENTITY)
    store.save(fragment)

    trashed = store.delete("old")

    assert not store.exists("old")
    assert trashed.parent == store.trash_dir
    assert trashed.name.startswith("old.") and trashed.name.endswith("Z.toml")
    assert store.list() == []

    assert store.restore("old") == fragment
    assert store.exists("old")
    assert store.trashed("old") == []


def test_delete_and_restore_errors(store: FragmentStore) -> None:
    with pytest.raises(NotFound):
        store.delete("ghost")
    with pytest.raises(NotFound):
        store.restore("ghost")

    store.save(Fragment(id="p", sections=IDENTITY))
    store.delete("p")
    store.save(Fragment(id="p", sections=IDENTITY))
    with pytest.raises(StorageError):
        store.restore("p")


def test_delete_invalidates_only_affected_entries(store: FragmentStore, cache: DetectionCache) -> None:
    store.save(Fragment(id="p", sections=IDENTITY))
    store.save(Fragment(id="q", sections=IDENTITY))
    cache.put("/repo/p", "p")
    cache.put("/repo/q", "q")

    store.delete("p")

    assert cache.get("/repo/p") is None
    assert cache.get("/repo/q") == "q"


def test_fingerprint_tracks_changes(store: FragmentStore) -> None:
    empty = store.fingerprint()
    store.save(Fragment(id="p", sections=IDENTITY))
    one = store.fingerprint()
    assert one != empty
    assert store.fingerprint() == one

    store.delete("p")
    assert store.fingerprint() == empty


def test_fingerprint_changes_for_same_size_rewrite_within_one_tick(store: FragmentStore) -> None:
    """Rewrites that keep size and modification time still change the digest."""
    store.save(Fragment(id="p", sections={"identity": {"name": "v1"}}))
    path = store.path_for("p")
    os.utime(path, ns=(1_700_000_000_000_000_000, 1_700_000_000_000_000_000))
    size = path.stat().st_size
    before = store.fingerprint()

    store.save(Fragment(id="p", sections={"identity": {"name": "v2"}}))
    os.utime(path, ns=(1_700_000_000_000_000_000, 1_700_000_000_000_000_000))

    assert path.stat().st_size == size
    assert store.fingerprint() != before


def test_unsupported_default_encoding(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        FragmentStore(tmp_path, default_encoding="ini")
