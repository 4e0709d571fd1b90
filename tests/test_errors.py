"""Tests for the error taxonomy."""

from gitprofiles.errors import (
    CycleDetected,
    DepthExceeded,
    NotFound,
    ParseError,
    ProfileError,
    SettingsError,
    StorageError,
    Timeout,
    ValidationFailed,
)
from gitprofiles.validation.result import ValidationIssue


def test_every_error_kind_has_distinct_code() -> None:
    """Front ends map codes to remediation hints, so codes must not collide."""
    kinds = [NotFound, ParseError, StorageError, ValidationFailed, CycleDetected, DepthExceeded, Timeout, SettingsError]
    codes = [kind.code for kind in kinds]
    assert len(set(codes)) == len(codes)
    assert all(issubclass(kind, ProfileError) for kind in kinds)


def test_not_found_mentions_referencing_fragment() -> None:
    """NotFound raised during a chain walk names the child that extends it."""
    error = NotFound("base", referenced_by="work")
    assert str(error) == "Fragment 'base' not found (extended by 'work')"
    assert error.identifier == "base"
    assert error.to_dict()["code"] == "not_found"
    assert str(NotFound("base")) == "Fragment 'base' not found"


def test_cycle_and_depth_errors_keep_full_chain() -> None:
    """Chain-related errors expose the chain structurally and in the message."""
    cycle = CycleDetected(["loop_a", "loop_b", "loop_a"])
    assert cycle.chain == ["loop_a", "loop_b", "loop_a"]
    assert "loop_a -> loop_b -> loop_a" in str(cycle)

    depth = DepthExceeded(["a", "b", "c"], max_depth=2)
    assert depth.max_depth == 2
    assert depth.to_dict()["fields"]["chain"] == ["a", "b", "c"]


def test_validation_failed_carries_issues() -> None:
    """ValidationFailed exposes its issues and summarises them in the message."""
    issue = ValidationIssue("id", "identifier must not be empty", "identifier.empty")
    error = ValidationFailed("", [issue])
    assert error.errors == [issue]
    assert "id: identifier must not be empty" in str(error)


def test_timeout_message_template() -> None:
    """Timeout renders the check name and budget."""
    assert str(Timeout("check_signing_program", 0.05)) == "Check 'check_signing_program' timed out after 0.050s"
