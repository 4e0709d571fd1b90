"""Multi-stage fragment validator.

Stages run in order and accumulate findings instead of stopping at the
first problem, so a caller sees everything that is wrong at once:

1. identifier format
2. required sections
3. field-level semantics (types, lengths, formats, enumerations)
4. cross-field consistency (signing method vs. key reference, ``extends``
   existence, and cycles or excess depth in the parent chain)
5. match rules (non-empty conjunctions, valid globs)

Optional external checks (referenced files exist, signing programs are on
PATH) run afterwards under a short timeout; a slow or failing check only
ever produces a warning. The validator never mutates its input and never
raises for bad data.
"""

import difflib
import logging
import re
import shutil
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from gitprofiles.config.schema import (
    DEFAULT_MAX_DEPTH,
    GLOB_MATCHER_KINDS,
    IDENTIFIER_PATTERN,
    MAX_IDENTIFIER_LENGTH,
    RESERVED_DOCUMENT_KEYS,
    RESERVED_IDENTIFIERS,
    Fragment,
)
from gitprofiles.detection.patterns import glob_error
from gitprofiles.errors import Timeout
from gitprofiles.validation.result import ValidationIssue, ValidationResult

logger = logging.getLogger("gitprofiles.validation")

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s.]+$")
SCALAR_TYPES = (str, bool, int, float)
MAX_TEXT_LENGTH = 256
MAX_KEY_LENGTH = 4096
MAX_EMAIL_LENGTH = 254

SIGNING_METHODS = ("ssh", "gpg", "x509", "gitsign", "none")
# Signing method -> key reference field it requires.
SIGNING_KEY_FIELDS = {"ssh": "ssh_key", "gpg": "gpg_key", "x509": "x509_key"}
# Signing method -> program probed on PATH when ``signing.program`` is unset.
SIGNING_PROGRAMS = {"ssh": "ssh-keygen", "gpg": "gpg", "x509": "gpgsm", "gitsign": "gitsign"}

ReferenceLookup = Callable[[str], bool]
# Identifier -> its ``extends`` value, or None for roots and unknown fragments.
ParentLookup = Callable[[str], Optional[str]]


@dataclass(frozen=True)
class FieldSpec:
    """Semantic constraint for one known section key.

    Attributes:
        kind: One of ``text``, ``email``, ``enum``, ``bool``.
        max_length: Upper bound for text values.
        choices: Closed value set for ``enum`` fields.
    """

    kind: str
    max_length: int = MAX_TEXT_LENGTH
    choices: Tuple[str, ...] = ()


SECTION_SCHEMAS: Dict[str, Optional[Dict[str, FieldSpec]]] = {
    "identity": {
        "name": FieldSpec("text"),
        "email": FieldSpec("email", max_length=MAX_EMAIL_LENGTH),
    },
    "signing": {
        "method": FieldSpec("enum", choices=SIGNING_METHODS),
        "ssh_key": FieldSpec("text", max_length=MAX_KEY_LENGTH),
        "gpg_key": FieldSpec("text", max_length=MAX_KEY_LENGTH),
        "x509_key": FieldSpec("text", max_length=MAX_KEY_LENGTH),
        "allowed_signers": FieldSpec("text", max_length=MAX_KEY_LENGTH),
        "program": FieldSpec("text", max_length=MAX_KEY_LENGTH),
        "commits": FieldSpec("bool"),
        "tags": FieldSpec("bool"),
    },
    "credentials": {
        "reference": FieldSpec("text", max_length=MAX_KEY_LENGTH),
        "vault": FieldSpec("text"),
        "ssh_key_title": FieldSpec("text"),
    },
    "git": {
        "scope": FieldSpec("enum", choices=("local", "global", "system")),
        "default_branch": FieldSpec("text"),
    },
    # Free-form extension table: any keys, type checks only.
    "extensions": None,
}

KNOWN_SECTIONS: FrozenSet[str] = frozenset(SECTION_SCHEMAS)


def _closest(value: str, candidates: Iterable[str]) -> Optional[str]:
    matches = difflib.get_close_matches(value, list(candidates), n=1, cutoff=0.6)
    return matches[0] if matches else None


def suggest_identifier(identifier: str) -> Optional[str]:
    """Derive a storable identifier from an invalid one, if possible."""
    candidate = re.sub(r"[^A-Za-z0-9_-]+", "-", identifier.strip()).strip("-_")
    candidate = candidate[:MAX_IDENTIFIER_LENGTH].rstrip("-_")
    if not candidate:
        return None
    if candidate.lower() in RESERVED_IDENTIFIERS:
        candidate = f"{candidate}-profile"
    return candidate


def _looks_like_path(value: str) -> bool:
    return value.startswith(("/", "~", "./", "../"))


def check_referenced_files(fragment: Fragment) -> List[ValidationIssue]:
    """Warn about path-shaped signing references that do not exist."""
    issues: List[ValidationIssue] = []
    signing = fragment.sections.get("signing", {})
    for key in ("allowed_signers", "ssh_key", "gpg_key", "x509_key"):
        value = signing.get(key)
        if not isinstance(value, str) or not _looks_like_path(value):
            continue
        if not Path(value).expanduser().exists():
            issues.append(
                ValidationIssue(
                    f"signing.{key}",
                    f"referenced file does not exist: {value}",
                    "file.missing",
                )
            )
    return issues


def check_signing_program(fragment: Fragment) -> List[ValidationIssue]:
    """Warn when the program needed for the signing method is not on PATH."""
    signing = fragment.sections.get("signing", {})
    method = signing.get("method")
    program = signing.get("program")
    if not program and isinstance(method, str):
        program = SIGNING_PROGRAMS.get(method)
    if not isinstance(program, str) or not program:
        return []
    found = Path(program).expanduser().exists() if _looks_like_path(program) else shutil.which(program)
    if found:
        return []
    return [
        ValidationIssue(
            "signing.program",
            f"signing program '{program}' is not available",
            "program.missing",
        )
    ]


ExternalCheck = Callable[[Fragment], Sequence[ValidationIssue]]

DEFAULT_EXTERNAL_CHECKS: Tuple[ExternalCheck, ...] = (check_referenced_files, check_signing_program)


class Validator:
    """Validate fragments and report errors and warnings.

    Attributes:
        external_checks: Probes that touch the environment.
        timeout: Per-validation budget for all external checks (seconds).
        max_depth: Longest allowed inheritance chain, leaf included.
    """

    def __init__(
        self,
        external_checks: Optional[Sequence[ExternalCheck]] = None,
        timeout: float = 0.05,
        run_external_checks: bool = True,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ) -> None:
        self.external_checks: Tuple[ExternalCheck, ...] = (
            tuple(external_checks) if external_checks is not None else DEFAULT_EXTERNAL_CHECKS
        )
        self.timeout = timeout
        self.run_external_checks = run_external_checks
        self.max_depth = max_depth
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()

    def validate(
        self,
        fragment: Fragment,
        *,
        reference_lookup: Optional[ReferenceLookup] = None,
        parent_lookup: Optional[ParentLookup] = None,
        descendant_depth: int = 0,
    ) -> ValidationResult:
        """Run all stages against ``fragment``.

        Args:
            fragment: Fragment to check; never modified.
            reference_lookup: Optional predicate telling whether a fragment
                identifier exists; enables the dangling ``extends`` check.
            parent_lookup: Optional map from an identifier to its parent;
                enables the cycle and depth checks on the ``extends`` chain.
            descendant_depth: Generations of stored fragments that already
                extend ``fragment``; they count against the depth limit.

        Returns:
            ValidationResult with every error and warning found.
        """
        result = ValidationResult()
        self._check_identifier(fragment, result)
        self._check_required_sections(fragment, result)
        self._check_fields(fragment, result)
        self._check_cross_fields(fragment, result, reference_lookup)
        if parent_lookup is not None:
            self._check_chain(fragment, result, parent_lookup, descendant_depth)
        self._check_rules(fragment, result)
        if self.run_external_checks and self.external_checks:
            self._check_external(fragment, result)
        logger.debug(
            "Validated fragment %r: %d error(s), %d warning(s)",
            fragment.id,
            len(result.errors),
            len(result.warnings),
        )
        return result

    # ------------------------------------------------------------------
    # Stage 1
    # ------------------------------------------------------------------
    def _check_identifier(self, fragment: Fragment, result: ValidationResult) -> None:
        identifier = fragment.id
        if not identifier:
            result.error("id", "identifier must not be empty", "identifier.empty")
            return
        if len(identifier) > MAX_IDENTIFIER_LENGTH:
            result.error(
                "id",
                f"identifier is longer than {MAX_IDENTIFIER_LENGTH} characters",
                "identifier.too_long",
                suggest_identifier(identifier),
            )
        if IDENTIFIER_PATTERN.match(identifier) is None:
            result.error(
                "id",
                "identifier may only contain letters, digits, '-' and '_' "
                "and must start with a letter or digit",
                "identifier.charset",
                suggest_identifier(identifier),
            )
        if identifier.lower() in RESERVED_IDENTIFIERS:
            result.error(
                "id",
                f"'{identifier}' is a reserved name",
                "identifier.reserved",
                f"{identifier}-profile",
            )

    # ------------------------------------------------------------------
    # Stage 2
    # ------------------------------------------------------------------
    def _check_required_sections(self, fragment: Fragment, result: ValidationResult) -> None:
        if fragment.abstract or fragment.sections.get("identity"):
            return
        if fragment.extends:
            message = f"no identity section; it must be inherited from '{fragment.extends}'"
        else:
            message = "no identity section; git user name and email will be unset"
        result.warn("identity", message, "identity.missing")

    # ------------------------------------------------------------------
    # Stage 3
    # ------------------------------------------------------------------
    def _check_fields(self, fragment: Fragment, result: ValidationResult) -> None:
        for section_name, section in fragment.sections.items():
            if section_name in RESERVED_DOCUMENT_KEYS:
                result.error(
                    section_name,
                    f"'{section_name}' is reserved and cannot be used as a section name",
                    "section.reserved",
                )
                continue
            if not isinstance(section, dict):
                result.error(section_name, "section must be a table", "section.type")
                continue
            if section_name not in KNOWN_SECTIONS:
                result.warn(
                    section_name,
                    f"unknown section '{section_name}'",
                    "section.unknown",
                    _closest(section_name, KNOWN_SECTIONS),
                )
            schema = SECTION_SCHEMAS.get(section_name)
            for key, value in section.items():
                path = f"{section_name}.{key}"
                if not self._check_value_type(path, value, result):
                    continue
                if schema is None:
                    continue
                spec = schema.get(key)
                if spec is None:
                    result.warn(path, f"unknown key '{key}'", "field.unknown", _closest(key, schema))
                    continue
                self._check_field(path, value, spec, result)

    def _check_value_type(self, path: str, value: Any, result: ValidationResult, depth: int = 0) -> bool:
        if value is None:
            result.error(path, "null values cannot be stored", "field.null")
            return False
        if isinstance(value, SCALAR_TYPES):
            return True
        if isinstance(value, list) and depth == 0:
            ok = True
            for index, item in enumerate(value):
                if not isinstance(item, SCALAR_TYPES):
                    result.error(f"{path}[{index}]", "list items must be scalars", "field.type")
                    ok = False
            return ok
        if isinstance(value, dict) and depth < 2:
            ok = True
            for key, item in value.items():
                ok = self._check_value_type(f"{path}.{key}", item, result, depth + 1) and ok
            return ok
        result.error(path, f"unsupported value type {type(value).__name__}", "field.type")
        return False

    def _check_field(self, path: str, value: Any, spec: FieldSpec, result: ValidationResult) -> None:
        if spec.kind == "bool":
            if not isinstance(value, bool):
                result.error(path, "expected true or false", "field.type")
            return
        if not isinstance(value, str):
            result.error(path, "expected a string", "field.type")
            return
        if len(value) > spec.max_length:
            result.error(
                path,
                f"value is longer than {spec.max_length} characters",
                "field.too_long",
                value[: spec.max_length],
            )
        if spec.kind == "email" and not EMAIL_RE.match(value):
            stripped = value.strip()
            result.error(
                path,
                f"'{value}' is not a valid email address",
                "field.format",
                stripped if stripped != value and EMAIL_RE.match(stripped) else None,
            )
        elif spec.kind == "enum" and value not in spec.choices:
            result.error(
                path,
                f"'{value}' is not one of: {', '.join(spec.choices)}",
                "field.choice",
                _closest(value.lower(), spec.choices),
            )

    # ------------------------------------------------------------------
    # Stage 4
    # ------------------------------------------------------------------
    def _check_cross_fields(
        self,
        fragment: Fragment,
        result: ValidationResult,
        reference_lookup: Optional[ReferenceLookup],
    ) -> None:
        signing = fragment.sections.get("signing")
        if isinstance(signing, dict):
            method = signing.get("method")
            key_field = SIGNING_KEY_FIELDS.get(method) if isinstance(method, str) else None
            if key_field and not signing.get(key_field):
                message = f"signing method '{method}' requires signing.{key_field}"
                if fragment.extends:
                    # The parent chain may supply the key; resolution re-checks.
                    result.warn(f"signing.{key_field}", message, "signing.key_missing")
                else:
                    result.error(f"signing.{key_field}", message, "signing.key_missing")

        extends = fragment.extends
        if extends is None:
            return
        if extends == fragment.id:
            result.error("extends", "a fragment cannot extend itself", "extends.self")
            return
        if not extends or IDENTIFIER_PATTERN.match(extends) is None:
            result.error(
                "extends",
                f"'{extends}' is not a valid fragment identifier",
                "extends.invalid",
                suggest_identifier(extends),
            )
            return
        if reference_lookup is not None and not reference_lookup(extends):
            result.error(
                "extends",
                f"parent fragment '{extends}' does not exist",
                "extends.missing",
            )

    def _check_chain(
        self,
        fragment: Fragment,
        result: ValidationResult,
        parent_lookup: ParentLookup,
        descendant_depth: int,
    ) -> None:
        """Walk the ``extends`` chain as it would look once ``fragment`` is stored."""
        extends = fragment.extends
        if extends == fragment.id or (extends and IDENTIFIER_PATTERN.match(extends) is None):
            return  # reported by stage 4
        chain = [fragment.id]
        current = extends
        while current and len(chain) + descendant_depth <= self.max_depth:
            if current in chain:
                result.error(
                    "extends",
                    f"inheritance cycle: {' -> '.join(chain + [current])}",
                    "extends.cycle",
                )
                return
            chain.append(current)
            current = parent_lookup(current)
        if len(chain) + descendant_depth > self.max_depth:
            result.error(
                "extends",
                f"inheritance chain exceeds maximum depth {self.max_depth}: {' -> '.join(chain)}",
                "extends.depth",
            )

    # ------------------------------------------------------------------
    # Stage 5
    # ------------------------------------------------------------------
    def _check_rules(self, fragment: Fragment, result: ValidationResult) -> None:
        if fragment.rules and fragment.abstract:
            result.warn(
                "rules",
                "abstract fragments are never detected; their rules only serve inheritance",
                "rules.abstract",
            )
        for rule_index, rule in enumerate(fragment.rules):
            rule_path = f"rules[{rule_index}]"
            if not rule.when:
                result.error(f"{rule_path}.when", "a match rule needs at least one clause", "rule.empty")
                continue
            for clause_index, clause in enumerate(rule.when):
                clause_path = f"{rule_path}.when[{clause_index}]"
                if clause.kind in GLOB_MATCHER_KINDS:
                    problem = glob_error(clause.pattern)
                    if problem:
                        result.error(f"{clause_path}.pattern", problem, "rule.glob")
                elif clause.kind == "config" and not clause.key.strip():
                    result.error(f"{clause_path}.key", "config key must not be empty", "rule.config_key")

    # ------------------------------------------------------------------
    # External checks
    # ------------------------------------------------------------------
    def _get_executor(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=4, thread_name_prefix="gitprofiles-check"
                )
            return self._executor

    def _check_external(self, fragment: Fragment, result: ValidationResult) -> None:
        executor = self._get_executor()
        snapshot = fragment.model_copy(deep=True)
        pending: List[Tuple[str, Future]] = [
            (getattr(check, "__name__", repr(check)), executor.submit(check, snapshot))
            for check in self.external_checks
        ]
        deadline = time.monotonic() + self.timeout
        for name, future in pending:
            remaining = max(0.0, deadline - time.monotonic())
            try:
                issues = future.result(timeout=remaining)
            except TimeoutError:
                future.cancel()
                result.warn("external", str(Timeout(name, self.timeout)), Timeout.code)
                logger.debug("External check %s timed out", name)
                continue
            except Exception as exc:  # noqa: BLE001
                result.warn("external", f"check '{name}' failed: {exc}", "check.failed")
                logger.debug("External check %s failed: %s", name, exc)
                continue
            result.warnings.extend(issues)

    def close(self) -> None:
        """Shut down the worker threads used for external checks."""
        with self._executor_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=False, cancel_futures=True)
                self._executor = None
