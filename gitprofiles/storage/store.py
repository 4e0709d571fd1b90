"""File-per-fragment store with atomic writes and a trash directory.

Each fragment lives in ``<root>/<identifier><suffix>`` where the suffix
selects the encoding (``.toml``, ``.json``, ``.json5``, ``.yaml``/``.yml``).
Writes go through a temporary file and an atomic rename, so readers never
observe a partially written fragment. Writers to the same identifier are
serialized in-process by a per-identifier lock and across processes by an
advisory file lock under ``<root>/.locks``.

Deleted fragments are moved to the trash directory with a timestamp
suffix and can be restored with `FragmentStore.restore`.
"""

import hashlib
import logging
import shutil
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Tuple

from gitprofiles.config.schema import IDENTIFIER_PATTERN, MAX_IDENTIFIER_LENGTH, Fragment
from gitprofiles.errors import NotFound, ParseError, StorageError, ValidationFailed
from gitprofiles.storage.codec import (
    ENCODING_PRECEDENCE,
    ENCODING_SUFFIX,
    SUFFIX_TO_ENCODING,
    decode_text,
    document_to_fragment,
    encode_text,
    fragment_to_document,
)
from gitprofiles.utils.fs import atomic_write_text, file_lock
from gitprofiles.validation.result import ValidationResult
from gitprofiles.validation.validator import Validator

logger = logging.getLogger("gitprofiles.storage")

LOCK_DIR_NAME = ".locks"
TRASH_TIMESTAMP_FORMAT = "%Y%m%dT%H%M%S%fZ"


class CacheInvalidator(Protocol):
    """Cache side of the store: notified whenever the fragment set changes."""

    def invalidate_fragment(self, fragment_id: str) -> int: ...

    def clear(self) -> None: ...


def _is_fragment_stem(stem: str) -> bool:
    return (
        bool(stem)
        and len(stem) <= MAX_IDENTIFIER_LENGTH
        and IDENTIFIER_PATTERN.match(stem) is not None
    )


class FragmentStore:
    """Durable storage for fragments, one file per identifier.

    Args:
        root: Fragment directory; created on first write.
        trash_dir: Destination for deleted fragments. Defaults to
            ``<root>/.trash``.
        default_encoding: Encoding for fragments that do not exist yet.
        validator: Validator run by `save`; external checks are the
            caller's choice.
        cache: Detection cache notified of every mutation.
    """

    def __init__(
        self,
        root: Path,
        *,
        trash_dir: Optional[Path] = None,
        default_encoding: str = "toml",
        validator: Optional[Validator] = None,
        cache: Optional[CacheInvalidator] = None,
    ) -> None:
        if default_encoding not in ENCODING_SUFFIX:
            raise ValueError(f"unsupported encoding: {default_encoding}")
        self.root = Path(root).expanduser()
        self.trash_dir = Path(trash_dir).expanduser() if trash_dir is not None else self.root / ".trash"
        self.default_encoding = default_encoding
        self.validator = validator if validator is not None else Validator(run_external_checks=False)
        self.cache = cache
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Paths and locking
    # ------------------------------------------------------------------
    def _identifier_lock(self, identifier: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(identifier)
            if lock is None:
                lock = self._locks[identifier] = threading.Lock()
            return lock

    def _scan(self) -> Dict[str, List[Path]]:
        """Map each identifier to its files, in encoding precedence order."""
        try:
            entries = list(self.root.iterdir()) if self.root.is_dir() else []
        except OSError as e:
            raise StorageError(str(self.root), str(e)) from e
        found: Dict[str, List[Path]] = {}
        for entry in entries:
            suffix = entry.suffix.lower()
            if suffix not in SUFFIX_TO_ENCODING or not entry.is_file():
                continue
            if not _is_fragment_stem(entry.stem):
                logger.debug("Skipping %s: not a valid fragment name", entry.name)
                continue
            found.setdefault(entry.stem, []).append(entry)
        for paths in found.values():
            paths.sort(key=lambda path: ENCODING_PRECEDENCE.index(path.suffix.lower()))
        return found

    def path_for(self, identifier: str) -> Optional[Path]:
        """Return the file backing ``identifier``, or None if it does not exist."""
        if not _is_fragment_stem(identifier):
            return None
        candidates = [
            self.root / f"{identifier}{suffix}"
            for suffix in ENCODING_PRECEDENCE
            if (self.root / f"{identifier}{suffix}").is_file()
        ]
        if len(candidates) > 1:
            logger.warning(
                "Fragment %s exists in several encodings; using %s and ignoring %s",
                identifier,
                candidates[0].name,
                ", ".join(path.name for path in candidates[1:]),
            )
        return candidates[0] if candidates else None

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------
    def list(self) -> List[str]:
        """Return all fragment identifiers in stable sorted order.

        Raises:
            StorageError: If the fragment directory cannot be read.
        """
        return sorted(self._scan())

    def exists(self, identifier: str) -> bool:
        return self.path_for(identifier) is not None

    def load(self, identifier: str) -> Fragment:
        """Read and decode one fragment.

        Raises:
            NotFound: If no file backs ``identifier``.
            ParseError: If the file content is not a valid fragment.
            StorageError: If the file cannot be read.
        """
        path = self.path_for(identifier)
        if path is None:
            raise NotFound(identifier)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise NotFound(identifier) from e
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(str(path), str(e)) from e
        try:
            document = decode_text(text, SUFFIX_TO_ENCODING[path.suffix.lower()])
            return document_to_fragment(identifier, document)
        except ValueError as e:
            raise ParseError(identifier, str(path), str(e)) from e

    def fingerprint(self) -> str:
        """Digest of the fragment set (names, inodes, sizes and modification times).

        Changes whenever a fragment file is added, removed or rewritten. Every
        write renames a fresh file into place, so the inode changes even when
        a rewrite lands within the filesystem's timestamp granularity.
        """
        digest = hashlib.sha256()
        for identifier, paths in sorted(self._scan().items()):
            path = paths[0]
            try:
                stat = path.stat()
            except OSError:
                continue
            digest.update(
                f"{path.name}\0{stat.st_ino}\0{stat.st_size}\0{stat.st_mtime_ns}\n".encode("utf-8")
            )
        return digest.hexdigest()

    def chain_context(self, identifier: str) -> Tuple[Dict[str, Optional[str]], int]:
        """Inheritance facts needed to check a save of ``identifier``.

        Returns:
            The parent of every other readable fragment, and the number of
            generations of stored fragments below ``identifier``.
        """
        parents: Dict[str, Optional[str]] = {}
        for other in self.list():
            if other == identifier:
                continue
            try:
                parents[other] = self.load(other).extends
            except (NotFound, ParseError) as e:
                logger.debug("Skipping %s in inheritance check: %s", other, e)
        children: Dict[str, List[str]] = {}
        for child, parent in parents.items():
            if parent:
                children.setdefault(parent, []).append(child)

        height = 0
        seen = {identifier}
        frontier = [identifier]
        while True:
            frontier = [
                child for parent in frontier for child in children.get(parent, ()) if child not in seen
            ]
            if not frontier:
                return parents, height
            seen.update(frontier)
            height += 1

    # ------------------------------------------------------------------
    # Write side
    # ------------------------------------------------------------------
    def save(self, fragment: Fragment) -> ValidationResult:
        """Validate and atomically persist ``fragment``.

        The existing file's encoding is kept; new fragments use the
        store's default encoding. A save that would close an inheritance
        cycle or push any chain past the validator's depth limit fails.

        Returns:
            The validation result, which may carry warnings.

        Raises:
            ValidationFailed: If validation reports any error.
            StorageError: If the write fails.
        """
        parents, descendant_depth = self.chain_context(fragment.id)
        result = self.validator.validate(
            fragment,
            reference_lookup=self.exists,
            parent_lookup=parents.get,
            descendant_depth=descendant_depth,
        )
        if not result.ok:
            logger.info("Refusing to save invalid fragment %r: %d error(s)", fragment.id, len(result.errors))
            raise ValidationFailed(fragment.id, result.errors)

        identifier = fragment.id
        with self._identifier_lock(identifier):
            try:
                with file_lock(self.root / LOCK_DIR_NAME / f"{identifier}.lock"):
                    existing = self.path_for(identifier)
                    path = existing or self.root / f"{identifier}{ENCODING_SUFFIX[self.default_encoding]}"
                    encoding = SUFFIX_TO_ENCODING[path.suffix.lower()]
                    text = encode_text(fragment_to_document(fragment), encoding)
                    atomic_write_text(path, text)
            except (OSError, TimeoutError) as e:
                raise StorageError(str(self.root / identifier), str(e)) from e

        self._notify(identifier, rules_changed=bool(fragment.rules))
        logger.info("Saved fragment %s to %s", identifier, path.name)
        return result

    def delete(self, identifier: str) -> Path:
        """Move a fragment to the trash directory.

        Returns:
            Location of the trashed file.

        Raises:
            NotFound: If the fragment does not exist.
            StorageError: If the move fails.
        """
        with self._identifier_lock(identifier):
            try:
                with file_lock(self.root / LOCK_DIR_NAME / f"{identifier}.lock"):
                    path = self.path_for(identifier)
                    if path is None:
                        raise NotFound(identifier)
                    stamp = datetime.now(timezone.utc).strftime(TRASH_TIMESTAMP_FORMAT)
                    self.trash_dir.mkdir(parents=True, exist_ok=True)
                    target = self.trash_dir / f"{identifier}.{stamp}{path.suffix}"
                    shutil.move(str(path), str(target))
            except (OSError, TimeoutError) as e:
                raise StorageError(str(self.root / identifier), str(e)) from e

        self._notify(identifier, rules_changed=False)
        logger.info("Moved fragment %s to trash as %s", identifier, target.name)
        return target

    def trashed(self, identifier: str) -> List[Path]:
        """Trashed copies of ``identifier``, newest first."""
        if not self.trash_dir.is_dir():
            return []
        prefix = f"{identifier}."
        matches = [
            entry
            for entry in self.trash_dir.iterdir()
            if entry.name.startswith(prefix)
            and entry.suffix.lower() in SUFFIX_TO_ENCODING
            and entry.name[len(prefix):].split(".", 1)[0].endswith("Z")
        ]
        return sorted(matches, key=lambda entry: entry.name, reverse=True)

    def restore(self, identifier: str) -> Fragment:
        """Bring back the most recently trashed copy of ``identifier``.

        Raises:
            NotFound: If nothing is in the trash for ``identifier``.
            StorageError: If a live fragment with that identifier exists or
                the move fails.
        """
        with self._identifier_lock(identifier):
            try:
                with file_lock(self.root / LOCK_DIR_NAME / f"{identifier}.lock"):
                    candidates = self.trashed(identifier)
                    if not candidates:
                        raise NotFound(identifier)
                    if self.path_for(identifier) is not None:
                        raise StorageError(str(self.root / identifier), "a live fragment already exists")
                    source = candidates[0]
                    target = self.root / f"{identifier}{source.suffix}"
                    shutil.move(str(source), str(target))
            except (OSError, TimeoutError) as e:
                raise StorageError(str(self.root / identifier), str(e)) from e

        self._notify(identifier, rules_changed=True)
        logger.info("Restored fragment %s from %s", identifier, source.name)
        return self.load(identifier)

    def _notify(self, identifier: str, *, rules_changed: bool) -> None:
        if self.cache is None:
            return
        if rules_changed:
            # New or changed rules may outrank any cached detection.
            self.cache.clear()
        else:
            self.cache.invalidate_fragment(identifier)
