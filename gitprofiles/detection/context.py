"""Repository context used as detector input.

A `DetectionContext` is an immutable snapshot of where the user is: the
repository root, its remote URLs, the working directory, the hostname and
a lookup into ambient git configuration. `ContextBuilder` assembles one
from a filesystem path by walking up to the repository root and parsing
``.git/config`` directly, so no git subprocess is spawned on the hot path.
"""

import logging
import re
import socket
from dataclasses import dataclass, field
from functools import cached_property
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from gitprofiles.detection.patterns import normalize_remote_url
from gitprofiles.utils.paths import canonicalize_path, path_ancestors, path_components

logger = logging.getLogger("gitprofiles.detection.context")

ConfigLookup = Callable[[str], Optional[str]]
GitConfig = Dict[str, List[str]]

_SECTION_RE = re.compile(r'^\[\s*(?P<name>[A-Za-z0-9.-]+)(?:\s+"(?P<sub>(?:[^"\\]|\\.)*)")?\s*\]')
_ENTRY_RE = re.compile(r"^(?P<key>[A-Za-z][A-Za-z0-9-]*)\s*(?:=\s*(?P<value>.*))?$")


def _no_config(key: str) -> Optional[str]:
    return None


@dataclass(frozen=True)
class DetectionContext:
    """Snapshot of the environment the detector evaluates rules against.

    Attributes:
        repo_root: Canonical repository root, or None outside a repository.
        remotes: Normalized remote URLs.
        working_dir: Canonical working directory, if known.
        hostname: Current machine name.
        config_lookup: Returns an ambient configuration value by key.
    """

    repo_root: Optional[str] = None
    remotes: Tuple[str, ...] = ()
    working_dir: Optional[str] = None
    hostname: str = ""
    config_lookup: ConfigLookup = field(default=_no_config, compare=False, repr=False)

    @classmethod
    def create(
        cls,
        *,
        repo_root: Union[str, Path, None] = None,
        remotes: Iterable[str] = (),
        working_dir: Union[str, Path, None] = None,
        hostname: str = "",
        config: Union[Mapping[str, str], ConfigLookup, None] = None,
    ) -> "DetectionContext":
        """Build a context, canonicalizing paths and normalizing remotes.

        Args:
            repo_root: Repository root path.
            remotes: Raw remote URLs in any supported syntax.
            working_dir: Working directory; defaults to ``repo_root``.
            hostname: Machine name.
            config: Mapping or callable for ``config`` matchers.
        """
        root = canonicalize_path(repo_root) if repo_root is not None else None
        work = canonicalize_path(working_dir) if working_dir is not None else root
        normalized: List[str] = []
        for url in remotes:
            value = normalize_remote_url(url)
            if value and value not in normalized:
                normalized.append(value)
        if config is None:
            lookup: ConfigLookup = _no_config
        elif callable(config):
            lookup = config
        else:
            snapshot = dict(config)
            lookup = snapshot.get
        return cls(
            repo_root=root,
            remotes=tuple(normalized),
            working_dir=work,
            hostname=hostname,
            config_lookup=lookup,
        )

    def lookup(self, key: str) -> Optional[str]:
        """Return the ambient configuration value for ``key``, if any."""
        return self.config_lookup(key)

    @property
    def location(self) -> Optional[str]:
        """Path used by path and directory matchers."""
        return self.working_dir or self.repo_root

    @cached_property
    def ancestors(self) -> Tuple[str, ...]:
        location = self.location
        return tuple(path_ancestors(location)) if location else ()

    @cached_property
    def components(self) -> Tuple[str, ...]:
        location = self.location
        return tuple(path_components(location)) if location else ()


def find_repo_root(start: Union[str, Path]) -> Optional[Path]:
    """Walk up from ``start`` to the nearest directory containing ``.git``.

    ``.git`` may be a directory or a worktree/submodule pointer file.
    """
    current = Path(canonicalize_path(start))
    if current.is_file():
        current = current.parent
    for candidate in (current, *current.parents):
        if (candidate / ".git").exists():
            return candidate
    return None


def _git_dir(repo_root: Path) -> Optional[Path]:
    dot_git = repo_root / ".git"
    if dot_git.is_dir():
        return dot_git
    if dot_git.is_file():
        try:
            content = dot_git.read_text(encoding="utf-8").strip()
        except OSError as e:
            logger.debug("Cannot read %s: %s", dot_git, e)
            return None
        if content.startswith("gitdir:"):
            target = Path(content[len("gitdir:"):].strip())
            if not target.is_absolute():
                target = repo_root / target
            return target
    return None


def _unquote(raw: str) -> str:
    value = raw.strip()
    # Strip trailing comments outside quotes.
    result: List[str] = []
    in_quotes = False
    escaped = False
    for char in value:
        if escaped:
            result.append({"n": "\n", "t": "\t"}.get(char, char))
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == '"':
            in_quotes = not in_quotes
        elif char in "#;" and not in_quotes:
            break
        else:
            result.append(char)
    return "".join(result).strip()


def parse_git_config(text: str) -> GitConfig:
    """Parse git-config syntax into ``section[.subsection].key`` -> values.

    Section and key names are lowercased as git does; subsection names keep
    their case. Repeated keys accumulate in file order. A key without
    ``=`` is a boolean true.
    """
    values: GitConfig = {}
    section: Optional[str] = None
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line[0] in "#;":
            continue
        header = _SECTION_RE.match(line)
        if header:
            section = header.group("name").lower()
            sub = header.group("sub")
            if sub is not None:
                section = f"{section}.{sub}"
            continue
        entry = _ENTRY_RE.match(line)
        if entry is None or section is None:
            continue
        key = f"{section}.{entry.group('key').lower()}"
        raw_value = entry.group("value")
        value = "true" if raw_value is None else _unquote(raw_value)
        values.setdefault(key, []).append(value)
    return values


def read_git_config(repo_root: Union[str, Path]) -> GitConfig:
    """Read the repository-local git configuration.

    Returns:
        Mapping of config keys to their values; empty when unreadable.
    """
    git_dir = _git_dir(Path(repo_root))
    if git_dir is None:
        return {}
    config_path = git_dir / "config"
    try:
        text = config_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Cannot read git config %s: %s", config_path, e)
        return {}
    return parse_git_config(text)


def remote_urls(config: GitConfig) -> List[str]:
    """Return fetch and push URLs of every remote, in file order."""
    urls: List[str] = []
    for key, values in config.items():
        if key.startswith("remote.") and (key.endswith(".url") or key.endswith(".pushurl")):
            urls.extend(values)
    return urls


class ContextBuilder:
    """Create `DetectionContext` objects from filesystem paths."""

    def __init__(
        self,
        hostname_provider: Callable[[], str] = socket.gethostname,
        config_reader: Callable[[Path], GitConfig] = read_git_config,
    ) -> None:
        self._hostname_provider = hostname_provider
        self._config_reader = config_reader

    def build(self, path: Union[str, Path]) -> DetectionContext:
        """Inspect ``path`` and return the context for detection."""
        working_dir = canonicalize_path(path)
        repo_root = find_repo_root(working_dir)
        config: GitConfig = self._config_reader(repo_root) if repo_root is not None else {}

        def lookup(key: str) -> Optional[str]:
            values = config.get(key) or config.get(key.lower())
            return values[-1] if values else None

        context = DetectionContext.create(
            repo_root=repo_root,
            remotes=remote_urls(config),
            working_dir=working_dir,
            hostname=self._hostname_provider(),
            config=lookup,
        )
        logger.debug(
            "Built context for %s: root=%s remotes=%s", working_dir, context.repo_root, context.remotes
        )
        return context
