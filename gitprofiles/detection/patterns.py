"""Glob compilation and remote URL normalization.

Globs follow shell semantics via :mod:`fnmatch`, where ``*`` also matches
``/``, so ``*org/*`` matches ``host.example/org/app``. Compiled patterns are
memoized because the detector evaluates the same patterns on every prompt
render.
"""

import fnmatch
import re
from functools import lru_cache
from typing import Optional, Pattern

_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*://")
# scp-like syntax: [user@]host:path, but not a Windows drive letter.
_SCP_RE = re.compile(r"^(?:[^@/\s]+@)?(?P<host>[^:/\s]{2,}):(?P<path>(?!//).*)$")
_PORT_RE = re.compile(r"^(?P<host>[^/:]+):\d+(?P<rest>/.*)?$")


@lru_cache(maxsize=4096)
def compile_glob(pattern: str) -> Pattern[str]:
    """Compile a shell glob into an anchored regular expression."""
    return re.compile(fnmatch.translate(pattern))


def glob_matches(pattern: str, text: str) -> bool:
    """Case-sensitive glob match of ``text`` against ``pattern``."""
    return compile_glob(pattern).match(text) is not None


def glob_error(pattern: str) -> Optional[str]:
    """Describe why ``pattern`` is not a usable glob, or return None.

    Rejected: empty or whitespace-only patterns, NUL characters and
    character classes opened with ``[`` but never closed.

    Examples:
        >>> glob_error("*org/*") is None
        True
        >>> glob_error("repo[abc")
        'unterminated character class at position 4'
    """
    if not pattern or not pattern.strip():
        return "pattern is empty"
    if "\x00" in pattern:
        return "pattern contains a NUL character"

    i, n = 0, len(pattern)
    while i < n:
        char = pattern[i]
        if char == "[":
            j = i + 1
            if j < n and pattern[j] == "!":
                j += 1
            if j < n and pattern[j] == "]":
                j += 1
            while j < n and pattern[j] != "]":
                j += 1
            if j >= n:
                return f"unterminated character class at position {i}"
            i = j + 1
            continue
        i += 1

    try:
        compile_glob(pattern)
    except re.error as exc:
        return f"pattern does not compile: {exc}"
    return None


def normalize_remote_url(url: str) -> str:
    """Canonicalize a remote URL for comparison.

    The protocol prefix and any credentials are stripped, ``user@host:path``
    is rewritten to ``host/path``, a numeric port is dropped and trailing
    ``/`` and ``.git`` are removed.

    Examples:
        >>> normalize_remote_url("git@github.com:Org/app.git")
        'github.com/Org/app'
        >>> normalize_remote_url("https://user@github.com/Org/app.git/")
        'github.com/Org/app'
        >>> normalize_remote_url("host.example/org/app")
        'host.example/org/app'
    """
    value = url.strip()
    if not value:
        return value

    scheme = _SCHEME_RE.match(value)
    if scheme:
        value = value[scheme.end():]
        authority, slash, rest = value.partition("/")
        if "@" in authority:
            authority = authority.rsplit("@", 1)[1]
        value = authority + slash + rest
        port = _PORT_RE.match(value)
        if port:
            value = port.group("host") + (port.group("rest") or "")
    else:
        scp = _SCP_RE.match(value)
        if scp:
            value = f"{scp.group('host')}/{scp.group('path').lstrip('/')}"

    value = value.rstrip("/")
    if value.endswith(".git"):
        value = value[: -len(".git")]
    return value.rstrip("/")
