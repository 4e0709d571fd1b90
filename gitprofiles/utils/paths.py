"""Path canonicalization helpers."""

from pathlib import Path
from typing import List, Union


def canonicalize_path(path: Union[str, Path]) -> str:
    """Normalize a path into one comparable form.

    The path is tilde-expanded, made absolute, symlinks are resolved where
    they exist, and separators are forward slashes.

    Examples:
        >>> canonicalize_path("/srv/../srv/app/")
        '/srv/app'
    """
    return Path(path).expanduser().resolve(strict=False).as_posix()


def path_ancestors(canonical: str) -> List[str]:
    """Return ``canonical`` followed by each of its parents, innermost first.

    Examples:
        >>> path_ancestors("/home/me/work")
        ['/home/me/work', '/home/me', '/home', '/']
    """
    current = Path(canonical)
    result = [current.as_posix()]
    result.extend(parent.as_posix() for parent in current.parents)
    return result


def path_components(canonical: str) -> List[str]:
    """Return the named components of a canonical path (root excluded)."""
    path = Path(canonical)
    parts = list(path.parts)
    if path.anchor:
        parts = parts[1:]
    return parts
