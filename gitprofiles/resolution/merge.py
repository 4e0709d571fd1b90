"""Deep merge of section maps with per-field origin tracking.

Merge policy:
    - dict + dict: recursive merge by key, child wins on collision
    - list: full replacement, never concatenated
    - scalar: direct replacement
    - type change (dict <-> non-dict): the child's value replaces the parent's

Inputs are never mutated. Alongside the merged map, an ``origins`` map
records which fragment supplied each leaf value, keyed by dotted path.
"""

from copy import deepcopy
from typing import Any, Dict, Tuple

Sections = Dict[str, Dict[str, Any]]
Origins = Dict[str, str]


def _forget(origins: Origins, prefix: str) -> None:
    stale = [path for path in origins if path == prefix or path.startswith(prefix + ".")]
    for path in stale:
        del origins[path]


def _take(value: Any, path: str, source: str, origins: Origins) -> Any:
    """Copy ``value`` and record ``source`` as origin of every leaf under ``path``."""
    if isinstance(value, dict):
        if not value:
            origins[path] = source
        return {key: _take(item, f"{path}.{key}", source, origins) for key, item in value.items()}
    origins[path] = source
    return deepcopy(value)


def _merge_value(base: Any, override: Any, path: str, source: str, origins: Origins) -> Any:
    if isinstance(base, dict) and isinstance(override, dict):
        merged = dict(base)
        if override:
            # An empty table is only its own leaf until something fills it.
            origins.pop(path, None)
        for key, value in override.items():
            child_path = f"{path}.{key}"
            if key in merged:
                merged[key] = _merge_value(merged[key], value, child_path, source, origins)
            else:
                merged[key] = _take(value, child_path, source, origins)
        return merged
    _forget(origins, path)
    return _take(override, path, source, origins)


def merge_sections(
    base: Sections, override: Sections, source: str, origins: Origins
) -> Tuple[Sections, Origins]:
    """Apply ``override`` (from fragment ``source``) on top of ``base``.

    Args:
        base: Sections merged so far (root side of the chain).
        override: Sections of the next fragment towards the leaf.
        source: Identifier of the fragment owning ``override``.
        origins: Origins of ``base``; not modified.

    Returns:
        Tuple of the merged sections and their updated origins.
    """
    new_origins = dict(origins)
    merged: Sections = {name: section for name, section in base.items()}
    for name, section in override.items():
        if name in merged:
            merged[name] = _merge_value(merged[name], section, name, source, new_origins)
        else:
            merged[name] = _take(section, name, source, new_origins)
    return merged, new_origins
