"""Inheritance resolution: chain walking, merging and store-wide audits."""

from .graph import InheritanceAudit, InheritanceGraph
from .merge import merge_sections
from .resolved import ResolvedConfiguration
from .resolver import DEFAULT_MAX_DEPTH, FragmentSource, InheritanceResolver

__all__ = [
    "DEFAULT_MAX_DEPTH",
    "FragmentSource",
    "InheritanceAudit",
    "InheritanceGraph",
    "InheritanceResolver",
    "ResolvedConfiguration",
    "merge_sections",
]
