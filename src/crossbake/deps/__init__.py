"""Dependency model for static library link ordering."""

from .graph import (
    LinkEntry,
    UnknownOverrideWarning,
    index_dependencies,
    link_plan,
    resolve_link_order,
    warn_unknown_overrides,
)

__all__ = [
    "LinkEntry",
    "UnknownOverrideWarning",
    "index_dependencies",
    "link_plan",
    "resolve_link_order",
    "warn_unknown_overrides",
]
