"""Source patching for third-party build definitions."""

from .diff import Hunk, apply_hunks, parse_unified_diff
from .engine import PatchOutcome, apply_patch, apply_patches

__all__ = [
    "Hunk",
    "PatchOutcome",
    "apply_hunks",
    "apply_patch",
    "apply_patches",
    "parse_unified_diff",
]
