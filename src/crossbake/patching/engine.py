"""Patch engine for third-party build definitions.

Every operation is idempotent-safe: re-applying a patch to an already
patched tree is either a no-op or a ``PatchConflict``, never a second edit.
"""

from __future__ import annotations

import os
import tempfile
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from crossbake.errors import PatchConflict, PatchError, PatchTargetMissing
from crossbake.models import PATCH_OPS, Patch
from crossbake.patching.diff import apply_hunks, parse_unified_diff

PatchOutcomeKind = Literal["applied", "noop"]


@dataclass(frozen=True, slots=True)
class PatchOutcome:
    patch: Patch
    outcome: PatchOutcomeKind


def apply_patch(patch: Patch, source_root: str | Path) -> PatchOutcome:
    target = _resolve_target(patch, Path(source_root))
    raw = _read_text(target, patch)
    crlf = "\r\n" in raw and raw.count("\r\n") == raw.count("\n")
    original = raw.replace("\r\n", "\n") if crlf else raw

    if patch.op == "append-line":
        updated = _append_line(original, patch)
    elif patch.op == "replace-region":
        updated = _replace_region(original, patch)
    elif patch.op == "apply-diff":
        updated = _apply_diff(original, patch)
    else:
        raise PatchError(
            f"Unsupported patch operation: {patch.op}",
            context={"patch": patch.label, "supported": ", ".join(PATCH_OPS)},
        )

    if updated is None:
        return PatchOutcome(patch=patch, outcome="noop")
    _write_atomic(target, updated.replace("\n", "\r\n") if crlf else updated)
    return PatchOutcome(patch=patch, outcome="applied")


def apply_patches(
    patches: Iterable[Patch],
    source_root: str | Path,
    *,
    architecture: str,
) -> tuple[PatchOutcome, ...]:
    """Apply, in declaration order, every patch that targets *architecture*."""
    return tuple(
        apply_patch(patch, source_root) for patch in patches if patch.applies_to(architecture)
    )


def _resolve_target(patch: Patch, source_root: Path) -> Path:
    root = source_root.resolve()
    target = (root / patch.target).resolve()
    if not target.is_relative_to(root):
        raise PatchError(
            "Patch target escapes the source tree.",
            context={"patch": patch.label, "target": patch.target},
        )
    if not target.is_file():
        raise PatchTargetMissing(
            "Patch target file does not exist.",
            hint="Check the path relative to the source root and the pinned revision.",
            context={"patch": patch.label, "target": patch.target, "root": str(root)},
        )
    return target


def _append_line(original: str, patch: Patch) -> str | None:
    line = patch.payload.rstrip("\n")
    if "\n" in line:
        raise PatchError(
            "append-line payload must be a single line.",
            hint="Use apply-diff for multi-line edits.",
            context={"patch": patch.label},
        )
    if line in original.splitlines():
        return None
    separator = "" if not original or original.endswith("\n") else "\n"
    return f"{original}{separator}{line}\n"


def _replace_region(original: str, patch: Patch) -> str | None:
    if not patch.payload:
        raise PatchError(
            "replace-region requires a non-empty region to replace.",
            context={"patch": patch.label},
        )
    if patch.payload in patch.replacement and patch.replacement in original:
        return None
    occurrences = original.count(patch.payload)
    if occurrences == 1:
        return original.replace(patch.payload, patch.replacement, 1)
    if occurrences == 0 and patch.replacement and patch.replacement in original:
        return None
    raise PatchConflict(
        "Region to replace was not found exactly once.",
        hint="The file changed upstream; refresh the patch against the pinned revision.",
        context={
            "patch": patch.label,
            "target": patch.target,
            "occurrences": str(occurrences),
        },
    )


def _apply_diff(original: str, patch: Patch) -> str:
    hunks = parse_unified_diff(patch.payload)
    updated = apply_hunks(original, hunks)
    if updated is not None:
        return updated
    if apply_hunks(original, tuple(hunk.reversed() for hunk in hunks)) is not None:
        raise PatchConflict(
            "Diff is already applied to the target file.",
            hint="Start from a pristine source tree instead of re-patching in place.",
            context={"patch": patch.label, "target": patch.target},
        )
    if any(not hunk.old_lines for hunk in hunks):
        raise PatchError(
            "Diff inserts lines without any context to anchor them.",
            hint="Regenerate the diff with context lines (diff -u), not -U0.",
            context={"patch": patch.label, "target": patch.target},
        )
    raise PatchConflict(
        "Diff context does not match the target file.",
        hint="The file changed upstream; refresh the patch against the pinned revision.",
        context={"patch": patch.label, "target": patch.target},
    )


def _write_atomic(target: Path, content: str) -> None:
    fd, temp_name = tempfile.mkstemp(prefix=f".{target.name}.", dir=str(target.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
            handle.write(content)
        os.chmod(temp_name, target.stat().st_mode & 0o7777)
        os.replace(temp_name, target)
    except BaseException:
        Path(temp_name).unlink(missing_ok=True)
        raise


def _read_text(target: Path, patch: Patch) -> str:
    try:
        return target.read_bytes().decode("utf-8")
    except UnicodeDecodeError as exc:
        raise PatchError(
            "Patch target is not UTF-8 text.",
            hint="Only text build definitions can be patched.",
            context={"patch": patch.label, "target": patch.target, "error": str(exc)},
        ) from exc
