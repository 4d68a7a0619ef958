"""Unified diff parsing and exact-context hunk application."""

from __future__ import annotations

import re
from dataclasses import dataclass

from crossbake.errors import PatchError

HUNK_HEADER = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")
NO_NEWLINE_MARKER = "\\ No newline at end of file"


@dataclass(frozen=True, slots=True)
class Hunk:
    old_start: int
    old_lines: tuple[str, ...]
    new_lines: tuple[str, ...]

    def reversed(self) -> Hunk:
        return Hunk(old_start=self.old_start, old_lines=self.new_lines, new_lines=self.old_lines)


def parse_unified_diff(payload: str) -> tuple[Hunk, ...]:
    """Parse a single-file unified diff into hunks with newline-terminated lines."""
    lines = payload.splitlines()
    hunks: list[Hunk] = []
    file_headers = 0
    index = 0
    while index < len(lines):
        line = lines[index]
        if line.startswith("+++ "):
            file_headers += 1
            index += 1
            continue
        match = HUNK_HEADER.match(line)
        if match is None:
            index += 1
            continue
        old_count = int(match.group(2)) if match.group(2) is not None else 1
        new_count = int(match.group(4)) if match.group(4) is not None else 1
        hunk, index = _read_hunk(lines, index + 1, int(match.group(1)), old_count, new_count)
        hunks.append(hunk)

    if file_headers > 1:
        raise PatchError(
            "Diff payload touches more than one file.",
            hint="Split multi-file diffs into one patch per target file.",
        )
    if not hunks:
        raise PatchError("Diff payload contains no hunks.")
    return tuple(hunks)


def apply_hunks(text: str, hunks: tuple[Hunk, ...]) -> str | None:
    """Return patched text, or None when any hunk's context does not match exactly."""
    lines = text.splitlines(keepends=True)
    placements: list[tuple[int, Hunk]] = []
    cursor = 0
    for hunk in hunks:
        position = _locate(lines, hunk, cursor)
        if position is None:
            return None
        placements.append((position, hunk))
        cursor = position + len(hunk.old_lines)

    for position, hunk in reversed(placements):
        lines[position : position + len(hunk.old_lines)] = list(hunk.new_lines)
    return "".join(lines)


def _locate(lines: list[str], hunk: Hunk, cursor: int) -> int | None:
    size = len(hunk.old_lines)
    if size == 0:
        # `@@ -0,0 @@` creates the content of an empty file; anything else has no anchor
        return 0 if not lines and hunk.old_start == 0 else None
    expected = max(hunk.old_start - 1, cursor)
    candidates = [expected, *range(cursor, len(lines) - size + 1)]
    for position in candidates:
        if position < cursor or position + size > len(lines):
            continue
        if tuple(lines[position : position + size]) == hunk.old_lines:
            return position
    return None


def _read_hunk(
    lines: list[str],
    index: int,
    old_start: int,
    old_count: int,
    new_count: int,
) -> tuple[Hunk, int]:
    old_lines: list[str] = []
    new_lines: list[str] = []
    while index < len(lines) and (len(old_lines) < old_count or len(new_lines) < new_count):
        line = lines[index]
        marker, body = (line[0], line[1:]) if line else (" ", "")
        if marker == " ":
            old_lines.append(body + "\n")
            new_lines.append(body + "\n")
        elif marker == "-":
            old_lines.append(body + "\n")
        elif marker == "+":
            new_lines.append(body + "\n")
        elif line == NO_NEWLINE_MARKER:
            _strip_last_newline(old_lines, new_lines, lines[index - 1][:1])
        else:
            raise PatchError(
                "Malformed hunk line in diff payload.",
                context={"line": line, "hunk_start": str(old_start)},
            )
        index += 1

    if index < len(lines) and lines[index] == NO_NEWLINE_MARKER:
        _strip_last_newline(old_lines, new_lines, lines[index - 1][:1])
        index += 1

    if len(old_lines) != old_count or len(new_lines) != new_count:
        raise PatchError(
            "Hunk is shorter than its header declares.",
            context={"hunk_start": str(old_start)},
        )
    return Hunk(old_start=old_start, old_lines=tuple(old_lines), new_lines=tuple(new_lines)), index


def _strip_last_newline(old_lines: list[str], new_lines: list[str], marker: str) -> None:
    if marker in (" ", "-") and old_lines:
        old_lines[-1] = old_lines[-1].removesuffix("\n")
    if marker in (" ", "+") and new_lines:
        new_lines[-1] = new_lines[-1].removesuffix("\n")
