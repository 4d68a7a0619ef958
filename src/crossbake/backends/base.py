"""Protocol for sandbox providers that host one architecture's build."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from crossbake.models import Architecture

LineSink = Callable[[str], None]


@dataclass(frozen=True, slots=True)
class SandboxHandle:
    """An acquired sandbox; ``root`` is the host-side view of its private source tree."""

    provider: str
    identifier: str
    architecture: Architecture
    root: Path
    workdir: str


@dataclass(frozen=True, slots=True)
class CommandResult:
    exit_code: int
    output: str
    timed_out: bool = False


class SandboxProvider(Protocol):
    name: str

    def acquire(self, architecture: Architecture) -> SandboxHandle:
        """Create an isolated environment seeded with the source tree and toolchain."""

    def release(self, handle: SandboxHandle) -> None:
        """Destroy the environment; must be safe to call on every exit path."""

    def execute(
        self,
        handle: SandboxHandle,
        argv: tuple[str, ...],
        *,
        timeout: float,
        tail_lines: int = 200,
        env: Mapping[str, str] | None = None,
        on_line: LineSink | None = None,
    ) -> CommandResult:
        """Run *argv* in the sandbox and return its exit code and bounded output tail."""

    def exists(self, handle: SandboxHandle, path: str | Path) -> bool:
        """Report whether *path* exists in the sandbox filesystem."""

    def artifact_path(self, handle: SandboxHandle, relative: str) -> Path:
        """Map a path relative to the source root to a host path."""


def resolve_in_root(handle: SandboxHandle, path: str | Path) -> Path:
    """Host path for *path*, treating absolute sandbox paths as rooted at ``workdir``."""
    candidate = Path(path)
    if candidate.is_absolute():
        try:
            return handle.root / candidate.relative_to(handle.workdir)
        except ValueError:
            return candidate
    return handle.root / candidate
