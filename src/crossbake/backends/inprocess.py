"""In-process sandbox provider for testing and development.

Never invokes a toolchain. Each acquired sandbox is a scratch directory
seeded with the source tree (if any) and a fixed set of files standing in
for the toolchain sysroot. Commands are answered by a handler callable and
recorded per architecture, which lets tests assert exactly which stages ran.
"""

from __future__ import annotations

import shutil
import tempfile
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from crossbake.backends.base import CommandResult, LineSink, SandboxHandle, resolve_in_root
from crossbake.models import Architecture
from crossbake.source import SourceTree

CommandHandler = Callable[[SandboxHandle, tuple[str, ...]], CommandResult]


def succeed(handle: SandboxHandle, argv: tuple[str, ...]) -> CommandResult:
    return CommandResult(exit_code=0, output=f"ok: {' '.join(argv)}\n")


@dataclass(slots=True)
class InProcessSandboxProvider:
    source: SourceTree | None = None
    files: Mapping[str, bytes] = field(default_factory=dict)
    handler: CommandHandler = succeed
    workspace: Path | None = None
    name: str = "inprocess"
    commands: dict[str, list[tuple[str, ...]]] = field(default_factory=dict)
    acquired: list[str] = field(default_factory=list)
    released: list[str] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def acquire(self, architecture: Architecture) -> SandboxHandle:
        scratch = Path(
            tempfile.mkdtemp(
                prefix=f"crossbake-{architecture.name}-",
                dir=str(self.workspace) if self.workspace is not None else None,
            )
        )
        root = scratch / "src"
        if self.source is not None:
            self.source.materialize(root)
        else:
            root.mkdir()
        for relative, payload in self.files.items():
            target = root / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(payload)
        handle = SandboxHandle(
            provider=self.name,
            identifier=f"{architecture.name}-{scratch.name}",
            architecture=architecture,
            root=root,
            workdir="/src",
        )
        with self._lock:
            self.acquired.append(architecture.name)
            self.commands.setdefault(architecture.name, [])
        return handle

    def release(self, handle: SandboxHandle) -> None:
        with self._lock:
            self.released.append(handle.architecture.name)
        shutil.rmtree(handle.root.parent, ignore_errors=True)

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
        with self._lock:
            self.commands.setdefault(handle.architecture.name, []).append(argv)
        result = self.handler(handle, argv)
        lines = result.output.splitlines()
        if on_line is not None:
            for line in lines:
                on_line(line)
        tail = lines[-tail_lines:]
        return CommandResult(
            exit_code=result.exit_code,
            output="\n".join(tail) + ("\n" if tail else ""),
            timed_out=result.timed_out,
        )

    def exists(self, handle: SandboxHandle, path: str | Path) -> bool:
        return resolve_in_root(handle, path).exists()

    def artifact_path(self, handle: SandboxHandle, relative: str) -> Path:
        return handle.root / relative
