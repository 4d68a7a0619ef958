"""Host-local sandbox: a private copy of the source tree per architecture.

Commands run directly on the host inside the copied tree. Isolation is at
the filesystem level only; use the Docker provider for toolchain isolation.
"""

from __future__ import annotations

import shutil
import sys
import tempfile
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from crossbake.backends.base import CommandResult, LineSink, SandboxHandle, resolve_in_root
from crossbake.backends.process import run_streaming
from crossbake.errors import BackendExecutionError
from crossbake.models import Architecture
from crossbake.source import SourceTree


@dataclass(slots=True)
class LocalSandboxProvider:
    source: SourceTree
    workspace: Path | None = None
    keep: bool = False
    name: str = "local"

    def acquire(self, architecture: Architecture) -> SandboxHandle:
        self._ensure_local_prerequisites()
        parent = Path(self.workspace) if self.workspace is not None else None
        if parent is not None:
            parent.mkdir(parents=True, exist_ok=True)
        scratch = Path(
            tempfile.mkdtemp(
                prefix=f"crossbake-{architecture.name}-",
                dir=str(parent) if parent is not None else None,
            )
        )
        root = scratch / "src"
        try:
            self.source.materialize(root)
        except BaseException:
            shutil.rmtree(scratch, ignore_errors=True)
            raise
        return SandboxHandle(
            provider=self.name,
            identifier=f"{architecture.name}-{uuid.uuid4().hex[:8]}",
            architecture=architecture,
            root=root,
            workdir=str(root),
        )

    def release(self, handle: SandboxHandle) -> None:
        if not self.keep:
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
        return run_streaming(
            argv,
            cwd=handle.root,
            env={"CROSSBAKE_ARCH": handle.architecture.name, **dict(env or {})},
            timeout=timeout,
            tail_lines=tail_lines,
            on_line=on_line,
        )

    def exists(self, handle: SandboxHandle, path: str | Path) -> bool:
        return resolve_in_root(handle, path).exists()

    def artifact_path(self, handle: SandboxHandle, relative: str) -> Path:
        return handle.root / relative

    def _ensure_local_prerequisites(self) -> None:
        if not sys.platform.startswith("linux"):
            raise BackendExecutionError(
                "Local sandbox requires a Linux host.",
                hint="Use the Docker provider on non-Linux systems.",
                context={"backend": self.name, "operation": "acquire"},
            )
