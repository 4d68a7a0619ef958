"""Docker-backed sandbox: one long-lived container per architecture.

The private source copy lives on the host and is bind-mounted at
``mount_point``; commands run through ``docker exec``. Releasing the handle
force-removes the container, which also reaps any process a timed-out
stage left behind.
"""

from __future__ import annotations

import shutil
import subprocess
import tempfile
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from crossbake.backends.base import CommandResult, LineSink, SandboxHandle, resolve_in_root
from crossbake.backends.process import run_streaming
from crossbake.errors import BackendExecutionError
from crossbake.models import Architecture
from crossbake.source import SourceTree

EXISTS_TIMEOUT = 30.0


@dataclass(slots=True)
class DockerSandboxProvider:
    source: SourceTree
    images: Mapping[str, str] = field(default_factory=dict)
    workspace: Path | None = None
    docker: str = "docker"
    mount_point: str = "/src"
    extra_args: list[str] = field(default_factory=list)
    name: str = "docker"
    _containers: dict[str, Path] = field(default_factory=dict, init=False, repr=False)

    def image_for(self, architecture: Architecture) -> str:
        image = self.images.get(architecture.name) or architecture.image
        if not image:
            raise BackendExecutionError(
                "No container image configured for architecture.",
                hint="Set `image` on the architecture or pass an images mapping.",
                context={"backend": self.name, "architecture": architecture.name},
            )
        return image

    def acquire(self, architecture: Architecture) -> SandboxHandle:
        self._ensure_docker_available()
        image = self.image_for(architecture)
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
        container = f"crossbake-{architecture.name}-{uuid.uuid4().hex[:8]}"
        try:
            self.source.materialize(root)
            self._docker(
                "run",
                "--detach",
                "--name",
                container,
                "--volume",
                f"{root}:{self.mount_point}",
                "--workdir",
                self.mount_point,
                "--env",
                f"CROSSBAKE_ARCH={architecture.name}",
                *self.extra_args,
                image,
                "sleep",
                "infinity",
            )
        except BaseException:
            shutil.rmtree(scratch, ignore_errors=True)
            raise
        self._containers[container] = scratch
        return SandboxHandle(
            provider=self.name,
            identifier=container,
            architecture=architecture,
            root=root,
            workdir=self.mount_point,
        )

    def release(self, handle: SandboxHandle) -> None:
        scratch = self._containers.pop(handle.identifier, handle.root.parent)
        try:
            subprocess.run(
                [self.docker, "rm", "--force", handle.identifier],
                capture_output=True,
                text=True,
                check=False,
            )
        finally:
            shutil.rmtree(scratch, ignore_errors=True)

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
        env_args: list[str] = []
        for key, value in sorted(dict(env or {}).items()):
            env_args.extend(["--env", f"{key}={value}"])
        command = (
            self.docker,
            "exec",
            "--workdir",
            handle.workdir,
            *env_args,
            handle.identifier,
            *argv,
        )
        return run_streaming(command, timeout=timeout, tail_lines=tail_lines, on_line=on_line)

    def exists(self, handle: SandboxHandle, path: str | Path) -> bool:
        host_path = resolve_in_root(handle, path)
        if host_path.is_relative_to(handle.root):
            return host_path.exists()
        result = run_streaming(
            (self.docker, "exec", handle.identifier, "test", "-e", str(path)),
            timeout=EXISTS_TIMEOUT,
            tail_lines=5,
        )
        return result.exit_code == 0

    def artifact_path(self, handle: SandboxHandle, relative: str) -> Path:
        return handle.root / relative

    def _docker(self, *argv: str) -> str:
        command = [self.docker, *argv]
        result = subprocess.run(command, capture_output=True, text=True, check=False)
        if result.returncode != 0:
            raise BackendExecutionError(
                "docker command failed.",
                hint="Check that the daemon is running and the image is pullable.",
                context={
                    "backend": self.name,
                    "returncode": str(result.returncode),
                    "stderr": result.stderr[:2000] if result.stderr else "",
                    "command": " ".join(command),
                },
            )
        return result.stdout.strip()

    def _ensure_docker_available(self) -> None:
        if shutil.which(self.docker) is None:
            raise BackendExecutionError(
                f"Docker sandbox requires `{self.docker}` in PATH.",
                hint="Install Docker (or Podman with a docker shim) before running builds.",
                context={"backend": self.name, "operation": "acquire"},
            )
