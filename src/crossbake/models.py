"""Core typed dataclasses for architectures, dependencies, patches and build results."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

Libc = Literal["musl", "glibc"]
PatchOp = Literal["append-line", "replace-region", "apply-diff"]
BuildStatus = Literal["success", "build_failed", "verify_failed", "verify_inconclusive"]
PipelineState = Literal["pending", "patching", "configuring", "building", "verifying", "done"]
Stage = Literal["configure", "compile", "link"]

PATCH_OPS: tuple[PatchOp, ...] = ("append-line", "replace-region", "apply-diff")
PIPELINE_STATES: tuple[PipelineState, ...] = (
    "pending",
    "patching",
    "configuring",
    "building",
    "verifying",
    "done",
)
BUILD_STAGES: tuple[Stage, ...] = ("configure", "compile", "link")
USABLE_STATUSES: frozenset[BuildStatus] = frozenset({"success", "verify_inconclusive"})


@dataclass(frozen=True, slots=True)
class Architecture:
    """One entry of the architecture matrix."""

    name: str
    triple: str
    emulator: str | None = None
    libc: Libc = "musl"
    machine: str = ""
    image: str | None = None

    @property
    def native(self) -> bool:
        return self.emulator is None


@dataclass(frozen=True, slots=True)
class Dependency:
    """A static library node; ``requires`` names libraries whose symbols this one uses."""

    name: str
    archive: Path
    requires: frozenset[str] = frozenset()
    link_flags: tuple[str, ...] = ()
    overrides: Mapping[str, Path] = field(default_factory=dict, hash=False)

    def archive_for(self, architecture: str | None) -> Path:
        if architecture is not None and architecture in self.overrides:
            return Path(self.overrides[architecture])
        return Path(self.archive)


@dataclass(frozen=True, slots=True)
class Patch:
    target: str
    op: PatchOp
    payload: str
    replacement: str = ""
    architectures: tuple[str, ...] = ()
    name: str = ""

    @property
    def label(self) -> str:
        return self.name or f"{self.op}:{self.target}"

    def applies_to(self, architecture: str) -> bool:
        return not self.architectures or architecture in self.architectures


@dataclass(frozen=True, slots=True)
class BuildConfig:
    """Derived build configuration; reproducible from architecture, graph and toggles."""

    architecture: Architecture
    libraries: tuple[Path, ...]
    cflags: tuple[str, ...]
    ldflags: tuple[str, ...]
    configure_args: tuple[str, ...]
    toggles: tuple[tuple[str, str], ...] = ()

    def to_payload(self) -> dict[str, Any]:
        return {
            "architecture": self.architecture.name,
            "triple": self.architecture.triple,
            "libc": self.architecture.libc,
            "libraries": [str(path) for path in self.libraries],
            "cflags": list(self.cflags),
            "ldflags": list(self.ldflags),
            "configure_args": list(self.configure_args),
            "toggles": [list(item) for item in self.toggles],
        }

    def digest(self) -> str:
        canonical = json.dumps(self.to_payload(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True, slots=True)
class BuildResult:
    """Terminal record for one architecture in one run."""

    architecture: str
    status: BuildStatus
    artifact: Path | None = None
    size: int = 0
    log_excerpt: str = ""
    duration: float = 0.0
    state: PipelineState = "done"
    failed_state: PipelineState | None = None
    error_code: str | None = None
    warnings: tuple[str, ...] = ()
    config_digest: str | None = None

    @property
    def usable(self) -> bool:
        return self.status in USABLE_STATUSES

    @property
    def inconclusive(self) -> bool:
        return self.status == "verify_inconclusive" or any(
            warning.startswith("inconclusive") for warning in self.warnings
        )

    def summary_line(self) -> str:
        return f"{self.architecture}: {self.status}"

    def to_payload(self) -> dict[str, Any]:
        return {
            "architecture": self.architecture,
            "status": self.status,
            "artifact": str(self.artifact) if self.artifact is not None else None,
            "size": self.size,
            "log_excerpt": self.log_excerpt,
            "duration": round(self.duration, 3),
            "state": self.state,
            "failed_state": self.failed_state,
            "error_code": self.error_code,
            "warnings": list(self.warnings),
            "config_digest": self.config_digest,
        }
