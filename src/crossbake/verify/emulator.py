"""Emulators that execute a produced binary on the build host."""

from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from crossbake.backends.process import run_streaming
from crossbake.errors import BackendExecutionError
from crossbake.models import Architecture
from crossbake.verify.faults import FaultKind, detect_fault

OUTPUT_TAIL_LINES = 50


@dataclass(frozen=True, slots=True)
class EmulatorResult:
    exit_code: int
    output: str
    fault: FaultKind | None = None
    timed_out: bool = False


class Emulator(Protocol):
    emulated: bool

    def run(self, binary: Path, argv: tuple[str, ...], *, timeout: float) -> EmulatorResult:
        """Execute *binary* with *argv* and report exit code, output and fault kind."""


@dataclass(slots=True)
class QemuUserEmulator:
    binary: str
    extra_args: list[str] = field(default_factory=list)
    emulated: bool = True

    def run(self, binary: Path, argv: tuple[str, ...], *, timeout: float) -> EmulatorResult:
        emulator = shutil.which(self.binary)
        if emulator is None:
            return EmulatorResult(
                exit_code=127,
                output=f"{self.binary}: not found in PATH\n",
                fault="unavailable",
            )
        result = run_streaming(
            (emulator, *self.extra_args, str(binary), *argv),
            timeout=timeout,
            tail_lines=OUTPUT_TAIL_LINES,
        )
        return EmulatorResult(
            exit_code=result.exit_code,
            output=result.output,
            fault=None if result.timed_out else detect_fault(result.exit_code, result.output),
            timed_out=result.timed_out,
        )


@dataclass(slots=True)
class NativeEmulator:
    """Runs the binary directly; used when the target is the host architecture."""

    emulated: bool = False

    def run(self, binary: Path, argv: tuple[str, ...], *, timeout: float) -> EmulatorResult:
        try:
            result = run_streaming(
                (str(binary), *argv),
                timeout=timeout,
                tail_lines=OUTPUT_TAIL_LINES,
            )
        except BackendExecutionError as exc:
            return EmulatorResult(exit_code=126, output=str(exc), fault="exec_format")
        return EmulatorResult(
            exit_code=result.exit_code,
            output=result.output,
            fault=None if result.timed_out else detect_fault(result.exit_code, result.output),
            timed_out=result.timed_out,
        )


def emulator_for(architecture: Architecture) -> Emulator:
    if architecture.emulator is None:
        return NativeEmulator()
    return QemuUserEmulator(binary=architecture.emulator)
