"""Artifact verification under emulation."""

from .elf import ElfFacts, compute_sha256, inspect_elf, static_problems
from .emulator import Emulator, EmulatorResult, NativeEmulator, QemuUserEmulator, emulator_for
from .faults import FaultKind, Outcome, classify, detect_fault
from .runner import Verification, verify

__all__ = [
    "ElfFacts",
    "Emulator",
    "EmulatorResult",
    "FaultKind",
    "NativeEmulator",
    "Outcome",
    "QemuUserEmulator",
    "Verification",
    "classify",
    "compute_sha256",
    "detect_fault",
    "emulator_for",
    "inspect_elf",
    "static_problems",
    "verify",
]
