"""Test doubles and fixture builders shared across test modules."""

from __future__ import annotations

import struct
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from crossbake.backends.base import CommandResult, SandboxHandle
from crossbake.models import Architecture
from crossbake.verify.emulator import EmulatorResult

MACHINE_CODES = {"EM_386": 3, "EM_X86_64": 62, "EM_AARCH64": 183, "EM_RISCV": 243}
ET_EXEC = 2
ET_DYN = 3
PT_LOAD = 1
PT_INTERP = 3
SHT_STRTAB = 3

X86_64 = Architecture(
    name="x86_64",
    triple="x86_64-linux-musl",
    emulator="qemu-x86_64-static",
    machine="EM_X86_64",
)
AARCH64 = Architecture(
    name="aarch64",
    triple="aarch64-linux-musl",
    emulator="qemu-aarch64-static",
    machine="EM_AARCH64",
)


def build_elf(
    *,
    machine: str = "EM_X86_64",
    elf_type: int = ET_EXEC,
    interpreter: str | None = None,
) -> bytes:
    """Assemble a minimal little-endian ELF64 image with a section string table."""
    ehsize, phentsize, shentsize = 64, 56, 64
    interp = interpreter.encode() + b"\x00" if interpreter is not None else b""
    shstrtab = b"\x00.shstrtab\x00"
    phnum = 2 if interp else 1
    interp_offset = ehsize + phnum * phentsize
    strtab_offset = interp_offset + len(interp)
    shoff = strtab_offset + len(shstrtab)
    shoff += (-shoff) % 8

    header = b"\x7fELF" + bytes([2, 1, 1, 0]) + bytes(8)
    header += struct.pack(
        "<HHIQQQIHHHHHH",
        elf_type,
        MACHINE_CODES[machine],
        1,
        0x401000,
        ehsize,
        shoff,
        0,
        ehsize,
        phentsize,
        phnum,
        shentsize,
        2,
        1,
    )
    segments = struct.pack("<IIQQQQQQ", PT_LOAD, 5, 0, 0x400000, 0x400000, shoff, shoff, 0x1000)
    if interp:
        segments += struct.pack(
            "<IIQQQQQQ",
            PT_INTERP,
            4,
            interp_offset,
            0x400000 + interp_offset,
            0x400000 + interp_offset,
            len(interp),
            len(interp),
            1,
        )
    body = header + segments + interp + shstrtab
    body += bytes(shoff - len(body))
    null_section = bytes(shentsize)
    strtab_section = struct.pack(
        "<IIQQQQIIQQ",
        1,
        SHT_STRTAB,
        0,
        0,
        strtab_offset,
        len(shstrtab),
        0,
        0,
        1,
        0,
    )
    return body + null_section + strtab_section


@dataclass
class ScriptedEmulator:
    """Emulator double that answers every run with a fixed result."""

    result: EmulatorResult = field(
        default_factory=lambda: EmulatorResult(exit_code=0, output="app 1.0\n")
    )
    emulated: bool = True
    runs: list[Path] = field(default_factory=list)

    def run(self, binary: Path, argv: tuple[str, ...], *, timeout: float) -> EmulatorResult:
        self.runs.append(binary)
        return self.result


def stage_of(argv: tuple[str, ...]) -> str:
    if "-S" in argv:
        return "configure"
    if "--target" in argv:
        return "link"
    return "compile"


def linking_handler(
    *,
    elf_type: int = ET_EXEC,
    output: str = "build/bin/app",
) -> Callable[[SandboxHandle, tuple[str, ...]], CommandResult]:
    """Handler that writes an ELF for the sandbox's architecture at the link stage."""

    def _handle(handle: SandboxHandle, argv: tuple[str, ...]) -> CommandResult:
        if stage_of(argv) == "link":
            binary = handle.root / output
            binary.parent.mkdir(parents=True, exist_ok=True)
            binary.write_bytes(
                build_elf(machine=handle.architecture.machine or "EM_X86_64", elf_type=elf_type)
            )
        return CommandResult(exit_code=0, output=f"{stage_of(argv)} ok\n")

    return _handle


