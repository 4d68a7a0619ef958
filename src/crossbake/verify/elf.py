"""Static inspection of produced binaries.

A fully static, position-dependent executable has ``e_type == ET_EXEC`` and
no ``PT_INTERP`` segment. Anything else means the static directives did not
take effect, which shows up only when the binary is loaded on the target.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from pathlib import Path

from elftools.common.exceptions import ELFError
from elftools.elf.elffile import ELFFile

from crossbake.errors import VerifyFailed
from crossbake.models import Architecture


@dataclass(frozen=True, slots=True)
class ElfFacts:
    machine: str
    elf_type: str
    elf_class: int
    interpreter: str | None
    dynamic: bool

    @property
    def static_non_pie(self) -> bool:
        return self.elf_type == "ET_EXEC" and self.interpreter is None and not self.dynamic


def compute_sha256(path: str | Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            h.update(chunk)
    return h.hexdigest()


def inspect_elf(path: str | Path) -> ElfFacts:
    binary = Path(path)
    try:
        with open(binary, "rb") as f:
            elffile = ELFFile(f)
            interpreter: str | None = None
            dynamic = False
            for segment in elffile.iter_segments():
                if segment["p_type"] == "PT_INTERP":
                    interpreter = segment.get_interp_name()
                elif segment["p_type"] == "PT_DYNAMIC":
                    dynamic = True
            return ElfFacts(
                machine=elffile.header["e_machine"],
                elf_type=elffile.header["e_type"],
                elf_class=elffile.elfclass,
                interpreter=interpreter,
                dynamic=dynamic,
            )
    except ELFError as exc:
        raise VerifyFailed(
            "Artifact is not a valid ELF binary.",
            context={"artifact": str(binary), "error": str(exc)},
        ) from exc


def static_problems(facts: ElfFacts, architecture: Architecture) -> list[str]:
    problems: list[str] = []
    if architecture.machine and facts.machine != architecture.machine:
        problems.append(f"machine {facts.machine} != {architecture.machine}")
    if facts.elf_type == "ET_DYN":
        problems.append("position-independent executable (ET_DYN)")
    elif facts.elf_type != "ET_EXEC":
        problems.append(f"not an executable ({facts.elf_type})")
    if facts.interpreter is not None:
        problems.append(f"requests dynamic loader {facts.interpreter}")
    elif facts.dynamic:
        problems.append("carries a dynamic section")
    return problems
