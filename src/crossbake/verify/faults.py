"""Fault-signature classification for emulated verification runs.

User-mode emulators crash on perfectly valid binaries often enough that
"it crashed under emulation" cannot fail a pipeline on its own. The table
below is the explicit policy for which faults are blamed on the binary
(``verify_failed``) and which on the emulator (``inconclusive``):

====================  ===============  ==================================
fault                 under emulation  native execution
====================  ===============  ==================================
illegal_instruction   verify_failed    verify_failed
exec_format           verify_failed    verify_failed
segfault, bus_error   inconclusive     verify_failed
unsupported_syscall   inconclusive     (not produced)
cpu_exception         inconclusive     (not produced)
emulator_crash        inconclusive     (not produced)
unavailable           inconclusive     inconclusive
====================  ===============  ==================================

An illegal instruction is the binary's fault: it was compiled for an ISA
level the target does not guarantee. A clean non-zero exit without any
fault signature is a semantic error reported by the binary itself.
"""

from __future__ import annotations

import re
import signal
from typing import Literal

FaultKind = Literal[
    "illegal_instruction",
    "exec_format",
    "segfault",
    "bus_error",
    "unsupported_syscall",
    "cpu_exception",
    "emulator_crash",
    "unavailable",
]
Outcome = Literal["verified", "verify_failed", "inconclusive"]

FAULT_SIGNATURES: tuple[tuple[re.Pattern[str], FaultKind], ...] = (
    (re.compile(r"uncaught target signal 4\b|Illegal instruction"), "illegal_instruction"),
    (re.compile(r"Invalid ELF image|Exec format error"), "exec_format"),
    (re.compile(r"uncaught target signal 11\b|Segmentation fault"), "segfault"),
    (re.compile(r"uncaught target signal 7\b|Bus error"), "bus_error"),
    (re.compile(r"[Uu]nsupported syscall"), "unsupported_syscall"),
    (re.compile(r"unhandled CPU exception|unhandled trap"), "cpu_exception"),
    (
        re.compile(r"tcg fatal error|qemu(?:-\S+)?: .*[Aa]ssertion|TCG temporary leak"),
        "emulator_crash",
    ),
)

SIGNAL_FAULTS: dict[int, FaultKind] = {
    signal.SIGILL: "illegal_instruction",
    signal.SIGSEGV: "segfault",
    signal.SIGBUS: "bus_error",
}

EMULATED_POLICY: dict[FaultKind, Outcome] = {
    "illegal_instruction": "verify_failed",
    "exec_format": "verify_failed",
    "segfault": "inconclusive",
    "bus_error": "inconclusive",
    "unsupported_syscall": "inconclusive",
    "cpu_exception": "inconclusive",
    "emulator_crash": "inconclusive",
    "unavailable": "inconclusive",
}

NATIVE_POLICY: dict[FaultKind, Outcome] = {
    **EMULATED_POLICY,
    "segfault": "verify_failed",
    "bus_error": "verify_failed",
}


def detect_fault(exit_code: int, output: str) -> FaultKind | None:
    """Derive a fault kind from emulator output first, then from a fatal signal."""
    if exit_code == 0:
        return None
    for pattern, kind in FAULT_SIGNATURES:
        if pattern.search(output):
            return kind
    if exit_code < 0:
        return SIGNAL_FAULTS.get(-exit_code, "emulator_crash")
    if exit_code > 128:
        return SIGNAL_FAULTS.get(exit_code - 128)
    return None


def classify(
    *,
    exit_code: int,
    fault: FaultKind | None,
    timed_out: bool,
    emulated: bool,
) -> tuple[Outcome, str]:
    if timed_out:
        return "verify_failed", "timeout"
    if fault is not None:
        policy = EMULATED_POLICY if emulated else NATIVE_POLICY
        return policy[fault], fault
    if exit_code == 0:
        return "verified", "exit 0"
    return "verify_failed", f"exit status {exit_code}"
