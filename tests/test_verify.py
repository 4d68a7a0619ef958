import hashlib
import sys
from pathlib import Path

import pytest
from support import AARCH64, ET_DYN, X86_64, ScriptedEmulator, build_elf

from crossbake.errors import VerifyFailed
from crossbake.models import Architecture
from crossbake.policy import Policy
from crossbake.verify import (
    EmulatorResult,
    NativeEmulator,
    QemuUserEmulator,
    classify,
    compute_sha256,
    detect_fault,
    emulator_for,
    inspect_elf,
    static_problems,
    verify,
)


@pytest.mark.parametrize(
    ("exit_code", "output", "expected"),
    [
        (0, "app 1.0\n", None),
        (
            -4,
            "qemu: uncaught target signal 4 (Illegal instruction) - core dumped\n",
            "illegal_instruction",
        ),
        (-11, "qemu: uncaught target signal 11 (Segmentation fault) - core dumped\n", "segfault"),
        (-7, "qemu: uncaught target signal 7 (Bus error) - core dumped\n", "bus_error"),
        (1, "qemu-aarch64-static: Invalid ELF image for this architecture\n", "exec_format"),
        (38, "Unsupported syscall: 435\n", "unsupported_syscall"),
        (1, "qemu: unhandled CPU exception 0x10 - aborting\n", "cpu_exception"),
        (134, "tcg fatal error\n", "emulator_crash"),
        (-11, "", "segfault"),
        (139, "", "segfault"),
        (1, "usage: app [--version]\n", None),
    ],
)
def test_detect_fault(exit_code: int, output: str, expected: str | None) -> None:
    assert detect_fault(exit_code, output) == expected


@pytest.mark.parametrize(
    ("fault", "emulated", "expected"),
    [
        ("illegal_instruction", True, "verify_failed"),
        ("exec_format", True, "verify_failed"),
        ("segfault", True, "inconclusive"),
        ("bus_error", True, "inconclusive"),
        ("unsupported_syscall", True, "inconclusive"),
        ("cpu_exception", True, "inconclusive"),
        ("emulator_crash", True, "inconclusive"),
        ("unavailable", True, "inconclusive"),
        ("segfault", False, "verify_failed"),
        ("illegal_instruction", False, "verify_failed"),
    ],
)
def test_fault_classification_table(fault: str, emulated: bool, expected: str) -> None:
    outcome, reason = classify(
        exit_code=1,
        fault=fault,  # type: ignore[arg-type]
        timed_out=False,
        emulated=emulated,
    )

    assert outcome == expected
    assert reason == fault


def test_clean_exit_codes_classify_without_faults() -> None:
    assert classify(exit_code=0, fault=None, timed_out=False, emulated=True) == (
        "verified",
        "exit 0",
    )
    assert classify(exit_code=3, fault=None, timed_out=False, emulated=True) == (
        "verify_failed",
        "exit status 3",
    )
    assert classify(exit_code=-9, fault=None, timed_out=True, emulated=True) == (
        "verify_failed",
        "timeout",
    )


def test_inspect_static_executable(tmp_path: Path) -> None:
    binary = tmp_path / "app"
    binary.write_bytes(build_elf(machine="EM_X86_64"))

    facts = inspect_elf(binary)

    assert facts.machine == "EM_X86_64"
    assert facts.elf_type == "ET_EXEC"
    assert facts.elf_class == 64
    assert facts.interpreter is None
    assert facts.static_non_pie
    assert static_problems(facts, X86_64) == []


def test_static_problems_flag_pie_loader_and_machine(tmp_path: Path) -> None:
    binary = tmp_path / "app"
    binary.write_bytes(
        build_elf(machine="EM_X86_64", elf_type=ET_DYN, interpreter="/lib/ld-musl-x86_64.so.1")
    )

    problems = static_problems(inspect_elf(binary), AARCH64)

    assert any("EM_AARCH64" in problem for problem in problems)
    assert any("ET_DYN" in problem for problem in problems)
    assert any("dynamic loader" in problem for problem in problems)


def test_inspect_rejects_non_elf(tmp_path: Path) -> None:
    script = tmp_path / "app"
    script.write_text("#!/bin/sh\necho hi\n", encoding="utf-8")

    with pytest.raises(VerifyFailed):
        inspect_elf(script)


def test_compute_sha256(tmp_path: Path) -> None:
    payload = tmp_path / "blob"
    payload.write_bytes(b"crossbake")

    assert compute_sha256(payload) == hashlib.sha256(b"crossbake").hexdigest()


def test_verify_runs_emulator_after_static_checks(tmp_path: Path) -> None:
    binary = tmp_path / "app"
    binary.write_bytes(build_elf(machine="EM_AARCH64"))
    emulator = ScriptedEmulator()

    verification = verify(binary, AARCH64, emulator=emulator, policy=Policy(verify_timeout=5))

    assert verification.verified
    assert verification.output == "app 1.0\n"
    assert emulator.runs == [binary]


def test_verify_fails_fast_on_static_problems(tmp_path: Path) -> None:
    binary = tmp_path / "app"
    binary.write_bytes(build_elf(machine="EM_AARCH64", elf_type=ET_DYN))
    emulator = ScriptedEmulator()

    verification = verify(binary, AARCH64, emulator=emulator)

    assert verification.outcome == "verify_failed"
    assert "ET_DYN" in verification.reason
    assert emulator.runs == []


def test_verify_reports_non_elf_artifact(tmp_path: Path) -> None:
    binary = tmp_path / "app"
    binary.write_bytes(b"not an elf")

    verification = verify(binary, AARCH64, emulator=ScriptedEmulator())

    assert verification.outcome == "verify_failed"
    assert verification.reason == "not an ELF binary"


def test_verify_marks_emulator_faults_inconclusive(tmp_path: Path) -> None:
    binary = tmp_path / "app"
    binary.write_bytes(build_elf(machine="EM_AARCH64"))
    emulator = ScriptedEmulator(
        result=EmulatorResult(exit_code=-11, output="", fault="segfault"),
    )

    verification = verify(binary, AARCH64, emulator=emulator)

    assert verification.inconclusive
    assert verification.fault == "segfault"


def test_verify_can_skip_elf_inspection(tmp_path: Path) -> None:
    binary = tmp_path / "app"
    binary.write_bytes(b"opaque")

    verification = verify(binary, AARCH64, emulator=ScriptedEmulator(), inspect=False)

    assert verification.verified


def test_missing_qemu_is_inconclusive(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr("crossbake.verify.emulator.shutil.which", lambda _: None)

    result = QemuUserEmulator(binary="qemu-aarch64-static").run(
        tmp_path / "app",
        ("--version",),
        timeout=5,
    )

    assert result.fault == "unavailable"
    assert classify(
        exit_code=result.exit_code,
        fault=result.fault,
        timed_out=result.timed_out,
        emulated=True,
    )[0] == "inconclusive"


def test_emulator_for_selects_by_architecture() -> None:
    native = Architecture(name="x86_64", triple="x86_64-linux-musl")

    assert isinstance(emulator_for(native), NativeEmulator)
    qemu = emulator_for(AARCH64)
    assert isinstance(qemu, QemuUserEmulator)
    assert qemu.binary == "qemu-aarch64-static"


@pytest.mark.skipif(not sys.platform.startswith("linux"), reason="Runs host processes.")
def test_native_emulator_reports_exit_and_signal(tmp_path: Path) -> None:
    ok = tmp_path / "ok"
    ok.write_text("#!/bin/sh\necho \"app $1\"\n", encoding="utf-8")
    ok.chmod(0o755)
    crash = tmp_path / "crash"
    crash.write_text("#!/bin/sh\nkill -SEGV $$\n", encoding="utf-8")
    crash.chmod(0o755)

    clean = NativeEmulator().run(ok, ("--version",), timeout=10)
    faulted = NativeEmulator().run(crash, (), timeout=10)

    assert (clean.exit_code, clean.output, clean.fault) == (0, "app --version\n", None)
    assert faulted.fault == "segfault"
    assert classify(
        exit_code=faulted.exit_code,
        fault=faulted.fault,
        timed_out=False,
        emulated=False,
    )[0] == "verify_failed"
