"""Verification runner: static ELF checks, then a side-effect-free emulated run."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from crossbake.errors import VerifyFailed
from crossbake.models import Architecture
from crossbake.policy import Policy
from crossbake.verify.elf import inspect_elf, static_problems
from crossbake.verify.emulator import Emulator, emulator_for
from crossbake.verify.faults import FaultKind, Outcome, classify

VERSION_QUERY = ("--version",)


@dataclass(frozen=True, slots=True)
class Verification:
    outcome: Outcome
    reason: str
    fault: FaultKind | None = None
    output: str = ""

    @property
    def verified(self) -> bool:
        return self.outcome == "verified"

    @property
    def inconclusive(self) -> bool:
        return self.outcome == "inconclusive"


def verify(
    artifact: Path,
    architecture: Architecture,
    *,
    emulator: Emulator | None = None,
    policy: Policy | None = None,
    argv: tuple[str, ...] = VERSION_QUERY,
    inspect: bool = True,
) -> Verification:
    policy = policy or Policy()
    if inspect:
        try:
            facts = inspect_elf(artifact)
        except VerifyFailed as exc:
            return Verification(
                outcome="verify_failed",
                reason="not an ELF binary",
                output=str(exc),
            )
        problems = static_problems(facts, architecture)
        if problems:
            return Verification(outcome="verify_failed", reason="; ".join(problems))

    runner = emulator if emulator is not None else emulator_for(architecture)
    result = runner.run(artifact, argv, timeout=policy.verify_timeout)
    outcome, reason = classify(
        exit_code=result.exit_code,
        fault=result.fault,
        timed_out=result.timed_out,
        emulated=runner.emulated,
    )
    return Verification(outcome=outcome, reason=reason, fault=result.fault, output=result.output)
