"""Run policy configuration and enforcement helpers."""

from __future__ import annotations

from dataclasses import dataclass

from crossbake.errors import ConfigurationError


@dataclass(frozen=True, slots=True)
class Policy:
    build_timeout: float = 3600.0
    verify_timeout: float = 60.0
    log_tail_lines: int = 200
    max_parallel: int = 4
    inconclusive_is_success: bool = True
    toggle_prefix: str = ""
    jobs: int | None = None


def ensure_valid_policy(policy: Policy) -> None:
    if policy.build_timeout <= 0 or policy.verify_timeout <= 0:
        raise ConfigurationError(
            "Stage timeouts must be positive.",
            hint="Every build and verify stage needs a finite bound.",
            context={
                "build_timeout": str(policy.build_timeout),
                "verify_timeout": str(policy.verify_timeout),
            },
        )
    if policy.log_tail_lines < 1:
        raise ConfigurationError(
            "Log tail must keep at least one line.",
            context={"log_tail_lines": str(policy.log_tail_lines)},
        )
    if policy.max_parallel < 1:
        raise ConfigurationError(
            "At least one pipeline must be allowed to run.",
            context={"max_parallel": str(policy.max_parallel)},
        )
