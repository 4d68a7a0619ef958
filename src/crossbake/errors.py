"""Typed build error model with stable, machine-readable error codes."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from enum import StrEnum


class ErrorCode(StrEnum):
    """Stable error identifiers used across API surfaces."""

    VALIDATION = "E_VALIDATION"
    CONFIGURATION = "E_CONFIGURATION"
    CYCLIC_DEPENDENCY = "E_CYCLIC_DEPENDENCY"
    UNRESOLVED_REFERENCE = "E_UNRESOLVED_REFERENCE"
    MISSING_STATIC_ARTIFACT = "E_MISSING_STATIC_ARTIFACT"
    PATCH = "E_PATCH"
    PATCH_TARGET_MISSING = "E_PATCH_TARGET_MISSING"
    PATCH_CONFLICT = "E_PATCH_CONFLICT"
    BUILD_FAILED = "E_BUILD_FAILED"
    TIMEOUT = "E_TIMEOUT"
    VERIFY_FAILED = "E_VERIFY_FAILED"
    BACKEND_EXECUTION = "E_BACKEND_EXECUTION"
    SOURCE = "E_SOURCE"
    CANCELLED = "E_CANCELLED"
    INTERNAL = "E_INTERNAL"


class CrossbakeError(Exception):
    """Base error class that carries code, optional hint, and context."""

    code: str
    hint: str | None
    context: Mapping[str, str]

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code.value
        self.hint = hint
        self.context = dict(context or {})

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.hint:
            parts.append(f"Hint: {self.hint}")
        if self.context:
            for k, v in self.context.items():
                if v:
                    parts.append(f"  {k}: {v}")
        return "\n".join(parts)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "code": self.code,
            "message": str(self),
            "context": dict(self.context),
        }
        if self.hint is not None:
            payload["hint"] = self.hint
        return payload


class ValidationError(CrossbakeError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.VALIDATION, hint=hint, context=context)


class ConfigurationError(CrossbakeError):
    """Deterministic input error detected before any build time is spent."""

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode = ErrorCode.CONFIGURATION,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=code, hint=hint, context=context)


class CyclicDependency(ConfigurationError):
    cycle: tuple[str, ...]

    def __init__(
        self,
        cycle: Sequence[str],
        *,
        context: Mapping[str, str] | None = None,
    ) -> None:
        self.cycle = tuple(cycle)
        super().__init__(
            "Dependency graph contains a cycle.",
            code=ErrorCode.CYCLIC_DEPENDENCY,
            hint="Static link order cannot be derived from a cyclic graph; break the edge.",
            context={"cycle": " -> ".join(self.cycle), **dict(context or {})},
        )


class UnresolvedReference(ConfigurationError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(
            message,
            code=ErrorCode.UNRESOLVED_REFERENCE,
            hint=hint,
            context=context,
        )


class MissingStaticArtifact(ConfigurationError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(
            message,
            code=ErrorCode.MISSING_STATIC_ARTIFACT,
            hint=hint,
            context=context,
        )


class PatchError(CrossbakeError):
    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode = ErrorCode.PATCH,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=code, hint=hint, context=context)


class PatchTargetMissing(PatchError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(
            message,
            code=ErrorCode.PATCH_TARGET_MISSING,
            hint=hint,
            context=context,
        )


class PatchConflict(PatchError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.PATCH_CONFLICT, hint=hint, context=context)


class BuildFailed(CrossbakeError):
    """A toolchain stage exited non-zero; carries the stage and a bounded log tail."""

    stage: str
    log_excerpt: str

    def __init__(
        self,
        message: str,
        *,
        stage: str,
        log_excerpt: str = "",
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        self.stage = stage
        self.log_excerpt = log_excerpt
        super().__init__(
            message,
            code=ErrorCode.BUILD_FAILED,
            hint=hint,
            context={"stage": stage, **dict(context or {})},
        )


class StageTimeout(CrossbakeError):
    stage: str
    timeout: float
    log_excerpt: str

    def __init__(
        self,
        *,
        stage: str,
        timeout: float,
        log_excerpt: str = "",
        context: Mapping[str, str] | None = None,
    ) -> None:
        self.stage = stage
        self.timeout = timeout
        self.log_excerpt = log_excerpt
        super().__init__(
            f"Stage `{stage}` exceeded its {timeout:g}s bound.",
            code=ErrorCode.TIMEOUT,
            hint="Raise the policy timeout or inspect the stage for a hang.",
            context={"stage": stage, "timeout": f"{timeout:g}", **dict(context or {})},
        )


class VerifyFailed(CrossbakeError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.VERIFY_FAILED, hint=hint, context=context)


class BackendExecutionError(CrossbakeError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.BACKEND_EXECUTION, hint=hint, context=context)


class SourceError(CrossbakeError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.SOURCE, hint=hint, context=context)


class PipelineCancelled(CrossbakeError):
    def __init__(
        self,
        message: str = "Pipeline cancelled by operator.",
        *,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.CANCELLED, context=context)


__all__ = [
    "BackendExecutionError",
    "BuildFailed",
    "ConfigurationError",
    "CrossbakeError",
    "CyclicDependency",
    "ErrorCode",
    "MissingStaticArtifact",
    "PatchConflict",
    "PatchError",
    "PatchTargetMissing",
    "PipelineCancelled",
    "SourceError",
    "StageTimeout",
    "UnresolvedReference",
    "ValidationError",
    "VerifyFailed",
]
