"""Fully static multi-architecture builds with emulated verification."""

from .errors import (
    BuildFailed,
    ConfigurationError,
    CrossbakeError,
    CyclicDependency,
    MissingStaticArtifact,
    PatchConflict,
    PatchError,
    PatchTargetMissing,
    StageTimeout,
    UnresolvedReference,
    VerifyFailed,
)
from .models import Architecture, BuildConfig, BuildResult, Dependency, Patch
from .orchestrator import Orchestrator, exit_code, plan_matrix
from .policy import Policy

__all__ = [
    "Architecture",
    "BuildConfig",
    "BuildFailed",
    "BuildResult",
    "ConfigurationError",
    "CrossbakeError",
    "CyclicDependency",
    "Dependency",
    "MissingStaticArtifact",
    "Orchestrator",
    "Patch",
    "PatchConflict",
    "PatchError",
    "PatchTargetMissing",
    "Policy",
    "StageTimeout",
    "UnresolvedReference",
    "VerifyFailed",
    "exit_code",
    "plan_matrix",
]
