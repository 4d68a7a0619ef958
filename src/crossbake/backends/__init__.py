"""Sandbox provider interfaces and implementations."""

from .base import CommandResult, SandboxHandle, SandboxProvider, resolve_in_root
from .docker import DockerSandboxProvider
from .inprocess import InProcessSandboxProvider
from .local import LocalSandboxProvider
from .process import run_streaming

__all__ = [
    "CommandResult",
    "DockerSandboxProvider",
    "InProcessSandboxProvider",
    "LocalSandboxProvider",
    "SandboxHandle",
    "SandboxProvider",
    "resolve_in_root",
    "run_streaming",
]
