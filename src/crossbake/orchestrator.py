"""Architecture-matrix orchestration.

Each architecture runs as an independent pipeline on a worker thread::

    pending -> patching -> configuring -> building -> verifying -> done

Every pipeline ends in ``done`` whatever stage failed; a failure
short-circuits the remaining stages of that architecture only. Pipelines
share nothing but frozen inputs, and each owns its sandbox from acquisition
to release.
"""

from __future__ import annotations

import dataclasses
import json
import os
import shutil
import threading
import time
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path

from crossbake.arches import ensure_unique_matrix
from crossbake.backends.base import SandboxHandle, SandboxProvider
from crossbake.deps.graph import link_plan, warn_unknown_overrides
from crossbake.errors import (
    BuildFailed,
    CrossbakeError,
    ErrorCode,
    PipelineCancelled,
    StageTimeout,
)
from crossbake.executor import BuildRecipe, execute
from crossbake.models import (
    Architecture,
    BuildConfig,
    BuildResult,
    BuildStatus,
    Dependency,
    Patch,
    PipelineState,
    Stage,
)
from crossbake.observability import StructuredLogger
from crossbake.patching.engine import apply_patches
from crossbake.policy import Policy, ensure_valid_policy
from crossbake.toolchain.configure import configure
from crossbake.verify.elf import compute_sha256
from crossbake.verify.emulator import Emulator, emulator_for
from crossbake.verify.runner import verify

EmulatorFactory = Callable[[Architecture], Emulator]
OutputSink = Callable[[str, str], None]
Toggles = Mapping[str, str] | Iterable[str]

STAGING_DIR = ".staging"
REPORT_NAME = "report.json"
ARTIFACT_MODE = 0o755


def artifact_name(project: str, architecture: str) -> str:
    return f"{project}-{architecture}"


def exit_code(results: Sequence[BuildResult]) -> int:
    """0 only when every architecture produced a usable artifact."""
    return 0 if results and all(result.usable for result in results) else 1


@dataclass(slots=True)
class Orchestrator:
    provider: SandboxProvider
    output_dir: Path
    project: str = "app"
    recipe: BuildRecipe = field(default_factory=BuildRecipe)
    policy: Policy = field(default_factory=Policy)
    logger: StructuredLogger = field(default_factory=StructuredLogger)
    emulator_factory: EmulatorFactory = emulator_for
    inspect_elf: bool = True
    on_output: OutputSink | None = None
    _states: dict[str, PipelineState] = field(default_factory=dict, init=False, repr=False)
    _cancel_all: threading.Event = field(default_factory=threading.Event, init=False, repr=False)
    _cancelled: set[str] = field(default_factory=set, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def run(
        self,
        matrix: Sequence[Architecture],
        dependencies: Iterable[Dependency],
        patches: Iterable[Patch] = (),
        toggles: Toggles = (),
    ) -> tuple[BuildResult, ...]:
        ensure_valid_policy(self.policy)
        archs = tuple(matrix)
        ensure_unique_matrix(archs)
        deps = tuple(dependencies)
        patch_list = tuple(patches)
        toggle_input = dict(toggles) if isinstance(toggles, Mapping) else tuple(toggles)
        warn_unknown_overrides(deps, (arch.name for arch in archs))

        output_dir = Path(self.output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        with self._lock:
            self._states = {arch.name: "pending" for arch in archs}
            self._cancelled.clear()
        self._cancel_all.clear()

        self._log("run_start", None, None, "Starting build matrix.", extra={
            "architectures": [arch.name for arch in archs],
        })
        workers = max(1, min(self.policy.max_parallel, len(archs)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="crossbake") as pool:
            futures = [
                pool.submit(self._pipeline, arch, deps, patch_list, toggle_input) for arch in archs
            ]
            pipeline_results = [future.result() for future in futures]

        results = tuple(
            self._package(result)
            for result in sorted(pipeline_results, key=lambda item: item.architecture)
        )
        shutil.rmtree(output_dir / STAGING_DIR, ignore_errors=True)
        self._write_report(results)
        self._log("run_complete", None, None, "Build matrix complete.", extra={
            "exit_code": exit_code(results),
        })
        return results

    def cancel(self, architecture: str | None = None) -> None:
        """Stop one pipeline (or all) at its next stage boundary."""
        if architecture is None:
            self._cancel_all.set()
            return
        with self._lock:
            self._cancelled.add(architecture)

    def states(self) -> dict[str, PipelineState]:
        with self._lock:
            return dict(self._states)

    def _pipeline(
        self,
        arch: Architecture,
        deps: tuple[Dependency, ...],
        patches: tuple[Patch, ...],
        toggles: Toggles,
    ) -> BuildResult:
        started = time.monotonic()
        state: PipelineState = "pending"
        config_digest: str | None = None

        def _fail(
            status: BuildStatus,
            code: str,
            excerpt: str,
            notes: tuple[str, ...] = (),
        ) -> BuildResult:
            self._enter(arch.name, "done", detail=f"{status} at {state}")
            return BuildResult(
                architecture=arch.name,
                status=status,
                log_excerpt=excerpt,
                duration=time.monotonic() - started,
                failed_state=state,
                error_code=code,
                warnings=notes,
                config_digest=config_digest,
            )

        try:
            self._gate(arch.name, state)
            with self._sandbox(arch) as handle:
                state = self._enter(arch.name, "patching")
                for outcome in apply_patches(patches, handle.root, architecture=arch.name):
                    self._log("patch", arch.name, state, f"Patch {outcome.outcome}.", extra={
                        "patch": outcome.patch.label,
                    })

                self._gate(arch.name, state)
                state = self._enter(arch.name, "configuring")
                config = configure(
                    arch,
                    link_plan(deps, architecture=arch.name),
                    toggles,
                    exists=partial(self.provider.exists, handle),
                    toggle_prefix=self.policy.toggle_prefix,
                )
                config_digest = config.digest()

                self._gate(arch.name, state)
                state = self._enter(arch.name, "building")
                built = execute(
                    config,
                    self.provider,
                    handle,
                    project=self.project,
                    recipe=self.recipe,
                    policy=self.policy,
                    logger=self.logger,
                    gate=partial(self._stage_gate, arch.name),
                    on_output=(
                        partial(self.on_output, arch.name) if self.on_output is not None else None
                    ),
                )
                staged = self._stage(arch.name, built)

                self._gate(arch.name, state)
                state = self._enter(arch.name, "verifying")
                verification = verify(
                    staged,
                    arch,
                    emulator=self.emulator_factory(arch),
                    policy=self.policy,
                    inspect=self.inspect_elf,
                )
        except (BuildFailed, StageTimeout) as exc:
            self._log("pipeline_failed", arch.name, state, str(exc), level="error")
            return _fail("build_failed", exc.code, exc.log_excerpt or str(exc))
        except CrossbakeError as exc:
            self._log("pipeline_failed", arch.name, state, str(exc), level="error")
            return _fail("build_failed", exc.code, str(exc))
        except Exception as exc:  # contained per pipeline
            self._log("pipeline_crashed", arch.name, state, repr(exc), level="error")
            return _fail("build_failed", ErrorCode.INTERNAL.value, repr(exc))

        if verification.outcome == "verify_failed":
            timed_out = verification.reason == "timeout"
            code = ErrorCode.TIMEOUT if timed_out else ErrorCode.VERIFY_FAILED
            self._log("verify_failed", arch.name, state, verification.reason, level="error")
            return _fail(
                "verify_failed",
                code.value,
                verification.output or verification.reason,
                notes=(f"verify_failed: {verification.reason}",),
            )

        notes: tuple[str, ...] = ()
        status: BuildStatus = "success"
        if verification.inconclusive:
            notes = (f"inconclusive: {verification.reason}",)
            self._log("verify_inconclusive", arch.name, state, verification.reason, level="warning")
            if not self.policy.inconclusive_is_success:
                status = "verify_inconclusive"

        self._enter(arch.name, "done", detail=status)
        return BuildResult(
            architecture=arch.name,
            status=status,
            artifact=staged,
            size=staged.stat().st_size,
            log_excerpt=verification.output,
            duration=time.monotonic() - started,
            warnings=notes,
            config_digest=config_digest,
        )

    @contextmanager
    def _sandbox(self, arch: Architecture) -> Iterator[SandboxHandle]:
        handle = self.provider.acquire(arch)
        self._log("sandbox_acquired", arch.name, None, "Acquired sandbox.", extra={
            "provider": handle.provider,
            "sandbox": handle.identifier,
        })
        try:
            yield handle
        finally:
            self.provider.release(handle)
            self._log("sandbox_released", arch.name, None, "Released sandbox.", extra={
                "sandbox": handle.identifier,
            })

    def _stage(self, arch: str, built: Path) -> Path:
        """Copy the binary out of the sandbox before the sandbox is released."""
        staging = Path(self.output_dir) / STAGING_DIR / arch
        staging.mkdir(parents=True, exist_ok=True)
        staged = staging / built.name
        shutil.copy2(built, staged)
        return staged

    def _package(self, result: BuildResult) -> BuildResult:
        final = Path(self.output_dir) / artifact_name(self.project, result.architecture)
        if not result.usable or result.artifact is None:
            # a failed architecture must not leave an earlier run's binary behind
            if final.exists():
                final.unlink()
                self._log("package", result.architecture, "done", "Removed stale artifact.", extra={
                    "artifact": str(final),
                })
            return result
        os.replace(result.artifact, final)
        final.chmod(ARTIFACT_MODE)
        self._log("package", result.architecture, "done", "Packaged artifact.", extra={
            "artifact": str(final),
        })
        return dataclasses.replace(result, artifact=final, size=final.stat().st_size)

    def _write_report(self, results: tuple[BuildResult, ...]) -> Path:
        report_path = Path(self.output_dir) / REPORT_NAME
        payload = {
            "project": self.project,
            "exit_code": exit_code(results),
            "results": [
                {
                    **result.to_payload(),
                    "sha256": (
                        compute_sha256(result.artifact) if result.artifact is not None else None
                    ),
                    "logs": [
                        record
                        for record in self.logger.records_for_architecture(result.architecture)
                        if record["level"] != "debug"
                    ],
                }
                for result in results
            ],
        }
        report_path.write_text(
            json.dumps(payload, indent=2, sort_keys=True) + "\n",
            encoding="utf-8",
        )
        return report_path

    def _enter(
        self,
        arch: str,
        state: PipelineState,
        *,
        detail: str | None = None,
    ) -> PipelineState:
        with self._lock:
            self._states[arch] = state
        self._log("state_transition", arch, state, f"Entered {state}.", extra=(
            {"detail": detail} if detail is not None else None
        ))
        return state

    def _gate(self, arch: str, state: PipelineState) -> None:
        with self._lock:
            cancelled = arch in self._cancelled
        if cancelled or self._cancel_all.is_set():
            raise PipelineCancelled(context={"architecture": arch, "state": state})

    def _stage_gate(self, arch: str, stage: Stage) -> None:
        self._gate(arch, "building")

    def _log(
        self,
        operation: str,
        arch: str | None,
        state: str | None,
        message: str,
        *,
        level: str = "info",
        extra: dict[str, object] | None = None,
    ) -> None:
        self.logger.log(
            operation=operation,
            architecture=arch,
            state=state,
            component="orchestrator",
            message=message,
            level=level,
            extra=extra,
        )


def plan_matrix(
    matrix: Sequence[Architecture],
    dependencies: Iterable[Dependency],
    toggles: Toggles = (),
    *,
    toggle_prefix: str = "",
) -> dict[str, BuildConfig]:
    """Derive every architecture's configuration without acquiring sandboxes.

    Archive presence is not checked; that pre-flight needs the sandbox filesystem.
    """
    deps = tuple(dependencies)
    return {
        arch.name: configure(
            arch,
            link_plan(deps, architecture=arch.name),
            toggles,
            exists=_assume_present,
            toggle_prefix=toggle_prefix,
        )
        for arch in matrix
    }


def _assume_present(path: Path) -> bool:
    return True
