"""Build executor: configure, compile and link inside one sandbox.

A build is atomic per architecture. The artifact path is returned only
after every stage exits zero and the expected output exists.
"""

from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from crossbake.backends.base import LineSink, SandboxHandle, SandboxProvider
from crossbake.errors import BuildFailed, StageTimeout
from crossbake.models import BUILD_STAGES, BuildConfig, Stage
from crossbake.observability import StructuredLogger
from crossbake.policy import Policy

StageGate = Callable[[Stage], None]


@dataclass(frozen=True, slots=True)
class BuildRecipe:
    """Argv templates per stage; ``{jobs}``, ``{project}`` and ``{target}`` are substituted."""

    configure: tuple[str, ...] = (
        "cmake",
        "-S",
        ".",
        "-B",
        "build",
        "-DCMAKE_BUILD_TYPE=Release",
    )
    compile: tuple[str, ...] = ("cmake", "--build", "build", "--parallel", "{jobs}")
    link: tuple[str, ...] = ("cmake", "--build", "build", "--target", "{target}", "--verbose")
    output: str = "build/bin/{project}"
    target: str | None = None

    def stage_argv(self, stage: Stage, *, project: str, jobs: int) -> tuple[str, ...]:
        template = {"configure": self.configure, "compile": self.compile, "link": self.link}[stage]
        values = {"jobs": str(jobs), "project": project, "target": self.target or project}
        return tuple(part.format(**values) for part in template)

    def output_path(self, project: str) -> str:
        return self.output.format(project=project, target=self.target or project)


def build_env(config: BuildConfig) -> dict[str, str]:
    env = {
        "CFLAGS": " ".join(config.cflags),
        "CXXFLAGS": " ".join(config.cflags),
        "LDFLAGS": " ".join(config.ldflags),
    }
    if not config.architecture.native:
        env["CC"] = f"{config.architecture.triple}-gcc"
        env["CXX"] = f"{config.architecture.triple}-g++"
    return env


def execute(
    config: BuildConfig,
    provider: SandboxProvider,
    handle: SandboxHandle,
    *,
    project: str,
    recipe: BuildRecipe | None = None,
    policy: Policy | None = None,
    logger: StructuredLogger | None = None,
    gate: StageGate | None = None,
    on_output: LineSink | None = None,
) -> Path:
    """Run the stage pipeline and return the host path of the produced binary.

    *gate* is called before each stage and may raise to stop the pipeline at
    a stage boundary (operator cancellation). Output lines go to *logger* at
    debug level and to *on_output*; only the bounded tail is kept.
    """
    recipe = recipe or BuildRecipe()
    policy = policy or Policy()
    arch = config.architecture.name
    jobs = policy.jobs or os.cpu_count() or 1
    env = build_env(config)

    for stage in BUILD_STAGES:
        if gate is not None:
            gate(stage)
        argv = recipe.stage_argv(stage, project=project, jobs=jobs)
        if stage == "configure":
            argv = (*argv, *config.configure_args)
        _log(logger, arch, "stage_start", f"Running {stage} stage.", extra={"argv": list(argv)})

        result = provider.execute(
            handle,
            argv,
            timeout=policy.build_timeout,
            tail_lines=policy.log_tail_lines,
            env=env,
            on_line=_output_sink(logger, arch, stage, on_output),
        )
        if result.timed_out:
            raise StageTimeout(
                stage=stage,
                timeout=policy.build_timeout,
                log_excerpt=result.output,
                context={"architecture": arch},
            )
        if result.exit_code != 0:
            raise BuildFailed(
                f"{stage} stage failed.",
                stage=stage,
                log_excerpt=result.output,
                hint="See the log excerpt; undefined references usually mean link order.",
                context={"architecture": arch, "returncode": str(result.exit_code)},
            )
        _log(logger, arch, "stage_complete", f"Completed {stage} stage.")

    relative = recipe.output_path(project)
    artifact = provider.artifact_path(handle, relative)
    if not artifact.is_file():
        raise BuildFailed(
            "Link stage finished without producing the expected binary.",
            stage="link",
            hint="Check the recipe `output` path against the project's build layout.",
            context={"architecture": arch, "expected": relative},
        )
    return artifact


def _log(
    logger: StructuredLogger | None,
    arch: str,
    operation: str,
    message: str,
    *,
    level: str = "info",
    extra: dict[str, object] | None = None,
) -> None:
    if logger is None:
        return
    logger.log(
        operation=operation,
        architecture=arch,
        state="building",
        component="executor",
        message=message,
        level=level,
        extra=extra,
    )


def _output_sink(
    logger: StructuredLogger | None,
    arch: str,
    stage: Stage,
    on_output: LineSink | None,
) -> LineSink | None:
    if logger is None:
        return on_output

    def sink(line: str) -> None:
        _log(logger, arch, "build_output", line, level="debug", extra={"stage": stage})
        if on_output is not None:
            on_output(line)

    return sink
