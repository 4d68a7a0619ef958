"""Operator-facing command line.

Usage:
    crossbake run --config build.json [--arch x86_64 ...] [--toggle kafka=on ...]
    crossbake plan --config build.json [--arch aarch64 ...] [--write-resolved out.json]
"""

from __future__ import annotations

import argparse
import contextlib
import dataclasses
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import TextIO

from crossbake.backends.base import SandboxProvider
from crossbake.backends.docker import DockerSandboxProvider
from crossbake.backends.local import LocalSandboxProvider
from crossbake.config import BuildDescription, read_description, write_description
from crossbake.errors import ConfigurationError, CrossbakeError
from crossbake.observability import StructuredLogger
from crossbake.orchestrator import Orchestrator, exit_code, plan_matrix
from crossbake.source import LocalSourceTree
from crossbake.toolchain.configure import parse_toggle

EXIT_USAGE = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="crossbake",
        description="Fully static multi-architecture builds with emulated verification",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run_p = sub.add_parser("run", help="Build and verify the architecture matrix")
    _add_common(run_p)
    run_p.add_argument(
        "--output-dir",
        type=Path,
        default=Path("dist"),
        help="Directory receiving {project}-{arch} binaries and report.json",
    )
    run_p.add_argument(
        "--backend",
        choices=("local", "docker"),
        default="docker",
        help="Sandbox provider",
    )
    run_p.add_argument("--source", type=Path, help="Override the source tree directory")
    run_p.add_argument("--workspace", type=Path, help="Parent directory for sandboxes")
    run_p.add_argument("--jobs", type=int, help="Parallel compile jobs per build")
    run_p.add_argument("--parallel", type=int, help="Architectures built concurrently")
    run_p.add_argument("--verbose", action="store_true", help="Stream build output to stderr")
    run_p.add_argument(
        "--log-file",
        type=Path,
        help="Stream every structured log record, build output included, as JSON lines",
    )

    plan_p = sub.add_parser("plan", help="Print link order and flags without building")
    _add_common(plan_p)
    plan_p.add_argument(
        "--write-resolved",
        type=Path,
        help="Write the description with toggles applied and patch payloads inlined",
    )
    return parser


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", type=Path, required=True, help="Build description JSON")
    parser.add_argument(
        "--arch",
        action="append",
        default=[],
        help="Architecture subset (repeatable; default: whole matrix)",
    )
    parser.add_argument(
        "--toggle",
        action="append",
        default=[],
        help="Feature toggle NAME=VALUE (repeatable; overrides the description)",
    )


def cmd_run(args: argparse.Namespace, out: TextIO, err: TextIO) -> int:
    description = _load(args)
    matrix = description.select(tuple(args.arch))
    policy = description.policy
    if args.jobs is not None:
        policy = dataclasses.replace(policy, jobs=args.jobs)
    if args.parallel is not None:
        policy = dataclasses.replace(policy, max_parallel=args.parallel)

    def _stream(arch: str, line: str) -> None:
        print(f"[{arch}] {line}", file=err)

    provider = _provider(args, description)
    with contextlib.ExitStack() as stack:
        logger = StructuredLogger()
        if args.log_file is not None:
            args.log_file.parent.mkdir(parents=True, exist_ok=True)
            logger.stream = stack.enter_context(args.log_file.open("w", encoding="utf-8"))
        orchestrator = Orchestrator(
            provider=provider,
            output_dir=args.output_dir,
            project=description.project,
            recipe=description.recipe,
            policy=policy,
            logger=logger,
            on_output=_stream if args.verbose else None,
        )
        results = orchestrator.run(
            matrix,
            description.dependencies,
            description.patches,
            description.toggles,
        )
    for result in results:
        line = result.summary_line()
        if result.warnings:
            line += f" ({'; '.join(result.warnings)})"
        print(line, file=out)
    return exit_code(results)


def cmd_plan(args: argparse.Namespace, out: TextIO, err: TextIO) -> int:
    description = _load(args)
    matrix = description.select(tuple(args.arch))
    configs = plan_matrix(
        matrix,
        description.dependencies,
        description.toggles,
        toggle_prefix=description.policy.toggle_prefix,
    )
    for name, config in configs.items():
        print(f"{name}: {config.architecture.triple} digest={config.digest()[:12]}", file=out)
        for index, library in enumerate(config.libraries, start=1):
            print(f"  {index}. {library}", file=out)
        print(f"  cflags: {' '.join(config.cflags)}", file=out)
        print(f"  ldflags: {' '.join(config.ldflags)}", file=out)
        for arg in config.configure_args:
            print(f"  {arg}", file=out)
    if args.write_resolved is not None:
        path = write_description(description, args.write_resolved)
        print(f"resolved description: {path}", file=out)
    return 0


def _load(args: argparse.Namespace) -> BuildDescription:
    description = read_description(args.config)
    if args.toggle:
        overrides = dict(parse_toggle(item) for item in args.toggle)
        description = dataclasses.replace(
            description,
            toggles={**description.toggles, **overrides},
        )
    return description


def _provider(args: argparse.Namespace, description: BuildDescription) -> SandboxProvider:
    source = LocalSourceTree(args.source) if args.source is not None else description.source
    if source is None:
        raise ConfigurationError(
            "No source tree configured.",
            hint="Add a `source` section to the description or pass --source.",
        )
    if args.backend == "local":
        return LocalSandboxProvider(source=source, workspace=args.workspace)
    return DockerSandboxProvider(source=source, workspace=args.workspace)


def main(
    argv: Sequence[str] | None = None,
    *,
    out: TextIO | None = None,
    err: TextIO | None = None,
) -> int:
    out = out or sys.stdout
    err = err or sys.stderr
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        if args.command == "run":
            return cmd_run(args, out, err)
        return cmd_plan(args, out, err)
    except CrossbakeError as exc:
        print(f"error[{exc.code}]: {exc}", file=err)
        return EXIT_USAGE if isinstance(exc, ConfigurationError) else 1


if __name__ == "__main__":
    raise SystemExit(main())
