"""Toolchain flag derivation for fully static, position-dependent executables.

Some sandboxed toolchains default to static-pie output, which faults at load
time on certain kernels and loaders while linking cleanly. The non-PIE static
directive set is therefore always emitted, for every architecture.
"""

from __future__ import annotations

import re
import shlex
from collections.abc import Callable, Iterable, Mapping, Sequence
from pathlib import Path

from crossbake.deps.graph import LinkEntry
from crossbake.errors import ConfigurationError, MissingStaticArtifact
from crossbake.models import Architecture, BuildConfig

STATIC_SUFFIX = ".a"
STATIC_CFLAGS = ("-fno-pie",)
STATIC_LDFLAGS = ("-static", "-no-pie")
STATIC_DISCOVERY_ARGS = (
    "-DBUILD_SHARED_LIBS=OFF",
    f"-DCMAKE_FIND_LIBRARY_SUFFIXES={STATIC_SUFFIX}",
    "-DCMAKE_POSITION_INDEPENDENT_CODE=OFF",
)
TOGGLE_NAME = re.compile(r"^[A-Za-z][A-Za-z0-9_-]*$")
TRUTHY = frozenset({"on", "true", "yes", "1"})
FALSY = frozenset({"off", "false", "no", "0"})

PathExists = Callable[[Path], bool]


def parse_toggle(raw: str) -> tuple[str, str]:
    """Split ``name=value``; a bare ``name`` means enabled."""
    name, sep, value = raw.partition("=")
    name = name.strip()
    if not TOGGLE_NAME.fullmatch(name):
        raise ConfigurationError(
            "Invalid feature toggle name.",
            hint="Toggle names start with a letter and use letters, digits, '-' or '_'.",
            context={"toggle": raw},
        )
    return name, value.strip() if sep else "on"


def normalize_toggles(toggles: Mapping[str, str] | Iterable[str]) -> tuple[tuple[str, str], ...]:
    pairs = (
        [(str(name), str(value)) for name, value in toggles.items()]
        if isinstance(toggles, Mapping)
        else [parse_toggle(item) for item in toggles]
    )
    merged: dict[str, str] = {}
    for name, value in pairs:
        parse_toggle(name)
        merged[name] = value
    return tuple(sorted(merged.items()))


def toggle_flag(name: str, value: str, *, prefix: str = "") -> str:
    option = f"{prefix}{name}".replace("-", "_").upper()
    lowered = value.lower()
    if lowered in TRUTHY:
        rendered = "On"
    elif lowered in FALSY:
        rendered = "Off"
    else:
        rendered = value
    return f"-D{option}={rendered}"


def configure(
    architecture: Architecture,
    dependency_order: Sequence[LinkEntry],
    toggles: Mapping[str, str] | Iterable[str] = (),
    *,
    exists: PathExists | None = None,
    toggle_prefix: str = "",
) -> BuildConfig:
    """Derive the build configuration, after checking every archive is present."""
    path_exists: PathExists = exists if exists is not None else Path.exists
    libraries = tuple(entry.archive for entry in dependency_order)
    for entry in dependency_order:
        _preflight(architecture, entry, path_exists)

    toggle_pairs = normalize_toggles(toggles)
    link_line = _link_line(dependency_order)

    configure_args: list[str] = [*STATIC_DISCOVERY_ARGS]
    configure_args.append(f"-DCMAKE_C_FLAGS={' '.join(STATIC_CFLAGS)}")
    configure_args.append(f"-DCMAKE_CXX_FLAGS={' '.join(STATIC_CFLAGS)}")
    configure_args.append(f"-DCMAKE_EXE_LINKER_FLAGS={' '.join(STATIC_LDFLAGS)}")
    if link_line:
        configure_args.append(f"-DCMAKE_C_STANDARD_LIBRARIES={link_line}")
        configure_args.append(f"-DCMAKE_CXX_STANDARD_LIBRARIES={link_line}")
    if not architecture.native:
        configure_args.extend(_cross_args(architecture))
    configure_args.extend(
        toggle_flag(name, value, prefix=toggle_prefix) for name, value in toggle_pairs
    )

    return BuildConfig(
        architecture=architecture,
        libraries=libraries,
        cflags=STATIC_CFLAGS,
        ldflags=(*STATIC_LDFLAGS, *_link_args(dependency_order)),
        configure_args=tuple(configure_args),
        toggles=toggle_pairs,
    )


def _preflight(architecture: Architecture, entry: LinkEntry, path_exists: PathExists) -> None:
    context = {
        "architecture": architecture.name,
        "dependency": entry.name,
        "archive": str(entry.archive),
    }
    if entry.archive.suffix != STATIC_SUFFIX:
        raise ConfigurationError(
            "Dependency archive is not a static library.",
            hint=f"Point the dependency at its `{STATIC_SUFFIX}` archive.",
            context=context,
        )
    if not path_exists(entry.archive):
        raise MissingStaticArtifact(
            "Static archive is missing from the sandbox.",
            hint="Build or install the dependency for this architecture, or add an override.",
            context=context,
        )


def _link_args(dependency_order: Sequence[LinkEntry]) -> list[str]:
    args: list[str] = []
    for entry in dependency_order:
        args.append(str(entry.archive))
        args.extend(entry.dependency.link_flags)
    return args


def _link_line(dependency_order: Sequence[LinkEntry]) -> str:
    return " ".join(shlex.quote(arg) for arg in _link_args(dependency_order))


def _cross_args(architecture: Architecture) -> list[str]:
    processor = architecture.triple.split("-", 1)[0]
    return [
        "-DCMAKE_SYSTEM_NAME=Linux",
        f"-DCMAKE_SYSTEM_PROCESSOR={processor}",
        f"-DCMAKE_C_COMPILER={architecture.triple}-gcc",
        f"-DCMAKE_CXX_COMPILER={architecture.triple}-g++",
    ]
