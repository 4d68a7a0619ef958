"""Built-in architecture catalog."""

from __future__ import annotations

import platform

from crossbake.errors import ConfigurationError
from crossbake.models import Architecture

KNOWN_ARCHITECTURES: dict[str, Architecture] = {
    "x86_64": Architecture(
        name="x86_64",
        triple="x86_64-linux-musl",
        emulator="qemu-x86_64-static",
        machine="EM_X86_64",
        image="docker.io/muslcc/x86_64:x86_64-linux-musl",
    ),
    "i686": Architecture(
        name="i686",
        triple="i686-linux-musl",
        emulator="qemu-i386-static",
        machine="EM_386",
        image="docker.io/muslcc/x86_64:i686-linux-musl",
    ),
    "aarch64": Architecture(
        name="aarch64",
        triple="aarch64-linux-musl",
        emulator="qemu-aarch64-static",
        machine="EM_AARCH64",
        image="docker.io/muslcc/x86_64:aarch64-linux-musl",
    ),
    "armv7": Architecture(
        name="armv7",
        triple="armv7l-linux-musleabihf",
        emulator="qemu-arm-static",
        machine="EM_ARM",
        image="docker.io/muslcc/x86_64:armv7l-linux-musleabihf",
    ),
    "riscv64": Architecture(
        name="riscv64",
        triple="riscv64-linux-musl",
        emulator="qemu-riscv64-static",
        machine="EM_RISCV",
        image="docker.io/muslcc/x86_64:riscv64-linux-musl",
    ),
    "ppc64le": Architecture(
        name="ppc64le",
        triple="powerpc64le-linux-musl",
        emulator="qemu-ppc64le-static",
        machine="EM_PPC64",
        image="docker.io/muslcc/x86_64:powerpc64le-linux-musl",
    ),
    "s390x": Architecture(
        name="s390x",
        triple="s390x-linux-musl",
        emulator="qemu-s390x-static",
        machine="EM_S390",
        image="docker.io/muslcc/x86_64:s390x-linux-musl",
    ),
}

_HOST_ALIASES = {"amd64": "x86_64", "arm64": "aarch64", "armv7l": "armv7"}


def host_architecture() -> str:
    machine = platform.machine().lower()
    return _HOST_ALIASES.get(machine, machine)


def lookup_architecture(name: str, *, native_on_host: bool = True) -> Architecture:
    """Return the catalog entry for *name*; the host's own arch runs without an emulator."""
    try:
        arch = KNOWN_ARCHITECTURES[name]
    except KeyError as exc:
        raise ConfigurationError(
            f"Unknown architecture `{name}`.",
            hint="Declare the architecture inline in the build description.",
            context={"known": ", ".join(sorted(KNOWN_ARCHITECTURES))},
        ) from exc
    if native_on_host and name == host_architecture():
        return Architecture(
            name=arch.name,
            triple=arch.triple,
            emulator=None,
            libc=arch.libc,
            machine=arch.machine,
            image=arch.image,
        )
    return arch


def ensure_unique_matrix(matrix: tuple[Architecture, ...]) -> None:
    seen: set[str] = set()
    for arch in matrix:
        if arch.name in seen:
            raise ConfigurationError(
                "Architecture matrix lists the same architecture twice.",
                context={"architecture": arch.name},
            )
        seen.add(arch.name)
