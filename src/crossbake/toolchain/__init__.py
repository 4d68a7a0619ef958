"""Per-architecture toolchain configuration."""

from .configure import (
    STATIC_CFLAGS,
    STATIC_LDFLAGS,
    configure,
    normalize_toggles,
    parse_toggle,
    toggle_flag,
)

__all__ = [
    "STATIC_CFLAGS",
    "STATIC_LDFLAGS",
    "configure",
    "normalize_toggles",
    "parse_toggle",
    "toggle_flag",
]
