"""Build description parser and serializer.

A build description is a JSON document naming the project, the
architecture matrix, the static dependency graph, source patches, feature
toggles, the build recipe, run policy, and where the source tree comes from.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

from crossbake.arches import ensure_unique_matrix, lookup_architecture
from crossbake.errors import ConfigurationError
from crossbake.executor import BuildRecipe
from crossbake.models import PATCH_OPS, Architecture, Dependency, Patch
from crossbake.policy import Policy
from crossbake.source import GitSourceTree, LocalSourceTree, SourceTree

DEFAULT_GIT_CACHE = Path(".crossbake") / "git"


@dataclass(frozen=True, slots=True)
class BuildDescription:
    project: str
    architectures: tuple[Architecture, ...]
    dependencies: tuple[Dependency, ...] = ()
    patches: tuple[Patch, ...] = ()
    toggles: dict[str, str] = field(default_factory=dict)
    recipe: BuildRecipe = field(default_factory=BuildRecipe)
    policy: Policy = field(default_factory=Policy)
    source: SourceTree | None = None

    def select(self, names: tuple[str, ...]) -> tuple[Architecture, ...]:
        """Return the matrix subset named by *names*, in matrix order."""
        if not names:
            return self.architectures
        known = {arch.name for arch in self.architectures}
        unknown = sorted(set(names) - known)
        if unknown:
            raise ConfigurationError(
                "Requested architecture is not in the build description.",
                context={"unknown": ", ".join(unknown), "known": ", ".join(sorted(known))},
            )
        return tuple(arch for arch in self.architectures if arch.name in names)


def parse_description(raw: str, *, base_dir: Path | None = None) -> BuildDescription:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigurationError("Invalid build description JSON.", hint=str(exc)) from exc

    if not isinstance(payload, dict):
        raise ConfigurationError("Invalid build description payload type.")

    root = base_dir or Path.cwd()
    architectures = tuple(
        _parse_architecture(item) for item in _required_list(payload, "architectures")
    )
    ensure_unique_matrix(architectures)
    return BuildDescription(
        project=_required_str(payload, "project"),
        architectures=architectures,
        dependencies=tuple(
            _parse_dependency(item) for item in _optional_list(payload, "dependencies")
        ),
        patches=tuple(_parse_patch(item, root) for item in _optional_list(payload, "patches")),
        toggles=_parse_toggles(payload.get("toggles", {})),
        recipe=_parse_recipe(payload.get("recipe", {})),
        policy=_parse_policy(payload.get("policy", {})),
        source=_parse_source(payload.get("source"), root),
    )


def read_description(path: str | Path) -> BuildDescription:
    description_path = Path(path)
    try:
        raw = description_path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ConfigurationError(
            "Build description does not exist.",
            context={"path": str(description_path)},
        ) from exc
    return parse_description(raw, base_dir=description_path.resolve().parent)


def serialize_description(description: BuildDescription) -> str:
    """Render *description* as JSON with inline architectures and patch payloads."""
    payload: dict[str, Any] = {
        "project": description.project,
        "architectures": [
            {
                "name": arch.name,
                "triple": arch.triple,
                "emulator": arch.emulator,
                "libc": arch.libc,
                "machine": arch.machine,
                "image": arch.image,
            }
            for arch in description.architectures
        ],
        "dependencies": [
            {
                "name": dep.name,
                "archive": str(dep.archive),
                "requires": sorted(dep.requires),
                "link_flags": list(dep.link_flags),
                "overrides": {arch: str(path) for arch, path in sorted(dep.overrides.items())},
            }
            for dep in description.dependencies
        ],
        "patches": [
            {
                "target": patch.target,
                "op": patch.op,
                "payload": patch.payload,
                "replacement": patch.replacement,
                "architectures": list(patch.architectures),
                "name": patch.name,
            }
            for patch in description.patches
        ],
        "toggles": dict(description.toggles),
        "recipe": {
            "configure": list(description.recipe.configure),
            "compile": list(description.recipe.compile),
            "link": list(description.recipe.link),
            "output": description.recipe.output,
            "target": description.recipe.target,
        },
        "policy": asdict(description.policy),
    }
    if isinstance(description.source, GitSourceTree):
        payload["source"] = {
            "git": description.source.repo,
            "ref": description.source.ref,
            "cache_dir": str(description.source.cache_dir),
            "submodules": description.source.submodules,
        }
    elif isinstance(description.source, LocalSourceTree):
        payload["source"] = {"path": str(description.source.path)}
    return json.dumps(payload, indent=2, sort_keys=True) + "\n"


def write_description(description: BuildDescription, path: str | Path) -> Path:
    description_path = Path(path)
    description_path.parent.mkdir(parents=True, exist_ok=True)
    description_path.write_text(serialize_description(description), encoding="utf-8")
    return description_path


def _parse_architecture(item: Any) -> Architecture:
    if isinstance(item, str):
        return lookup_architecture(item)
    if not isinstance(item, dict):
        raise ConfigurationError("Invalid architecture entry.")
    libc = item.get("libc", "musl")
    if libc not in ("musl", "glibc"):
        raise ConfigurationError(
            "Invalid architecture `libc` value.",
            context={"libc": str(libc)},
        )
    return Architecture(
        name=_required_str(item, "name"),
        triple=_required_str(item, "triple"),
        emulator=_optional_str(item, "emulator"),
        libc=libc,
        machine=_optional_str(item, "machine") or "",
        image=_optional_str(item, "image"),
    )


def _parse_dependency(item: Any) -> Dependency:
    if not isinstance(item, dict):
        raise ConfigurationError("Invalid dependency entry.")
    overrides = item.get("overrides", {})
    if not isinstance(overrides, dict) or not all(
        isinstance(key, str) and isinstance(value, str) for key, value in overrides.items()
    ):
        raise ConfigurationError("Invalid dependency `overrides` value.")
    return Dependency(
        name=_required_str(item, "name"),
        archive=Path(_required_str(item, "archive")),
        requires=frozenset(_str_list(item, "requires")),
        link_flags=tuple(_str_list(item, "link_flags")),
        overrides={arch: Path(path) for arch, path in overrides.items()},
    )


def _parse_patch(item: Any, root: Path) -> Patch:
    if not isinstance(item, dict):
        raise ConfigurationError("Invalid patch entry.")
    op = _required_str(item, "op")
    if op not in PATCH_OPS:
        raise ConfigurationError(
            "Invalid patch `op` value.",
            context={"op": op, "supported": ", ".join(PATCH_OPS)},
        )
    payload_file = _optional_str(item, "payload_file")
    if payload_file is not None:
        payload = (root / payload_file).read_text(encoding="utf-8")
    else:
        payload = _required_str(item, "payload")
    return Patch(
        target=_required_str(item, "target"),
        op=op,  # type: ignore[arg-type]
        payload=payload,
        replacement=_optional_str(item, "replacement") or "",
        architectures=tuple(_str_list(item, "architectures")),
        name=_optional_str(item, "name") or "",
    )


def _parse_toggles(value: Any) -> dict[str, str]:
    if not isinstance(value, dict):
        raise ConfigurationError("Invalid `toggles` value.")
    parsed: dict[str, str] = {}
    for name, setting in value.items():
        if isinstance(setting, bool):
            parsed[name] = "on" if setting else "off"
        elif isinstance(setting, (str, int)):
            parsed[name] = str(setting)
        else:
            raise ConfigurationError("Invalid toggle value.", context={"toggle": str(name)})
    return parsed


def _parse_recipe(value: Any) -> BuildRecipe:
    if not isinstance(value, dict):
        raise ConfigurationError("Invalid `recipe` value.")
    defaults = BuildRecipe()
    return BuildRecipe(
        configure=tuple(_str_list(value, "configure")) or defaults.configure,
        compile=tuple(_str_list(value, "compile")) or defaults.compile,
        link=tuple(_str_list(value, "link")) or defaults.link,
        output=_optional_str(value, "output") or defaults.output,
        target=_optional_str(value, "target"),
    )


def _parse_policy(value: Any) -> Policy:
    if not isinstance(value, dict):
        raise ConfigurationError("Invalid `policy` value.")
    known = {item.name for item in fields(Policy)}
    unknown = sorted(set(value) - known)
    if unknown:
        raise ConfigurationError(
            "Unknown policy keys.",
            context={"unknown": ", ".join(unknown), "known": ", ".join(sorted(known))},
        )
    return Policy(**value)


def _parse_source(value: Any, root: Path) -> SourceTree | None:
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ConfigurationError("Invalid `source` value.")
    if "git" in value:
        cache_dir = _optional_str(value, "cache_dir")
        return GitSourceTree(
            repo=_required_str(value, "git"),
            ref=_required_str(value, "ref"),
            cache_dir=root / cache_dir if cache_dir else root / DEFAULT_GIT_CACHE,
            submodules=bool(value.get("submodules", True)),
        )
    return LocalSourceTree(path=root / _required_str(value, "path"))


def _required_str(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value:
        raise ConfigurationError(f"Invalid build description `{key}` value.")
    return value


def _optional_str(payload: dict[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigurationError(f"Invalid build description `{key}` value.")
    return value


def _required_list(payload: dict[str, Any], key: str) -> list[Any]:
    value = payload.get(key)
    if not isinstance(value, list) or not value:
        raise ConfigurationError(f"Invalid build description `{key}` value.")
    return value


def _optional_list(payload: dict[str, Any], key: str) -> list[Any]:
    value = payload.get(key, [])
    if not isinstance(value, list):
        raise ConfigurationError(f"Invalid build description `{key}` value.")
    return value


def _str_list(payload: dict[str, Any], key: str) -> list[str]:
    value = _optional_list(payload, key)
    if not all(isinstance(item, str) for item in value):
        raise ConfigurationError(f"Invalid build description `{key}` entries.")
    return value
