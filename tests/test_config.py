import json
from pathlib import Path

import pytest

from crossbake.arches import KNOWN_ARCHITECTURES, ensure_unique_matrix, lookup_architecture
from crossbake.config import (
    parse_description,
    read_description,
    serialize_description,
    write_description,
)
from crossbake.errors import ConfigurationError
from crossbake.policy import Policy, ensure_valid_policy
from crossbake.source import GitSourceTree, LocalSourceTree

DESCRIPTION = {
    "project": "svc",
    "architectures": [
        "aarch64",
        {
            "name": "mips",
            "triple": "mips-linux-musl",
            "emulator": "qemu-mips-static",
            "machine": "EM_MIPS",
        },
    ],
    "dependencies": [
        {
            "name": "rdkafka",
            "archive": "/opt/lib/librdkafka.a",
            "requires": ["ssl"],
            "link_flags": ["-lpthread"],
        },
        {
            "name": "ssl",
            "archive": "/opt/lib/libssl.a",
            "overrides": {"aarch64": "/opt/aarch64/libssl.a"},
        },
    ],
    "patches": [
        {"target": "CMakeLists.txt", "op": "append-line", "payload": "link_libraries(rdkafka)"},
        {"target": "CMakeLists.txt", "op": "apply-diff", "payload_file": "static.diff"},
    ],
    "toggles": {"kafka": True, "tls": False, "level": 3},
    "recipe": {"output": "out/{project}", "target": "svc-bin"},
    "policy": {"build_timeout": 600, "max_parallel": 2},
    "source": {"path": "src"},
}


def _write(tmp_path: Path, payload: dict) -> Path:
    path = tmp_path / "build.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    (tmp_path / "static.diff").write_text("@@ -1 +1 @@\n-a\n+b\n", encoding="utf-8")
    return path


def _write_diff(tmp_path: Path) -> None:
    (tmp_path / "static.diff").write_text("@@ -1 +1 @@\n-a\n+b\n", encoding="utf-8")


def test_read_description(tmp_path: Path) -> None:
    description = read_description(_write(tmp_path, DESCRIPTION))

    assert description.project == "svc"
    assert [arch.name for arch in description.architectures] == ["aarch64", "mips"]
    assert description.architectures[1].emulator == "qemu-mips-static"
    assert description.dependencies[0].requires == frozenset({"ssl"})
    assert description.dependencies[1].archive_for("aarch64") == Path("/opt/aarch64/libssl.a")
    assert description.patches[1].payload.startswith("@@ -1 +1 @@")
    assert description.toggles == {"kafka": "on", "tls": "off", "level": "3"}
    assert description.recipe.output_path("svc") == "out/svc"
    assert description.recipe.target == "svc-bin"
    assert description.policy == Policy(build_timeout=600, max_parallel=2)
    assert isinstance(description.source, LocalSourceTree)
    assert description.source.path == tmp_path / "src"


def test_git_source_section(tmp_path: Path) -> None:
    _write_diff(tmp_path)
    payload = {
        **DESCRIPTION,
        "source": {"git": "https://example.com/app.git", "ref": "a" * 40, "submodules": False},
    }

    description = parse_description(json.dumps(payload), base_dir=tmp_path)

    assert isinstance(description.source, GitSourceTree)
    assert description.source.submodules is False
    assert description.source.cache_dir == tmp_path / ".crossbake" / "git"


def test_select_subset_keeps_matrix_order(tmp_path: Path) -> None:
    _write_diff(tmp_path)
    description = parse_description(json.dumps(DESCRIPTION), base_dir=tmp_path)

    assert [arch.name for arch in description.select(("mips", "aarch64"))] == ["aarch64", "mips"]
    assert description.select(()) == description.architectures
    with pytest.raises(ConfigurationError, match="not in the build description"):
        description.select(("s390x",))


@pytest.mark.parametrize(
    ("override", "message"),
    [
        ({"architectures": []}, "architectures"),
        ({"architectures": ["vax"]}, "Unknown architecture"),
        ({"architectures": ["aarch64", "aarch64"]}, "same architecture twice"),
        ({"patches": [{"target": "x", "op": "sed", "payload": "y"}]}, "op"),
        ({"policy": {"retries": 3}}, "Unknown policy keys"),
        ({"toggles": {"kafka": [1]}}, "toggle"),
        ({"dependencies": [{"name": "z"}]}, "archive"),
        ({"project": ""}, "project"),
    ],
)
def test_invalid_descriptions(tmp_path: Path, override: dict, message: str) -> None:
    _write_diff(tmp_path)
    payload = {**DESCRIPTION, **override}

    with pytest.raises(ConfigurationError, match=message):
        parse_description(json.dumps(payload), base_dir=tmp_path)


def test_invalid_json_and_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError, match="Invalid build description JSON"):
        parse_description("{", base_dir=tmp_path)
    with pytest.raises(ConfigurationError, match="does not exist"):
        read_description(tmp_path / "missing.json")


def test_catalog_entries_are_static_musl_targets() -> None:
    for name, arch in KNOWN_ARCHITECTURES.items():
        assert arch.name == name
        assert arch.libc == "musl"
        assert arch.machine.startswith("EM_")
        assert arch.emulator is not None and arch.emulator.startswith("qemu-")


def test_host_architecture_runs_natively(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("crossbake.arches.platform.machine", lambda: "arm64")

    assert lookup_architecture("aarch64").native
    assert not lookup_architecture("x86_64").native
    assert not lookup_architecture("aarch64", native_on_host=False).native


def test_duplicate_matrix_entries_are_rejected() -> None:
    arch = KNOWN_ARCHITECTURES["riscv64"]

    with pytest.raises(ConfigurationError):
        ensure_unique_matrix((arch, arch))


@pytest.mark.parametrize(
    "policy",
    [
        Policy(build_timeout=0),
        Policy(verify_timeout=-1),
        Policy(log_tail_lines=0),
        Policy(max_parallel=0),
    ],
)
def test_invalid_policy(policy: Policy) -> None:
    with pytest.raises(ConfigurationError):
        ensure_valid_policy(policy)


def test_written_description_reads_back_identically(tmp_path: Path) -> None:
    description = read_description(_write(tmp_path, DESCRIPTION))

    path = write_description(description, tmp_path / "out" / "resolved.json")
    reread = read_description(path)

    assert reread == description
    payload = json.loads(serialize_description(description))
    assert payload["architectures"][0]["triple"] == "aarch64-linux-musl"
    assert payload["patches"][1]["payload"].startswith("@@ -1 +1 @@")
    assert payload["source"] == {"path": str(tmp_path / "src")}
