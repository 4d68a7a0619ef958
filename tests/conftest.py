"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest
from support import ScriptedEmulator, linking_handler

from crossbake.backends.inprocess import InProcessSandboxProvider
from crossbake.source import LocalSourceTree


@pytest.fixture
def source_dir(tmp_path: Path) -> Path:
    """A tiny CMake project checkout."""
    root = tmp_path / "source"
    root.mkdir()
    (root / "CMakeLists.txt").write_text(
        "cmake_minimum_required(VERSION 3.16)\nproject(app C)\nadd_executable(app main.c)\n",
        encoding="utf-8",
    )
    (root / "main.c").write_text("int main(void) { return 0; }\n", encoding="utf-8")
    (root / ".git").mkdir()
    (root / ".git" / "HEAD").write_text("ref: refs/heads/main\n", encoding="utf-8")
    return root


@pytest.fixture
def inprocess_provider(source_dir: Path, tmp_path: Path) -> InProcessSandboxProvider:
    """In-process provider seeded with the sample project and one static archive."""
    workspace = tmp_path / "sandboxes"
    workspace.mkdir()
    return InProcessSandboxProvider(
        source=LocalSourceTree(source_dir),
        files={"deps/librdkafka.a": b"!<arch>\n"},
        handler=linking_handler(),
        workspace=workspace,
    )


@pytest.fixture
def emulator() -> ScriptedEmulator:
    return ScriptedEmulator()
