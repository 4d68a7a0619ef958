"""Source tree providers: pinned git checkouts with submodules, or local directories.

Each pipeline receives its own private copy of the tree, so patches applied
for one architecture never leak into another.
"""

from __future__ import annotations

import re
import shutil
import subprocess
import tempfile
import threading
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from crossbake.errors import SourceError, ValidationError

COMMIT_PATTERN = re.compile(r"^[0-9a-f]{40}$")
DEFAULT_IGNORE = (".git",)


class MutableRefWarning(UserWarning):
    """Warning raised when a source tree is pinned to a mutable git ref."""


class SourceTree(Protocol):
    def materialize(self, destination: Path) -> Path:
        """Copy the pinned tree (with submodule content) into *destination*."""


@dataclass(frozen=True, slots=True)
class LocalSourceTree:
    path: Path
    ignore: tuple[str, ...] = DEFAULT_IGNORE

    def materialize(self, destination: Path) -> Path:
        source = Path(self.path)
        if not source.is_dir():
            raise SourceError(
                "Source tree directory does not exist.",
                context={"path": str(source)},
            )
        shutil.copytree(
            source,
            destination,
            symlinks=True,
            ignore=shutil.ignore_patterns(*self.ignore),
        )
        return destination


@dataclass(slots=True)
class GitSourceTree:
    """A git repository pinned to one commit, checked out once into a shared cache."""

    repo: str
    ref: str
    cache_dir: Path
    submodules: bool = True
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _checkout: Path | None = field(default=None, init=False, repr=False)

    def materialize(self, destination: Path) -> Path:
        checkout = self.checkout()
        shutil.copytree(
            checkout,
            destination,
            symlinks=True,
            ignore=shutil.ignore_patterns(*DEFAULT_IGNORE),
        )
        return destination

    def checkout(self) -> Path:
        with self._lock:
            if self._checkout is None:
                self._checkout = self._fetch()
            return self._checkout

    def _fetch(self) -> Path:
        if not self.ref:
            raise ValidationError("GitSourceTree requires a ref.")
        commit = self._resolve_commit()
        cache_root = Path(self.cache_dir)
        cache_root.mkdir(parents=True, exist_ok=True)
        checkout_path = cache_root / commit
        if checkout_path.exists():
            _verify_cached_checkout(checkout_path=checkout_path, commit=commit)
            return checkout_path

        temp_root = Path(tempfile.mkdtemp(prefix="crossbake-git-", dir=str(cache_root)))
        try:
            _run_git(["clone", "--quiet", self.repo, str(temp_root)])
            _run_git(["checkout", "--quiet", commit], cwd=temp_root)
            if self.submodules:
                _run_git(
                    ["submodule", "update", "--init", "--recursive", "--quiet"],
                    cwd=temp_root,
                )
            shutil.move(str(temp_root), checkout_path)
        finally:
            if temp_root.exists():
                shutil.rmtree(temp_root, ignore_errors=True)
        return checkout_path

    def _resolve_commit(self) -> str:
        if COMMIT_PATTERN.fullmatch(self.ref):
            return self.ref
        warnings.warn(
            f"Mutable git ref `{self.ref}` was requested; the build is not pinned.",
            MutableRefWarning,
            stacklevel=3,
        )
        output = _run_git(["ls-remote", self.repo, self.ref])
        lines = [line for line in output.splitlines() if line.strip()]
        if not lines:
            raise SourceError(
                "Unable to resolve git ref.",
                hint="Ensure the repository and ref are valid and reachable.",
                context={"repo": self.repo, "ref": self.ref},
            )
        return lines[0].split()[0]


def _verify_cached_checkout(*, checkout_path: Path, commit: str) -> None:
    cached_commit = _run_git(["rev-parse", "HEAD"], cwd=checkout_path)
    if cached_commit != commit:
        raise SourceError(
            "Cached git checkout does not match the pinned commit.",
            hint="Delete the cache entry and refetch.",
            context={
                "path": str(checkout_path),
                "expected_commit": commit,
                "actual_commit": cached_commit,
            },
        )


def _run_git(argv: list[str], cwd: Path | None = None) -> str:
    command = ["git", *argv]
    completed = subprocess.run(
        command,
        cwd=cwd,
        check=False,
        text=True,
        capture_output=True,
    )
    if completed.returncode != 0:
        raise SourceError(
            "Git command failed.",
            hint="Inspect repository/ref inputs and git installation.",
            context={
                "argv": " ".join(command),
                "stderr": completed.stderr.strip(),
            },
        )
    return completed.stdout.strip()
