"""Streaming subprocess execution with a hard timeout and a bounded output tail."""

from __future__ import annotations

import os
import signal
import subprocess
import threading
from collections import deque
from collections.abc import Mapping
from pathlib import Path

from crossbake.backends.base import CommandResult, LineSink
from crossbake.errors import BackendExecutionError


def run_streaming(
    argv: tuple[str, ...],
    *,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    timeout: float,
    tail_lines: int = 200,
    on_line: LineSink | None = None,
) -> CommandResult:
    """Run *argv*, forwarding each output line to *on_line* and keeping only the tail."""
    merged_env = {**os.environ, **dict(env or {})}
    try:
        process = subprocess.Popen(
            argv,
            cwd=str(cwd) if cwd is not None else None,
            env=merged_env,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
            start_new_session=True,
        )
    except OSError as exc:
        raise BackendExecutionError(
            "Failed to start command.",
            hint="Ensure the tool is installed and on PATH.",
            context={"argv": " ".join(argv), "error": str(exc)},
        ) from exc

    expired = threading.Event()

    def _kill() -> None:
        if process.poll() is not None:
            return
        expired.set()
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass

    watchdog = threading.Timer(timeout, _kill)
    watchdog.daemon = True
    tail: deque[str] = deque(maxlen=tail_lines)
    watchdog.start()
    try:
        for line in process.stdout or ():
            tail.append(line)
            if on_line is not None:
                on_line(line.rstrip("\n"))
        exit_code = process.wait()
    finally:
        watchdog.cancel()
        if process.poll() is None:
            _kill()
            process.wait()
        if process.stdout is not None:
            process.stdout.close()

    return CommandResult(exit_code=exit_code, output="".join(tail), timed_out=expired.is_set())
