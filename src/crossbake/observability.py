"""Structured logging and observability helpers."""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from typing import Any, TextIO


@dataclass(slots=True)
class StructuredLogger:
    """Collects dict records; *stream* receives every record as a JSON line.

    Debug records (build output) are only streamed unless *retain_debug* is
    set, which keeps memory bounded by the non-debug records.
    """

    records: list[dict[str, Any]] = field(default_factory=list)
    stream: TextIO | None = None
    retain_debug: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def log(
        self,
        *,
        operation: str,
        architecture: str | None,
        state: str | None,
        component: str | None,
        message: str,
        level: str = "info",
        extra: dict[str, Any] | None = None,
    ) -> None:
        record: dict[str, Any] = {
            "level": level,
            "operation": operation,
            "architecture": architecture,
            "state": state,
            "component": component,
            "message": message,
        }
        if extra is not None:
            record["extra"] = extra
        with self._lock:
            if self.stream is not None:
                self.stream.write(json.dumps(record, sort_keys=True) + "\n")
            if level != "debug" or self.retain_debug:
                self.records.append(record)

    def records_for_architecture(self, architecture: str) -> list[dict[str, Any]]:
        with self._lock:
            return [
                record for record in self.records if record.get("architecture") == architecture
            ]
