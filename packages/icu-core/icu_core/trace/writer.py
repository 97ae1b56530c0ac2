"""
ICU Trace Writer - append trace events to a JSONL file.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Optional, TextIO

from .models import TraceEvent

logger = logging.getLogger(__name__)


class TraceWriter:
    """
    Writes trace events to a JSONL file, one event per line.

    The file is opened lazily in append mode and flushed after every event
    unless ``auto_flush`` is disabled.
    """

    def __init__(self, path: str | Path, auto_flush: bool = True):
        self.path = Path(path)
        self.auto_flush = auto_flush
        self._file: Optional[TextIO] = None
        self._event_count = 0

        self.path.parent.mkdir(parents=True, exist_ok=True)

    def open(self) -> "TraceWriter":
        if self._file is None:
            self._file = open(self.path, "a", encoding="utf-8")
            logger.debug(f"Opened trace file: {self.path}")
        return self

    def close(self) -> None:
        if self._file is not None:
            self._file.flush()
            self._file.close()
            self._file = None
            logger.debug(f"Closed trace file: {self.path} ({self._event_count} events)")

    def write(self, event: TraceEvent) -> None:
        if self._file is None:
            self.open()
        self._file.write(event.to_jsonl() + "\n")
        self._event_count += 1
        if self.auto_flush:
            self._file.flush()

    def write_many(self, events: Iterable[TraceEvent]) -> None:
        for event in events:
            self.write(event)

    @property
    def event_count(self) -> int:
        return self._event_count

    def __enter__(self) -> "TraceWriter":
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class NullTraceWriter(TraceWriter):
    """No-op writer: counts events, touches no files."""

    def __init__(self):
        self.path = None
        self.auto_flush = False
        self._file = None
        self._event_count = 0

    def open(self) -> "NullTraceWriter":
        return self

    def close(self) -> None:
        pass

    def write(self, event: TraceEvent) -> None:
        self._event_count += 1
