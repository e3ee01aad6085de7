"""Event sink: bounded in-memory buffer plus optional NDJSON file.

Events are appended as one JSON line per event.  Writes use
``json.dumps(sort_keys=True)`` for deterministic output.

Concurrency safety:

- Each append acquires an exclusive ``fcntl.flock`` on the target file.
- Reads acquire a shared lock.
- On platforms without ``fcntl`` (Windows), locking is skipped.
"""

from __future__ import annotations

import json
import os
import threading
from collections import deque
from pathlib import Path
from typing import Any

from gridcalc.logging.events import CalcEvent

# Try to import fcntl for file locking (Unix only)
try:
    import fcntl

    _HAS_FCNTL = True
except ImportError:
    _HAS_FCNTL = False

# Default tail-read size (2 MB)
_DEFAULT_TAIL_BYTES = 2 * 1024 * 1024


class EventSink:
    """Append-only event writer.

    Parameters
    ----------
    path : Path | None
        NDJSON file to append to.  ``None`` keeps events in memory only.
    fsync : bool
        ``fsync`` after every file append.
    buffer_size : int
        Number of most recent events kept in memory.
    tail_bytes : int | None
        Upper bound on bytes read back from the file by ``read_file``.
    """

    def __init__(
        self,
        path: Path | None = None,
        *,
        fsync: bool = False,
        buffer_size: int = 1000,
        tail_bytes: int | None = None,
    ) -> None:
        self.path = path
        self._fsync = fsync
        self._tail_bytes = tail_bytes if tail_bytes is not None else _DEFAULT_TAIL_BYTES
        self._buffer: deque[dict[str, Any]] = deque(maxlen=buffer_size)
        self._lock = threading.Lock()
        if path is not None:
            path.parent.mkdir(parents=True, exist_ok=True)

    def write(self, event: CalcEvent) -> None:
        """Record *event* in the buffer and, if configured, the NDJSON file."""
        record = event.model_dump(mode="json")
        with self._lock:
            self._buffer.append(record)
        if self.path is not None:
            self._append(self.path, json.dumps(record, sort_keys=True, default=str) + "\n")

    # ------------------------------------------------------------------
    # Query helpers
    # ------------------------------------------------------------------

    def read_events(
        self,
        *,
        level: str | None = None,
        event_type: str | None = None,
        limit: int = 200,
    ) -> list[dict[str, Any]]:
        """Read buffered events, most-recent-first, with filters."""
        with self._lock:
            events = list(self._buffer)
        return _filter(events, level=level, event_type=event_type, limit=limit)

    def read_file(
        self,
        *,
        level: str | None = None,
        event_type: str | None = None,
        limit: int = 200,
    ) -> list[dict[str, Any]]:
        """Read events back from the NDJSON file, most-recent-first.

        Uses tail-style reading to bound memory usage on large log files.
        """
        if self.path is None:
            return []
        return _filter(self._read_ndjson(self.path), level=level, event_type=event_type, limit=limit)

    def clear(self) -> None:
        """Drop buffered events (the file is left untouched)."""
        with self._lock:
            self._buffer.clear()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _append(self, path: Path, line: str) -> None:
        """Append a single line to *path* under exclusive file lock."""
        if _HAS_FCNTL:
            fd = os.open(str(path), os.O_WRONLY | os.O_CREAT | os.O_APPEND)
            try:
                fcntl.flock(fd, fcntl.LOCK_EX)
                os.write(fd, line.encode("utf-8"))
                if self._fsync:
                    os.fsync(fd)
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
                os.close(fd)
        else:
            with open(path, "a", encoding="utf-8") as f:
                f.write(line)
                if self._fsync:
                    f.flush()
                    os.fsync(f.fileno())

    def _read_ndjson(self, path: Path) -> list[dict[str, Any]]:
        """Read an NDJSON file with tail-bounded reading."""
        if not path.exists():
            return []

        raw = self._read_tail(path)
        events: list[dict[str, Any]] = []
        for line in raw.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                events.append(json.loads(line))
            except json.JSONDecodeError:
                continue
        return events

    def _read_tail(self, path: Path) -> str:
        """Read up to the last ``self._tail_bytes`` of a file under shared lock."""
        with open(path, "rb") as f:
            if _HAS_FCNTL:
                fcntl.flock(f.fileno(), fcntl.LOCK_SH)
            try:
                file_size = os.fstat(f.fileno()).st_size
                if file_size <= self._tail_bytes:
                    data = f.read()
                else:
                    f.seek(file_size - self._tail_bytes)
                    data = f.read()
                    # Drop the first (likely partial) line
                    idx = data.find(b"\n")
                    if idx >= 0:
                        data = data[idx + 1:]
            finally:
                if _HAS_FCNTL:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        return data.decode("utf-8", errors="replace")


def _filter(
    events: list[dict[str, Any]],
    *,
    level: str | None,
    event_type: str | None,
    limit: int,
) -> list[dict[str, Any]]:
    if level:
        events = [e for e in events if e.get("level") == level]
    if event_type:
        events = [e for e in events if e.get("event_type") == event_type]
    # Most recent first
    events.reverse()
    return events[:limit]
