from __future__ import annotations

import threading
import time
from typing import Dict, List, Protocol

from .types import GenerationRecord, HistoryEntry


class HistoryLedger(Protocol):
    def record(self, record: GenerationRecord) -> str:
        """Append a record and return its key."""

    def list(self) -> List[HistoryEntry]:
        """Return every entry in insertion order."""

    def __len__(self) -> int: ...


class HistoryRecorder:
    """In-process, append-only generation history.

    Keys are millisecond timestamps, bumped by one whenever the clock has not
    advanced past the previous key, so they are unique and increasing.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, GenerationRecord] = {}
        self._last_key = 0
        self._lock = threading.Lock()

    def record(self, record: GenerationRecord) -> str:
        with self._lock:
            key = max(time.time_ns() // 1_000_000, self._last_key + 1)
            self._last_key = key
            self._entries[str(key)] = record
        return str(key)

    def list(self) -> List[HistoryEntry]:
        with self._lock:
            items = list(self._entries.items())
        return [HistoryEntry(id=key, **record.model_dump()) for key, record in items]

    def __len__(self) -> int:
        return len(self._entries)
