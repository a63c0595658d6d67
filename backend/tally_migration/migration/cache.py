"""
Lookaside cache of parsed documents between upload and import.

Entries live only in this process: after a restart the cache is empty and
the caller has to re-upload the file. Entries are evicted when the batch
reaches a terminal state.
"""
from __future__ import annotations

import threading
from typing import Optional

from tally_migration.schemas.tally import ParsedDocument


class ParsedDocumentCache:
    def __init__(self, max_entries: int = 32):
        self._lock = threading.Lock()
        self._entries: dict[int, ParsedDocument] = {}
        self._max_entries = max_entries

    def get(self, batch_id: int) -> Optional[ParsedDocument]:
        with self._lock:
            return self._entries.get(batch_id)

    def set(self, batch_id: int, document: ParsedDocument) -> None:
        with self._lock:
            self._entries.pop(batch_id, None)
            while len(self._entries) >= self._max_entries:
                # Oldest upload goes first
                oldest = next(iter(self._entries))
                del self._entries[oldest]
            self._entries[batch_id] = document

    def evict(self, batch_id: int) -> bool:
        with self._lock:
            return self._entries.pop(batch_id, None) is not None

    def __contains__(self, batch_id: int) -> bool:
        with self._lock:
            return batch_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
