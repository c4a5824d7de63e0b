"""
Job history storage.

Bounded in-memory log of terminal job records, newest first.
No persistent storage: history is lost when the process exits.
"""

import logging
from collections import deque
from typing import List, Protocol, runtime_checkable

from .models import JobHistoryEntry

logger = logging.getLogger(__name__)

# Maximum history entries to keep in memory
DEFAULT_HISTORY_LIMIT = 20


@runtime_checkable
class HistoryStore(Protocol):
    """Anything the queue can record terminal entries into."""

    def record(self, entry: JobHistoryEntry) -> None:
        ...

    def entries(self) -> List[JobHistoryEntry]:
        ...


class InMemoryHistoryStore:
    """
    Ring buffer of the last N job history entries.

    entries() returns deep copies so callers cannot reach the stored
    records.
    """

    def __init__(self, limit: int = DEFAULT_HISTORY_LIMIT):
        self._limit = max(1, limit)
        self._entries: deque[JobHistoryEntry] = deque(maxlen=self._limit)

    @property
    def limit(self) -> int:
        return self._limit

    def record(self, entry: JobHistoryEntry) -> None:
        self._entries.appendleft(entry.model_copy(deep=True))
        logger.debug(f"[History] {entry.status.value}: {entry.name} ({entry.job_id})")

    def entries(self) -> List[JobHistoryEntry]:
        return [entry.model_copy(deep=True) for entry in self._entries]

    def __len__(self) -> int:
        return len(self._entries)
