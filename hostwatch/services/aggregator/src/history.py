from collections import deque
from typing import Iterator

from hostwatch.shared.core.models import MetricsSnapshot


class HistoryRing:
    """
    Bounded FIFO of recent snapshots, oldest first.

    Appending at capacity evicts the oldest entry. Used to seed new viewers so
    their charts do not start empty.
    """

    def __init__(self, capacity: int = 50):
        if capacity <= 0:
            raise ValueError("History capacity must be positive")
        self._entries: deque[MetricsSnapshot] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._entries.maxlen or 0

    @property
    def latest(self) -> MetricsSnapshot | None:
        return self._entries[-1] if self._entries else None

    def append(self, snapshot: MetricsSnapshot) -> MetricsSnapshot | None:
        """
        Add a snapshot.

        Returns:
            The evicted snapshot when the ring was full, else None
        """
        evicted = self._entries[0] if len(self._entries) == self.capacity else None
        self._entries.append(snapshot)
        return evicted

    def snapshot(self) -> list[MetricsSnapshot]:
        """Copy of the current contents, oldest → newest"""
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[MetricsSnapshot]:
        return iter(self.snapshot())
