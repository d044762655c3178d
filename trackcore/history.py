from __future__ import annotations

from collections import deque
from typing import Deque, Iterator, List, Optional, Tuple

Position = Tuple[float, float]


class PositionHistory:
    """
    Fixed-capacity ring buffer of past (lat, lon) positions.
    Pushing onto a full buffer evicts the oldest entry.
    """

    def __init__(self, capacity: int = 20, positions: Optional[List[Position]] = None):
        if capacity < 1:
            raise ValueError("History capacity must be at least 1")
        self._items: Deque[Position] = deque(maxlen=capacity)
        for pos in positions or []:
            self._items.append(pos)

    @property
    def capacity(self) -> int:
        return self._items.maxlen or 0

    def push(self, position: Position) -> Optional[Position]:
        """Append a position, returning the evicted one when the buffer was full."""
        evicted = self._items[0] if len(self._items) == self.capacity else None
        self._items.append(position)
        return evicted

    def copy(self) -> PositionHistory:
        return PositionHistory(self.capacity, list(self._items))

    def to_list(self) -> List[Position]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Position]:
        return iter(self._items)
