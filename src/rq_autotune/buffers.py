"""Fixed-capacity history buffers used by the regulators."""

from __future__ import annotations

import numpy as np


class RingBuffer:
    """Drop-oldest float ring over a preallocated numpy array.

    Pushing never allocates; once ``capacity`` values are held the oldest
    value is overwritten.
    """

    __slots__ = ("_data", "_start", "_size")

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError(f"RingBuffer capacity must be at least 1, got {capacity}.")
        self._data = np.zeros(int(capacity), dtype=float)
        self._start = 0
        self._size = 0

    @property
    def capacity(self) -> int:
        return self._data.size

    def __len__(self) -> int:
        return self._size

    def push(self, value: float) -> None:
        capacity = self._data.size
        if self._size < capacity:
            self._data[(self._start + self._size) % capacity] = value
            self._size += 1
        else:
            self._data[self._start] = value
            self._start = (self._start + 1) % capacity

    def clear(self) -> None:
        self._start = 0
        self._size = 0

    def values(self) -> np.ndarray:
        """Return a copy ordered oldest to newest."""
        idx = (self._start + np.arange(self._size)) % self._data.size
        return self._data[idx]

    def mean(self) -> float:
        if self._size == 0:
            return 0.0
        if self._size == self._data.size:
            return float(np.mean(self._data))
        return float(np.mean(self.values()))

    def latest(self) -> float | None:
        if self._size == 0:
            return None
        return float(self._data[(self._start + self._size - 1) % self._data.size])
