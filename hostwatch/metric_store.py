import threading
from collections import deque
from typing import Deque, List, Optional

from .schemas import MetricSnapshot, MetricSeries

DEFAULT_CAPACITY = 60
MIN_CAPACITY, MAX_CAPACITY = 1, 300


def clamp_points(points: int) -> int:
    """Limit a point count to the supported range"""
    return max(MIN_CAPACITY, min(MAX_CAPACITY, points))


class MetricStore:
    """Fixed-capacity ring buffers per metric plus the latest snapshot"""

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        self._lock = threading.Lock()
        self._capacity = clamp_points(capacity)
        self._latest: Optional[MetricSnapshot] = None
        self._memory: Deque[float] = deque()
        self._cpu: Deque[float] = deque()
        self._disk: Deque[float] = deque()
        self._network: Deque[str] = deque()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def latest_snapshot(self) -> Optional[MetricSnapshot]:
        return self._latest

    def set_capacity(self, capacity: int) -> None:
        """Clamp to [1, 300] and trim existing buffers right away"""
        with self._lock:
            self._capacity = clamp_points(capacity)
            self._trim()

    def add_snapshot(self, snapshot: MetricSnapshot) -> None:
        """Append a snapshot, evicting the oldest at capacity"""
        with self._lock:
            self._latest = snapshot
            self._memory.append(snapshot.memory.used_percent)
            self._cpu.append(snapshot.cpu.usage_percent)
            self._disk.append(snapshot.disk.used_percent)
            self._network.append(snapshot.network.status.value)
            self._trim()

    def get_series(self, points: Optional[int] = None) -> MetricSeries:
        """Last ``min(points, capacity)`` values of each series, oldest first"""
        with self._lock:
            count = self._capacity if points is None else max(0, min(points, self._capacity))
            return MetricSeries(
                memory_used_percent=self._last(self._memory, count),
                cpu_usage_percent=self._last(self._cpu, count),
                disk_used_percent=self._last(self._disk, count),
                network_status=self._last(self._network, count),
            )

    def clear(self) -> None:
        """Drop every stored snapshot"""
        with self._lock:
            self._latest = None
            self._memory.clear()
            self._cpu.clear()
            self._disk.clear()
            self._network.clear()

    def __len__(self) -> int:
        return len(self._memory)

    def _trim(self) -> None:
        for buffer in (self._memory, self._cpu, self._disk, self._network):
            while len(buffer) > self._capacity:
                buffer.popleft()

    @staticmethod
    def _last(buffer: Deque, count: int) -> List:
        if count <= 0:
            return []
        items = list(buffer)
        return items[-count:]
