"""
NetSentry scan activity tracker.
Per-IP sliding window of scan timestamps for reconnaissance detection.
"""

import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, List

from constants import SCAN_THRESHOLD, SCAN_WINDOW_MS
from models import ScanFrequency


class ScanActivityTracker:
    """Sliding (not bucketed) window of scan times per IP."""

    def __init__(
        self,
        *,
        window_ms: int = SCAN_WINDOW_MS,
        threshold: int = SCAN_THRESHOLD,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.window_ms = int(window_ms)
        self.threshold = int(threshold)
        self._clock = clock
        self._lock = threading.Lock()
        self._history: Dict[str, Deque[float]] = {}

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    def _expire(self, history: Deque[float], now_ms: float) -> None:
        while history and now_ms - history[0] >= self.window_ms:
            history.popleft()

    def record_scan(self, ip: str) -> ScanFrequency:
        with self._lock:
            now_ms = self._now_ms()
            history = self._history.setdefault(ip, deque())
            history.append(now_ms)
            self._expire(history, now_ms)
            return ScanFrequency(count=len(history), window_ms=self.window_ms)

    def frequency(self, ip: str) -> ScanFrequency:
        with self._lock:
            history = self._history.get(ip)
            if not history:
                return ScanFrequency(count=0, window_ms=self.window_ms)
            now_ms = self._now_ms()
            count = sum(1 for ts in history if now_ms - ts < self.window_ms)
            return ScanFrequency(count=count, window_ms=self.window_ms)

    def is_flooding(self, ip: str) -> bool:
        return self.frequency(ip).count > self.threshold

    def tracked_ips(self) -> List[str]:
        with self._lock:
            return list(self._history.keys())
