"""
Metrics module for monitoring the poll / query cycle.

Provides functionality to:
- Track poll rate and failed polls
- Count devices per class seen in the latest poll
- Count query outcomes per class and status
"""

import time
from typing import Optional, Dict, Any
from collections import deque, Counter
import threading


class PollMetrics:
    """
    Thread-safe metrics collector for the tracking context.

    Usage:
        metrics = PollMetrics()
        metrics.record_poll(True, {"HMD": 1, "Controller": 2})
        metrics.record_query("Controller", "ok")
        summary = metrics.get_summary()
    """

    def __init__(self, history_size: int = 60):
        """
        Initialize metrics collector.

        Args:
            history_size: Number of polls to keep for the rolling poll rate
        """
        self.history_size = history_size
        self._lock = threading.Lock()
        self._start_time = time.time()

        self._poll_times: deque = deque(maxlen=history_size)
        self._poll_count = 0
        self._failed_polls = 0
        self._last_error: Optional[str] = None
        self._device_counts: Dict[str, int] = {}
        self._queries: Counter = Counter()

    def record_poll(
        self,
        success: bool,
        device_counts: Optional[Dict[str, int]] = None,
        error: Optional[str] = None
    ) -> None:
        with self._lock:
            self._poll_count += 1
            if not success:
                self._failed_polls += 1
                self._last_error = error
                return
            self._poll_times.append(time.time())
            self._device_counts = dict(device_counts or {})

    def record_query(self, device_class: str, status: str) -> None:
        with self._lock:
            self._queries[(device_class, status)] += 1

    @property
    def poll_rate(self) -> float:
        """Successful polls per second over the rolling window."""
        with self._lock:
            if len(self._poll_times) < 2:
                return 0.0
            span = self._poll_times[-1] - self._poll_times[0]
            if span <= 0:
                return 0.0
            return (len(self._poll_times) - 1) / span

    def get_summary(self) -> Dict[str, Any]:
        rate = self.poll_rate
        with self._lock:
            queries: Dict[str, Dict[str, int]] = {}
            for (device_class, status), n in self._queries.items():
                queries.setdefault(device_class, {})[status] = n
            return {
                "uptime_seconds": round(time.time() - self._start_time, 3),
                "polls": self._poll_count,
                "failed_polls": self._failed_polls,
                "poll_rate": round(rate, 2),
                "last_error": self._last_error,
                "devices": dict(self._device_counts),
                "queries": queries,
            }

    def reset(self) -> None:
        with self._lock:
            self._poll_times.clear()
            self._poll_count = 0
            self._failed_polls = 0
            self._last_error = None
            self._device_counts = {}
            self._queries.clear()
            self._start_time = time.time()
