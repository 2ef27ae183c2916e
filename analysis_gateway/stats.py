"""In-memory request statistics for the advisory analysis gateway.

Counters are operational state only: they are never persisted and reset on
restart. One aggregator instance is owned by the process (or by a test) and
injected into the dispatcher.
"""

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional

from analysis_gateway.models import ErrorCategory


@dataclass(frozen=True)
class StatisticsSnapshot:
    """Point-in-time copy of the counters."""

    total_requests: int
    total_errors: int
    by_category: Dict[str, int]
    last_error_category: Optional[str]
    last_error_time: Optional[str]
    uptime_seconds: float

    def to_dict(self) -> Dict[str, object]:
        """Serialize the snapshot to a dictionary."""
        return {
            "total_requests": self.total_requests,
            "total_errors": self.total_errors,
            "by_category": dict(self.by_category),
            "last_error": {
                "category": self.last_error_category,
                "timestamp": self.last_error_time,
            },
        }


@dataclass
class StatisticsAggregator:
    """Thread-safe request and error counters.

    Every mutation takes the lock for a constant number of operations, so
    concurrent dispatches never lose an update and never wait on each other
    for longer than a counter increment.
    """

    started_at: float = field(default_factory=time.monotonic)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _total_requests: int = 0
    _total_errors: int = 0
    _by_category: Dict[ErrorCategory, int] = field(
        default_factory=lambda: {category: 0 for category in ErrorCategory}
    )
    _last_error_category: Optional[ErrorCategory] = None
    _last_error_time: Optional[str] = None

    def record_success(self) -> None:
        """Count a request that completed without error."""
        with self._lock:
            self._total_requests += 1

    def record_error(self, category: ErrorCategory) -> None:
        """Count a failed request under its error category."""
        now = datetime.now(timezone.utc).isoformat()
        with self._lock:
            self._total_requests += 1
            self._total_errors += 1
            self._by_category[category] += 1
            self._last_error_category = category
            self._last_error_time = now

    def snapshot(self) -> StatisticsSnapshot:
        """Return a consistent copy of all counters."""
        with self._lock:
            return StatisticsSnapshot(
                total_requests=self._total_requests,
                total_errors=self._total_errors,
                by_category={c.value: n for c, n in self._by_category.items()},
                last_error_category=(
                    self._last_error_category.value
                    if self._last_error_category
                    else None
                ),
                last_error_time=self._last_error_time,
                uptime_seconds=time.monotonic() - self.started_at,
            )
