"""Recent-assignment history used for fairness."""

from __future__ import annotations

import threading
from collections import defaultdict, deque
from datetime import datetime, timedelta
from typing import Optional, Protocol

from ..clock import Clock, SystemClock


class RecentAssignmentRepository(Protocol):
    def count_since(self, partner_id: str, minutes: int) -> int: ...

    def record(self, partner_id: str, at: Optional[datetime] = None) -> None: ...


class InMemoryRecentAssignmentRepository:
    """Keeps assignment timestamps per partner, trimmed lazily on read."""

    def __init__(self, clock: Clock | None = None, retention_minutes: int = 24 * 60) -> None:
        self.clock = clock or SystemClock()
        self.retention = timedelta(minutes=retention_minutes)
        self._history: defaultdict[str, deque[datetime]] = defaultdict(deque)
        self._lock = threading.Lock()

    def record(self, partner_id: str, at: Optional[datetime] = None) -> None:
        with self._lock:
            self._history[partner_id].append(at or self.clock.now())

    def count_since(self, partner_id: str, minutes: int) -> int:
        now = self.clock.now()
        cutoff = now - timedelta(minutes=minutes)
        with self._lock:
            history = self._history.get(partner_id)
            if not history:
                return 0
            while history and history[0] < now - self.retention:
                history.popleft()
            return sum(1 for stamp in history if stamp >= cutoff)
