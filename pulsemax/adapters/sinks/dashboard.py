"""
Dashboard Sink - In-memory alert feed for the dashboard channel.
"""

import logging
import threading
from collections import deque

from pulsemax.core.domain.alert import Alert
from pulsemax.core.ports.notification_sink import NotificationSink

logger = logging.getLogger(__name__)


class DashboardSink(NotificationSink):
    """
    Keeps the most recent alerts for a live dashboard feed.
    Oldest entries are dropped once the feed is full.
    """

    channel = "dashboard"

    def __init__(self, max_size: int = 500):
        self._feed: deque[dict] = deque(maxlen=max_size)
        self._lock = threading.Lock()

    async def deliver(self, alert: Alert) -> bool:
        with self._lock:
            self._feed.append(alert.to_dict())
        logger.debug(f"Alert {alert.id} added to dashboard feed")
        return True

    def recent(self, limit: int | None = None) -> list[dict]:
        """Feed entries, newest first."""
        with self._lock:
            entries = list(reversed(self._feed))
        return entries if limit is None else entries[:limit]
