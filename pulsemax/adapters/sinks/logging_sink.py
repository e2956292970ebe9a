"""
Logging Sink - Log-only delivery for channels without a provider (sms).
"""

import logging

from pulsemax.core.domain.alert import Alert
from pulsemax.core.ports.notification_sink import NotificationSink

logger = logging.getLogger(__name__)


class LoggingSink(NotificationSink):
    """Writes the alert to the log instead of sending it."""

    def __init__(self, channel: str = "sms"):
        self.channel = channel

    async def deliver(self, alert: Alert) -> bool:
        logger.info(f"[{self.channel}] {alert.severity.upper()} {alert.title}: {alert.message}")
        return True
