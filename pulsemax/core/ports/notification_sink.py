"""
NotificationSink Port - Interface for delivering alerts to one channel.

One implementation per channel (dashboard, email, webhook, sms).
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pulsemax.core.domain.alert import Alert


class NotificationSink(ABC):
    """
    Abstract interface for alert delivery.

    Implementations:
    - DashboardSink: in-memory feed for the dashboard
    - EmailSink: SMTP
    - WebhookSink: HTTP POST
    - KafkaAlertSink: event stream
    - LoggingSink: log-only placeholder
    """

    channel: str

    @abstractmethod
    async def deliver(self, alert: "Alert") -> bool:
        """
        Deliver an alert.

        Must not raise for recoverable failures; return False instead.
        The engine treats an exception and False the same way.

        Args:
            alert: Alert to deliver

        Returns:
            True if delivered
        """
        ...

    async def close(self) -> None:
        """Release any held resources."""
        return None
