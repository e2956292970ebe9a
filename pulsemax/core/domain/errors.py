"""
Error taxonomy for the monitoring core.
"""


class PulseMaxError(Exception):
    """Base class for all errors raised by the core."""


class InsufficientDataError(PulseMaxError):
    """Raised when a forecast is requested with too little history."""

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(
            f"Need at least {required} observations, got {available}"
        )


class InvalidInputError(PulseMaxError):
    """Malformed feature vector, mismatched arrays, unknown channel, etc."""


class NotFoundError(PulseMaxError):
    """Raised when an alert id is not known to the engine."""

    def __init__(self, alert_id: str):
        self.alert_id = alert_id
        super().__init__(f"Alert '{alert_id}' not found")


class DeliveryError(PulseMaxError):
    """
    A notification channel failed to deliver an alert.

    Always recovered at the dispatch layer; never surfaced to the caller
    that created the alert.
    """

    def __init__(self, channel: str, reason: str):
        self.channel = channel
        self.reason = reason
        super().__init__(f"Delivery to '{channel}' failed: {reason}")
