"""
Kafka Alert Sink - Publishes alerts to a Kafka topic.

Used for the dashboard channel when the dashboard consumes alerts from an
event stream instead of the in-process feed.
"""

import asyncio
import json
import logging

from confluent_kafka import KafkaException, Producer

from pulsemax.core.domain.alert import Alert
from pulsemax.core.domain.settings import KafkaSettings
from pulsemax.core.ports.notification_sink import NotificationSink

logger = logging.getLogger(__name__)


class KafkaAlertSink(NotificationSink):
    """
    Produces each alert as a JSON message keyed by alert id.
    """

    def __init__(self, settings: KafkaSettings | None = None, channel: str = "dashboard"):
        """
        Initialize the sink.

        Args:
            settings: Broker and topic configuration
            channel: Channel this sink serves
        """
        self.settings = settings or KafkaSettings()
        self.channel = channel
        self.producer = None

    def _get_producer(self) -> Producer:
        """Lazy initialization of Kafka producer."""
        if self.producer is None:
            config = {
                'bootstrap.servers': self.settings.bootstrap_servers,
                'client.id': 'pulsemax-alerts',
                'acks': 'all',  # Wait for all replicas
                'retries': 3,
                'max.in.flight.requests.per.connection': 1,
            }
            self.producer = Producer(config)
        return self.producer

    def _delivery_callback(self, err, msg):
        """Callback for message delivery reports."""
        if err:
            logger.error(f"Alert message delivery failed: {err}")
        else:
            logger.debug(f"Alert message delivered to {msg.topic()} [{msg.partition()}]")

    async def deliver(self, alert: Alert) -> bool:
        try:
            producer = self._get_producer()
            producer.produce(
                topic=self.settings.topic,
                value=json.dumps(alert.to_dict()).encode('utf-8'),
                key=alert.id.encode('utf-8'),
                callback=self._delivery_callback,
            )
            # Trigger delivery callbacks
            producer.poll(0)
        except (KafkaException, BufferError) as e:
            logger.error(f"Failed to publish alert {alert.id}: {e}")
            return False

        logger.info(f"Published alert {alert.id} to topic '{self.settings.topic}'")
        return True

    def flush(self, timeout: float = 10.0):
        """
        Wait for all messages to be delivered.

        Args:
            timeout: Maximum time to wait in seconds
        """
        if self.producer:
            remaining = self.producer.flush(timeout)
            if remaining > 0:
                logger.warning(f"{remaining} alert messages were not delivered within timeout")

    async def close(self) -> None:
        """Flush remaining messages off the event loop, then drop the producer."""
        if self.producer:
            await asyncio.to_thread(self.flush, 10.0)
            self.producer = None
