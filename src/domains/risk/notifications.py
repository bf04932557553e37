"""Publishing of audit entries that require a human to be notified."""

import json

import structlog

from .models import AuditEntry

logger = structlog.get_logger()


class NotificationPublisher:
    """Sends notification-worthy audit entries to a Kafka topic.

    Args:
        producer: An aiokafka AIOKafkaProducer instance, or None to disable.
        topic: Destination topic.
    """

    def __init__(self, producer=None, topic: str = "risk.audit.notifications") -> None:
        self._producer = producer
        self._topic = topic

    @property
    def enabled(self) -> bool:
        return self._producer is not None

    async def publish(self, entry: AuditEntry) -> bool:
        """Publish one entry. Failures are logged, never raised."""
        if self._producer is None:
            logger.debug("kafka_producer_not_available", audit_id=entry.id)
            return False

        payload = entry.model_dump(mode="json")
        payload["type"] = "risk_security_audit"

        try:
            await self._producer.send_and_wait(
                self._topic,
                value=json.dumps(payload).encode("utf-8"),
                key=entry.tenant_id.encode("utf-8"),
            )
            logger.info("notification_published", audit_id=entry.id, topic=self._topic)
            return True
        except Exception:
            logger.exception("notification_publish_failed", audit_id=entry.id, topic=self._topic)
            return False
