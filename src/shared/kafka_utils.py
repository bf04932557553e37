"""Kafka producer helpers."""

import structlog
from aiokafka import AIOKafkaProducer

logger = structlog.get_logger()


async def create_producer(bootstrap_servers: str) -> AIOKafkaProducer:
    """Create and start a Kafka producer. Values are sent as pre-encoded bytes."""
    producer = AIOKafkaProducer(bootstrap_servers=bootstrap_servers, acks="all")
    await producer.start()
    logger.info("kafka_producer_started", bootstrap_servers=bootstrap_servers)
    return producer


async def stop_producer(producer: AIOKafkaProducer | None) -> None:
    if producer is None:
        return
    try:
        await producer.stop()
        logger.info("kafka_producer_stopped")
    except Exception:
        logger.warning("kafka_producer_stop_failed", exc_info=True)
