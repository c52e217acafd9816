# Kafka publishing: change events and notification pushes
import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from confluent_kafka import Producer
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator
from pydantic import BaseModel

from policy_application_service.app.config import settings
from policy_application_service.app.models import ChangeEvent, ChangeOperation, ChangeTable

logger = logging.getLogger(__name__)

DeliveryCallback = Callable[[Any, Any], None] # (err, msg)


def _trace_headers() -> List[Tuple[str, bytes]]:
    """Current trace context as Kafka headers, so consumers continue the trace."""
    carrier: Dict[str, str] = {}
    TraceContextTextMapPropagator().inject(carrier)
    return [(key, value.encode('utf-8')) for key, value in carrier.items()]


class KafkaProducerService:
    """
    Wraps a confluent-kafka Producer for use from asyncio code.

    `produce` only enqueues; delivery reports are served by a background task
    that polls the client until `stop_polling` is awaited.
    """

    def __init__(self, bootstrap_servers: str):
        self.producer = Producer({'bootstrap.servers': bootstrap_servers})
        self._cancelled = False
        self._poll_loop_task: Optional[asyncio.Task] = None
        logger.info(f"Kafka producer created for {bootstrap_servers}")

    @staticmethod
    def _on_delivery(err, msg):
        if err is not None:
            logger.error(f"Delivery to {msg.topic()} failed for key {msg.key()}: {err}")
            return
        logger.debug(f"Delivered to {msg.topic()} [{msg.partition()}] @ {msg.offset()} (key {msg.key()})")

    async def _poll_loop(self):
        while not self._cancelled:
            self.producer.poll(0.1)
            await asyncio.sleep(0.1)
        logger.info("Kafka producer poll loop stopped.")

    def produce_message(
        self,
        topic: str,
        message: BaseModel,
        key: Optional[str] = None,
        callback: Optional[DeliveryCallback] = None,
    ):
        """Serializes `message` as JSON and enqueues it. Queue-full and client errors propagate."""
        if self._cancelled:
            logger.warning(f"Producer is shutting down; dropping message for {topic}.")
            return

        payload = message.model_dump_json()
        try:
            self.producer.produce(
                topic,
                value=payload.encode('utf-8'),
                key=key.encode('utf-8') if key else None,
                headers=_trace_headers(),
                callback=callback or self._on_delivery,
            )
        except BufferError:
            logger.error(f"Kafka producer queue is full; message for {topic} (key {key}) not enqueued.")
            raise
        except Exception as e:
            logger.error(f"Could not enqueue message for {topic} (key {key}): {e}", exc_info=True)
            raise
        logger.debug(f"Enqueued message for {topic} (key {key}).")

    async def start_polling(self):
        if self._poll_loop_task is not None and not self._poll_loop_task.done():
            return
        self._cancelled = False
        self._poll_loop_task = asyncio.create_task(self._poll_loop())
        logger.info("Kafka producer polling started.")

    async def stop_polling(self):
        if self._poll_loop_task is None:
            return
        self._cancelled = True
        try:
            await asyncio.wait_for(self._poll_loop_task, timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("Kafka producer poll loop did not stop within 5s.")
        self._poll_loop_task = None

    def flush(self, timeout: float = 10.0) -> int:
        """Blocks until queued messages are delivered or `timeout` passes. Returns how many are left."""
        remaining = self.producer.flush(timeout)
        if remaining:
            logger.warning(f"{remaining} Kafka messages undelivered after flushing for {timeout}s.")
        return remaining


CHANGE_TOPICS = {
    ChangeTable.POLICIES: lambda: settings.POLICY_CHANGES_TOPIC,
    ChangeTable.POLICY_SHARES: lambda: settings.SHARE_CHANGES_TOPIC,
}

class ChangeFeedPublisher:
    """Announces writes on the per-table change topics."""

    def __init__(self, kafka_producer: KafkaProducerService):
        self.kafka_producer = kafka_producer

    def publish(self, table: ChangeTable, operation: ChangeOperation, record_id: Optional[str] = None):
        event = ChangeEvent(table=table, operation=operation, record_id=record_id)
        topic = CHANGE_TOPICS[table]()
        try:
            self.kafka_producer.produce_message(topic=topic, message=event, key=record_id)
        except Exception as e:
            # The write has already happened; a missed change event only delays dashboards.
            logger.error(f"Failed to publish {operation.value} change for {table.value}/{record_id}: {e}", exc_info=True)


_kafka_producer_instance: Optional[KafkaProducerService] = None

def get_kafka_producer() -> KafkaProducerService:
    """Process-wide producer. Raises ValueError when no bootstrap servers are configured."""
    global _kafka_producer_instance
    if _kafka_producer_instance is None:
        if not settings.KAFKA_BOOTSTRAP_SERVERS:
            logger.error("KAFKA_BOOTSTRAP_SERVERS is empty; Kafka publishing is unavailable.")
            raise ValueError("KAFKA_BOOTSTRAP_SERVERS not configured.")
        _kafka_producer_instance = KafkaProducerService(settings.KAFKA_BOOTSTRAP_SERVERS)
    return _kafka_producer_instance

async def startup_kafka_producer():
    await get_kafka_producer().start_polling()

async def shutdown_kafka_producer():
    if _kafka_producer_instance is None:
        logger.info("Kafka producer never started; nothing to flush.")
        return
    _kafka_producer_instance.flush()
    await _kafka_producer_instance.stop_polling()
    logger.info("Kafka producer flushed and stopped.")
