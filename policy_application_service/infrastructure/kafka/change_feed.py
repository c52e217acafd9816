# Kafka-backed change feed for the policies and policy_shares tables
import asyncio
import json
import logging
import uuid
from typing import Dict, FrozenSet, Iterable, Optional, Tuple

from confluent_kafka import Consumer, KafkaError
from opentelemetry.trace import SpanKind
from opentelemetry.trace.status import Status, StatusCode
from pydantic import ValidationError

from policy_application_service.app.config import settings
from policy_application_service.app.models import ChangeEvent, ChangeTable
from policy_application_service.app.observability import (
    tracer,
    change_events_consumed_counter,
    extract_trace_context_from_kafka_headers,
)
from policy_application_service.app.service.interfaces.change_feed import (
    AbstractChangeFeed,
    ChangeListener,
    ChangeSubscription,
)

logger = logging.getLogger(__name__)


class _KafkaChangeSubscription(ChangeSubscription):
    def __init__(self, feed: "KafkaChangeFeed", subscription_id: str):
        self._feed = feed
        self.subscription_id = subscription_id

    def close(self) -> None:
        self._feed._remove_listener(self.subscription_id)


class KafkaChangeFeed(AbstractChangeFeed):
    def __init__(self, consumer_factory=Consumer):
        # Every API instance must see every event, so each gets its own consumer group.
        self.consumer_config = {
            'bootstrap.servers': settings.KAFKA_BOOTSTRAP_SERVERS,
            'group.id': f"{settings.KAFKA_CONSUMER_GROUP_ID}-{uuid.uuid4().hex[:8]}",
            'auto.offset.reset': 'latest',
            'enable.auto.commit': True,
        }
        self._consumer_factory = consumer_factory
        self._consumer: Optional[Consumer] = None
        self._listeners: Dict[str, Tuple[FrozenSet[ChangeTable], ChangeListener]] = {}
        self._cancelled = False
        self._poll_loop_task: Optional[asyncio.Task] = None

    @property
    def topics(self) -> Dict[str, ChangeTable]:
        return {
            settings.POLICY_CHANGES_TOPIC: ChangeTable.POLICIES,
            settings.SHARE_CHANGES_TOPIC: ChangeTable.POLICY_SHARES,
        }

    def subscribe(self, tables: Iterable[ChangeTable], listener: ChangeListener) -> ChangeSubscription:
        subscription_id = str(uuid.uuid4())
        self._listeners[subscription_id] = (frozenset(tables), listener)
        logger.debug(f"Change listener {subscription_id} registered for {sorted(t.value for t in tables)}.")
        return _KafkaChangeSubscription(self, subscription_id)

    def _remove_listener(self, subscription_id: str):
        if self._listeners.pop(subscription_id, None) is not None:
            logger.debug(f"Change listener {subscription_id} removed.")

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    async def start(self):
        if self._poll_loop_task is not None and not self._poll_loop_task.done():
            return
        self._consumer = self._consumer_factory(self.consumer_config)
        self._consumer.subscribe(list(self.topics))
        self._cancelled = False
        self._poll_loop_task = asyncio.create_task(self._poll_loop())
        logger.info(f"Change feed consumer subscribed to {list(self.topics)} with group {self.consumer_config['group.id']}.")

    async def stop(self):
        self._cancelled = True
        if self._poll_loop_task:
            try:
                await asyncio.wait_for(self._poll_loop_task, timeout=5.0)
            except asyncio.TimeoutError:
                logger.warning("Change feed poll loop did not stop in time.")
            self._poll_loop_task = None
        if self._consumer is not None:
            self._consumer.close()
            self._consumer = None
        logger.info("Change feed consumer closed.")

    async def _poll_loop(self):
        while not self._cancelled:
            msg = self._consumer.poll(0)
            if msg is None:
                await asyncio.sleep(0.1) # Allow other asyncio tasks to run
                continue
            await self.handle_message(msg)
        logger.info("Change feed poll loop stopped.")

    async def handle_message(self, msg):
        if msg.error():
            if msg.error().code() != KafkaError._PARTITION_EOF:
                logger.error(f"Kafka error on change feed: {msg.error()}")
            return

        parent_context = extract_trace_context_from_kafka_headers(msg.headers())
        with tracer.start_as_current_span("change_event_received", kind=SpanKind.CONSUMER, context=parent_context) as consume_span:
            consume_span.set_attribute("messaging.system", "kafka")
            consume_span.set_attribute("messaging.destination.name", msg.topic())
            try:
                event = ChangeEvent(**json.loads(msg.value().decode('utf-8')))
            except (json.JSONDecodeError, UnicodeDecodeError, ValidationError) as e:
                logger.error(f"Undecodable change event on {msg.topic()}/{msg.partition()}/{msg.offset()}: {e}")
                consume_span.record_exception(e)
                consume_span.set_status(Status(StatusCode.ERROR, description=f"Decode Error: {type(e).__name__}"))
                return

            change_events_consumed_counter.add(1, {"table": event.table.value, "operation": event.operation.value})
            consume_span.set_attribute("change.table", event.table.value)
            consume_span.set_attribute("change.operation", event.operation.value)
            await self.dispatch(event)
            consume_span.set_status(Status(StatusCode.OK))

    async def dispatch(self, event: ChangeEvent):
        for subscription_id, (tables, listener) in list(self._listeners.items()):
            if event.table not in tables:
                continue
            try:
                await listener(event)
            except Exception as e:
                logger.error(f"Change listener {subscription_id} failed for {event.table.value} event: {e}", exc_info=True)
