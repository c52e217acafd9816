# Notification Fan-out: share alerts, read state, deep-link targets
import logging
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from policy_application_service.app.config import settings
from policy_application_service.app.models import Identity, NotificationDB, PolicyRecord
from policy_application_service.app.observability import tracer, notifications_created_counter
from policy_application_service.app.service.exceptions import NotificationNotFoundError
from policy_application_service.infrastructure.database import notification_store, profile_store
from policy_application_service.infrastructure.kafka.producer import KafkaProducerService

logger = logging.getLogger(__name__)


def build_share_message(sharer_name: str, applicant_name: str) -> str:
    applicant = applicant_name or "an applicant"
    return f"{sharer_name} shared the policy application of {applicant} with you."


class NotificationFanOut:
    def __init__(self, db: AsyncIOMotorDatabase, kafka_producer: Optional[KafkaProducerService] = None):
        self.db = db
        self.kafka_producer = kafka_producer

    async def _sharer_display_name(self, sharer: Identity) -> str:
        profile = await profile_store.get_profile(self.db, sharer.id)
        return profile.display_name if profile else sharer.email

    async def notify_share(self, sharer: Identity, record: PolicyRecord, recipient_email: str) -> NotificationDB:
        """Creates the single unread alert for a new share grant."""
        with tracer.start_as_current_span("create_share_notification") as span:
            span.set_attribute("policy.id", record.id)
            sharer_name = await self._sharer_display_name(sharer)
            notification = NotificationDB(
                recipient_email=recipient_email,
                message=build_share_message(sharer_name, record.form_data.personal.full_name),
                policy_id=record.id,
            )
            await notification_store.add_notification(self.db, notification)
            notifications_created_counter.add(1)

        if self.kafka_producer is not None:
            try:
                self.kafka_producer.produce_message(
                    topic=settings.NOTIFICATION_KAFKA_TOPIC,
                    message=notification,
                    key=recipient_email,
                )
            except Exception as e:
                # The alert row exists; push delivery is best effort.
                logger.error(f"Failed to publish notification {notification.id} to Kafka: {e}", exc_info=True)
        return notification

    async def list_notifications(self, recipient: Identity, limit: int = 50) -> List[NotificationDB]:
        return await notification_store.list_notifications(self.db, recipient.normalized_email, limit=limit)

    async def unread_count(self, recipient: Identity) -> int:
        # Counted on every call, never cached.
        return await notification_store.count_unread(self.db, recipient.normalized_email)

    async def mark_read(self, recipient: Identity, notification_id: str) -> NotificationDB:
        notification = await notification_store.mark_notification_read(self.db, notification_id, recipient.normalized_email)
        if notification is None:
            raise NotificationNotFoundError(notification_id)
        return notification

    async def resolve_deep_link(self, recipient: Identity, notification_id: str) -> str:
        """Marks the notification read and returns the application it points at."""
        notification = await self.mark_read(recipient, notification_id)
        logger.info(f"Notification {notification_id} opened by {recipient.id}; target application {notification.policy_id}.")
        return notification.policy_id
