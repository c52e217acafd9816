# Providers for the service-layer objects used by the routers
import logging
from typing import Optional

from fastapi import Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from policy_application_service.app.service.interfaces.blob_storage import AbstractBlobStorage
from policy_application_service.app.service.notifications import NotificationFanOut
from policy_application_service.app.service.reconciler import AttachmentReconciler
from policy_application_service.app.service.sharing import SharingLedger
from policy_application_service.infrastructure.database.connection import get_db
from policy_application_service.infrastructure.kafka.producer import (
    ChangeFeedPublisher,
    KafkaProducerService,
    get_kafka_producer,
)
from policy_application_service.infrastructure.storage.supabase_storage import get_blob_storage

logger = logging.getLogger(__name__)


def get_optional_kafka_producer() -> Optional[KafkaProducerService]:
    try:
        return get_kafka_producer()
    except ValueError as e:
        logger.warning(f"Kafka producer unavailable; change events and push notifications are disabled: {e}")
        return None


def get_optional_change_publisher(
    kafka_producer: Optional[KafkaProducerService] = Depends(get_optional_kafka_producer),
) -> Optional[ChangeFeedPublisher]:
    return ChangeFeedPublisher(kafka_producer) if kafka_producer is not None else None


def get_reconciler(blob_storage: AbstractBlobStorage = Depends(get_blob_storage)) -> AttachmentReconciler:
    return AttachmentReconciler(blob_storage)


def get_notification_fan_out(
    db: AsyncIOMotorDatabase = Depends(get_db),
    kafka_producer: Optional[KafkaProducerService] = Depends(get_optional_kafka_producer),
) -> NotificationFanOut:
    return NotificationFanOut(db, kafka_producer)


def get_sharing_ledger(
    db: AsyncIOMotorDatabase = Depends(get_db),
    notification_fan_out: NotificationFanOut = Depends(get_notification_fan_out),
    change_publisher: Optional[ChangeFeedPublisher] = Depends(get_optional_change_publisher),
) -> SharingLedger:
    return SharingLedger(db, notification_fan_out, change_publisher)
