# Operations for the Notifications Collection
import logging
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from policy_application_service.app.models import NotificationDB
from .connection import translate_store_errors

logger = logging.getLogger(__name__)
NOTIFICATIONS_COLLECTION = "notifications"

@translate_store_errors("create notification")
async def add_notification(db: AsyncIOMotorDatabase, notification: NotificationDB) -> NotificationDB:
    await db[NOTIFICATIONS_COLLECTION].insert_one(notification.model_dump())
    logger.info(f"Notification {notification.id} created for {notification.recipient_email} (application {notification.policy_id}).")
    return notification

@translate_store_errors("fetch notification")
async def get_notification(db: AsyncIOMotorDatabase, notification_id: str, recipient_email: str) -> Optional[NotificationDB]:
    doc = await db[NOTIFICATIONS_COLLECTION].find_one({"id": notification_id, "recipient_email": recipient_email})
    return NotificationDB(**doc) if doc else None

@translate_store_errors("mark notification as read")
async def mark_notification_read(db: AsyncIOMotorDatabase, notification_id: str, recipient_email: str) -> Optional[NotificationDB]:
    """Sets is_read. Repeating the call leaves the row as it is."""
    doc = await db[NOTIFICATIONS_COLLECTION].find_one_and_update(
        {"id": notification_id, "recipient_email": recipient_email},
        {"$set": {"is_read": True}},
        return_document=ReturnDocument.AFTER,
    )
    return NotificationDB(**doc) if doc else None

@translate_store_errors("list notifications")
async def list_notifications(db: AsyncIOMotorDatabase, recipient_email: str, limit: int = 50) -> List[NotificationDB]:
    cursor = db[NOTIFICATIONS_COLLECTION].find({"recipient_email": recipient_email}).sort("created_at", -1).limit(limit)
    docs = await cursor.to_list(length=limit)
    return [NotificationDB(**doc) for doc in docs]

@translate_store_errors("count unread notifications")
async def count_unread(db: AsyncIOMotorDatabase, recipient_email: str) -> int:
    return await db[NOTIFICATIONS_COLLECTION].count_documents({"recipient_email": recipient_email, "is_read": False})
