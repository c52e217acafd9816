import functools
import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING
from pymongo.errors import PyMongoError

from policy_application_service.app.config import settings
from policy_application_service.app.service.exceptions import TransientStoreFailure

logger = logging.getLogger(__name__)

# Global client and db variables, managed by connect/close functions
client: Optional[AsyncIOMotorClient] = None
db: Optional[AsyncIOMotorDatabase] = None

async def connect_to_mongo():
    global client, db
    if client is not None and db is not None:
        logger.info("MongoDB connection already established.")
        return

    try:
        logger.info(f"Attempting to connect to MongoDB at {settings.MONGO_DETAILS}...")
        client = AsyncIOMotorClient(settings.MONGO_DETAILS)
        # Verify connection by pinging the admin database
        await client.admin.command('ping')
        db = client[settings.DB_NAME]
        await ensure_indexes(db)
        logger.info(f"Successfully connected to MongoDB and database '{settings.DB_NAME}' is set.")
    except Exception as e:
        logger.error(f"Failed to connect to MongoDB: {e}", exc_info=True)
        client = None
        db = None
        raise ConnectionError(f"Failed to connect to MongoDB: {e}")

async def ensure_indexes(database: AsyncIOMotorDatabase):
    await database.policies.create_index("id", unique=True)
    await database.policies.create_index([("owner_id", ASCENDING), ("status", ASCENDING)])
    # The composite key of a share grant.
    await database.policy_shares.create_index(
        [("policy_id", ASCENDING), ("recipient_email", ASCENDING)], unique=True
    )
    await database.notifications.create_index([("recipient_email", ASCENDING), ("is_read", ASCENDING)])
    await database.profiles.create_index("id", unique=True)
    logger.info("MongoDB indexes ensured.")

def close_mongo_connection():
    global client, db
    if client:
        client.close()
        client = None
        db = None
        logger.info("MongoDB connection closed.")

async def get_db():
    if db is None:
        logger.warning("Database not initialized. Attempting to connect via get_db().")
        await connect_to_mongo()

    if db is None:
        logger.error("Failed to get database instance in get_db.")
        raise ConnectionError("Database client is not available. Connection might have failed or was not established.")

    # The connection is global and closed on application shutdown.
    yield db

def translate_store_errors(operation: str):
    """Re-raises driver errors from a store coroutine as TransientStoreFailure naming the operation."""
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except PyMongoError as e:
                logger.error(f"Store operation '{operation}' failed: {e}", exc_info=True)
                raise TransientStoreFailure(operation, e) from e
        return wrapper
    return decorator
