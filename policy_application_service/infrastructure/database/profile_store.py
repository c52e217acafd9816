# Operations for the Agent Profiles Collection
import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from policy_application_service.app.models import AgentProfileDB
from .connection import translate_store_errors

logger = logging.getLogger(__name__)
PROFILES_COLLECTION = "profiles"

@translate_store_errors("fetch profile")
async def get_profile(db: AsyncIOMotorDatabase, identity_id: str) -> Optional[AgentProfileDB]:
    doc = await db[PROFILES_COLLECTION].find_one({"id": identity_id})
    return AgentProfileDB(**doc) if doc else None

@translate_store_errors("update profile")
async def upsert_profile(db: AsyncIOMotorDatabase, profile: AgentProfileDB) -> AgentProfileDB:
    await db[PROFILES_COLLECTION].replace_one({"id": profile.id}, profile.model_dump(), upsert=True)
    logger.info(f"Profile upserted for ID: {profile.id}")
    return profile
