# Agent profile read/update
import datetime
import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel

from policy_application_service.app.models import AgentProfileDB, Identity
from policy_application_service.app.service.coordinator import ProfileUpdated, SessionCoordinator
from policy_application_service.infrastructure.database import profile_store

logger = logging.getLogger(__name__)


class ProfileUpdate(BaseModel):
    # Role is provisioned outside this service and cannot be changed here.
    first_name: str = ""
    last_name: str = ""
    agent_code: Optional[str] = None
    do_code: Optional[str] = None
    do_name: Optional[str] = None


async def get_profile(db: AsyncIOMotorDatabase, identity: Identity) -> AgentProfileDB:
    profile = await profile_store.get_profile(db, identity.id)
    if profile is None:
        return AgentProfileDB(id=identity.id, email=identity.email)
    return profile


async def update_profile(
    db: AsyncIOMotorDatabase,
    identity: Identity,
    update: ProfileUpdate,
    coordinator: Optional[SessionCoordinator] = None,
) -> AgentProfileDB:
    """Saves the editable profile fields and announces the stored profile on the session coordinator."""
    current = await get_profile(db, identity)
    updated = current.model_copy(update={
        **update.model_dump(),
        "email": identity.email,
        "updated_at": datetime.datetime.now(datetime.UTC),
    })
    stored = await profile_store.upsert_profile(db, updated)
    if coordinator is not None:
        await coordinator.dispatch(ProfileUpdated(profile=stored))
    logger.info(f"Profile updated for agent {identity.id}.")
    return stored
