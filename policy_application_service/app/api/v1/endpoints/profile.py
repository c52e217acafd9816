# API Router for the signed-in agent's profile
import logging

from fastapi import APIRouter, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from policy_application_service.app.api.v1.errors import to_http_exception
from policy_application_service.app.dependencies.identity import get_current_identity
from policy_application_service.app.models import AgentProfileDB, Identity
from policy_application_service.app.service import profiles
from policy_application_service.app.service.coordinator import CoordinatorHub, get_coordinator_hub
from policy_application_service.app.service.exceptions import BasePolicyApplicationError
from policy_application_service.infrastructure.database.connection import get_db

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("", response_model=AgentProfileDB)
async def get_profile_api(
    db: AsyncIOMotorDatabase = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    try:
        return await profiles.get_profile(db, identity)
    except BasePolicyApplicationError as e:
        raise to_http_exception(e)

@router.put("", response_model=AgentProfileDB)
async def update_profile_api(
    request_data: profiles.ProfileUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    hub: CoordinatorHub = Depends(get_coordinator_hub),
):
    try:
        # Open dashboards of this agent pick the change up through their coordinator.
        return await profiles.update_profile(db, identity, request_data, hub.find(identity.id))
    except BasePolicyApplicationError as e:
        raise to_http_exception(e)
