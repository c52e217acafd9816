# API Router for the signed-in agent's notifications
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from policy_application_service.app.api.v1.endpoints.wizard import WizardSessionResponse
from policy_application_service.app.api.v1.errors import to_http_exception
from policy_application_service.app.dependencies.identity import get_current_identity
from policy_application_service.app.dependencies.services import (
    get_notification_fan_out,
    get_optional_change_publisher,
    get_reconciler,
)
from policy_application_service.app.models import Identity, NotificationDB
from policy_application_service.app.service.exceptions import BasePolicyApplicationError
from policy_application_service.app.service.notifications import NotificationFanOut
from policy_application_service.app.service.reconciler import AttachmentReconciler
from policy_application_service.app.service.wizard.sessions import WizardSessionRegistry, get_wizard_registry, open_application
from policy_application_service.infrastructure.database.connection import get_db
from policy_application_service.infrastructure.kafka.producer import ChangeFeedPublisher

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("", response_model=List[NotificationDB])
async def list_notifications_api(
    limit: int = Query(50, ge=1, le=200),
    identity: Identity = Depends(get_current_identity),
    fan_out: NotificationFanOut = Depends(get_notification_fan_out),
):
    try:
        return await fan_out.list_notifications(identity, limit=limit)
    except BasePolicyApplicationError as e:
        raise to_http_exception(e)

@router.get("/unread-count")
async def unread_count_api(
    identity: Identity = Depends(get_current_identity),
    fan_out: NotificationFanOut = Depends(get_notification_fan_out),
):
    try:
        return {"unread": await fan_out.unread_count(identity)}
    except BasePolicyApplicationError as e:
        raise to_http_exception(e)

@router.post("/{notification_id}/read", response_model=NotificationDB)
async def mark_read_api(
    notification_id: str,
    identity: Identity = Depends(get_current_identity),
    fan_out: NotificationFanOut = Depends(get_notification_fan_out),
):
    try:
        return await fan_out.mark_read(identity, notification_id)
    except BasePolicyApplicationError as e:
        raise to_http_exception(e)

@router.post(
    "/{notification_id}/open",
    status_code=201,
    response_model=WizardSessionResponse,
    summary="Mark a notification read and open its application at the Summary step.",
)
async def open_notification_api(
    notification_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    fan_out: NotificationFanOut = Depends(get_notification_fan_out),
    reconciler: AttachmentReconciler = Depends(get_reconciler),
    change_publisher: Optional[ChangeFeedPublisher] = Depends(get_optional_change_publisher),
    registry: WizardSessionRegistry = Depends(get_wizard_registry),
):
    try:
        policy_id = await fan_out.resolve_deep_link(identity, notification_id)
        controller = await open_application(
            db, identity, reconciler, change_publisher,
            client_identifier=policy_id,
            start_at_summary=True,
        )
    except BasePolicyApplicationError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Unexpected error opening notification {notification_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to open the shared application.")
    session_id = registry.register(controller)
    return WizardSessionResponse(session_id=session_id, wizard=controller.snapshot())
