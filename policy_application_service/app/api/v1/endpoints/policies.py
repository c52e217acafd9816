# API Router for policy applications (dashboard lists, counts, fetch, delete)
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from motor.motor_asyncio import AsyncIOMotorDatabase

from policy_application_service.app.api.v1.errors import to_http_exception
from policy_application_service.app.dependencies.identity import get_current_identity
from policy_application_service.app.dependencies.services import get_optional_change_publisher
from policy_application_service.app.models import ChangeOperation, ChangeTable, Identity, PolicyRecord
from policy_application_service.app.service import dashboard
from policy_application_service.app.service.exceptions import BasePolicyApplicationError
from policy_application_service.app.service.sharing import require_owner, resolve_access
from policy_application_service.infrastructure.database import policy_store
from policy_application_service.infrastructure.database.connection import get_db
from policy_application_service.infrastructure.kafka.producer import ChangeFeedPublisher

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("", response_model=List[PolicyRecord], summary="List the applications behind a dashboard view.")
async def list_policies_api(
    view: dashboard.DashboardView = Query(dashboard.DashboardView.DATA),
    limit: int = Query(50, ge=1, le=200),
    skip: int = Query(0, ge=0),
    db: AsyncIOMotorDatabase = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    try:
        return await dashboard.list_view(db, identity, view, limit=limit, skip=skip)
    except BasePolicyApplicationError as e:
        raise to_http_exception(e)

@router.get("/counts", response_model=dashboard.DashboardCounts)
async def policy_counts_api(
    db: AsyncIOMotorDatabase = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    try:
        return await dashboard.compute_counts(db, identity)
    except BasePolicyApplicationError as e:
        raise to_http_exception(e)

@router.get("/{policy_id}", response_model=PolicyRecord, summary="Fetch an application the caller owns or has been shared.")
async def get_policy_api(
    policy_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    try:
        decision = await resolve_access(db, identity, policy_id)
        return decision.record
    except BasePolicyApplicationError as e:
        raise to_http_exception(e)

@router.delete("/{policy_id}", status_code=204, summary="Delete an application. Shares and notifications are not removed.")
async def delete_policy_api(
    policy_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    change_publisher: Optional[ChangeFeedPublisher] = Depends(get_optional_change_publisher),
):
    try:
        await require_owner(db, identity, policy_id, "delete this application")
        if not await policy_store.delete_policy(db, policy_id, identity.id):
            raise HTTPException(status_code=404, detail=f"Application with ID '{policy_id}' not found.")
    except BasePolicyApplicationError as e:
        raise to_http_exception(e)

    if change_publisher is not None:
        change_publisher.publish(ChangeTable.POLICIES, ChangeOperation.DELETE, policy_id)
    return Response(status_code=204)
