# Dashboard queries: counts and per-view lists, always read fresh
import logging
from enum import Enum
from typing import List

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel, Field

from policy_application_service.app.models import Identity, PolicyRecord, PolicyStatus
from policy_application_service.infrastructure.database import notification_store, policy_store, share_store

logger = logging.getLogger(__name__)


class DashboardView(str, Enum):
    HOME = "home"
    DATA = "data" # own submitted applications
    DRAFTS = "drafts"
    SHARED = "shared" # applications shared with the viewer


class DashboardCounts(BaseModel):
    submitted: int = 0
    drafts: int = 0
    shared_with_me: int = 0
    unread_notifications: int = 0


class DashboardSnapshot(BaseModel):
    view: DashboardView
    counts: DashboardCounts
    policies: List[PolicyRecord] = Field(default_factory=list)


async def compute_counts(db: AsyncIOMotorDatabase, viewer: Identity) -> DashboardCounts:
    shared_ids = await share_store.list_policy_ids_shared_with(db, viewer.normalized_email)
    return DashboardCounts(
        submitted=await policy_store.count_policies(db, viewer.id, PolicyStatus.SUBMITTED),
        drafts=await policy_store.count_policies(db, viewer.id, PolicyStatus.DRAFT),
        # Grants whose application was deleted are not counted.
        shared_with_me=await policy_store.count_policies_by_ids(db, shared_ids),
        unread_notifications=await notification_store.count_unread(db, viewer.normalized_email),
    )


async def list_view(
    db: AsyncIOMotorDatabase,
    viewer: Identity,
    view: DashboardView,
    limit: int = 50,
    skip: int = 0,
) -> List[PolicyRecord]:
    """Lists the records behind a dashboard view, newest first. Home has no list."""
    view = DashboardView(view)
    if view == DashboardView.HOME:
        return []

    if view == DashboardView.SHARED:
        shared_ids = await share_store.list_policy_ids_shared_with(db, viewer.normalized_email)
        rows = await policy_store.list_policies_by_ids(db, shared_ids, limit=limit, skip=skip)
        # Share counts are the owner's business.
        return [PolicyRecord.from_row(row) for row in rows]

    status = PolicyStatus.SUBMITTED if view == DashboardView.DATA else PolicyStatus.DRAFT
    rows = await policy_store.list_policies(db, viewer.id, status=status, limit=limit, skip=skip)
    shared_counts = await share_store.count_share_grants(db, [row.id for row in rows])
    return [PolicyRecord.from_row(row, shared_counts.get(row.id, 0)) for row in rows]


async def build_snapshot(db: AsyncIOMotorDatabase, viewer: Identity, view: DashboardView) -> DashboardSnapshot:
    counts = await compute_counts(db, viewer)
    policies = await list_view(db, viewer, view)
    logger.debug(f"Dashboard snapshot for {viewer.id}: view={DashboardView(view).value}, {len(policies)} record(s).")
    return DashboardSnapshot(view=view, counts=counts, policies=policies)
