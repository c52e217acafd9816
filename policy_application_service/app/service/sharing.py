# Access Control & Sharing Ledger
import logging
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel

from policy_application_service.app.models import ChangeOperation, ChangeTable, Identity, PolicyRecord, ShareGrantDB
from policy_application_service.app.models.share_grant_db import normalize_email
from policy_application_service.app.observability import tracer, share_grants_created_counter
from policy_application_service.app.service.exceptions import NotPolicyOwnerError, PolicyNotFoundError
from policy_application_service.infrastructure.database import policy_store, share_store
from policy_application_service.infrastructure.kafka.producer import ChangeFeedPublisher

logger = logging.getLogger(__name__)


class AccessDecision(BaseModel):
    record: PolicyRecord
    is_owner: bool

    @property
    def forces_read_only(self) -> bool:
        return not self.is_owner


async def resolve_access(db: AsyncIOMotorDatabase, viewer: Identity, policy_id: str) -> AccessDecision:
    """
    Fetches a record fresh and decides whether the viewer may see it.

    The viewer sees the record when they own it or a grant exists for their
    email. Otherwise PolicyNotFoundError is raised, the same as for a missing
    record. Grants that outlive their record are never consulted because the
    record lookup fails first.
    """
    row = await policy_store.get_policy_by_id(db, policy_id)
    if row is None:
        raise PolicyNotFoundError(policy_id)

    is_owner = row.owner_id == viewer.id
    if not is_owner:
        grant = await share_store.get_share_grant(db, policy_id, viewer.normalized_email)
        if grant is None:
            logger.info(f"Viewer {viewer.id} has no access to application {policy_id}.")
            raise PolicyNotFoundError(policy_id)

    shared_count = 0
    if is_owner:
        shared_count = (await share_store.count_share_grants(db, [policy_id])).get(policy_id, 0)
    return AccessDecision(record=PolicyRecord.from_row(row, shared_count), is_owner=is_owner)


async def require_owner(db: AsyncIOMotorDatabase, viewer: Identity, policy_id: str, action: str) -> PolicyRecord:
    decision = await resolve_access(db, viewer, policy_id)
    if not decision.is_owner:
        raise NotPolicyOwnerError(policy_id, action)
    return decision.record


class SharingLedger:
    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        notification_fan_out=None, # NotificationFanOut; optional so the ledger can run without alerts
        change_publisher: Optional[ChangeFeedPublisher] = None,
    ):
        self.db = db
        self.notification_fan_out = notification_fan_out
        self.change_publisher = change_publisher

    async def grant(self, owner: Identity, policy_id: str, email: str) -> List[str]:
        """
        Shares an application read-only with an email address.

        Returns the recipient list as stored after the grant.

        Raises:
            PolicyNotFoundError: the application does not exist or is hidden from the caller.
            NotPolicyOwnerError: the caller can see but does not own the application.
            DuplicateGrant: the application is already shared with this email.
            ValueError: the email is blank.
        """
        recipient_email = normalize_email(email)
        if not recipient_email:
            raise ValueError("Recipient email must not be empty.")

        with tracer.start_as_current_span("grant_share") as span:
            span.set_attribute("policy.id", policy_id)
            record = await require_owner(self.db, owner, policy_id, "share this application")
            await share_store.add_share_grant(
                self.db, ShareGrantDB(policy_id=policy_id, recipient_email=recipient_email, shared_by=owner.id)
            )
            share_grants_created_counter.add(1)
            if self.change_publisher is not None:
                self.change_publisher.publish(ChangeTable.POLICY_SHARES, ChangeOperation.INSERT, policy_id)

            if self.notification_fan_out is not None:
                await self.notification_fan_out.notify_share(owner, record, recipient_email)

        return await share_store.list_recipient_emails(self.db, policy_id)

    async def revoke(self, owner: Identity, policy_id: str, email: str) -> List[str]:
        """Removes a grant if present and returns the remaining recipients."""
        recipient_email = normalize_email(email)
        with tracer.start_as_current_span("revoke_share") as span:
            span.set_attribute("policy.id", policy_id)
            await require_owner(self.db, owner, policy_id, "manage sharing for this application")
            removed = await share_store.delete_share_grant(self.db, policy_id, recipient_email)
            if not removed:
                logger.info(f"No grant for {recipient_email} on application {policy_id}; revoke is a no-op.")
            elif self.change_publisher is not None:
                self.change_publisher.publish(ChangeTable.POLICY_SHARES, ChangeOperation.DELETE, policy_id)
        return await share_store.list_recipient_emails(self.db, policy_id)

    async def list_grants(self, owner: Identity, policy_id: str) -> List[str]:
        await require_owner(self.db, owner, policy_id, "view sharing for this application")
        return await share_store.list_recipient_emails(self.db, policy_id)
