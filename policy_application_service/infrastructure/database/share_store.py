# Operations for the Policy Shares Collection
import logging
from collections import Counter
from typing import Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from policy_application_service.app.models import ShareGrantDB
from policy_application_service.app.service.exceptions import DuplicateGrant
from .connection import translate_store_errors

logger = logging.getLogger(__name__)
POLICY_SHARES_COLLECTION = "policy_shares"

@translate_store_errors("share application")
async def add_share_grant(db: AsyncIOMotorDatabase, grant: ShareGrantDB) -> ShareGrantDB:
    """Inserts a grant. The unique (policy_id, recipient_email) index rejects duplicates."""
    try:
        await db[POLICY_SHARES_COLLECTION].insert_one(grant.model_dump())
    except DuplicateKeyError:
        raise DuplicateGrant(grant.policy_id, grant.recipient_email)
    logger.info(f"Share grant added: application {grant.policy_id} -> {grant.recipient_email}")
    return grant

@translate_store_errors("fetch share")
async def get_share_grant(db: AsyncIOMotorDatabase, policy_id: str, recipient_email: str) -> Optional[ShareGrantDB]:
    doc = await db[POLICY_SHARES_COLLECTION].find_one({"policy_id": policy_id, "recipient_email": recipient_email})
    return ShareGrantDB(**doc) if doc else None

@translate_store_errors("revoke share")
async def delete_share_grant(db: AsyncIOMotorDatabase, policy_id: str, recipient_email: str) -> bool:
    result = await db[POLICY_SHARES_COLLECTION].delete_one({"policy_id": policy_id, "recipient_email": recipient_email})
    if result.deleted_count:
        logger.info(f"Share grant revoked: application {policy_id} -> {recipient_email}")
    return bool(result.deleted_count)

@translate_store_errors("list shares")
async def list_recipient_emails(db: AsyncIOMotorDatabase, policy_id: str) -> List[str]:
    cursor = db[POLICY_SHARES_COLLECTION].find({"policy_id": policy_id}).sort("created_at", 1)
    docs = await cursor.to_list(length=None)
    return [doc["recipient_email"] for doc in docs]

@translate_store_errors("count shares")
async def count_share_grants(db: AsyncIOMotorDatabase, policy_ids: List[str]) -> Dict[str, int]:
    """Returns the number of grants per policy ID, zero for policies with none."""
    if not policy_ids:
        return {}
    cursor = db[POLICY_SHARES_COLLECTION].find({"policy_id": {"$in": policy_ids}})
    docs = await cursor.to_list(length=None)
    counts = Counter(doc["policy_id"] for doc in docs)
    return {policy_id: counts.get(policy_id, 0) for policy_id in policy_ids}

@translate_store_errors("list applications shared with you")
async def list_policy_ids_shared_with(db: AsyncIOMotorDatabase, recipient_email: str) -> List[str]:
    cursor = db[POLICY_SHARES_COLLECTION].find({"recipient_email": recipient_email}).sort("created_at", -1)
    docs = await cursor.to_list(length=None)
    return [doc["policy_id"] for doc in docs]
