# Operations for the Policies Collection
import datetime
import logging
import uuid
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from policy_application_service.app.models import FormData, PolicyDB, PolicyStatus
from policy_application_service.app.models.persistence_state import PersistenceState, Persisted
from policy_application_service.app.service.exceptions import PolicyNotFoundError
from .connection import translate_store_errors

logger = logging.getLogger(__name__)
POLICIES_COLLECTION = "policies"

@translate_store_errors("save application")
async def upsert_policy(
    db: AsyncIOMotorDatabase,
    state: PersistenceState,
    owner_id: str,
    form_data: FormData,
    status: PolicyStatus,
) -> PolicyDB:
    """
    Writes the application in a single round trip keyed by ID.

    A persisted application is updated in place (last write wins) and is never
    recreated: if its row is gone, or belongs to someone else, nothing is
    written and PolicyNotFoundError is raised. A new application is inserted
    under a freshly assigned ID. The filter includes the owner so a caller can
    never write over someone else's row.
    """
    is_persisted = isinstance(state, Persisted)
    policy_id = state.policy_id if is_persisted else str(uuid.uuid4())
    now = datetime.datetime.now(datetime.UTC)

    try:
        doc = await db[POLICIES_COLLECTION].find_one_and_update(
            {"id": policy_id, "owner_id": owner_id},
            {
                "$set": {
                    "status": PolicyStatus(status).value,
                    "form_data": form_data.model_dump(mode="json"),
                    "updated_at": now,
                },
                # id and owner_id come from the filter on insert
                "$setOnInsert": {"created_at": now},
            },
            upsert=not is_persisted,
            return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError:
        # A freshly assigned ID already exists under another owner.
        logger.warning(f"Assigned ID {policy_id} for owner {owner_id} collided with an existing application.")
        raise PolicyNotFoundError(policy_id)

    if doc is None:
        logger.warning(f"Application {policy_id} no longer exists for owner {owner_id}; nothing written.")
        raise PolicyNotFoundError(policy_id)

    logger.info(f"Application {policy_id} upserted with status {PolicyStatus(status).value} for owner {owner_id}.")
    return PolicyDB(**doc)

@translate_store_errors("fetch application")
async def get_policy_by_id(db: AsyncIOMotorDatabase, policy_id: str) -> Optional[PolicyDB]:
    doc = await db[POLICIES_COLLECTION].find_one({"id": policy_id})
    return PolicyDB(**doc) if doc else None

@translate_store_errors("list applications")
async def list_policies(
    db: AsyncIOMotorDatabase,
    owner_id: str,
    status: Optional[PolicyStatus] = None,
    limit: int = 50,
    skip: int = 0,
) -> List[PolicyDB]:
    """Lists an owner's applications, most recently modified first."""
    query_filter = {"owner_id": owner_id}
    if status is not None:
        query_filter["status"] = PolicyStatus(status).value
    cursor = db[POLICIES_COLLECTION].find(query_filter).sort("updated_at", -1).skip(skip).limit(limit)
    docs = await cursor.to_list(length=limit)
    return [PolicyDB(**doc) for doc in docs]

@translate_store_errors("list shared applications")
async def list_policies_by_ids(
    db: AsyncIOMotorDatabase,
    policy_ids: List[str],
    limit: int = 50,
    skip: int = 0,
) -> List[PolicyDB]:
    if not policy_ids:
        return []
    cursor = db[POLICIES_COLLECTION].find({"id": {"$in": policy_ids}}).sort("updated_at", -1).skip(skip).limit(limit)
    docs = await cursor.to_list(length=limit)
    return [PolicyDB(**doc) for doc in docs]

@translate_store_errors("count applications")
async def count_policies(db: AsyncIOMotorDatabase, owner_id: str, status: PolicyStatus) -> int:
    return await db[POLICIES_COLLECTION].count_documents(
        {"owner_id": owner_id, "status": PolicyStatus(status).value}
    )

@translate_store_errors("count shared applications")
async def count_policies_by_ids(db: AsyncIOMotorDatabase, policy_ids: List[str]) -> int:
    if not policy_ids:
        return 0
    return await db[POLICIES_COLLECTION].count_documents({"id": {"$in": policy_ids}})

@translate_store_errors("delete application")
async def delete_policy(db: AsyncIOMotorDatabase, policy_id: str, owner_id: str) -> bool:
    """Removes the row only. Share grants and notifications that reference it are left in place."""
    result = await db[POLICIES_COLLECTION].delete_one({"id": policy_id, "owner_id": owner_id})
    if result.deleted_count == 0:
        logger.warning(f"Application {policy_id} not found for owner {owner_id}; nothing deleted.")
        return False
    logger.info(f"Application {policy_id} deleted by owner {owner_id}.")
    return True
