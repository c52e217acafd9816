import datetime
import uuid

import pytest
from unittest.mock import AsyncMock, MagicMock
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, ServerSelectionTimeoutError

from policy_application_service.app.models import FormData, NotPersisted, Persisted, PolicyStatus
from policy_application_service.app.service.exceptions import PolicyNotFoundError, TransientStoreFailure
from policy_application_service.infrastructure.database import policy_store as store


@pytest.fixture
def mock_db():
    db = MagicMock()
    db.policies = MagicMock()
    db.__getitem__.return_value = db.policies
    return db

def row(policy_id: str, owner_id: str = "agent-1", status: str = "DRAFT") -> dict:
    now = datetime.datetime.now(datetime.timezone.utc)
    return {"id": policy_id, "owner_id": owner_id, "status": status, "form_data": {}, "created_at": now, "updated_at": now}


@pytest.mark.asyncio
async def test_upsert_new_application_assigns_id(mock_db):
    mock_db.policies.find_one_and_update = AsyncMock(side_effect=lambda flt, update, **kw: {**row(flt["id"]), "status": update["$set"]["status"]})
    form = FormData()
    form.personal.first_name = "Asha"

    result = await store.upsert_policy(mock_db, NotPersisted(), "agent-1", form, PolicyStatus.DRAFT)

    query_filter, update = mock_db.policies.find_one_and_update.call_args.args
    kwargs = mock_db.policies.find_one_and_update.call_args.kwargs
    assert uuid.UUID(query_filter["id"])
    assert query_filter["owner_id"] == "agent-1"
    assert update["$set"]["status"] == "DRAFT"
    assert update["$set"]["form_data"]["personal"]["first_name"] == "Asha"
    assert "created_at" in update["$setOnInsert"]
    assert kwargs == {"upsert": True, "return_document": ReturnDocument.AFTER}
    assert result.id == query_filter["id"]

@pytest.mark.asyncio
async def test_upsert_persisted_application_reuses_id(mock_db):
    policy_id = str(uuid.uuid4())
    mock_db.policies.find_one_and_update = AsyncMock(return_value=row(policy_id, status="SUBMITTED"))

    result = await store.upsert_policy(mock_db, Persisted(policy_id=policy_id), "agent-1", FormData(), PolicyStatus.SUBMITTED)

    assert mock_db.policies.find_one_and_update.call_args.args[0] == {"id": policy_id, "owner_id": "agent-1"}
    assert mock_db.policies.find_one_and_update.call_args.kwargs["upsert"] is False
    assert result.status == "SUBMITTED"

@pytest.mark.asyncio
async def test_upsert_deleted_application_is_not_recreated(mock_db):
    mock_db.policies.find_one_and_update = AsyncMock(return_value=None)

    with pytest.raises(PolicyNotFoundError) as exc_info:
        await store.upsert_policy(mock_db, Persisted(policy_id="d" * 36), "agent-1", FormData(), PolicyStatus.DRAFT)

    assert exc_info.value.policy_id == "d" * 36
    assert mock_db.policies.find_one_and_update.call_args.kwargs["upsert"] is False

@pytest.mark.asyncio
async def test_upsert_over_someone_elses_id_is_not_found(mock_db):
    mock_db.policies.find_one_and_update = AsyncMock(return_value=None)
    with pytest.raises(PolicyNotFoundError):
        await store.upsert_policy(mock_db, Persisted(policy_id="p" * 36), "intruder", FormData(), PolicyStatus.DRAFT)

@pytest.mark.asyncio
async def test_new_id_colliding_with_existing_row_is_not_found(mock_db):
    mock_db.policies.find_one_and_update = AsyncMock(side_effect=DuplicateKeyError("E11000"))
    with pytest.raises(PolicyNotFoundError):
        await store.upsert_policy(mock_db, NotPersisted(), "agent-1", FormData(), PolicyStatus.DRAFT)

@pytest.mark.asyncio
async def test_driver_errors_become_transient_store_failures(mock_db):
    mock_db.policies.find_one = AsyncMock(side_effect=ServerSelectionTimeoutError("no primary"))
    with pytest.raises(TransientStoreFailure) as exc_info:
        await store.get_policy_by_id(mock_db, "some-id")
    assert exc_info.value.operation == "fetch application"

@pytest.mark.asyncio
async def test_get_policy_by_id_not_found(mock_db):
    mock_db.policies.find_one = AsyncMock(return_value=None)
    assert await store.get_policy_by_id(mock_db, "missing") is None
    mock_db.policies.find_one.assert_called_once_with({"id": "missing"})

@pytest.mark.asyncio
async def test_list_policies_filters_and_orders_by_recency(mock_db):
    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.skip.return_value = cursor
    cursor.limit.return_value = cursor
    cursor.to_list = AsyncMock(return_value=[row("p-1", status="SUBMITTED")])
    mock_db.policies.find.return_value = cursor

    results = await store.list_policies(mock_db, "agent-1", status=PolicyStatus.SUBMITTED, limit=10, skip=5)

    mock_db.policies.find.assert_called_once_with({"owner_id": "agent-1", "status": "SUBMITTED"})
    cursor.sort.assert_called_once_with("updated_at", -1)
    cursor.skip.assert_called_once_with(5)
    cursor.limit.assert_called_once_with(10)
    assert [r.id for r in results] == ["p-1"]

@pytest.mark.asyncio
async def test_delete_policy_reports_missing_row(mock_db):
    mock_db.policies.delete_one = AsyncMock(return_value=MagicMock(deleted_count=0))
    assert await store.delete_policy(mock_db, "p-1", "agent-1") is False
    mock_db.policies.delete_one.assert_called_once_with({"id": "p-1", "owner_id": "agent-1"})
