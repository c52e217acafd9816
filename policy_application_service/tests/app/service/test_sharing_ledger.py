import pytest
from unittest.mock import MagicMock

from policy_application_service.app.models import ChangeOperation, ChangeTable, FormData, PersistenceState, NotPersisted, PolicyStatus
from policy_application_service.app.service.exceptions import DuplicateGrant, NotPolicyOwnerError, PolicyNotFoundError
from policy_application_service.app.service.notifications import NotificationFanOut
from policy_application_service.app.service.sharing import SharingLedger, resolve_access
from policy_application_service.infrastructure.database import notification_store, policy_store


async def create_policy(db, owner, status=PolicyStatus.SUBMITTED, state: PersistenceState = NotPersisted()):
    form = FormData()
    form.personal.first_name = "Asha"
    form.personal.last_name = "Verma"
    row = await policy_store.upsert_policy(db, state, owner.id, form, status)
    return row.id

@pytest.fixture
def ledger(fake_db):
    return SharingLedger(fake_db, NotificationFanOut(fake_db))


@pytest.mark.asyncio
async def test_grant_normalizes_email_and_rejects_duplicate(ledger, fake_db, owner):
    policy_id = await create_policy(fake_db, owner)

    recipients = await ledger.grant(owner, policy_id, "Agent2@Example.com ")
    assert recipients == ["agent2@example.com"]

    with pytest.raises(DuplicateGrant):
        await ledger.grant(owner, policy_id, "agent2@example.com")

    decision = await resolve_access(fake_db, owner, policy_id)
    assert decision.record.shared_count == 1
    # Exactly one notification for the one successful grant.
    assert len(fake_db["notifications"].docs) == 1

@pytest.mark.asyncio
async def test_list_after_grant_and_revoke_is_empty(ledger, fake_db, owner):
    policy_id = await create_policy(fake_db, owner)
    await ledger.grant(owner, policy_id, "agent2@example.com")

    remaining = await ledger.revoke(owner, policy_id, " AGENT2@example.com")

    assert remaining == []
    assert await ledger.list_grants(owner, policy_id) == []

@pytest.mark.asyncio
async def test_revoke_missing_grant_is_noop(ledger, fake_db, owner):
    policy_id = await create_policy(fake_db, owner)
    assert await ledger.revoke(owner, policy_id, "nobody@example.com") == []

@pytest.mark.asyncio
async def test_blank_email_is_rejected(ledger, fake_db, owner):
    policy_id = await create_policy(fake_db, owner)
    with pytest.raises(ValueError):
        await ledger.grant(owner, policy_id, "   ")

@pytest.mark.asyncio
async def test_only_owner_may_grant(ledger, fake_db, owner, recipient, outsider):
    policy_id = await create_policy(fake_db, owner)
    await ledger.grant(owner, policy_id, recipient.email)

    # A recipient can see the record but cannot share it onwards.
    with pytest.raises(NotPolicyOwnerError):
        await ledger.grant(recipient, policy_id, outsider.email)
    # Someone without access is told the record does not exist.
    with pytest.raises(PolicyNotFoundError):
        await ledger.grant(outsider, policy_id, "x@example.com")

@pytest.mark.asyncio
async def test_access_decision(ledger, fake_db, owner, recipient, outsider):
    policy_id = await create_policy(fake_db, owner, status=PolicyStatus.DRAFT)
    await ledger.grant(owner, policy_id, recipient.email.upper())

    owner_view = await resolve_access(fake_db, owner, policy_id)
    assert owner_view.is_owner and not owner_view.forces_read_only

    recipient_view = await resolve_access(fake_db, recipient, policy_id)
    assert recipient_view.forces_read_only
    assert recipient_view.record.shared_count == 0

    with pytest.raises(PolicyNotFoundError):
        await resolve_access(fake_db, outsider, policy_id)

@pytest.mark.asyncio
async def test_grant_outliving_deleted_record_gives_no_access(ledger, fake_db, owner, recipient):
    policy_id = await create_policy(fake_db, owner)
    await ledger.grant(owner, policy_id, recipient.email)
    await policy_store.delete_policy(fake_db, policy_id, owner.id)

    assert len(fake_db["policy_shares"].docs) == 1
    assert len(await notification_store.list_notifications(fake_db, recipient.email)) == 1
    with pytest.raises(PolicyNotFoundError):
        await resolve_access(fake_db, recipient, policy_id)

@pytest.mark.asyncio
async def test_grant_and_revoke_announce_share_changes_keyed_by_policy(fake_db, owner, recipient):
    publisher = MagicMock()
    ledger = SharingLedger(fake_db, None, publisher)
    policy_id = await create_policy(fake_db, owner)

    await ledger.grant(owner, policy_id, recipient.email)
    await ledger.revoke(owner, policy_id, recipient.email)

    events = [c.args for c in publisher.publish.call_args_list]
    assert events == [
        (ChangeTable.POLICY_SHARES, ChangeOperation.INSERT, policy_id),
        (ChangeTable.POLICY_SHARES, ChangeOperation.DELETE, policy_id),
    ]
