import asyncio
import base64
import datetime
from unittest.mock import MagicMock

import pytest

from policy_application_service.app.models import (
    ChangeOperation,
    ChangeTable,
    NotPersisted,
    Persisted,
    PolicyRecord,
    PolicyStatus,
    WizardStep,
)
from policy_application_service.app.service.exceptions import (
    InvalidWizardStateError,
    NotPolicyOwnerError,
    ReconciliationFailure,
    ValidationFailure,
    WizardBusyError,
)
from policy_application_service.app.service.reconciler import AttachmentReconciler
from policy_application_service.app.service.wizard.controller import (
    WizardStateController,
    compute_age,
    compute_is_minor,
)
from policy_application_service.infrastructure.database import policy_store

PDF_B64 = base64.b64encode(b"%PDF-1.4 body").decode("ascii")


def years_before(today: datetime.date, years: int) -> str:
    return today.replace(year=today.year - years).isoformat()

def fill_required(controller: WizardStateController, today: datetime.date, nominee_age: int = 30):
    controller.update_field("personal.first_name", "Asha")
    controller.update_field("personal.last_name", "Verma")
    controller.update_field("personal.dob", "1990-04-12")
    controller.update_field("address.address_line1", "12 MG Road")
    controller.update_field("address.city", "Pune")
    controller.update_field("address.pincode", "411001")
    controller.update_field("address.phone", "9800000000")
    controller.update_field("nominee.name", "Kiran")
    controller.update_field("nominee.dob", years_before(today, nominee_age))

@pytest.fixture
def make_controller(fake_db, reconciler, today):
    def _make(viewer, change_publisher=None, controller_reconciler=None):
        controller = WizardStateController(
            fake_db,
            viewer,
            controller_reconciler or reconciler,
            change_publisher,
            today=lambda: today,
        )
        controller.initialize()
        return controller
    return _make


# --- Age rules ---

def test_compute_age_floors_whole_years(today):
    assert compute_age("2007-06-01", today) == 18
    assert compute_age("2007-06-02", today) == 17
    assert compute_age("", today) == 0

def test_compute_is_minor_threshold(today):
    assert compute_is_minor(years_before(today, 10), today) is True
    assert compute_is_minor(years_before(today, 18), today) is False

def test_compute_age_rejects_malformed_date(today):
    with pytest.raises(ValueError):
        compute_age("12/04/1990", today)


# --- Initialization and navigation ---

def test_new_application_starts_blank_at_first_step(make_controller, owner):
    controller = make_controller(owner)
    snapshot = controller.snapshot()
    assert snapshot.current_step == WizardStep.PERSONAL
    assert snapshot.policy_id is None
    assert isinstance(controller.persistence, NotPersisted)
    assert snapshot.status == PolicyStatus.DRAFT
    assert snapshot.read_only is False
    assert snapshot.form_data.personal.gender == "Male"

def test_initialize_only_accepts_first_or_summary_step(make_controller, owner):
    controller = make_controller(owner)
    with pytest.raises(ValueError):
        controller.initialize(None, WizardStep.BANK)
    assert controller.initialize(None, WizardStep.SUMMARY).current_step == WizardStep.SUMMARY

def test_advance_and_retreat_clamp_to_bounds(make_controller, owner):
    controller = make_controller(owner)
    assert controller.retreat() == WizardStep.PERSONAL
    for _ in range(15):
        controller.advance()
    assert controller.current_step == WizardStep.SUMMARY
    assert controller.retreat() == WizardStep.DOCUMENTS

def test_read_only_blocks_navigation_and_edits(make_controller, owner):
    controller = make_controller(owner)
    controller.initialize(None, WizardStep.SUMMARY, read_only=True)

    assert controller.advance() == WizardStep.SUMMARY
    assert controller.retreat() == WizardStep.SUMMARY
    assert controller.jump_to(WizardStep.BANK) == WizardStep.SUMMARY
    controller.update_field("personal.first_name", "Changed")
    assert controller.form_data.personal.first_name == ""

def test_jump_to_from_summary(make_controller, owner):
    controller = make_controller(owner)
    controller.initialize(None, WizardStep.SUMMARY)
    assert controller.jump_to(WizardStep.NOMINEE) == WizardStep.NOMINEE
    with pytest.raises(ValueError):
        controller.jump_to(11)


# --- Field edits ---

def test_update_field_leaves_other_sections_untouched(make_controller, owner):
    controller = make_controller(owner)
    controller.update_field("address.city", "Pune")
    before = controller.form_data.model_dump(exclude={"personal"})

    controller.update_field("personal.first_name", "Asha")

    assert controller.form_data.personal.first_name == "Asha"
    assert controller.form_data.model_dump(exclude={"personal"}) == before

def test_update_field_list_rows(make_controller, owner):
    controller = make_controller(owner)
    controller.update_field("family_history.members", [{"member": "Mother", "age": "58"}])
    controller.update_field("family_history.members.1", {"status": "Deceased", "cause": "Cardiac"})
    controller.update_field("family_history.members.0.age", "59")

    members = controller.form_data.family_history.members
    assert [m.member for m in members] == ["Mother", "Father"]
    assert members[0].age == "59"
    assert members[1].status == "Deceased"

def test_update_field_replaces_whole_section(make_controller, owner):
    controller = make_controller(owner)
    controller.update_field("bank", {"account_number": "123", "bank_name": "SBI"})
    assert controller.form_data.bank.account_number == "123"
    assert controller.form_data.bank.account_type == "Savings"

def test_replacing_a_section_keeps_its_own_kind(make_controller, owner):
    controller = make_controller(owner)
    controller.update_field("appointee", {"section": "medical", "name": "Meera Rao", "relation": "Aunt"})

    appointee = controller.form_data.appointee
    assert appointee.section == "appointee"
    assert appointee.name == "Meera Rao"
    assert controller.form_data.medical.section == "medical"

def test_documents_are_not_edited_as_a_section(make_controller, owner):
    controller = make_controller(owner)
    with pytest.raises(ValueError, match="document commands"):
        controller.update_field("documents", {"name": "a.pdf"})
    with pytest.raises(ValueError, match="Unknown form section 'nickname'"):
        controller.update_field("nickname", {})

@pytest.mark.parametrize("path", ["unknown.field", "personal.nickname", "personal.section", "documents", "family_history.members.5"])
def test_update_field_rejects_unknown_paths(make_controller, owner, path):
    controller = make_controller(owner)
    with pytest.raises(ValueError):
        controller.update_field(path, "x")

def test_document_commands(make_controller, owner):
    controller = make_controller(owner)
    controller.add_document("pan.pdf", PDF_B64, declared_size=13, mime_type="application/pdf")
    controller.add_capture("data:image/jpeg;base64," + PDF_B64)

    documents = controller.form_data.documents
    assert [d.name for d in documents][0] == "pan.pdf"
    assert documents[1].name.startswith("scanned_") and documents[1].name.endswith(".jpg")
    assert documents[1].mime_type == "image/jpeg"
    assert documents[1].declared_size is None

    assert [d.name for d in controller.remove_document(0)] == [documents[1].name]
    with pytest.raises(ValueError):
        controller.remove_document(3)


# --- Validation ---

def test_validate_lists_missing_required_fields(make_controller, owner):
    controller = make_controller(owner)
    missing = controller.validate()
    assert "personal.first_name" in missing
    assert "address.pincode" in missing
    assert "nominee.dob" in missing

def test_adult_nominee_does_not_require_appointee(make_controller, owner, today):
    controller = make_controller(owner)
    fill_required(controller, today, nominee_age=18)
    assert controller.validate() == []

def test_minor_nominee_requires_appointee(make_controller, owner, today):
    controller = make_controller(owner)
    fill_required(controller, today, nominee_age=10)
    assert controller.validate() == ["appointee.name", "appointee.relation"]
    assert controller.snapshot().nominee_is_minor is True


# --- Draft and submit ---

@pytest.mark.asyncio
async def test_save_draft_round_trip(make_controller, owner, fake_db):
    controller = make_controller(owner)
    controller.update_field("personal.first_name", "Asha")
    controller.add_document("pan.pdf", PDF_B64, mime_type="application/pdf")
    saved_form = controller.form_data.model_copy(deep=True)

    record = await controller.save_draft()

    assert record.status == PolicyStatus.DRAFT
    assert isinstance(controller.persistence, Persisted)
    assert controller.policy_id == record.id

    row = await policy_store.get_policy_by_id(fake_db, record.id)
    fetched = PolicyRecord.from_row(row)
    assert fetched.status == PolicyStatus.DRAFT
    assert fetched.form_data == saved_form
    assert "id" not in row.form_data and "owner_id" not in row.form_data

@pytest.mark.asyncio
async def test_second_save_updates_same_record(make_controller, owner, fake_db):
    controller = make_controller(owner)
    first = await controller.save_draft()
    controller.update_field("address.city", "Nashik")
    second = await controller.save_draft()

    assert first.id == second.id
    assert len(fake_db["policies"].docs) == 1
    assert second.form_data.address.city == "Nashik"

@pytest.mark.asyncio
async def test_submit_scenario_minor_nominee(make_controller, owner, today, blob_storage):
    controller = make_controller(owner)
    fill_required(controller, today, nominee_age=10)
    controller.add_document("pan.pdf", PDF_B64, mime_type="application/pdf")

    with pytest.raises(ValidationFailure) as exc_info:
        await controller.submit()
    assert exc_info.value.missing_fields == ["appointee.name", "appointee.relation"]
    assert blob_storage.attempted == []

    controller.update_field("appointee.name", "Ravi")
    controller.update_field("appointee.relation", "Uncle")
    record = await controller.submit()

    assert record.status == PolicyStatus.SUBMITTED
    assert record.form_data.appointee.name == "Ravi"
    assert record.form_data.documents[0].remote_ref is not None
    assert record.form_data.documents[0].local_payload is None
    assert controller.is_completed

@pytest.mark.asyncio
async def test_submit_makes_wizard_terminal(make_controller, owner, today):
    controller = make_controller(owner)
    fill_required(controller, today)
    await controller.submit()

    with pytest.raises(InvalidWizardStateError):
        controller.update_field("personal.first_name", "Other")
    with pytest.raises(InvalidWizardStateError):
        await controller.save_draft()

@pytest.mark.asyncio
async def test_reconciliation_failure_leaves_form_and_draft_untouched(make_controller, owner, today, fake_db, blob_storage_factory, upload_ms):
    failing = AttachmentReconciler(blob_storage_factory(fail_on={"bad.pdf"}), clock_ms=lambda: upload_ms)
    controller = make_controller(owner, controller_reconciler=failing)
    fill_required(controller, today)
    controller.add_document("bad.pdf", PDF_B64)
    draft = await controller.save_draft()
    form_before = controller.form_data.model_copy(deep=True)

    with pytest.raises(ReconciliationFailure) as exc_info:
        await controller.submit()

    assert exc_info.value.file_name == "bad.pdf"
    assert controller.form_data == form_before
    assert controller.is_busy is False
    assert controller.is_completed is False
    row = await policy_store.get_policy_by_id(fake_db, draft.id)
    assert row.status == PolicyStatus.DRAFT.value

@pytest.mark.asyncio
async def test_busy_flag_blocks_reentrant_calls(make_controller, owner, today, upload_ms):
    release = asyncio.Event()

    class SlowStorage:
        async def upload(self, path, data, content_type=None):
            await release.wait()
            return f"https://storage.test/{path}"

    controller = make_controller(owner, controller_reconciler=AttachmentReconciler(SlowStorage(), clock_ms=lambda: upload_ms))
    fill_required(controller, today)
    controller.add_document("pan.pdf", PDF_B64)

    submission = asyncio.create_task(controller.submit())
    await asyncio.sleep(0)
    assert controller.is_busy is True

    with pytest.raises(WizardBusyError):
        await controller.submit()
    with pytest.raises(WizardBusyError):
        await controller.save_draft()
    with pytest.raises(WizardBusyError):
        controller.update_field("personal.first_name", "Other")

    release.set()
    record = await submission
    assert record.status == PolicyStatus.SUBMITTED
    assert controller.is_busy is False

@pytest.mark.asyncio
async def test_non_owner_is_forced_read_only(make_controller, owner, recipient):
    owner_controller = make_controller(owner)
    record = await owner_controller.save_draft()

    viewer_controller = make_controller(recipient)
    snapshot = viewer_controller.initialize(record, WizardStep.SUMMARY, read_only=False)

    assert snapshot.read_only is True
    assert snapshot.is_owner is False
    with pytest.raises(NotPolicyOwnerError):
        viewer_controller.enable_editing()
    with pytest.raises(NotPolicyOwnerError):
        await viewer_controller.save_draft()

@pytest.mark.asyncio
async def test_owner_can_leave_read_only_and_reopen_submitted_record(make_controller, owner, today):
    controller = make_controller(owner)
    fill_required(controller, today)
    submitted = await controller.submit()

    reopened = make_controller(owner)
    reopened.initialize(submitted, WizardStep.SUMMARY, read_only=True)
    with pytest.raises(InvalidWizardStateError):
        await reopened.save_draft()

    reopened.enable_editing()
    reopened.update_field("address.city", "Mumbai")
    record = await reopened.submit()
    assert record.id == submitted.id
    assert record.form_data.address.city == "Mumbai"

@pytest.mark.asyncio
async def test_writes_announce_changes(make_controller, owner):
    publisher = MagicMock()
    controller = make_controller(owner, change_publisher=publisher)

    record = await controller.save_draft()
    await controller.save_draft()

    assert publisher.publish.call_args_list[0].args == (ChangeTable.POLICIES, ChangeOperation.INSERT, record.id)
    assert publisher.publish.call_args_list[1].args == (ChangeTable.POLICIES, ChangeOperation.UPDATE, record.id)
