# Wizard State Controller: in-progress form, step navigation, draft/submit transitions
import datetime
import logging
import time
from typing import Any, Callable, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from opentelemetry import trace
from pydantic import BaseModel

from policy_application_service.app.config import settings
from policy_application_service.app.models import (
    CapturedImagePayload,
    ChangeOperation,
    ChangeTable,
    Document,
    FilePayload,
    FormData,
    Identity,
    NotPersisted,
    Persisted,
    PersistenceState,
    PolicyRecord,
    PolicyStatus,
    WizardStep,
)
from policy_application_service.app.models.document import decode_data_url
from policy_application_service.app.models.form_data import FIRST_STEP, LAST_STEP, form_section_adapter, step_for_section
from policy_application_service.app.observability import (
    tracer,
    applications_submitted_counter,
    drafts_saved_counter,
    submission_latency_histogram,
)
from policy_application_service.app.service.exceptions import (
    InvalidWizardStateError,
    NotPolicyOwnerError,
    ReconciliationFailure,
    TransientStoreFailure,
    ValidationFailure,
    WizardBusyError,
)
from policy_application_service.app.service.reconciler import AttachmentReconciler
from policy_application_service.infrastructure.database import policy_store, share_store
from policy_application_service.infrastructure.kafka.producer import ChangeFeedPublisher

logger = logging.getLogger(__name__)

# Always required on submit, as dotted form paths.
REQUIRED_FIELDS = (
    "personal.first_name",
    "personal.last_name",
    "personal.dob",
    "address.address_line1",
    "address.city",
    "address.pincode",
    "address.phone",
    "nominee.name",
    "nominee.dob",
)
# Required on submit only when the nominee is a minor.
APPOINTEE_FIELDS = ("appointee.name", "appointee.relation")


def _today() -> datetime.date:
    return datetime.datetime.now(datetime.UTC).date()


def compute_age(dob: str, today: datetime.date) -> int:
    """
    Whole years between an ISO date of birth and `today`.

    A blank date of birth counts as age 0. Raises ValueError for a date that
    is not YYYY-MM-DD.
    """
    if not dob or not dob.strip():
        return 0
    born = datetime.date.fromisoformat(dob.strip())
    return today.year - born.year - ((today.month, today.day) < (born.month, born.day))


def compute_is_minor(dob: str, today: datetime.date) -> bool:
    return compute_age(dob, today) < settings.MINOR_AGE_THRESHOLD


def _read_path(data: Any, parts: List[str]) -> Any:
    for part in parts:
        data = data[int(part)] if isinstance(data, list) else data[part]
    return data


def _write_path(data: Any, parts: List[str], value: Any) -> None:
    container = _read_path(data, parts[:-1])
    key = parts[-1]
    if isinstance(container, list):
        index = int(key)
        if index == len(container):
            container.append(value)
        else:
            container[index] = value
    elif isinstance(container, dict):
        if key not in container:
            raise KeyError(key)
        container[key] = value
    else:
        raise KeyError(key)


class WizardSnapshot(BaseModel):
    """What a caller sees of the wizard after any command."""
    policy_id: Optional[str]
    owner_id: str
    status: PolicyStatus
    current_step: WizardStep
    read_only: bool
    is_owner: bool
    is_busy: bool
    is_completed: bool
    nominee_is_minor: bool
    shared_count: int
    form_data: FormData


class WizardStateController:
    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        viewer: Identity,
        reconciler: AttachmentReconciler,
        change_publisher: Optional[ChangeFeedPublisher] = None,
        today: Callable[[], datetime.date] = _today,
    ):
        self.db = db
        self.viewer = viewer
        self.reconciler = reconciler
        self.change_publisher = change_publisher
        self.today = today

        self.form_data = FormData()
        self.persistence: PersistenceState = NotPersisted()
        self.owner_id = viewer.id
        self.status = PolicyStatus.DRAFT
        self.shared_count = 0
        self.current_step = FIRST_STEP
        self.read_only = False
        self.is_busy = False
        self.is_completed = False

    def initialize(
        self,
        existing_record: Optional[PolicyRecord] = None,
        start_step: WizardStep = FIRST_STEP,
        read_only: bool = False,
    ) -> WizardSnapshot:
        """
        Seeds the wizard from an existing record, or from blank defaults for a new application.

        Only the first step and the Summary step are valid starting points.
        A viewer who does not own the record is always read-only.
        """
        if start_step not in (FIRST_STEP, LAST_STEP):
            raise ValueError(f"Wizard can only start at step {FIRST_STEP.value} or {LAST_STEP.value}, not {int(start_step)}.")

        if existing_record is None:
            self.form_data = FormData()
            self.persistence = NotPersisted()
            self.owner_id = self.viewer.id
            self.status = PolicyStatus.DRAFT
            self.shared_count = 0
        else:
            self.form_data = existing_record.form_data.model_copy(deep=True)
            self.persistence = Persisted(policy_id=existing_record.id)
            self.owner_id = existing_record.owner_id
            self.status = PolicyStatus(existing_record.status)
            self.shared_count = existing_record.shared_count

        self.current_step = WizardStep(start_step)
        self.read_only = read_only or not self.is_owner
        self.is_busy = False
        self.is_completed = False
        logger.info(
            f"Wizard initialized for viewer {self.viewer.id}: policy={self.persistence.policy_id}, "
            f"step={int(self.current_step)}, read_only={self.read_only}"
        )
        return self.snapshot()

    @property
    def is_owner(self) -> bool:
        return self.owner_id == self.viewer.id

    @property
    def policy_id(self) -> Optional[str]:
        return self.persistence.policy_id

    def nominee_is_minor(self) -> bool:
        try:
            return compute_is_minor(self.form_data.nominee.dob, self.today())
        except ValueError:
            return False

    def snapshot(self) -> WizardSnapshot:
        return WizardSnapshot(
            policy_id=self.policy_id,
            owner_id=self.owner_id,
            status=self.status,
            current_step=self.current_step,
            read_only=self.read_only,
            is_owner=self.is_owner,
            is_busy=self.is_busy,
            is_completed=self.is_completed,
            nominee_is_minor=self.nominee_is_minor(),
            shared_count=self.shared_count,
            form_data=self.form_data,
        )

    def _ensure_open(self, action: str):
        if self.is_completed:
            raise InvalidWizardStateError(PolicyStatus.SUBMITTED.value, action)
        if self.is_busy:
            raise WizardBusyError(action)

    # --- Navigation ---

    def advance(self) -> WizardStep:
        self._ensure_open("move to the next step")
        if not self.read_only and self.current_step < LAST_STEP:
            self.current_step = WizardStep(self.current_step + 1)
        return self.current_step

    def retreat(self) -> WizardStep:
        self._ensure_open("move to the previous step")
        if not self.read_only and self.current_step > FIRST_STEP:
            self.current_step = WizardStep(self.current_step - 1)
        return self.current_step

    def jump_to(self, step: WizardStep) -> WizardStep:
        self._ensure_open("jump to a step")
        if self.read_only:
            return self.current_step
        self.current_step = WizardStep(step) # ValueError outside 1..10
        return self.current_step

    # --- Form edits ---

    def update_field(self, path: str, value: Any) -> FormData:
        """
        Sets one value in the form by dotted path, e.g. 'personal.first_name'
        or 'family_history.members.0.age'. A bare section name replaces the
        whole section. Only the addressed section is rebuilt.

        Raises:
            ValueError: unknown path or a value the section does not accept.
        """
        self._ensure_open("edit the application")
        if self.read_only:
            return self.form_data

        section_name, _, rest = path.partition(".")
        if step_for_section(section_name) == WizardStep.DOCUMENTS:
            raise ValueError("Documents are edited with the document commands.")

        if rest:
            section_data = getattr(self.form_data, section_name).model_dump()
            parts = rest.split(".")
            if parts[-1] == "section":
                raise ValueError("The section discriminator cannot be edited.")
            try:
                _write_path(section_data, parts, value)
            except (KeyError, IndexError, ValueError, TypeError) as e:
                raise ValueError(f"Unknown form path '{path}'.") from e
        else:
            if not isinstance(value, dict):
                raise ValueError(f"Section '{section_name}' must be replaced with an object.")
            section_data = {**value, "section": section_name}

        # pydantic's ValidationError is a ValueError.
        new_section = form_section_adapter.validate_python(section_data)
        self.form_data = self.form_data.model_copy(update={section_name: new_section})
        return self.form_data

    def _append_document(self, document: Document) -> List[Document]:
        self.form_data = self.form_data.model_copy(update={"documents": [*self.form_data.documents, document]})
        return self.form_data.documents

    def add_document(self, name: str, base64_data: str, declared_size: Optional[int] = None, mime_type: Optional[str] = None) -> List[Document]:
        """Stages a user-selected file for upload on submit."""
        self._ensure_open("attach a document")
        if self.read_only:
            return self.form_data.documents
        document = Document(
            name=name,
            declared_size=declared_size,
            mime_type=mime_type,
            local_payload=FilePayload(base64_data=base64_data),
        )
        return self._append_document(document)

    def add_capture(self, data_url: str) -> List[Document]:
        """Stages a camera capture. It has no file name of its own, so one is generated."""
        self._ensure_open("attach a captured image")
        if self.read_only:
            return self.form_data.documents
        _, mime_type = decode_data_url(data_url)
        captured_at_ms = int(datetime.datetime.now(datetime.UTC).timestamp() * 1000)
        document = Document(
            name=f"scanned_{captured_at_ms}.jpg",
            mime_type=mime_type,
            local_payload=CapturedImagePayload(data_url=data_url),
        )
        return self._append_document(document)

    def remove_document(self, index: int) -> List[Document]:
        self._ensure_open("remove a document")
        if self.read_only:
            return self.form_data.documents
        documents = list(self.form_data.documents)
        if not 0 <= index < len(documents):
            raise ValueError(f"No document at position {index}.")
        removed = documents.pop(index)
        logger.debug(f"Removed document '{removed.name}' from the application form.")
        self.form_data = self.form_data.model_copy(update={"documents": documents})
        return self.form_data.documents

    def enable_editing(self) -> WizardSnapshot:
        """Leaves read-only mode. Only the owner may do this."""
        self._ensure_open("enable editing")
        if not self.is_owner:
            raise NotPolicyOwnerError(self.policy_id or "", "edit this application")
        self.read_only = False
        return self.snapshot()

    # --- Validation ---

    def validate(self) -> List[str]:
        """Returns the dotted paths of required fields that are empty. An empty list means submittable."""
        data = self.form_data.model_dump()

        def is_blank(path: str) -> bool:
            return not str(_read_path(data, path.split("."))).strip()

        missing = [path for path in REQUIRED_FIELDS if is_blank(path)]
        try:
            is_minor = compute_is_minor(self.form_data.nominee.dob, self.today())
        except ValueError:
            # An unreadable date cannot satisfy the nominee date of birth requirement.
            if "nominee.dob" not in missing:
                missing.append("nominee.dob")
            return missing
        if is_minor:
            missing.extend(path for path in APPOINTEE_FIELDS if is_blank(path))
        return missing

    # --- Persistence ---

    def _ensure_can_write(self, action: str):
        self._ensure_open(action)
        if not self.is_owner:
            raise NotPolicyOwnerError(self.policy_id or "", action)
        if self.read_only:
            raise InvalidWizardStateError("read-only", action)

    async def _persist(self, form_data: FormData, status: PolicyStatus) -> PolicyRecord:
        was_persisted = isinstance(self.persistence, Persisted)
        row = await policy_store.upsert_policy(self.db, self.persistence, self.owner_id, form_data, status)
        shared_counts = await share_store.count_share_grants(self.db, [row.id])
        record = PolicyRecord.from_row(row, shared_counts.get(row.id, 0))

        # Local state is replaced from what the store returned.
        self.persistence = Persisted(policy_id=record.id)
        self.status = PolicyStatus(record.status)
        self.form_data = record.form_data
        self.shared_count = record.shared_count

        if self.change_publisher is not None:
            operation = ChangeOperation.UPDATE if was_persisted else ChangeOperation.INSERT
            self.change_publisher.publish(ChangeTable.POLICIES, operation, record.id)
        return record

    async def save_draft(self) -> PolicyRecord:
        """Persists the form as a Draft, complete or not. Pending attachments are stored inline."""
        self._ensure_can_write("save a draft")
        self.is_busy = True
        try:
            with tracer.start_as_current_span("save_draft") as span:
                span.set_attribute("policy.id", self.policy_id or "new")
                record = await self._persist(self.form_data, PolicyStatus.DRAFT)
                span.set_attribute("policy.id", record.id)
        finally:
            self.is_busy = False
        drafts_saved_counter.add(1)
        logger.info(f"Draft saved: application {record.id} for owner {self.owner_id}.")
        return record

    async def submit(self) -> PolicyRecord:
        """
        Validates, reconciles attachments and persists the application as Submitted.

        Raises:
            ValidationFailure: required fields missing. Nothing is uploaded or written.
            ReconciliationFailure: an upload failed. The form is left exactly as it was.
            TransientStoreFailure: the final write failed. Reconciled attachments are kept
                so a retry does not upload them again.
        """
        self._ensure_can_write("submit the application")
        missing = self.validate()
        if missing:
            logger.info(f"Submission rejected for application {self.policy_id or 'new'}: missing {missing}")
            raise ValidationFailure(missing)

        self.is_busy = True
        started = time.perf_counter()
        try:
            with tracer.start_as_current_span("submit_application") as span:
                span.set_attribute("policy.id", self.policy_id or "new")
                span.set_attribute("documents.count", len(self.form_data.documents))
                try:
                    documents = await self.reconciler.reconcile(self.form_data)
                except ReconciliationFailure as e:
                    span.record_exception(e)
                    span.set_status(trace.Status(trace.StatusCode.ERROR, description="Attachment reconciliation failed"))
                    raise

                reconciled_form = self.form_data.model_copy(update={"documents": documents})
                try:
                    record = await self._persist(reconciled_form, PolicyStatus.SUBMITTED)
                except TransientStoreFailure as e:
                    self.form_data = reconciled_form
                    span.record_exception(e)
                    span.set_status(trace.Status(trace.StatusCode.ERROR, description="Persisting submission failed"))
                    raise
                span.set_attribute("policy.id", record.id)
        finally:
            self.is_busy = False

        self.is_completed = True
        applications_submitted_counter.add(1)
        submission_latency_histogram.record(time.perf_counter() - started)
        logger.info(f"Application {record.id} submitted by owner {self.owner_id}.")
        return record
