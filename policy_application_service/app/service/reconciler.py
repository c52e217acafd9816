# Attachment Reconciler: staged local payloads -> durable blob references
import asyncio
import datetime
import logging
import re
from typing import Callable, List

from opentelemetry import trace

from policy_application_service.app.config import settings
from policy_application_service.app.models import CapturedImagePayload, Document, FormData
from policy_application_service.app.observability import tracer, attachments_uploaded_counter
from policy_application_service.app.service.exceptions import ReconciliationFailure
from policy_application_service.app.service.interfaces.blob_storage import AbstractBlobStorage

logger = logging.getLogger(__name__)

_UNSAFE_PATH_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


def sanitize_path_component(value: str) -> str:
    """Replaces every character outside [a-zA-Z0-9.-] with '_'."""
    return _UNSAFE_PATH_CHARS.sub("_", value)


def build_storage_path(applicant_full_name: str, file_name: str, timestamp_ms: int) -> str:
    folder = sanitize_path_component(applicant_full_name.strip()) if applicant_full_name.strip() else settings.UNNAMED_APPLICANT_FOLDER
    return f"{folder}/{timestamp_ms}_{sanitize_path_component(file_name)}"


def _utc_now_ms() -> int:
    return int(datetime.datetime.now(datetime.UTC).timestamp() * 1000)


class AttachmentReconciler:
    def __init__(self, blob_storage: AbstractBlobStorage, clock_ms: Callable[[], int] = _utc_now_ms):
        self.blob_storage = blob_storage
        self.clock_ms = clock_ms

    async def reconcile(self, form_data: FormData) -> List[Document]:
        """
        Returns the document list with every pending local payload replaced by a remote reference.

        Uploads run concurrently and all of them run to completion. If any fails,
        ReconciliationFailure names the first failing file and no reconciled list
        is returned. Documents that already have a remote reference are passed
        through untouched.
        """
        documents = form_data.documents
        pending = [doc for doc in documents if doc.is_pending_upload]
        with tracer.start_as_current_span("reconcile_attachments") as span:
            span.set_attribute("documents.total", len(documents))
            span.set_attribute("documents.pending", len(pending))
            if not pending:
                logger.debug("No pending attachments; reconciliation is a no-op.")
                return list(documents)

            timestamp_ms = self.clock_ms()
            applicant_name = form_data.personal.full_name
            # Each pending upload gets its own millisecond so equal names never share a path.
            uploads = []
            pending_index = 0
            for doc in documents:
                uploads.append(self._reconcile_one(doc, applicant_name, timestamp_ms + pending_index))
                if doc.is_pending_upload:
                    pending_index += 1
            results = await asyncio.gather(*uploads, return_exceptions=True)

            for doc, result in zip(documents, results):
                if isinstance(result, BaseException):
                    # Blobs already uploaded in this batch stay where they are.
                    logger.error(f"Reconciliation aborted: upload failed for '{doc.name}': {result}")
                    span.record_exception(result)
                    span.set_status(trace.Status(trace.StatusCode.ERROR, description=f"Upload failed: {doc.name}"))
                    if isinstance(result, ReconciliationFailure):
                        raise result
                    raise ReconciliationFailure(doc.name, result) from result

            logger.info(f"Reconciled {len(pending)} attachment(s) for applicant '{applicant_name or settings.UNNAMED_APPLICANT_FOLDER}'.")
            return list(results)

    async def _reconcile_one(self, doc: Document, applicant_name: str, timestamp_ms: int) -> Document:
        if not doc.is_pending_upload:
            return doc

        payload = doc.local_payload
        mime_type = doc.mime_type
        if isinstance(payload, CapturedImagePayload):
            try:
                payload, captured_mime_type = payload.to_file_payload()
            except ValueError as e:
                raise ReconciliationFailure(doc.name, e) from e
            mime_type = mime_type or captured_mime_type

        path = build_storage_path(applicant_name, doc.name, timestamp_ms)
        with tracer.start_as_current_span("upload_attachment") as span:
            span.set_attribute("attachment.name", doc.name)
            span.set_attribute("attachment.path", path)
            remote_ref = await self.blob_storage.upload(path, payload.raw_bytes(), mime_type)

        attachments_uploaded_counter.add(1)
        return doc.model_copy(update={"local_payload": None, "remote_ref": remote_ref, "mime_type": mime_type})
