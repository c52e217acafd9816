# API Router for wizard sessions (open, edit, save draft, submit)
import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Response
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel

from policy_application_service.app.api.v1.errors import to_http_exception
from policy_application_service.app.dependencies.identity import get_current_identity
from policy_application_service.app.dependencies.services import get_optional_change_publisher, get_reconciler
from policy_application_service.app.models import Identity, PolicyRecord, WizardStep
from policy_application_service.app.service.exceptions import BasePolicyApplicationError
from policy_application_service.app.service.reconciler import AttachmentReconciler
from policy_application_service.app.service.wizard.controller import WizardSnapshot, WizardStateController
from policy_application_service.app.service.wizard.sessions import (
    WizardSessionRegistry,
    get_wizard_registry,
    open_application,
)
from policy_application_service.infrastructure.database.connection import get_db
from policy_application_service.infrastructure.kafka.producer import ChangeFeedPublisher

logger = logging.getLogger(__name__)
router = APIRouter()

# --- Request/response models ---

class OpenWizardRequest(BaseModel):
    policy_id: Optional[str] = None # Omitted or a client placeholder for a new application
    start_at_summary: bool = False
    read_only: bool = False

class JumpRequest(BaseModel):
    step: WizardStep

class UpdateFieldRequest(BaseModel):
    path: str
    value: Any = None

class AddDocumentRequest(BaseModel):
    name: str
    base64_data: str
    declared_size: Optional[int] = None
    mime_type: Optional[str] = None

class AddCaptureRequest(BaseModel):
    data_url: str

class WizardSessionResponse(BaseModel):
    session_id: str
    wizard: WizardSnapshot
    record: Optional[PolicyRecord] = None # Set after save draft / submit


def _response(session_id: str, controller: WizardStateController, record: Optional[PolicyRecord] = None) -> WizardSessionResponse:
    return WizardSessionResponse(session_id=session_id, wizard=controller.snapshot(), record=record)

def _lookup(registry: WizardSessionRegistry, session_id: str, identity: Identity) -> WizardStateController:
    try:
        return registry.get(session_id, identity)
    except BasePolicyApplicationError as e:
        raise to_http_exception(e)

# --- API Endpoints ---

@router.post("", status_code=201, response_model=WizardSessionResponse, summary="Open a wizard for a new or existing application.")
async def open_wizard_api(
    request_data: Optional[OpenWizardRequest] = Body(None),
    db: AsyncIOMotorDatabase = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    reconciler: AttachmentReconciler = Depends(get_reconciler),
    change_publisher: Optional[ChangeFeedPublisher] = Depends(get_optional_change_publisher),
    registry: WizardSessionRegistry = Depends(get_wizard_registry),
):
    request_data = request_data or OpenWizardRequest()
    try:
        controller = await open_application(
            db, identity, reconciler, change_publisher,
            client_identifier=request_data.policy_id,
            start_at_summary=request_data.start_at_summary,
            read_only=request_data.read_only,
        )
        return _response(registry.register(controller), controller)
    except BasePolicyApplicationError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Unexpected error opening wizard: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to open the application.")

@router.get("/{session_id}", response_model=WizardSessionResponse)
async def get_wizard_api(
    session_id: str,
    identity: Identity = Depends(get_current_identity),
    registry: WizardSessionRegistry = Depends(get_wizard_registry),
):
    return _response(session_id, _lookup(registry, session_id, identity))

@router.post("/{session_id}/advance", response_model=WizardSessionResponse)
async def advance_api(
    session_id: str,
    identity: Identity = Depends(get_current_identity),
    registry: WizardSessionRegistry = Depends(get_wizard_registry),
):
    controller = _lookup(registry, session_id, identity)
    try:
        controller.advance()
    except BasePolicyApplicationError as e:
        raise to_http_exception(e)
    return _response(session_id, controller)

@router.post("/{session_id}/retreat", response_model=WizardSessionResponse)
async def retreat_api(
    session_id: str,
    identity: Identity = Depends(get_current_identity),
    registry: WizardSessionRegistry = Depends(get_wizard_registry),
):
    controller = _lookup(registry, session_id, identity)
    try:
        controller.retreat()
    except BasePolicyApplicationError as e:
        raise to_http_exception(e)
    return _response(session_id, controller)

@router.post("/{session_id}/jump", response_model=WizardSessionResponse, summary="Go to a step, e.g. from an 'edit section' link on Summary.")
async def jump_api(
    session_id: str,
    request_data: JumpRequest,
    identity: Identity = Depends(get_current_identity),
    registry: WizardSessionRegistry = Depends(get_wizard_registry),
):
    controller = _lookup(registry, session_id, identity)
    try:
        controller.jump_to(request_data.step)
    except BasePolicyApplicationError as e:
        raise to_http_exception(e)
    return _response(session_id, controller)

@router.patch("/{session_id}/fields", response_model=WizardSessionResponse)
async def update_field_api(
    session_id: str,
    request_data: UpdateFieldRequest,
    identity: Identity = Depends(get_current_identity),
    registry: WizardSessionRegistry = Depends(get_wizard_registry),
):
    controller = _lookup(registry, session_id, identity)
    try:
        controller.update_field(request_data.path, request_data.value)
    except BasePolicyApplicationError as e:
        raise to_http_exception(e)
    except ValueError as ve:
        logger.warning(f"Rejected field update '{request_data.path}' in session {session_id}: {ve}")
        raise HTTPException(status_code=400, detail=str(ve))
    return _response(session_id, controller)

@router.post("/{session_id}/documents", response_model=WizardSessionResponse, summary="Stage an uploaded file.")
async def add_document_api(
    session_id: str,
    request_data: AddDocumentRequest,
    identity: Identity = Depends(get_current_identity),
    registry: WizardSessionRegistry = Depends(get_wizard_registry),
):
    controller = _lookup(registry, session_id, identity)
    try:
        controller.add_document(request_data.name, request_data.base64_data, request_data.declared_size, request_data.mime_type)
    except BasePolicyApplicationError as e:
        raise to_http_exception(e)
    except ValueError as ve:
        raise HTTPException(status_code=400, detail=str(ve))
    return _response(session_id, controller)

@router.post("/{session_id}/captures", response_model=WizardSessionResponse, summary="Stage a camera capture.")
async def add_capture_api(
    session_id: str,
    request_data: AddCaptureRequest,
    identity: Identity = Depends(get_current_identity),
    registry: WizardSessionRegistry = Depends(get_wizard_registry),
):
    controller = _lookup(registry, session_id, identity)
    try:
        controller.add_capture(request_data.data_url)
    except BasePolicyApplicationError as e:
        raise to_http_exception(e)
    except ValueError as ve:
        raise HTTPException(status_code=400, detail=str(ve))
    return _response(session_id, controller)

@router.delete("/{session_id}/documents/{index}", response_model=WizardSessionResponse)
async def remove_document_api(
    session_id: str,
    index: int,
    identity: Identity = Depends(get_current_identity),
    registry: WizardSessionRegistry = Depends(get_wizard_registry),
):
    controller = _lookup(registry, session_id, identity)
    try:
        controller.remove_document(index)
    except BasePolicyApplicationError as e:
        raise to_http_exception(e)
    except ValueError as ve:
        raise HTTPException(status_code=404, detail=str(ve))
    return _response(session_id, controller)

@router.post("/{session_id}/enable-editing", response_model=WizardSessionResponse)
async def enable_editing_api(
    session_id: str,
    identity: Identity = Depends(get_current_identity),
    registry: WizardSessionRegistry = Depends(get_wizard_registry),
):
    controller = _lookup(registry, session_id, identity)
    try:
        controller.enable_editing()
    except BasePolicyApplicationError as e:
        raise to_http_exception(e)
    return _response(session_id, controller)

@router.post("/{session_id}/draft", response_model=WizardSessionResponse)
async def save_draft_api(
    session_id: str,
    identity: Identity = Depends(get_current_identity),
    registry: WizardSessionRegistry = Depends(get_wizard_registry),
):
    controller = _lookup(registry, session_id, identity)
    try:
        record = await controller.save_draft()
    except BasePolicyApplicationError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Unexpected error saving draft in session {session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to save draft.")
    return _response(session_id, controller, record)

@router.post("/{session_id}/submit", response_model=WizardSessionResponse)
async def submit_api(
    session_id: str,
    identity: Identity = Depends(get_current_identity),
    registry: WizardSessionRegistry = Depends(get_wizard_registry),
):
    controller = _lookup(registry, session_id, identity)
    try:
        record = await controller.submit()
    except BasePolicyApplicationError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Unexpected error submitting application in session {session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to submit application.")
    # A submitted wizard is terminal; the session is not reachable afterwards.
    registry.discard(session_id)
    return _response(session_id, controller, record)

@router.delete("/{session_id}", status_code=204)
async def close_wizard_api(
    session_id: str,
    identity: Identity = Depends(get_current_identity),
    registry: WizardSessionRegistry = Depends(get_wizard_registry),
):
    try:
        registry.close(session_id, identity)
    except BasePolicyApplicationError as e:
        raise to_http_exception(e)
    return Response(status_code=204)
