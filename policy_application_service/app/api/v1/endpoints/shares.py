# API Router for share grants on an application
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel

from policy_application_service.app.api.v1.errors import to_http_exception
from policy_application_service.app.dependencies.identity import get_current_identity
from policy_application_service.app.dependencies.services import get_sharing_ledger
from policy_application_service.app.models import Identity
from policy_application_service.app.service.exceptions import BasePolicyApplicationError
from policy_application_service.app.service.sharing import SharingLedger

logger = logging.getLogger(__name__)
router = APIRouter()


class ShareRequest(BaseModel):
    email: str

class ShareListResponse(BaseModel):
    policy_id: str
    recipients: List[str]


@router.post("/{policy_id}/shares", status_code=201, response_model=ShareListResponse)
async def grant_share_api(
    policy_id: str,
    request_data: ShareRequest,
    identity: Identity = Depends(get_current_identity),
    ledger: SharingLedger = Depends(get_sharing_ledger),
):
    try:
        recipients = await ledger.grant(identity, policy_id, request_data.email)
    except BasePolicyApplicationError as e:
        raise to_http_exception(e)
    except ValueError as ve:
        raise HTTPException(status_code=400, detail=str(ve))
    return ShareListResponse(policy_id=policy_id, recipients=recipients)

@router.get("/{policy_id}/shares", response_model=ShareListResponse)
async def list_shares_api(
    policy_id: str,
    identity: Identity = Depends(get_current_identity),
    ledger: SharingLedger = Depends(get_sharing_ledger),
):
    try:
        recipients = await ledger.list_grants(identity, policy_id)
    except BasePolicyApplicationError as e:
        raise to_http_exception(e)
    return ShareListResponse(policy_id=policy_id, recipients=recipients)

@router.delete("/{policy_id}/shares/{email}", status_code=204)
async def revoke_share_api(
    policy_id: str,
    email: str,
    identity: Identity = Depends(get_current_identity),
    ledger: SharingLedger = Depends(get_sharing_ledger),
):
    try:
        await ledger.revoke(identity, policy_id, email)
    except BasePolicyApplicationError as e:
        raise to_http_exception(e)
    return Response(status_code=204)
