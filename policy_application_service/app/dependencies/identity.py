# Current-identity resolution for HTTP and WebSocket requests
import logging
from typing import Optional

from fastapi import Depends, HTTPException, Query, Request, WebSocket
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from policy_application_service.app.models import Identity
from policy_application_service.app.service.exceptions import ConfigurationError, IdentityResolutionError
from policy_application_service.infrastructure.identity_client import IdentityServiceClient

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


async def get_identity_client(request: Request) -> IdentityServiceClient:
    # The AsyncClient is created at startup and shared by every request.
    return IdentityServiceClient(request.app.state.http_client)


async def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    identity_client: IdentityServiceClient = Depends(get_identity_client),
) -> Identity:
    if credentials is None:
        raise HTTPException(status_code=401, detail="Missing bearer token.", headers={"WWW-Authenticate": "Bearer"})
    try:
        return await identity_client.get_current_identity(credentials.credentials)
    except IdentityResolutionError as e:
        raise HTTPException(status_code=401, detail=str(e), headers={"WWW-Authenticate": "Bearer"})
    except ConfigurationError as e:
        logger.error(f"Identity resolution unavailable: {e}")
        raise HTTPException(status_code=503, detail="Identity service is not configured.")


async def get_websocket_identity(websocket: WebSocket, token: Optional[str] = Query(None)) -> Optional[Identity]:
    """Browsers cannot set headers on a WebSocket, so the token comes as a query parameter. None means unauthenticated."""
    if not token:
        return None
    try:
        return await IdentityServiceClient(websocket.app.state.http_client).get_current_identity(token)
    except (IdentityResolutionError, ConfigurationError) as e:
        logger.warning(f"WebSocket identity resolution failed: {e}")
        return None
