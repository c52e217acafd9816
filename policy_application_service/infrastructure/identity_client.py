# Client for the external auth service (current-identity lookup)
import logging

import httpx

from policy_application_service.app.config import settings
from policy_application_service.app.models import Identity
from policy_application_service.app.service.exceptions import ConfigurationError, IdentityResolutionError

logger = logging.getLogger(__name__)


class IdentityServiceClient:
    def __init__(self, http_client: httpx.AsyncClient):
        self.http_client = http_client

    async def get_current_identity(self, access_token: str) -> Identity:
        """Resolves a bearer token to the agent's id and email."""
        if not settings.AUTH_SERVICE_URL:
            logger.error("AUTH_SERVICE_URL not set. Cannot resolve identities.")
            raise ConfigurationError("AUTH_SERVICE_URL is not configured.")

        headers = {"Authorization": f"Bearer {access_token}"}
        if settings.AUTH_SERVICE_API_KEY:
            headers["apikey"] = settings.AUTH_SERVICE_API_KEY

        request_url = f"{settings.AUTH_SERVICE_URL.rstrip('/')}/user"
        try:
            response = await self.http_client.get(request_url, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning(f"Auth service rejected token: {e.response.status_code}")
            raise IdentityResolutionError(f"Auth service rejected the token ({e.response.status_code}).") from e
        except httpx.RequestError as e:
            logger.error(f"Request error calling auth service: {e}", exc_info=True)
            raise IdentityResolutionError(f"Auth service unreachable: {e}") from e

        user = response.json()
        if not user.get("id") or not user.get("email"):
            raise IdentityResolutionError("Auth service response is missing id or email.")
        return Identity(id=user["id"], email=user["email"])
