# onboarding/services/installation/provider_client.py

import logging
from typing import List, Optional, Union
from urllib.parse import urlencode
import httpx

from onboarding.core.config import settings
from onboarding.services.exceptions import ConfigurationError, InternalError

logger = logging.getLogger(__name__)

class ShopifyClient:
    """
    Thin client for the Shopify OAuth endpoints.
    Owns one httpx.AsyncClient for its lifetime; close it at shutdown.
    """
    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None
    ):
        self.client_id = settings.SHOPIFY_CLIENT_ID if client_id is None else client_id
        self.client_secret = settings.SHOPIFY_CLIENT_SECRET if client_secret is None else client_secret
        self.http_client = http_client or httpx.AsyncClient(
            timeout=timeout or settings.PROVIDER_TIMEOUT_SECONDS
        )

    def _require_credentials(self):
        if not self.client_id or not self.client_secret:
            raise ConfigurationError("Shopify client credentials are not configured.")

    def build_authorize_url(self, shop: str, state: str, scope: Optional[Union[str, List[str]]] = None) -> str:
        self._require_credentials()
        if scope is None:
            scope = settings.SHOPIFY_SCOPES
        if isinstance(scope, (list, tuple)):
            scope = ",".join(scope)
        query = urlencode({
            "client_id": self.client_id,
            "scope": scope,
            "redirect_uri": f"{settings.CLIENT_APP_URL.rstrip('/')}/authorize",
            "state": state,
        })
        return f"https://{shop}/admin/oauth/authorize?{query}"

    async def exchange_code(self, shop: str, code: str) -> str:
        """Trades a one-time authorization code for a permanent access token."""
        self._require_credentials()
        url = f"https://{shop}/admin/oauth/access_token"
        try:
            response = await self.http_client.post(url, json={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "code": code,
            })
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            logger.error("Token exchange for '%s' failed with HTTP %s: %s", shop, e.response.status_code, e.response.text)
            raise InternalError("Failed to obtain access token from provider.") from e
        except httpx.RequestError as e:
            logger.error("Token exchange request for '%s' failed: %s", shop, e)
            raise InternalError("Failed to reach provider for token exchange.") from e
        except ValueError as e:
            logger.error("Token exchange for '%s' returned a non-JSON body.", shop)
            raise InternalError("Provider returned an invalid token response.") from e

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not access_token:
            logger.error("Token exchange for '%s' returned no access_token.", shop)
            raise InternalError("Provider returned an invalid token response.")
        return access_token

    async def is_installation_active(self, shop_code: str) -> bool:
        # always re-run the handshake; no Admin API status lookup yet
        return False

    async def close(self):
        await self.http_client.aclose()
