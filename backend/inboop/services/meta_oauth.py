"""
Meta (Facebook Login for Business) OAuth client.
Builds the authorization dialog URL and exchanges the callback code for a long-lived
user access token.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx

from inboop.config import Settings, get_settings
from inboop.exceptions import MetaOAuthError

logger = logging.getLogger(__name__)

FACEBOOK_DIALOG_HOST = "https://www.facebook.com"
GRAPH_API_HOST = "https://graph.facebook.com"


@dataclass
class MetaAuthorization:
    """Result of a completed code exchange."""
    access_token: str = field(repr=False)
    expires_at: Optional[datetime]
    facebook_user_id: Optional[str]
    facebook_user_name: Optional[str] = None


class MetaOAuthClient:
    """Client for Meta's OAuth dialog and token endpoint."""

    def __init__(self, settings: Optional[Settings] = None, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings or get_settings()
        self._http_client = http_client
        version = self.settings.meta_graph_api_version
        self.oauth_dialog_url = f"{FACEBOOK_DIALOG_HOST}/{version}/dialog/oauth"
        self.graph_api_base = f"{GRAPH_API_HOST}/{version}"

    def get_oauth_url(self, redirect_uri: str, state: str) -> str:
        """
        Generate the Facebook OAuth authorization URL.

        Args:
            redirect_uri: URL Facebook redirects to after consent
            state: Opaque value echoed back on the callback

        Returns:
            OAuth authorization URL
        """
        params = {
            "client_id": self.settings.meta_app_id,
            "redirect_uri": redirect_uri,
            "state": state,
            "scope": self.settings.meta_oauth_scopes,
            "response_type": "code",
        }
        # Facebook Login for Business configuration
        if self.settings.meta_config_id:
            params["config_id"] = self.settings.meta_config_id

        return f"{self.oauth_dialog_url}?{urlencode(params)}"

    async def exchange_code_for_token(self, code: str, redirect_uri: str) -> Dict[str, Any]:
        """
        Exchange OAuth authorization code for a short-lived access token.

        Returns:
            Dict with access_token, token_type, expires_in
        """
        return await self._token_request(
            {
                "client_id": self.settings.meta_app_id,
                "client_secret": self.settings.meta_app_secret,
                "redirect_uri": redirect_uri,
                "code": code,
            },
            step="code exchange",
        )

    async def exchange_for_long_lived_token(self, short_lived_token: str) -> Dict[str, Any]:
        """
        Exchange short-lived token for long-lived token (60 days).

        Returns:
            Dict with access_token, token_type, expires_in
        """
        return await self._token_request(
            {
                "grant_type": "fb_exchange_token",
                "client_id": self.settings.meta_app_id,
                "client_secret": self.settings.meta_app_secret,
                "fb_exchange_token": short_lived_token,
            },
            step="long-lived exchange",
        )

    async def get_meta_user_info(self, access_token: str) -> Dict[str, Any]:
        """
        Get Meta user info from access token.

        Returns:
            Dict with id, name
        """
        return await self._request(
            f"{self.graph_api_base}/me",
            {"access_token": access_token, "fields": "id,name"},
            step="user info",
        )

    async def authorize(self, code: str, redirect_uri: str) -> MetaAuthorization:
        """Run the full code → long-lived token → user info exchange."""
        token_response = await self.exchange_code_for_token(code, redirect_uri)
        short_lived_token = token_response.get("access_token")
        if not short_lived_token:
            raise MetaOAuthError("No access token in code exchange response")

        long_lived_response = await self.exchange_for_long_lived_token(short_lived_token)
        access_token = long_lived_response.get("access_token")
        if not access_token:
            raise MetaOAuthError("No access token in long-lived exchange response")

        expires_at = None
        expires_in = long_lived_response.get("expires_in")
        if expires_in:
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))

        user_info = await self.get_meta_user_info(access_token)
        logger.info(f"[OAuth] Token exchange completed for facebook_user_id={user_info.get('id')}")
        return MetaAuthorization(
            access_token=access_token,
            expires_at=expires_at,
            facebook_user_id=user_info.get("id"),
            facebook_user_name=user_info.get("name"),
        )

    async def _token_request(self, params: Dict[str, Any], step: str) -> Dict[str, Any]:
        return await self._request(f"{self.graph_api_base}/oauth/access_token", params, step)

    async def _request(self, url: str, params: Dict[str, Any], step: str) -> Dict[str, Any]:
        try:
            if self._http_client is not None:
                response = await self._http_client.get(url, params=params)
            else:
                async with httpx.AsyncClient(timeout=self.settings.graph_api_timeout_seconds) as client:
                    response = await client.get(url, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"[OAuth] Meta {step} failed with status={e.response.status_code}")
            raise MetaOAuthError(f"Meta {step} failed (status={e.response.status_code})") from e
        except (httpx.RequestError, ValueError) as e:
            logger.error(f"[OAuth] Meta {step} failed: {type(e).__name__}")
            raise MetaOAuthError(f"Meta {step} failed ({type(e).__name__})") from e
