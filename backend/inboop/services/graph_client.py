"""
Graph API client for Facebook Page / Instagram Business Account discovery.

Three read-only calls are used:
    GET /me/accounts?fields=id,name,access_token
    GET /{page_id}?fields=instagram_business_account,connected_instagram_account
    GET /{ig_account_id}?fields=id,username,name,profile_picture_url

The client never retries. Provider errors raise GraphAPIError, network problems and
timeouts raise GraphTransportError. Access tokens are sent as the ``access_token``
query parameter and are never logged or put into exception messages.
"""
import logging
from typing import Any, Dict, List, Optional, Type, TypeVar, Union

import httpx
from pydantic import BaseModel, ValidationError

from inboop.config import get_settings
from inboop.exceptions import GraphAPIError, GraphTransportError
from inboop.schemas.graph import (
    DiscoveredInstagramAccount,
    FacebookPage,
    GraphError,
    GraphErrorEnvelope,
    InstagramProfile,
    PageInstagramLinkage,
    PageListResponse,
)
from inboop.schemas.integration import BlockedReason

logger = logging.getLogger(__name__)

GRAPH_API_HOST = "https://graph.facebook.com"

PAGE_FIELDS = "id,name,access_token"
LINKAGE_FIELDS = "instagram_business_account,connected_instagram_account"
PROFILE_FIELDS = "id,username,name,profile_picture_url"

# Graph API error codes
TOKEN_INVALID_CODE = 190
PERMISSION_CODES = {10, 200}
# Subcode Meta sends while a new Page admin is inside the 7-day waiting period
ADMIN_COOLDOWN_SUBCODE = 33

ModelT = TypeVar("ModelT", bound=BaseModel)


def classify_graph_error(exc: Union[GraphAPIError, GraphTransportError]) -> BlockedReason:
    """Map a Graph failure onto the BLOCKED reason shown to the user."""
    if isinstance(exc, GraphTransportError):
        return BlockedReason.API_ERROR
    if exc.status_code == 401 or exc.error.code == TOKEN_INVALID_CODE:
        return BlockedReason.TOKEN_EXPIRED
    if exc.error.code in PERMISSION_CODES:
        return BlockedReason.MISSING_PERMISSIONS
    return BlockedReason.API_ERROR


def is_admin_cooldown_error(error: GraphError) -> bool:
    """True when the error is Meta's new-admin waiting period."""
    if error.error_subcode == ADMIN_COOLDOWN_SUBCODE:
        return True
    # Fallback for responses that only describe the wait in prose
    message = (error.message or "").lower()
    return "7 day" in message or "cooldown" in message


class GraphClient:
    """Async client for the Graph API endpoints used during discovery."""

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or f"{GRAPH_API_HOST}/{settings.meta_graph_api_version}").rstrip("/")
        self.timeout = timeout if timeout is not None else settings.graph_api_timeout_seconds
        self._http_client = http_client

    async def list_pages(self, user_token: str) -> List[FacebookPage]:
        """Pages the user manages, in provider order, with page-scoped tokens."""
        body = await self._get("/me/accounts", user_token, fields=PAGE_FIELDS)
        pages = self._decode(PageListResponse, body, "/me/accounts").data
        logger.info(f"[OAuth] Graph returned {len(pages)} page(s)")
        return pages

    async def get_instagram_linkage(self, page_id: str, token: str) -> PageInstagramLinkage:
        body = await self._get(f"/{page_id}", token, fields=LINKAGE_FIELDS)
        return self._decode(PageInstagramLinkage, body, "/{page_id}")

    async def get_instagram_profile(self, instagram_account_id: str, token: str) -> InstagramProfile:
        body = await self._get(f"/{instagram_account_id}", token, fields=PROFILE_FIELDS)
        return self._decode(InstagramProfile, body, "/{ig_account_id}")

    async def find_instagram_account(
        self,
        page: FacebookPage,
        user_token: str,
        with_profile: bool = True,
    ) -> Optional[DiscoveredInstagramAccount]:
        """
        Look up the Instagram account linked to a Page.

        Uses the page-scoped token when the Page has one, otherwise the user token.
        instagram_business_account is preferred over connected_instagram_account.
        Errors from the linkage call propagate; a failed profile lookup does not
        hide the account, which is then returned with its id only.
        """
        token = page.access_token if page.has_page_token() else user_token
        linkage = await self.get_instagram_linkage(page.id, token)
        linked = linkage.linked_account()
        if linked is None:
            logger.info(f"[OAuth] No Instagram account linked to page_id={page.id}")
            return None

        instagram_account_id, source_field = linked
        account = DiscoveredInstagramAccount(
            id=instagram_account_id,
            page_id=page.id,
            page_name=page.name,
            source_field=source_field,
        )
        logger.info(
            f"[OAuth] Found Instagram account ig_id={instagram_account_id} "
            f"on page_id={page.id} via {source_field}"
        )
        if not with_profile:
            return account

        try:
            profile = await self.get_instagram_profile(instagram_account_id, token)
        except (GraphAPIError, GraphTransportError) as e:
            logger.warning(f"[OAuth] Profile lookup failed for ig_id={instagram_account_id}: {e}")
            return account

        account.username = profile.username
        account.name = profile.name
        account.profile_picture_url = profile.profile_picture_url
        return account

    # ==================== Transport ====================

    async def _get(self, path: str, token: str, **params: str) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        query = {**params, "access_token": token}
        try:
            if self._http_client is not None:
                response = await self._http_client.get(url, params=query, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(url, params=query)
        except httpx.TimeoutException as e:
            raise GraphTransportError(f"Graph API request timed out ({type(e).__name__})") from e
        except httpx.RequestError as e:
            # str(e) can echo the request URL, which carries the token
            raise GraphTransportError(f"Graph API request failed ({type(e).__name__})") from e

        return self._parse(response)

    @staticmethod
    def _parse(response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            body = None

        # A top-level error object wins over everything else in the body
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            envelope = GraphErrorEnvelope.model_validate(body)
            logger.warning(
                f"[OAuth] Graph API error status={response.status_code} code={envelope.error.code} "
                f"subcode={envelope.error.error_subcode} type={envelope.error.type} "
                f"fbtrace_id={envelope.error.fbtrace_id}"
            )
            raise GraphAPIError(envelope.error, status_code=response.status_code)

        if response.status_code >= 400:
            raise GraphAPIError(
                GraphError(message=f"HTTP {response.status_code}"),
                status_code=response.status_code,
            )

        if not isinstance(body, dict):
            raise GraphTransportError(f"Graph API returned a non-JSON body (status={response.status_code})")
        return body

    @staticmethod
    def _decode(model: Type[ModelT], body: Dict[str, Any], endpoint: str) -> ModelT:
        try:
            return model.model_validate(body)
        except ValidationError as e:
            raise GraphTransportError(f"Unexpected Graph API payload from {endpoint}") from e
