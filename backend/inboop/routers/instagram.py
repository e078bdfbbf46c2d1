"""
Instagram connection routes.

The browser cannot send the bearer token on a top-level navigation to Facebook, so the
authenticated user first asks for a one-time connection token, then opens
/oauth/start with it. The start step trades the token for a signed, HttpOnly handoff
cookie that comes back on the OAuth callback.
"""
import logging
import secrets
from datetime import timedelta
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from inboop.auth import get_current_user
from inboop.config import Settings, get_settings
from inboop.database import get_db
from inboop.exceptions import (
    ConnectionDiscoveryError,
    ConnectionHandoffError,
    ConnectionLinkError,
    MetaOAuthError,
)
from inboop.models import User
from inboop.schemas import (
    ConnectionInitResponse,
    IntegrationStatusResponse,
    OAuthConfigStatusResponse,
)
from inboop.services.connection_tokens import ConnectionTokenStore, get_connection_token_store
from inboop.services.graph_client import GraphClient
from inboop.services.instagram_connection import (
    ConnectionProgress,
    InstagramConnectionService,
    get_connection_progress,
)
from inboop.services.integration_status import IntegrationStatusService
from inboop.services.meta_oauth import MetaOAuthClient
from inboop.services.signing import HandoffSigner

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/instagram", tags=["instagram"])

HANDOFF_COOKIE_NAME = "inboop_ig_handoff"
STATE_COOKIE_NAME = "inboop_ig_oauth_state"
COOKIE_PATH = "/api/v1/instagram"
CALLBACK_PATH = "/api/v1/instagram/oauth/callback"


# ==================== Dependencies ====================

def get_graph_client() -> GraphClient:
    return GraphClient()


def get_meta_oauth_client() -> MetaOAuthClient:
    return MetaOAuthClient()


def get_handoff_signer(settings: Settings = Depends(get_settings)) -> HandoffSigner:
    return HandoffSigner(
        settings.get_handoff_secret(),
        max_age=timedelta(seconds=settings.handoff_cookie_max_age_seconds),
    )


def get_connection_service(
    db: Session = Depends(get_db),
    graph_client: GraphClient = Depends(get_graph_client),
    signer: HandoffSigner = Depends(get_handoff_signer),
    token_store: ConnectionTokenStore = Depends(get_connection_token_store),
    progress: ConnectionProgress = Depends(get_connection_progress),
    oauth_client: MetaOAuthClient = Depends(get_meta_oauth_client),
) -> InstagramConnectionService:
    return InstagramConnectionService(
        db=db,
        graph_client=graph_client,
        signer=signer,
        token_store=token_store,
        progress=progress,
        oauth_client=oauth_client,
    )


def get_integration_status_service(
    db: Session = Depends(get_db),
    graph_client: GraphClient = Depends(get_graph_client),
    progress: ConnectionProgress = Depends(get_connection_progress),
    settings: Settings = Depends(get_settings),
) -> IntegrationStatusService:
    return IntegrationStatusService(db=db, graph_client=graph_client, settings=settings, progress=progress)


# ==================== Helpers ====================

def _resolve_redirect_uri(request: Request, settings: Settings) -> str:
    # Explicit setting, else derive from the incoming request so the callback hits this backend
    if settings.meta_redirect_uri:
        return settings.meta_redirect_uri
    scheme = request.headers.get("x-forwarded-proto", request.url.scheme)
    host = request.headers.get("host", "localhost:8000")
    return f"{scheme}://{host}{CALLBACK_PATH}"


def _frontend_redirect(settings: Settings, **params: str) -> RedirectResponse:
    base = settings.frontend_base_url.rstrip("/")
    path = settings.instagram_connected_redirect_path or "/"
    if not path.startswith("/"):
        path = f"/{path}"
    response = RedirectResponse(url=f"{base}{path}?{urlencode(params)}", status_code=status.HTTP_302_FOUND)
    response.delete_cookie(HANDOFF_COOKIE_NAME, path=COOKIE_PATH)
    response.delete_cookie(STATE_COOKIE_NAME, path=COOKIE_PATH)
    return response


def _error_redirect(settings: Settings, code: str) -> RedirectResponse:
    return _frontend_redirect(settings, instagram_error=code)


# ==================== Connection Endpoints ====================

@router.post("/connect", response_model=ConnectionInitResponse)
def create_connection_token(
    current_user: User = Depends(get_current_user),
    token_store: ConnectionTokenStore = Depends(get_connection_token_store),
    settings: Settings = Depends(get_settings),
) -> ConnectionInitResponse:
    """
    Issue a one-time token for starting the Facebook OAuth flow.
    The frontend navigates to `redirectPath` within `expiresInSeconds`.
    """
    if not settings.is_meta_configured():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Facebook OAuth not configured. Set META_APP_ID and META_APP_SECRET.",
        )

    token = token_store.issue(str(current_user.id))
    return ConnectionInitResponse(
        token=token,
        redirect_path=f"{COOKIE_PATH}/oauth/start?{urlencode({'token': token})}",
        expires_in_seconds=settings.connect_token_ttl_seconds,
    )


@router.get("/oauth/start")
def start_oauth(
    request: Request,
    token: Optional[str] = Query(None),
    service: InstagramConnectionService = Depends(get_connection_service),
    settings: Settings = Depends(get_settings),
):
    """Redeem the connection token, set the handoff cookie and redirect to Facebook."""
    try:
        handoff = service.begin_connection(token)
    except ConnectionLinkError as e:
        logger.info(f"[OAuth] Rejected connection link: {e.code}")
        return _error_redirect(settings, e.code)

    state = secrets.token_urlsafe(16)
    redirect_uri = _resolve_redirect_uri(request, settings)
    oauth_url = service.build_authorization_url(redirect_uri=redirect_uri, state=state)

    response = RedirectResponse(url=oauth_url, status_code=status.HTTP_302_FOUND)
    cookie_options = dict(
        max_age=settings.handoff_cookie_max_age_seconds,
        path=COOKIE_PATH,
        httponly=True,
        secure=settings.is_production(),
        samesite="lax",
    )
    response.set_cookie(HANDOFF_COOKIE_NAME, handoff, **cookie_options)
    response.set_cookie(STATE_COOKIE_NAME, state, **cookie_options)
    return response


@router.get("/oauth/callback")
async def oauth_callback(
    request: Request,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    error_description: Optional[str] = Query(None),
    service: InstagramConnectionService = Depends(get_connection_service),
    oauth_client: MetaOAuthClient = Depends(get_meta_oauth_client),
    settings: Settings = Depends(get_settings),
):
    """
    Handle the Facebook OAuth callback.
    Exchanges the code, runs discovery for the user in the handoff cookie and
    redirects to the frontend with `instagram=connected` or `instagram_error=<code>`.
    """
    if error:
        logger.info(f"[OAuth] Provider returned error={error} description={error_description}")
        return _error_redirect(settings, "oauth_denied")
    if not code:
        return _error_redirect(settings, "missing_code")

    expected_state = request.cookies.get(STATE_COOKIE_NAME)
    if not expected_state or not state or not secrets.compare_digest(expected_state, state):
        logger.warning("[OAuth] OAuth state missing or mismatched")
        return _error_redirect(settings, "session_expired")

    handoff = request.cookies.get(HANDOFF_COOKIE_NAME)
    redirect_uri = _resolve_redirect_uri(request, settings)

    try:
        authorization = await oauth_client.authorize(code, redirect_uri)
    except MetaOAuthError as e:
        return _error_redirect(settings, e.code)

    try:
        result = await service.complete_connection(
            handoff_cookie=handoff,
            access_token=authorization.access_token,
            token_expires_at=authorization.expires_at,
            facebook_user_id=authorization.facebook_user_id,
        )
    except (ConnectionHandoffError, ConnectionDiscoveryError) as e:
        return _error_redirect(settings, e.code)

    logger.info(
        f"[OAuth] Callback completed for user_id={result.user_id} "
        f"connected={result.connected} reason={result.reason.value if result.reason else None}"
    )
    return _frontend_redirect(settings, instagram="connected")


@router.get("/oauth/status", response_model=OAuthConfigStatusResponse)
def oauth_config_status(settings: Settings = Depends(get_settings)) -> OAuthConfigStatusResponse:
    """Whether Facebook OAuth is configured on this backend."""
    return OAuthConfigStatusResponse(
        configured=settings.is_meta_configured(),
        redirect_uri=settings.meta_redirect_uri or "",
    )


# ==================== Integration Status ====================

@router.get(
    "/integration/status",
    response_model=IntegrationStatusResponse,
    response_model_exclude_none=True,
)
async def integration_status(
    current_user: User = Depends(get_current_user),
    service: IntegrationStatusService = Depends(get_integration_status_service),
) -> IntegrationStatusResponse:
    """Current Instagram integration status for the logged-in user."""
    return await service.check_status(current_user)
