"""
Route tests for the Instagram connection API and Meta callbacks.
Graph API and token exchange calls are served by a MockTransport.
"""
import base64
import hashlib
import hmac
import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from fastapi.testclient import TestClient

from inboop.auth import create_access_token
from inboop.config import Settings, get_settings
from inboop.database import get_db
from inboop.main import app
from inboop.models import Business
from inboop.routers import instagram
from inboop.services.connection_tokens import ConnectionTokenStore, get_connection_token_store
from inboop.services.instagram_connection import ConnectionProgress, get_connection_progress
from inboop.services.meta_oauth import MetaOAuthClient


FRONTEND = "http://frontend.test"
REDIRECT_URI = "http://testserver/api/v1/instagram/oauth/callback"
LONG_LIVED_TOKEN = "EAAG-long-lived-token"


@pytest.fixture
def settings():
    return Settings(
        meta_app_id="app-123",
        meta_app_secret="app-secret",
        meta_redirect_uri=REDIRECT_URI,
        meta_config_id="config-9",
        frontend_base_url=FRONTEND,
        handoff_cookie_secret="handoff-secret",
    )


@pytest.fixture
def oauth_exchange(two_pages_second_linked):
    """Token endpoint and /me served from the same fake Graph API."""
    def token_endpoint(request):
        if request.url.params.get("grant_type") == "fb_exchange_token":
            return httpx.Response(200, json={"access_token": LONG_LIVED_TOKEN, "expires_in": 5184000})
        if request.url.params.get("code") == "bad-code":
            return httpx.Response(400, json={"error": {"code": 100, "message": "Invalid verification code"}})
        return httpx.Response(200, json={"access_token": "short-lived", "expires_in": 3600})

    two_pages_second_linked.handle("/oauth/access_token", token_endpoint)
    two_pages_second_linked.add("/me", {"id": "fb_1", "name": "Shop Owner"})
    return two_pages_second_linked


@pytest.fixture
def client(session_factory, settings, oauth_exchange):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    token_store = ConnectionTokenStore()
    progress = ConnectionProgress()
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_connection_token_store] = lambda: token_store
    app.dependency_overrides[get_connection_progress] = lambda: progress
    app.dependency_overrides[instagram.get_graph_client] = oauth_exchange.client
    app.dependency_overrides[instagram.get_meta_oauth_client] = lambda: MetaOAuthClient(
        settings=settings, http_client=oauth_exchange.http_client()
    )
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user.id)})}"}


def start_connection(client, auth_headers):
    init = client.post("/api/v1/instagram/connect", headers=auth_headers)
    assert init.status_code == 200
    start = client.get(init.json()["redirectPath"], follow_redirects=False)
    assert start.status_code == 302
    state = parse_qs(urlparse(start.headers["location"]).query)["state"][0]
    return start, state


def redirect_params(response):
    location = urlparse(response.headers["location"])
    return f"{location.scheme}://{location.netloc}{location.path}", parse_qs(location.query)


class TestCoreRoutes:
    """Liveness routes."""

    def test_api_info(self, client):
        response = client.get("/api")

        assert response.status_code == 200
        assert response.json() == {"message": "Inboop API", "version": "0.1.0"}

    def test_health_check(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["database"] == "connected"


class TestConnectFlow:
    """POST /connect -> GET /oauth/start -> GET /oauth/callback."""

    def test_connect_returns_one_time_token(self, client, auth_headers):
        response = client.post("/api/v1/instagram/connect", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["expiresInSeconds"] == 300
        assert data["redirectPath"] == f"/api/v1/instagram/oauth/start?token={data['token']}"

    def test_connect_requires_auth(self, client):
        assert client.post("/api/v1/instagram/connect").status_code in (401, 403)

    def test_connect_when_meta_not_configured(self, client, auth_headers, settings):
        settings.meta_app_id = None

        assert client.post("/api/v1/instagram/connect", headers=auth_headers).status_code == 503

    def test_start_sets_cookie_and_redirects_to_facebook(self, client, auth_headers):
        start, state = start_connection(client, auth_headers)

        location = urlparse(start.headers["location"])
        params = parse_qs(location.query)
        assert f"{location.scheme}://{location.netloc}{location.path}" == "https://www.facebook.com/v21.0/dialog/oauth"
        assert params["client_id"] == ["app-123"]
        assert params["redirect_uri"] == [REDIRECT_URI]
        assert params["config_id"] == ["config-9"]
        assert params["response_type"] == ["code"]
        assert state
        set_cookie = ",".join(start.headers.get_list("set-cookie"))
        assert instagram.HANDOFF_COOKIE_NAME in set_cookie
        assert "httponly" in set_cookie.lower()
        assert "samesite=lax" in set_cookie.lower()

    def test_start_with_used_token(self, client, auth_headers):
        init = client.post("/api/v1/instagram/connect", headers=auth_headers).json()
        client.get(init["redirectPath"], follow_redirects=False)

        again = client.get(init["redirectPath"], follow_redirects=False)

        base, params = redirect_params(again)
        assert base == f"{FRONTEND}/settings"
        assert params == {"instagram_error": ["link_invalid"]}

    def test_full_flow_connects_second_page(self, client, auth_headers, session_factory, user):
        _, state = start_connection(client, auth_headers)

        callback = client.get(
            "/api/v1/instagram/oauth/callback",
            params={"code": "auth-code", "state": state},
            follow_redirects=False,
        )

        assert callback.status_code == 302
        base, params = redirect_params(callback)
        assert base == f"{FRONTEND}/settings"
        assert params == {"instagram": ["connected"]}

        db = session_factory()
        try:
            [business] = db.query(Business).filter(Business.owner_id == user.id).all()
            assert business.instagram_business_account_id == "ig_42"
            assert business.access_token == LONG_LIVED_TOKEN
            assert business.facebook_user_id == "fb_1"
            assert business.token_expires_at is not None
        finally:
            db.close()

        status = client.get("/api/v1/instagram/integration/status", headers=auth_headers)
        assert status.status_code == 200
        body = status.json()
        assert body["status"] == "CONNECTED_READY"
        assert body["details"]["instagramUsername"] == "shop_demo"
        assert LONG_LIVED_TOKEN not in status.text

    def test_callback_provider_denied(self, client):
        response = client.get(
            "/api/v1/instagram/oauth/callback",
            params={"error": "access_denied", "error_description": "Permissions error"},
            follow_redirects=False,
        )

        assert redirect_params(response)[1] == {"instagram_error": ["oauth_denied"]}

    def test_callback_missing_code(self, client):
        response = client.get("/api/v1/instagram/oauth/callback", follow_redirects=False)

        assert redirect_params(response)[1] == {"instagram_error": ["missing_code"]}

    def test_callback_without_cookies(self, client):
        response = client.get(
            "/api/v1/instagram/oauth/callback",
            params={"code": "auth-code", "state": "whatever"},
            follow_redirects=False,
        )

        assert redirect_params(response)[1] == {"instagram_error": ["session_expired"]}

    def test_callback_token_exchange_failure(self, client, auth_headers):
        _, state = start_connection(client, auth_headers)

        response = client.get(
            "/api/v1/instagram/oauth/callback",
            params={"code": "bad-code", "state": state},
            follow_redirects=False,
        )

        assert redirect_params(response)[1] == {"instagram_error": ["token_exchange_failed"]}

    def test_callback_discovery_failure(self, client, auth_headers, oauth_exchange):
        oauth_exchange.add_error("/me/accounts", code=2, message="Service temporarily unavailable", status_code=500)
        _, state = start_connection(client, auth_headers)

        response = client.get(
            "/api/v1/instagram/oauth/callback",
            params={"code": "auth-code", "state": state},
            follow_redirects=False,
        )

        assert redirect_params(response)[1] == {"instagram_error": ["discovery_failed"]}


class TestStatusRoutes:
    """Status endpoints."""

    def test_oauth_config_status(self, client):
        response = client.get("/api/v1/instagram/oauth/status")

        assert response.json() == {"configured": True, "redirectUri": REDIRECT_URI}

    def test_integration_status_not_connected(self, client, auth_headers):
        response = client.get("/api/v1/instagram/integration/status", headers=auth_headers)

        body = response.json()
        assert body["status"] == "NOT_CONNECTED"
        assert body["nextActions"][0]["type"] == "CONNECT"
        assert "reason" not in body

    def test_integration_status_requires_auth(self, client):
        assert client.get("/api/v1/instagram/integration/status").status_code in (401, 403)


class TestMetaDeauthorize:
    """POST /meta/deauthorize."""

    @staticmethod
    def _signed_request(payload, secret="app-secret"):
        def b64(raw):
            return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")

        encoded_payload = b64(json.dumps(payload).encode("utf-8"))
        signature = hmac.new(secret.encode("utf-8"), encoded_payload.encode("utf-8"), hashlib.sha256).digest()
        return f"{b64(signature)}.{encoded_payload}"

    def test_deauthorize_strips_credentials(self, client, session_factory, user):
        db = session_factory()
        db.add(Business(owner_id=user.id, name="Demo Shop", facebook_user_id="fb_1", access_token="stored", is_active=True))
        db.commit()
        db.close()

        response = client.post(
            "/meta/deauthorize",
            data={"signed_request": self._signed_request({"algorithm": "HMAC-SHA256", "user_id": "fb_1"})},
        )

        assert response.json() == {"success": True, "deauthorized": 1}
        db = session_factory()
        try:
            business = db.query(Business).filter(Business.owner_id == user.id).one()
            assert business.access_token is None
            assert business.is_active is False
            assert business.last_connection_error == "TOKEN_EXPIRED"
        finally:
            db.close()

    def test_deauthorize_rejects_bad_signature(self, client):
        response = client.post(
            "/meta/deauthorize",
            data={"signed_request": self._signed_request({"algorithm": "HMAC-SHA256", "user_id": "fb_1"}, "wrong")},
        )

        assert response.status_code == 200
        assert response.json()["success"] is False
