import json
import os
from functools import lru_cache
from pathlib import Path
from typing import List
from urllib.parse import urlparse

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings


PROJECT_ROOT = Path(__file__).resolve().parent.parent
LOCAL_ENV_FILE = PROJECT_ROOT / ".env.local"

if LOCAL_ENV_FILE.exists():
    load_dotenv(LOCAL_ENV_FILE, override=True)


class Settings(BaseSettings):
    class Config:
        env_file = ".env"
        extra = "ignore"
    database_url: str = "sqlite:///./inboop.db"
    database_public_url: str = ""
    environment: str = "development"
    jwt_secret_key: str = Field(default="change-me")
    jwt_algorithm: str = Field(default="HS256")
    access_token_expire_minutes: int = Field(default=60 * 24)  # 1 day
    frontend_base_url: str = Field(default="http://localhost:3000")
    backend_base_url: str = Field(default="http://localhost:8000")
    additional_cors_origins: str | None = Field(default=None)

    # Meta (Facebook Login for Business)
    meta_app_id: str | None = Field(default=None)
    meta_app_secret: str | None = Field(default=None)
    meta_redirect_uri: str | None = Field(default=None)
    meta_config_id: str | None = Field(default=None)
    meta_graph_api_version: str = Field(default="v21.0")
    meta_oauth_scopes: str = Field(
        default=(
            "pages_show_list,pages_read_engagement,pages_manage_metadata,"
            "business_management,instagram_basic,instagram_manage_messages"
        )
    )

    # Instagram connection handoff
    handoff_cookie_secret: str | None = Field(default=None)
    connect_token_ttl_seconds: int = Field(default=300)  # 5 minutes
    handoff_cookie_max_age_seconds: int = Field(default=600)  # 10 minutes
    instagram_connected_redirect_path: str = Field(default="/settings")

    # Integration status checks
    status_cache_seconds: int = Field(default=300)  # 5 minutes
    admin_cooldown_days: int = Field(default=7)
    graph_api_timeout_seconds: float = Field(default=10.0)

    def is_production(self) -> bool:
        return (self.environment or "").strip().lower() == "production"

    def get_database_url(self) -> str:
        """Public database URL when one is set (local runs against a hosted DB), else DATABASE_URL."""
        return (
            os.getenv("DATABASE_PUBLIC_URL")
            or self.database_public_url
            or os.getenv("DATABASE_URL")
            or self.database_url
        )

    def get_handoff_secret(self) -> str:
        """Secret used to sign the OAuth handoff cookie (falls back to the JWT secret)."""
        return self.handoff_cookie_secret or self.jwt_secret_key

    def is_meta_configured(self) -> bool:
        return bool(self.meta_app_id and self.meta_app_secret)

    def get_additional_cors_origins(self) -> list[str]:
        """ADDITIONAL_CORS_ORIGINS as a list; accepts a JSON array or a comma separated string."""
        return _split_origins(self.additional_cors_origins)


def _split_origins(value: str | None) -> list[str]:
    raw = (value or "").strip()
    if not raw:
        return []

    decoded = None
    if raw.startswith("[") and raw.endswith("]"):
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError:
            decoded = None
    items = decoded if isinstance(decoded, list) else raw.split(",")

    return [str(item).strip() for item in items if str(item).strip()]


def _is_valid_origin(origin: str) -> bool:
    parsed = urlparse(origin)
    return bool(parsed.scheme in ("http", "https") and parsed.netloc)


def get_cors_origins(settings: Settings) -> List[str]:
    """Frontend origin plus any additional configured origins, validated and de-duplicated."""
    origins: List[str] = []
    for origin in [settings.frontend_base_url, *settings.get_additional_cors_origins()]:
        origin = (origin or "").strip().rstrip("/")
        if origin and _is_valid_origin(origin) and origin not in origins:
            origins.append(origin)
    return origins


@lru_cache()
def get_settings():
    return Settings()
