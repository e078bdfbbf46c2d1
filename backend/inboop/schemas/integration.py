"""
Instagram connection and integration status schemas.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


class IntegrationStatus(str, Enum):
    NOT_CONNECTED = "NOT_CONNECTED"  # Never started OAuth
    CONNECTED_READY = "CONNECTED_READY"  # Good to receive DMs
    BLOCKED = "BLOCKED"  # Action required
    PENDING = "PENDING"  # Connection still being processed


class BlockedReason(str, Enum):
    NO_PAGES_FOUND = "NO_PAGES_FOUND"
    IG_NOT_LINKED_TO_PAGE = "IG_NOT_LINKED_TO_PAGE"
    IG_NOT_BUSINESS = "IG_NOT_BUSINESS"
    OWNERSHIP_MISMATCH = "OWNERSHIP_MISMATCH"
    ADMIN_COOLDOWN = "ADMIN_COOLDOWN"
    MISSING_PERMISSIONS = "MISSING_PERMISSIONS"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    API_ERROR = "API_ERROR"


# User-facing copy. Provider wording never reaches these strings.
NOT_CONNECTED_MESSAGE = "Instagram account not connected. Click Connect to start."
CONNECTED_READY_MESSAGE = "Instagram account connected and ready to receive DMs."
PENDING_MESSAGE = "We're finishing your Instagram connection. This usually takes a few seconds."

BLOCKED_MESSAGES: Dict[BlockedReason, str] = {
    BlockedReason.NO_PAGES_FOUND: (
        "Your account doesn't have the required setup. Please create a business page first."
    ),
    BlockedReason.IG_NOT_LINKED_TO_PAGE: (
        "Instagram isn't fully set up yet. Please connect your Instagram account to your page."
    ),
    BlockedReason.IG_NOT_BUSINESS: (
        "Your Instagram account needs to be a Business or Creator account. "
        "Switch account type in Instagram, then reconnect."
    ),
    BlockedReason.OWNERSHIP_MISMATCH: (
        "Your Instagram account is no longer accessible. This can happen if account "
        "permissions changed. Please reconnect or contact your team admin."
    ),
    BlockedReason.ADMIN_COOLDOWN: (
        "There's a 7-day waiting period for new account setups. Please try again after the wait period."
    ),
    BlockedReason.MISSING_PERMISSIONS: (
        "Some permissions weren't granted. Please reconnect and approve all requested permissions."
    ),
    BlockedReason.TOKEN_EXPIRED: "Your connection has expired. Please reconnect your account.",
    BlockedReason.API_ERROR: "Something went wrong while checking your account. Please try again.",
}


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True


class NextAction(CamelModel):
    """An actionable next step for the user."""
    type: str = Field(..., description="CONNECT, RECONNECT, LINK, HELP, RETRY or WAIT")
    label: str
    url: Optional[str] = None


class ApiErrorDetail(CamelModel):
    """Provider diagnostics. Never substituted for the user-facing message."""
    code: Optional[int] = None
    subcode: Optional[int] = None
    type: Optional[str] = None
    message: Optional[str] = None
    trace_id: Optional[str] = None


class IntegrationStatusResponse(CamelModel):
    """Response for the integration status endpoint."""
    status: IntegrationStatus
    reason: Optional[BlockedReason] = None
    message: str
    retry_at: Optional[datetime] = None
    details: Optional[Dict[str, Any]] = None
    next_actions: Optional[List[NextAction]] = None
    api_error: Optional[ApiErrorDetail] = None

    @classmethod
    def not_connected(cls, connect_url: Optional[str] = None) -> "IntegrationStatusResponse":
        return cls(
            status=IntegrationStatus.NOT_CONNECTED,
            message=NOT_CONNECTED_MESSAGE,
            next_actions=[NextAction(type="CONNECT", label="Connect Instagram", url=connect_url)],
        )

    @classmethod
    def connected_ready(
        cls,
        instagram_username: Optional[str],
        facebook_page_id: Optional[str],
        business_name: Optional[str],
    ) -> "IntegrationStatusResponse":
        return cls(
            status=IntegrationStatus.CONNECTED_READY,
            message=CONNECTED_READY_MESSAGE,
            details={
                "instagramUsername": instagram_username or "",
                "facebookPageId": facebook_page_id or "",
                "businessName": business_name or "",
            },
        )

    @classmethod
    def blocked(
        cls,
        reason: BlockedReason,
        next_actions: List[NextAction],
        details: Optional[Dict[str, Any]] = None,
        retry_at: Optional[datetime] = None,
        api_error: Optional[ApiErrorDetail] = None,
    ) -> "IntegrationStatusResponse":
        return cls(
            status=IntegrationStatus.BLOCKED,
            reason=reason,
            message=BLOCKED_MESSAGES[reason],
            details=details,
            retry_at=retry_at,
            next_actions=next_actions,
            api_error=api_error,
        )

    @classmethod
    def pending(cls, message: str = PENDING_MESSAGE) -> "IntegrationStatusResponse":
        return cls(status=IntegrationStatus.PENDING, message=message)


class ConnectionInitResponse(CamelModel):
    """Response for starting an Instagram connection."""
    token: str = Field(..., description="One-time connection token")
    redirect_path: str = Field(..., description="Path the browser should open to start OAuth")
    expires_in_seconds: int = Field(300, description="Token lifetime in seconds")


class OAuthConfigStatusResponse(CamelModel):
    """Whether Facebook OAuth is configured on this backend."""
    configured: bool
    redirect_uri: str = ""
