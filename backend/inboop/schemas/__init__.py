"""
Pydantic schemas organized by domain.
"""

from .graph import (
    GraphError,
    GraphErrorEnvelope,
    FacebookPage,
    PageListResponse,
    InstagramAccountRef,
    PageInstagramLinkage,
    InstagramProfile,
    DiscoveredInstagramAccount,
)

from .integration import (
    IntegrationStatus,
    BlockedReason,
    BLOCKED_MESSAGES,
    NextAction,
    ApiErrorDetail,
    IntegrationStatusResponse,
    ConnectionInitResponse,
    OAuthConfigStatusResponse,
)
