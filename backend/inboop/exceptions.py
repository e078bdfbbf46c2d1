"""
Exceptions raised by the Instagram connection and integration status services.
"""
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from inboop.schemas.graph import GraphError


class InstagramIntegrationError(Exception):
    """Base exception for the Instagram integration"""

    def __init__(self, message: str, code: str = "instagram_integration_error"):
        super().__init__(message)
        self.code = code


class ConnectionLinkError(InstagramIntegrationError):
    """One-time connection link could not be redeemed (expired, unknown, or already used)."""


class ConnectionHandoffError(InstagramIntegrationError):
    """OAuth callback could not be tied back to an authenticated user."""


class ConnectionDiscoveryError(InstagramIntegrationError):
    """Page / Instagram discovery failed after the credential was obtained."""

    def __init__(self, message: str, reason: str, code: str = "discovery_failed"):
        super().__init__(message, code=code)
        self.reason = reason


class MetaOAuthError(InstagramIntegrationError):
    """Authorization-code or token exchange with Meta failed."""

    def __init__(self, message: str, code: str = "token_exchange_failed"):
        super().__init__(message, code=code)


class GraphAPIError(InstagramIntegrationError):
    """The Graph API answered with an error object or an error HTTP status."""

    def __init__(self, error: "GraphError", status_code: Optional[int] = None):
        super().__init__(
            f"Graph API error: code={error.code}, subcode={error.error_subcode}, "
            f"type={error.type}, status={status_code}",
            code="graph_api_error",
        )
        self.error = error
        self.status_code = status_code


class GraphTransportError(InstagramIntegrationError):
    """The Graph API could not be reached (timeout, connection failure, bad payload)."""

    def __init__(self, message: str):
        super().__init__(message, code="graph_transport_error")
