"""
Typed views of the Graph API responses used for Page / Instagram discovery.

Every response is decoded into one of these models; a top-level ``error`` object is
decoded into GraphError before anything else is looked at.
"""
from pydantic import BaseModel, Field
from typing import Optional, List


class GraphError(BaseModel):
    """Graph API error object."""
    code: Optional[int] = None
    message: Optional[str] = None
    error_subcode: Optional[int] = None
    type: Optional[str] = None
    fbtrace_id: Optional[str] = None

    class Config:
        extra = "ignore"


class GraphErrorEnvelope(BaseModel):
    """Response body carrying a top-level error."""
    error: GraphError


class FacebookPage(BaseModel):
    """Page entry from /me/accounts."""
    id: str
    name: Optional[str] = None
    access_token: Optional[str] = Field(None, repr=False, description="Page-scoped access token")

    class Config:
        extra = "ignore"

    def has_page_token(self) -> bool:
        return bool(self.access_token)


class PageListResponse(BaseModel):
    """Response for GET /me/accounts."""
    data: List[FacebookPage] = Field(default_factory=list)

    class Config:
        extra = "ignore"


class InstagramAccountRef(BaseModel):
    id: Optional[str] = None


class PageInstagramLinkage(BaseModel):
    """Response for GET /{page-id}?fields=instagram_business_account,connected_instagram_account."""
    id: Optional[str] = None
    instagram_business_account: Optional[InstagramAccountRef] = None
    connected_instagram_account: Optional[InstagramAccountRef] = None

    class Config:
        extra = "ignore"

    def linked_account(self) -> Optional[tuple[str, str]]:
        """
        Return (instagram_account_id, source_field) for the linked account, if any.

        instagram_business_account wins over connected_instagram_account when both are set.
        """
        for field_name in ("instagram_business_account", "connected_instagram_account"):
            ref = getattr(self, field_name)
            if ref is not None and ref.id:
                return ref.id, field_name
        return None


class InstagramProfile(BaseModel):
    """Response for GET /{ig-account-id}?fields=id,username,name,profile_picture_url."""
    id: str
    username: Optional[str] = None
    name: Optional[str] = None
    profile_picture_url: Optional[str] = None

    class Config:
        extra = "ignore"


class DiscoveredInstagramAccount(BaseModel):
    """An Instagram account found behind a Page."""
    id: str
    page_id: str
    page_name: Optional[str] = None
    source_field: str
    username: Optional[str] = None
    name: Optional[str] = None
    profile_picture_url: Optional[str] = None
