"""
Instagram integration status checks.

Decides whether a user's stored connection can receive DMs:

    NOT_CONNECTED -> CONNECTED_READY | BLOCKED(reason) | PENDING

Checks are cheap when they can be: an active cooldown, or a recent successful (or
failed) check inside the cache window, is answered from the Business row without
calling the Graph API. Everything else runs a live Page -> Instagram discovery with the
stored credential and writes the outcome back to the row.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from inboop.config import Settings, get_settings
from inboop.exceptions import GraphAPIError, GraphTransportError
from inboop.models import Business, User
from inboop.schemas.graph import DiscoveredInstagramAccount, GraphError
from inboop.schemas.integration import (
    ApiErrorDetail,
    BlockedReason,
    IntegrationStatusResponse,
    NextAction,
)
from inboop.services.connection_tokens import utc_now
from inboop.services.graph_client import GraphClient, classify_graph_error, is_admin_cooldown_error
from inboop.services.instagram_connection import ConnectionProgress, get_connection_progress

logger = logging.getLogger(__name__)

META_PAGE_CREATE_URL = "https://www.facebook.com/pages/create"
META_LINKED_INSTAGRAM_URL = "https://www.facebook.com/settings/?tab=linked_instagram"
INSTAGRAM_SETUP_HELP_URL = "https://help.instagram.com/399237934150902"
INSTAGRAM_PROFESSIONAL_ACCOUNT_HELP_URL = "https://help.instagram.com/502981923235522"


def next_actions_for(reason: BlockedReason, retry_at: Optional[datetime] = None) -> List[NextAction]:
    """Fixed next-step table keyed by BLOCKED reason."""
    if reason == BlockedReason.NO_PAGES_FOUND:
        return [
            NextAction(type="LINK", label="Create a Page", url=META_PAGE_CREATE_URL),
            NextAction(type="HELP", label="Learn how to set up", url=INSTAGRAM_SETUP_HELP_URL),
        ]
    if reason == BlockedReason.IG_NOT_LINKED_TO_PAGE:
        return [
            NextAction(type="LINK", label="Connect Instagram", url=META_LINKED_INSTAGRAM_URL),
            NextAction(type="HELP", label="Learn how to connect", url=INSTAGRAM_SETUP_HELP_URL),
        ]
    if reason == BlockedReason.IG_NOT_BUSINESS:
        return [
            NextAction(type="HELP", label="Switch to a professional account", url=INSTAGRAM_PROFESSIONAL_ACCOUNT_HELP_URL),
            NextAction(type="RECONNECT", label="Reconnect"),
        ]
    if reason == BlockedReason.OWNERSHIP_MISMATCH:
        return [
            NextAction(type="RECONNECT", label="Reconnect account"),
            NextAction(type="HELP", label="Contact your admin"),
        ]
    if reason == BlockedReason.ADMIN_COOLDOWN:
        label = f"Try again on {retry_at.date().isoformat()}" if retry_at else "Try again later"
        return [NextAction(type="WAIT", label=label)]
    if reason == BlockedReason.TOKEN_EXPIRED:
        return [NextAction(type="RECONNECT", label="Reconnect")]
    if reason == BlockedReason.MISSING_PERMISSIONS:
        return [NextAction(type="RECONNECT", label="Reconnect with permissions")]
    return [
        NextAction(type="RETRY", label="Try again"),
        NextAction(type="RECONNECT", label="Reconnect"),
    ]


def api_error_detail(error: GraphError) -> ApiErrorDetail:
    return ApiErrorDetail(
        code=error.code,
        subcode=error.error_subcode,
        type=error.type,
        message=error.message,
        trace_id=error.fbtrace_id,
    )


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _stored_reason(business: Business) -> Optional[BlockedReason]:
    try:
        return BlockedReason(business.last_connection_error) if business.last_connection_error else None
    except ValueError:
        return None


class IntegrationStatusService:
    """Computes and persists the integration status of a user's Instagram connection."""

    def __init__(
        self,
        db: Session,
        graph_client: GraphClient,
        settings: Optional[Settings] = None,
        progress: Optional[ConnectionProgress] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.graph = graph_client
        self.settings = settings or get_settings()
        self.progress = progress or get_connection_progress()
        self._clock = clock
        self.cache_ttl = timedelta(seconds=self.settings.status_cache_seconds)
        self.cooldown = timedelta(days=self.settings.admin_cooldown_days)

    async def check_status(self, user: User) -> IntegrationStatusResponse:
        now = self._clock()

        if self.progress.is_in_progress(user.id):
            logger.info(f"[StatusCheck] user_id={user.id} connection in progress")
            return IntegrationStatusResponse.pending()

        businesses = (
            self.db.query(Business)
            .filter(Business.owner_id == user.id)
            .order_by(Business.created_at)
            .all()
        )
        if not businesses:
            return IntegrationStatusResponse.not_connected()

        business = next((b for b in businesses if b.is_active), businesses[0])
        if not business.has_credential():
            logger.info(f"[StatusCheck] business_id={business.id} has no credential")
            return IntegrationStatusResponse.not_connected()

        retry_at = _as_utc(business.connection_retry_at)
        if retry_at is not None:
            if retry_at > now:
                logger.info(f"[StatusCheck] business_id={business.id} in admin cooldown until {retry_at.isoformat()}")
                return IntegrationStatusResponse.blocked(
                    BlockedReason.ADMIN_COOLDOWN,
                    next_actions_for(BlockedReason.ADMIN_COOLDOWN, retry_at),
                    details=self._username_details(business),
                    retry_at=retry_at,
                )
            business.connection_retry_at = None

        cached = self._cached_status(business, now)
        if cached is not None:
            return cached

        return await self._live_check(business, now)

    def _cached_status(self, business: Business, now: datetime) -> Optional[IntegrationStatusResponse]:
        checked_at = _as_utc(business.last_status_check_at)
        if checked_at is None or now - checked_at >= self.cache_ttl:
            return None

        reason = _stored_reason(business)
        if reason is None:
            if business.is_active and business.instagram_business_account_id:
                logger.info(f"[StatusCheck] business_id={business.id} cached CONNECTED_READY")
                return IntegrationStatusResponse.connected_ready(
                    business.instagram_username, business.facebook_page_id, business.name
                )
            return None
        if reason == BlockedReason.ADMIN_COOLDOWN:
            # Cooldown has elapsed (checked above), so look again
            return None

        logger.info(f"[StatusCheck] business_id={business.id} cached BLOCKED reason={reason.value}")
        return IntegrationStatusResponse.blocked(
            reason,
            next_actions_for(reason),
            details=self._blocked_details(business, reason, len(business.page_id_list)),
        )

    async def _live_check(self, business: Business, now: datetime) -> IntegrationStatusResponse:
        token = business.access_token
        logger.info(f"[StatusCheck] business_id={business.id} running live check")

        try:
            pages = await self.graph.list_pages(token)
        except GraphAPIError as e:
            return self._block(business, classify_graph_error(e), now, api_error=api_error_detail(e.error))
        except GraphTransportError as e:
            return self._block(
                business,
                BlockedReason.API_ERROR,
                now,
                api_error=ApiErrorDetail(type="transport", message=str(e)),
            )

        if not pages:
            business.page_id_list = []
            return self._block(business, BlockedReason.NO_PAGES_FOUND, now)
        business.page_id_list = [page.id for page in pages]

        transport_failures = 0
        for page in pages:
            try:
                account = await self.graph.find_instagram_account(page, token)
            except GraphAPIError as e:
                if is_admin_cooldown_error(e.error):
                    retry_at = now + self.cooldown
                    business.connection_retry_at = retry_at
                    logger.warning(
                        f"[StatusCheck] business_id={business.id} admin cooldown on page_id={page.id}, "
                        f"retry_at={retry_at.isoformat()}"
                    )
                    return self._block(
                        business,
                        BlockedReason.ADMIN_COOLDOWN,
                        now,
                        retry_at=retry_at,
                        details=self._username_details(business),
                        api_error=api_error_detail(e.error),
                    )
                logger.warning(f"[StatusCheck] Skipping page_id={page.id}: {e}")
                continue
            except GraphTransportError as e:
                logger.warning(f"[StatusCheck] Skipping page_id={page.id}: {e}")
                transport_failures += 1
                continue

            if account is not None:
                return self._mark_ready(business, account, now)

        if transport_failures == len(pages):
            # Nothing was learned about any Page
            return self._block(business, BlockedReason.API_ERROR, now)

        if business.last_ig_account_id_seen:
            logger.warning(
                f"[StatusCheck] business_id={business.id} previously seen ig_id="
                f"{business.last_ig_account_id_seen} is no longer reachable"
            )
            return self._block(business, BlockedReason.OWNERSHIP_MISMATCH, now)
        return self._block(business, BlockedReason.IG_NOT_LINKED_TO_PAGE, now)

    def _mark_ready(
        self, business: Business, account: DiscoveredInstagramAccount, now: datetime
    ) -> IntegrationStatusResponse:
        business.instagram_business_account_id = account.id
        if account.username:
            business.instagram_username = account.username
        business.facebook_page_id = account.page_id
        business.selected_page_id = account.page_id
        business.last_ig_account_id_seen = account.id
        if account.page_name:
            business.name = account.page_name
        business.last_connection_error = None
        business.last_status_check_at = now
        business.is_active = True
        self.db.commit()

        logger.info(
            f"[StatusCheck] business_id={business.id} CONNECTED_READY ig_id={account.id} "
            f"username={business.instagram_username}"
        )
        return IntegrationStatusResponse.connected_ready(
            business.instagram_username, business.facebook_page_id, business.name
        )

    def _block(
        self,
        business: Business,
        reason: BlockedReason,
        now: datetime,
        retry_at: Optional[datetime] = None,
        details: Optional[Dict[str, object]] = None,
        api_error: Optional[ApiErrorDetail] = None,
    ) -> IntegrationStatusResponse:
        business.last_connection_error = reason.value
        business.last_status_check_at = now
        self.db.commit()

        logger.info(f"[StatusCheck] business_id={business.id} BLOCKED reason={reason.value}")
        if details is None:
            details = self._blocked_details(business, reason, len(business.page_id_list))
        return IntegrationStatusResponse.blocked(
            reason,
            next_actions_for(reason, retry_at),
            details=details,
            retry_at=retry_at,
            api_error=api_error,
        )

    @staticmethod
    def _username_details(business: Business) -> Optional[Dict[str, object]]:
        if not business.instagram_username:
            return None
        return {"instagramUsername": business.instagram_username}

    def _blocked_details(
        self, business: Business, reason: BlockedReason, pages_checked: int
    ) -> Optional[Dict[str, object]]:
        if reason == BlockedReason.IG_NOT_LINKED_TO_PAGE:
            return {"businessName": business.name, "pagesChecked": pages_checked}
        if reason in (BlockedReason.OWNERSHIP_MISMATCH, BlockedReason.ADMIN_COOLDOWN):
            return self._username_details(business)
        return None
