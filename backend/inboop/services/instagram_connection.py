"""
Instagram connection orchestration.

Flow:
    1. POST /connect issues a one-time token for the logged-in user.
    2. GET /oauth/start redeems it (begin_connection) and sets a signed handoff cookie.
    3. Facebook redirects back to /oauth/callback; the code is exchanged and
       complete_connection ties the credential back to the user from the cookie,
       discovers Page -> Instagram Business Account and replaces the user's
       Business rows in a single transaction.
"""
import logging
import threading
import uuid
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from functools import lru_cache
from typing import Callable, Iterator, List, Optional

from sqlalchemy.orm import Session

from inboop.exceptions import (
    ConnectionDiscoveryError,
    ConnectionHandoffError,
    ConnectionLinkError,
    GraphAPIError,
    GraphTransportError,
)
from inboop.models import Business, ConnectionAttempt, PLACEHOLDER_BUSINESS_NAME, User
from inboop.schemas.graph import DiscoveredInstagramAccount, FacebookPage
from inboop.schemas.integration import BlockedReason
from inboop.services.connection_tokens import ConnectionTokenStore, RedemptionStatus, utc_now
from inboop.services.graph_client import GraphClient, classify_graph_error
from inboop.services.meta_oauth import MetaOAuthClient
from inboop.services.signing import HandoffSigner

logger = logging.getLogger(__name__)


class ConnectionProgress:
    """
    Users whose OAuth callback is currently being processed.

    Per process: with several workers, PENDING is only seen by status polls served
    by the worker running the callback.
    """

    def __init__(self):
        self._active: Counter = Counter()
        self._lock = threading.Lock()

    @contextmanager
    def track(self, user_id) -> Iterator[None]:
        key = str(user_id)
        with self._lock:
            self._active[key] += 1
        try:
            yield
        finally:
            with self._lock:
                self._active[key] -= 1
                if self._active[key] <= 0:
                    del self._active[key]

    def is_in_progress(self, user_id) -> bool:
        with self._lock:
            return self._active.get(str(user_id), 0) > 0


@lru_cache()
def get_connection_progress() -> ConnectionProgress:
    return ConnectionProgress()


@dataclass
class ConnectionResult:
    """Outcome of a completed OAuth callback."""
    user_id: uuid.UUID
    business_id: uuid.UUID
    connected: bool
    reason: Optional[BlockedReason] = None
    instagram_account_id: Optional[str] = None
    instagram_username: Optional[str] = None
    facebook_page_id: Optional[str] = None
    pages_checked: int = 0
    secondary_instagram_account_ids: List[str] = field(default_factory=list)


class InstagramConnectionService:
    """Binds an OAuth callback to a tenant user and persists the discovered account."""

    def __init__(
        self,
        db: Session,
        graph_client: GraphClient,
        signer: HandoffSigner,
        token_store: ConnectionTokenStore,
        progress: Optional[ConnectionProgress] = None,
        oauth_client: Optional[MetaOAuthClient] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.graph = graph_client
        self.signer = signer
        self.token_store = token_store
        self.progress = progress or get_connection_progress()
        self.oauth_client = oauth_client
        self._clock = clock

    def begin_connection(self, token: Optional[str]) -> str:
        """Redeem a one-time connection token and return the signed handoff cookie value."""
        redemption = self.token_store.consume(token)
        if redemption.status is RedemptionStatus.EXPIRED:
            raise ConnectionLinkError("Connection link has expired", code="link_expired")
        if not redemption.ok:
            raise ConnectionLinkError("Connection link is invalid or was already used", code="link_invalid")

        logger.info(f"[OAuth] Connection token redeemed for user_id={redemption.user_id}")
        return self.signer.issue_handoff(redemption.user_id, now=self._clock())

    def build_authorization_url(self, redirect_uri: str, state: str) -> str:
        if self.oauth_client is None:
            self.oauth_client = MetaOAuthClient()
        return self.oauth_client.get_oauth_url(redirect_uri=redirect_uri, state=state)

    async def complete_connection(
        self,
        handoff_cookie: Optional[str],
        access_token: str,
        token_expires_at: Optional[datetime],
        facebook_user_id: Optional[str],
    ) -> ConnectionResult:
        """
        Finish the OAuth callback for the user named in the handoff cookie.

        All existing Business rows of the user are replaced. Exactly one row is written:
        the connected account from the first Page (provider order) with a linked
        Instagram account, or an inactive placeholder carrying the credential and the
        reason discovery came up empty.

        Raises:
            ConnectionHandoffError: cookie missing, forged or stale (session_expired),
                or the user no longer exists (user_not_found)
            ConnectionDiscoveryError: listing Pages failed; the placeholder is committed
        """
        claims = self.signer.read_handoff(handoff_cookie, now=self._clock())
        if claims is None:
            logger.warning("[OAuth] Handoff cookie missing, invalid or expired")
            raise ConnectionHandoffError("Connection session expired", code="session_expired")

        user = self._load_user(claims.user_id)
        if user is None:
            logger.warning(f"[OAuth] Handoff user not found user_id={claims.user_id}")
            raise ConnectionHandoffError("User not found", code="user_not_found")

        with self.progress.track(user.id):
            try:
                return await self._replace_connection(user, access_token, token_expires_at, facebook_user_id)
            except ConnectionDiscoveryError:
                raise
            except Exception:
                self.db.rollback()
                logger.exception(f"[OAuth] Connection failed for user_id={user.id}, rolled back")
                raise

    def _owner_lock_query(self, user: User):
        return self.db.query(User).filter(User.id == user.id).with_for_update()

    def _lock_owner(self, user: User) -> None:
        # Row lock on the owner serializes concurrent callbacks until commit or rollback
        self._owner_lock_query(user).one()

    def _load_user(self, user_id: str) -> Optional[User]:
        try:
            user_uuid = uuid.UUID(user_id)
        except ValueError:
            return None
        return self.db.query(User).filter(User.id == user_uuid).first()

    async def _replace_connection(
        self,
        user: User,
        access_token: str,
        token_expires_at: Optional[datetime],
        facebook_user_id: Optional[str],
    ) -> ConnectionResult:
        self._lock_owner(user)
        existing = self.db.query(Business).filter(Business.owner_id == user.id).all()
        for business in existing:
            self.db.delete(business)
        self.db.flush()
        if existing:
            logger.info(f"[OAuth] Removed {len(existing)} previous business row(s) for user_id={user.id}")

        try:
            pages = await self.graph.list_pages(access_token)
        except (GraphAPIError, GraphTransportError) as e:
            reason = classify_graph_error(e)
            logger.warning(f"[OAuth] Listing pages failed for user_id={user.id}: reason={reason.value} ({e})")
            business = self._add_placeholder(user, reason, access_token, token_expires_at, facebook_user_id, [])
            self._record_attempt(user, facebook_user_id, reason, [], [])
            self.db.commit()
            raise ConnectionDiscoveryError(
                f"Could not list Facebook Pages (business_id={business.id})", reason=reason.value
            ) from e

        found = await self._discover_accounts(pages, access_token)
        page_ids = [page.id for page in pages]

        if found:
            primary = found[0]
            business = Business(
                owner_id=user.id,
                name=primary.page_name or primary.username or primary.id,
                facebook_user_id=facebook_user_id,
                facebook_page_id=primary.page_id,
                instagram_business_account_id=primary.id,
                instagram_username=primary.username,
                access_token=access_token,
                token_expires_at=token_expires_at,
                selected_page_id=primary.page_id,
                last_ig_account_id_seen=primary.id,
                is_active=True,
                last_connection_error=None,
            )
            business.page_id_list = page_ids
            self.db.add(business)
            self._record_attempt(user, facebook_user_id, None, page_ids, [a.id for a in found])
            self.db.commit()
            logger.info(
                f"[OAuth] Connected user_id={user.id} ig_id={primary.id} "
                f"username={primary.username} page_id={primary.page_id}"
            )
            return ConnectionResult(
                user_id=user.id,
                business_id=business.id,
                connected=True,
                instagram_account_id=primary.id,
                instagram_username=primary.username,
                facebook_page_id=primary.page_id,
                pages_checked=len(pages),
                secondary_instagram_account_ids=[a.id for a in found[1:]],
            )

        reason = BlockedReason.NO_PAGES_FOUND if not pages else BlockedReason.IG_NOT_LINKED_TO_PAGE
        business = self._add_placeholder(user, reason, access_token, token_expires_at, facebook_user_id, page_ids)
        self._record_attempt(user, facebook_user_id, reason, page_ids, [])
        self.db.commit()
        logger.info(f"[OAuth] No Instagram account for user_id={user.id}: reason={reason.value} pages={len(pages)}")
        return ConnectionResult(
            user_id=user.id,
            business_id=business.id,
            connected=False,
            reason=reason,
            pages_checked=len(pages),
        )

    async def _discover_accounts(
        self, pages: List[FacebookPage], user_token: str
    ) -> List[DiscoveredInstagramAccount]:
        """Check every Page; only the first hit gets its profile fetched."""
        found: List[DiscoveredInstagramAccount] = []
        for page in pages:
            try:
                account = await self.graph.find_instagram_account(page, user_token, with_profile=not found)
            except (GraphAPIError, GraphTransportError) as e:
                logger.warning(f"[OAuth] Skipping page_id={page.id}: {e}")
                continue
            if account is not None:
                found.append(account)
        return found

    def _add_placeholder(
        self,
        user: User,
        reason: BlockedReason,
        access_token: str,
        token_expires_at: Optional[datetime],
        facebook_user_id: Optional[str],
        page_ids: List[str],
    ) -> Business:
        business = Business(
            owner_id=user.id,
            name=PLACEHOLDER_BUSINESS_NAME,
            facebook_user_id=facebook_user_id,
            access_token=access_token,
            token_expires_at=token_expires_at,
            is_active=False,
            last_connection_error=reason.value,
        )
        business.page_id_list = page_ids
        self.db.add(business)
        self.db.flush()
        return business

    def _record_attempt(
        self,
        user: User,
        facebook_user_id: Optional[str],
        reason: Optional[BlockedReason],
        page_ids: List[str],
        instagram_account_ids: List[str],
    ) -> None:
        self.db.add(
            ConnectionAttempt(
                owner_id=user.id,
                facebook_user_id=facebook_user_id,
                outcome=ConnectionAttempt.OUTCOME_FAILED if reason else ConnectionAttempt.OUTCOME_CONNECTED,
                error_reason=reason.value if reason else None,
                pages_checked=len(page_ids),
                page_ids=",".join(page_ids) or None,
                instagram_account_ids=",".join(instagram_account_ids) or None,
            )
        )
