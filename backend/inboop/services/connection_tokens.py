"""
One-time connection tokens.

A logged-in user asks for a token over the authenticated API, then the browser opens
the OAuth start URL with that token (a plain navigation carries no bearer header).
Each token maps to a user id, expires after a few minutes, and can be redeemed once.
"""
import logging
import secrets
import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from functools import lru_cache
from typing import Callable, Dict, Optional

from inboop.config import get_settings

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RedemptionStatus(str, Enum):
    OK = "ok"
    EXPIRED = "expired"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class TokenRedemption:
    status: RedemptionStatus
    user_id: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is RedemptionStatus.OK


@dataclass(frozen=True)
class _TokenEntry:
    user_id: str
    issued_at: datetime


class ConnectionTokenStore:
    """
    In-memory, thread-safe, single-use token store.

    Expired entries are dropped on issue, but their tokens are remembered (up to
    max_expired_markers, oldest first out) so a late redemption still reports EXPIRED.
    """

    def __init__(
        self,
        ttl: timedelta = timedelta(minutes=5),
        clock: Callable[[], datetime] = utc_now,
        max_expired_markers: int = 1024,
    ) -> None:
        self.ttl = ttl
        self._clock = clock
        self.max_expired_markers = max_expired_markers
        self._entries: Dict[str, _TokenEntry] = {}
        self._expired: "OrderedDict[str, None]" = OrderedDict()
        self._lock = threading.Lock()

    def issue(self, user_id: str) -> str:
        token = secrets.token_urlsafe(32)
        now = self._clock()
        with self._lock:
            self._purge_expired(now)
            self._entries[token] = _TokenEntry(user_id=str(user_id), issued_at=now)
        logger.info(f"[OAuth] Issued connection token for user_id={user_id}")
        return token

    def consume(self, token: Optional[str]) -> TokenRedemption:
        """
        Look up and remove the token in one step.

        Only one caller can ever receive OK for a given token; later or concurrent
        callers get UNKNOWN.
        """
        if not token:
            return TokenRedemption(RedemptionStatus.UNKNOWN)

        with self._lock:
            entry = self._entries.pop(token, None)
            purged = entry is None and token in self._expired
            if purged:
                del self._expired[token]

        if purged:
            logger.info("[OAuth] Connection token expired")
            return TokenRedemption(RedemptionStatus.EXPIRED)
        if entry is None:
            return TokenRedemption(RedemptionStatus.UNKNOWN)
        if self._clock() - entry.issued_at > self.ttl:
            logger.info(f"[OAuth] Connection token expired for user_id={entry.user_id}")
            return TokenRedemption(RedemptionStatus.EXPIRED)
        return TokenRedemption(RedemptionStatus.OK, user_id=entry.user_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _purge_expired(self, now: datetime) -> None:
        # Caller holds the lock
        expired = [t for t, e in self._entries.items() if now - e.issued_at > self.ttl]
        for token in expired:
            del self._entries[token]
            self._expired[token] = None
        while len(self._expired) > self.max_expired_markers:
            self._expired.popitem(last=False)


@lru_cache()
def get_connection_token_store() -> ConnectionTokenStore:
    """Process-wide token store (FastAPI dependency; override in tests)."""
    settings = get_settings()
    return ConnectionTokenStore(ttl=timedelta(seconds=settings.connect_token_ttl_seconds))
