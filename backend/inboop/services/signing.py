"""
HMAC signing helpers.

HandoffSigner signs the short-lived cookie that carries the user id across the
Facebook OAuth redirect. parse_signed_request verifies Meta's ``signed_request``
callbacks (deauthorize). Both return None on any bad input instead of raising.
"""
import base64
import binascii
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

# Clock skew tolerated for handoff timestamps issued "in the future"
MAX_CLOCK_SKEW = timedelta(seconds=30)


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(value: str) -> bytes:
    """
    Decode URL-safe base64 with or without padding. Raises ValueError on bad input.

    Only the canonical encoding is accepted: stray characters and non-zero trailing
    bits would otherwise let several strings decode to the same bytes.
    """
    if not value or not value.isascii():
        raise ValueError("empty or non-ascii base64 segment")
    stripped = value.rstrip("=")
    padded = stripped + "=" * (-len(stripped) % 4)
    try:
        decoded = base64.urlsafe_b64decode(padded.encode("ascii"))
    except (binascii.Error, ValueError) as e:
        raise ValueError("invalid base64 segment") from e
    if _b64encode(decoded) != stripped:
        raise ValueError("non-canonical base64 segment")
    return decoded


@dataclass(frozen=True)
class HandoffClaims:
    """Decoded handoff cookie payload."""
    user_id: str
    issued_at: datetime


class HandoffSigner:
    """Signs and verifies `{plaintext}` values as `b64(plaintext).b64(hmac_sha256)`."""

    def __init__(self, secret: str, max_age: timedelta = timedelta(minutes=10)) -> None:
        if not secret:
            raise ValueError("A signing secret is required")
        self._key = secret.encode("utf-8")
        self.max_age = max_age

    def _signature(self, plaintext: bytes) -> bytes:
        return hmac.new(self._key, plaintext, hashlib.sha256).digest()

    def sign(self, plaintext: str) -> str:
        raw = plaintext.encode("utf-8")
        return f"{_b64encode(raw)}.{_b64encode(self._signature(raw))}"

    def verify(self, signed: Optional[str]) -> Optional[str]:
        """Return the plaintext when the signature matches, otherwise None."""
        if not signed or not isinstance(signed, str):
            return None
        parts = signed.split(".")
        if len(parts) != 2:
            return None
        try:
            raw = _b64decode(parts[0])
            signature = _b64decode(parts[1])
        except ValueError:
            return None

        if not hmac.compare_digest(signature, self._signature(raw)):
            return None
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError:
            return None

    def issue_handoff(self, user_id: str, now: Optional[datetime] = None) -> str:
        """Sign `{user_id}:{timestamp_millis}` for the OAuth handoff cookie."""
        now = now or datetime.now(timezone.utc)
        millis = int(now.timestamp() * 1000)
        return self.sign(f"{user_id}:{millis}")

    def read_handoff(self, signed: Optional[str], now: Optional[datetime] = None) -> Optional[HandoffClaims]:
        """Verify signature and staleness of a handoff cookie."""
        plaintext = self.verify(signed)
        if plaintext is None:
            return None

        user_id, sep, millis = plaintext.rpartition(":")
        if not sep or not user_id or not millis.isdigit():
            return None

        try:
            issued_at = datetime.fromtimestamp(int(millis) / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

        now = now or datetime.now(timezone.utc)
        if issued_at - now > MAX_CLOCK_SKEW:
            return None
        if now - issued_at > self.max_age:
            return None
        return HandoffClaims(user_id=user_id, issued_at=issued_at)


def parse_signed_request(signed_request: Optional[str], app_secret: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    Parse and verify a Meta ``signed_request`` (``b64url(signature).b64url(json_payload)``).

    The signature is HMAC-SHA256 of the *encoded* payload using the app secret.
    Returns the decoded payload, or None when anything about it is wrong.
    """
    if not signed_request:
        logger.warning("Received empty signed_request")
        return None
    if not app_secret:
        logger.error("META_APP_SECRET is not configured; cannot verify signed_request")
        return None

    parts = signed_request.split(".", 1)
    if len(parts) != 2:
        logger.warning("Invalid signed_request format")
        return None
    encoded_sig, encoded_payload = parts

    try:
        signature = _b64decode(encoded_sig)
    except ValueError:
        logger.warning("signed_request signature is not valid base64url")
        return None

    expected = hmac.new(
        app_secret.encode("utf-8"),
        encoded_payload.encode("utf-8"),
        hashlib.sha256,
    ).digest()
    if not hmac.compare_digest(signature, expected):
        logger.warning("signed_request signature verification failed")
        return None

    try:
        payload = json.loads(_b64decode(encoded_payload).decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        logger.warning("signed_request payload is not valid JSON")
        return None

    if not isinstance(payload, dict):
        return None
    if payload.get("algorithm") != "HMAC-SHA256":
        logger.warning("Unsupported signed_request algorithm: %s", payload.get("algorithm"))
        return None
    if not payload.get("user_id"):
        logger.warning("Missing user_id in signed_request payload")
        return None
    return payload
