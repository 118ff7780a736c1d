"""Signed guest session tokens.

A token is ``"{participant_id}:{issued_at_ms}:{signature}"`` where the
signature is a hex HMAC-SHA256 of the first two fields under the server
secret.
"""

import hashlib
import hmac
import logging
import time
from uuid import UUID

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _sign(secret: str, message: str) -> str:
    return hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()


def create_guest_token(
    participant_id: UUID,
    secret: str,
    issued_at_ms: int | None = None,
) -> str:
    """
    Create a signed guest token.

    Args:
        participant_id: Guest participant the token names
        secret: Server HMAC secret
        issued_at_ms: Issue time in epoch milliseconds (defaults to now)

    Returns:
        Token string suitable for a cookie value
    """
    timestamp = _now_ms() if issued_at_ms is None else issued_at_ms
    message = f"{participant_id}:{timestamp}"
    return f"{message}:{_sign(secret, message)}"


def verify_guest_token(
    token: str | None,
    secret: str,
    ttl_ms: int,
    now_ms: int | None = None,
) -> UUID | None:
    """
    Verify a guest token and extract the participant id.

    Returns None for missing, malformed, forged, or expired tokens.
    """
    if not token:
        return None

    parts = token.split(":")
    if len(parts) != 3:
        return None

    participant_id, timestamp, signature = parts
    expected = _sign(secret, f"{participant_id}:{timestamp}")
    if not hmac.compare_digest(signature.encode(), expected.encode()):
        logger.warning("Rejected guest token with bad signature")
        return None

    try:
        issued_at = int(timestamp)
        parsed_id = UUID(participant_id)
    except ValueError:
        return None

    now = _now_ms() if now_ms is None else now_ms
    if now - issued_at > ttl_ms:
        logger.info(f"Guest token for {parsed_id} expired")
        return None

    return parsed_id
