"""
OAuth `state` parameter: a signed, self-contained capability token.

Nothing is stored server-side. The token body is the base64-encoded JSON
object {state, timestamp, provider, userId?, linkingMode?}: a random nonce,
the issue time in ms, the provider and (for account linking) the user id.
An itsdangerous signature is appended so the callback can trust what it
decodes. Tokens older than the configured TTL or issued for another
provider are rejected.
"""
import json
import logging
import secrets
import time
from dataclasses import dataclass

from itsdangerous import BadData, Signer
from itsdangerous.encoding import base64_decode, base64_encode

from app.core.config import settings

logger = logging.getLogger(__name__)

STATE_SALT = "oauth-state"
CLOCK_SKEW_MS = 30_000


@dataclass
class OAuthState:
    nonce: str
    timestamp: int  # ms since epoch
    provider: str
    user_id: str | None = None
    linking_mode: bool = False


def _signer(secret_key: str | None) -> Signer:
    return Signer(secret_key or settings.auth_secret_key, salt=STATE_SALT)


def _now_ms(now: float | None) -> int:
    return int((now if now is not None else time.time()) * 1000)


def encode_state(payload: dict) -> str:
    return base64_encode(json.dumps(payload, separators=(",", ":"))).decode("ascii")


def decode_state(body: str) -> dict:
    """Inverse of encode_state; raises BadData or ValueError on garbage."""
    return json.loads(base64_decode(body))


def generate_state_token(
    provider: str,
    user_id: str | None = None,
    linking_mode: bool = False,
    now: float | None = None,
    secret_key: str | None = None,
) -> str:
    payload = {
        "state": secrets.token_hex(32),
        "timestamp": _now_ms(now),
        "provider": provider,
    }
    if user_id:
        payload["userId"] = user_id
    if linking_mode:
        payload["linkingMode"] = True
    return _signer(secret_key).sign(encode_state(payload)).decode("ascii")


def validate_state_token(
    token: str,
    provider: str,
    now: float | None = None,
    secret_key: str | None = None,
    ttl_minutes: int | None = None,
) -> OAuthState | None:
    """Decoded state, or None when forged, malformed, expired or for another provider."""
    if not token or not isinstance(token, str):
        return None
    try:
        body = _signer(secret_key).unsign(token).decode("ascii")
    except BadData:
        logger.warning("oauth_state_invalid_signature", extra={"provider": provider})
        return None
    try:
        data = decode_state(body)
    except (BadData, ValueError):
        data = None
    if (
        not isinstance(data, dict)
        or not data.get("state")
        or isinstance(data.get("timestamp"), bool)
        or not isinstance(data.get("timestamp"), int)
    ):
        logger.warning("oauth_state_malformed", extra={"provider": provider})
        return None
    if data.get("provider") != provider:
        logger.warning("oauth_state_provider_mismatch", extra={"provider": provider})
        return None

    ttl_ms = (ttl_minutes if ttl_minutes is not None else settings.oauth_state_ttl_minutes) * 60_000
    age_ms = _now_ms(now) - data["timestamp"]
    if age_ms > ttl_ms or age_ms < -CLOCK_SKEW_MS:
        logger.warning("oauth_state_expired", extra={"provider": provider})
        return None

    return OAuthState(
        nonce=data["state"],
        timestamp=data["timestamp"],
        provider=data["provider"],
        user_id=data.get("userId"),
        linking_mode=bool(data.get("linkingMode")),
    )
