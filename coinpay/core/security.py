import hashlib
import hmac
from typing import Any

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from coinpay.core.config import get_settings

SESSION_MAX_AGE_SECONDS = 7 * 24 * 3600

_DIGESTS = {
    "sha256": hashlib.sha256,
    "sha512": hashlib.sha512,
}


def get_session_serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(
        settings.secret_key,
        salt="coinpay-session",
        signer_kwargs={"key_derivation": "hmac", "digest_method": hashlib.sha256},
    )


def create_session_cookie(payload: dict[str, Any]) -> str:
    return get_session_serializer().dumps(payload)


def load_session_cookie(cookie_value: str) -> dict[str, Any] | None:
    serializer = get_session_serializer()
    try:
        return serializer.loads(cookie_value, max_age=SESSION_MAX_AGE_SECONDS)
    except (BadSignature, SignatureExpired):
        return None


def hmac_hex(secret: str, message: str, algorithm: str = "sha256") -> str:
    """Hex HMAC of a UTF-8 message, as every supported gateway expects it."""
    return hmac.new(
        secret.encode("utf-8"),
        message.encode("utf-8"),
        _DIGESTS[algorithm],
    ).hexdigest()


def signatures_match(expected: str, received: str | None) -> bool:
    """Constant-time, case-insensitive comparison of hex signatures."""
    if not received:
        return False
    return hmac.compare_digest(expected.lower(), received.strip().lower())
