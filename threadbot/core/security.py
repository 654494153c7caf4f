import hashlib
import hmac
import re
import secrets

from threadbot.config import get_settings

# Telegram's constraint on setWebhook secret_token
WEBHOOK_SECRET_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,256}$")

VERIFICATION_CODE_MIN = 100000
VERIFICATION_CODE_MAX = 999999


def generate_verification_code() -> str:
    """Generate a 6-digit verification code in the range 100000-999999."""
    span = VERIFICATION_CODE_MAX - VERIFICATION_CODE_MIN + 1
    return str(VERIFICATION_CODE_MIN + secrets.randbelow(span))


def is_valid_webhook_secret(secret: str) -> bool:
    """Check a webhook secret against the platform's token format."""
    return bool(WEBHOOK_SECRET_PATTERN.fullmatch(secret))


def secrets_match(provided: str | None, expected: str) -> bool:
    """Constant-time comparison of a provided secret against the expected one."""
    if not provided:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


def sign_user_id(user_id: str, secret_key: str | None = None) -> str:
    """Generate the HMAC signature an upstream auth gateway attaches to a user ID."""
    key = (secret_key or get_settings().secret_key).encode()
    return hmac.new(key, user_id.encode(), hashlib.sha256).hexdigest()


def verify_user_signature(user_id: str, signature: str, secret_key: str | None = None) -> bool:
    """Verify a user ID signature."""
    expected = sign_user_id(user_id, secret_key)
    return hmac.compare_digest(expected, signature)
