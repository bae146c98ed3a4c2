"""
Credential verification primitives.

Telegram Mini App init data is validated according to
https://core.telegram.org/bots/webapps#validating-data-received-via-the-mini-app
and admin panel sessions use HS256 JWTs. Nothing here touches the database;
mapping a verified credential to a stored user happens in
``ambassador.app.services.access``.
"""
import hmac
import hashlib
import json
import time
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import parse_qsl

import jwt
from pydantic import BaseModel, ValidationError as PydanticValidationError

from ambassador.app.core.exceptions import UnauthenticatedError
from ambassador.app.core.settings import get_settings

JWT_ALGORITHM = "HS256"
WEBAPP_DATA_LABEL = b"WebAppData"


class TelegramUser(BaseModel):
    """User data from Telegram init data"""
    id: int
    first_name: str
    last_name: Optional[str] = None
    username: Optional[str] = None
    language_code: Optional[str] = None
    is_premium: Optional[bool] = None
    photo_url: Optional[str] = None


class TelegramInitData(BaseModel):
    """Parsed and validated Telegram init data"""
    user: TelegramUser
    auth_date: int
    hash: str
    query_id: Optional[str] = None
    start_param: Optional[str] = None


def telegram_secret_key(bot_token: str) -> bytes:
    """secret_key = HMAC_SHA256(key="WebAppData", msg=bot_token)"""
    return hmac.new(WEBAPP_DATA_LABEL, bot_token.encode("utf-8"), hashlib.sha256).digest()


def build_data_check_string(fields: dict[str, str]) -> str:
    """Sorted ``key=value`` pairs joined by newlines, signature field excluded."""
    return "\n".join(f"{k}={v}" for k, v in sorted(fields.items()) if k != "hash")


def sign_init_data_fields(fields: dict[str, str], bot_token: str) -> str:
    """Hex HMAC of the data-check-string; what Telegram puts into ``hash``."""
    return hmac.new(
        telegram_secret_key(bot_token),
        build_data_check_string(fields).encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def validate_telegram_data(
    init_data: str,
    bot_token: Optional[str] = None,
    max_age: Optional[int] = None,
) -> TelegramInitData:
    """
    Validate data received from Telegram WebApp.

    Args:
        init_data: URL-encoded string from Telegram.WebApp.initData
        bot_token: token to verify against, defaults to BOT_TOKEN from settings
        max_age: maximum accepted age of ``auth_date`` in seconds

    Returns:
        TelegramInitData with validated user info

    Raises:
        UnauthenticatedError: missing token configuration, bad signature,
            expired or malformed payload
    """
    settings = get_settings()
    bot_token = bot_token if bot_token is not None else settings.BOT_TOKEN
    max_age = max_age if max_age is not None else settings.TELEGRAM_DATA_MAX_AGE

    if not init_data:
        raise UnauthenticatedError("Missing Telegram init data")
    if not bot_token:
        raise UnauthenticatedError("Telegram authentication is not configured")

    parsed = dict(parse_qsl(init_data, keep_blank_values=True))

    received_hash = parsed.pop("hash", None)
    if not received_hash:
        raise UnauthenticatedError("Missing hash in init data")

    calculated_hash = sign_init_data_fields(parsed, bot_token)
    if not hmac.compare_digest(calculated_hash, received_hash):
        raise UnauthenticatedError("Invalid Telegram signature")

    # Replay protection
    try:
        auth_date = int(parsed.get("auth_date", 0))
    except ValueError:
        raise UnauthenticatedError("Invalid auth_date")
    if int(time.time()) - auth_date > max_age:
        raise UnauthenticatedError("Init data has expired")

    user_json = parsed.get("user")
    if not user_json:
        raise UnauthenticatedError("Missing user data")
    try:
        user = TelegramUser(**json.loads(user_json))
    except (json.JSONDecodeError, TypeError, PydanticValidationError):
        raise UnauthenticatedError("Invalid user data")

    return TelegramInitData(
        user=user,
        auth_date=auth_date,
        hash=received_hash,
        query_id=parsed.get("query_id"),
        start_param=parsed.get("start_param"),
    )


# --- Admin panel bearer tokens ---

def _jwt_secret() -> str:
    secret = get_settings().JWT_SECRET
    if not secret:
        raise UnauthenticatedError("Bearer authentication is not configured")
    return secret


def create_access_token(user_id: int, role: str, expires_in_hours: Optional[int] = None) -> str:
    """Issue a bearer token for an admin panel user."""
    hours = expires_in_hours if expires_in_hours is not None else get_settings().JWT_EXPIRY_HOURS
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "role": role,
        "iat": now,
        "exp": now + timedelta(hours=hours),
    }
    return jwt.encode(payload, _jwt_secret(), algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> int:
    """
    Verify signature and expiry of a bearer token and return the user id.

    The role claim is informational only; callers must re-check the stored
    role and status.
    """
    try:
        payload = jwt.decode(token, _jwt_secret(), algorithms=[JWT_ALGORITHM])
        return int(payload["sub"])
    except jwt.ExpiredSignatureError:
        raise UnauthenticatedError("Token has expired")
    except (jwt.InvalidTokenError, KeyError, ValueError):
        raise UnauthenticatedError("Invalid token")


def parse_bearer(authorization: str) -> str:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise UnauthenticatedError("Invalid Authorization header format. Expected: Bearer <token>")
    return parts[1]
