"""Password hashing, JWT access tokens and QR token issuance."""
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import bcrypt
import jwt

from easypass.config import Settings
from easypass.core.exceptions import AuthenticationError

JWT_ALGORITHM = "HS256"
QR_TOKEN_BYTES = 32  # 64 hex characters


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def check_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def generate_qr_token() -> str:
    return secrets.token_hex(QR_TOKEN_BYTES)


def create_access_token(settings: Settings, user_id: str) -> str:
    """
    Issue a signed access token for a user.

    Args:
        settings: Application settings (secret, issuer, audience, lifetime)
        user_id: Subject of the token

    Returns:
        str: Encoded JWT
    """
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "iat": now,
        "exp": now + timedelta(days=settings.jwt_expire_days),
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=JWT_ALGORITHM)


def decode_access_token(settings: Settings, token: str) -> Dict[str, Any]:
    """
    Validate a token's signature, expiry, issuer and audience.

    Raises:
        AuthenticationError: If the token is expired or invalid
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[JWT_ALGORITHM],
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError as e:
        raise AuthenticationError("Session expired, please log in again") from e
    except jwt.PyJWTError as e:
        raise AuthenticationError("Not authorized, invalid token") from e
    return payload
