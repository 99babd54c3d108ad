"""
Operator credentials for the alert admin API.

Only administrators may read or change the alert configuration, browse the
notification log or fire the manual checks. They sign in once and carry a
short-lived bearer token; passwords are stored as bcrypt hashes on the
users table.
"""
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from jose import JWTError, jwt

from kor_inventory.core.config import settings

TOKEN_TYPE = "access"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))


def get_password_hash(password: str) -> str:
    """bcrypt hash for a new operator account."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def create_access_token(claims: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Sign an operator token.

    `claims` carries at least `sub` (the user id) and usually `role`.
    The token expires after ACCESS_TOKEN_EXPIRE_MINUTES unless
    `expires_delta` overrides it.
    """
    payload = dict(claims)
    if "sub" in payload:
        # jose only accepts string subjects
        payload["sub"] = str(payload["sub"])
    issued_at = datetime.now(timezone.utc)
    payload.update({
        "type": TOKEN_TYPE,
        "jti": uuid.uuid4().hex,
        "iat": issued_at,
        "exp": issued_at + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)),
    })
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """Claims of a valid, unexpired operator token, or None."""
    try:
        return jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
            options={"verify_sub": False},
        )
    except JWTError:
        return None
