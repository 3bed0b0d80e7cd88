"""
Identity-provider token handling.

Accounts and credentials live with the external identity provider; this
module only decodes the bearer tokens it issues to find the caller's uid.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from pydantic import BaseModel

from batchat.config import settings


class TokenData(BaseModel):
    """Data extracted from an identity-provider token."""

    user_id: str
    email: Optional[str] = None
    exp: datetime


def create_access_token(user_id: str, email: Optional[str] = None, expires_minutes: int = 30) -> str:
    """
    Mint a token the way the identity provider does (local runs and tests).

    Args:
        user_id: Account uid
        email: Account email
        expires_minutes: Lifetime of the token

    Returns:
        Encoded JWT token
    """
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "email": email,
        "exp": now + timedelta(minutes=expires_minutes),
        "iat": now,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> Optional[TokenData]:
    """
    Decode and validate a JWT token.

    Args:
        token: Encoded JWT token

    Returns:
        TokenData if valid and unexpired, None otherwise
    """
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None

    user_id = payload.get("sub")
    exp = payload.get("exp")
    if not user_id or exp is None:
        return None

    return TokenData(
        user_id=user_id,
        email=payload.get("email"),
        exp=datetime.fromtimestamp(exp, tz=timezone.utc),
    )
