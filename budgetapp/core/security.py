"""
Security utilities - password hashing, session tokens

Session tokens are stateless HS256 JWTs carrying {sub, email, role} plus
exp/iat/jti. The jti lets the token blacklist revoke individual tokens.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from jose import JWTError, jwt

from budgetapp.core.config import settings
from budgetapp.core.token_blacklist import token_blacklist

# bcrypt only looks at the first 72 bytes; newer releases raise instead of truncating
BCRYPT_MAX_BYTES = 72

ACCESS_TOKEN_TYPE = "access"


@dataclass(frozen=True)
class SessionClaims:
    """Identity carried by a valid session token."""
    user_id: int
    email: str
    role: str
    jti: str
    issued_at: datetime
    expires_at: datetime


def _password_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash"""
    try:
        return bcrypt.checkpw(
            _password_bytes(plain_password),
            hashed_password.encode("utf-8")
        )
    except ValueError:
        # Malformed stored hash
        return False


def get_password_hash(password: str) -> str:
    """Generate password hash"""
    return bcrypt.hashpw(
        _password_bytes(password),
        bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)
    ).decode("utf-8")


def create_access_token(
    user_id: int,
    email: str,
    role: str,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create a signed session token for a user."""
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(days=settings.ACCESS_TOKEN_EXPIRE_DAYS))
    to_encode = {
        # RFC 7519: sub must be a string
        "sub": str(user_id),
        "email": email,
        "role": role,
        "type": ACCESS_TOKEN_TYPE,
        "jti": str(uuid.uuid4()),
        # Fractional iat so "revoke all before now" is exact within a second
        "iat": now.timestamp(),
        "exp": expire,
    }
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """Decode and validate JWT signature and expiry. None on any failure."""
    try:
        return jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
        )
    except JWTError:
        return None


async def verify_session_token(token: str) -> Optional[SessionClaims]:
    """
    Validate a session token and return its claims.

    Bad signature, expiry, malformed payload, wrong token type and revoked
    tokens all collapse to None. Callers treat None as unauthenticated.
    """
    payload = decode_token(token)
    if not payload or payload.get("type") != ACCESS_TOKEN_TYPE:
        return None

    try:
        claims = SessionClaims(
            user_id=int(payload["sub"]),
            email=payload["email"],
            role=payload["role"],
            jti=payload["jti"],
            issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )
    except (KeyError, TypeError, ValueError):
        return None

    if await token_blacklist.is_revoked(claims):
        return None

    return claims
