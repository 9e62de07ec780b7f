"""
API dependencies

Collaborators (rate limiter, email sender) live on app.state and are set up
in the application lifespan. Tests replace them with dependency_overrides.
"""
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from budgetapp.core.database import get_db
from budgetapp.core.exceptions import Unauthorized
from budgetapp.core.rate_limit import InMemoryRateLimitBackend, RateLimiter
from budgetapp.core.config import settings
from budgetapp.core.security import SessionClaims, verify_session_token
from budgetapp.models.user import User
from budgetapp.services.auth_email_service import AuthEmailService, EmailSender
from budgetapp.services.auth_service import AuthService
from budgetapp.services.otp_service import OtpService

# auto_error=False so a missing header goes through our own 401 envelope
security = HTTPBearer(auto_error=False)


def get_rate_limiter(request: Request) -> RateLimiter:
    limiter = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        limiter = RateLimiter(InMemoryRateLimitBackend(), enabled=settings.RATE_LIMIT_ENABLED)
        request.app.state.rate_limiter = limiter
    return limiter


def get_email_sender(request: Request) -> EmailSender:
    sender = getattr(request.app.state, "email_sender", None)
    if sender is None:
        sender = AuthEmailService()
        request.app.state.email_sender = sender
    return sender


def get_otp_service(
    db: AsyncSession = Depends(get_db),
    email_sender: EmailSender = Depends(get_email_sender),
) -> OtpService:
    return OtpService(db, email_sender)


def get_auth_service(
    db: AsyncSession = Depends(get_db),
    email_sender: EmailSender = Depends(get_email_sender),
) -> AuthService:
    return AuthService(db, email_sender)


async def get_current_claims(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> SessionClaims:
    """Validated session claims; 401 for missing, invalid, expired or revoked tokens."""
    if credentials is None:
        raise Unauthorized()

    claims = await verify_session_token(credentials.credentials)
    if claims is None:
        raise Unauthorized("Invalid or expired token")
    return claims


async def get_current_user(
    claims: SessionClaims = Depends(get_current_claims),
    auth_service: AuthService = Depends(get_auth_service),
) -> User:
    """Get current authenticated user"""
    user = await auth_service.get_user_by_id(claims.user_id)
    if user is None:
        raise Unauthorized("Invalid or expired token")
    return user
