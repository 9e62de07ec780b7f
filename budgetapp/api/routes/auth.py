"""
Authentication routes

Two layers of throttling:
- SlowAPI per-IP limits on every route (RATE_LIMIT_AUTH)
- Per-email attempt counters through the injected RateLimiter

OTP flow:
    register:        send-otp -> verify-otp -> register
    password reset:  forgot-password -> (verify-otp) -> reset-password

send-otp and forgot-password answer PASSWORD_RESET requests with the same
message whether or not the account exists. The otp field is only filled in
development with EXPOSE_DEBUG_CODES on. Emails are sent as background tasks
after the response, so response time does not depend on the email transport.
"""
from fastapi import APIRouter, BackgroundTasks, Depends, Request, status

from budgetapp.api.deps import (
    get_auth_service,
    get_current_claims,
    get_current_user,
    get_otp_service,
    get_rate_limiter,
)
from budgetapp.core.config import settings
from budgetapp.core.rate_limit import RateLimiter, limiter
from budgetapp.core.security import SessionClaims
from budgetapp.core.token_blacklist import token_blacklist
from budgetapp.core.utils import normalize_email
from budgetapp.models.otp import OtpPurpose
from budgetapp.models.user import User
from budgetapp.schemas.auth import (
    AuthResponse,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    PasswordChangedResponse,
    ProfileResponse,
    ProfileUpdate,
    RegisterRequest,
    ResetPasswordRequest,
    SendOtpRequest,
    UserResponse,
    VerifyOtpRequest,
    VerifyOtpResponse,
)
from budgetapp.services.auth_service import AuthService
from budgetapp.services.otp_service import OtpService

router = APIRouter()

OTP_SENT_MESSAGES = {
    OtpPurpose.EMAIL_VERIFICATION: "Verification code sent to your email",
    OtpPurpose.PASSWORD_RESET: "If an account exists with this email, a password reset code has been sent",
}


async def _issue_code(
    email: str,
    purpose: OtpPurpose,
    background_tasks: BackgroundTasks,
    rate_limiter: RateLimiter,
    otp_service: OtpService,
) -> MessageResponse:
    email = normalize_email(email)
    await rate_limiter.enforce(
        f"send-otp:{email}",
        settings.OTP_SEND_MAX_ATTEMPTS,
        settings.AUTH_WINDOW_SECONDS,
    )

    issue = await otp_service.send_code(email, purpose, background_tasks)

    return MessageResponse(
        message=OTP_SENT_MESSAGES[purpose],
        otp=issue.code if settings.debug_codes_enabled else None,
    )


@router.post("/send-otp", response_model=MessageResponse, response_model_exclude_none=True)
@limiter.limit(settings.RATE_LIMIT_AUTH)
async def send_otp(
    request: Request,
    body: SendOtpRequest,
    background_tasks: BackgroundTasks,
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    otp_service: OtpService = Depends(get_otp_service),
):
    """
    Send a 6-digit code for email verification or password reset.

    EMAIL_VERIFICATION fails with ALREADY_REGISTERED for existing accounts.
    PASSWORD_RESET always reports success.
    """
    return await _issue_code(body.email, body.purpose, background_tasks, rate_limiter, otp_service)


@router.post("/forgot-password", response_model=MessageResponse, response_model_exclude_none=True)
@limiter.limit(settings.RATE_LIMIT_AUTH)
async def forgot_password(
    request: Request,
    body: ForgotPasswordRequest,
    background_tasks: BackgroundTasks,
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    otp_service: OtpService = Depends(get_otp_service),
):
    """Send a password reset code. Response is identical for unknown emails."""
    return await _issue_code(body.email, OtpPurpose.PASSWORD_RESET, background_tasks, rate_limiter, otp_service)


@router.post("/verify-otp", response_model=VerifyOtpResponse)
@limiter.limit(settings.RATE_LIMIT_AUTH)
async def verify_otp(
    request: Request,
    body: VerifyOtpRequest,
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    otp_service: OtpService = Depends(get_otp_service),
):
    """Check a code. Wrong, expired and used codes all fail the same way."""
    email = normalize_email(body.email)
    await rate_limiter.enforce(
        f"verify-otp:{email}",
        settings.AUTH_MAX_ATTEMPTS,
        settings.AUTH_WINDOW_SECONDS,
    )

    await otp_service.verify_code(email, body.code, body.purpose)
    return VerifyOtpResponse(email=email)


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.RATE_LIMIT_AUTH)
async def register(
    request: Request,
    body: RegisterRequest,
    background_tasks: BackgroundTasks,
    auth_service: AuthService = Depends(get_auth_service),
):
    """Create an account for an email verified through verify-otp."""
    result = await auth_service.register(body.email, body.name, body.password, background_tasks)
    return AuthResponse(token=result.token, user=UserResponse.model_validate(result.user))


@router.post("/login", response_model=AuthResponse)
@limiter.limit(settings.RATE_LIMIT_AUTH)
async def login(
    request: Request,
    body: LoginRequest,
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Login and get a session token."""
    email = normalize_email(body.email)
    key = f"login:{email}"
    await rate_limiter.enforce(key, settings.AUTH_MAX_ATTEMPTS, settings.AUTH_WINDOW_SECONDS)

    result = await auth_service.login(email, body.password)

    await rate_limiter.reset(key)
    return AuthResponse(token=result.token, user=UserResponse.model_validate(result.user))


@router.post("/reset-password", response_model=MessageResponse, response_model_exclude_none=True)
@limiter.limit(settings.RATE_LIMIT_AUTH)
async def reset_password(
    request: Request,
    body: ResetPasswordRequest,
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Set a new password with a reset code. All existing sessions are revoked."""
    email = normalize_email(body.email)
    await rate_limiter.enforce(
        f"reset:{email}",
        settings.AUTH_MAX_ATTEMPTS,
        settings.AUTH_WINDOW_SECONDS,
    )

    await auth_service.reset_password(email, body.code, body.new_password)
    return MessageResponse(message="Password reset successfully. You can now log in with your new password.")


@router.post("/change-password", response_model=PasswordChangedResponse)
@limiter.limit(settings.RATE_LIMIT_AUTH)
async def change_password(
    request: Request,
    body: ChangePasswordRequest,
    claims: SessionClaims = Depends(get_current_claims),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Change password (requires current password). Returns a replacement token."""
    token = await auth_service.change_password(
        claims.user_id, body.current_password, body.new_password
    )
    return PasswordChangedResponse(token=token)


@router.delete("/delete-account", response_model=MessageResponse, response_model_exclude_none=True)
@limiter.limit(settings.RATE_LIMIT_AUTH)
async def delete_account(
    request: Request,
    claims: SessionClaims = Depends(get_current_claims),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Delete the account and all of its financial data."""
    await auth_service.delete_account(claims.user_id)
    return MessageResponse(message="Account deleted successfully")


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: User = Depends(get_current_user)):
    """Get current user info"""
    return current_user


@router.put("/profile", response_model=ProfileResponse)
@limiter.limit(settings.RATE_LIMIT_AUTH)
async def update_profile(
    request: Request,
    body: ProfileUpdate,
    claims: SessionClaims = Depends(get_current_claims),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Update name and email. Email must not belong to another account."""
    user = await auth_service.update_profile(claims.user_id, body.name, body.email)
    return ProfileResponse(
        message="Profile updated successfully",
        user=UserResponse.model_validate(user),
    )


@router.post("/logout", response_model=MessageResponse, response_model_exclude_none=True)
async def logout(claims: SessionClaims = Depends(get_current_claims)):
    """Revoke the presented token."""
    await token_blacklist.revoke(claims)
    return MessageResponse(message="Logged out successfully")
