"""
OTP Service

Issues, verifies and consumes the 6-digit codes that prove control of an
email address for one purpose (email verification or password reset).

Per (email, purpose) pair:
    send_code    NONE/ISSUED/VERIFIED -> ISSUED  (prior rows deleted first)
    verify_code  ISSUED -> VERIFIED              (exactly once per issuance)
    consumers    VERIFIED/ISSUED -> CONSUMED     (rows deleted by AuthService)

Wrong, expired and already-used codes all fail with the same
InvalidOrExpiredCode. Email delivery is best-effort: a transport failure is
logged and never changes the outcome of send_code. Routes pass their
BackgroundTasks so the email goes out after the response; the request never
waits on the email transport.
"""
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from email_validator import EmailNotValidError, validate_email
from fastapi import BackgroundTasks
from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from budgetapp.core.config import settings
from budgetapp.core.exceptions import AlreadyRegistered, InvalidOrExpiredCode, ValidationError
from budgetapp.core.utils import mask_email, normalize_email, utcnow
from budgetapp.models.otp import EmailOTP, OtpPurpose
from budgetapp.models.user import User
from budgetapp.services.auth_email_service import EmailKind, EmailSender

logger = logging.getLogger(__name__)

CODE_MIN = 100000
CODE_MAX = 999999

_EMAIL_KIND_BY_PURPOSE = {
    OtpPurpose.EMAIL_VERIFICATION: EmailKind.OTP_EMAIL_VERIFICATION,
    OtpPurpose.PASSWORD_RESET: EmailKind.OTP_PASSWORD_RESET,
}


def generate_code() -> str:
    """Uniform 6-digit code in [100000, 999999]; never has a leading zero."""
    return str(CODE_MIN + secrets.randbelow(CODE_MAX - CODE_MIN + 1))


def clean_email(email: str) -> str:
    """Normalize and syntax-check an email address."""
    email = normalize_email(email)
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError as e:
        raise ValidationError("Invalid email address", details={"field": "email"}) from e
    return email


@dataclass(frozen=True)
class OtpIssue:
    """
    Outcome of send_code.

    issued is False when nothing was generated (password reset for an
    unknown email). The client-visible response must not depend on it.
    """
    issued: bool
    code: Optional[str] = None
    expires_at: Optional[datetime] = None


class OtpService:
    """One-time code lifecycle backed by the email_otps table."""

    def __init__(
        self,
        db: AsyncSession,
        email_sender: Optional[EmailSender] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.email_sender = email_sender
        self.clock = clock

    @property
    def expiry(self) -> timedelta:
        return timedelta(minutes=settings.OTP_EXPIRY_MINUTES)

    @property
    def verified_window(self) -> timedelta:
        return timedelta(minutes=settings.OTP_VERIFIED_WINDOW_MINUTES)

    async def _get_user(self, email: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

    # ============================================================
    # Issue
    # ============================================================

    async def send_code(
        self,
        email: str,
        purpose: OtpPurpose,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> OtpIssue:
        """
        Issue a fresh code for (email, purpose) and email it.

        With background_tasks the email is queued to run after the response,
        otherwise it is sent before returning.

        Raises:
            ValidationError: malformed email
            AlreadyRegistered: EMAIL_VERIFICATION for an existing account
        """
        email = clean_email(email)
        user_id: Optional[int] = None

        if purpose == OtpPurpose.EMAIL_VERIFICATION:
            if await self._get_user(email) is not None:
                raise AlreadyRegistered()
        elif purpose == OtpPurpose.PASSWORD_RESET:
            user = await self._get_user(email)
            if user is None:
                logger.info(f"Password reset code requested for unknown email {mask_email(email)}")
                return OtpIssue(issued=False)
            user_id = user.id
        else:  # pragma: no cover - closed enum
            raise ValueError(f"Unknown OTP purpose: {purpose}")

        now = self.clock()
        await self.delete_all(email, purpose)

        code = generate_code()
        record = EmailOTP(
            email=email,
            code=code,
            purpose=purpose,
            expires_at=now + self.expiry,
            verified=False,
            user_id=user_id,
            created_at=now,
        )
        self.db.add(record)
        await self.db.commit()

        logger.info(f"{purpose.value} code issued for {mask_email(email)}")

        if background_tasks is not None:
            background_tasks.add_task(self._dispatch, email, code, purpose)
        else:
            await self._dispatch(email, code, purpose)

        return OtpIssue(issued=True, code=code, expires_at=record.expires_at)

    async def _dispatch(self, email: str, code: str, purpose: OtpPurpose) -> None:
        """Email the code. Failures are logged and swallowed."""
        if self.email_sender is None:
            logger.warning(f"No email sender configured; {purpose.value} code for {mask_email(email)} not sent")
            return

        try:
            await self.email_sender.send(
                email,
                _EMAIL_KIND_BY_PURPOSE[purpose],
                {"code": code, "expire_minutes": settings.OTP_EXPIRY_MINUTES},
            )
        except Exception as e:
            logger.error(
                f"Failed to send {purpose.value} code to {mask_email(email)}: "
                f"{type(e).__name__}: {e}"
            )

    # ============================================================
    # Verify
    # ============================================================

    async def verify_code(self, email: str, code: str, purpose: OtpPurpose) -> EmailOTP:
        """
        Mark a matching, unexpired, unverified code as verified.

        The verified row is kept so the next step (registration) can find it;
        other verified or expired rows for the pair are removed.

        Raises:
            InvalidOrExpiredCode: no such active code (wrong, expired or used)
        """
        email = normalize_email(email)
        now = self.clock()

        result = await self.db.execute(
            select(EmailOTP)
            .where(
                EmailOTP.email == email,
                EmailOTP.code == code,
                EmailOTP.purpose == purpose,
                EmailOTP.verified.is_(False),
                EmailOTP.expires_at > now,
            )
            .order_by(EmailOTP.id.desc())
            .limit(1)
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise InvalidOrExpiredCode()

        # Conditional update so two racing verifications cannot both win
        claimed = await self.db.execute(
            update(EmailOTP)
            .where(EmailOTP.id == record.id, EmailOTP.verified.is_(False))
            .values(verified=True, verified_at=now)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            await self.db.rollback()
            raise InvalidOrExpiredCode()

        await self.db.execute(
            delete(EmailOTP)
            .where(
                EmailOTP.email == email,
                EmailOTP.purpose == purpose,
                EmailOTP.id != record.id,
                or_(EmailOTP.verified.is_(True), EmailOTP.expires_at <= now),
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        await self.db.refresh(record)

        logger.info(f"{purpose.value} code verified for {mask_email(email)}")
        return record

    # ============================================================
    # Queries used by the consuming steps
    # ============================================================

    async def has_recent_verification(self, email: str, purpose: OtpPurpose) -> bool:
        """True if a code for the pair was verified within the post-verification window."""
        email = normalize_email(email)
        cutoff = self.clock() - self.verified_window

        result = await self.db.execute(
            select(EmailOTP.id)
            .where(
                EmailOTP.email == email,
                EmailOTP.purpose == purpose,
                EmailOTP.verified.is_(True),
                EmailOTP.verified_at >= cutoff,
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def find_live_code(self, email: str, code: str, purpose: OtpPurpose) -> Optional[EmailOTP]:
        """
        Find an unexpired, unconsumed row matching the code.

        The verified flag is ignored: a reset code checked through verify_code
        beforehand is still usable until it expires or is consumed.
        """
        email = normalize_email(email)
        result = await self.db.execute(
            select(EmailOTP)
            .where(
                EmailOTP.email == email,
                EmailOTP.code == code,
                EmailOTP.purpose == purpose,
                EmailOTP.expires_at > self.clock(),
            )
            .order_by(EmailOTP.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    # ============================================================
    # Removal
    # ============================================================

    async def delete_all(self, email: str, purpose: OtpPurpose) -> int:
        """Delete every row for (email, purpose). Does not commit."""
        result = await self.db.execute(
            delete(EmailOTP)
            .where(EmailOTP.email == normalize_email(email), EmailOTP.purpose == purpose)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def purge_stale(self) -> int:
        """
        Delete unverified rows past expiry and verified rows past the
        post-verification window. Returns the number of rows removed.
        """
        now = self.clock()
        result = await self.db.execute(
            delete(EmailOTP)
            .where(
                or_(
                    and_(EmailOTP.verified.is_(False), EmailOTP.expires_at <= now),
                    and_(EmailOTP.verified.is_(True), EmailOTP.verified_at < now - self.verified_window),
                )
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        removed = result.rowcount or 0
        if removed:
            logger.info(f"Purged {removed} stale verification codes")
        return removed
