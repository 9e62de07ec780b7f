"""
Auth Service

Credential and session management on top of OtpService:
- register: consume a verified EMAIL_VERIFICATION code, create the user
- login / change_password / reset_password
- delete_account: remove the user and everything they own in one transaction

Negative outcomes on security-sensitive lookups collapse into generic errors
(InvalidCredentials, InvalidOrExpiredCode) so responses cannot be used to
discover accounts.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional

from fastapi import BackgroundTasks
from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from budgetapp.core.config import settings
from budgetapp.core.exceptions import (
    AlreadyRegistered,
    EmailNotVerified,
    InternalError,
    InvalidCredentials,
    InvalidOrExpiredCode,
    UserNotFound,
    ValidationError,
)
from budgetapp.core.security import create_access_token, get_password_hash, verify_password
from budgetapp.core.token_blacklist import token_blacklist
from budgetapp.core.utils import mask_email, normalize_email, utcnow
from budgetapp.models.finance import OWNED_MODELS
from budgetapp.models.otp import EmailOTP, OtpPurpose
from budgetapp.models.user import User, UserRole
from budgetapp.services.auth_email_service import EmailKind, EmailSender
from budgetapp.services.default_categories import build_default_categories
from budgetapp.services.otp_service import OtpService, clean_email

logger = logging.getLogger(__name__)

# Compared against when the email is unknown so login timing does not reveal it
_dummy_hash: Optional[str] = None


def _dummy_password_check(password: str) -> None:
    global _dummy_hash
    if _dummy_hash is None:
        _dummy_hash = get_password_hash("not-a-real-password")
    verify_password(password, _dummy_hash)


def check_password_length(password: str) -> None:
    if len(password) < settings.PASSWORD_MIN_LENGTH:
        raise ValidationError(
            f"Password must be at least {settings.PASSWORD_MIN_LENGTH} characters",
            details={"field": "password"},
        )


def issue_token(user: User) -> str:
    role = user.role.value if isinstance(user.role, UserRole) else str(user.role)
    return create_access_token(user_id=user.id, email=user.email, role=role)


@dataclass
class AuthResult:
    token: str
    user: User


class AuthService:
    """Accounts, passwords and session issuance."""

    def __init__(
        self,
        db: AsyncSession,
        email_sender: Optional[EmailSender] = None,
        otp_service: Optional[OtpService] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.email_sender = email_sender
        self.otp = otp_service or OtpService(db, email_sender, clock=clock)

    # ============================================================
    # Lookups
    # ============================================================

    async def get_user_by_id(self, user_id: int) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def get_user_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(
            select(User).where(User.email == normalize_email(email))
        )
        return result.scalar_one_or_none()

    # ============================================================
    # Registration and login
    # ============================================================

    async def register(
        self,
        email: str,
        name: str,
        password: str,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> AuthResult:
        """
        Create an account for an email proven by verify_code.

        The welcome email is queued on background_tasks when given.

        Raises:
            EmailNotVerified: no verified code within the window
            AlreadyRegistered: an account exists for the email
            ValidationError: password too short or empty name
        """
        email = clean_email(email)
        name = (name or "").strip()
        if not name:
            raise ValidationError("Name is required", details={"field": "name"})
        check_password_length(password)

        if not await self.otp.has_recent_verification(email, OtpPurpose.EMAIL_VERIFICATION):
            raise EmailNotVerified()

        if await self.get_user_by_email(email) is not None:
            raise AlreadyRegistered()

        user = User(
            email=email,
            name=name,
            hashed_password=get_password_hash(password),
            role=UserRole.USER,
            email_verified=True,
        )
        self.db.add(user)

        try:
            await self.db.flush()
            self.db.add_all(build_default_categories(user.id))
            await self.otp.delete_all(email, OtpPurpose.EMAIL_VERIFICATION)
            await self.db.commit()
        except IntegrityError:
            # Lost a race with a concurrent registration for the same email
            await self.db.rollback()
            raise AlreadyRegistered()

        await self.db.refresh(user)
        logger.info(f"User registered: {mask_email(email)} (id={user.id})")

        if background_tasks is not None:
            background_tasks.add_task(self._send_welcome, user.email, user.name)
        else:
            await self._send_welcome(user.email, user.name)
        return AuthResult(token=issue_token(user), user=user)

    async def _send_welcome(self, email: str, name: str) -> None:
        if self.email_sender is None:
            return
        try:
            await self.email_sender.send(email, EmailKind.WELCOME, {"name": name})
        except Exception as e:
            logger.error(f"Failed to send welcome email to {mask_email(email)}: {type(e).__name__}: {e}")

    async def login(self, email: str, password: str) -> AuthResult:
        """Raises InvalidCredentials for unknown email and wrong password alike."""
        user = await self.get_user_by_email(email)

        if user is None:
            _dummy_password_check(password)
            logger.info(f"Failed login for {mask_email(normalize_email(email))}")
            raise InvalidCredentials()

        if not verify_password(password, user.hashed_password):
            logger.info(f"Failed login for {mask_email(user.email)}")
            raise InvalidCredentials()

        logger.info(f"User logged in: {mask_email(user.email)} (id={user.id})")
        return AuthResult(token=issue_token(user), user=user)

    # ============================================================
    # Passwords
    # ============================================================

    async def reset_password(self, email: str, code: str, new_password: str) -> None:
        """
        Set a new password using a live PASSWORD_RESET code.

        The code is re-checked here rather than trusting an earlier
        verify_code call. Every session issued before the reset is revoked.

        Raises:
            ValidationError: password too short
            InvalidOrExpiredCode: no unexpired matching code
            UserNotFound: code exists but the account is gone
        """
        email = normalize_email(email)
        check_password_length(new_password)

        record = await self.otp.find_live_code(email, code, OtpPurpose.PASSWORD_RESET)
        if record is None:
            raise InvalidOrExpiredCode()

        user = await self.get_user_by_email(email)
        if user is None:
            raise UserNotFound()

        user.hashed_password = get_password_hash(new_password)
        user.clear_reset_token()
        await self.otp.delete_all(email, OtpPurpose.PASSWORD_RESET)
        await self.db.commit()

        await token_blacklist.revoke_all_for_user(user.id)
        logger.info(f"Password reset completed for {mask_email(email)} (id={user.id})")

    async def change_password(self, user_id: int, current_password: str, new_password: str) -> str:
        """
        Change the password of an authenticated user.

        Older sessions are revoked; returns a fresh token for the caller.

        Raises:
            UserNotFound: the account no longer exists
            InvalidCredentials: current password does not match
            ValidationError: new password too short
        """
        user = await self.get_user_by_id(user_id)
        if user is None:
            raise UserNotFound()

        if not verify_password(current_password, user.hashed_password):
            logger.info(f"Password change rejected for user {user_id}: wrong current password")
            raise InvalidCredentials("Current password is incorrect")

        check_password_length(new_password)

        user.hashed_password = get_password_hash(new_password)
        await self.db.commit()

        await token_blacklist.revoke_all_for_user(user.id)
        logger.info(f"Password changed for user {user_id}")
        return issue_token(user)

    # ============================================================
    # Profile
    # ============================================================

    async def update_profile(self, user_id: int, name: str, email: str) -> User:
        """
        Update name and email.

        Changing the email clears email_verified.

        Raises:
            UserNotFound, ValidationError, AlreadyRegistered
        """
        user = await self.get_user_by_id(user_id)
        if user is None:
            raise UserNotFound()

        name = (name or "").strip()
        if not name:
            raise ValidationError("Name is required", details={"field": "name"})
        email = clean_email(email)

        if email != user.email:
            existing = await self.get_user_by_email(email)
            if existing is not None and existing.id != user.id:
                raise AlreadyRegistered("Email is already taken")
            user.email = email
            user.email_verified = False

        user.name = name
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise AlreadyRegistered("Email is already taken")

        await self.db.refresh(user)
        logger.info(f"Profile updated for user {user_id}")
        return user

    # ============================================================
    # Account deletion
    # ============================================================

    async def _delete_owned(self, model, user_id: int) -> int:
        result = await self.db.execute(
            delete(model)
            .where(model.user_id == user_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def delete_account(self, user_id: int) -> Dict[str, int]:
        """
        Delete the user and every row they own, all or nothing.

        Returns the number of rows removed per table.

        Raises:
            UserNotFound: no such user
            InternalError: the transaction failed and was rolled back
        """
        user = await self.get_user_by_id(user_id)
        if user is None:
            raise UserNotFound()
        email = user.email

        removed: Dict[str, int] = {}
        try:
            for model in OWNED_MODELS:
                removed[model.__tablename__] = await self._delete_owned(model, user_id)

            otp_result = await self.db.execute(
                delete(EmailOTP)
                .where(or_(EmailOTP.user_id == user_id, EmailOTP.email == email))
                .execution_options(synchronize_session=False)
            )
            removed[EmailOTP.__tablename__] = otp_result.rowcount or 0

            await self.db.delete(user)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Account deletion failed for user {user_id}, rolled back: {type(e).__name__}: {e}")
            raise InternalError("Failed to delete account") from e

        await token_blacklist.revoke_all_for_user(user_id)
        logger.info(f"Account deleted: user {user_id} ({mask_email(email)}), rows removed: {removed}")
        return removed
