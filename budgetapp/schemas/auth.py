"""
Auth request/response schemas

Field aliases accept the camelCase names older web clients send
(otp, newPassword, currentPassword).
"""
from datetime import datetime
from typing import Optional
from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, field_validator

from budgetapp.core.config import settings
from budgetapp.core.utils import ensure_aware
from budgetapp.models.otp import OtpPurpose
from budgetapp.models.user import UserRole

CODE_PATTERN = r"^\d{6}$"


def _check_password_length(value: str) -> str:
    if len(value) < settings.PASSWORD_MIN_LENGTH:
        raise ValueError(f"Password must be at least {settings.PASSWORD_MIN_LENGTH} characters")
    return value


class SendOtpRequest(BaseModel):
    email: EmailStr
    purpose: OtpPurpose = OtpPurpose.EMAIL_VERIFICATION


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class VerifyOtpRequest(BaseModel):
    email: EmailStr
    code: str = Field(validation_alias=AliasChoices("code", "otp"), pattern=CODE_PATTERN)
    purpose: OtpPurpose = OtpPurpose.EMAIL_VERIFICATION


class RegisterRequest(BaseModel):
    email: EmailStr
    name: str = Field(min_length=1, max_length=100)
    password: str = Field(max_length=128)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name is required")
        return v

    @field_validator("password")
    @classmethod
    def check_password(cls, v: str) -> str:
        return _check_password_length(v)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)


class ResetPasswordRequest(BaseModel):
    email: EmailStr
    code: str = Field(validation_alias=AliasChoices("code", "otp"), pattern=CODE_PATTERN)
    new_password: str = Field(
        validation_alias=AliasChoices("new_password", "newPassword", "password"),
        max_length=128,
    )

    @field_validator("new_password")
    @classmethod
    def check_password(cls, v: str) -> str:
        return _check_password_length(v)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(
        validation_alias=AliasChoices("current_password", "currentPassword"),
        min_length=1,
        max_length=128,
    )
    new_password: str = Field(
        validation_alias=AliasChoices("new_password", "newPassword"),
        max_length=128,
    )

    @field_validator("new_password")
    @classmethod
    def check_password(cls, v: str) -> str:
        return _check_password_length(v)


class ProfileUpdate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    email: EmailStr


class UserResponse(BaseModel):
    """Public view of a user. Never carries the password hash."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    name: str
    role: UserRole
    email_verified: bool
    created_at: Optional[datetime] = None

    @field_validator("created_at")
    @classmethod
    def created_at_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_aware(v)


class AuthResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    user: UserResponse


class MessageResponse(BaseModel):
    message: str
    # Development-only echo of the issued code
    otp: Optional[str] = None


class VerifyOtpResponse(BaseModel):
    message: str = "Code verified successfully"
    email: str
    verified: bool = True


class ProfileResponse(BaseModel):
    message: str
    user: UserResponse


class PasswordChangedResponse(BaseModel):
    """Older sessions are revoked on change; token replaces the caller's."""
    message: str = "Password changed successfully"
    token: str
    token_type: str = "bearer"
