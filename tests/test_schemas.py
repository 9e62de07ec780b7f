"""
Tests for request/response schemas.
"""
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from budgetapp.models.user import User, UserRole
from budgetapp.schemas.auth import ResetPasswordRequest, UserResponse


class TestUserResponse:

    def test_reads_orm_user_without_password_hash(self):
        user = User(
            id=7,
            email="a@x.com",
            name="Alice",
            hashed_password="$2b$10$hash",
            role=UserRole.USER,
            email_verified=True,
            created_at=datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
        )

        body = UserResponse.model_validate(user).model_dump()

        assert body["id"] == 7
        assert body["role"] == UserRole.USER
        assert "hashed_password" not in body

    def test_naive_created_at_is_read_as_utc(self):
        # SQLite hands timestamps back without tzinfo
        user = User(
            id=7, email="a@x.com", name="Alice", hashed_password="x",
            role=UserRole.USER, email_verified=True,
            created_at=datetime(2026, 1, 2, 3, 4, 5),
        )

        created_at = UserResponse.model_validate(user).created_at

        assert created_at.utcoffset() == timedelta(0)
        assert created_at.replace(tzinfo=None) == datetime(2026, 1, 2, 3, 4, 5)

    def test_aware_created_at_is_kept(self):
        plus_two = timezone(timedelta(hours=2))
        user = User(
            id=7, email="a@x.com", name="Alice", hashed_password="x",
            role=UserRole.USER, email_verified=True,
            created_at=datetime(2026, 1, 2, 3, 4, 5, tzinfo=plus_two),
        )

        assert UserResponse.model_validate(user).created_at.utcoffset() == timedelta(hours=2)


class TestResetPasswordRequest:

    def test_camel_case_aliases(self):
        body = ResetPasswordRequest.model_validate(
            {"email": "a@x.com", "otp": "123456", "newPassword": "brand-new-password"}
        )

        assert body.code == "123456"
        assert body.new_password == "brand-new-password"

    def test_short_password_rejected(self):
        with pytest.raises(ValidationError):
            ResetPasswordRequest.model_validate(
                {"email": "a@x.com", "code": "123456", "password": "short"}
            )
