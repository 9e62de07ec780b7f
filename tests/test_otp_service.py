"""
Tests for the OTP lifecycle: issue, verify, expiry and cleanup.
"""
import asyncio

import pytest
from fastapi import BackgroundTasks
from sqlalchemy import func, select

from budgetapp.core.exceptions import AlreadyRegistered, InvalidOrExpiredCode, ValidationError
from budgetapp.models.otp import EmailOTP, OtpPurpose
from budgetapp.services.auth_email_service import EmailKind
from budgetapp.services.otp_service import OtpService, generate_code

from conftest import RecordingEmailSender

EMAIL = "a@x.com"


async def count_codes(db, email=EMAIL, purpose=OtpPurpose.EMAIL_VERIFICATION) -> int:
    result = await db.execute(
        select(func.count(EmailOTP.id)).where(EmailOTP.email == email, EmailOTP.purpose == purpose)
    )
    return result.scalar_one()


@pytest.fixture
def otp_service(db, email_sender, clock):
    return OtpService(db, email_sender, clock=clock)


class TestGenerateCode:

    def test_codes_are_six_digits_without_leading_zero(self):
        for _ in range(500):
            code = generate_code()
            assert len(code) == 6
            assert code.isdigit()
            assert 100000 <= int(code) <= 999999


class TestSendCode:

    @pytest.mark.asyncio
    async def test_send_persists_and_emails_code(self, otp_service, email_sender, db, clock):
        issue = await otp_service.send_code("A@X.com ", OtpPurpose.EMAIL_VERIFICATION)

        assert issue.issued
        assert email_sender.last_code(EMAIL, EmailKind.OTP_EMAIL_VERIFICATION) == issue.code

        record = (await db.execute(select(EmailOTP).where(EmailOTP.email == EMAIL))).scalar_one()
        assert record.code == issue.code
        assert record.verified is False
        assert record.user_id is None

    @pytest.mark.asyncio
    async def test_second_send_invalidates_first_code(self, otp_service, db):
        """Only the newest code for (email, purpose) stays usable."""
        first = await otp_service.send_code(EMAIL, OtpPurpose.EMAIL_VERIFICATION)
        second = await otp_service.send_code(EMAIL, OtpPurpose.EMAIL_VERIFICATION)

        assert await count_codes(db) == 1

        if first.code != second.code:
            with pytest.raises(InvalidOrExpiredCode):
                await otp_service.verify_code(EMAIL, first.code, OtpPurpose.EMAIL_VERIFICATION)

        record = await otp_service.verify_code(EMAIL, second.code, OtpPurpose.EMAIL_VERIFICATION)
        assert record.verified is True

    @pytest.mark.asyncio
    async def test_purposes_do_not_replace_each_other(self, otp_service, db, create_user):
        await create_user(email="b@x.com")

        await otp_service.send_code("b@x.com", OtpPurpose.PASSWORD_RESET)
        await otp_service.send_code("c@x.com", OtpPurpose.EMAIL_VERIFICATION)
        await otp_service.send_code("b@x.com", OtpPurpose.PASSWORD_RESET)

        assert await count_codes(db, "b@x.com", OtpPurpose.PASSWORD_RESET) == 1
        assert await count_codes(db, "c@x.com", OtpPurpose.EMAIL_VERIFICATION) == 1

    @pytest.mark.asyncio
    async def test_verification_for_registered_email_fails(self, otp_service, create_user, email_sender):
        await create_user(email=EMAIL)

        with pytest.raises(AlreadyRegistered):
            await otp_service.send_code(EMAIL, OtpPurpose.EMAIL_VERIFICATION)

        assert email_sender.sent == []

    @pytest.mark.asyncio
    async def test_reset_for_unknown_email_generates_nothing(self, otp_service, db, email_sender):
        issue = await otp_service.send_code("ghost@x.com", OtpPurpose.PASSWORD_RESET)

        assert not issue.issued
        assert issue.code is None
        assert await count_codes(db, "ghost@x.com", OtpPurpose.PASSWORD_RESET) == 0
        assert email_sender.sent == []

    @pytest.mark.asyncio
    async def test_reset_code_is_linked_to_user(self, otp_service, db, create_user):
        user = await create_user(email=EMAIL)

        await otp_service.send_code(EMAIL, OtpPurpose.PASSWORD_RESET)

        record = (await db.execute(select(EmailOTP))).scalar_one()
        assert record.user_id == user.id
        assert record.purpose == OtpPurpose.PASSWORD_RESET

    @pytest.mark.asyncio
    async def test_email_queued_on_background_tasks(self, otp_service, db, email_sender):
        tasks = BackgroundTasks()

        issue = await otp_service.send_code(EMAIL, OtpPurpose.EMAIL_VERIFICATION, tasks)

        # Code is stored before anything is sent
        assert await count_codes(db) == 1
        assert email_sender.sent == []
        assert len(tasks.tasks) == 1

        await tasks()

        assert email_sender.last_code(EMAIL, EmailKind.OTP_EMAIL_VERIFICATION) == issue.code

    @pytest.mark.asyncio
    async def test_queued_email_failure_is_swallowed(self, db, clock):
        service = OtpService(db, RecordingEmailSender(fail=True), clock=clock)
        tasks = BackgroundTasks()

        await service.send_code(EMAIL, OtpPurpose.EMAIL_VERIFICATION, tasks)
        await tasks()

        assert await count_codes(db) == 1

    @pytest.mark.asyncio
    async def test_invalid_email_rejected(self, otp_service):
        with pytest.raises(ValidationError):
            await otp_service.send_code("not-an-email", OtpPurpose.EMAIL_VERIFICATION)

    @pytest.mark.asyncio
    async def test_email_failure_does_not_fail_send(self, db, clock):
        service = OtpService(db, RecordingEmailSender(fail=True), clock=clock)

        issue = await service.send_code(EMAIL, OtpPurpose.EMAIL_VERIFICATION)

        assert issue.issued
        # The code is still valid even though delivery failed
        record = await service.verify_code(EMAIL, issue.code, OtpPurpose.EMAIL_VERIFICATION)
        assert record.verified is True

    @pytest.mark.asyncio
    async def test_concurrent_sends_leave_one_active_code(self, session_factory, clock):
        """Two near-simultaneous sends: last writer wins, one row remains."""
        sender = RecordingEmailSender()

        async def send():
            async with session_factory() as session:
                service = OtpService(session, sender, clock=clock)
                return await service.send_code(EMAIL, OtpPurpose.EMAIL_VERIFICATION)

        first, second = await asyncio.gather(send(), send())

        async with session_factory() as session:
            rows = (await session.execute(select(EmailOTP))).scalars().all()
            assert len(rows) == 1
            surviving = rows[0].code
            assert surviving in (first.code, second.code)

            service = OtpService(session, sender, clock=clock)
            other = second.code if surviving == first.code else first.code
            if other != surviving:
                with pytest.raises(InvalidOrExpiredCode):
                    await service.verify_code(EMAIL, other, OtpPurpose.EMAIL_VERIFICATION)
            await service.verify_code(EMAIL, surviving, OtpPurpose.EMAIL_VERIFICATION)


class TestVerifyCode:

    @pytest.mark.asyncio
    async def test_verify_succeeds_exactly_once(self, otp_service):
        issue = await otp_service.send_code(EMAIL, OtpPurpose.EMAIL_VERIFICATION)

        await otp_service.verify_code(EMAIL, issue.code, OtpPurpose.EMAIL_VERIFICATION)

        with pytest.raises(InvalidOrExpiredCode):
            await otp_service.verify_code(EMAIL, issue.code, OtpPurpose.EMAIL_VERIFICATION)

    @pytest.mark.asyncio
    async def test_wrong_code_rejected(self, otp_service):
        await otp_service.send_code(EMAIL, OtpPurpose.EMAIL_VERIFICATION)

        with pytest.raises(InvalidOrExpiredCode):
            await otp_service.verify_code(EMAIL, "000000", OtpPurpose.EMAIL_VERIFICATION)

    @pytest.mark.asyncio
    async def test_code_expires_after_ten_minutes(self, otp_service, clock):
        issue = await otp_service.send_code(EMAIL, OtpPurpose.EMAIL_VERIFICATION)

        clock.advance(minutes=10, seconds=1)

        with pytest.raises(InvalidOrExpiredCode):
            await otp_service.verify_code(EMAIL, issue.code, OtpPurpose.EMAIL_VERIFICATION)

    @pytest.mark.asyncio
    async def test_code_valid_just_before_expiry(self, otp_service, clock):
        issue = await otp_service.send_code(EMAIL, OtpPurpose.EMAIL_VERIFICATION)

        clock.advance(minutes=9, seconds=59)

        record = await otp_service.verify_code(EMAIL, issue.code, OtpPurpose.EMAIL_VERIFICATION)
        assert record.verified is True

    @pytest.mark.asyncio
    async def test_code_is_scoped_to_purpose(self, otp_service, create_user):
        await create_user(email=EMAIL)
        issue = await otp_service.send_code(EMAIL, OtpPurpose.PASSWORD_RESET)

        with pytest.raises(InvalidOrExpiredCode):
            await otp_service.verify_code(EMAIL, issue.code, OtpPurpose.EMAIL_VERIFICATION)

    @pytest.mark.asyncio
    async def test_email_lookup_is_case_insensitive(self, otp_service):
        issue = await otp_service.send_code(EMAIL, OtpPurpose.EMAIL_VERIFICATION)

        record = await otp_service.verify_code("A@X.COM", issue.code, OtpPurpose.EMAIL_VERIFICATION)
        assert record.email == EMAIL

    @pytest.mark.asyncio
    async def test_verified_row_survives_for_registration(self, otp_service, db, clock):
        issue = await otp_service.send_code(EMAIL, OtpPurpose.EMAIL_VERIFICATION)
        await otp_service.verify_code(EMAIL, issue.code, OtpPurpose.EMAIL_VERIFICATION)

        assert await count_codes(db) == 1
        assert await otp_service.has_recent_verification(EMAIL, OtpPurpose.EMAIL_VERIFICATION)

        clock.advance(minutes=29)
        assert await otp_service.has_recent_verification(EMAIL, OtpPurpose.EMAIL_VERIFICATION)

        clock.advance(minutes=2)
        assert not await otp_service.has_recent_verification(EMAIL, OtpPurpose.EMAIL_VERIFICATION)

    @pytest.mark.asyncio
    async def test_unverified_code_is_not_a_verification(self, otp_service):
        await otp_service.send_code(EMAIL, OtpPurpose.EMAIL_VERIFICATION)

        assert not await otp_service.has_recent_verification(EMAIL, OtpPurpose.EMAIL_VERIFICATION)


class TestFindLiveCode:

    @pytest.mark.asyncio
    async def test_live_reset_code_found_until_expiry(self, otp_service, create_user, clock):
        await create_user(email=EMAIL)
        issue = await otp_service.send_code(EMAIL, OtpPurpose.PASSWORD_RESET)

        assert await otp_service.find_live_code(EMAIL, issue.code, OtpPurpose.PASSWORD_RESET) is not None

        # Checking the code first does not use it up
        await otp_service.verify_code(EMAIL, issue.code, OtpPurpose.PASSWORD_RESET)
        assert await otp_service.find_live_code(EMAIL, issue.code, OtpPurpose.PASSWORD_RESET) is not None

        clock.advance(minutes=11)
        assert await otp_service.find_live_code(EMAIL, issue.code, OtpPurpose.PASSWORD_RESET) is None


class TestPurgeStale:

    @pytest.mark.asyncio
    async def test_purge_removes_expired_and_old_verified(self, otp_service, db, clock):
        expired = await otp_service.send_code("expired@x.com", OtpPurpose.EMAIL_VERIFICATION)
        verified = await otp_service.send_code("verified@x.com", OtpPurpose.EMAIL_VERIFICATION)
        await otp_service.verify_code("verified@x.com", verified.code, OtpPurpose.EMAIL_VERIFICATION)

        clock.advance(minutes=15)
        await otp_service.send_code("fresh@x.com", OtpPurpose.EMAIL_VERIFICATION)

        # expired row goes, verified row is still inside its window
        assert await otp_service.purge_stale() == 1
        assert await count_codes(db, "expired@x.com") == 0
        assert await count_codes(db, "verified@x.com") == 1
        assert await count_codes(db, "fresh@x.com") == 1
        assert expired.issued

        clock.advance(minutes=16)
        # verified row is past the 30 minute window, fresh row past expiry
        assert await otp_service.purge_stale() == 2
        assert (await db.execute(select(func.count(EmailOTP.id)))).scalar_one() == 0
