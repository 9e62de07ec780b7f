"""
One-time code model

A row proves (for a limited time) that someone controls an email address,
for one purpose. At most one active (unexpired, unverified) row exists per
(email, purpose): issuing deletes prior rows for the pair first.

Lifecycle per (email, purpose):
    NONE -> ISSUED -> VERIFIED -> CONSUMED (row deleted)
    ISSUED/VERIFIED -> EXPIRED as time passes
    ISSUED -> ISSUED on resend (old row replaced)
"""
import enum
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Index, Enum as SQLEnum

from budgetapp.core.database import Base


class OtpPurpose(str, enum.Enum):
    EMAIL_VERIFICATION = "EMAIL_VERIFICATION"
    PASSWORD_RESET = "PASSWORD_RESET"


class EmailOTP(Base):
    __tablename__ = "email_otps"

    id = Column(Integer, primary_key=True, index=True)

    # Not necessarily tied to a user yet (registration happens after verification)
    email = Column(String(320), nullable=False)
    code = Column(String(6), nullable=False)
    purpose = Column(SQLEnum(OtpPurpose, name="otp_purpose"), nullable=False)

    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    verified = Column(Boolean, nullable=False, default=False)
    verified_at = Column(DateTime(timezone=True), nullable=True)

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        Index("ix_email_otps_email_purpose", "email", "purpose"),
    )

    def __repr__(self):
        return f"<EmailOTP(id={self.id}, purpose={self.purpose}, verified={self.verified})>"
