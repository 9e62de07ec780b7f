"""
Financial records owned by a user

Every table here carries a user_id foreign key. CRUD endpoints for these
records live outside the auth service; the models are needed here to seed
default categories at registration and to delete everything a user owns
when the account is deleted.
"""
import enum
from datetime import datetime, timezone
from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Numeric, Text, ForeignKey, Enum as SQLEnum
)

from budgetapp.core.database import Base


class CategoryType(str, enum.Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


class TransactionType(str, enum.Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"
    TRANSFER = "TRANSFER"


class SettlementStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    OVERDUE = "OVERDUE"


def _utcnow():
    return datetime.now(timezone.utc)


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    type = Column(SQLEnum(CategoryType, name="category_type"), nullable=False)
    color = Column(String(16), nullable=True)
    icon = Column(String(16), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True)
    amount = Column(Numeric(14, 2), nullable=False)
    description = Column(Text, nullable=True)
    date = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    type = Column(SQLEnum(TransactionType, name="transaction_type"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class Asset(Base):
    __tablename__ = "assets"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    type = Column(String(50), nullable=False)
    value = Column(Numeric(14, 2), nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class Liability(Base):
    __tablename__ = "liabilities"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    type = Column(String(50), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class Receivable(Base):
    __tablename__ = "receivables"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    due_date = Column(DateTime(timezone=True), nullable=True)
    status = Column(SQLEnum(SettlementStatus, name="receivable_status"), nullable=False, default=SettlementStatus.PENDING)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class Payable(Base):
    __tablename__ = "payables"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    due_date = Column(DateTime(timezone=True), nullable=True)
    status = Column(SQLEnum(SettlementStatus, name="payable_status"), nullable=False, default=SettlementStatus.PENDING)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class UserSettings(Base):
    __tablename__ = "user_settings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)

    currency = Column(String(8), nullable=False, default="USD")
    date_format = Column(String(16), nullable=False, default="MM/DD/YYYY")
    theme = Column(String(16), nullable=False, default="system")
    language = Column(String(8), nullable=False, default="en")

    email_notifications = Column(Boolean, nullable=False, default=True)
    transaction_alerts = Column(Boolean, nullable=False, default=True)
    monthly_reports = Column(Boolean, nullable=False, default=False)
    budget_alerts = Column(Boolean, nullable=False, default=True)

    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


# Deletion order for account removal: children before parents
OWNED_MODELS = (
    UserSettings,
    Transaction,
    Receivable,
    Payable,
    Asset,
    Liability,
    Category,
)
