from budgetapp.models.user import User, UserRole
from budgetapp.models.otp import EmailOTP, OtpPurpose
from budgetapp.models.finance import (
    Category,
    CategoryType,
    Transaction,
    TransactionType,
    Asset,
    Liability,
    Receivable,
    Payable,
    SettlementStatus,
    UserSettings,
    OWNED_MODELS,
)
