from app.db.base import Base

# Import all models so Alembic can detect them
from app.models.user import User, UserRoleEnum, YearTier
from app.models.payment import (
    PaymentRecord,
    PaymentStatusHistory,
    PaymentStatus,
    PaymentMethod,
    TreasurerNote,
)
from app.models.monthly_record import MonthlyRecordTemplate, TemplateStatus
from app.models.wallet import Wallet, WalletTransaction, WalletTransactionType
from app.models.settings import ClubSettings, TreasurerUPIHistory

__all__ = [
    "Base",
    "User",
    "UserRoleEnum",
    "YearTier",
    "PaymentRecord",
    "PaymentStatusHistory",
    "PaymentStatus",
    "PaymentMethod",
    "TreasurerNote",
    "MonthlyRecordTemplate",
    "TemplateStatus",
    "Wallet",
    "WalletTransaction",
    "WalletTransactionType",
    "ClubSettings",
    "TreasurerUPIHistory",
]
