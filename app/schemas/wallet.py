from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from app.models.wallet import WalletTransactionType


class WalletMovementRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)
    description: str = Field(..., min_length=1, max_length=200)


class WalletTransactionResponse(BaseModel):
    id: UUID
    sequence: int
    type: WalletTransactionType
    amount: Decimal
    description: str
    actor_id: UUID
    payment_record_id: Optional[UUID] = None
    date: datetime
    previous_balance: Decimal
    new_balance: Decimal

    class Config:
        from_attributes = True


class WalletResponse(BaseModel):
    balance: Decimal
    updated_at: Optional[datetime] = None
    transactions: List[WalletTransactionResponse] = Field(default_factory=list)


class WalletAuditMismatch(BaseModel):
    sequence: int
    field: str
    expected: str
    recorded: str


class WalletAuditResponse(BaseModel):
    balance: Decimal
    replayed_balance: Decimal
    total_credits: Decimal
    total_debits: Decimal
    transaction_count: int
    consistent: bool
    mismatches: List[WalletAuditMismatch]
