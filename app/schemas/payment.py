from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from app.models.payment import PaymentMethod, PaymentStatus
from app.models.user import YearTier


class MemberSummary(BaseModel):
    id: UUID
    name: str
    usn: str
    email: str
    year: YearTier
    branch: Optional[str] = None
    total_paid: Decimal

    class Config:
        from_attributes = True


class StatusHistoryResponse(BaseModel):
    sequence: int
    status: PaymentStatus
    changed_by: Optional[UUID] = None
    changed_at: datetime
    reason: Optional[str] = None

    class Config:
        from_attributes = True


class PaymentRecordResponse(BaseModel):
    """Payment record as members see it (no treasurer notes)."""
    id: UUID
    member_id: UUID
    month: str
    month_number: int
    year: int
    academic_year: str
    amount: Decimal
    status: PaymentStatus
    payment_reference: str
    payment_method: PaymentMethod
    deadline: datetime
    member_confirmed_payment: bool
    member_confirmed_date: Optional[datetime] = None
    payment_proof: Optional[str] = None
    payment_date: Optional[datetime] = None
    verified_by: Optional[UUID] = None
    verified_date: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    resubmitted_photo: Optional[str] = None
    resubmitted_date: Optional[datetime] = None
    resubmission_note: Optional[str] = None
    has_pending_resubmission: bool = False

    class Config:
        from_attributes = True


class PaymentRecordDetailResponse(PaymentRecordResponse):
    status_history: List[StatusHistoryResponse] = Field(default_factory=list)


class TreasurerNoteResponse(BaseModel):
    acknowledged_cash: bool
    method: PaymentMethod
    note: Optional[str] = None
    marked_by: UUID
    marked_at: datetime

    class Config:
        from_attributes = True


class TreasurerPaymentResponse(PaymentRecordResponse):
    """Payment record for treasurer queues, with member and internal note."""
    member: MemberSummary
    treasurer_note: Optional[TreasurerNoteResponse] = None


class PaymentSummaryResponse(BaseModel):
    total_records: int
    total_due: Decimal
    total_paid: Decimal
    outstanding: Decimal
    paid_count: int
    pending_count: int
    awaiting_count: int
    failed_count: int
    pending_resubmission_count: int


class QRCodeRequest(BaseModel):
    month: str = Field(..., description="Month name or number, e.g. 'March' or '3'")
    year: int = Field(..., ge=2020, le=2100)


class QRCodeResponse(BaseModel):
    record_id: UUID
    status: PaymentStatus
    reference: str
    upi_url: str
    upi_id: str
    payee_name: Optional[str] = None
    amount: Decimal
    fund_name: str
    member_name: Optional[str] = None
    member_usn: Optional[str] = None
    deadline: datetime


class RejectPaymentRequest(BaseModel):
    reason: str = Field(..., min_length=1, description="Why the payment was rejected")


class JudgeResubmissionRequest(BaseModel):
    approve: bool
    reason: Optional[str] = Field(None, description="Required when rejecting")


class ManualMarkPaidRequest(BaseModel):
    payment_method: PaymentMethod = PaymentMethod.CASH
    note: Optional[str] = None


class ManualPaymentCreate(BaseModel):
    member_id: UUID
    month: str
    year: int = Field(..., ge=2020, le=2100)
    amount: Decimal = Field(..., gt=0)
    payment_method: PaymentMethod = PaymentMethod.CASH
    note: Optional[str] = None


class RosterRow(BaseModel):
    member: MemberSummary
    record: Optional[PaymentRecordResponse] = None
    display_status: str
    orig_status: str
    treasurer_marked_paid: bool


class RosterSummary(BaseModel):
    total_members: int
    paid_count: int
    pending_count: int
    awaiting_count: int
    failed_count: int
    not_created_count: int
    not_required_count: int
    total_collected: Decimal


class MonthRosterResponse(BaseModel):
    month: str
    year: int
    rows: List[RosterRow]
    summary: RosterSummary


class StatisticsResponse(BaseModel):
    total_members: int
    total_collected: Decimal
    paid_count: int
    pending_count: int
    awaiting_count: int
    failed_count: int
    pending_resubmission_count: int
    wallet_balance: Decimal


class FailedPaymentItem(BaseModel):
    record_id: UUID
    member_id: UUID
    member_name: str
    member_usn: str
    member_year: str
    amount: Decimal
    rejection_reason: Optional[str] = None
    has_pending_resubmission: bool


class FailedMonthGroup(BaseModel):
    month: str
    year: int
    count: int
    total_amount: Decimal
    payments: List[FailedPaymentItem]


class MemberPaymentsOverview(BaseModel):
    member: MemberSummary
    total_due: Decimal
    total_paid: Decimal
    pending: Decimal
    failed: Decimal
    record_count: int
    payment_status: str


class MemberPaymentsResponse(BaseModel):
    member: MemberSummary
    records: List[PaymentRecordResponse]
