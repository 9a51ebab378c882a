from sqlalchemy import (
    Column, String, ForeignKey, DateTime, Numeric, Integer, Boolean, Text, Index,
    UniqueConstraint, Enum as SQLEnum, Uuid, text, func, event,
)
from sqlalchemy.orm import relationship
import uuid
from app.db.base import Base
import enum


class PaymentStatus(str, enum.Enum):
    """Official payment status. Only this status moves money or is shown to members."""
    PENDING = "Pending"
    AWAITING_VERIFICATION = "AwaitingVerification"
    PAID = "Paid"
    FAILED = "Failed"


class PaymentMethod(str, enum.Enum):
    """How the member paid."""
    UPI = "UPI"
    CASH = "Cash"
    BANK_TRANSFER = "Bank Transfer"
    OTHER = "Other"


# Methods a treasurer may record for offline payments
OFFLINE_METHODS = (PaymentMethod.CASH, PaymentMethod.BANK_TRANSFER, PaymentMethod.OTHER)

_status_enum = SQLEnum(PaymentStatus, native_enum=False, values_callable=lambda obj: [e.value for e in obj])


class PaymentRecord(Base):
    """Monthly group fund due of one member (GroupFund)."""
    __tablename__ = "payment_record"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    member_id = Column(Uuid(as_uuid=True), ForeignKey("user.id"), nullable=False, index=True)
    month = Column(String(10), nullable=False)  # e.g. "March"
    month_number = Column(Integer, nullable=False)  # 1-12, for sorting
    year = Column(Integer, nullable=False)
    academic_year = Column(String(9), nullable=False)  # e.g. "2024-2025"
    amount = Column(Numeric(10, 2), nullable=False)
    status = Column(_status_enum, default=PaymentStatus.PENDING, nullable=False)
    payment_reference = Column(String(50), nullable=False, unique=True, index=True)
    payment_method = Column(SQLEnum(PaymentMethod, native_enum=False, values_callable=lambda obj: [e.value for e in obj]), default=PaymentMethod.UPI, nullable=False)
    deadline = Column(DateTime, nullable=False)

    member_confirmed_payment = Column(Boolean, default=False, nullable=False)
    member_confirmed_date = Column(DateTime, nullable=True)
    payment_proof = Column(String(500), nullable=True)  # blob store URL
    payment_date = Column(DateTime, nullable=True)

    verified_by = Column(Uuid(as_uuid=True), ForeignKey("user.id"), nullable=True)
    verified_date = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)

    # Pending resubmission of a Failed record; all three are cleared once judged
    resubmitted_photo = Column(String(500), nullable=True)
    resubmitted_date = Column(DateTime, nullable=True)
    resubmission_note = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP"))
    updated_at = Column(DateTime, nullable=True, onupdate=func.now())

    # Relationships
    member = relationship("User", back_populates="payment_records", foreign_keys=[member_id])
    verifier = relationship("User", foreign_keys=[verified_by])
    status_history = relationship(
        "PaymentStatusHistory",
        back_populates="payment_record",
        order_by="PaymentStatusHistory.sequence",
        cascade="all, delete-orphan",
    )
    treasurer_note = relationship(
        "TreasurerNote",
        back_populates="payment_record",
        uselist=False,
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint("member_id", "month", "year", name="uq_payment_record_member_month"),
        Index("idx_payment_record_status_deadline", "status", "deadline"),
    )

    @property
    def has_pending_resubmission(self) -> bool:
        return self.resubmitted_photo is not None


class PaymentStatusHistory(Base):
    """Append-only audit trail of payment status changes."""
    __tablename__ = "payment_status_history"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    payment_record_id = Column(Uuid(as_uuid=True), ForeignKey("payment_record.id"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)  # position within the record's history
    status = Column(_status_enum, nullable=False)
    changed_by = Column(Uuid(as_uuid=True), ForeignKey("user.id"), nullable=True)  # None = reconciliation sweep
    changed_at = Column(DateTime, nullable=False)
    reason = Column(String(300), nullable=True)

    # Relationships
    payment_record = relationship("PaymentRecord", back_populates="status_history")

    __table_args__ = (
        UniqueConstraint("payment_record_id", "sequence", name="uq_payment_status_history_sequence"),
    )


@event.listens_for(PaymentStatusHistory, "before_update")
def _reject_history_update(mapper, connection, target):
    raise ValueError("Payment status history entries are immutable")


class TreasurerNote(Base):
    """Treasurer's internal "collected in cash" acknowledgement.

    Display-only bookkeeping for the treasurer's month roster. It never
    changes PaymentRecord.status, the wallet or a member's total_paid, and
    members never see it.
    """
    __tablename__ = "treasurer_note"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    payment_record_id = Column(Uuid(as_uuid=True), ForeignKey("payment_record.id"), nullable=False, unique=True, index=True)
    acknowledged_cash = Column(Boolean, default=True, nullable=False)
    method = Column(SQLEnum(PaymentMethod, native_enum=False, values_callable=lambda obj: [e.value for e in obj]), nullable=False)
    note = Column(Text, nullable=True)
    marked_by = Column(Uuid(as_uuid=True), ForeignKey("user.id"), nullable=False)
    marked_at = Column(DateTime, nullable=False)

    # Relationships
    payment_record = relationship("PaymentRecord", back_populates="treasurer_note")
