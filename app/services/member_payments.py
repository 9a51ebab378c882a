import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.exceptions import AlreadyVerified, Unauthorized, ValidationError
from app.models.payment import PaymentRecord, PaymentStatus
from app.models.user import User, UserRoleEnum
from app.services.club_settings import get_or_create_settings, get_treasurer_upi
from app.services.monthly_record import get_active_template
from app.services.payment import get_payment_record, new_payment_record
from app.services.payment_reference import build_qr_payload
from app.services.periods import default_deadline, parse_month, validate_year
from app.services.reconciliation import reconcile_records

logger = logging.getLogger(__name__)


def _find_record(db: Session, member_id: UUID, month: str, year: int) -> Optional[PaymentRecord]:
    return db.query(PaymentRecord).filter(
        PaymentRecord.member_id == member_id,
        PaymentRecord.month == month,
        PaymentRecord.year == year,
    ).first()


def generate_payment_qr(db: Session, member: User, month, year: int, now: Optional[datetime] = None) -> dict:
    """QR payload for the member's record of a month, creating the record if needed."""
    now = now or utcnow()
    month_name, month_number = parse_month(month)
    year = validate_year(year)

    upi_id = get_treasurer_upi(db)
    if not upi_id:
        raise ValidationError("Treasurer UPI ID is not configured yet")
    club_settings = get_or_create_settings(db)

    record = _find_record(db, member.id, month_name, year)
    if record is None:
        template = get_active_template(db, month_name, year)
        if template is not None:
            if not template.includes(member.year):
                raise ValidationError(f"Group fund for {month_name} {year} is not required for {member.year.value} year members")
            amount = template.amount_for(member.year) or Decimal("0.00")
            deadline = template.deadline
        else:
            amount = club_settings.fund_amount_for(member.year)
            deadline = default_deadline(month_number, year, club_settings.payment_deadline_day)

        record = new_payment_record(
            member, month_name, month_number, year, amount, deadline,
            "QR code generated", changed_by=member.id, now=now,
        )
        db.add(record)
        try:
            db.commit()
        except IntegrityError:
            # Another request created it first
            db.rollback()
            record = _find_record(db, member.id, month_name, year)
        else:
            db.refresh(record)
            logger.info("Created payment record %s for member %s via QR", record.id, member.id)

    if record.status == PaymentStatus.PAID:
        raise AlreadyVerified(f"Payment for {month_name} {year} is already verified")

    payload = build_qr_payload(record, upi_id, payee_name=club_settings.treasurer_name, member=member)
    payload["record_id"] = record.id
    payload["status"] = record.status
    return payload


def list_member_payments(db: Session, member: User, now: Optional[datetime] = None) -> List[PaymentRecord]:
    """Member's records newest month first, reconciled before they are read."""
    reconcile_records(db, now=now, member_id=member.id)
    return db.query(PaymentRecord).filter(
        PaymentRecord.member_id == member.id
    ).order_by(PaymentRecord.year.desc(), PaymentRecord.month_number.desc()).all()


def member_payment_summary(db: Session, member: User, now: Optional[datetime] = None) -> dict:
    records = list_member_payments(db, member, now=now)
    summary = {
        "total_records": len(records),
        "total_due": Decimal("0.00"),
        "total_paid": Decimal("0.00"),
        "paid_count": 0,
        "pending_count": 0,
        "awaiting_count": 0,
        "failed_count": 0,
        "pending_resubmission_count": 0,
    }
    for record in records:
        summary["total_due"] += record.amount
        if record.status == PaymentStatus.PAID:
            summary["paid_count"] += 1
            summary["total_paid"] += record.amount
        elif record.status == PaymentStatus.PENDING:
            summary["pending_count"] += 1
        elif record.status == PaymentStatus.AWAITING_VERIFICATION:
            summary["awaiting_count"] += 1
        elif record.status == PaymentStatus.FAILED:
            summary["failed_count"] += 1
            if record.resubmitted_photo:
                summary["pending_resubmission_count"] += 1
    summary["outstanding"] = summary["total_due"] - summary["total_paid"]
    return summary


def list_member_failed_payments(db: Session, member: User, now: Optional[datetime] = None) -> List[PaymentRecord]:
    return [r for r in list_member_payments(db, member, now=now) if r.status == PaymentStatus.FAILED]


def payment_history(db: Session, record_id: UUID, actor: User) -> PaymentRecord:
    """Record with its status history; visible to its owner and to the treasurer."""
    record = get_payment_record(db, record_id)
    if actor.role != UserRoleEnum.TREASURER and record.member_id != actor.id:
        raise Unauthorized("You can only view your own payments")
    reconcile_records(db, member_id=record.member_id, month=record.month, year=record.year)
    db.refresh(record)
    return record
