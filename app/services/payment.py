"""Payment record (group fund) state machine.

Every transition is a compare-and-swap UPDATE guarded by the status the
transition starts from, so a double click or a retried request cannot apply
it twice. Transitions that move money (verify, approve resubmission, manual
paid record) run the status change, the member's ``total_paid`` increment and
the wallet credit inside one transaction via ``run_with_wallet_retry``.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.audit import write_audit_log
from app.core.clock import utcnow
from app.core.email import notify_safely, send_payment_rejected_email, send_payment_verified_email
from app.core.exceptions import (
    AlreadyPending,
    AlreadyVerified,
    DuplicateRecord,
    InvalidStateTransition,
    NotConfirmed,
    NotFound,
    Unauthorized,
    ValidationError,
)
from app.models.payment import (
    OFFLINE_METHODS,
    PaymentMethod,
    PaymentRecord,
    PaymentStatus,
    PaymentStatusHistory,
    TreasurerNote,
)
from app.models.user import User, UserRoleEnum
from app.models.wallet import WalletTransactionType
from app.services.payment_reference import generate_payment_reference
from app.services.periods import academic_year_for, parse_month, validate_year
from app.services.reconciliation import reconcile_record
from app.services.status_history import append_status_history
from app.services.wallet import post_transaction, run_with_wallet_retry, to_amount

logger = logging.getLogger(__name__)


def get_payment_record(db: Session, record_id: UUID) -> PaymentRecord:
    record = db.query(PaymentRecord).filter(PaymentRecord.id == record_id).first()
    if not record:
        raise NotFound("Payment record not found")
    return record


def _fresh_record(db: Session, record_id: UUID) -> PaymentRecord:
    """Re-read a record ignoring whatever the session already holds."""
    record = db.query(PaymentRecord).populate_existing().filter(PaymentRecord.id == record_id).first()
    if not record:
        raise NotFound("Payment record not found")
    return record


def _check_owner(record: PaymentRecord, member: User) -> None:
    if record.member_id != member.id:
        raise Unauthorized("You can only act on your own payments")


def _compare_and_set(db: Session, record_id: UUID, expected: dict, values: dict) -> bool:
    """UPDATE payment_record SET values WHERE id = record_id AND expected; True if it matched."""
    query = db.query(PaymentRecord).filter(PaymentRecord.id == record_id)
    for column, value in expected.items():
        attribute = getattr(PaymentRecord, column)
        query = query.filter(attribute.is_(None) if value is None else attribute == value)
    updated = query.update(
        {getattr(PaymentRecord, column): value for column, value in values.items()},
        synchronize_session=False,
    )
    return updated == 1


def _credit_member(db: Session, record: PaymentRecord, member: User, treasurer: User, description: str) -> None:
    """Add the record's amount to the member's total_paid and the club wallet."""
    db.query(User).filter(User.id == member.id).update(
        {User.total_paid: User.total_paid + record.amount},
        synchronize_session=False,
    )
    post_transaction(
        db,
        WalletTransactionType.CREDIT,
        record.amount,
        description,
        treasurer.id,
        payment_record_id=record.id,
    )


def _fund_description(member: User, record: PaymentRecord) -> str:
    return f"Group fund payment from {member.name} ({member.usn}) for {record.month} {record.year}"


def new_payment_record(
    member: User,
    month: str,
    month_number: int,
    year: int,
    amount: Decimal,
    deadline: datetime,
    reason: str,
    changed_by: Optional[UUID] = None,
    now: Optional[datetime] = None,
    status: PaymentStatus = PaymentStatus.PENDING,
    payment_method: PaymentMethod = PaymentMethod.UPI,
) -> PaymentRecord:
    """Build (not add) a record with its reference and first history entry."""
    now = now or utcnow()
    record = PaymentRecord(
        member_id=member.id,
        month=month,
        month_number=month_number,
        year=year,
        academic_year=academic_year_for(month_number, year),
        amount=amount,
        status=status,
        payment_reference=generate_payment_reference(member.id, month_number, year, now=now),
        payment_method=payment_method,
        deadline=deadline,
        member_confirmed_payment=False,
    )
    record.status_history = [
        PaymentStatusHistory(
            sequence=1,
            status=status,
            changed_by=changed_by,
            changed_at=now,
            reason=reason,
        )
    ]
    return record


def confirm_payment_intent(
    db: Session,
    record_id: UUID,
    member: User,
    proof_url: Optional[str] = None,
    now: Optional[datetime] = None,
) -> PaymentRecord:
    """Member says "I paid": Pending -> AwaitingVerification."""
    now = now or utcnow()
    record = get_payment_record(db, record_id)
    _check_owner(record, member)

    reconcile_record(db, record_id, now)
    record = _fresh_record(db, record_id)

    if record.status == PaymentStatus.PAID:
        raise AlreadyVerified("Payment already verified")
    if record.member_confirmed_payment:
        raise InvalidStateTransition("Payment already confirmed. Waiting for treasurer verification")
    if record.status == PaymentStatus.FAILED:
        raise InvalidStateTransition("Payment deadline has passed. Upload payment proof to resubmit")
    if record.status != PaymentStatus.PENDING:
        raise InvalidStateTransition(f"Cannot confirm a payment in status {record.status.value}")

    values = {
        "status": PaymentStatus.AWAITING_VERIFICATION,
        "member_confirmed_payment": True,
        "member_confirmed_date": now,
        "updated_at": now,
    }
    if proof_url:
        values["payment_proof"] = proof_url

    if not _compare_and_set(db, record_id, {"status": PaymentStatus.PENDING, "member_confirmed_payment": False}, values):
        db.rollback()
        raise InvalidStateTransition("Payment was updated by someone else. Please refresh")

    append_status_history(
        db, record_id, PaymentStatus.AWAITING_VERIFICATION, member.id,
        "Member confirmed payment completion", now,
    )
    db.commit()

    logger.info("Member %s confirmed payment %s", member.id, record_id)
    return _fresh_record(db, record_id)


def verify_payment(db: Session, record_id: UUID, treasurer: User, now: Optional[datetime] = None) -> PaymentRecord:
    """Treasurer accepts a confirmed payment: AwaitingVerification -> Paid, with money movement."""
    now = now or utcnow()

    def operation():
        record = _fresh_record(db, record_id)
        if record.status == PaymentStatus.PAID:
            raise AlreadyVerified("Payment already verified")
        if not record.member_confirmed_payment:
            raise NotConfirmed("Member has not confirmed this payment yet")
        if record.status != PaymentStatus.AWAITING_VERIFICATION:
            raise InvalidStateTransition(f"Cannot verify a payment in status {record.status.value}")

        if not _compare_and_set(
            db, record_id,
            {"status": PaymentStatus.AWAITING_VERIFICATION},
            {
                "status": PaymentStatus.PAID,
                "verified_by": treasurer.id,
                "verified_date": now,
                "payment_date": record.payment_date or now,
                "updated_at": now,
            },
        ):
            raise AlreadyVerified("Payment already verified")

        member = record.member
        _credit_member(db, record, member, treasurer, _fund_description(member, record))
        append_status_history(
            db, record_id, PaymentStatus.PAID, treasurer.id,
            "Payment verified and accepted by treasurer", now,
        )
        return record

    run_with_wallet_retry(db, operation)
    record = _fresh_record(db, record_id)

    logger.info("Payment %s verified by %s; %s credited", record_id, treasurer.id, record.amount)
    write_audit_log(
        treasurer, "VERIFY_PAYMENT",
        f"record={record_id} member={record.member.usn} {record.month} {record.year} amount={record.amount}",
    )
    notify_safely(send_payment_verified_email, record.member, record)
    return record


def reject_payment(db: Session, record_id: UUID, treasurer: User, reason: str, now: Optional[datetime] = None) -> PaymentRecord:
    """Treasurer rejects a Pending or AwaitingVerification payment. No money moves."""
    now = now or utcnow()
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Rejection reason is required")

    record = _fresh_record(db, record_id)
    if record.status == PaymentStatus.PAID:
        raise AlreadyVerified("Payment already verified")
    if record.status not in (PaymentStatus.PENDING, PaymentStatus.AWAITING_VERIFICATION):
        raise InvalidStateTransition(f"Cannot reject a payment in status {record.status.value}")

    if not _compare_and_set(
        db, record_id,
        {"status": record.status},
        {"status": PaymentStatus.FAILED, "rejection_reason": reason, "updated_at": now},
    ):
        db.rollback()
        raise InvalidStateTransition("Payment was updated by someone else. Please refresh")

    append_status_history(
        db, record_id, PaymentStatus.FAILED, treasurer.id,
        f"Payment rejected by treasurer: {reason}", now,
    )
    db.commit()

    record = _fresh_record(db, record_id)
    logger.info("Payment %s rejected by %s", record_id, treasurer.id)
    write_audit_log(treasurer, "REJECT_PAYMENT", f"record={record_id} reason={reason}")
    notify_safely(send_payment_rejected_email, record.member, record, reason)
    return record


def resubmit_payment(
    db: Session,
    record_id: UUID,
    member: User,
    proof_url: str,
    note: Optional[str] = None,
    now: Optional[datetime] = None,
) -> PaymentRecord:
    """Member uploads new proof for a Failed record; status stays Failed until judged."""
    now = now or utcnow()
    record = get_payment_record(db, record_id)
    _check_owner(record, member)
    if not proof_url:
        raise ValidationError("Payment proof is required")

    reconcile_record(db, record_id, now)
    record = _fresh_record(db, record_id)

    if record.status != PaymentStatus.FAILED:
        raise InvalidStateTransition("Only failed payments can be resubmitted")
    if record.resubmitted_photo:
        raise AlreadyPending("A resubmission is already awaiting treasurer review")

    note = (note or "").strip() or None
    if not _compare_and_set(
        db, record_id,
        {"status": PaymentStatus.FAILED, "resubmitted_photo": None},
        {
            "resubmitted_photo": proof_url,
            "resubmitted_date": now,
            "resubmission_note": note,
            "updated_at": now,
        },
    ):
        db.rollback()
        raise AlreadyPending("A resubmission is already awaiting treasurer review")

    reason = "Payment proof resubmitted by member"
    if note:
        reason = f"{reason}: {note}"
    append_status_history(db, record_id, PaymentStatus.FAILED, member.id, reason, now)
    db.commit()

    logger.info("Member %s resubmitted payment %s", member.id, record_id)
    return _fresh_record(db, record_id)


def judge_resubmission(
    db: Session,
    record_id: UUID,
    treasurer: User,
    approve: bool,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> PaymentRecord:
    """Approve (-> Paid, with money movement) or reject (stay Failed) a pending resubmission."""
    now = now or utcnow()
    if approve:
        return _approve_resubmission(db, record_id, treasurer, now)
    return _reject_resubmission(db, record_id, treasurer, reason, now)


def _approve_resubmission(db: Session, record_id: UUID, treasurer: User, now: datetime) -> PaymentRecord:
    def operation():
        record = _fresh_record(db, record_id)
        if record.status == PaymentStatus.PAID:
            raise AlreadyVerified("Payment already verified")
        if record.status != PaymentStatus.FAILED or not record.resubmitted_photo:
            raise InvalidStateTransition("No resubmission is awaiting review for this payment")

        photo = record.resubmitted_photo
        if not _compare_and_set(
            db, record_id,
            {"status": PaymentStatus.FAILED, "resubmitted_photo": photo},
            {
                "status": PaymentStatus.PAID,
                "payment_proof": photo,
                "payment_date": record.resubmitted_date or now,
                "verified_by": treasurer.id,
                "verified_date": now,
                "resubmitted_photo": None,
                "resubmitted_date": None,
                "resubmission_note": None,
                "updated_at": now,
            },
        ):
            raise AlreadyVerified("Resubmission already judged")

        member = record.member
        _credit_member(db, record, member, treasurer, _fund_description(member, record) + " (resubmitted)")
        append_status_history(
            db, record_id, PaymentStatus.PAID, treasurer.id,
            "Resubmitted payment verified by treasurer", now,
        )
        return record

    run_with_wallet_retry(db, operation)
    record = _fresh_record(db, record_id)

    logger.info("Resubmission for %s approved by %s; %s credited", record_id, treasurer.id, record.amount)
    write_audit_log(
        treasurer, "APPROVE_RESUBMISSION",
        f"record={record_id} member={record.member.usn} amount={record.amount}",
    )
    notify_safely(send_payment_verified_email, record.member, record)
    return record


def _reject_resubmission(db: Session, record_id: UUID, treasurer: User, reason: Optional[str], now: datetime) -> PaymentRecord:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Rejection reason is required")

    record = _fresh_record(db, record_id)
    if record.status == PaymentStatus.PAID:
        raise AlreadyVerified("Payment already verified")
    if record.status != PaymentStatus.FAILED or not record.resubmitted_photo:
        raise InvalidStateTransition("No resubmission is awaiting review for this payment")

    if not _compare_and_set(
        db, record_id,
        {"status": PaymentStatus.FAILED, "resubmitted_photo": record.resubmitted_photo},
        {
            "rejection_reason": reason,
            "resubmitted_photo": None,
            "resubmitted_date": None,
            "resubmission_note": None,
            "updated_at": now,
        },
    ):
        db.rollback()
        raise InvalidStateTransition("Resubmission already judged")

    append_status_history(
        db, record_id, PaymentStatus.FAILED, treasurer.id,
        f"Resubmission rejected by treasurer: {reason}", now,
    )
    db.commit()

    record = _fresh_record(db, record_id)
    logger.info("Resubmission for %s rejected by %s", record_id, treasurer.id)
    write_audit_log(treasurer, "REJECT_RESUBMISSION", f"record={record_id} reason={reason}")
    notify_safely(send_payment_rejected_email, record.member, record, reason, resubmission=True)
    return record


def manual_mark_paid(
    db: Session,
    record_id: UUID,
    treasurer: User,
    payment_method: PaymentMethod = PaymentMethod.CASH,
    note: Optional[str] = None,
    now: Optional[datetime] = None,
) -> PaymentRecord:
    """Treasurer's internal "collected offline" mark on a Pending record.

    Writes a TreasurerNote only: the official status, the wallet and the
    member's total_paid are left alone, and members never see the note.
    """
    now = now or utcnow()
    payment_method = PaymentMethod(payment_method)
    if payment_method not in OFFLINE_METHODS:
        raise ValidationError("Manual marking is only for Cash, Bank Transfer or Other payments")

    record = get_payment_record(db, record_id)
    reconcile_record(db, record_id, now)
    record = _fresh_record(db, record_id)

    if record.status != PaymentStatus.PENDING:
        raise InvalidStateTransition(
            f"Only Pending payments can be marked as paid manually (current status: {record.status.value})"
        )
    if record.treasurer_note is not None:
        raise InvalidStateTransition("Payment already marked as paid by the treasurer")

    note = (note or "").strip() or None
    db.add(TreasurerNote(
        payment_record_id=record.id,
        acknowledged_cash=True,
        method=payment_method,
        note=note,
        marked_by=treasurer.id,
        marked_at=now,
    ))
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise InvalidStateTransition("Payment already marked as paid by the treasurer")

    logger.info("Payment %s marked paid (internal) by %s", record_id, treasurer.id)
    write_audit_log(treasurer, "MANUAL_MARK_PAID", f"record={record_id} method={payment_method.value}")
    return _fresh_record(db, record_id)


def create_manual_payment(
    db: Session,
    member_id: UUID,
    month,
    year: int,
    amount,
    payment_method: PaymentMethod,
    note: Optional[str],
    treasurer: User,
    now: Optional[datetime] = None,
) -> PaymentRecord:
    """Record an offline payment for a month the member has no record for, directly as Paid."""
    from app.services.club_settings import get_or_create_settings
    from app.services.monthly_record import get_active_template
    from app.services.periods import default_deadline

    now = now or utcnow()
    month_name, month_number = parse_month(month)
    year = validate_year(year)
    payment_method = PaymentMethod(payment_method)
    amount = to_amount(amount)
    if amount <= 0:
        raise ValidationError("Amount must be greater than zero")

    member = db.query(User).filter(User.id == member_id, User.role == UserRoleEnum.MEMBER).first()
    if not member:
        raise NotFound("Member not found")

    existing = db.query(PaymentRecord).filter(
        PaymentRecord.member_id == member.id,
        PaymentRecord.month == month_name,
        PaymentRecord.year == year,
    ).first()
    if existing:
        raise DuplicateRecord(f"Payment record already exists for {member.name} for {month_name} {year}")

    note = (note or "").strip() or None
    reason = f"Manual payment recorded by treasurer ({payment_method.value})"
    if note:
        reason = f"{reason}: {note}"

    def operation():
        template = get_active_template(db, month_name, year)
        if template is not None:
            deadline = template.deadline
        else:
            deadline = default_deadline(month_number, year, get_or_create_settings(db).payment_deadline_day)

        record = new_payment_record(
            member, month_name, month_number, year, amount, deadline, reason,
            changed_by=treasurer.id, now=now,
            status=PaymentStatus.PAID, payment_method=payment_method,
        )
        record.member_confirmed_payment = True
        record.member_confirmed_date = now
        record.payment_date = now
        record.verified_by = treasurer.id
        record.verified_date = now
        db.add(record)
        try:
            db.flush()
        except IntegrityError:
            raise DuplicateRecord(f"Payment record already exists for {member.name} for {month_name} {year}")

        _credit_member(db, record, member, treasurer, _fund_description(member, record) + f" ({payment_method.value})")
        return record.id

    record_id = run_with_wallet_retry(db, operation)
    record = _fresh_record(db, record_id)

    logger.info("Manual payment %s created by %s for %s", record_id, treasurer.id, member.id)
    write_audit_log(
        treasurer, "CREATE_MANUAL_PAYMENT",
        f"record={record_id} member={member.usn} {month_name} {year} amount={amount} method={payment_method.value}",
    )
    return record
