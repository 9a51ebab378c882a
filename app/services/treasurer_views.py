"""Read-side views for the treasurer.

Every view reconciles first so a stale status is never reported. Collection
totals count only official Paid records; the treasurer's internal
"marked paid" note changes the displayed status of a roster row and nothing
else.
"""
import logging
from collections import OrderedDict
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, joinedload

from app.core.clock import utcnow
from app.core.exceptions import NotFound, ValidationError
from app.models.payment import PaymentRecord, PaymentStatus
from app.models.user import User, UserRoleEnum, YearTier
from app.services.monthly_record import get_active_template
from app.services.payment_reference import validate_payment_reference
from app.services.periods import parse_month, validate_year
from app.services.reconciliation import effective_status, reconcile_records
from app.services.wallet import get_or_create_wallet

logger = logging.getLogger(__name__)

NOT_REQUIRED = "Not Required"
NOT_CREATED = "Not Created"


def _members_query(db: Session):
    return db.query(User).filter(User.role == UserRoleEnum.MEMBER, User.is_active.is_(True))


def get_statistics(db: Session, now: Optional[datetime] = None) -> dict:
    reconcile_records(db, now=now)

    def count(*criteria):
        return db.query(func.count(PaymentRecord.id)).filter(*criteria).scalar() or 0

    total_collected = db.query(func.coalesce(func.sum(PaymentRecord.amount), 0)).filter(
        PaymentRecord.status == PaymentStatus.PAID
    ).scalar()

    return {
        "total_members": _members_query(db).count(),
        "total_collected": Decimal(str(total_collected or 0)).quantize(Decimal("0.01")),
        "paid_count": count(PaymentRecord.status == PaymentStatus.PAID),
        "pending_count": count(PaymentRecord.status == PaymentStatus.PENDING),
        "awaiting_count": count(PaymentRecord.status == PaymentStatus.AWAITING_VERIFICATION),
        "failed_count": count(PaymentRecord.status == PaymentStatus.FAILED),
        "pending_resubmission_count": count(
            PaymentRecord.status == PaymentStatus.FAILED,
            PaymentRecord.resubmitted_photo.isnot(None),
        ),
        "wallet_balance": get_or_create_wallet(db).balance,
    }


def get_month_roster(db: Session, month, year: int, now: Optional[datetime] = None) -> dict:
    """Every active member against their (possibly missing) record for the month."""
    now = now or utcnow()
    month_name, _ = parse_month(month)
    year = validate_year(year)
    reconcile_records(db, now=now, month=month_name, year=year)

    template = get_active_template(db, month_name, year)
    members = _members_query(db).order_by(User.year, User.name).all()
    records = {
        record.member_id: record
        for record in db.query(PaymentRecord).options(joinedload(PaymentRecord.treasurer_note)).filter(
            PaymentRecord.month == month_name,
            PaymentRecord.year == year,
        ).all()
    }

    rows = []
    summary = {
        "total_members": len(members),
        "paid_count": 0,
        "pending_count": 0,
        "awaiting_count": 0,
        "failed_count": 0,
        "not_created_count": 0,
        "not_required_count": 0,
        "total_collected": Decimal("0.00"),
    }

    for member in members:
        record = records.get(member.id)
        if record is None:
            if template is not None and not template.includes(member.year):
                orig_status = NOT_REQUIRED
                summary["not_required_count"] += 1
            else:
                orig_status = NOT_CREATED
                summary["not_created_count"] += 1
            rows.append({
                "member": member,
                "record": None,
                "display_status": orig_status,
                "orig_status": orig_status,
                "treasurer_marked_paid": False,
            })
            continue

        # A record the sweep could not persist is still reported as of `now`
        status = effective_status(record, now)
        orig_status = status.value
        marked = record.treasurer_note is not None
        display_status = PaymentStatus.PAID.value if marked else orig_status

        if status == PaymentStatus.PAID:
            summary["paid_count"] += 1
            summary["total_collected"] += record.amount
        elif status == PaymentStatus.PENDING:
            summary["pending_count"] += 1
        elif status == PaymentStatus.AWAITING_VERIFICATION:
            summary["awaiting_count"] += 1
        elif status == PaymentStatus.FAILED:
            summary["failed_count"] += 1

        rows.append({
            "member": member,
            "record": record,
            "display_status": display_status,
            "orig_status": orig_status,
            "treasurer_marked_paid": marked,
        })

    return {
        "month": month_name,
        "year": year,
        "template": template,
        "rows": rows,
        "summary": summary,
    }


def get_failed_payments_summary(db: Session, now: Optional[datetime] = None) -> List[dict]:
    """Failed records grouped by month, newest month first."""
    reconcile_records(db, now=now)
    records = db.query(PaymentRecord).options(joinedload(PaymentRecord.member)).filter(
        PaymentRecord.status == PaymentStatus.FAILED
    ).order_by(PaymentRecord.year.desc(), PaymentRecord.month_number.desc()).all()

    groups = OrderedDict()
    for record in records:
        key = (record.month, record.year)
        group = groups.setdefault(key, {
            "month": record.month,
            "year": record.year,
            "count": 0,
            "total_amount": Decimal("0.00"),
            "payments": [],
        })
        group["count"] += 1
        group["total_amount"] += record.amount
        group["payments"].append({
            "record_id": record.id,
            "member_id": record.member_id,
            "member_name": record.member.name,
            "member_usn": record.member.usn,
            "member_year": record.member.year.value,
            "amount": record.amount,
            "rejection_reason": record.rejection_reason,
            "has_pending_resubmission": record.has_pending_resubmission,
        })
    return list(groups.values())


def list_payment_requests(
    db: Session,
    status: Optional[PaymentStatus] = PaymentStatus.AWAITING_VERIFICATION,
    month=None,
    year_tier: Optional[YearTier] = None,
    now: Optional[datetime] = None,
) -> List[PaymentRecord]:
    """Verification queue, oldest confirmation first."""
    reconcile_records(db, now=now)
    query = db.query(PaymentRecord).join(User, PaymentRecord.member_id == User.id).options(
        joinedload(PaymentRecord.member)
    )
    if status is not None:
        query = query.filter(PaymentRecord.status == PaymentStatus(status))
    if month:
        month_name, _ = parse_month(month)
        query = query.filter(PaymentRecord.month == month_name)
    if year_tier is not None:
        query = query.filter(User.year == YearTier(year_tier))
    return query.order_by(
        PaymentRecord.member_confirmed_date.asc(),
        PaymentRecord.created_at.asc(),
    ).all()


def list_resubmission_requests(db: Session) -> List[PaymentRecord]:
    return db.query(PaymentRecord).options(joinedload(PaymentRecord.member)).filter(
        PaymentRecord.status == PaymentStatus.FAILED,
        PaymentRecord.resubmitted_photo.isnot(None),
    ).order_by(PaymentRecord.resubmitted_date.asc()).all()


def _overall_status(paid: int, pending: int, failed: int) -> str:
    if failed:
        return "failed"
    if pending:
        return "pending"
    if paid:
        return "paid"
    return "none"


def list_members_with_payments(
    db: Session,
    year_tier: Optional[YearTier] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[dict]:
    """Members with their payment totals; `status` filters on the overall payment_status."""
    reconcile_records(db, now=now)
    query = _members_query(db).options(joinedload(User.payment_records))
    if year_tier is not None:
        query = query.filter(User.year == YearTier(year_tier))
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(
            User.name.ilike(pattern),
            User.usn.ilike(pattern),
            User.email.ilike(pattern),
        ))

    results = []
    for member in query.order_by(User.name).all():
        total_due = total_paid = pending_amount = failed_amount = Decimal("0.00")
        paid = pending = failed = 0
        for record in member.payment_records:
            total_due += record.amount
            if record.status == PaymentStatus.PAID:
                paid += 1
                total_paid += record.amount
            elif record.status == PaymentStatus.FAILED:
                failed += 1
                failed_amount += record.amount
            else:
                pending += 1
                pending_amount += record.amount

        payment_status = _overall_status(paid, pending, failed)
        if status and payment_status != status:
            continue
        results.append({
            "member": member,
            "total_due": total_due,
            "total_paid": total_paid,
            "pending": pending_amount,
            "failed": failed_amount,
            "record_count": len(member.payment_records),
            "payment_status": payment_status,
        })
    return results


def member_payments(db: Session, member_id: UUID, now: Optional[datetime] = None) -> dict:
    member = db.query(User).filter(User.id == member_id, User.role == UserRoleEnum.MEMBER).first()
    if not member:
        raise NotFound("Member not found")
    reconcile_records(db, now=now, member_id=member.id)
    records = db.query(PaymentRecord).filter(
        PaymentRecord.member_id == member.id
    ).order_by(PaymentRecord.year.desc(), PaymentRecord.month_number.desc()).all()
    return {"member": member, "records": records}


def find_payment_by_reference(db: Session, reference: str) -> PaymentRecord:
    """Record a bank entry's transaction note points at."""
    reference = (reference or "").strip().upper()
    if not validate_payment_reference(reference):
        raise ValidationError(f"Not a payment reference: {reference or '(empty)'}")
    record = db.query(PaymentRecord).options(
        joinedload(PaymentRecord.member),
        joinedload(PaymentRecord.treasurer_note),
    ).filter(PaymentRecord.payment_reference == reference).first()
    if not record:
        raise NotFound(f"No payment record with reference {reference}")
    return record
