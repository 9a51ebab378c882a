"""Deadline-driven reconciliation of payment record status.

`reconcile_status` is the pure rule; `effective_status` applies it to a
record without touching the database (the month roster reports it), and
`reconcile_records` persists it (daily scheduler job and before every roster
read). Failing is strict: a record whose deadline equals `now` stays Pending.
"""
import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.models.payment import PaymentRecord, PaymentStatus
from app.services.status_history import append_status_history

logger = logging.getLogger(__name__)

OVERDUE_REASON = "Marked failed because deadline passed without payment confirmation"
RECOVERED_REASON = "Recovered to Pending because deadline not reached"

_UNPAID = (PaymentStatus.PENDING, PaymentStatus.AWAITING_VERIFICATION)


def reconcile_status(record: PaymentRecord, now: datetime) -> Optional[PaymentStatus]:
    """Status the record should move to at `now`, or None if it is settled."""
    if record.member_confirmed_payment or record.verified_by is not None:
        return None

    if record.status in _UNPAID and record.deadline < now:
        return PaymentStatus.FAILED

    # An explicit rejection or a proof awaiting judgement is not a premature failure
    if (
        record.status == PaymentStatus.FAILED
        and record.deadline > now
        and record.rejection_reason is None
        and record.resubmitted_photo is None
    ):
        return PaymentStatus.PENDING

    return None


def effective_status(record: PaymentRecord, now: Optional[datetime] = None) -> PaymentStatus:
    """Status as it should be reported at `now`, whether or not the sweep has run."""
    return reconcile_status(record, now or utcnow()) or record.status


def _overdue_clause(now: datetime):
    return and_(
        PaymentRecord.status.in_(_UNPAID),
        PaymentRecord.deadline < now,
    )


def _recoverable_clause(now: datetime):
    return and_(
        PaymentRecord.status == PaymentStatus.FAILED,
        PaymentRecord.deadline > now,
        PaymentRecord.rejection_reason.is_(None),
        PaymentRecord.resubmitted_photo.is_(None),
    )


def reconcile_record(db: Session, record_id: UUID, now: datetime) -> Optional[PaymentStatus]:
    """Reconcile one record and commit. Returns the new status if it changed."""
    record = db.query(PaymentRecord).populate_existing().filter(PaymentRecord.id == record_id).first()
    if record is None:
        return None

    target = reconcile_status(record, now)
    if target is None:
        return None

    previous = record.status
    updated = db.query(PaymentRecord).filter(
        PaymentRecord.id == record_id,
        PaymentRecord.status == previous,
        PaymentRecord.member_confirmed_payment.is_(False),
        PaymentRecord.verified_by.is_(None),
    ).update(
        {PaymentRecord.status: target, PaymentRecord.updated_at: now},
        synchronize_session=False,
    )
    if not updated:
        # Someone else moved it first
        db.rollback()
        return None

    append_status_history(
        db, record.id, target, None,
        OVERDUE_REASON if target == PaymentStatus.FAILED else RECOVERED_REASON,
        now,
    )
    db.commit()
    return target


def reconcile_records(
    db: Session,
    now: Optional[datetime] = None,
    member_id: Optional[UUID] = None,
    month: Optional[str] = None,
    year: Optional[int] = None,
) -> dict:
    """Recover prematurely failed records, then fail overdue ones.

    Each record is committed on its own; an error on one is logged and the
    sweep moves on. Never raises for per-record failures.
    """
    now = now or utcnow()

    query = db.query(PaymentRecord.id).filter(
        PaymentRecord.member_confirmed_payment.is_(False),
        PaymentRecord.verified_by.is_(None),
        or_(_recoverable_clause(now), _overdue_clause(now)),
    )
    if member_id is not None:
        query = query.filter(PaymentRecord.member_id == member_id)
    if month is not None:
        query = query.filter(PaymentRecord.month == month)
    if year is not None:
        query = query.filter(PaymentRecord.year == year)

    candidate_ids = [row[0] for row in query.all()]

    failed, recovered = [], []
    errors = 0
    for record_id in candidate_ids:
        try:
            result = reconcile_record(db, record_id, now)
        except Exception:
            db.rollback()
            errors += 1
            logger.exception("Reconciliation failed for payment record %s", record_id)
            continue
        if result == PaymentStatus.FAILED:
            failed.append(record_id)
        elif result == PaymentStatus.PENDING:
            recovered.append(record_id)

    if failed or recovered or errors:
        logger.info(
            "Reconciliation: %d marked failed, %d recovered, %d errors",
            len(failed), len(recovered), errors,
        )
    return {"failed": failed, "recovered": recovered, "errors": errors}
