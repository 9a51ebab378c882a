"""Append-only status history of payment records."""
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.payment import PaymentStatus, PaymentStatusHistory


def append_status_history(
    db: Session,
    record_id: UUID,
    status: PaymentStatus,
    changed_by: Optional[UUID],
    reason: str,
    now: datetime,
) -> PaymentStatusHistory:
    """Add the next history entry for a record. `changed_by=None` means the sweep."""
    last_sequence = db.query(func.max(PaymentStatusHistory.sequence)).filter(
        PaymentStatusHistory.payment_record_id == record_id
    ).scalar() or 0

    entry = PaymentStatusHistory(
        payment_record_id=record_id,
        sequence=last_sequence + 1,
        status=status,
        changed_by=changed_by,
        changed_at=now,
        reason=(reason or "")[:300],
    )
    db.add(entry)
    return entry
