import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.audit import write_audit_log
from app.core.clock import utcnow
from app.core.exceptions import (
    ConcurrentUpdate,
    DuplicateActiveTemplate,
    InvalidStateTransition,
    NotFound,
    ValidationError,
)
from app.models.monthly_record import TIER_AMOUNT_COLUMNS, MonthlyRecordTemplate, TemplateStatus
from app.models.payment import PaymentRecord, PaymentStatus
from app.models.user import User, UserRoleEnum, YearTier
from app.services.payment import new_payment_record
from app.services.periods import as_deadline, parse_month, validate_year
from app.services.status_history import append_status_history
from app.services.wallet import to_amount

logger = logging.getLogger(__name__)

SEED_REASON = "Payment record created from monthly record"


def _parse_tiers(included_years: Iterable) -> List[YearTier]:
    tiers = []
    for value in included_years or []:
        try:
            tier = YearTier(value)
        except ValueError:
            raise ValidationError(f"Invalid year tier: {value}")
        if tier not in tiers:
            tiers.append(tier)
    if not tiers:
        raise ValidationError("At least one year must be included")
    return tiers


def _parse_amounts(amounts: Optional[Dict]) -> Dict[YearTier, Optional[Decimal]]:
    parsed = {}
    for key, value in (amounts or {}).items():
        try:
            tier = YearTier(key)
        except ValueError:
            raise ValidationError(f"Invalid year tier in amounts: {key}")
        if value is None:
            parsed[tier] = None
            continue
        amount = to_amount(value)
        if amount < 0:
            raise ValidationError(f"Amount for {tier.value} year cannot be negative")
        parsed[tier] = amount
    return parsed


def _check_included_amounts(template: MonthlyRecordTemplate) -> None:
    # A tier without an amount counts as zero
    if not any((template.amount_for(tier) or 0) > 0 for tier in template.included_tiers):
        raise ValidationError("Amount must be set for at least one included year")


def _find_active(db: Session, month: str, year: int, exclude_id: Optional[UUID] = None) -> Optional[MonthlyRecordTemplate]:
    query = db.query(MonthlyRecordTemplate).filter(
        MonthlyRecordTemplate.month == month,
        MonthlyRecordTemplate.year == year,
        MonthlyRecordTemplate.status == TemplateStatus.ACTIVE,
    )
    if exclude_id is not None:
        query = query.filter(MonthlyRecordTemplate.id != exclude_id)
    return query.first()


def get_active_template(db: Session, month, year: int) -> Optional[MonthlyRecordTemplate]:
    month_name, _ = parse_month(month)
    return _find_active(db, month_name, int(year))


def create_template(
    db: Session,
    month,
    year: int,
    amounts: Dict,
    included_years: Iterable,
    deadline,
    treasurer: User,
) -> MonthlyRecordTemplate:
    """Create the active template for a month. Does not seed records by itself."""
    month_name, month_number = parse_month(month)
    year = validate_year(year)
    tiers = _parse_tiers(included_years)
    parsed_amounts = _parse_amounts(amounts)
    deadline = as_deadline(deadline)

    if _find_active(db, month_name, year):
        raise DuplicateActiveTemplate(f"An active monthly record already exists for {month_name} {year}")

    template = MonthlyRecordTemplate(
        month=month_name,
        month_number=month_number,
        year=year,
        deadline=deadline,
        included_years=[tier.value for tier in tiers],
        status=TemplateStatus.ACTIVE,
        created_by=treasurer.id,
    )
    for tier, amount in parsed_amounts.items():
        setattr(template, TIER_AMOUNT_COLUMNS[tier], amount)
    _check_included_amounts(template)

    db.add(template)
    db.commit()
    db.refresh(template)

    logger.info("Monthly record %s %s created by %s", month_name, year, treasurer.id)
    write_audit_log(
        treasurer, "CREATE_MONTHLY_RECORD",
        f"{month_name} {year} years={','.join(template.included_years)} deadline={deadline:%Y-%m-%d}",
    )
    return template


def _eligible_members(db: Session) -> List[User]:
    return db.query(User).filter(
        User.role == UserRoleEnum.MEMBER,
        User.is_active.is_(True),
    ).order_by(User.name).all()


def _seed(db: Session, template: MonthlyRecordTemplate, members: List[User], now: datetime) -> tuple:
    """Add records inside the caller's transaction; returns (created, skipped)."""
    existing_member_ids = {
        row[0]
        for row in db.query(PaymentRecord.member_id).filter(
            PaymentRecord.month == template.month,
            PaymentRecord.year == template.year,
        ).all()
    }

    created = skipped = 0
    for member in members:
        if not template.includes(member.year) or member.id in existing_member_ids:
            continue
        amount = template.amount_for(member.year) or Decimal("0.00")
        record = new_payment_record(
            member, template.month, template.month_number, template.year,
            amount, template.deadline, SEED_REASON, now=now,
        )
        # One savepoint per member so a row inserted concurrently only costs that member
        try:
            with db.begin_nested():
                db.add(record)
        except IntegrityError:
            logger.warning(
                "Payment record for member %s in %s %s already exists; skipped",
                member.id, template.month, template.year,
            )
            skipped += 1
            continue
        existing_member_ids.add(member.id)
        created += 1
    return created, skipped


def seed_payment_records(
    db: Session,
    template: MonthlyRecordTemplate,
    members: Optional[List[User]] = None,
    now: Optional[datetime] = None,
) -> int:
    """Create a Pending record for every included member who has none for the month.

    Safe to run repeatedly. Members already holding a record for the month
    are skipped, including one whose record a concurrent seed inserted after
    the existing records were read; the rest of the batch is still created.
    """
    now = now or utcnow()
    if members is None:
        members = _eligible_members(db)

    created, skipped = _seed(db, template, members, now)
    db.commit()

    if created:
        logger.info("Seeded %d payment records for %s %s", created, template.month, template.year)
    if skipped:
        logger.warning("Skipped %d concurrently created records for %s %s", skipped, template.month, template.year)
    return created


def list_templates(db: Session, status: Optional[TemplateStatus] = None) -> List[MonthlyRecordTemplate]:
    query = db.query(MonthlyRecordTemplate)
    if status is not None:
        query = query.filter(MonthlyRecordTemplate.status == status)
    return query.order_by(
        MonthlyRecordTemplate.year.desc(),
        MonthlyRecordTemplate.month_number.desc(),
        MonthlyRecordTemplate.created_at.desc(),
    ).all()


def get_template(db: Session, template_id: UUID) -> MonthlyRecordTemplate:
    template = db.query(MonthlyRecordTemplate).filter(MonthlyRecordTemplate.id == template_id).first()
    if not template:
        raise NotFound("Monthly record not found")
    return template


def current_template(db: Session, today: Optional[date] = None) -> Optional[MonthlyRecordTemplate]:
    """Active template of the current calendar month, if any."""
    today = today or utcnow().date()
    return db.query(MonthlyRecordTemplate).filter(
        MonthlyRecordTemplate.month_number == today.month,
        MonthlyRecordTemplate.year == today.year,
        MonthlyRecordTemplate.status == TemplateStatus.ACTIVE,
    ).first()


def active_templates(db: Session) -> List[MonthlyRecordTemplate]:
    return list_templates(db, TemplateStatus.ACTIVE)


def update_template(
    db: Session,
    template_id: UUID,
    treasurer: User,
    amounts: Optional[Dict] = None,
    included_years: Optional[Iterable] = None,
    deadline=None,
    status: Optional[TemplateStatus] = None,
    apply_to_pending: bool = False,
    now: Optional[datetime] = None,
) -> MonthlyRecordTemplate:
    """Edit a template.

    Already seeded records keep their amount and deadline unless
    `apply_to_pending` is set; then only records that are still Pending with
    no confirmation or verification take the new values.
    """
    now = now or utcnow()
    template = get_template(db, template_id)

    if status is not None:
        status = TemplateStatus(status)
        if status == TemplateStatus.ACTIVE and template.status != TemplateStatus.ACTIVE:
            if _find_active(db, template.month, template.year, exclude_id=template.id):
                raise DuplicateActiveTemplate(
                    f"An active monthly record already exists for {template.month} {template.year}"
                )
        template.status = status
    if amounts is not None:
        for tier, amount in _parse_amounts(amounts).items():
            setattr(template, TIER_AMOUNT_COLUMNS[tier], amount)
    if included_years is not None:
        template.included_years = [tier.value for tier in _parse_tiers(included_years)]
    if deadline is not None:
        template.deadline = as_deadline(deadline)
    _check_included_amounts(template)
    template.updated_at = now

    updated_records = 0
    if apply_to_pending:
        updated_records = _apply_to_pending_records(db, template, treasurer, now)

    db.commit()
    db.refresh(template)

    logger.info("Monthly record %s updated by %s (%d pending records updated)",
                template.id, treasurer.id, updated_records)
    write_audit_log(
        treasurer, "UPDATE_MONTHLY_RECORD",
        f"{template.month} {template.year} apply_to_pending={apply_to_pending} records={updated_records}",
    )
    return template


def _apply_to_pending_records(db: Session, template: MonthlyRecordTemplate, treasurer: User, now: datetime) -> int:
    records = db.query(PaymentRecord).join(User, PaymentRecord.member_id == User.id).filter(
        PaymentRecord.month == template.month,
        PaymentRecord.year == template.year,
        PaymentRecord.status == PaymentStatus.PENDING,
        PaymentRecord.member_confirmed_payment.is_(False),
        PaymentRecord.verified_by.is_(None),
    ).all()

    count = 0
    for record in records:
        tier = record.member.year
        if not template.includes(tier):
            continue
        amount = template.amount_for(tier) or Decimal("0.00")
        if record.amount == amount and record.deadline == template.deadline:
            continue
        changes = []
        if record.amount != amount:
            changes.append(f"amount {record.amount} -> {amount}")
        if record.deadline != template.deadline:
            changes.append(f"deadline {record.deadline:%Y-%m-%d} -> {template.deadline:%Y-%m-%d}")
        record.amount = amount
        record.deadline = template.deadline
        record.updated_at = now
        append_status_history(
            db, record.id, record.status, treasurer.id,
            "Monthly record updated: " + ", ".join(changes), now,
        )
        count += 1
    return count


def delete_template(db: Session, template_id: UUID, treasurer: User) -> None:
    """Delete the template only; records seeded from it stay."""
    template = get_template(db, template_id)
    label = f"{template.month} {template.year}"
    db.delete(template)
    db.commit()
    logger.info("Monthly record %s deleted by %s", label, treasurer.id)
    write_audit_log(treasurer, "DELETE_MONTHLY_RECORD", label)


def _records_for_month(db: Session, month: str, year: int):
    return db.query(PaymentRecord).filter(
        PaymentRecord.month == month,
        PaymentRecord.year == year,
    )


def _delete_month(db: Session, month: str, year: int) -> int:
    if _records_for_month(db, month, year).filter(PaymentRecord.status == PaymentStatus.PAID).count():
        raise InvalidStateTransition(
            f"Cannot delete {month} {year}: some payments are already verified"
        )
    records = _records_for_month(db, month, year).all()
    for record in records:
        # Cascades to status history and treasurer notes
        db.delete(record)
    db.flush()
    return len(records)


def delete_monthly_records(db: Session, month, year: int, treasurer: User, confirm: bool = False) -> int:
    """Destructive: remove every payment record of a month. Refused once any is Paid."""
    if not confirm:
        raise ValidationError("Deleting monthly payment records requires explicit confirmation")
    month_name, _ = parse_month(month)
    year = validate_year(year)

    deleted = _delete_month(db, month_name, year)
    db.commit()

    logger.warning("Deleted %d payment records for %s %s (by %s)", deleted, month_name, year, treasurer.id)
    write_audit_log(treasurer, "DELETE_MONTHLY_PAYMENTS", f"{month_name} {year} records={deleted}")
    return deleted


def recreate_monthly_records(
    db: Session,
    template: MonthlyRecordTemplate,
    treasurer: User,
    members: Optional[List[User]] = None,
    confirm: bool = False,
    now: Optional[datetime] = None,
) -> int:
    """Destructive: drop a month's records and seed them again from `template`."""
    if not confirm:
        raise ValidationError("Recreating monthly payment records requires explicit confirmation")

    now = now or utcnow()
    # The deletion and the new records commit together or not at all
    deleted = _delete_month(db, template.month, template.year)
    created, skipped = _seed(db, template, members if members is not None else _eligible_members(db), now)
    if skipped:
        db.rollback()
        logger.warning("Recreate of %s %s aborted: %d records were created concurrently",
                       template.month, template.year, skipped)
        raise ConcurrentUpdate(
            f"Payment records for {template.month} {template.year} changed while recreating; nothing was deleted"
        )
    db.commit()

    logger.warning("Recreated %s %s: %d deleted, %d created (by %s)",
                   template.month, template.year, deleted, created, treasurer.id)
    write_audit_log(
        treasurer, "RECREATE_MONTHLY_PAYMENTS",
        f"{template.month} {template.year} deleted={deleted} created={created}",
    )
    return created
