from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from app.db.base import get_db
from app.core.dependencies import require_treasurer
from app.models.user import User, YearTier
from app.models.payment import PaymentStatus
from app.models.monthly_record import TemplateStatus
from app.schemas.payment import (
    FailedMonthGroup,
    JudgeResubmissionRequest,
    ManualMarkPaidRequest,
    ManualPaymentCreate,
    MemberPaymentsOverview,
    MemberPaymentsResponse,
    MemberSummary,
    MonthRosterResponse,
    PaymentRecordDetailResponse,
    RejectPaymentRequest,
    StatisticsResponse,
    TreasurerPaymentResponse,
)
from app.schemas.monthly_record import (
    DestructiveMonthRequest,
    MonthlyRecordCreate,
    MonthlyRecordCreateResponse,
    MonthlyRecordResponse,
    MonthlyRecordUpdate,
)
from app.schemas.member import MemberCreate
from app.schemas.wallet import WalletAuditResponse, WalletMovementRequest, WalletResponse
from app.schemas.settings import ClubSettingsResponse, SchedulerRescheduleRequest, TreasurerUPIUpdate, UPIHistoryResponse
from app.services import member as member_service
from app.services import monthly_record as monthly_record_service
from app.services import payment as payment_service
from app.services import treasurer_views
from app.services import wallet as wallet_service
from app.services.club_settings import get_or_create_settings, set_treasurer_upi, settings_payload
from app.services.member_payments import payment_history
from typing import List, Optional
from uuid import UUID

router = APIRouter(prefix="/api/treasurer", tags=["treasurer"])


# ---------------------------------------------------------------------------
# Overview
# ---------------------------------------------------------------------------

@router.get("/statistics", response_model=StatisticsResponse)
def get_statistics(
    current_user: User = Depends(require_treasurer),
    db: Session = Depends(get_db)
):
    """Totals across all payment records plus the wallet balance."""
    return treasurer_views.get_statistics(db)


@router.get("/roster", response_model=MonthRosterResponse)
def get_month_roster(
    month: str,
    year: int,
    current_user: User = Depends(require_treasurer),
    db: Session = Depends(get_db)
):
    """Every member's status for one month, including Not Created / Not Required rows."""
    return treasurer_views.get_month_roster(db, month, year)


@router.get("/failed-payments", response_model=List[FailedMonthGroup])
def get_failed_payments(
    current_user: User = Depends(require_treasurer),
    db: Session = Depends(get_db)
):
    return treasurer_views.get_failed_payments_summary(db)


@router.get("/members", response_model=List[MemberPaymentsOverview])
def list_members(
    year: Optional[YearTier] = None,
    status: Optional[str] = Query(None, pattern="^(paid|pending|failed|none)$"),
    search: Optional[str] = None,
    current_user: User = Depends(require_treasurer),
    db: Session = Depends(get_db)
):
    return treasurer_views.list_members_with_payments(db, year_tier=year, status=status, search=search)


@router.get("/members/{member_id}/payments", response_model=MemberPaymentsResponse)
def get_member_payments(
    member_id: UUID,
    current_user: User = Depends(require_treasurer),
    db: Session = Depends(get_db)
):
    return treasurer_views.member_payments(db, member_id)


@router.post("/members", response_model=MemberSummary)
def create_member(
    payload: MemberCreate,
    current_user: User = Depends(require_treasurer),
    db: Session = Depends(get_db)
):
    """Register a member so they are seeded into monthly records."""
    return member_service.create_member(
        db,
        name=payload.name,
        usn=payload.usn,
        email=payload.email,
        year=payload.year,
        branch=payload.branch,
        role=payload.role,
        actor=current_user,
    )


@router.post("/members/{member_id}/suspend", response_model=MemberSummary)
def suspend_member(
    member_id: UUID,
    current_user: User = Depends(require_treasurer),
    db: Session = Depends(get_db)
):
    return member_service.set_member_active(db, member_id, False, current_user)


@router.post("/members/{member_id}/activate", response_model=MemberSummary)
def activate_member(
    member_id: UUID,
    current_user: User = Depends(require_treasurer),
    db: Session = Depends(get_db)
):
    return member_service.set_member_active(db, member_id, True, current_user)


# ---------------------------------------------------------------------------
# Payment verification
# ---------------------------------------------------------------------------

@router.get("/payments/requests", response_model=List[TreasurerPaymentResponse])
def get_payment_requests(
    status: PaymentStatus = PaymentStatus.AWAITING_VERIFICATION,
    month: Optional[str] = None,
    year: Optional[YearTier] = None,
    current_user: User = Depends(require_treasurer),
    db: Session = Depends(get_db)
):
    """Verification queue; defaults to payments members have confirmed."""
    return treasurer_views.list_payment_requests(db, status=status, month=month, year_tier=year)


@router.get("/payments/resubmissions", response_model=List[TreasurerPaymentResponse])
def get_resubmission_requests(
    current_user: User = Depends(require_treasurer),
    db: Session = Depends(get_db)
):
    return treasurer_views.list_resubmission_requests(db)


@router.post("/payments/manual", response_model=TreasurerPaymentResponse)
def create_manual_payment(
    payload: ManualPaymentCreate,
    current_user: User = Depends(require_treasurer),
    db: Session = Depends(get_db)
):
    """Record an offline payment as Paid for a month the member has no record for."""
    return payment_service.create_manual_payment(
        db,
        member_id=payload.member_id,
        month=payload.month,
        year=payload.year,
        amount=payload.amount,
        payment_method=payload.payment_method,
        note=payload.note,
        treasurer=current_user,
    )


@router.get("/payments/reference/{reference}", response_model=TreasurerPaymentResponse)
def get_payment_by_reference(
    reference: str,
    current_user: User = Depends(require_treasurer),
    db: Session = Depends(get_db)
):
    """Match a bank statement's UPI transaction note to its record."""
    return treasurer_views.find_payment_by_reference(db, reference)


@router.get("/payments/{record_id}", response_model=PaymentRecordDetailResponse)
def get_payment(
    record_id: UUID,
    current_user: User = Depends(require_treasurer),
    db: Session = Depends(get_db)
):
    return payment_history(db, record_id, current_user)


@router.post("/payments/{record_id}/verify", response_model=TreasurerPaymentResponse)
def verify_payment(
    record_id: UUID,
    current_user: User = Depends(require_treasurer),
    db: Session = Depends(get_db)
):
    """Accept a confirmed payment: credits the wallet and the member's total."""
    return payment_service.verify_payment(db, record_id, current_user)


@router.post("/payments/{record_id}/reject", response_model=TreasurerPaymentResponse)
def reject_payment(
    record_id: UUID,
    payload: RejectPaymentRequest,
    current_user: User = Depends(require_treasurer),
    db: Session = Depends(get_db)
):
    return payment_service.reject_payment(db, record_id, current_user, payload.reason)


@router.post("/payments/{record_id}/resubmission", response_model=TreasurerPaymentResponse)
def judge_resubmission(
    record_id: UUID,
    payload: JudgeResubmissionRequest,
    current_user: User = Depends(require_treasurer),
    db: Session = Depends(get_db)
):
    return payment_service.judge_resubmission(db, record_id, current_user, payload.approve, payload.reason)


@router.post("/payments/{record_id}/mark-paid", response_model=TreasurerPaymentResponse)
def mark_paid(
    record_id: UUID,
    payload: ManualMarkPaidRequest,
    current_user: User = Depends(require_treasurer),
    db: Session = Depends(get_db)
):
    """Internal "collected offline" mark. Does not change the official status or move money."""
    return payment_service.manual_mark_paid(db, record_id, current_user, payload.payment_method, payload.note)


# ---------------------------------------------------------------------------
# Monthly records
# ---------------------------------------------------------------------------

@router.get("/monthly-records", response_model=List[MonthlyRecordResponse])
def list_monthly_records(
    status: Optional[TemplateStatus] = None,
    current_user: User = Depends(require_treasurer),
    db: Session = Depends(get_db)
):
    return monthly_record_service.list_templates(db, status)


@router.post("/monthly-records", response_model=MonthlyRecordCreateResponse)
def create_monthly_record(
    payload: MonthlyRecordCreate,
    current_user: User = Depends(require_treasurer),
    db: Session = Depends(get_db)
):
    """Create the month's template and seed Pending records for every included member."""
    template = monthly_record_service.create_template(
        db,
        month=payload.month,
        year=payload.year,
        amounts={tier.value: amount for tier, amount in payload.amounts.items()},
        included_years=[tier.value for tier in payload.included_years],
        deadline=payload.deadline,
        treasurer=current_user,
    )
    created = monthly_record_service.seed_payment_records(db, template)
    db.refresh(template)
    return {"template": template, "records_created": created}


@router.get("/monthly-records/{template_id}", response_model=MonthlyRecordResponse)
def get_monthly_record(
    template_id: UUID,
    current_user: User = Depends(require_treasurer),
    db: Session = Depends(get_db)
):
    return monthly_record_service.get_template(db, template_id)


@router.put("/monthly-records/{template_id}", response_model=MonthlyRecordResponse)
def update_monthly_record(
    template_id: UUID,
    payload: MonthlyRecordUpdate,
    current_user: User = Depends(require_treasurer),
    db: Session = Depends(get_db)
):
    amounts = None
    if payload.amounts is not None:
        amounts = {tier.value: amount for tier, amount in payload.amounts.items()}
    included_years = None
    if payload.included_years is not None:
        included_years = [tier.value for tier in payload.included_years]
    return monthly_record_service.update_template(
        db,
        template_id,
        current_user,
        amounts=amounts,
        included_years=included_years,
        deadline=payload.deadline,
        status=payload.status,
        apply_to_pending=payload.apply_to_pending,
    )


@router.delete("/monthly-records/{template_id}")
def delete_monthly_record(
    template_id: UUID,
    current_user: User = Depends(require_treasurer),
    db: Session = Depends(get_db)
):
    """Delete the template only; payment records already created stay."""
    monthly_record_service.delete_template(db, template_id, current_user)
    return {"message": "Monthly record deleted"}


@router.post("/monthly-records/{template_id}/seed")
def seed_monthly_record(
    template_id: UUID,
    current_user: User = Depends(require_treasurer),
    db: Session = Depends(get_db)
):
    """Create missing records for members who joined after the month was set up."""
    template = monthly_record_service.get_template(db, template_id)
    created = monthly_record_service.seed_payment_records(db, template)
    return {"records_created": created}


@router.post("/monthly-records/{template_id}/recreate")
def recreate_monthly_record(
    template_id: UUID,
    payload: DestructiveMonthRequest,
    current_user: User = Depends(require_treasurer),
    db: Session = Depends(get_db)
):
    """Delete every record of the template's month and seed them again."""
    template = monthly_record_service.get_template(db, template_id)
    created = monthly_record_service.recreate_monthly_records(db, template, current_user, confirm=payload.confirm)
    return {"records_created": created}


@router.post("/payments/month/{year}/{month}/delete")
def delete_month_payments(
    year: int,
    month: str,
    payload: DestructiveMonthRequest,
    current_user: User = Depends(require_treasurer),
    db: Session = Depends(get_db)
):
    deleted = monthly_record_service.delete_monthly_records(db, month, year, current_user, confirm=payload.confirm)
    return {"records_deleted": deleted}


# ---------------------------------------------------------------------------
# Wallet
# ---------------------------------------------------------------------------

def _wallet_response(db: Session, limit: Optional[int] = None) -> dict:
    wallet = wallet_service.get_wallet(db)
    return {
        "balance": wallet.balance,
        "updated_at": wallet.updated_at,
        "transactions": wallet_service.list_transactions(db, limit=limit),
    }


@router.get("/wallet", response_model=WalletResponse)
def get_wallet(
    limit: Optional[int] = Query(None, ge=1),
    current_user: User = Depends(require_treasurer),
    db: Session = Depends(get_db)
):
    return _wallet_response(db, limit)


@router.post("/wallet/add", response_model=WalletResponse)
def add_money(
    payload: WalletMovementRequest,
    current_user: User = Depends(require_treasurer),
    db: Session = Depends(get_db)
):
    wallet_service.add_money(db, payload.amount, payload.description, current_user.id)
    return _wallet_response(db)


@router.post("/wallet/remove", response_model=WalletResponse)
def remove_money(
    payload: WalletMovementRequest,
    current_user: User = Depends(require_treasurer),
    db: Session = Depends(get_db)
):
    wallet_service.remove_money(db, payload.amount, payload.description, current_user.id)
    return _wallet_response(db)


@router.get("/wallet/audit", response_model=WalletAuditResponse)
def audit_wallet(
    current_user: User = Depends(require_treasurer),
    db: Session = Depends(get_db)
):
    """Replay the ledger and check it against the stored balance."""
    return wallet_service.audit_wallet(db)


# ---------------------------------------------------------------------------
# UPI settings
# ---------------------------------------------------------------------------

@router.get("/upi")
def get_upi(
    current_user: User = Depends(require_treasurer),
    db: Session = Depends(get_db)
):
    club_settings = get_or_create_settings(db)
    db.commit()
    return {
        "upi_id": club_settings.treasurer_upi,
        "treasurer_name": club_settings.treasurer_name,
        "history": [UPIHistoryResponse.model_validate(h) for h in club_settings.upi_history],
    }


@router.post("/upi", response_model=ClubSettingsResponse)
def update_upi(
    payload: TreasurerUPIUpdate,
    current_user: User = Depends(require_treasurer),
    db: Session = Depends(get_db)
):
    club_settings = set_treasurer_upi(db, payload.upi_id, payload.treasurer_name, current_user)
    return settings_payload(club_settings)


# ---------------------------------------------------------------------------
# Reconciliation scheduler
# ---------------------------------------------------------------------------

@router.get("/scheduler/status")
def scheduler_status(
    current_user: User = Depends(require_treasurer),
):
    from app.services.scheduler import get_scheduler_status
    return get_scheduler_status()


@router.post("/scheduler/reschedule")
def reschedule(
    payload: SchedulerRescheduleRequest,
    current_user: User = Depends(require_treasurer),
):
    """Move the daily reconciliation sweep to another time of day."""
    from app.services.scheduler import get_scheduler_status, reschedule_jobs
    try:
        reschedule_jobs(payload.hour, payload.minute)
    except RuntimeError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return get_scheduler_status()


@router.post("/scheduler/run")
def run_reconciliation(
    current_user: User = Depends(require_treasurer),
    db: Session = Depends(get_db)
):
    """Run the reconciliation sweep now."""
    from app.services.reconciliation import reconcile_records
    result = reconcile_records(db)
    return {
        "failed": len(result["failed"]),
        "recovered": len(result["recovered"]),
        "errors": result["errors"],
    }
