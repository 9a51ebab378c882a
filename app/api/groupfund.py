from fastapi import APIRouter, Depends, UploadFile, File, Form
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session
from app.db.base import get_db
from app.core.dependencies import get_current_active_user, require_member
from app.models.user import User
from app.schemas.payment import (
    PaymentRecordDetailResponse,
    PaymentRecordResponse,
    PaymentSummaryResponse,
    QRCodeRequest,
    QRCodeResponse,
)
from app.schemas.monthly_record import MonthlyRecordResponse
from app.schemas.settings import ClubSettingsResponse
from app.services import member_payments
from app.services import monthly_record as monthly_record_service
from app.services.blob_store import MEDIA_TYPES, resolve_payment_proof, save_payment_proof
from app.services.club_settings import get_or_create_settings, settings_payload
from app.services.payment import confirm_payment_intent, get_payment_record, resubmit_payment
from typing import List, Optional
from uuid import UUID

router = APIRouter(prefix="/api/groupfund", tags=["groupfund"])


@router.get("/settings", response_model=ClubSettingsResponse)
def get_settings(
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db)
):
    """Club payment settings: UPI id, instructions and default amounts."""
    club_settings = get_or_create_settings(db)
    db.commit()
    return settings_payload(club_settings)


@router.get("/monthly-records/current", response_model=Optional[MonthlyRecordResponse])
def get_current_monthly_record(
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db)
):
    return monthly_record_service.current_template(db)


@router.get("/monthly-records/active", response_model=List[MonthlyRecordResponse])
def get_active_monthly_records(
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db)
):
    return monthly_record_service.active_templates(db)


@router.post("/qr", response_model=QRCodeResponse)
def generate_qr(
    payload: QRCodeRequest,
    current_user: User = Depends(require_member),
    db: Session = Depends(get_db)
):
    """UPI payment data for a month; creates the month's payment record if needed."""
    return member_payments.generate_payment_qr(db, current_user, payload.month, payload.year)


@router.get("/payments", response_model=List[PaymentRecordResponse])
def list_my_payments(
    current_user: User = Depends(require_member),
    db: Session = Depends(get_db)
):
    return member_payments.list_member_payments(db, current_user)


@router.get("/payments/summary", response_model=PaymentSummaryResponse)
def my_payment_summary(
    current_user: User = Depends(require_member),
    db: Session = Depends(get_db)
):
    return member_payments.member_payment_summary(db, current_user)


@router.get("/payments/failed", response_model=List[PaymentRecordResponse])
def my_failed_payments(
    current_user: User = Depends(require_member),
    db: Session = Depends(get_db)
):
    return member_payments.list_member_failed_payments(db, current_user)


@router.get("/payments/{record_id}", response_model=PaymentRecordDetailResponse)
def get_my_payment(
    record_id: UUID,
    current_user: User = Depends(require_member),
    db: Session = Depends(get_db)
):
    return member_payments.payment_history(db, record_id, current_user)


@router.post("/payments/{record_id}/confirm", response_model=PaymentRecordResponse)
def confirm_payment(
    record_id: UUID,
    file: Optional[UploadFile] = File(None),
    current_user: User = Depends(require_member),
    db: Session = Depends(get_db)
):
    """Member confirms they paid; optionally attaches a screenshot as proof."""
    record = get_payment_record(db, record_id)
    proof_url = None
    if file is not None and record.member_id == current_user.id:
        proof_url = save_payment_proof(record.id, file.filename, file.file.read())
    return confirm_payment_intent(db, record_id, current_user, proof_url=proof_url)


@router.post("/payments/{record_id}/resubmit", response_model=PaymentRecordResponse)
def resubmit(
    record_id: UUID,
    file: UploadFile = File(...),
    note: Optional[str] = Form(None),
    current_user: User = Depends(require_member),
    db: Session = Depends(get_db)
):
    """Upload new proof for a failed payment."""
    record = get_payment_record(db, record_id)
    proof_url = None
    if record.member_id == current_user.id:
        proof_url = save_payment_proof(record.id, file.filename, file.file.read(), kind="resubmission")
    return resubmit_payment(db, record_id, current_user, proof_url or "", note)


@router.get("/proofs/{filename:path}")
def get_proof(
    filename: str,
    current_user: User = Depends(get_current_active_user),
):
    """Serve a stored payment proof."""
    file_path = resolve_payment_proof(filename)
    media_type = MEDIA_TYPES.get(file_path.suffix.lower(), "application/octet-stream")
    return FileResponse(path=str(file_path), filename=file_path.name, media_type=media_type)
