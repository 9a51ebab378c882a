import logging
from typing import Optional

from sqlalchemy.orm import Session

from app.core.audit import write_audit_log
from app.core.clock import utcnow
from app.core.config import settings
from app.core.exceptions import ValidationError
from app.models.settings import ClubSettings, TreasurerUPIHistory
from app.models.user import User, YearTier
from app.services.payment_reference import is_valid_upi_id

logger = logging.getLogger(__name__)


def get_or_create_settings(db: Session) -> ClubSettings:
    """The single club settings row; created with defaults on first access (flush only)."""
    club_settings = db.query(ClubSettings).filter(ClubSettings.singleton_key == 1).first()
    if club_settings is None:
        club_settings = ClubSettings(singleton_key=1)
        db.add(club_settings)
        db.flush()
    return club_settings


def get_treasurer_upi(db: Session) -> Optional[str]:
    """Configured UPI id, falling back to DEFAULT_TREASURER_UPI."""
    club_settings = get_or_create_settings(db)
    return club_settings.treasurer_upi or settings.DEFAULT_TREASURER_UPI


def set_treasurer_upi(db: Session, upi_id: str, treasurer_name: Optional[str], actor: User) -> ClubSettings:
    upi_id = (upi_id or "").strip()
    if not is_valid_upi_id(upi_id):
        raise ValidationError("Invalid UPI ID format. Expected something like name@bank")

    club_settings = get_or_create_settings(db)
    club_settings.treasurer_upi = upi_id
    if treasurer_name:
        club_settings.treasurer_name = treasurer_name.strip()
    club_settings.updated_at = utcnow()

    db.add(TreasurerUPIHistory(
        club_settings_id=club_settings.id,
        upi_id=upi_id,
        treasurer_name=club_settings.treasurer_name,
        set_by=actor.id,
        set_at=utcnow(),
    ))
    db.commit()
    db.refresh(club_settings)

    logger.info("Treasurer UPI updated by %s", actor.id)
    write_audit_log(actor, "SET_TREASURER_UPI", f"upi={upi_id}")
    return club_settings


def settings_payload(club_settings: ClubSettings) -> dict:
    return {
        "club_name": club_settings.club_name,
        "treasurer_upi": club_settings.treasurer_upi or settings.DEFAULT_TREASURER_UPI,
        "treasurer_name": club_settings.treasurer_name,
        "payment_instructions": club_settings.payment_instructions,
        "fund_amount_by_year": {tier.value: club_settings.fund_amount_for(tier) for tier in YearTier},
        "payment_deadline_day": club_settings.payment_deadline_day,
    }
