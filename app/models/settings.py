from sqlalchemy import Column, String, ForeignKey, DateTime, Numeric, Integer, Text, Uuid, text, func
from sqlalchemy.orm import relationship
import uuid
from app.db.base import Base
from decimal import Decimal

from app.models.user import YearTier

# Fallback monthly amounts when no monthly record template covers a month
DEFAULT_FUND_AMOUNTS = {
    YearTier.FIRST: Decimal("50.00"),
    YearTier.SECOND: Decimal("100.00"),
    YearTier.THIRD: Decimal("150.00"),
    YearTier.FOURTH: Decimal("200.00"),
}


class ClubSettings(Base):
    """Club-wide payment configuration (single row)."""
    __tablename__ = "club_settings"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    singleton_key = Column(Integer, nullable=False, unique=True, default=1)
    club_name = Column(String(100), nullable=False, default="Aurora Theatrical Club")
    treasurer_upi = Column(String(100), nullable=True)
    treasurer_name = Column(String(100), nullable=True)
    payment_instructions = Column(
        Text,
        nullable=False,
        default="Please pay the monthly group fund by the deadline. Upload payment proof after payment.",
    )
    first_year_amount = Column(Numeric(10, 2), nullable=False, default=DEFAULT_FUND_AMOUNTS[YearTier.FIRST])
    second_year_amount = Column(Numeric(10, 2), nullable=False, default=DEFAULT_FUND_AMOUNTS[YearTier.SECOND])
    third_year_amount = Column(Numeric(10, 2), nullable=False, default=DEFAULT_FUND_AMOUNTS[YearTier.THIRD])
    fourth_year_amount = Column(Numeric(10, 2), nullable=False, default=DEFAULT_FUND_AMOUNTS[YearTier.FOURTH])
    payment_deadline_day = Column(Integer, nullable=False, default=5)  # day of month, 1-31
    updated_at = Column(DateTime, nullable=True, onupdate=func.now())

    # Relationships
    upi_history = relationship("TreasurerUPIHistory", order_by="desc(TreasurerUPIHistory.set_at)")

    def fund_amount_for(self, tier: YearTier) -> Decimal:
        return {
            YearTier.FIRST: self.first_year_amount,
            YearTier.SECOND: self.second_year_amount,
            YearTier.THIRD: self.third_year_amount,
            YearTier.FOURTH: self.fourth_year_amount,
        }[YearTier(tier)]


class TreasurerUPIHistory(Base):
    """Every UPI id the treasurer has configured."""
    __tablename__ = "treasurer_upi_history"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    club_settings_id = Column(Uuid(as_uuid=True), ForeignKey("club_settings.id"), nullable=False, index=True)
    upi_id = Column(String(100), nullable=False)
    treasurer_name = Column(String(100), nullable=True)
    set_by = Column(Uuid(as_uuid=True), ForeignKey("user.id"), nullable=False)
    set_at = Column(DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP"))
