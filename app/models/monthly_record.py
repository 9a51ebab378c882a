from sqlalchemy import Column, String, ForeignKey, DateTime, Numeric, Integer, JSON, Index, Enum as SQLEnum, Uuid, text, func
from sqlalchemy.orm import relationship
import uuid
from app.db.base import Base
import enum
from decimal import Decimal
from typing import Dict, List, Optional

from app.models.user import YearTier


class TemplateStatus(str, enum.Enum):
    """Monthly record template status."""
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Column holding each tier's amount
TIER_AMOUNT_COLUMNS = {
    YearTier.FIRST: "first_year_amount",
    YearTier.SECOND: "second_year_amount",
    YearTier.THIRD: "third_year_amount",
    YearTier.FOURTH: "fourth_year_amount",
}


class MonthlyRecordTemplate(Base):
    """Treasurer-defined amounts and deadline for one month's group fund."""
    __tablename__ = "monthly_record_template"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    month = Column(String(10), nullable=False)
    month_number = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False)
    deadline = Column(DateTime, nullable=False)
    first_year_amount = Column(Numeric(10, 2), nullable=True)
    second_year_amount = Column(Numeric(10, 2), nullable=True)
    third_year_amount = Column(Numeric(10, 2), nullable=True)
    fourth_year_amount = Column(Numeric(10, 2), nullable=True)
    included_years = Column(JSON, nullable=False)  # list of tier values, e.g. ["1st", "2nd"]
    status = Column(SQLEnum(TemplateStatus, native_enum=False, values_callable=lambda obj: [e.value for e in obj]), default=TemplateStatus.ACTIVE, nullable=False)
    created_by = Column(Uuid(as_uuid=True), ForeignKey("user.id"), nullable=False)
    created_at = Column(DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP"))
    updated_at = Column(DateTime, nullable=True, onupdate=func.now())

    # Relationships
    creator = relationship("User", foreign_keys=[created_by])

    __table_args__ = (
        Index("idx_monthly_record_template_month", "month", "year", "status"),
    )

    def amount_for(self, tier: YearTier) -> Optional[Decimal]:
        """Amount due for a tier, or None when the tier has no amount set."""
        return getattr(self, TIER_AMOUNT_COLUMNS[YearTier(tier)])

    def includes(self, tier: YearTier) -> bool:
        return YearTier(tier).value in (self.included_years or [])

    @property
    def amounts(self) -> Dict[str, Optional[Decimal]]:
        return {tier.value: self.amount_for(tier) for tier in YearTier}

    @property
    def included_tiers(self) -> List[YearTier]:
        return [YearTier(value) for value in (self.included_years or [])]
