from pydantic import BaseModel, Field
from typing import Optional, List, Dict
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from app.models.monthly_record import TemplateStatus
from app.models.user import YearTier


class MonthlyRecordCreate(BaseModel):
    """Create the month's template and seed records for included members."""
    month: str = Field(..., description="Month name or number")
    year: int = Field(..., ge=2020, le=2100)
    amounts: Dict[YearTier, Optional[Decimal]] = Field(..., description="Amount per year tier, e.g. {'1st': 50}")
    included_years: List[YearTier] = Field(..., min_length=1)
    deadline: date


class MonthlyRecordUpdate(BaseModel):
    amounts: Optional[Dict[YearTier, Optional[Decimal]]] = None
    included_years: Optional[List[YearTier]] = None
    deadline: Optional[date] = None
    status: Optional[TemplateStatus] = None
    apply_to_pending: bool = Field(False, description="Also update amount/deadline of untouched Pending records")


class MonthlyRecordResponse(BaseModel):
    id: UUID
    month: str
    month_number: int
    year: int
    deadline: datetime
    amounts: Dict[str, Optional[Decimal]]
    included_years: List[str]
    status: TemplateStatus
    created_by: UUID
    created_at: datetime

    class Config:
        from_attributes = True


class MonthlyRecordCreateResponse(BaseModel):
    template: MonthlyRecordResponse
    records_created: int


class DestructiveMonthRequest(BaseModel):
    confirm: bool = Field(False, description="Must be true; records are deleted permanently")
