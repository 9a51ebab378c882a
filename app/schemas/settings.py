from pydantic import BaseModel, Field
from typing import Optional, Dict
from datetime import datetime
from decimal import Decimal


class TreasurerUPIUpdate(BaseModel):
    upi_id: str = Field(..., description="UPI id, e.g. treasurer@okaxis")
    treasurer_name: Optional[str] = None


class ClubSettingsResponse(BaseModel):
    club_name: str
    treasurer_upi: Optional[str] = None
    treasurer_name: Optional[str] = None
    payment_instructions: str
    fund_amount_by_year: Dict[str, Decimal]
    payment_deadline_day: int


class UPIHistoryResponse(BaseModel):
    upi_id: str
    treasurer_name: Optional[str] = None
    set_at: datetime

    class Config:
        from_attributes = True


class SchedulerRescheduleRequest(BaseModel):
    hour: int = Field(..., ge=0, le=23)
    minute: int = Field(0, ge=0, le=59)
