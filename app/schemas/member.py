from pydantic import BaseModel, Field
from typing import Optional

from app.models.user import UserRoleEnum, YearTier


class MemberCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    usn: str = Field(..., min_length=1, max_length=20, description="University seat number")
    email: str = Field(..., min_length=3, max_length=255)
    year: YearTier
    branch: Optional[str] = None
    role: UserRoleEnum = UserRoleEnum.MEMBER
