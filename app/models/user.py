from sqlalchemy import Column, String, Boolean, DateTime, Numeric, Enum as SQLEnum, Uuid, text
from sqlalchemy.orm import relationship
import uuid
from app.db.base import Base
import enum
from decimal import Decimal


class UserRoleEnum(str, enum.Enum):
    """Club roles."""
    MEMBER = "member"
    TREASURER = "treasurer"


class YearTier(str, enum.Enum):
    """Academic year of a member; drives the monthly due amount."""
    FIRST = "1st"
    SECOND = "2nd"
    THIRD = "3rd"
    FOURTH = "4th"


class User(Base):
    """Club member or treasurer. Credentials live in the external auth service."""
    __tablename__ = "user"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(50), nullable=False)
    usn = Column(String(20), nullable=False, unique=True, index=True)  # University seat number
    email = Column(String(255), nullable=False, unique=True, index=True)
    year = Column(SQLEnum(YearTier, native_enum=False, values_callable=lambda obj: [e.value for e in obj]), nullable=False)
    branch = Column(String(100), nullable=True)
    role = Column(SQLEnum(UserRoleEnum, native_enum=False, values_callable=lambda obj: [e.value for e in obj]), default=UserRoleEnum.MEMBER, nullable=False)
    total_paid = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP"))

    # Relationships
    payment_records = relationship("PaymentRecord", back_populates="member", foreign_keys="[PaymentRecord.member_id]")
