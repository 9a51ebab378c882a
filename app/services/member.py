import logging
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.core.audit import write_audit_log
from app.core.exceptions import NotFound, ValidationError
from app.models.user import User, UserRoleEnum, YearTier

logger = logging.getLogger(__name__)


def create_member(
    db: Session,
    name: str,
    usn: str,
    email: str,
    year: YearTier,
    branch: Optional[str] = None,
    role: UserRoleEnum = UserRoleEnum.MEMBER,
    actor: Optional[User] = None,
) -> User:
    """Register a club member (or treasurer). Credentials stay with the auth service."""
    name = (name or "").strip()
    usn = (usn or "").strip().upper()
    email = (email or "").strip().lower()
    if not name or not usn or not email:
        raise ValidationError("Name, USN and email are required")

    existing = db.query(User).filter(or_(User.usn == usn, User.email == email)).first()
    if existing:
        raise ValidationError(f"A user with USN {usn} or email {email} already exists")

    user = User(
        name=name,
        usn=usn,
        email=email,
        year=YearTier(year),
        branch=branch,
        role=UserRoleEnum(role),
        total_paid=Decimal("0.00"),
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)

    logger.info("Created %s %s (%s)", user.role.value, user.id, user.usn)
    write_audit_log(actor, "CREATE_MEMBER", f"usn={user.usn} role={user.role.value} year={user.year.value}")
    return user


def set_member_active(db: Session, member_id: UUID, is_active: bool, actor: User) -> User:
    """Suspend or reactivate a member.

    Inactive members are skipped when seeding and hidden from rosters; their
    existing records and totals are kept.
    """
    member = db.query(User).filter(User.id == member_id, User.role == UserRoleEnum.MEMBER).first()
    if not member:
        raise NotFound("Member not found")

    member.is_active = is_active
    db.commit()
    db.refresh(member)

    action = "ACTIVATE_MEMBER" if is_active else "SUSPEND_MEMBER"
    logger.info("Member %s %s by %s", member.id, "activated" if is_active else "suspended", actor.id)
    write_audit_log(actor, action, f"usn={member.usn}")
    return member
