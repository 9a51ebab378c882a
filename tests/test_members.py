import pytest

from app.core.exceptions import NotFound, ValidationError
from app.models.user import User, UserRoleEnum, YearTier
from app.services.member import create_member, set_member_active


# =============================================================================
# Member registration
# =============================================================================

class TestCreateMember:
    """Tests for registering club members."""

    def test_create(self, db, treasurer):
        user = create_member(db, " Neha ", "1at23cs010", "Neha@Example.com", YearTier.FIRST, "ECE", actor=treasurer)

        assert user.name == "Neha"
        assert user.usn == "1AT23CS010"
        assert user.email == "neha@example.com"
        assert user.role == UserRoleEnum.MEMBER
        assert user.is_active is True
        assert user.total_paid == 0

    def test_duplicate_email(self, db, member):
        with pytest.raises(ValidationError):
            create_member(db, "Copy", "1AT23CS011", "asha@example.com", YearTier.FIRST)

    def test_required_fields(self, db):
        with pytest.raises(ValidationError):
            create_member(db, "", "1AT23CS012", "x@example.com", YearTier.FIRST)

    def test_create_over_http(self, treasurer_client):
        response = treasurer_client.post("/api/treasurer/members", json={
            "name": "Neha",
            "usn": "1AT23CS010",
            "email": "neha@example.com",
            "year": "2nd",
        })

        assert response.status_code == 200
        assert response.json()["year"] == "2nd"


# =============================================================================
# Suspension
# =============================================================================

class TestMemberActivation:
    """Tests for suspending and reactivating members."""

    def test_suspend_and_activate(self, db, treasurer, member):
        assert set_member_active(db, member.id, False, treasurer).is_active is False
        assert set_member_active(db, member.id, True, treasurer).is_active is True

    def test_treasurer_is_not_a_member(self, db, treasurer):
        with pytest.raises(NotFound):
            set_member_active(db, treasurer.id, False, treasurer)

    def test_suspended_member_not_seeded(self, db, treasurer, member):
        from datetime import date
        from app.services.monthly_record import create_template, seed_payment_records

        set_member_active(db, member.id, False, treasurer)
        template = create_template(db, "March", 2025, {"1st": 50}, ["1st"], date(2025, 3, 5), treasurer)

        assert seed_payment_records(db, template) == 0
        assert db.query(User).filter(User.is_active.is_(True), User.role == UserRoleEnum.MEMBER).count() == 0
