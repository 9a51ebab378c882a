import uuid

import pytest
from datetime import timedelta
from decimal import Decimal

from conftest import DEADLINE, NOW
from app.core.exceptions import (
    AlreadyPending,
    AlreadyVerified,
    DuplicateRecord,
    InvalidStateTransition,
    NotConfirmed,
    NotFound,
    Unauthorized,
    ValidationError,
)
from app.models.payment import PaymentMethod, PaymentRecord, PaymentStatus, PaymentStatusHistory, TreasurerNote
from app.models.user import User
from app.models.wallet import WalletTransaction
from app.services import payment as payment_service
from app.services import wallet as wallet_service


def _reload_member(db, member):
    return db.query(User).populate_existing().filter(User.id == member.id).one()


def _history(db, record):
    return db.query(PaymentStatusHistory).filter(
        PaymentStatusHistory.payment_record_id == record.id
    ).order_by(PaymentStatusHistory.sequence).all()


# =============================================================================
# Confirmation (Pending -> AwaitingVerification)
# =============================================================================

class TestConfirmPaymentIntent:
    """Tests for the member's "I paid" confirmation."""

    def test_confirm_moves_to_awaiting(self, db, member, pending_record):
        """Confirmation sets the flag, the date and the status."""
        record = payment_service.confirm_payment_intent(db, pending_record.id, member, now=NOW)

        assert record.status == PaymentStatus.AWAITING_VERIFICATION
        assert record.member_confirmed_payment is True
        assert record.member_confirmed_date == NOW
        assert _history(db, record)[-1].reason == "Member confirmed payment completion"

    def test_confirm_with_proof(self, db, member, pending_record):
        """An optional proof URL is stored with the confirmation."""
        record = payment_service.confirm_payment_intent(
            db, pending_record.id, member, proof_url="/api/groupfund/proofs/p.png", now=NOW
        )

        assert record.payment_proof == "/api/groupfund/proofs/p.png"

    def test_confirm_twice_rejected(self, db, member, pending_record):
        """A second confirmation is refused."""
        payment_service.confirm_payment_intent(db, pending_record.id, member, now=NOW)

        with pytest.raises(InvalidStateTransition):
            payment_service.confirm_payment_intent(db, pending_record.id, member, now=NOW)

    def test_confirm_other_members_record(self, db, other_member, pending_record):
        """Members can only confirm their own records."""
        with pytest.raises(Unauthorized):
            payment_service.confirm_payment_intent(db, pending_record.id, other_member, now=NOW)

    def test_confirm_after_deadline(self, db, member, pending_record):
        """An overdue record is failed first, so confirmation is refused."""
        with pytest.raises(InvalidStateTransition):
            payment_service.confirm_payment_intent(db, pending_record.id, member, now=DEADLINE + timedelta(days=1))

        db.expire_all()
        assert db.get(PaymentRecord, pending_record.id).status == PaymentStatus.FAILED

    def test_confirm_unknown_record(self, db, member):
        """Unknown ids raise NotFound."""
        with pytest.raises(NotFound):
            payment_service.confirm_payment_intent(db, uuid.uuid4(), member, now=NOW)


# =============================================================================
# Verification (AwaitingVerification -> Paid)
# =============================================================================

class TestVerifyPayment:
    """Tests for treasurer verification and its money movement."""

    def test_confirm_then_verify(self, db, member, treasurer, pending_record):
        """Wallet and member total both grow by the amount."""
        payment_service.confirm_payment_intent(db, pending_record.id, member, now=NOW)
        record = payment_service.verify_payment(db, pending_record.id, treasurer, now=NOW)

        assert record.status == PaymentStatus.PAID
        assert record.verified_by == treasurer.id
        assert record.verified_date == NOW
        assert record.payment_date == NOW
        assert wallet_service.get_wallet(db).balance == Decimal("50.00")
        assert _reload_member(db, member).total_paid == Decimal("50.00")

        credit = db.query(WalletTransaction).filter(WalletTransaction.payment_record_id == record.id).one()
        assert credit.amount == Decimal("50.00")
        assert credit.actor_id == treasurer.id

    def test_verify_twice_credits_once(self, db, member, treasurer, awaiting_record):
        """A repeated verify fails and never double-credits."""
        payment_service.verify_payment(db, awaiting_record.id, treasurer, now=NOW)

        with pytest.raises(AlreadyVerified):
            payment_service.verify_payment(db, awaiting_record.id, treasurer, now=NOW)

        assert wallet_service.get_wallet(db).balance == Decimal("50.00")
        assert _reload_member(db, member).total_paid == Decimal("50.00")
        assert db.query(WalletTransaction).count() == 1

    def test_verify_unconfirmed(self, db, treasurer, pending_record):
        """Pending records the member never confirmed cannot be verified."""
        with pytest.raises(NotConfirmed):
            payment_service.verify_payment(db, pending_record.id, treasurer, now=NOW)

        assert db.query(WalletTransaction).count() == 0

    def test_verify_keeps_existing_payment_date(self, db, treasurer, make_record, member):
        """An existing payment date is not overwritten."""
        paid_on = NOW - timedelta(days=1)
        record = make_record(
            member,
            status=PaymentStatus.AWAITING_VERIFICATION,
            member_confirmed_payment=True,
            payment_date=paid_on,
        )

        record = payment_service.verify_payment(db, record.id, treasurer, now=NOW)

        assert record.payment_date == paid_on

    def test_verify_rolls_back_when_wallet_fails(self, db, treasurer, awaiting_record, monkeypatch):
        """Status, total and wallet change together or not at all."""
        def broken(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(payment_service, "post_transaction", broken)

        with pytest.raises(RuntimeError):
            payment_service.verify_payment(db, awaiting_record.id, treasurer, now=NOW)

        db.expire_all()
        record = db.get(PaymentRecord, awaiting_record.id)
        assert record.status == PaymentStatus.AWAITING_VERIFICATION
        assert record.verified_by is None
        assert record.member.total_paid == Decimal("0.00")


# =============================================================================
# Explicit rejection
# =============================================================================

class TestRejectPayment:
    """Tests for treasurer rejection."""

    def test_reject_unconfirmed_pending(self, db, treasurer, pending_record):
        """Rejection fails the record with the reason and moves no money."""
        record = payment_service.reject_payment(db, pending_record.id, treasurer, "test", now=NOW)

        assert record.status == PaymentStatus.FAILED
        assert record.rejection_reason == "test"
        assert wallet_service.get_wallet(db).balance == Decimal("0.00")
        assert _history(db, record)[-1].reason == "Payment rejected by treasurer: test"

    def test_reject_awaiting(self, db, treasurer, awaiting_record):
        """Confirmed payments can be rejected too."""
        record = payment_service.reject_payment(db, awaiting_record.id, treasurer, "No credit in bank", now=NOW)

        assert record.status == PaymentStatus.FAILED

    def test_reject_requires_reason(self, db, treasurer, pending_record):
        """Blank reasons are refused."""
        with pytest.raises(ValidationError):
            payment_service.reject_payment(db, pending_record.id, treasurer, "   ", now=NOW)

    def test_reject_paid(self, db, treasurer, awaiting_record):
        """Paid records cannot be rejected."""
        payment_service.verify_payment(db, awaiting_record.id, treasurer, now=NOW)

        with pytest.raises(AlreadyVerified):
            payment_service.reject_payment(db, awaiting_record.id, treasurer, "late", now=NOW)

    def test_reject_failed(self, db, treasurer, pending_record):
        """Failed records cannot be rejected again."""
        payment_service.reject_payment(db, pending_record.id, treasurer, "first", now=NOW)

        with pytest.raises(InvalidStateTransition):
            payment_service.reject_payment(db, pending_record.id, treasurer, "second", now=NOW)


# =============================================================================
# Resubmission
# =============================================================================

class TestResubmission:
    """Tests for resubmitting proof on a failed record and judging it."""

    @pytest.fixture
    def failed_record(self, db, treasurer, pending_record):
        return payment_service.reject_payment(db, pending_record.id, treasurer, "Screenshot unreadable", now=NOW)

    def test_resubmit_keeps_failed(self, db, member, failed_record):
        """Resubmission stores the proof but the status stays Failed."""
        record = payment_service.resubmit_payment(db, failed_record.id, member, "/proofs/new.png", "Clearer copy", now=NOW)

        assert record.status == PaymentStatus.FAILED
        assert record.resubmitted_photo == "/proofs/new.png"
        assert record.resubmitted_date == NOW
        assert record.resubmission_note == "Clearer copy"
        assert record.has_pending_resubmission is True

    def test_resubmit_non_failed(self, db, member, pending_record):
        """Only Failed records accept a resubmission."""
        with pytest.raises(InvalidStateTransition):
            payment_service.resubmit_payment(db, pending_record.id, member, "/proofs/x.png", now=NOW)

    def test_resubmit_twice(self, db, member, failed_record):
        """At most one resubmission may be outstanding."""
        payment_service.resubmit_payment(db, failed_record.id, member, "/proofs/a.png", now=NOW)

        with pytest.raises(AlreadyPending):
            payment_service.resubmit_payment(db, failed_record.id, member, "/proofs/b.png", now=NOW)

    def test_resubmit_requires_proof(self, db, member, failed_record):
        with pytest.raises(ValidationError):
            payment_service.resubmit_payment(db, failed_record.id, member, "", now=NOW)

    def test_resubmit_other_members_record(self, db, other_member, failed_record):
        with pytest.raises(Unauthorized):
            payment_service.resubmit_payment(db, failed_record.id, other_member, "/proofs/a.png", now=NOW)

    def test_approve_resubmission(self, db, member, treasurer, failed_record):
        """Approval pays the record from the resubmitted proof."""
        payment_service.resubmit_payment(db, failed_record.id, member, "/proofs/new.png", now=NOW)
        judged_at = NOW + timedelta(hours=2)

        record = payment_service.judge_resubmission(db, failed_record.id, treasurer, approve=True, now=judged_at)

        assert record.status == PaymentStatus.PAID
        assert record.payment_proof == "/proofs/new.png"
        assert record.payment_date == NOW
        assert record.verified_by == treasurer.id
        assert record.resubmitted_photo is None
        assert wallet_service.get_wallet(db).balance == Decimal("50.00")
        assert _reload_member(db, member).total_paid == Decimal("50.00")
        assert _history(db, record)[-1].reason == "Resubmitted payment verified by treasurer"

    def test_approve_twice_credits_once(self, db, member, treasurer, failed_record):
        payment_service.resubmit_payment(db, failed_record.id, member, "/proofs/new.png", now=NOW)
        payment_service.judge_resubmission(db, failed_record.id, treasurer, approve=True, now=NOW)

        with pytest.raises(AlreadyVerified):
            payment_service.judge_resubmission(db, failed_record.id, treasurer, approve=True, now=NOW)

        assert db.query(WalletTransaction).count() == 1

    def test_reject_resubmission_allows_another(self, db, member, treasurer, failed_record):
        """Rejected resubmission clears the submission so the member can try again."""
        payment_service.resubmit_payment(db, failed_record.id, member, "/proofs/a.png", now=NOW)

        record = payment_service.judge_resubmission(
            db, failed_record.id, treasurer, approve=False, reason="Wrong amount", now=NOW
        )

        assert record.status == PaymentStatus.FAILED
        assert record.resubmitted_photo is None
        assert record.resubmitted_date is None
        assert record.resubmission_note is None
        assert record.rejection_reason == "Wrong amount"
        assert wallet_service.get_wallet(db).balance == Decimal("0.00")

        again = payment_service.resubmit_payment(db, failed_record.id, member, "/proofs/b.png", now=NOW)
        assert again.resubmitted_photo == "/proofs/b.png"

    def test_reject_resubmission_requires_reason(self, db, member, treasurer, failed_record):
        payment_service.resubmit_payment(db, failed_record.id, member, "/proofs/a.png", now=NOW)

        with pytest.raises(ValidationError):
            payment_service.judge_resubmission(db, failed_record.id, treasurer, approve=False, now=NOW)

    def test_judge_without_resubmission(self, db, treasurer, failed_record):
        with pytest.raises(InvalidStateTransition):
            payment_service.judge_resubmission(db, failed_record.id, treasurer, approve=True, now=NOW)


# =============================================================================
# Internal "marked paid" note
# =============================================================================

class TestManualMarkPaid:
    """Tests for the treasurer's cosmetic cash-collected mark."""

    def test_mark_pending(self, db, member, treasurer, pending_record):
        """The note is stored; status, wallet and total are untouched."""
        history_before = len(_history(db, pending_record))

        record = payment_service.manual_mark_paid(
            db, pending_record.id, treasurer, PaymentMethod.CASH, "Collected at rehearsal", now=NOW
        )

        assert record.status == PaymentStatus.PENDING
        assert record.treasurer_note.acknowledged_cash is True
        assert record.treasurer_note.method == PaymentMethod.CASH
        assert record.treasurer_note.marked_by == treasurer.id
        assert wallet_service.get_wallet(db).balance == Decimal("0.00")
        assert _reload_member(db, member).total_paid == Decimal("0.00")
        assert len(_history(db, record)) == history_before

    def test_mark_awaiting_rejected(self, db, treasurer, awaiting_record):
        """Only Pending records may be marked; nothing is written otherwise."""
        history_before = len(_history(db, awaiting_record))

        with pytest.raises(InvalidStateTransition):
            payment_service.manual_mark_paid(db, awaiting_record.id, treasurer, PaymentMethod.CASH, now=NOW)

        db.expire_all()
        record = db.get(PaymentRecord, awaiting_record.id)
        assert record.status == PaymentStatus.AWAITING_VERIFICATION
        assert record.treasurer_note is None
        assert len(_history(db, record)) == history_before
        assert db.query(TreasurerNote).count() == 0

    def test_mark_twice(self, db, treasurer, pending_record):
        payment_service.manual_mark_paid(db, pending_record.id, treasurer, PaymentMethod.CASH, now=NOW)

        with pytest.raises(InvalidStateTransition):
            payment_service.manual_mark_paid(db, pending_record.id, treasurer, PaymentMethod.CASH, now=NOW)

    def test_mark_requires_offline_method(self, db, treasurer, pending_record):
        with pytest.raises(ValidationError):
            payment_service.manual_mark_paid(db, pending_record.id, treasurer, PaymentMethod.UPI, now=NOW)

    def test_marked_record_can_still_be_confirmed_and_verified(self, db, member, treasurer, pending_record):
        """The note does not block the official path, which credits exactly once."""
        payment_service.manual_mark_paid(db, pending_record.id, treasurer, PaymentMethod.CASH, now=NOW)
        payment_service.confirm_payment_intent(db, pending_record.id, member, now=NOW)
        payment_service.verify_payment(db, pending_record.id, treasurer, now=NOW)

        assert wallet_service.get_wallet(db).balance == Decimal("50.00")


# =============================================================================
# Manual paid record
# =============================================================================

class TestCreateManualPayment:
    """Tests for recording an offline payment as a new Paid record."""

    def test_creates_paid_record_with_money(self, db, member, treasurer):
        record = payment_service.create_manual_payment(
            db, member.id, "April", 2025, "75", PaymentMethod.CASH, "Paid in person", treasurer, now=NOW
        )

        assert record.status == PaymentStatus.PAID
        assert record.amount == Decimal("75.00")
        assert record.payment_method == PaymentMethod.CASH
        assert record.verified_by == treasurer.id
        assert record.academic_year == "2024-2025"
        assert wallet_service.get_wallet(db).balance == Decimal("75.00")
        assert _reload_member(db, member).total_paid == Decimal("75.00")
        assert len(_history(db, record)) == 1

    def test_duplicate_record(self, db, member, treasurer, pending_record):
        """A month that already has a record is refused."""
        with pytest.raises(DuplicateRecord):
            payment_service.create_manual_payment(
                db, member.id, "March", 2025, "50", PaymentMethod.CASH, None, treasurer, now=NOW
            )

        assert wallet_service.get_wallet(db).balance == Decimal("0.00")

    def test_amount_must_be_positive(self, db, member, treasurer):
        with pytest.raises(ValidationError):
            payment_service.create_manual_payment(
                db, member.id, "April", 2025, "0", PaymentMethod.CASH, None, treasurer, now=NOW
            )

    def test_unknown_member(self, db, treasurer):
        with pytest.raises(NotFound):
            payment_service.create_manual_payment(
                db, uuid.uuid4(), "April", 2025, "50", PaymentMethod.CASH, None, treasurer, now=NOW
            )


# =============================================================================
# Status history
# =============================================================================

class TestStatusHistory:
    """Tests for the append-only status history."""

    def test_history_only_grows(self, db, member, treasurer, pending_record):
        """Each transition appends; earlier entries are unchanged."""
        snapshots = []

        def snapshot():
            snapshots.append([(h.sequence, h.status, h.reason) for h in _history(db, pending_record)])

        snapshot()
        payment_service.reject_payment(db, pending_record.id, treasurer, "blurry", now=NOW)
        snapshot()
        payment_service.resubmit_payment(db, pending_record.id, member, "/proofs/a.png", now=NOW)
        snapshot()
        payment_service.judge_resubmission(db, pending_record.id, treasurer, approve=True, now=NOW)
        snapshot()

        for before, after in zip(snapshots, snapshots[1:]):
            assert len(after) == len(before) + 1
            assert after[:len(before)] == before
        assert [entry[0] for entry in snapshots[-1]] == [1, 2, 3, 4]

    def test_history_entries_are_immutable(self, db, pending_record):
        entry = _history(db, pending_record)[0]
        entry.reason = "rewritten"

        with pytest.raises(ValueError):
            db.flush()
        db.rollback()
