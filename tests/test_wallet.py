import pytest
from decimal import Decimal
from sqlalchemy import text

from app.core.exceptions import ConcurrentUpdate, InsufficientBalance, ValidationError
from app.models.wallet import Wallet, WalletTransaction, WalletTransactionType
from app.services import wallet as wallet_service


# =============================================================================
# Singleton access
# =============================================================================

class TestGetOrCreateWallet:
    """Tests for the wallet singleton accessor."""

    def test_creates_zero_balance_wallet(self, db):
        """First access creates an empty wallet."""
        wallet = wallet_service.get_wallet(db)

        assert wallet.balance == Decimal("0.00")
        assert db.query(Wallet).count() == 1

    def test_returns_same_wallet(self, db):
        """Repeated access never creates a second wallet."""
        first = wallet_service.get_wallet(db)
        second = wallet_service.get_wallet(db)

        assert first.id == second.id
        assert db.query(Wallet).count() == 1


# =============================================================================
# Credits and debits
# =============================================================================

class TestAddMoney:
    """Tests for wallet credits."""

    def test_add_money_updates_balance(self, db, treasurer):
        """Credit increases the balance and records the movement."""
        wallet = wallet_service.add_money(db, "100.00", "Opening balance", treasurer.id)

        assert wallet.balance == Decimal("100.00")
        transactions = wallet_service.list_transactions(db)
        assert len(transactions) == 1
        tx = transactions[0]
        assert tx.type == WalletTransactionType.CREDIT
        assert tx.previous_balance == Decimal("0.00")
        assert tx.new_balance == Decimal("100.00")
        assert tx.actor_id == treasurer.id

    def test_add_money_rejects_negative(self, db, treasurer):
        """Negative credits are refused."""
        with pytest.raises(ValidationError):
            wallet_service.add_money(db, "-5", "Oops", treasurer.id)

    def test_add_money_requires_description(self, db, treasurer):
        """Every movement needs a description."""
        with pytest.raises(ValidationError):
            wallet_service.add_money(db, "5", "", treasurer.id)

    def test_sequences_increase(self, db, treasurer):
        """Transactions are numbered in order."""
        wallet_service.add_money(db, "10", "One", treasurer.id)
        wallet_service.add_money(db, "20", "Two", treasurer.id)

        sequences = [tx.sequence for tx in wallet_service.list_transactions(db)]
        assert sequences == [2, 1]


class TestRemoveMoney:
    """Tests for wallet debits."""

    def test_remove_money_updates_balance(self, db, treasurer):
        """Debit decreases the balance."""
        wallet_service.add_money(db, "100", "Dues", treasurer.id)
        wallet = wallet_service.remove_money(db, "40", "Props", treasurer.id)

        assert wallet.balance == Decimal("60.00")
        latest = wallet_service.list_transactions(db, limit=1)[0]
        assert latest.type == WalletTransactionType.DEBIT
        assert latest.previous_balance == Decimal("100.00")
        assert latest.new_balance == Decimal("60.00")

    def test_insufficient_balance(self, db, treasurer):
        """Debiting more than the balance fails and leaves the wallet untouched."""
        wallet_service.add_money(db, "100", "Dues", treasurer.id)

        with pytest.raises(InsufficientBalance):
            wallet_service.remove_money(db, "150", "Stage lights", treasurer.id)

        wallet = wallet_service.get_wallet(db)
        assert wallet.balance == Decimal("100.00")
        assert db.query(WalletTransaction).count() == 1

    def test_remove_entire_balance(self, db, treasurer):
        """Balance may reach exactly zero."""
        wallet_service.add_money(db, "75", "Dues", treasurer.id)
        wallet = wallet_service.remove_money(db, "75", "Costumes", treasurer.id)

        assert wallet.balance == Decimal("0.00")


# =============================================================================
# Append-only ledger and replay audit
# =============================================================================

class TestLedgerIntegrity:
    """Tests for the self-verifying ledger."""

    def test_audit_consistent_after_mixed_operations(self, db, treasurer):
        """Balance equals credits minus debits after any sequence of operations."""
        wallet_service.add_money(db, "100", "Dues", treasurer.id)
        wallet_service.add_money(db, "55.50", "Ticket sales", treasurer.id)
        wallet_service.remove_money(db, "30.25", "Paint", treasurer.id)
        with pytest.raises(InsufficientBalance):
            wallet_service.remove_money(db, "1000", "Too much", treasurer.id)
        wallet_service.remove_money(db, "25.25", "Snacks", treasurer.id)

        audit = wallet_service.audit_wallet(db)

        assert audit["consistent"] is True
        assert audit["transaction_count"] == 4
        assert audit["total_credits"] == Decimal("155.50")
        assert audit["total_debits"] == Decimal("55.50")
        assert audit["balance"] == audit["replayed_balance"] == Decimal("100.00")

    def test_audit_detects_tampered_balance(self, db, treasurer):
        """A balance changed outside the ledger is reported."""
        wallet_service.add_money(db, "100", "Dues", treasurer.id)
        db.execute(text("UPDATE wallet SET balance = 500"))
        db.commit()

        audit = wallet_service.audit_wallet(db)

        assert audit["consistent"] is False
        assert audit["replayed_balance"] == Decimal("100.00")

    def test_transactions_cannot_be_edited(self, db, treasurer):
        """Ledger rows are immutable."""
        wallet_service.add_money(db, "100", "Dues", treasurer.id)
        tx = db.query(WalletTransaction).first()
        tx.description = "Changed"

        with pytest.raises(ValueError):
            db.flush()
        db.rollback()

    def test_transactions_cannot_be_deleted(self, db, treasurer):
        """Ledger rows are never removed."""
        wallet_service.add_money(db, "100", "Dues", treasurer.id)
        tx = db.query(WalletTransaction).first()
        db.delete(tx)

        with pytest.raises(ValueError):
            db.flush()
        db.rollback()


# =============================================================================
# Optimistic concurrency
# =============================================================================

class TestOptimisticRetry:
    """Tests for version-guarded wallet updates."""

    def _bump_version(self, db):
        # Simulates another writer committing between our read and our write
        db.execute(text("UPDATE wallet SET version = version + 1"))

    def test_retries_after_concurrent_write(self, db, treasurer):
        """A stale version is retried and the second attempt succeeds."""
        wallet_service.add_money(db, "100", "Dues", treasurer.id)
        attempts = []

        def operation():
            attempts.append(1)
            wallet_service.get_or_create_wallet(db)
            if len(attempts) == 1:
                self._bump_version(db)
            wallet_service.post_transaction(db, WalletTransactionType.CREDIT, "10", "Retry me", treasurer.id)

        wallet_service.run_with_wallet_retry(db, operation)

        assert len(attempts) == 2
        assert wallet_service.get_wallet(db).balance == Decimal("110.00")
        assert wallet_service.audit_wallet(db)["consistent"] is True

    def test_gives_up_with_concurrent_update(self, db, treasurer):
        """Persistent conflicts end in ConcurrentUpdate with nothing written."""
        wallet_service.add_money(db, "100", "Dues", treasurer.id)

        def operation():
            wallet_service.get_or_create_wallet(db)
            self._bump_version(db)
            wallet_service.post_transaction(db, WalletTransactionType.CREDIT, "10", "Never lands", treasurer.id)

        with pytest.raises(ConcurrentUpdate):
            wallet_service.run_with_wallet_retry(db, operation)

        assert wallet_service.get_wallet(db).balance == Decimal("100.00")
        assert db.query(WalletTransaction).count() == 1
