"""Club wallet ledger.

The wallet is a single row whose ``version`` column is SQLAlchemy's
``version_id_col``: every balance change issues
``UPDATE wallet ... WHERE version = :seen`` and a concurrent writer makes the
flush fail with ``StaleDataError`` instead of silently overwriting the
balance. Transactions are append-only and carry the balance before and after
the movement, so the ledger can be replayed without trusting ``balance``.
"""
import logging
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional, TypeVar
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.clock import utcnow
from app.core.config import settings
from app.core.exceptions import ConcurrentUpdate, InsufficientBalance, TreasuryError, ValidationError
from app.models.wallet import Wallet, WalletTransaction, WalletTransactionType

logger = logging.getLogger(__name__)

T = TypeVar("T")

CENT = Decimal("0.01")


def to_amount(value) -> Decimal:
    """Coerce user input to a 2dp Decimal."""
    if value is None:
        raise ValidationError("Amount is required")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise ValidationError(f"Invalid amount: {value!r}")
    return amount.quantize(CENT)


def get_or_create_wallet(db: Session) -> Wallet:
    """Return the club wallet, creating a zero-balance one on first access.

    Only flushes; the caller owns the transaction.
    """
    wallet = db.query(Wallet).filter(Wallet.singleton_key == 1).first()
    if wallet is None:
        wallet = Wallet(singleton_key=1, balance=Decimal("0.00"))
        db.add(wallet)
        db.flush()
        logger.info("Created club wallet %s", wallet.id)
    return wallet


def post_transaction(
    db: Session,
    tx_type: WalletTransactionType,
    amount,
    description: str,
    actor_id: UUID,
    payment_record_id: Optional[UUID] = None,
) -> WalletTransaction:
    """Append one movement and update the balance inside the caller's transaction."""
    amount = to_amount(amount)
    if amount < 0:
        raise ValidationError("Amount cannot be negative")
    if not description:
        raise ValidationError("Description is required")

    wallet = get_or_create_wallet(db)
    previous_balance = wallet.balance if wallet.balance is not None else Decimal("0.00")

    if tx_type == WalletTransactionType.DEBIT:
        if amount > previous_balance:
            raise InsufficientBalance(
                f"Insufficient balance: requested {amount}, available {previous_balance}"
            )
        new_balance = previous_balance - amount
    else:
        new_balance = previous_balance + amount

    last_sequence = db.query(func.max(WalletTransaction.sequence)).filter(
        WalletTransaction.wallet_id == wallet.id
    ).scalar() or 0

    now = utcnow()
    wallet.balance = new_balance
    wallet.last_updated_by = actor_id
    wallet.updated_at = now

    transaction = WalletTransaction(
        wallet_id=wallet.id,
        sequence=last_sequence + 1,
        type=tx_type,
        amount=amount,
        description=description[:200],
        actor_id=actor_id,
        payment_record_id=payment_record_id,
        date=now,
        previous_balance=previous_balance,
        new_balance=new_balance,
    )
    db.add(transaction)
    db.flush()
    return transaction


def run_with_wallet_retry(db: Session, operation: Callable[[], T]) -> T:
    """Run `operation` and commit, retrying when the wallet row was modified concurrently.

    `operation` must re-read everything it needs, since a retry starts
    from a rolled-back session. Domain errors roll back and propagate
    unchanged.
    """
    attempts = max(1, settings.WALLET_RETRY_ATTEMPTS)
    for attempt in range(1, attempts + 1):
        try:
            result = operation()
            db.commit()
            return result
        except StaleDataError:
            db.rollback()
            logger.warning("Wallet version conflict (attempt %d/%d); retrying", attempt, attempts)
        except TreasuryError:
            db.rollback()
            raise
        except Exception:
            db.rollback()
            logger.exception("Wallet operation failed; rolled back")
            raise
    raise ConcurrentUpdate("Wallet was modified concurrently. Please retry.")


def add_money(db: Session, amount, description: str, actor_id: UUID) -> Wallet:
    """Credit the wallet."""
    def operation():
        post_transaction(db, WalletTransactionType.CREDIT, amount, description, actor_id)
        return get_or_create_wallet(db)

    wallet = run_with_wallet_retry(db, operation)
    db.refresh(wallet)
    logger.info("Wallet credited %s by %s; balance %s", to_amount(amount), actor_id, wallet.balance)
    return wallet


def remove_money(db: Session, amount, description: str, actor_id: UUID) -> Wallet:
    """Debit the wallet; raises InsufficientBalance when amount > balance."""
    def operation():
        post_transaction(db, WalletTransactionType.DEBIT, amount, description, actor_id)
        return get_or_create_wallet(db)

    wallet = run_with_wallet_retry(db, operation)
    db.refresh(wallet)
    logger.info("Wallet debited %s by %s; balance %s", to_amount(amount), actor_id, wallet.balance)
    return wallet


def get_wallet(db: Session) -> Wallet:
    """Wallet for display; persists it on first access."""
    wallet = get_or_create_wallet(db)
    db.commit()
    db.refresh(wallet)
    return wallet


def list_transactions(db: Session, limit: Optional[int] = None):
    """Transactions newest first."""
    wallet = get_or_create_wallet(db)
    query = db.query(WalletTransaction).filter(
        WalletTransaction.wallet_id == wallet.id
    ).order_by(WalletTransaction.sequence.desc())
    if limit:
        query = query.limit(limit)
    return query.all()


def audit_wallet(db: Session) -> dict:
    """Replay every transaction and cross-check the running balance chain."""
    wallet = get_or_create_wallet(db)
    transactions = db.query(WalletTransaction).filter(
        WalletTransaction.wallet_id == wallet.id
    ).order_by(WalletTransaction.sequence.asc()).all()

    running = Decimal("0.00")
    total_credits = Decimal("0.00")
    total_debits = Decimal("0.00")
    mismatches = []

    for tx in transactions:
        if tx.previous_balance != running:
            mismatches.append({
                "sequence": tx.sequence,
                "field": "previous_balance",
                "expected": str(running),
                "recorded": str(tx.previous_balance),
            })
        if tx.type == WalletTransactionType.CREDIT:
            running += tx.amount
            total_credits += tx.amount
        else:
            running -= tx.amount
            total_debits += tx.amount
        if tx.new_balance != running:
            mismatches.append({
                "sequence": tx.sequence,
                "field": "new_balance",
                "expected": str(running),
                "recorded": str(tx.new_balance),
            })

    consistent = not mismatches and running == wallet.balance
    if not consistent:
        logger.error("Wallet audit failed: balance=%s replayed=%s mismatches=%d",
                     wallet.balance, running, len(mismatches))

    return {
        "balance": wallet.balance,
        "replayed_balance": running,
        "total_credits": total_credits,
        "total_debits": total_debits,
        "transaction_count": len(transactions),
        "consistent": consistent,
        "mismatches": mismatches,
    }
