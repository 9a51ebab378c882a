from sqlalchemy import Column, String, ForeignKey, DateTime, Numeric, Integer, UniqueConstraint, Enum as SQLEnum, Uuid, text, event
from sqlalchemy.orm import relationship
import uuid
from app.db.base import Base
import enum
from decimal import Decimal


class WalletTransactionType(str, enum.Enum):
    """Wallet movement direction."""
    CREDIT = "credit"
    DEBIT = "debit"


class Wallet(Base):
    """Club wallet: single-row aggregate guarded by an optimistic version counter."""
    __tablename__ = "wallet"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    singleton_key = Column(Integer, nullable=False, unique=True, default=1)  # at most one wallet row
    balance = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    version = Column(Integer, nullable=False)
    last_updated_by = Column(Uuid(as_uuid=True), ForeignKey("user.id"), nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP"))
    updated_at = Column(DateTime, nullable=True)

    # Relationships
    transactions = relationship(
        "WalletTransaction",
        back_populates="wallet",
        order_by="WalletTransaction.sequence",
    )

    __mapper_args__ = {"version_id_col": version}


class WalletTransaction(Base):
    """Append-only, self-describing wallet movement."""
    __tablename__ = "wallet_transaction"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    wallet_id = Column(Uuid(as_uuid=True), ForeignKey("wallet.id"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    type = Column(SQLEnum(WalletTransactionType, native_enum=False, values_callable=lambda obj: [e.value for e in obj]), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    description = Column(String(200), nullable=False)
    actor_id = Column(Uuid(as_uuid=True), ForeignKey("user.id"), nullable=False)
    payment_record_id = Column(Uuid(as_uuid=True), ForeignKey("payment_record.id"), nullable=True, unique=True)  # one credit per paid record
    date = Column(DateTime, nullable=False)
    previous_balance = Column(Numeric(12, 2), nullable=False)
    new_balance = Column(Numeric(12, 2), nullable=False)

    # Relationships
    wallet = relationship("Wallet", back_populates="transactions")

    __table_args__ = (
        UniqueConstraint("wallet_id", "sequence", name="uq_wallet_transaction_sequence"),
    )


@event.listens_for(WalletTransaction, "before_update")
def _reject_transaction_update(mapper, connection, target):
    raise ValueError("Wallet transactions are immutable")


@event.listens_for(WalletTransaction, "before_delete")
def _reject_transaction_delete(mapper, connection, target):
    raise ValueError("Wallet transactions cannot be deleted")
