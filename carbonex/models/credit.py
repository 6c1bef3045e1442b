"""
Credit transaction model.

A CreditTransaction is a marketplace ledger entry moving credits from a
seller organisation to a buyer organisation. Its status follows the
transition table below; anything not listed is rejected.
"""
import uuid
import enum
from datetime import datetime
from decimal import Decimal
from sqlalchemy import DateTime, ForeignKey, Integer, String, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column
from carbonex.errors import IllegalTransition
from carbonex.models.base import Base, TimestampMixin
from carbonex.models.organisation import CREDIT_COLUMN, MONEY_COLUMN


class TransactionStatus(str, enum.Enum):
    """Credit transaction status enum."""
    PENDING = "pending"
    APPROVED = "approved"
    PENDING_PURCHASE = "pending_purchase"
    COMPLETED = "completed"
    REJECTED = "rejected"


TRANSACTION_TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.PENDING: frozenset({
        TransactionStatus.APPROVED,
        TransactionStatus.REJECTED,
        # bank-arranged transfer with the buyer bound at creation
        TransactionStatus.COMPLETED,
    }),
    TransactionStatus.APPROVED: frozenset({TransactionStatus.PENDING_PURCHASE}),
    TransactionStatus.PENDING_PURCHASE: frozenset({
        TransactionStatus.COMPLETED,
        TransactionStatus.APPROVED,
    }),
    TransactionStatus.COMPLETED: frozenset(),
    TransactionStatus.REJECTED: frozenset(),
}

# Statuses whose credits are still held back from the seller
OPEN_STATUSES = (
    TransactionStatus.PENDING,
    TransactionStatus.APPROVED,
    TransactionStatus.PENDING_PURCHASE,
)


class CreditTransaction(Base, TimestampMixin):
    """
    Marketplace ledger entry.

    Immutable once completed or rejected. buyer_org_id stays empty for a
    public listing until an organisation claims it.
    """
    __tablename__ = "credit_transactions"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    seller_org_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("organisations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    seller_org_name: Mapped[str] = mapped_column(String(255), nullable=False)
    buyer_org_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("organisations.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    buyer_org_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    credit_amount: Mapped[Decimal] = mapped_column(CREDIT_COLUMN, nullable=False)
    price: Mapped[Decimal] = mapped_column(MONEY_COLUMN, nullable=False)
    status: Mapped[TransactionStatus] = mapped_column(
        SQLEnum(TransactionStatus, native_enum=False, create_type=False),
        nullable=False,
        default=TransactionStatus.PENDING,
        index=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def total_price(self) -> Decimal:
        return (self.credit_amount * self.price).quantize(Decimal("0.01"))

    def can_transition(self, target: TransactionStatus) -> bool:
        return target in TRANSACTION_TRANSITIONS[self.status]

    def transition(self, target: TransactionStatus) -> None:
        """Move to target status or raise IllegalTransition with the current one."""
        if not self.can_transition(target):
            raise IllegalTransition(
                f"Cannot move transaction from {self.status.value} to {target.value}",
                current_status=self.status.value,
                transaction_id=self.id,
            )
        self.status = target

    def __repr__(self):
        return (
            f"<CreditTransaction(id={self.id}, seller={self.seller_org_id}, "
            f"buyer={self.buyer_org_id}, amount={self.credit_amount}, status={self.status})>"
        )
