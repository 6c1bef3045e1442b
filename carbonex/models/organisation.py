"""
Organisation model.

Holds an organisation's earned credits, tradable balance and cash. Balances
are mutated only by the marketplace and reconciliation services.
"""
import uuid
from decimal import Decimal
from sqlalchemy import Boolean, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column
from carbonex.models.base import Base, TimestampMixin


CREDIT_COLUMN = Numeric(14, 4)
MONEY_COLUMN = Numeric(14, 2)

# Quantum and exclusive upper bound of values the columns above can hold
CREDIT_QUANTUM = Decimal("0.0001")
CREDIT_LIMIT = Decimal(10) ** 10
MONEY_QUANTUM = Decimal("0.01")
MONEY_LIMIT = Decimal(10) ** 12


class Organisation(Base, TimestampMixin):
    """
    Organisation account taking part in the credit marketplace.

    tradable_credits tracks earned + bought - sold - reserved; the version
    column turns every balance write into an optimistic read-modify-write.
    """
    __tablename__ = "organisations"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    domain: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    employer_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    earned_credits: Mapped[Decimal] = mapped_column(CREDIT_COLUMN, nullable=False, default=Decimal("0"))
    tradable_credits: Mapped[Decimal] = mapped_column(CREDIT_COLUMN, nullable=False, default=Decimal("0"))
    cash_balance: Mapped[Decimal] = mapped_column(MONEY_COLUMN, nullable=False, default=Decimal("0"))

    approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return (
            f"<Organisation(id={self.id}, domain={self.domain}, "
            f"tradable={self.tradable_credits}, cash={self.cash_balance})>"
        )
