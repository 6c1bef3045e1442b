"""
Trip model.

Trips are recorded upstream with their credit amount already computed;
the ledger only reads them.
"""
import uuid
from datetime import datetime
from decimal import Decimal
from sqlalchemy import Boolean, DateTime, ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column
from carbonex.models.base import Base, TimestampMixin
from carbonex.models.organisation import CREDIT_COLUMN


class Trip(Base, TimestampMixin):
    """A commuting trip and the carbon credits it earned."""
    __tablename__ = "trips"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    transport_mode: Mapped[str] = mapped_column(String(50), nullable=False)
    distance_km: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    carbon_credits: Mapped[Decimal] = mapped_column(CREDIT_COLUMN, nullable=False)
    rejected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    trip_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<Trip(id={self.id}, user_id={self.user_id}, credits={self.carbon_credits}, rejected={self.rejected})>"
