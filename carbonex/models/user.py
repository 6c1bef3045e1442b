"""
User model.

Bank operators, employer operators and employees. Employees link to their
organisation by email domain; deactivation is a soft delete.
"""
import uuid
import enum
from datetime import datetime
from decimal import Decimal
from sqlalchemy import Boolean, DateTime, ForeignKey, String, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column
from carbonex.models.base import Base, TimestampMixin
from carbonex.models.organisation import CREDIT_COLUMN


class UserRole(str, enum.Enum):
    """User role enum for role-based access control."""
    BANK = "bank"
    EMPLOYER = "employer"
    EMPLOYEE = "employee"


class User(Base, TimestampMixin):
    """
    User model.

    organisation_id stays empty until the user's registration is approved.
    earned_credits is derived from trips and refreshed on demand.
    """
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    domain: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    organisation_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("organisations.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    role: Mapped[UserRole] = mapped_column(
        SQLEnum(UserRole, native_enum=False, create_type=False),
        nullable=False,
        default=UserRole.EMPLOYEE
    )
    approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    earned_credits: Mapped[Decimal] = mapped_column(CREDIT_COLUMN, nullable=False, default=Decimal("0"))
    deactivated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deactivated_by: Mapped[str | None] = mapped_column(String(36), nullable=True)

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email}, role={self.role}, approved={self.approved})>"
