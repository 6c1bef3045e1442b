"""
Pending registration model.

Sign-up requests for organisations and employees awaiting approval. The
record is deleted when it leaves the pending state.
"""
import enum
from sqlalchemy import Boolean, String, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column
from carbonex.errors import IllegalTransition
from carbonex.models.base import Base, TimestampMixin


class RegistrationKind(str, enum.Enum):
    ORGANISATION = "organisation"
    EMPLOYEE = "employee"


class RegistrationStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


REGISTRATION_TRANSITIONS: dict[RegistrationStatus, frozenset[RegistrationStatus]] = {
    RegistrationStatus.PENDING: frozenset({RegistrationStatus.APPROVED, RegistrationStatus.REJECTED}),
    RegistrationStatus.APPROVED: frozenset(),
    RegistrationStatus.REJECTED: frozenset(),
}


class PendingRegistration(Base, TimestampMixin):
    """
    Onboarding request.

    id is the principal id supplied by the identity provider, so one person
    has at most one request in flight.
    """
    __tablename__ = "pending_registrations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    kind: Mapped[RegistrationKind] = mapped_column(
        SQLEnum(RegistrationKind, native_enum=False, create_type=False),
        nullable=False,
        index=True
    )
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    domain: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    organisation_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    organisation_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    status: Mapped[RegistrationStatus] = mapped_column(
        SQLEnum(RegistrationStatus, native_enum=False, create_type=False),
        nullable=False,
        default=RegistrationStatus.PENDING
    )
    approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def transition(self, target: RegistrationStatus) -> None:
        if target not in REGISTRATION_TRANSITIONS[self.status]:
            raise IllegalTransition(
                f"Cannot move registration from {self.status.value} to {target.value}",
                current_status=self.status.value,
                registration_id=self.id,
            )
        self.status = target
        self.approved = target == RegistrationStatus.APPROVED

    def __repr__(self):
        return f"<PendingRegistration(id={self.id}, kind={self.kind}, domain={self.domain})>"
