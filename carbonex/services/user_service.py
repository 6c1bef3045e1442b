"""
User service.

SECURITY: employer-scoped calls pass organisation_id; a user outside that
organisation is reported as not found.
"""
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from carbonex.errors import IllegalTransition, NotFound, ValidationError
from carbonex.logging_config import get_logger
from carbonex.models.base import utcnow
from carbonex.models.user import User, UserRole
from carbonex.services.organisation_service import domain_from_email
from carbonex.services.trip_ledger import TripLedgerReader
from carbonex.services.unit_of_work import commit


class UserService:
    """Service for employee records and their soft-delete lifecycle."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.log = get_logger(service="user")

    async def get_by_id(self, user_id: str) -> User | None:
        stmt = select(User).where(User.id == user_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> User | None:
        stmt = select(User).where(User.email == email)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def ensure_special_user(self, user_id: str, email: str, name: str, role: UserRole = UserRole.BANK) -> User:
        """
        Create an operator account outside the registration workflow.

        Used to bootstrap the bank operator, who approves everyone else.
        Idempotent by email: an existing account is returned unchanged.

        Raises:
            ValidationError: role is not an operator role, or malformed email
        """
        if role == UserRole.EMPLOYEE:
            raise ValidationError("Employees are onboarded through registration", role=role.value)

        domain = domain_from_email(email)
        existing = await self.get_by_email(email)
        if existing is not None:
            self.log.info("special_user_exists", user_id=existing.id, email=email, role=existing.role.value)
            return existing

        user = User(
            id=user_id,
            email=email,
            name=name,
            domain=domain,
            role=role,
            approved=True,
            active=True,
        )
        self.db.add(user)
        await commit(self.db)

        self.log.info("special_user_created", user_id=user_id, email=email, role=role.value)
        return user

    async def get_employee(self, user_id: str, organisation_id: str | None = None) -> User:
        """
        Get an employee, optionally scoped to one organisation.

        Raises:
            NotFound: no such employee, or it belongs to another organisation
        """
        stmt = select(User).where(User.id == user_id, User.role == UserRole.EMPLOYEE)
        if organisation_id is not None:
            stmt = stmt.where(User.organisation_id == organisation_id)  # SECURITY: Enforce org isolation
        result = await self.db.execute(stmt)
        user = result.scalar_one_or_none()
        if user is None:
            raise NotFound(f"Employee {user_id} not found", user_id=user_id)
        return user

    async def list_employees(self, domain: str, include_inactive: bool = True) -> list[User]:
        """Approved employees of the organisation owning a domain."""
        stmt = select(User).where(
            User.domain == domain,
            User.role == UserRole.EMPLOYEE,
            User.approved.is_(True),
        ).order_by(User.name)
        if not include_inactive:
            stmt = stmt.where(User.active.is_(True))
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def deactivate(self, user_id: str, deactivated_by: str, organisation_id: str | None = None) -> User:
        """
        Soft-delete an employee: login disabled, record and trips kept.

        Deactivating an inactive employee is a no-op.
        """
        user = await self.get_employee(user_id, organisation_id)
        if not user.active:
            return user

        user.active = False
        user.deactivated_at = utcnow()
        user.deactivated_by = deactivated_by
        await commit(self.db)

        self.log.info("employee_deactivated", user_id=user_id, deactivated_by=deactivated_by)
        return user

    async def reactivate(self, user_id: str, organisation_id: str | None = None) -> User:
        """Restore a deactivated employee."""
        user = await self.get_employee(user_id, organisation_id)
        if not user.approved:
            raise IllegalTransition(
                "Only approved employees can be reactivated",
                current_status="unapproved",
                user_id=user_id,
            )
        if user.active:
            return user

        user.active = True
        user.deactivated_at = None
        user.deactivated_by = None
        await commit(self.db)

        self.log.info("employee_reactivated", user_id=user_id)
        return user

    async def refresh_earned_credits(self, user_id: str, organisation_id: str | None = None) -> User:
        """Recompute the derived earned_credits of one employee from trips."""
        user = await self.get_employee(user_id, organisation_id)
        earned = await TripLedgerReader(self.db).employee_earned_credits(user.id)
        if user.earned_credits != earned:
            user.earned_credits = earned
            await commit(self.db)
        return user
