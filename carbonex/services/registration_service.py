"""
Registration approval workflow.

Organisation sign-ups are approved by the bank and create an Organisation
account. Employee sign-ups are approved by their employer and link the
employee to the organisation owning their email domain. A registration
leaves the pending state exactly once and is deleted when it does.
"""
import enum
import uuid
from dataclasses import dataclass
from decimal import Decimal
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from carbonex.config import settings
from carbonex.errors import ValidationError
from carbonex.logging_config import get_logger
from carbonex.models.organisation import Organisation
from carbonex.models.registration import PendingRegistration, RegistrationKind, RegistrationStatus
from carbonex.models.user import User, UserRole
from carbonex.routes.metrics import update_balances
from carbonex.services.organisation_service import OrganisationService, domain_from_email, normalise_domain
from carbonex.services.unit_of_work import commit


class RegistrationOutcome(str, enum.Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    ALREADY_APPROVED = "already_approved"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class RegistrationResult:
    outcome: RegistrationOutcome
    registration_id: str
    organisation_id: str | None = None
    user_id: str | None = None


@dataclass(frozen=True)
class EmployeeSubmission:
    """
    Result of an employee sign-up.

    exists: an approved organisation owns the domain.
    pending: the owning organisation is itself awaiting approval.
    Neither flag set means the domain is unknown and nothing was stored.
    """
    exists: bool
    pending: bool
    registration_id: str | None = None
    organisation_id: str | None = None

    @property
    def stored(self) -> bool:
        return self.registration_id is not None


class RegistrationService:
    """Onboarding state machine for organisations and employees."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.orgs = OrganisationService(db)
        self.log = get_logger(service="registration")

    async def get(self, registration_id: str, kind: RegistrationKind | None = None) -> PendingRegistration | None:
        stmt = select(PendingRegistration).where(PendingRegistration.id == registration_id)
        if kind is not None:
            stmt = stmt.where(PendingRegistration.kind == kind)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_pending(self, kind: RegistrationKind, domain: str | None = None) -> list[PendingRegistration]:
        stmt = select(PendingRegistration).where(
            PendingRegistration.kind == kind,
            PendingRegistration.status == RegistrationStatus.PENDING,
        ).order_by(PendingRegistration.created_at)
        if domain is not None:
            stmt = stmt.where(PendingRegistration.domain == domain)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def _get_user(self, user_id: str) -> User | None:
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def _ensure_no_open_request(self, user_id: str) -> None:
        if await self.get(user_id) is not None:
            raise ValidationError("A registration is already pending for this user", user_id=user_id)

    # ------------------------------------------------------------------
    # Organisations
    # ------------------------------------------------------------------

    async def submit_organisation(
        self,
        user_id: str,
        full_name: str,
        email: str,
        organisation_name: str,
        domain: str,
        address: str | None = None,
    ) -> PendingRegistration:
        """
        Store an organisation sign-up and its unapproved employer user.

        Raises:
            ValidationError: malformed domain, domain already taken or
                pending, or a request already open for this user
        """
        domain = normalise_domain(domain)
        if not organisation_name or not organisation_name.strip():
            raise ValidationError("Organisation name is required")

        await self._ensure_no_open_request(user_id)
        if await self.orgs.get_by_domain(domain) is not None:
            raise ValidationError(f"Domain {domain} is already registered", domain=domain)
        if await self.list_pending(RegistrationKind.ORGANISATION, domain=domain):
            raise ValidationError(f"Domain {domain} is already awaiting approval", domain=domain)

        user = await self._get_user(user_id)
        if user is not None and user.approved:
            raise ValidationError("User is already registered", user_id=user_id)
        if user is None:
            self.db.add(User(
                id=user_id,
                email=email,
                name=full_name,
                domain=domain,
                role=UserRole.EMPLOYER,
                approved=False,
            ))

        registration = PendingRegistration(
            id=user_id,
            kind=RegistrationKind.ORGANISATION,
            full_name=full_name,
            email=email,
            domain=domain,
            organisation_name=organisation_name.strip(),
            address=address,
        )
        self.db.add(registration)
        await commit(self.db)

        self.log.info("organisation_registration_submitted", registration_id=user_id, domain=domain)
        return registration

    async def approve_organisation(self, registration_id: str) -> RegistrationResult:
        """
        Approve an organisation sign-up (bank action).

        Creates the Organisation with zero credits and the initial cash
        grant, approves the requester as employer and consumes the request
        in a single commit.
        """
        registration = await self.get(registration_id, RegistrationKind.ORGANISATION)
        if registration is None:
            return await self._resolve_missing(registration_id, UserRole.EMPLOYER)

        if await self.orgs.get_by_domain(registration.domain) is not None:
            raise ValidationError(
                f"Domain {registration.domain} is already registered",
                domain=registration.domain,
            )

        user = await self._get_user(registration.id)
        registration.transition(RegistrationStatus.APPROVED)
        org = Organisation(
            id=str(uuid.uuid4()),
            name=registration.organisation_name,
            domain=registration.domain,
            address=registration.address,
            employer_id=registration.id,
            earned_credits=Decimal("0"),
            tradable_credits=Decimal("0"),
            cash_balance=Decimal(settings.INITIAL_CASH_GRANT),
            approved=True,
        )
        self.db.add(org)

        if user is None:
            user = User(
                id=registration.id,
                email=registration.email,
                name=registration.full_name,
                domain=registration.domain,
            )
            self.db.add(user)
        user.role = UserRole.EMPLOYER
        user.approved = True
        user.active = True
        user.organisation_id = org.id

        await self.db.delete(registration)
        await commit(self.db)

        self.log.info("organisation_approved", registration_id=registration_id, org_id=org.id, domain=org.domain)
        update_balances(org.id, org.tradable_credits, org.cash_balance)
        return RegistrationResult(
            RegistrationOutcome.APPROVED,
            registration_id,
            organisation_id=org.id,
            user_id=user.id,
        )

    async def reject_organisation(self, registration_id: str) -> RegistrationResult:
        """Reject an organisation sign-up and remove its half-created user."""
        registration = await self.get(registration_id, RegistrationKind.ORGANISATION)
        if registration is None:
            return RegistrationResult(RegistrationOutcome.NOT_FOUND, registration_id)

        registration.transition(RegistrationStatus.REJECTED)
        user = await self._get_user(registration.id)
        if user is not None and not user.approved:
            await self.db.delete(user)
        await self.db.delete(registration)
        await commit(self.db)

        self.log.info("organisation_rejected", registration_id=registration_id, domain=registration.domain)
        return RegistrationResult(RegistrationOutcome.REJECTED, registration_id)

    # ------------------------------------------------------------------
    # Employees
    # ------------------------------------------------------------------

    async def submit_employee(
        self,
        user_id: str,
        full_name: str,
        email: str,
        domain: str | None = None,
    ) -> EmployeeSubmission:
        """
        Store an employee sign-up when an organisation owns the domain.

        The domain defaults to the email's domain. Sign-ups for a domain
        whose organisation is still pending are stored too, flagged pending;
        unknown domains are not stored.
        """
        domain = normalise_domain(domain) if domain else domain_from_email(email)
        lookup = await self.orgs.lookup_domain(domain)
        if not lookup.exists and not lookup.pending:
            self.log.info("employee_registration_unknown_domain", user_id=user_id, domain=domain)
            return EmployeeSubmission(exists=False, pending=False)

        await self._ensure_no_open_request(user_id)
        registration = PendingRegistration(
            id=user_id,
            kind=RegistrationKind.EMPLOYEE,
            full_name=full_name,
            email=email,
            domain=domain,
            organisation_id=lookup.organisation_id,
        )
        self.db.add(registration)
        await commit(self.db)

        self.log.info(
            "employee_registration_submitted",
            registration_id=user_id,
            domain=domain,
            organisation_pending=lookup.pending,
        )
        return EmployeeSubmission(
            exists=lookup.exists,
            pending=not lookup.exists,
            registration_id=registration.id,
            organisation_id=lookup.organisation_id,
        )

    async def approve_employee(self, registration_id: str, organisation_id: str | None = None) -> RegistrationResult:
        """
        Approve an employee sign-up.

        The domain is re-validated against an approved organisation at
        approval time. When organisation_id is given (employer approval),
        requests for other organisations are reported as not found.
        """
        registration = await self.get(registration_id, RegistrationKind.EMPLOYEE)
        if registration is None:
            return await self._resolve_missing(registration_id, UserRole.EMPLOYEE)

        org = await self.orgs.get_by_domain(registration.domain)
        if organisation_id is not None and (org is None or org.id != organisation_id):
            return RegistrationResult(RegistrationOutcome.NOT_FOUND, registration_id)
        if org is None or not org.approved:
            raise ValidationError(
                f"No approved organisation owns domain {registration.domain}",
                domain=registration.domain,
            )

        registration.transition(RegistrationStatus.APPROVED)
        user = await self._get_user(registration.id)
        if user is None:
            user = User(
                id=registration.id,
                email=registration.email,
                name=registration.full_name,
                domain=registration.domain,
            )
            self.db.add(user)
        user.role = UserRole.EMPLOYEE
        user.approved = True
        user.active = True
        user.organisation_id = org.id

        await self.db.delete(registration)
        await commit(self.db)

        self.log.info("employee_approved", registration_id=registration_id, org_id=org.id)
        return RegistrationResult(
            RegistrationOutcome.APPROVED,
            registration_id,
            organisation_id=org.id,
            user_id=user.id,
        )

    async def reject_employee(self, registration_id: str, organisation_id: str | None = None) -> RegistrationResult:
        """Reject an employee sign-up; an existing user record is kept unapproved."""
        registration = await self.get(registration_id, RegistrationKind.EMPLOYEE)
        if registration is None:
            return RegistrationResult(RegistrationOutcome.NOT_FOUND, registration_id)

        if organisation_id is not None:
            org = await self.orgs.get_by_domain(registration.domain)
            if org is None or org.id != organisation_id:
                return RegistrationResult(RegistrationOutcome.NOT_FOUND, registration_id)

        registration.transition(RegistrationStatus.REJECTED)
        user = await self._get_user(registration.id)
        if user is not None:
            user.approved = False
        await self.db.delete(registration)
        await commit(self.db)

        self.log.info("employee_rejected", registration_id=registration_id, domain=registration.domain)
        return RegistrationResult(RegistrationOutcome.REJECTED, registration_id)

    async def _resolve_missing(self, registration_id: str, role: UserRole) -> RegistrationResult:
        """Report a consumed request as already approved, otherwise not found."""
        user = await self._get_user(registration_id)
        if user is not None and user.approved and user.role == role:
            return RegistrationResult(
                RegistrationOutcome.ALREADY_APPROVED,
                registration_id,
                organisation_id=user.organisation_id,
                user_id=user.id,
            )
        return RegistrationResult(RegistrationOutcome.NOT_FOUND, registration_id)
