"""
Organisation account service.

Lookups and bank funding. Credit balances are changed only by the
marketplace and reconciliation services.
"""
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from carbonex.errors import NotFound, ValidationError
from carbonex.logging_config import get_logger
from carbonex.models.organisation import MONEY_LIMIT, MONEY_QUANTUM, Organisation
from carbonex.models.registration import PendingRegistration, RegistrationKind
from carbonex.routes.metrics import update_balances
from carbonex.services.unit_of_work import commit


DOMAIN_RE = re.compile(r"^(?=.{1,253}$)([a-z0-9](-*[a-z0-9])*)(\.[a-z0-9](-*[a-z0-9])*)+$")


def positive_amount(value, field: str, quantum: Decimal, limit: Decimal) -> Decimal:
    """
    Parse a strictly positive amount that fits its column.

    Args:
        value: Raw amount (Decimal, int or numeric string)
        field: Name reported in the ValidationError context
        quantum: Column precision, e.g. Decimal("0.01")
        limit: Exclusive upper bound the column can store

    Raises:
        ValidationError: not a finite number, not positive at the column's
            precision, or too large for the column
    """
    try:
        number = Decimal(str(value))
        if not number.is_finite():
            raise ValidationError(f"{field} must be a finite number", **{field: str(value)})
        # quantizing a huge value would exceed the decimal context precision
        if abs(number) < limit:
            number = number.quantize(quantum)
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"{field} must be a number", **{field: str(value)}) from e
    if number >= limit:
        raise ValidationError(f"{field} must be less than {limit}", **{field: str(value)})
    if number <= 0:
        raise ValidationError(f"{field} must be greater than 0", **{field: str(value)})
    return number


def normalise_domain(domain: str) -> str:
    """Lower-case and validate a domain; raises ValidationError when malformed."""
    value = (domain or "").strip().lower()
    if not DOMAIN_RE.match(value):
        raise ValidationError(f"Malformed domain: {domain!r}", domain=domain)
    return value


def domain_from_email(email: str) -> str:
    if not email or email.count("@") != 1:
        raise ValidationError(f"Malformed email: {email!r}")
    return normalise_domain(email.split("@")[1])


@dataclass(frozen=True)
class DomainLookup:
    """Result of checking a domain before an employee signs up."""
    exists: bool
    pending: bool = False
    organisation_id: str | None = None
    organisation_name: str | None = None


class OrganisationService:
    """Service for reading and funding organisations."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.log = get_logger(service="organisation")

    async def get_by_id(self, org_id: str) -> Organisation | None:
        """
        Get organisation by ID.

        Args:
            org_id: Organisation UUID

        Returns:
            Organisation or None if not found
        """
        stmt = select(Organisation).where(Organisation.id == org_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def require(self, org_id: str) -> Organisation:
        """Get organisation by ID or raise NotFound."""
        org = await self.get_by_id(org_id)
        if org is None:
            raise NotFound(f"Organisation {org_id} not found", organisation_id=org_id)
        return org

    async def get_by_domain(self, domain: str) -> Organisation | None:
        """
        Get organisation by domain.

        Args:
            domain: Organisation domain (e.g., "acme.com")

        Returns:
            Organisation or None if not found
        """
        stmt = select(Organisation).where(Organisation.domain == domain)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_all(self, approved_only: bool = False) -> list[Organisation]:
        stmt = select(Organisation).order_by(Organisation.name)
        if approved_only:
            stmt = stmt.where(Organisation.approved.is_(True))
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def lookup_domain(self, domain: str) -> DomainLookup:
        """
        Check whether an approved organisation owns a domain.

        An organisation whose own registration is still awaiting the bank
        is reported as pending rather than unknown.
        """
        domain = normalise_domain(domain)
        org = await self.get_by_domain(domain)
        if org is not None and org.approved:
            return DomainLookup(exists=True, organisation_id=org.id, organisation_name=org.name)

        stmt = select(PendingRegistration.id).where(
            PendingRegistration.kind == RegistrationKind.ORGANISATION,
            PendingRegistration.domain == domain,
        )
        result = await self.db.execute(stmt)
        pending = result.first() is not None or org is not None
        return DomainLookup(exists=False, pending=pending)

    async def add_funds(self, org_id: str, amount: Decimal) -> Organisation:
        """
        Credit cash to an organisation (bank action).

        Raises:
            ValidationError: amount is not positive, or the balance would
                no longer fit the cash column
            NotFound: unknown organisation
        """
        amount = positive_amount(amount, "amount", MONEY_QUANTUM, MONEY_LIMIT)

        org = await self.require(org_id)
        funded = org.cash_balance + amount
        if funded >= MONEY_LIMIT:
            raise ValidationError(
                f"Cash balance must stay below {MONEY_LIMIT}",
                amount=str(amount),
                cash_balance=str(org.cash_balance),
            )
        org.cash_balance = funded
        await commit(self.db)

        self.log.info("organisation_funded", org_id=org_id, amount=str(amount), cash_balance=str(org.cash_balance))
        update_balances(org.id, org.tradable_credits, org.cash_balance)
        return org
