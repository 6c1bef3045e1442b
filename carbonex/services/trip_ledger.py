"""
Trip ledger reader.

Read-only aggregation of credits earned by an organisation's employees.
Employee ids are queried in fixed-size groups because document stores
commonly cap the size of an "id in set" filter.
"""
from decimal import Decimal
from typing import Iterator, Sequence
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from carbonex.config import settings
from carbonex.errors import NotFound
from carbonex.models.organisation import Organisation
from carbonex.models.trip import Trip
from carbonex.models.user import User, UserRole


ZERO = Decimal("0")


def chunked(items: Sequence[str], size: int) -> Iterator[Sequence[str]]:
    """Yield consecutive slices of at most size items."""
    if size < 1:
        raise ValueError("batch size must be positive")
    for start in range(0, len(items), size):
        yield items[start:start + size]


class TripLedgerReader:
    """Sums non-rejected trip credits; never writes."""

    def __init__(self, db: AsyncSession, batch_size: int | None = None):
        self.db = db
        self.batch_size = batch_size or settings.TRIP_QUERY_BATCH_SIZE

    async def employee_ids(self, domain: str) -> list[str]:
        """Ids of approved employees whose domain matches."""
        stmt = select(User.id).where(
            User.domain == domain,
            User.role == UserRole.EMPLOYEE,
            User.approved.is_(True),
        ).order_by(User.id)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def sum_trip_credits(self, user_ids: Sequence[str]) -> Decimal:
        total = ZERO
        for batch in chunked(user_ids, self.batch_size):
            stmt = select(Trip.carbon_credits).where(
                Trip.user_id.in_(batch),
                Trip.rejected.is_(False),
            )
            result = await self.db.execute(stmt)
            total += sum(result.scalars().all(), ZERO)
        return total

    async def earned_credits(self, org_id: str) -> Decimal:
        """
        Credits earned by an organisation's approved employees.

        Args:
            org_id: Organisation UUID

        Returns:
            Sum of carbon_credits over the employees' non-rejected trips

        Raises:
            NotFound: unknown organisation
        """
        result = await self.db.execute(select(Organisation.domain).where(Organisation.id == org_id))
        domain = result.scalar_one_or_none()
        if domain is None:
            raise NotFound(f"Organisation {org_id} not found", organisation_id=org_id)

        return await self.sum_trip_credits(await self.employee_ids(domain))

    async def employee_earned_credits(self, user_id: str) -> Decimal:
        """Credits earned by a single employee's non-rejected trips."""
        return await self.sum_trip_credits([user_id])
