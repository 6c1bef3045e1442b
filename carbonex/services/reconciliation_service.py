"""
Reconciliation service.

Recomputes an organisation's earned and tradable credits from the facts
the incremental ledger mutates:

    tradable = earned + bought - sold - reserved

where bought and sold cover completed transactions and reserved covers the
seller's open (pending, approved, pending_purchase) transactions. Runs for
one organisation are serialised in-process; across processes the
organisation's version column rejects a write based on a stale read.
"""
import asyncio
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from carbonex.config import settings
from carbonex.errors import ConcurrencyConflict, NotFound
from carbonex.logging_config import get_logger
from carbonex.models.credit import OPEN_STATUSES, CreditTransaction, TransactionStatus
from carbonex.models.organisation import Organisation
from carbonex.routes.metrics import track_reconciliation, update_balances
from carbonex.services.trip_ledger import ZERO, TripLedgerReader
from carbonex.services.unit_of_work import commit


_org_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)


@dataclass(frozen=True)
class ReconciliationReport:
    organisation_id: str
    earned: Decimal
    bought: Decimal
    sold: Decimal
    reserved: Decimal
    tradable: Decimal
    previous_earned: Decimal
    previous_tradable: Decimal
    changed: bool

    @property
    def drift(self) -> Decimal:
        return self.tradable - self.previous_tradable


class ReconciliationService:
    """Recomputes organisation balances from trips and transactions."""

    def __init__(self, db: AsyncSession, max_attempts: int | None = None):
        self.db = db
        self.max_attempts = max_attempts or settings.RECONCILE_MAX_ATTEMPTS
        self.trips = TripLedgerReader(db)
        self.log = get_logger(service="reconciliation")

    async def _sum_amounts(self, *criteria) -> Decimal:
        result = await self.db.execute(select(CreditTransaction.credit_amount).where(*criteria))
        return sum(result.scalars().all(), ZERO)

    async def reconcile(self, org_id: str) -> ReconciliationReport:
        """
        Recompute and store earned/tradable credits for one organisation.

        Retries on ConcurrencyConflict up to max_attempts, then re-raises.
        """
        async with _org_locks[org_id]:
            for attempt in range(1, self.max_attempts + 1):
                try:
                    return await self._reconcile_once(org_id)
                except ConcurrencyConflict:
                    self.log.warning("reconciliation_conflict", org_id=org_id, attempt=attempt)
                    if attempt == self.max_attempts:
                        raise

    async def _reconcile_once(self, org_id: str) -> ReconciliationReport:
        # Organisation first: a reservation committed after this read bumps
        # its version and fails our commit; one committed before is in the
        # transaction sums below.
        result = await self.db.execute(
            select(Organisation).where(Organisation.id == org_id).execution_options(populate_existing=True)
        )
        org = result.scalar_one_or_none()
        if org is None:
            raise NotFound(f"Organisation {org_id} not found", organisation_id=org_id)

        earned = await self.trips.earned_credits(org_id)
        bought = await self._sum_amounts(
            CreditTransaction.buyer_org_id == org_id,
            CreditTransaction.status == TransactionStatus.COMPLETED,
        )
        sold = await self._sum_amounts(
            CreditTransaction.seller_org_id == org_id,
            CreditTransaction.status == TransactionStatus.COMPLETED,
        )
        reserved = await self._sum_amounts(
            CreditTransaction.seller_org_id == org_id,
            CreditTransaction.status.in_(OPEN_STATUSES),
        )
        computed = earned + bought - sold - reserved
        tradable = computed
        if computed < 0:
            # open listings exceed what the facts support; never store a negative balance
            self.log.error("reconciliation_deficit", org_id=org_id, deficit=str(-computed))
            tradable = ZERO

        cash = org.cash_balance
        previous_earned = org.earned_credits
        previous_tradable = org.tradable_credits
        changed = previous_earned != earned or previous_tradable != tradable
        if changed:
            org.earned_credits = earned
            org.tradable_credits = tradable
            await commit(self.db)
            self.log.info(
                "reconciliation_drift",
                org_id=org_id,
                earned=str(earned),
                previous_earned=str(previous_earned),
                tradable=str(tradable),
                previous_tradable=str(previous_tradable),
            )

        report = ReconciliationReport(
            organisation_id=org_id,
            earned=earned,
            bought=bought,
            sold=sold,
            reserved=reserved,
            tradable=tradable,
            previous_earned=previous_earned,
            previous_tradable=previous_tradable,
            changed=changed,
        )
        track_reconciliation(changed, report.drift)
        update_balances(org_id, tradable, cash)
        return report

    async def reconcile_all(self) -> list[ReconciliationReport]:
        """Reconcile every approved organisation; conflicts are logged and skipped."""
        result = await self.db.execute(
            select(Organisation.id).where(Organisation.approved.is_(True)).order_by(Organisation.id)
        )
        reports = []
        for org_id in result.scalars().all():
            try:
                reports.append(await self.reconcile(org_id))
            except ConcurrencyConflict:
                self.log.error("reconciliation_abandoned", org_id=org_id)
        return reports
