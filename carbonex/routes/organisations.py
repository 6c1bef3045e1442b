"""
Organisation account routes.

Balances, bank funding and on-demand reconciliation.
"""
from decimal import Decimal
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from carbonex.database import get_db
from carbonex.dependencies.auth import require_bank, require_bank_or_employer, require_employer
from carbonex.errors import NotFound
from carbonex.models.organisation import MONEY_LIMIT, Organisation
from carbonex.models.user import User, UserRole
from carbonex.services.organisation_service import OrganisationService
from carbonex.services.reconciliation_service import ReconciliationReport, ReconciliationService


router = APIRouter(prefix="/api/organisations", tags=["organisations"])


class OrganisationResponse(BaseModel):
    id: str
    name: str
    domain: str
    address: str | None = None
    earned_credits: Decimal
    tradable_credits: Decimal
    cash_balance: Decimal
    approved: bool
    created_at: str | None = None


class FundingRequest(BaseModel):
    amount: Decimal = Field(gt=0, lt=MONEY_LIMIT)


class ReconciliationResponse(BaseModel):
    organisation_id: str
    earned: Decimal
    bought: Decimal
    sold: Decimal
    reserved: Decimal
    tradable: Decimal
    previous_tradable: Decimal
    changed: bool


def organisation_to_response(org: Organisation) -> OrganisationResponse:
    return OrganisationResponse(
        id=org.id,
        name=org.name,
        domain=org.domain,
        address=org.address,
        earned_credits=org.earned_credits,
        tradable_credits=org.tradable_credits,
        cash_balance=org.cash_balance,
        approved=org.approved,
        created_at=org.created_at.isoformat() if org.created_at else None,
    )


def report_to_response(report: ReconciliationReport) -> ReconciliationResponse:
    return ReconciliationResponse(
        organisation_id=report.organisation_id,
        earned=report.earned,
        bought=report.bought,
        sold=report.sold,
        reserved=report.reserved,
        tradable=report.tradable,
        previous_tradable=report.previous_tradable,
        changed=report.changed,
    )


@router.get("/me", response_model=OrganisationResponse)
async def my_organisation(
    employer: User = Depends(require_employer),
    db: AsyncSession = Depends(get_db)
):
    """Balances of the caller's organisation."""
    org = await OrganisationService(db).require(employer.organisation_id)
    return organisation_to_response(org)


@router.get("", response_model=list[OrganisationResponse])
async def list_organisations(
    bank: User = Depends(require_bank),
    db: AsyncSession = Depends(get_db)
):
    orgs = await OrganisationService(db).list_all()
    return [organisation_to_response(org) for org in orgs]


@router.post("/{org_id}/funds", response_model=OrganisationResponse)
async def add_funds(
    org_id: str,
    request: FundingRequest,
    bank: User = Depends(require_bank),
    db: AsyncSession = Depends(get_db)
):
    """Add cash to an organisation so it can buy credits."""
    org = await OrganisationService(db).add_funds(org_id, request.amount)
    return organisation_to_response(org)


@router.post("/{org_id}/reconcile", response_model=ReconciliationResponse)
async def reconcile_organisation(
    org_id: str,
    user: User = Depends(require_bank_or_employer),
    db: AsyncSession = Depends(get_db)
):
    """Recompute earned and tradable credits from trips and transactions."""
    if user.role != UserRole.BANK and user.organisation_id != org_id:
        raise NotFound(f"Organisation {org_id} not found", organisation_id=org_id)

    report = await ReconciliationService(db).reconcile(org_id)
    return report_to_response(report)
