"""
Registration routes.

Sign-up needs only a valid principal token; approval is role-gated: the
bank decides on organisations, employers on their own employees.
"""
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from carbonex.database import get_db
from carbonex.dependencies.auth import TokenPayload, get_current_user, require_bank, require_employer
from carbonex.models.registration import PendingRegistration, RegistrationKind
from carbonex.models.user import User
from carbonex.services.organisation_service import OrganisationService
from carbonex.services.registration_service import RegistrationResult, RegistrationService


router = APIRouter(prefix="/api/registrations", tags=["registrations"])


class OrganisationSignupRequest(BaseModel):
    full_name: str
    organisation_name: str
    domain: str
    address: str | None = None


class EmployeeSignupRequest(BaseModel):
    full_name: str
    domain: str | None = None


class RegistrationResponse(BaseModel):
    id: str
    kind: str
    full_name: str
    email: str
    domain: str
    organisation_name: str | None = None
    address: str | None = None
    status: str
    created_at: str | None = None


class DecisionResponse(BaseModel):
    registration_id: str
    outcome: str
    organisation_id: str | None = None
    user_id: str | None = None


def registration_to_response(reg: PendingRegistration) -> RegistrationResponse:
    return RegistrationResponse(
        id=reg.id,
        kind=reg.kind.value,
        full_name=reg.full_name,
        email=reg.email,
        domain=reg.domain,
        organisation_name=reg.organisation_name,
        address=reg.address,
        status=reg.status.value,
        created_at=reg.created_at.isoformat() if reg.created_at else None,
    )


def decision_to_response(result: RegistrationResult) -> DecisionResponse:
    return DecisionResponse(
        registration_id=result.registration_id,
        outcome=result.outcome.value,
        organisation_id=result.organisation_id,
        user_id=result.user_id,
    )


@router.get("/domains/{domain}")
async def lookup_domain(
    domain: str,
    token: TokenPayload = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Whether an approved (exists) or pending organisation owns the domain."""
    lookup = await OrganisationService(db).lookup_domain(domain)
    return {
        "exists": lookup.exists,
        "pending": lookup.pending,
        "organisation_name": lookup.organisation_name,
    }


@router.post("/organisations", response_model=RegistrationResponse, status_code=status.HTTP_201_CREATED)
async def submit_organisation(
    request: OrganisationSignupRequest,
    token: TokenPayload = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    reg = await RegistrationService(db).submit_organisation(
        user_id=token.sub,
        full_name=request.full_name,
        email=token.email,
        organisation_name=request.organisation_name,
        domain=request.domain,
        address=request.address,
    )
    return registration_to_response(reg)


@router.post("/employees")
async def submit_employee(
    request: EmployeeSignupRequest,
    token: TokenPayload = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Employee sign-up.

    201 when stored (pending flag set if the organisation itself awaits
    approval), 404 with exists=false when no organisation owns the domain.
    """
    submission = await RegistrationService(db).submit_employee(
        user_id=token.sub,
        full_name=request.full_name,
        email=token.email,
        domain=request.domain,
    )
    body = {
        "exists": submission.exists,
        "pending": submission.pending,
        "registration_id": submission.registration_id,
        "organisation_id": submission.organisation_id,
    }
    status_code = status.HTTP_201_CREATED if submission.stored else status.HTTP_404_NOT_FOUND
    return JSONResponse(status_code=status_code, content=body)


@router.get("/organisations", response_model=list[RegistrationResponse])
async def pending_organisations(
    bank: User = Depends(require_bank),
    db: AsyncSession = Depends(get_db)
):
    regs = await RegistrationService(db).list_pending(RegistrationKind.ORGANISATION)
    return [registration_to_response(reg) for reg in regs]


@router.get("/employees", response_model=list[RegistrationResponse])
async def pending_employees(
    employer: User = Depends(require_employer),
    db: AsyncSession = Depends(get_db)
):
    """Employee sign-ups for the caller's domain."""
    regs = await RegistrationService(db).list_pending(RegistrationKind.EMPLOYEE, domain=employer.domain)
    return [registration_to_response(reg) for reg in regs]


@router.post("/organisations/{registration_id}/approve", response_model=DecisionResponse)
async def approve_organisation(
    registration_id: str,
    bank: User = Depends(require_bank),
    db: AsyncSession = Depends(get_db)
):
    result = await RegistrationService(db).approve_organisation(registration_id)
    return decision_to_response(result)


@router.post("/organisations/{registration_id}/reject", response_model=DecisionResponse)
async def reject_organisation(
    registration_id: str,
    bank: User = Depends(require_bank),
    db: AsyncSession = Depends(get_db)
):
    result = await RegistrationService(db).reject_organisation(registration_id)
    return decision_to_response(result)


@router.post("/employees/{registration_id}/approve", response_model=DecisionResponse)
async def approve_employee(
    registration_id: str,
    employer: User = Depends(require_employer),
    db: AsyncSession = Depends(get_db)
):
    result = await RegistrationService(db).approve_employee(
        registration_id,
        organisation_id=employer.organisation_id,
    )
    return decision_to_response(result)


@router.post("/employees/{registration_id}/reject", response_model=DecisionResponse)
async def reject_employee(
    registration_id: str,
    employer: User = Depends(require_employer),
    db: AsyncSession = Depends(get_db)
):
    result = await RegistrationService(db).reject_employee(
        registration_id,
        organisation_id=employer.organisation_id,
    )
    return decision_to_response(result)
