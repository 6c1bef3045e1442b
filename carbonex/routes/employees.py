"""
Employee management routes for employer operators.

SECURITY: every lookup is scoped to the caller's organisation.
"""
from decimal import Decimal
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from carbonex.database import get_db
from carbonex.dependencies.auth import require_employer
from carbonex.models.user import User
from carbonex.services.user_service import UserService


router = APIRouter(prefix="/api/employees", tags=["employees"])


class EmployeeResponse(BaseModel):
    id: str
    name: str
    email: str
    domain: str
    approved: bool
    active: bool
    earned_credits: Decimal
    deactivated_at: str | None = None


def employee_to_response(user: User) -> EmployeeResponse:
    return EmployeeResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        domain=user.domain,
        approved=user.approved,
        active=user.active,
        earned_credits=user.earned_credits,
        deactivated_at=user.deactivated_at.isoformat() if user.deactivated_at else None,
    )


@router.get("", response_model=list[EmployeeResponse])
async def list_employees(
    include_inactive: bool = True,
    employer: User = Depends(require_employer),
    db: AsyncSession = Depends(get_db)
):
    users = await UserService(db).list_employees(employer.domain, include_inactive=include_inactive)
    return [employee_to_response(user) for user in users]


@router.post("/{user_id}/deactivate", response_model=EmployeeResponse)
async def deactivate_employee(
    user_id: str,
    employer: User = Depends(require_employer),
    db: AsyncSession = Depends(get_db)
):
    """Disable an employee's login; the record and its trips are kept."""
    user = await UserService(db).deactivate(
        user_id,
        deactivated_by=employer.id,
        organisation_id=employer.organisation_id,
    )
    return employee_to_response(user)


@router.post("/{user_id}/reactivate", response_model=EmployeeResponse)
async def reactivate_employee(
    user_id: str,
    employer: User = Depends(require_employer),
    db: AsyncSession = Depends(get_db)
):
    user = await UserService(db).reactivate(user_id, organisation_id=employer.organisation_id)
    return employee_to_response(user)


@router.post("/{user_id}/refresh-credits", response_model=EmployeeResponse)
async def refresh_employee_credits(
    user_id: str,
    employer: User = Depends(require_employer),
    db: AsyncSession = Depends(get_db)
):
    """Recompute an employee's earned credits from their trips."""
    user = await UserService(db).refresh_earned_credits(user_id, organisation_id=employer.organisation_id)
    return employee_to_response(user)
