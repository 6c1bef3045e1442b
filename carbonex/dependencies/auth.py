"""
Authentication dependencies for FastAPI.

SECURITY: employer routes take the organisation from the stored user
record, never from request input, so operators only act for their own
organisation.
"""
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from carbonex.database import get_db
from carbonex.models.user import User, UserRole
from carbonex.services.jwt_service import JWTService
from carbonex.services.user_service import UserService


# Security scheme
security = HTTPBearer()


class TokenPayload(BaseModel):
    """Principal token payload model."""
    sub: str      # user_id
    role: str
    email: str
    org_id: str | None = None


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> TokenPayload:
    """
    Dependency that requires a valid principal token.

    Returns token payload if valid, raises 401 if invalid. Used directly by
    sign-up routes, where no approved user record exists yet.
    """
    payload = JWTService().verify_token(credentials.credentials)

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return TokenPayload(**payload)


async def get_active_user(
    token: TokenPayload = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
) -> User:
    """Load the approved, active user behind the token."""
    user = await UserService(db).get_by_id(token.sub)
    if user is None or not user.approved:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is not approved"
        )
    if not user.active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account has been deactivated"
        )
    return user


def require_bank(user: User = Depends(get_active_user)) -> User:
    """Dependency that requires a bank operator."""
    if user.role != UserRole.BANK:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Bank access required"
        )
    return user


def require_employer(user: User = Depends(get_active_user)) -> User:
    """Dependency that requires an employer operator with an organisation."""
    if user.role != UserRole.EMPLOYER or not user.organisation_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Employer access required"
        )
    return user


def require_bank_or_employer(user: User = Depends(get_active_user)) -> User:
    if user.role == UserRole.BANK:
        return user
    return require_employer(user)
