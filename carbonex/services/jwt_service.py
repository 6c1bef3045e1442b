"""
Principal token service.

Tokens are minted by the identity provider and carry the principal id,
role, organisation and email; this service verifies them. create_token is
used by the provider integration and by tests.
"""
from datetime import datetime, timedelta, timezone
from jose import JWTError, jwt
from carbonex.config import settings


class JWTService:
    """Service for creating and verifying principal tokens."""

    def create_token(self, user_id: str, role: str, email: str, org_id: str | None = None) -> str:
        """
        Create a signed token for a principal.

        Args:
            user_id: Principal id (also the user record id)
            role: bank, employer or employee
            email: Principal email
            org_id: Organisation id once the user is approved

        Returns:
            Encoded JWT token string
        """
        expires = datetime.now(timezone.utc) + timedelta(minutes=settings.JWT_EXPIRATION_MINUTES)

        payload = {
            "sub": user_id,
            "org_id": org_id,
            "role": role,
            "email": email,
            "exp": expires
        }

        return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)

    def verify_token(self, token: str) -> dict | None:
        """
        Verify and decode a token.

        Returns:
            Decoded payload dict or None if invalid
        """
        try:
            return jwt.decode(
                token,
                settings.JWT_SECRET_KEY,
                algorithms=[settings.JWT_ALGORITHM]
            )
        except JWTError:
            return None
