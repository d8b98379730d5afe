"""
JWT token service for authentication.

Tokens carry identity only (user id, current organisation, email). What the
holder may do is decided by AuthorizationService on every request.
"""
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from tenant_authz.config import settings


class JWTService:
    """Service for creating and verifying JWT tokens."""

    def create_token(self, user_id: int, org_id: int, email: str) -> str:
        """
        Create a JWT token with user context.

        Args:
            user_id: User's ID
            org_id: Organisation the token acts in
            email: User's email

        Returns:
            Encoded JWT token string
        """
        expires = datetime.now(timezone.utc) + timedelta(minutes=settings.JWT_EXPIRATION_MINUTES)

        payload = {
            "sub": str(user_id),
            "org_id": org_id,
            "email": email,
            "exp": expires
        }

        return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)

    def verify_token(self, token: str) -> dict | None:
        """
        Verify and decode a JWT token.

        Args:
            token: JWT token string

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
