"""
Authentication dependencies for FastAPI.

The bearer token identifies the principal and its current organisation.
"""
import structlog
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from tenant_authz.services.jwt_service import JWTService


# Security scheme
security = HTTPBearer()


class TokenPayload(BaseModel):
    """JWT token payload model. Satisfies the Principal protocol."""
    sub: int      # user_id
    org_id: int
    email: str

    @property
    def id(self) -> int:
        return self.sub

    @property
    def organisation_id(self) -> int:
        return self.org_id


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> TokenPayload:
    """
    Dependency that requires valid JWT token.

    Returns token payload if valid, raises 401 if invalid.

    Usage:
        @app.get("/protected")
        async def protected_route(user: TokenPayload = Depends(get_current_user)):
            ...
    """
    jwt_service = JWTService()

    payload = jwt_service.verify_token(credentials.credentials)

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = TokenPayload(**payload)
    structlog.contextvars.bind_contextvars(user_id=user.sub, org_id=user.org_id)

    # Picked up by LoggingMiddleware
    request.state.user_id = user.sub
    request.state.org_id = user.org_id
    return user
