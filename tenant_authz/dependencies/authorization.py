"""
Authorization dependencies for FastAPI.

Any denial becomes a bare 403 "Forbidden": which rule denied stays in the
debug log.
"""
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_authz.database import get_db
from tenant_authz.dependencies.auth import TokenPayload, get_current_user
from tenant_authz.services.authorization_service import AuthorizationService
from tenant_authz.services.cache import CachePort


def get_cache(request: Request) -> CachePort:
    """The process-wide cache created at startup."""
    return request.app.state.cache


def get_authorization_service(
    db: AsyncSession = Depends(get_db),
    cache: CachePort = Depends(get_cache)
) -> AuthorizationService:
    return AuthorizationService(db, cache)


def require_permission(permission: str):
    """
    Dependency factory that requires a permission in the token's organisation.

    Usage:
        @router.post("/boards", dependencies=[Depends(require_permission("board.create"))])
        async def create_board(...):
            ...
    """
    async def dependency(
        current_user: TokenPayload = Depends(get_current_user),
        service: AuthorizationService = Depends(get_authorization_service)
    ) -> TokenPayload:
        if not await service.authorize(current_user, permission, current_user.org_id):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Forbidden"
            )
        return current_user

    return dependency
