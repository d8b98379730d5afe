"""
Authorization API routes.

Checks for the calling principal plus role and override management for
other users. Everything acts in the organisation carried by the token.
"""
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from tenant_authz.dependencies.auth import TokenPayload, get_current_user
from tenant_authz.dependencies.authorization import get_authorization_service, require_permission
from tenant_authz.services.authorization_service import AuthorizationService
from tenant_authz.services.user_service import UserService


router = APIRouter(prefix="/api/authorization", tags=["authorization"])


class RoleAssignmentRequest(BaseModel):
    role: str | int


class PermissionOverrideRequest(BaseModel):
    permission: str
    grant: bool


def _role_reference(role: str | int) -> str | int:
    """Path segments arrive as strings: all-digit ones are role ids."""
    if isinstance(role, str) and role.isdigit():
        return int(role)
    return role


async def _require_user(service: AuthorizationService, user_id: int):
    user = await UserService(service.db).get_by_id(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="Not found")
    return user


@router.get("/check")
async def check_permission(
    permission: str,
    current_user: TokenPayload = Depends(get_current_user),
    service: AuthorizationService = Depends(get_authorization_service)
):
    """Whether the caller holds a permission in its current organisation."""
    allowed = await service.authorize(current_user, permission, current_user.org_id)
    return {"permission": permission, "allowed": allowed}


@router.get("/effective")
async def effective_permissions(
    current_user: TokenPayload = Depends(get_current_user),
    service: AuthorizationService = Depends(get_authorization_service)
):
    """Every permission the caller holds in its current organisation."""
    permissions = await service.effective_permissions(current_user, current_user.org_id)
    return {"organisation_id": current_user.org_id, "permissions": sorted(permissions)}


@router.post("/users/{user_id}/roles")
async def assign_role(
    user_id: int,
    body: RoleAssignmentRequest,
    current_user: TokenPayload = Depends(require_permission("manage-roles")),
    service: AuthorizationService = Depends(get_authorization_service)
):
    """Assign a role (template name or role id) to a user."""
    user = await _require_user(service, user_id)
    role = await service.roles.get_role(_role_reference(body.role), current_user.org_id)
    if role is None:
        raise HTTPException(status_code=404, detail="Not found")

    assigned = await service.assign_role(user, role, current_user.org_id)
    return {"user_id": user_id, "role_id": role.id, "assigned": assigned}


@router.delete("/users/{user_id}/roles/{role}")
async def revoke_role(
    user_id: int,
    role: str,
    current_user: TokenPayload = Depends(require_permission("manage-roles")),
    service: AuthorizationService = Depends(get_authorization_service)
):
    """Remove a role from a user."""
    user = await _require_user(service, user_id)
    revoked = await service.revoke_role(user, _role_reference(role), current_user.org_id)
    return {"user_id": user_id, "revoked": revoked}


@router.put("/users/{user_id}/permissions")
async def set_permission_override(
    user_id: int,
    body: PermissionOverrideRequest,
    current_user: TokenPayload = Depends(require_permission("manage-permissions")),
    service: AuthorizationService = Depends(get_authorization_service)
):
    """Grant (grant=true) or deny (grant=false) a permission for a user."""
    user = await _require_user(service, user_id)
    if await service.registry.get_by_name(body.permission) is None:
        raise HTTPException(status_code=404, detail="Not found")

    if body.grant:
        await service.grant_permission(user, body.permission, current_user.org_id)
    else:
        await service.deny_permission(user, body.permission, current_user.org_id)
    return {"user_id": user_id, "permission": body.permission, "grant": body.grant}


@router.delete("/users/{user_id}/permissions/{permission}")
async def clear_permission_override(
    user_id: int,
    permission: str,
    current_user: TokenPayload = Depends(require_permission("manage-permissions")),
    service: AuthorizationService = Depends(get_authorization_service)
):
    """Remove a user's grant or deny for a permission."""
    user = await _require_user(service, user_id)
    cleared = await service.clear_permission(user, permission, current_user.org_id)
    return {"user_id": user_id, "permission": permission, "cleared": cleared}
