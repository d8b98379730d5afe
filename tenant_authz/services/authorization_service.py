"""
Authorization resolver.

Decision order for authorize(principal, permission, organisation):

    1. organisation missing or soft-deleted, or permission unknown -> deny
    2. explicit deny override                                     -> deny
    3. bypass role (admin, super-admin) or organisation owner     -> allow
    4. explicit grant override                                    -> allow
    5. permission in the bundle of any held role                  -> allow/deny

A deny is absolute: it beats bypass roles and ownership. Decisions never
raise for business reasons; only database or cache failures propagate.
"""
from typing import Protocol

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_authz.config import settings
from tenant_authz.references import principal_id_of
from tenant_authz.routes.metrics import track_decision
from tenant_authz.services.cache import CachePort
from tenant_authz.services.organisation_service import OrganisationService
from tenant_authz.services.permission_override_service import PermissionOverrideService
from tenant_authz.services.role_assignment_service import RoleAssignmentService
from tenant_authz.services.role_service import RoleService
from tenant_authz.services.role_template_service import RoleTemplateService

logger = structlog.get_logger()


class AuthorizationPort(Protocol):
    """Everything callers outside the engine may ask of it."""

    async def authorize(self, principal, permission, organisation) -> bool: ...

    async def has_any(self, principal, permissions: list, organisation) -> bool: ...

    async def has_all(self, principal, permissions: list, organisation) -> bool: ...

    async def has_role(self, principal, role, organisation) -> bool: ...

    async def assign_role(self, principal, role, organisation) -> bool: ...

    async def revoke_role(self, principal, role, organisation) -> bool: ...

    async def grant_permission(self, principal, permission, organisation) -> bool: ...

    async def deny_permission(self, principal, permission, organisation) -> bool: ...

    async def clear_permission(self, principal, permission, organisation) -> bool: ...

    async def effective_permissions(self, principal, organisation) -> set[str]: ...


class AuthorizationService:
    """
    The AuthorizationPort implementation.

    Wires the template, role, assignment and override stores around one
    session and one cache so they share identity map and eviction.
    """

    def __init__(self, db: AsyncSession, cache: CachePort):
        self.db = db
        self.cache = cache
        self.templates = RoleTemplateService(db, cache)
        self.registry = self.templates.registry
        self.roles = RoleService(db, cache, self.templates)
        self.assignments = RoleAssignmentService(db, cache, self.roles)
        self.overrides = PermissionOverrideService(db, cache, self.assignments, self.registry)
        self.organisations = OrganisationService(db)

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    async def authorize(self, principal, permission, organisation) -> bool:
        """
        Decide whether a principal may use a permission in an organisation.

        Args:
            principal: Principal or user id
            permission: Permission name, id, instance or Reference
            organisation: Organisation ID or instance (both resolve the same way)

        Returns:
            True if allowed
        """
        user_id = principal_id_of(principal)
        org = await self.organisations.get_active(organisation)
        if org is None:
            return self._denied(user_id, permission, None, "organisation_not_found")

        resolved = await self.registry.resolve_permission(permission)
        if resolved is None:
            return self._denied(user_id, permission, org.id, "permission_not_found")
        name = resolved.name

        overrides = await self.overrides.list_overrides(user_id, org.id)
        if overrides.get(name) is False:
            return self._denied(user_id, name, org.id, "explicit_deny")

        if await self._has_bypass_role(user_id, org.id):
            return self._allowed("bypass_role")
        if org.is_owner(user_id):
            return self._allowed("owner")

        if overrides.get(name) is True:
            return self._allowed("explicit_grant")

        if name in await self.assignments.role_permission_names(user_id, org.id):
            return self._allowed("role")
        return self._denied(user_id, name, org.id, "no_matching_role")

    async def has_any(self, principal, permissions: list, organisation) -> bool:
        """True if any permission is authorized. An empty list is False."""
        for permission in permissions:
            if await self.authorize(principal, permission, organisation):
                return True
        return False

    async def has_all(self, principal, permissions: list, organisation) -> bool:
        """True if every permission is authorized. An empty list is True."""
        for permission in permissions:
            if not await self.authorize(principal, permission, organisation):
                return False
        return True

    async def has_role(self, principal, role, organisation) -> bool:
        org = await self.organisations.get_active(organisation)
        if org is None:
            return False
        return await self.assignments.has_role(principal, role, org.id)

    async def has_role_level(self, principal, level: int, organisation) -> bool:
        """True if the principal's highest role in the organisation is at least `level`."""
        org = await self.organisations.get_active(organisation)
        if org is None:
            return False
        highest = await self._highest_level(principal, org.id)
        return highest is not None and highest >= level

    async def is_owner(self, principal, organisation) -> bool:
        org = await self.organisations.get_active(organisation)
        return org is not None and org.is_owner(principal_id_of(principal))

    async def can_manage_user(self, manager, user, organisation) -> bool:
        """
        Check whether one principal may manage another in an organisation.

        Nobody manages themselves. The owner manages everyone. Otherwise the
        manager's highest level must exceed the target's; a target with no
        role can be managed from MANAGE_USERS_MIN_LEVEL upwards.
        """
        manager_id, user_id = principal_id_of(manager), principal_id_of(user)
        if manager_id == user_id:
            return False

        org = await self.organisations.get_active(organisation)
        if org is None:
            return False
        if org.is_owner(manager_id):
            return True

        manager_level = await self._highest_level(manager_id, org.id)
        if manager_level is None:
            return False
        user_level = await self._highest_level(user_id, org.id)
        if user_level is None:
            return manager_level >= settings.MANAGE_USERS_MIN_LEVEL
        return manager_level > user_level

    async def effective_permissions(self, principal, organisation) -> set[str]:
        """Permission names the principal holds in the organisation (empty if it is gone)."""
        org = await self.organisations.get_active(organisation)
        if org is None:
            return set()
        return await self.overrides.list_effective_permissions(principal, org.id)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def assign_role(self, principal, role, organisation) -> bool:
        org = await self.organisations.get_active(organisation)
        if org is None:
            return False
        return await self.assignments.assign(principal, role, org.id)

    async def revoke_role(self, principal, role, organisation) -> bool:
        org = await self.organisations.get_active(organisation)
        if org is None:
            return False
        return await self.assignments.revoke(principal, role, org.id)

    async def grant_permission(self, principal, permission, organisation) -> bool:
        org = await self.organisations.get_active(organisation)
        if org is None:
            return False
        return await self.overrides.grant(principal, permission, org.id)

    async def deny_permission(self, principal, permission, organisation) -> bool:
        org = await self.organisations.get_active(organisation)
        if org is None:
            return False
        return await self.overrides.deny(principal, permission, org.id)

    async def clear_permission(self, principal, permission, organisation) -> bool:
        org = await self.organisations.get_active(organisation)
        if org is None:
            return False
        return await self.overrides.clear_override(principal, permission, org.id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _has_bypass_role(self, user_id: int, organisation_id: int) -> bool:
        summaries = await self.assignments.role_summaries(user_id, organisation_id)
        return any(summary["name"] in settings.BYPASS_ROLE_NAMES for summary in summaries)

    async def _highest_level(self, principal, organisation_id: int) -> int | None:
        summaries = await self.assignments.role_summaries(principal, organisation_id)
        return max((summary["level"] for summary in summaries), default=None)

    @staticmethod
    def _allowed(rule: str) -> bool:
        track_decision(True, rule)
        return True

    @staticmethod
    def _denied(user_id: int, permission, organisation_id: int | None, rule: str) -> bool:
        track_decision(False, rule)
        logger.debug("authorization_denied", user_id=user_id, permission=str(permission), org_id=organisation_id, rule=rule)
        return False
