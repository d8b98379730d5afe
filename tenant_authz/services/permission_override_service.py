"""
Per-user permission overrides.

SECURITY: every query filters by organisation_id.

A grant and a deny for the same (user, permission, organisation) are the same
row with a different `grant` flag, so setting one always replaces the other.
"""
import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_authz.models.permission import Permission
from tenant_authz.models.permission_override import PermissionOverride
from tenant_authz.references import principal_id_of
from tenant_authz.services.cache import CacheKeys, CachePort
from tenant_authz.services.invalidation import CacheInvalidator
from tenant_authz.services.organisation_service import OrganisationService
from tenant_authz.services.permission_registry import PermissionRegistry
from tenant_authz.services.role_assignment_service import RoleAssignmentService

logger = structlog.get_logger()


class PermissionOverrideService:
    """Service for explicit per-user grants and denies."""

    def __init__(
        self,
        db: AsyncSession,
        cache: CachePort,
        assignments: RoleAssignmentService | None = None,
        registry: PermissionRegistry | None = None
    ):
        self.db = db
        self.cache = cache
        self.assignments = assignments or RoleAssignmentService(db, cache)
        self.registry = registry or PermissionRegistry(db)
        self.organisations = OrganisationService(db)
        self.invalidator = CacheInvalidator(db, cache)

    async def grant(self, user, permission, organisation_id: int) -> bool:
        """
        Explicitly grant a permission, replacing any deny.

        Args:
            user: Principal or user id
            permission: Permission name, id, instance or Reference
            organisation_id: Organisation the grant applies in

        Returns:
            True if the grant is recorded, False if the permission or
            organisation is unknown
        """
        return await self._set(user, permission, organisation_id, grant=True)

    async def deny(self, user, permission, organisation_id: int) -> bool:
        """
        Explicitly deny a permission, replacing any grant.

        A deny beats every role, admin bypass and ownership.
        """
        return await self._set(user, permission, organisation_id, grant=False)

    async def clear_override(self, user, permission, organisation_id: int) -> bool:
        """
        Remove the grant or deny for a permission.

        Returns:
            True if a row was removed
        """
        user_id = principal_id_of(user)
        permission_id = await self.registry.resolve_permission_id(permission)
        if permission_id is None:
            return False

        result = await self.db.execute(
            delete(PermissionOverride).where(
                PermissionOverride.user_id == user_id,
                PermissionOverride.permission_id == permission_id,
                PermissionOverride.organisation_id == organisation_id
            )
        )
        await self.db.commit()
        if not result.rowcount:
            return False

        await self.invalidator.after_override_change(organisation_id, user_id)
        logger.info("permission_override_cleared", org_id=organisation_id, user_id=user_id, permission_id=permission_id)
        return True

    async def list_overrides(self, user, organisation_id: int) -> dict[str, bool]:
        """
        Overrides of a user in an organisation (cached).

        Returns:
            Mapping of permission name to grant flag (False means deny)
        """
        user_id = principal_id_of(user)
        key = CacheKeys.user_overrides(organisation_id, user_id)
        cached = await self.cache.get(key)
        if cached is not None:
            return cached

        stmt = (
            select(Permission.name, PermissionOverride.grant)
            .join(Permission, Permission.id == PermissionOverride.permission_id)
            .where(
                PermissionOverride.user_id == user_id,
                PermissionOverride.organisation_id == organisation_id
            )
            .order_by(Permission.name)
        )
        result = await self.db.execute(stmt)
        overrides = {name: grant for name, grant in result.all()}
        await self.cache.set(key, overrides)
        return overrides

    async def list_effective_permissions(self, user, organisation_id: int) -> set[str]:
        """Role-derived permissions plus direct grants, minus denies."""
        overrides = await self.list_overrides(user, organisation_id)
        permissions = set(await self.assignments.role_permission_names(user, organisation_id))
        permissions.update(name for name, grant in overrides.items() if grant)
        permissions.difference_update(name for name, grant in overrides.items() if not grant)
        return permissions

    async def _set(self, user, permission, organisation_id: int, grant: bool) -> bool:
        user_id = principal_id_of(user)
        org = await self.organisations.get_active(organisation_id)
        if org is None:
            logger.debug("permission_override_skipped", reason="organisation_not_found", org_id=organisation_id)
            return False

        permission_id = await self.registry.resolve_permission_id(permission)
        if permission_id is None:
            logger.debug("permission_override_skipped", reason="permission_not_found", permission=str(permission))
            return False

        key = (user_id, permission_id, org.id)
        override = await self.db.get(PermissionOverride, key, populate_existing=True)
        if override is not None:
            override.grant = grant
        else:
            try:
                async with self.db.begin_nested():
                    self.db.add(PermissionOverride(
                        user_id=user_id,
                        permission_id=permission_id,
                        organisation_id=org.id,
                        grant=grant,
                    ))
            except IntegrityError:
                # Lost an insert race: the row exists now, flip it in place
                override = await self.db.get(PermissionOverride, key, populate_existing=True)
                if override is None:
                    logger.warning("permission_override_rejected", org_id=org.id, user_id=user_id,
                                   permission_id=permission_id)
                    return False
                override.grant = grant
        await self.db.commit()

        await self.invalidator.after_override_change(org.id, user_id)
        logger.info(
            "permission_granted" if grant else "permission_denied",
            org_id=org.id,
            user_id=user_id,
            permission_id=permission_id,
        )
        return True
