"""
Role assignment store.

SECURITY: every query filters by organisation_id. A role held in one
organisation grants nothing in another.
"""
import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_authz.exceptions import InvalidStateError, NotFoundError
from tenant_authz.models.role import Role
from tenant_authz.models.role_assignment import USER_MODEL_TYPE, RoleAssignment
from tenant_authz.models.role_template import RoleTemplate
from tenant_authz.references import ById, ByName, ByValue, as_reference, principal_id_of
from tenant_authz.services.cache import CacheKeys, CachePort
from tenant_authz.services.invalidation import CacheInvalidator
from tenant_authz.services.organisation_service import OrganisationService
from tenant_authz.services.role_service import RoleService, role_summary

logger = structlog.get_logger()


class RoleAssignmentService:
    """Service for assigning roles to principals inside an organisation."""

    def __init__(self, db: AsyncSession, cache: CachePort, roles: RoleService | None = None):
        self.db = db
        self.cache = cache
        self.roles = roles or RoleService(db, cache)
        self.organisations = OrganisationService(db)
        self.invalidator = CacheInvalidator(db, cache)

    async def assign(self, principal, role, organisation_id: int) -> bool:
        """
        Assign a role to a principal.

        Args:
            principal: Principal or user id
            role: Template name, role id, Role or Reference
            organisation_id: Organisation to assign in

        Returns:
            True if a new assignment was created, False if it already existed
            or the role/organisation could not be resolved
        """
        user_id = principal_id_of(principal)
        org = await self.organisations.get_active(organisation_id)
        if org is None:
            logger.debug("role_assign_skipped", reason="organisation_not_found", org_id=organisation_id)
            return False

        resolved = await self.roles.get_role(role, org.id)
        if resolved is None:
            logger.debug("role_assign_skipped", reason="role_not_found", org_id=org.id, role=str(role))
            return False

        if await self._exists(resolved.id, user_id, org.id):
            return False

        try:
            async with self.db.begin_nested():
                self.db.add(RoleAssignment(
                    role_id=resolved.id,
                    model_id=user_id,
                    model_type=USER_MODEL_TYPE,
                    organisation_id=org.id,
                ))
        except IntegrityError:
            logger.info("role_assignment_raced", org_id=org.id, user_id=user_id, role_id=resolved.id)
            return False
        await self.db.commit()

        await self.invalidator.after_assignment_change(org.id, user_id)
        logger.info("role_assigned", org_id=org.id, user_id=user_id, role_id=resolved.id, role=resolved.name)
        return True

    async def revoke(self, principal, role, organisation_id: int) -> bool:
        """
        Remove a role from a principal.

        Returns:
            True if an assignment was removed
        """
        user_id = principal_id_of(principal)
        org = await self.organisations.get_active(organisation_id)
        if org is None:
            return False

        resolved = await self.roles.get_role(role, org.id, create=False)
        if resolved is None:
            return False

        result = await self.db.execute(
            delete(RoleAssignment).where(
                RoleAssignment.role_id == resolved.id,
                RoleAssignment.model_id == user_id,
                RoleAssignment.model_type == USER_MODEL_TYPE,
                RoleAssignment.organisation_id == org.id
            )
        )
        await self.db.commit()
        if not result.rowcount:
            return False

        await self.invalidator.after_assignment_change(org.id, user_id)
        logger.info("role_revoked", org_id=org.id, user_id=user_id, role_id=resolved.id, role=resolved.name)
        return True

    async def list_roles(self, principal, organisation_id: int) -> list[Role]:
        """
        Roles a principal holds in an organisation.

        Returns:
            Roles ordered by level (highest first), ties by lowest id
        """
        stmt = (
            select(Role)
            .join(RoleAssignment, RoleAssignment.role_id == Role.id)
            .join(RoleTemplate, RoleTemplate.id == Role.template_id)
            .where(
                RoleAssignment.model_id == principal_id_of(principal),
                RoleAssignment.model_type == USER_MODEL_TYPE,
                RoleAssignment.organisation_id == organisation_id,
                Role.organisation_id == organisation_id
            )
            .order_by(RoleTemplate.level.desc(), Role.id)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def role_summaries(self, principal, organisation_id: int) -> list[dict]:
        """Cached plain-data version of list_roles."""
        key = CacheKeys.user_roles(organisation_id, principal_id_of(principal))
        cached = await self.cache.get(key)
        if cached is not None:
            return cached

        summaries = [role_summary(role) for role in await self.list_roles(principal, organisation_id)]
        await self.cache.set(key, summaries)
        return summaries

    async def role_permission_names(self, principal, organisation_id: int) -> list[str]:
        """Union of the permission bundles of every role held (cached)."""
        key = CacheKeys.user_permissions(organisation_id, principal_id_of(principal))
        cached = await self.cache.get(key)
        if cached is not None:
            return cached

        names = set()
        for summary in await self.role_summaries(principal, organisation_id):
            names.update(await self.roles.templates.template_permission_names(summary["template_id"]))
        permissions = sorted(names)
        await self.cache.set(key, permissions)
        return permissions

    async def highest_role(self, principal, organisation_id: int) -> Role | None:
        """The held role with the highest template level; ties go to the lowest role id."""
        roles = await self.list_roles(principal, organisation_id)
        return roles[0] if roles else None

    async def has_role(self, principal, role, organisation_id: int) -> bool:
        """
        Check whether a principal holds a role.

        A name matches any held role whose template carries that name, so
        an organisation override and the system role both answer to it.
        """
        ref = as_reference(role)
        summaries = await self.role_summaries(principal, organisation_id)

        if isinstance(ref, ByName):
            return any(summary["name"] == ref.name for summary in summaries)
        if isinstance(ref, ById):
            return any(summary["id"] == ref.id for summary in summaries)
        if isinstance(ref, ByValue):
            if isinstance(ref.entity, RoleTemplate):
                return any(summary["template_id"] == ref.entity.id for summary in summaries)
            return any(summary["id"] == ref.entity.id for summary in summaries)
        return False

    async def has_any_role(self, principal, roles: list, organisation_id: int) -> bool:
        for role in roles:
            if await self.has_role(principal, role, organisation_id):
                return True
        return False

    async def has_all_roles(self, principal, roles: list, organisation_id: int) -> bool:
        for role in roles:
            if not await self.has_role(principal, role, organisation_id):
                return False
        return True

    async def sync_roles(self, principal, roles: list, organisation_id: int) -> list[Role]:
        """
        Replace every role a principal holds in an organisation.

        Args:
            principal: Principal or user id
            roles: Role references to hold afterwards
            organisation_id: Organisation to sync in

        Returns:
            The roles now held

        Raises:
            NotFoundError: If the organisation or any role cannot be resolved
            InvalidStateError: If the replacement fails (nothing is changed)
        """
        user_id = principal_id_of(principal)
        org = await self.organisations.get_active(organisation_id)
        if org is None:
            raise NotFoundError("organisation", organisation_id)

        resolved = {}
        for role in roles:
            found = await self.roles.get_role(role, org.id)
            if found is None:
                raise NotFoundError("role", role)
            resolved[found.id] = found

        try:
            await self.db.execute(
                delete(RoleAssignment).where(
                    RoleAssignment.model_id == user_id,
                    RoleAssignment.model_type == USER_MODEL_TYPE,
                    RoleAssignment.organisation_id == org.id
                )
            )
            for role_id in resolved:
                self.db.add(RoleAssignment(
                    role_id=role_id,
                    model_id=user_id,
                    model_type=USER_MODEL_TYPE,
                    organisation_id=org.id,
                ))
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("role_sync_failed", org_id=org.id, user_id=user_id, error=str(e))
            raise InvalidStateError(f"Failed to sync roles for user {user_id}") from e

        await self.invalidator.after_assignment_change(org.id, user_id)
        logger.info("roles_synced", org_id=org.id, user_id=user_id, role_ids=sorted(resolved))
        return list(resolved.values())

    async def principals_with_role(self, role: Role) -> list[int]:
        """User ids holding a role."""
        stmt = (
            select(RoleAssignment.model_id)
            .where(
                RoleAssignment.role_id == role.id,
                RoleAssignment.model_type == USER_MODEL_TYPE,
                RoleAssignment.organisation_id == role.organisation_id
            )
            .order_by(RoleAssignment.model_id)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def _exists(self, role_id: int, user_id: int, organisation_id: int) -> bool:
        stmt = select(RoleAssignment.role_id).where(
            RoleAssignment.role_id == role_id,
            RoleAssignment.model_id == user_id,
            RoleAssignment.model_type == USER_MODEL_TYPE,
            RoleAssignment.organisation_id == organisation_id
        )
        result = await self.db.execute(stmt)
        return result.first() is not None
