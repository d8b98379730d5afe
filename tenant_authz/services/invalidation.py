"""
Cache eviction for authorization mutations.

Callers collect the affected principals before they write (a delete removes
the rows that would tell us who was affected), commit, then call the matching
`after_*` method. Eviction is immediate and never batched.
"""
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_authz.models.role import Role
from tenant_authz.models.role_assignment import RoleAssignment
from tenant_authz.routes.metrics import track_evictions
from tenant_authz.services.cache import CacheKeys, CachePort

logger = structlog.get_logger()

PrincipalKey = tuple[int, int]  # (organisation_id, model_id)


class CacheInvalidator:
    """Maps each kind of mutation to the cache keys it can make stale."""

    def __init__(self, db: AsyncSession, cache: CachePort):
        self.db = db
        self.cache = cache

    async def principals_for_roles(self, role_ids: list[int]) -> set[PrincipalKey]:
        if not role_ids:
            return set()
        stmt = select(RoleAssignment.organisation_id, RoleAssignment.model_id).where(
            RoleAssignment.role_id.in_(role_ids)
        )
        result = await self.db.execute(stmt)
        return {(org_id, model_id) for org_id, model_id in result.all()}

    async def principals_for_templates(self, template_ids: list[int]) -> set[PrincipalKey]:
        if not template_ids:
            return set()
        stmt = (
            select(RoleAssignment.organisation_id, RoleAssignment.model_id)
            .join(Role, Role.id == RoleAssignment.role_id)
            .where(Role.template_id.in_(template_ids))
        )
        result = await self.db.execute(stmt)
        return {(org_id, model_id) for org_id, model_id in result.all()}

    async def after_assignment_change(self, organisation_id: int, user_id: int) -> None:
        await self._evict(
            CacheKeys.user_roles(organisation_id, user_id),
            CacheKeys.user_permissions(organisation_id, user_id),
            CacheKeys.organisation_roles(organisation_id),
        )

    async def after_override_change(self, organisation_id: int, user_id: int) -> None:
        await self._evict(CacheKeys.user_overrides(organisation_id, user_id))

    async def after_role_change(self, organisation_id: int, affected: set[PrincipalKey] = frozenset()) -> None:
        keys = [
            CacheKeys.organisation_roles(organisation_id),
            CacheKeys.templates(organisation_id),
        ]
        keys.extend(self._principal_keys(affected))
        await self._evict(*keys)

    async def after_template_change(
        self,
        template_id: int,
        name: str,
        organisation_id: int | None,
        affected: set[PrincipalKey] = frozenset(),
        previous_name: str | None = None
    ) -> None:
        keys = [
            CacheKeys.template_permissions(template_id),
            CacheKeys.template_by_name(organisation_id, name),
            CacheKeys.templates(organisation_id),
            CacheKeys.all_templates(),
        ]
        if previous_name and previous_name != name:
            keys.append(CacheKeys.template_by_name(organisation_id, previous_name))
        keys.extend(self._principal_keys(affected))
        keys.extend(CacheKeys.organisation_roles(org_id) for org_id in {org_id for org_id, _ in affected})
        await self._evict(*keys)

    @staticmethod
    def _principal_keys(affected: set[PrincipalKey]) -> list[str]:
        keys = []
        for organisation_id, user_id in affected:
            keys.append(CacheKeys.user_roles(organisation_id, user_id))
            keys.append(CacheKeys.user_permissions(organisation_id, user_id))
        return keys

    async def _evict(self, *keys: str) -> None:
        unique = list(dict.fromkeys(keys))
        await self.cache.delete(*unique)
        track_evictions(len(unique))
        logger.debug("cache_evicted", keys=unique)
