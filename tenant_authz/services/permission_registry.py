"""
Permission registry.

Permissions are global: no query here filters by organisation. An unknown
name or id resolves to None and callers treat that as a no-op.
"""
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_authz import catalog
from tenant_authz.models.permission import Permission
from tenant_authz.references import ById, ByName, ByValue, as_reference

logger = structlog.get_logger()


class PermissionRegistry:
    """Service for resolving and seeding catalog permissions."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def resolve_permission(self, permission) -> Permission | None:
        """
        Resolve a permission name, id, Permission or Reference.

        Args:
            permission: Permission name, id, instance or Reference

        Returns:
            Permission or None if not found
        """
        ref = as_reference(permission)
        if isinstance(ref, ByName):
            return await self.get_by_name(ref.name)
        if isinstance(ref, ById):
            return await self.db.get(Permission, ref.id)
        if isinstance(ref, ByValue) and isinstance(ref.entity, Permission):
            return await self.db.get(Permission, ref.entity.id)
        return None

    async def resolve_permission_id(self, permission) -> int | None:
        """Resolve a permission reference to its id (None if unknown)."""
        resolved = await self.resolve_permission(permission)
        return resolved.id if resolved else None

    async def get_by_name(self, name: str) -> Permission | None:
        stmt = select(Permission).where(Permission.name == name)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_names(self, names: list[str]) -> list[Permission]:
        """Fetch the permissions matching `names`; unknown names are ignored."""
        if not names:
            return []
        stmt = select(Permission).where(Permission.name.in_(set(names))).order_by(Permission.name)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_permissions(self, category: str | None = None) -> list[Permission]:
        stmt = select(Permission).order_by(Permission.name)
        if category is not None:
            stmt = stmt.where(Permission.category == category)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def create_permission(
        self,
        name: str,
        display_name: str | None = None,
        description: str | None = None,
        category: str | None = None
    ) -> Permission:
        """
        Create a catalog entry, or return the existing one with that name.

        Args:
            name: Unique permission name
            display_name: Optional label for admin UIs
            description: Optional description
            category: Defaults to the "{model}" prefix of the name

        Returns:
            The Permission row
        """
        existing = await self.get_by_name(name)
        if existing:
            return existing

        permission = Permission(
            name=name,
            display_name=display_name,
            description=description,
            category=category or catalog.permission_category(name)
        )
        self.db.add(permission)
        await self.db.commit()
        logger.info("permission_created", permission=name)
        return permission

    async def ensure_permissions(self, names: list[str]) -> int:
        """
        Insert every missing permission in one commit.

        Returns:
            Number of permissions created
        """
        existing = {permission.name for permission in await self.get_by_names(names)}
        missing = [name for name in dict.fromkeys(names) if name not in existing]
        for name in missing:
            self.db.add(Permission(name=name, category=catalog.permission_category(name)))
        if missing:
            await self.db.commit()
            logger.info("permissions_seeded", created=len(missing))
        return len(missing)

    async def sync_catalog(self) -> int:
        """Seed every permission defined in the built-in catalog."""
        return await self.ensure_permissions(catalog.all_defined_permissions())
