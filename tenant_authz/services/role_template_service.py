"""
Role template catalog.

Name resolution order is fixed: an organisation-specific template shadows the
system template of the same name for that organisation only. Both rows exist
side by side; no other organisation sees the override.

System templates are read-only unless the caller passes privileged=True,
which only catalog sync and admin repair do.
"""
import structlog
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_authz import catalog
from tenant_authz.exceptions import DuplicateTemplateError, ImmutableResourceError, InvalidStateError
from tenant_authz.models.role_template import SCOPE_ORGANISATION, SCOPE_SYSTEM, RoleTemplate
from tenant_authz.services.cache import CacheKeys, CachePort
from tenant_authz.services.invalidation import CacheInvalidator
from tenant_authz.services.permission_registry import PermissionRegistry

logger = structlog.get_logger()

UPDATABLE_FIELDS = {"name", "display_name", "description", "level"}

# Cached marker for "no template with this name in this scope".
_ABSENT = 0


class RoleTemplateService:
    """Service for looking up and maintaining role templates."""

    def __init__(self, db: AsyncSession, cache: CachePort, registry: PermissionRegistry | None = None):
        self.db = db
        self.cache = cache
        self.registry = registry or PermissionRegistry(db)
        self.invalidator = CacheInvalidator(db, cache)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_template(self, name: str, organisation_id: int | None = None) -> RoleTemplate | None:
        """
        Get a template by name as seen from an organisation.

        Args:
            name: Template name
            organisation_id: Organisation scope (None looks at system templates only)

        Returns:
            The organisation template if one exists, else the system template, else None
        """
        if organisation_id is not None:
            template_id = await self._scoped_template_id(name, organisation_id)
            if template_id:
                return await self.get_template_by_id(template_id)

        template_id = await self._scoped_template_id(name, None)
        if template_id:
            return await self.get_template_by_id(template_id)
        return None

    async def get_template_by_id(self, template_id: int) -> RoleTemplate | None:
        return await self.db.get(RoleTemplate, template_id)

    async def list_templates(self, organisation_id: int | None = None) -> list[RoleTemplate]:
        """
        List system templates plus the templates of one organisation.

        Returns:
            Templates ordered by level (highest first) then name
        """
        stmt = select(RoleTemplate).order_by(RoleTemplate.level.desc(), RoleTemplate.name)
        if organisation_id is None:
            stmt = stmt.where(RoleTemplate.organisation_id.is_(None))
        else:
            stmt = stmt.where(or_(
                RoleTemplate.organisation_id.is_(None),
                RoleTemplate.organisation_id == organisation_id
            ))
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def template_names(self, organisation_id: int) -> list[str]:
        """Names of every template visible to an organisation (cached)."""
        system_names = await self._names_in_scope(None)
        organisation_names = await self._names_in_scope(organisation_id)
        return sorted(set(system_names) | set(organisation_names))

    async def template_permission_names(self, template_id: int) -> list[str]:
        """Permission names bundled by a template (cached)."""
        key = CacheKeys.template_permissions(template_id)
        cached = await self.cache.get(key)
        if cached is not None:
            return cached

        template = await self.get_template_by_id(template_id)
        names = template.permission_names if template else []
        if template:
            await self.cache.set(key, names)
        return names

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create_template(
        self,
        name: str,
        *,
        permissions: list[str] | None = None,
        organisation_id: int | None = None,
        level: int = 1,
        display_name: str | None = None,
        description: str | None = None,
        is_system: bool = False
    ) -> RoleTemplate:
        """
        Create a role template.

        Args:
            name: Template name, unique within its scope
            permissions: Permission names to bundle (unknown names are skipped)
            organisation_id: Owning organisation, None for a global template
            level: Hierarchy level, higher means more access
            display_name: Label for admin UIs
            description: Free text
            is_system: Mark the template read-only for tenant admins

        Returns:
            Newly created RoleTemplate

        Raises:
            DuplicateTemplateError: If the name is already used in that scope
        """
        if await self.find_in_scope(name, organisation_id):
            raise DuplicateTemplateError(f"Template '{name}' already exists in this scope")

        template = RoleTemplate(
            name=name,
            display_name=display_name or name,
            description=description,
            level=level,
            is_system=is_system,
            scope=SCOPE_SYSTEM if organisation_id is None and is_system else SCOPE_ORGANISATION,
            organisation_id=organisation_id,
        )
        template.permissions = await self._load_permissions(permissions or [], template_name=name)
        try:
            async with self.db.begin_nested():
                self.db.add(template)
        except IntegrityError as e:
            raise DuplicateTemplateError(f"Template '{name}' already exists in this scope") from e
        await self.db.commit()

        await self.invalidator.after_template_change(template.id, template.name, organisation_id)
        logger.info(
            "role_template_created",
            template_id=template.id,
            template=name,
            org_id=organisation_id,
            is_system=is_system,
            permissions=len(template.permissions),
        )
        return template

    async def update_template(
        self,
        template: RoleTemplate,
        *,
        permissions: list[str] | None = None,
        privileged: bool = False,
        **fields
    ) -> RoleTemplate:
        """
        Update template attributes and, optionally, replace its permission bundle.

        Args:
            template: Template to update
            permissions: New permission names (None keeps the current bundle)
            privileged: Allow changes to a system template
            **fields: Any of name, display_name, description, level

        Raises:
            ImmutableResourceError: If the template is a system template and privileged is False
            DuplicateTemplateError: If a rename collides with another template in scope
        """
        self._ensure_mutable(template, privileged)
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise TypeError(f"Cannot update template fields: {', '.join(sorted(unknown))}")

        previous_name = template.name
        new_name = fields.get("name")
        if new_name and new_name != previous_name:
            clash = await self.find_in_scope(new_name, template.organisation_id)
            if clash and clash.id != template.id:
                raise DuplicateTemplateError(f"Template '{new_name}' already exists in this scope")

        for field, value in fields.items():
            if value is not None:
                setattr(template, field, value)
        if permissions is not None:
            template.permissions = await self._load_permissions(permissions, template_name=template.name)

        affected = await self.invalidator.principals_for_templates([template.id])
        await self.db.commit()
        await self.invalidator.after_template_change(
            template.id, template.name, template.organisation_id, affected, previous_name=previous_name
        )
        logger.info("role_template_updated", template_id=template.id, template=template.name, privileged=privileged)
        return template

    async def add_permissions(self, template: RoleTemplate, names: list[str], *, privileged: bool = False) -> RoleTemplate:
        """Add permissions to a template without touching the ones it already has."""
        self._ensure_mutable(template, privileged)
        current = set(template.permission_names)
        additions = [permission for permission in await self._load_permissions(names, template_name=template.name)
                     if permission.name not in current]
        if not additions:
            return template

        template.permissions.extend(additions)
        affected = await self.invalidator.principals_for_templates([template.id])
        await self.db.commit()
        await self.invalidator.after_template_change(template.id, template.name, template.organisation_id, affected)
        logger.info("role_template_permissions_added", template_id=template.id, added=[p.name for p in additions])
        return template

    async def remove_permissions(self, template: RoleTemplate, names: list[str], *, privileged: bool = False) -> RoleTemplate:
        """Remove specific permissions from a template."""
        self._ensure_mutable(template, privileged)
        removing = set(names)
        remaining = [permission for permission in template.permissions if permission.name not in removing]
        if len(remaining) == len(template.permissions):
            return template

        template.permissions = remaining
        affected = await self.invalidator.principals_for_templates([template.id])
        await self.db.commit()
        await self.invalidator.after_template_change(template.id, template.name, template.organisation_id, affected)
        logger.info("role_template_permissions_removed", template_id=template.id, removed=sorted(removing))
        return template

    async def delete_template(self, template: RoleTemplate, *, privileged: bool = False) -> bool:
        """
        Delete a template together with its roles and their assignments.

        Raises:
            ImmutableResourceError: If the template is a system template and privileged is False
        """
        self._ensure_mutable(template, privileged)
        template_id, name, organisation_id = template.id, template.name, template.organisation_id

        affected = await self.invalidator.principals_for_templates([template_id])
        await self.db.delete(template)
        await self.db.commit()
        await self.invalidator.after_template_change(template_id, name, organisation_id, affected)
        for org_id in {org_id for org_id, _ in affected}:
            await self.invalidator.after_role_change(org_id)
        logger.info("role_template_deleted", template_id=template_id, template=name, org_id=organisation_id)
        return True

    async def create_system_template_override(
        self,
        system_template: RoleTemplate,
        organisation_id: int,
        *,
        display_name: str | None = None,
        description: str | None = None,
        permissions: list[str] | None = None
    ) -> RoleTemplate:
        """
        Copy a system template into an organisation-scoped template of the same name.

        Args:
            system_template: The system template to shadow
            organisation_id: Organisation the override belongs to
            display_name: Defaults to the system template's
            description: Defaults to the system template's
            permissions: Defaults to a copy of the system template's bundle

        Raises:
            InvalidStateError: If the source template is not a system template
        """
        if not system_template.is_system:
            raise InvalidStateError("Cannot override a non-system template")

        return await self.create_template(
            system_template.name,
            permissions=system_template.permission_names if permissions is None else permissions,
            organisation_id=organisation_id,
            level=system_template.level,
            display_name=display_name or system_template.display_name,
            description=description or system_template.description,
            is_system=False,
        )

    async def sync_system_templates(self) -> dict[str, int]:
        """
        Create or refresh the system templates defined by the built-in catalog.

        Returns:
            Counts of created and updated templates
        """
        counts = {"created": 0, "updated": 0}
        for name, definition in catalog.SYSTEM_ROLE_TEMPLATES.items():
            permissions = catalog.template_permissions(name)
            await self.registry.ensure_permissions(permissions)

            existing = await self.find_in_scope(name, None)
            if existing is None:
                await self.create_template(
                    name,
                    permissions=permissions,
                    level=definition["level"],
                    display_name=definition["display_name"],
                    description=definition["description"],
                    is_system=True,
                )
                counts["created"] += 1
            else:
                await self.update_template(
                    existing,
                    permissions=permissions,
                    privileged=True,
                    display_name=definition["display_name"],
                    description=definition["description"],
                    level=definition["level"],
                )
                counts["updated"] += 1

        logger.info("system_templates_synced", **counts)
        return counts

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _ensure_mutable(template: RoleTemplate, privileged: bool) -> None:
        if template.is_system and not privileged:
            raise ImmutableResourceError("role template", template.name)

    async def find_in_scope(self, name: str, organisation_id: int | None) -> RoleTemplate | None:
        """Exact-scope lookup: no fallback from an organisation to the system scope."""
        stmt = select(RoleTemplate).where(RoleTemplate.name == name)
        if organisation_id is None:
            stmt = stmt.where(RoleTemplate.organisation_id.is_(None))
        else:
            stmt = stmt.where(RoleTemplate.organisation_id == organisation_id)
        result = await self.db.execute(stmt.limit(1))
        return result.scalars().first()

    async def _scoped_template_id(self, name: str, organisation_id: int | None) -> int | None:
        key = CacheKeys.template_by_name(organisation_id, name)
        cached = await self.cache.get(key)
        if cached is not None:
            return cached or None

        stmt = select(RoleTemplate.id).where(RoleTemplate.name == name)
        if organisation_id is None:
            stmt = stmt.where(RoleTemplate.organisation_id.is_(None), RoleTemplate.is_system.is_(True))
        else:
            stmt = stmt.where(RoleTemplate.organisation_id == organisation_id)
        result = await self.db.execute(stmt.limit(1))
        template_id = result.scalar_one_or_none()

        await self.cache.set(key, template_id or _ABSENT)
        return template_id

    async def _names_in_scope(self, organisation_id: int | None) -> list[str]:
        key = CacheKeys.templates(organisation_id)
        cached = await self.cache.get(key)
        if cached is not None:
            return cached

        stmt = select(RoleTemplate.name)
        if organisation_id is None:
            stmt = stmt.where(RoleTemplate.organisation_id.is_(None))
        else:
            stmt = stmt.where(RoleTemplate.organisation_id == organisation_id)
        result = await self.db.execute(stmt)
        names = sorted(result.scalars().all())
        await self.cache.set(key, names)
        return names

    async def _load_permissions(self, names: list[str], template_name: str):
        permissions = await self.registry.get_by_names(names)
        missing = set(names) - {permission.name for permission in permissions}
        if missing:
            logger.warning("role_template_unknown_permissions", template=template_name, missing=sorted(missing))
        return permissions
